"""Jira issue lookup with caching and a connection cooldown.

Jira is enrichment only: every failure comes back as a JiraTicket with
``error`` set, never as an exception. When the instance looks unreachable
(network error, SSO wall, bad credentials) further calls are suppressed for
a retry interval instead of hammering it on every request.
"""
import threading
import time
import urllib.parse
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import requests

from .cache import CacheTTL, TTLCache
from .config import JiraSettings
from .logging_utils import logger
from .models import JiraStatus, JiraTicket
from .tickets import ticket_url


log = logger.child("jira")

CONNECTION_RETRY_INTERVAL_MS = 5 * 60 * 1000
REQUEST_TIMEOUT = 10
ISSUE_FIELDS = "summary,status,issuetype,priority,assignee,reporter,description,labels"
MAX_WORKERS = 8


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class JiraConnectionState:
    """Cooldown bookkeeping for a Jira instance.

    Owned by the JiraClient (one per process in the app), resettable from the
    status endpoint. Bulk fetches touch it from pool threads, so every
    transition happens under ``_lock``.
    """

    failed: bool = False
    reason: Optional[str] = None
    last_attempt: int = 0
    retry_interval: int = CONNECTION_RETRY_INTERVAL_MS
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def should_attempt(self, now_ms: int) -> bool:
        with self._lock:
            if not self.failed:
                return True
            if now_ms - self.last_attempt < self.retry_interval:
                return False
            # cooldown over; allow a retry
            self.failed = False
            return True

    def record_attempt(self, now_ms: int) -> None:
        with self._lock:
            self.last_attempt = now_ms

    def mark_failed(self, reason: str) -> None:
        with self._lock:
            self.failed = True
            self.reason = reason

    def reset(self) -> None:
        with self._lock:
            self.failed = False
            self.reason = None
            self.last_attempt = 0

    def retry_in(self, now_ms: int) -> int:
        return max(0, self.retry_interval - (now_ms - self.last_attempt))


def extract_text_from_adf(node: Any) -> str:
    """Flatten an Atlassian Document Format tree to plain text."""
    if not isinstance(node, dict):
        return ""
    text = ""
    if node.get("type") == "text" and node.get("text"):
        text += node["text"]
    for child in node.get("content") or []:
        text += extract_text_from_adf(child)
        if isinstance(child, dict) and child.get("type") in ("paragraph", "heading"):
            text += "\n"
    return text.strip()


class JiraClient:
    def __init__(
        self,
        settings: JiraSettings,
        *,
        cache: Optional[TTLCache] = None,
        state: Optional[JiraConnectionState] = None,
        session: Optional[requests.Session] = None,
        clock: Callable[[], int] = _now_ms,
    ):
        self.settings = settings
        self.cache = cache or TTLCache()
        self.state = state or JiraConnectionState()
        self.session = session or requests.Session()
        self._clock = clock

    @property
    def base_url(self) -> str:
        return self.settings.base_url.rstrip("/")

    @property
    def configured(self) -> bool:
        return self.settings.configured

    def should_attempt_connection(self) -> bool:
        if not self.configured:
            return False
        return self.state.should_attempt(self._clock())

    def status(self) -> JiraStatus:
        if not self.configured:
            return JiraStatus(configured=False, connectionFailed=False)
        if self.state.failed:
            return JiraStatus(
                configured=True,
                connectionFailed=True,
                failureReason=self.state.reason,
                retryIn=self.state.retry_in(self._clock()),
            )
        return JiraStatus(configured=True, connectionFailed=False)

    def reset(self) -> None:
        self.state.reset()
        log.info("connection_reset")

    def _placeholder(self, key: str, error: str) -> JiraTicket:
        return JiraTicket(key=key, url=ticket_url(self.base_url, key), error=error)

    def _fail(self, key: str, reason: str, error: str) -> JiraTicket:
        self.state.mark_failed(reason)
        log.warn("connection_failed", key=key, reason=reason)
        return self._placeholder(key, error)

    def fetch_ticket(self, key: str) -> JiraTicket:
        if not self.configured:
            return self._placeholder(key, "JIRA not configured")
        if not self.state.should_attempt(self._clock()):
            return self._placeholder(key, self.state.reason or "Connection unavailable")

        cache_key = f"jira:{key}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return JiraTicket.model_validate(cached)

        self.state.record_attempt(self._clock())
        url = f"{self.base_url}/rest/api/3/issue/{urllib.parse.quote(key)}"
        try:
            r = self.session.get(
                url,
                params={"fields": ISSUE_FIELDS},
                auth=(self.settings.email, self.settings.api_token),
                headers={"Accept": "application/json"},
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as e:
            log.error("request_failed", key=key, error=e.__class__.__name__)
            return self._fail(key, "Network error connecting to JIRA", "Network error")

        content_type = r.headers.get("content-type", "")
        if "text/html" in content_type:
            return self._fail(
                key,
                "SSO/Enterprise authentication required - API token auth not supported from external servers",
                "SSO required",
            )
        if r.status_code == 404:
            return self._placeholder(key, "Not found")
        if r.status_code in (401, 403):
            return self._fail(key, "Authentication failed - check JIRA_EMAIL and JIRA_API_TOKEN", "Auth failed")
        if not r.ok:
            return self._placeholder(key, f"Error {r.status_code}")
        if "application/json" not in content_type:
            return self._fail(key, "Unexpected response format from JIRA", "Invalid response")

        try:
            data = r.json()
        except ValueError:
            return self._fail(key, "Invalid JSON response from JIRA", "Parse error")

        ticket = self._to_ticket(data)
        self.cache.set(cache_key, ticket.model_dump(), CacheTTL.COMMIT)
        return ticket

    def _to_ticket(self, data: Dict[str, Any]) -> JiraTicket:
        fields = data.get("fields") or {}
        key = data.get("key") or ""
        description = fields.get("description")
        return JiraTicket(
            key=key,
            summary=fields.get("summary") or "",
            status=(fields.get("status") or {}).get("name") or "Unknown",
            type=(fields.get("issuetype") or {}).get("name") or "Unknown",
            priority=(fields.get("priority") or {}).get("name"),
            assignee=(fields.get("assignee") or {}).get("displayName"),
            reporter=(fields.get("reporter") or {}).get("displayName"),
            description=extract_text_from_adf(description) if description else None,
            labels=list(fields.get("labels") or []),
            url=ticket_url(self.base_url, key),
        )

    def fetch_tickets(self, keys: List[str]) -> List[JiraTicket]:
        if not keys:
            return []
        with ThreadPoolExecutor(max_workers=min(MAX_WORKERS, len(keys))) as pool:
            return list(pool.map(self.fetch_ticket, keys))

    def unavailable_tickets(self, keys: List[str]) -> List[JiraTicket]:
        """Placeholders (key + link) used when Jira calls are suppressed."""
        error = "JIRA unavailable" if self.state.failed else "Not configured"
        return [self._placeholder(k, error) for k in keys]


def format_tickets_for_ai(tickets: List[JiraTicket]) -> str:
    if not tickets:
        return ""
    lines = []
    for t in tickets:
        line = f"- {t.key}: {t.summary}\n  Type: {t.type} | Status: {t.status}"
        if t.priority:
            line += f" | Priority: {t.priority}"
        if t.description:
            desc = t.description[:200] + ("..." if len(t.description) > 200 else "")
            line += f"\n  Description: {desc}"
        lines.append(line)
    return "\nJIRA Tickets referenced in these changes:\n" + "\n".join(lines) + "\n"
