"""Sentry release health: crash-free rates, adoption and unhandled errors (24h)."""
from typing import Any, Dict, List, Optional

import requests

from .config import SentrySettings
from .errors import UpstreamError
from .github_client import safe_json
from .logging_utils import logger
from .models import ReleaseHealthMetrics, ReleaseHealthTimeSeries


log = logger.child("sentry")

STATS_PERIOD = "24h"
INTERVAL = "1h"
DEFAULT_TIMEOUT = 30

SESSION_FIELD = "sum(session)"
USER_FIELD = "count_unique(user)"


def _rate(total: float, bad: float) -> float:
    return ((total - bad) / total) * 100 if total > 0 else 100.0


class SentryClient:
    def __init__(self, settings: SentrySettings, *, session: Optional[requests.Session] = None, timeout: float = DEFAULT_TIMEOUT):
        self.settings = settings
        self.session = session or requests.Session()
        self.timeout = timeout

    @property
    def org(self) -> str:
        return self.settings.org

    def headers(self) -> Dict[str, str]:
        h = {"Content-Type": "application/json"}
        if self.settings.auth_token:
            h["Authorization"] = f"Bearer {self.settings.auth_token}"
        return h

    def _get(self, path: str, params: List[tuple]) -> requests.Response:
        url = f"{self.settings.api_base.rstrip('/')}{path}"
        try:
            return self.session.get(url, headers=self.headers(), params=params, timeout=self.timeout)
        except requests.RequestException as e:
            log.error("request_failed", path=path, error=e.__class__.__name__)
            raise UpstreamError("sentry", f"Sentry request failed: {e.__class__.__name__}")

    @staticmethod
    def _scope(params: List[tuple], project: Optional[str], environment: Optional[str]) -> List[tuple]:
        if project:
            params.append(("project", project))
        if environment:
            params.append(("environment", environment))
        return params

    def get_organization(self) -> requests.Response:
        """Raw organization response (connection test)."""
        return self._get(f"/organizations/{self.org}/", [])

    def fetch_release_health(
        self,
        release: str,
        project: Optional[str] = None,
        environment: str = "production",
    ) -> ReleaseHealthMetrics:
        sessions_path = f"/organizations/{self.org}/sessions/"

        params = self._scope(
            [
                ("field", SESSION_FIELD),
                ("field", USER_FIELD),
                ("statsPeriod", STATS_PERIOD),
                ("interval", INTERVAL),
                ("groupBy", "session.status"),
                ("query", f"release:{release}"),
            ],
            project,
            environment,
        )
        r = self._get(sessions_path, params)
        if not r.ok:
            body = safe_json(r)
            detail = body.get("detail") if isinstance(body, dict) else None
            raise UpstreamError(
                "sentry",
                detail or f"Failed to fetch Sentry session stats: {r.status_code}",
                upstream_status=r.status_code,
            )
        data = r.json() or {}
        groups: List[Dict[str, Any]] = data.get("groups") or []

        by_status: Dict[str, Dict[str, Any]] = {}
        total_users = 0
        for g in groups:
            status = (g.get("by") or {}).get("session.status") or ""
            by_status[status] = g
            total_users += int((g.get("totals") or {}).get(USER_FIELD) or 0)

        def sessions(status: str) -> int:
            return int(((by_status.get(status) or {}).get("totals") or {}).get(SESSION_FIELD) or 0)

        healthy = sessions("healthy")
        crashed = sessions("crashed")
        errored = sessions("errored")
        abnormal = sessions("abnormal")
        total_sessions = healthy + crashed + errored + abnormal
        crashed_users = int(((by_status.get("crashed") or {}).get("totals") or {}).get(USER_FIELD) or 0)

        return ReleaseHealthMetrics(
            release=release,
            environment=environment,
            crashFreeSessionRate=_rate(total_sessions, crashed),
            crashFreeUserRate=_rate(total_users, crashed_users),
            adoptionRate=self._adoption_rate(total_users, project, environment),
            totalSessions=total_sessions,
            totalUsers=total_users,
            crashedSessions=crashed,
            erroredSessions=errored,
            healthySessions=healthy,
            abnormalSessions=abnormal,
            unhandledErrors=self._unhandled_errors(release, project, environment),
            timeSeries=build_time_series(data),
        )

    def _adoption_rate(self, release_users: int, project: Optional[str], environment: Optional[str]) -> float:
        params = self._scope([("field", USER_FIELD), ("statsPeriod", STATS_PERIOD)], project, environment)
        r = self._get(f"/organizations/{self.org}/sessions/", params)
        if not r.ok:
            log.warn("adoption_unavailable", status=r.status_code)
            return 0.0
        all_users = sum(int((g.get("totals") or {}).get(USER_FIELD) or 0) for g in (r.json() or {}).get("groups") or [])
        return (release_users / all_users) * 100 if all_users > 0 else 0.0

    def _unhandled_errors(self, release: str, project: Optional[str], environment: Optional[str]) -> int:
        params = self._scope(
            [("query", f"release:{release} is:unresolved error.unhandled:true"), ("statsPeriod", STATS_PERIOD)],
            project,
            environment,
        )
        r = self._get(f"/organizations/{self.org}/issues/", params)
        if not r.ok:
            log.warn("issues_unavailable", status=r.status_code)
            return 0
        issues = r.json()
        return len(issues) if isinstance(issues, list) else 0

    def resolve_release_version(self, sha: str, project: Optional[str] = None) -> Optional[str]:
        """Release whose version contains the SHA; the first hit otherwise.

        Falls back to the SHA itself when the search is empty (releases named
        by raw SHA); None when the lookup fails.
        """
        short = sha[:7]
        params: List[tuple] = [("query", short)]
        if project:
            params.append(("project", project))
        r = self._get(f"/organizations/{self.org}/releases/", params)
        if not r.ok:
            return None
        releases = r.json()
        if isinstance(releases, list) and releases:
            for rel in releases:
                version = rel.get("version") or ""
                if sha in version or short in version:
                    return version
            return releases[0].get("version") or None
        return sha


def build_time_series(data: Dict[str, Any]) -> ReleaseHealthTimeSeries:
    intervals = data.get("intervals") or []
    sessions = [0.0] * len(intervals)
    crashed = [0.0] * len(intervals)
    for g in data.get("groups") or []:
        status = (g.get("by") or {}).get("session.status")
        for i, v in enumerate((g.get("series") or {}).get(SESSION_FIELD) or []):
            if i >= len(intervals):
                break
            sessions[i] += v or 0
            if status == "crashed":
                crashed[i] = v or 0
    return ReleaseHealthTimeSeries(
        intervals=intervals,
        crashFreeSessions=[_rate(t, c) for t, c in zip(sessions, crashed)],
        sessions=sessions,
        crashedSessions=crashed,
    )
