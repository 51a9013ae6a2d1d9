from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from requests.structures import CaseInsensitiveDict

from devdash.app import app
from devdash.cache import MemoryBackend, TTLCache
from devdash.changelog import ChangelogService
from devdash.config import AnthropicSettings, GitHubSettings, HoneycombSettings, JiraSettings, SentrySettings, Settings
from devdash.github_client import GitHubClient
from devdash.jira_client import JiraClient
from devdash.llm import TextGenerator
from devdash.sentry_client import SentryClient
from devdash.services import Services, get_services


class FakeResponse:
    def __init__(self, status_code: int = 200, data: Any = None, headers: Optional[Dict[str, str]] = None, text: Optional[str] = None):
        self.status_code = status_code
        self._data = data
        self.headers = CaseInsensitiveDict(headers or {"content-type": "application/json"})
        if text is not None:
            self.text = text
        else:
            self.text = json.dumps(data) if data is not None else ""
        self.content = self.text.encode()

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self) -> Any:
        if self._data is None:
            return json.loads(self.text)
        return self._data


class FakeSession:
    """Routes GET calls by URL fragment and records them.

    A fragment the URL ends with beats one it merely contains; ties go to the
    longest fragment.
    """

    def __init__(self, routes: Optional[Dict[str, Any]] = None):
        self.routes: Dict[str, Any] = dict(routes or {})
        self.calls: List[Dict[str, Any]] = []

    def add(self, fragment: str, response: Any) -> None:
        self.routes[fragment] = response

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"url": url, **kwargs})
        matches = [k for k in self.routes if k in url]
        if not matches:
            return FakeResponse(404, {"message": "Not Found"})
        suffixes = [k for k in matches if url.endswith(k)]
        resp = self.routes[max(suffixes or matches, key=len)]
        if isinstance(resp, Exception):
            raise resp
        return resp

    def urls(self) -> List[str]:
        return [c["url"] for c in self.calls]


class FakeMessages:
    def __init__(self, text: str = "generated", error: Optional[Exception] = None):
        self.text = text
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(content=[SimpleNamespace(type="text", text=self.text)])


class FakeAnthropic:
    def __init__(self, text: str = "generated", error: Optional[Exception] = None):
        self.messages = FakeMessages(text, error)


class FailingBackend:
    def get(self, key):
        raise ConnectionError("redis down")

    def set(self, key, value, ttl_ms):
        raise ConnectionError("redis down")

    def clear(self):
        raise ConnectionError("redis down")


class Clock:
    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def cache(clock):
    return TTLCache(memory=MemoryBackend(clock=clock))


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def make_response():
    return FakeResponse


@pytest.fixture
def fake_anthropic():
    return FakeAnthropic


@pytest.fixture
def failing_backend():
    return FailingBackend()


# ----------------------------------------------------------------------
# GitHub payload builders
# ----------------------------------------------------------------------


def gh_commit(sha: str, message: str, *, login: Optional[str] = "alice", name: str = "Alice", files: Optional[List[Dict[str, Any]]] = None, date: str = "2024-05-01T10:00:00Z") -> Dict[str, Any]:
    return {
        "sha": sha,
        "html_url": f"https://github.com/acme/shop/commit/{sha}",
        "author": {"login": login, "avatar_url": "https://avatars/x"} if login else None,
        "commit": {"message": message, "author": {"name": name, "date": date}},
        "stats": {"additions": 3, "deletions": 1, "total": 4},
        "files": files or [],
        "parents": [{"sha": "p" * 40}],
    }


def gh_file(filename: str, status: str = "modified", additions: int = 1, deletions: int = 0, patch: Optional[str] = "@@ -1 +1 @@") -> Dict[str, Any]:
    return {"filename": filename, "status": status, "additions": additions, "deletions": deletions, "patch": patch}


@pytest.fixture
def github_payloads():
    return SimpleNamespace(commit=gh_commit, file=gh_file)


# ----------------------------------------------------------------------
# Wired services for the HTTP layer
# ----------------------------------------------------------------------


def build_services(
    *,
    github_session=None,
    jira_session=None,
    sentry_session=None,
    llm=True,
    honeycomb=None,
    sentry_token="sntrys_x",
):
    settings = Settings(
        github=GitHubSettings(token="ghp_x"),
        jira=JiraSettings(email="dev@acme.test", api_token="tok", base_url_explicit=True),
        sentry=SentrySettings(auth_token=sentry_token, org="acme", org_explicit=True),
        honeycomb=honeycomb or HoneycombSettings(),
        anthropic=AnthropicSettings(api_key="sk-ant" if llm else ""),
    )
    cache = TTLCache()
    github = GitHubClient("ghp_x", session=github_session or FakeSession())
    jira = JiraClient(settings.jira, cache=cache, session=jira_session or FakeSession())
    generator = TextGenerator(FakeAnthropic("notes")) if llm else None
    return Services(
        settings=settings,
        cache=cache,
        github=github,
        jira=jira,
        sentry=SentryClient(settings.sentry, session=sentry_session or FakeSession()),
        llm=generator,
        changelog=ChangelogService(github, cache, jira=jira, llm=generator),
    )


@pytest.fixture
def use_services():
    """Install services as the app dependency; returns a TestClient factory."""

    def _use(services, **client_kwargs):
        app.dependency_overrides[get_services] = lambda: services
        return TestClient(app, **client_kwargs)

    yield _use
    app.dependency_overrides.clear()
