"""
Settings API: integration status and read-only connection tests.
Credentials come from the server environment only; tokens are never returned or logged.
"""

from typing import Any, Dict, List, Optional

import requests
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from .config import Settings
from .errors import UpstreamError, ValidationError
from .github_client import safe_json
from .logging_utils import logger
from .models import ConnectionTestResult, IntegrationConfig
from .services import Services, get_services

router = APIRouter(prefix="/api/settings", tags=["settings"])

HONEYCOMB_AUTH_URL = "https://api.honeycomb.io/1/auth"

log = logger.child("settings")


class TestIntegrationRequest(BaseModel):
    integration: Optional[str] = None


def _ok(message: str, details: Optional[Dict[str, Any]] = None) -> ConnectionTestResult:
    return ConnectionTestResult(success=True, message=message, details=details)


def _fail(message: str) -> ConnectionTestResult:
    return ConnectionTestResult(success=False, message=message)


def _mask_token(t: str) -> str:
    if not t or len(t) < 8:
        return "***"
    return t[:4] + "…" + t[-4:]


# ---------------------------------------------------------------------------
# Integration status
# ---------------------------------------------------------------------------


def integration_status(s: Settings) -> List[IntegrationConfig]:
    gh, sentry, jira, hc = s.github, s.sentry, s.jira, s.honeycomb
    sentry_ok = sentry.configured and sentry.org_explicit
    jira_ok = jira.configured and jira.base_url_explicit
    return [
        IntegrationConfig(
            id="github",
            name="GitHub",
            description="Access commit details, PRs, and deployment status from GitHub Actions",
            status="connected" if gh.configured else "not_configured",
            configuredVia="env" if gh.configured else None,
            details="Token configured via GITHUB_TOKEN" if gh.configured else None,
        ),
        IntegrationConfig(
            id="sentry",
            name="Sentry",
            description="Correlate deployments with error rates and issue tracking",
            status="connected" if sentry_ok else "not_configured",
            configuredVia="env" if sentry.configured else None,
            details=f"Organization: {sentry.org}" if sentry_ok else None,
        ),
        IntegrationConfig(
            id="jira",
            name="Jira",
            description=f"Enrich {s.tickets.prefix}-XXX ticket references with status, assignee, and details",
            status="connected" if jira_ok else "not_configured",
            configuredVia="env" if jira.api_token else None,
            details=f"Instance: {jira.base_url}" if jira.api_token and jira.base_url_explicit else None,
        ),
        IntegrationConfig(
            id="honeycomb",
            name="Honeycomb",
            description="Link deployments to observability metrics and performance data",
            status="connected" if hc.configured else "not_configured",
            configuredVia="env" if hc.configured else None,
            details="API key configured" if hc.configured else None,
        ),
    ]


@router.get("")
def get_settings(services: Services = Depends(get_services)) -> Dict[str, Any]:
    return {"integrations": [i.model_dump() for i in integration_status(services.settings)]}


# ---------------------------------------------------------------------------
# Connection tests (read-only)
# ---------------------------------------------------------------------------


def test_github(services: Services) -> ConnectionTestResult:
    if not services.settings.github.configured:
        return _fail("GITHUB_TOKEN environment variable not set")
    try:
        r = services.github.get_user()
    except UpstreamError as e:
        return _fail(e.message or "Failed to connect to GitHub")
    body = safe_json(r) or {}
    if not r.ok:
        return _fail(body.get("message") or f"GitHub API returned {r.status_code}")
    return _ok(
        f"Connected as {body.get('login')}",
        {
            "login": body.get("login"),
            "name": body.get("name"),
            "rateLimit": r.headers.get("x-ratelimit-remaining"),
        },
    )


def test_sentry(services: Services) -> ConnectionTestResult:
    s = services.settings.sentry
    if not s.configured:
        return _fail("SENTRY_AUTH_TOKEN environment variable not set")
    if not s.org_explicit:
        return _fail("SENTRY_ORG environment variable not set")
    try:
        r = services.sentry.get_organization()
    except UpstreamError as e:
        return _fail(e.message or "Failed to connect to Sentry")
    body = safe_json(r) or {}
    if not r.ok:
        return _fail(body.get("detail") or f"Sentry API returned {r.status_code}")
    return _ok(f"Connected to organization: {body.get('name')}", {"slug": body.get("slug"), "name": body.get("name")})


def test_jira(services: Services) -> ConnectionTestResult:
    s = services.settings.jira
    missing = []
    if not s.api_token:
        missing.append("JIRA_API_TOKEN")
    if not s.base_url_explicit:
        missing.append("JIRA_BASE_URL")
    if not s.email:
        missing.append("JIRA_EMAIL")
    if missing:
        return _fail(f"Missing environment variables: {', '.join(missing)}")

    url = f"{services.jira.base_url}/rest/api/3/myself"
    try:
        r = services.jira.session.get(
            url,
            auth=(s.email, s.api_token),
            headers={"Accept": "application/json"},
            timeout=15,
        )
    except requests.RequestException as e:
        log.warn("jira_test_failed", masked=_mask_token(s.api_token), error=e.__class__.__name__)
        return _fail(str(e) or "Failed to connect to Jira")
    body = safe_json(r) or {}
    if not r.ok:
        return _fail(body.get("message") or f"Jira API returned {r.status_code}")
    return _ok(
        f"Connected as {body.get('displayName')}",
        {
            "accountId": body.get("accountId"),
            "displayName": body.get("displayName"),
            "emailAddress": body.get("emailAddress"),
        },
    )


def test_honeycomb(services: Services) -> ConnectionTestResult:
    key = services.settings.honeycomb.api_key
    if not key:
        return _fail("HONEYCOMB_API_KEY environment variable not set")
    try:
        r = requests.get(HONEYCOMB_AUTH_URL, headers={"X-Honeycomb-Team": key}, timeout=15)
    except requests.RequestException as e:
        log.warn("honeycomb_test_failed", masked=_mask_token(key), error=e.__class__.__name__)
        return _fail(str(e) or "Failed to connect to Honeycomb")
    if not r.ok:
        return _fail(f"Honeycomb API returned {r.status_code}")
    body = safe_json(r) or {}
    team = (body.get("team") or {}).get("name")
    return _ok(
        f"Connected to team: {team or 'Unknown'}",
        {"team": team, "environment": (body.get("environment") or {}).get("name")},
    )


CONNECTION_TESTS = {
    "github": test_github,
    "sentry": test_sentry,
    "jira": test_jira,
    "honeycomb": test_honeycomb,
}


@router.post("/test", response_model=ConnectionTestResult, response_model_exclude_none=True)
def test_connection(req: TestIntegrationRequest, services: Services = Depends(get_services)) -> ConnectionTestResult:
    """Run one read-only connection test against the configured credentials."""
    if not req.integration:
        raise ValidationError("Missing integration parameter")
    check = CONNECTION_TESTS.get(req.integration)
    if check is None:
        raise ValidationError(f"Unknown integration: {req.integration}")
    result = check(services)
    log.info("connection_tested", integration=req.integration, success=result.success)
    return result
