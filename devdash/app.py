import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from .errors import DevdashError, NotConfiguredError, ValidationError, parse_repo
from .honeycomb import HoneycombConfig, generate_component_queries, generate_deployment_queries
from .logging_utils import logger
from .models import (
    ChangelogContext,
    CommitContext,
    JiraStatus,
    MachConfigDeployment,
    ReleaseHealthMetrics,
    SummaryResponse,
)
from .services import Services, get_services
from .settings_routes import router as settings_router


APP_NAME = "devdash-backend"

log = logger.child("api")


class SummarizeRequest(BaseModel):
    sha: Optional[str] = None
    repo: Optional[str] = None
    baseRef: Optional[str] = None
    componentPath: Optional[str] = None
    environment: Optional[str] = None


app = FastAPI(title=APP_NAME)

# CORS for the local dashboard UI
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(settings_router)


# ---------------------------------------------------------------------------
# Error rendering: every failure is {"error": "<message>"}
# ---------------------------------------------------------------------------


@app.exception_handler(DevdashError)
async def _devdash_error(request: Request, exc: DevdashError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("request_failed", path=request.url.path, status=exc.status_code, error=exc.message)
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


@app.exception_handler(StarletteHTTPException)
async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def _request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse({"error": "Invalid request body"}, status_code=400)


@app.exception_handler(Exception)
async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    log.error("unhandled_error", path=request.url.path, error=f"{exc.__class__.__name__}: {exc}")
    return JSONResponse({"error": str(exc) or "Internal server error"}, status_code=500)


def _require(**params: Optional[str]) -> None:
    missing = [k for k, v in params.items() if not v]
    if missing:
        raise ValidationError(f"Missing required parameters: {', '.join(missing)}")


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@app.get("/api/health")
def health(services: Services = Depends(get_services)) -> Dict[str, Any]:
    s = services.settings
    return {
        "status": "healthy",
        "service": APP_NAME,
        "timestamp": datetime.now(tz=timezone.utc).isoformat(),
        "environment": {
            "github": s.github.configured,
            "anthropic": s.anthropic.configured,
            "redis": bool(s.cache.redis_url),
            "sentry": s.sentry.configured,
        },
    }


# ---------------------------------------------------------------------------
# Changelog / commits / deployments
# ---------------------------------------------------------------------------


@app.get("/api/changelog", response_model=ChangelogContext, response_model_exclude_none=True)
def changelog(
    repo: Optional[str] = None,
    from_: Optional[str] = Query(None, alias="from"),
    to: Optional[str] = None,
    services: Services = Depends(get_services),
) -> ChangelogContext:
    _require(repo=repo, **{"from": from_}, to=to)
    owner, name = parse_repo(repo)
    return services.changelog.changelog_with_summary(owner, name, from_, to)


@app.get("/api/commit/{sha}", response_model=CommitContext)
def commit(sha: str, repo: Optional[str] = None, services: Services = Depends(get_services)) -> CommitContext:
    if not repo:
        raise ValidationError("Missing repo parameter (format: owner/repo)")
    owner, name = parse_repo(repo)
    return services.changelog.commit_context(owner, name, sha)


@app.get("/api/mach-config", response_model=MachConfigDeployment, response_model_exclude_none=True)
def mach_config(
    repo: Optional[str] = None,
    sha: Optional[str] = None,
    services: Services = Depends(get_services),
) -> MachConfigDeployment:
    _require(repo=repo, sha=sha)
    owner, name = parse_repo(repo)
    return services.changelog.mach_config_deployment(owner, name, sha)


@app.get("/api/mach-config/recent")
def mach_config_recent(repo: Optional[str] = None, services: Services = Depends(get_services)) -> Dict[str, Any]:
    _require(repo=repo)
    owner, name = parse_repo(repo)
    deployments = services.changelog.recent_deployments(owner, name)
    return {"deployments": [d.model_dump() for d in deployments]}


@app.post("/api/summarize", response_model=SummaryResponse)
def summarize(req: SummarizeRequest, services: Services = Depends(get_services)) -> SummaryResponse:
    if not req.sha:
        raise ValidationError("Commit SHA is required")
    if not req.repo:
        raise ValidationError("Repository is required (format: owner/repo)")
    owner, name = parse_repo(req.repo)
    return services.changelog.release_summaries(
        owner,
        name,
        req.sha,
        base_ref=req.baseRef,
        component_path=req.componentPath,
        environment=req.environment,
    )


# ---------------------------------------------------------------------------
# Observability / release health / Jira
# ---------------------------------------------------------------------------


@app.get("/api/honeycomb")
def honeycomb(
    deploymentDate: Optional[str] = None,
    componentName: Optional[str] = None,
    windowHours: Optional[str] = None,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    _require(deploymentDate=deploymentDate)

    hc = services.settings.honeycomb
    if not hc.configured:
        return {"error": "Honeycomb is not configured", "configured": False, "queries": []}

    config = HoneycombConfig.from_settings(hc)
    if config is None:
        return {
            "error": "Honeycomb team and dataset must be configured via HONEYCOMB_TEAM and HONEYCOMB_DATASET",
            "configured": False,
            "queries": [],
        }

    try:
        hours = float(windowHours) if windowHours else 1
    except ValueError:
        raise ValidationError(f"Invalid windowHours: {windowHours!r}")
    if not math.isfinite(hours) or hours <= 0:
        raise ValidationError(f"Invalid windowHours: {windowHours!r}")

    if componentName:
        queries = generate_component_queries(config, componentName, deploymentDate, window_hours=hours, is_eu=hc.is_eu)
    else:
        queries = generate_deployment_queries(config, deploymentDate, window_hours=hours, is_eu=hc.is_eu)

    return {
        "configured": True,
        "queries": [q.model_dump() for q in queries],
        "config": {
            "team": config.team,
            "dataset": config.dataset,
            "environment": config.environment,
            "isEU": hc.is_eu,
        },
    }


@app.get("/api/sentry/release-health", response_model=ReleaseHealthMetrics)
def release_health(
    release: Optional[str] = None,
    sha: Optional[str] = None,
    project: Optional[str] = None,
    environment: Optional[str] = None,
    services: Services = Depends(get_services),
) -> ReleaseHealthMetrics:
    if not release and not sha:
        raise ValidationError("Missing required parameter: release or sha")
    if not services.settings.sentry.configured:
        raise NotConfiguredError("Sentry integration not configured. Set SENTRY_AUTH_TOKEN environment variable.")

    version = release
    if not version:
        version = services.sentry.resolve_release_version(sha, project)
        if not version:
            raise DevdashError(f"Could not find Sentry release for SHA: {sha}", status_code=404)

    return services.sentry.fetch_release_health(version, project, environment or "production")


@app.get("/api/jira/status", response_model=JiraStatus, response_model_exclude_none=True)
def jira_status(services: Services = Depends(get_services)) -> JiraStatus:
    return services.jira.status()


@app.post("/api/jira/status", response_model=JiraStatus, response_model_exclude_none=True)
def jira_reset(services: Services = Depends(get_services)) -> JiraStatus:
    services.jira.reset()
    return services.jira.status()
