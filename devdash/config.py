"""Settings for every integration, read from the environment.

Values come from, in order of precedence:
- process environment (``.env`` is loaded first for local dev)
- an optional YAML file named by ``DEVDASH_CONFIG``
- built-in defaults
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv


GITHUB_API = "https://api.github.com"
SENTRY_API = "https://sentry.io/api/0"
DEFAULT_JIRA_BASE_URL = "https://sportsdirect.atlassian.net"
DEFAULT_SENTRY_ORG = "frasers-group"
DEFAULT_MODEL = "claude-sonnet-4-20250514"


def _env_any(*names: str) -> Optional[str]:
    """Return first non-empty environment variable value from given names."""
    for n in names:
        v = os.getenv(n)
        if v and str(v).strip():
            return str(v).strip()
    return None


def _pick(env_name: str, section: Dict[str, Any], key: str, default: str = "") -> str:
    v = _env_any(env_name)
    if v is not None:
        return v
    fv = section.get(key)
    if fv is not None and str(fv).strip():
        return str(fv).strip()
    return default


def normalize_base_url(url: str) -> str:
    u = (url or "").strip().rstrip("/")
    if u and not u.startswith("http"):
        u = f"https://{u}"
    return u


@dataclass
class GitHubSettings:
    token: str = ""
    api_base: str = GITHUB_API

    @property
    def configured(self) -> bool:
        return bool(self.token)


@dataclass
class JiraSettings:
    base_url: str = DEFAULT_JIRA_BASE_URL
    email: str = ""
    api_token: str = ""
    # True only when JIRA_BASE_URL was set explicitly (settings screen reports it)
    base_url_explicit: bool = False

    @property
    def configured(self) -> bool:
        return bool(self.email and self.api_token)


@dataclass
class SentrySettings:
    auth_token: str = ""
    org: str = DEFAULT_SENTRY_ORG
    api_base: str = SENTRY_API
    org_explicit: bool = False

    @property
    def configured(self) -> bool:
        return bool(self.auth_token)


@dataclass
class HoneycombSettings:
    api_key: str = ""
    team: str = ""
    dataset: str = ""
    environment: str = ""
    api_endpoint: str = ""

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    @property
    def is_eu(self) -> bool:
        return "eu1" in (self.api_endpoint or "")


@dataclass
class AnthropicSettings:
    api_key: str = ""
    model: str = DEFAULT_MODEL
    max_tokens: int = 4096

    @property
    def configured(self) -> bool:
        return bool(self.api_key)


@dataclass
class CacheSettings:
    redis_url: str = ""


@dataclass
class TicketSettings:
    prefix: str = "PX"
    min_number: int = 10000


@dataclass
class Settings:
    github: GitHubSettings = field(default_factory=GitHubSettings)
    jira: JiraSettings = field(default_factory=JiraSettings)
    sentry: SentrySettings = field(default_factory=SentrySettings)
    honeycomb: HoneycombSettings = field(default_factory=HoneycombSettings)
    anthropic: AnthropicSettings = field(default_factory=AnthropicSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    tickets: TicketSettings = field(default_factory=TicketSettings)
    # Directory holding <env>-versions.yaml deployment pins
    mach_config_dir: str = "mach-config"


def load_yaml_config(path: Optional[Path]) -> Dict[str, Any]:
    """Read the optional YAML settings file. Missing file -> empty dict."""
    if path is None or not path.exists():
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid config file (expected a mapping): {path}")
    return data


def load_settings(config_path: Optional[Path] = None, *, dotenv: bool = True) -> Settings:
    """Build Settings from env (+ .env) and the optional YAML file."""
    if dotenv:
        load_dotenv()

    if config_path is None:
        p = _env_any("DEVDASH_CONFIG")
        config_path = Path(p) if p else None
    file_cfg = load_yaml_config(config_path)

    gh = file_cfg.get("github") or {}
    jira = file_cfg.get("jira") or {}
    sentry = file_cfg.get("sentry") or {}
    hc = file_cfg.get("honeycomb") or {}
    ai = file_cfg.get("anthropic") or {}
    cache = file_cfg.get("cache") or {}
    tickets = file_cfg.get("tickets") or {}

    jira_base = _pick("JIRA_BASE_URL", jira, "baseUrl")
    sentry_org = _pick("SENTRY_ORG", sentry, "org")

    return Settings(
        github=GitHubSettings(
            token=_pick("GITHUB_TOKEN", gh, "token"),
            api_base=_pick("GITHUB_API_URL", gh, "apiUrl", GITHUB_API).rstrip("/"),
        ),
        jira=JiraSettings(
            base_url=normalize_base_url(jira_base or DEFAULT_JIRA_BASE_URL),
            email=_pick("JIRA_EMAIL", jira, "email"),
            api_token=_pick("JIRA_API_TOKEN", jira, "apiToken"),
            base_url_explicit=bool(jira_base),
        ),
        sentry=SentrySettings(
            auth_token=_pick("SENTRY_AUTH_TOKEN", sentry, "authToken"),
            org=sentry_org or DEFAULT_SENTRY_ORG,
            org_explicit=bool(sentry_org),
        ),
        honeycomb=HoneycombSettings(
            api_key=_pick("HONEYCOMB_API_KEY", hc, "apiKey"),
            team=_pick("HONEYCOMB_TEAM", hc, "team"),
            dataset=_pick("HONEYCOMB_DATASET", hc, "dataset"),
            environment=_pick("HONEYCOMB_ENVIRONMENT", hc, "environment"),
            api_endpoint=_pick("HONEYCOMB_API_ENDPOINT", hc, "apiEndpoint"),
        ),
        anthropic=AnthropicSettings(
            api_key=_pick("ANTHROPIC_API_KEY", ai, "apiKey"),
            model=_pick("ANTHROPIC_MODEL", ai, "model", DEFAULT_MODEL),
            max_tokens=int(_pick("ANTHROPIC_MAX_TOKENS", ai, "maxTokens", "4096")),
        ),
        cache=CacheSettings(redis_url=_pick("REDIS_URL", cache, "redisUrl")),
        tickets=TicketSettings(
            prefix=_pick("TICKET_PREFIX", tickets, "prefix", "PX").upper(),
            min_number=int(_pick("TICKET_MIN_NUMBER", tickets, "minNumber", "10000")),
        ),
        mach_config_dir=_pick("MACH_CONFIG_DIR", file_cfg, "machConfigDir", "mach-config").strip("/"),
    )
