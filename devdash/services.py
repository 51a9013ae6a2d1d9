"""Explicitly constructed clients shared by the HTTP handlers."""
from dataclasses import dataclass
from typing import Optional

from .cache import TTLCache
from .changelog import ChangelogService
from .config import Settings, load_settings
from .github_client import GitHubClient
from .jira_client import JiraClient
from .llm import TextGenerator
from .sentry_client import SentryClient


@dataclass
class Services:
    settings: Settings
    cache: TTLCache
    github: GitHubClient
    jira: JiraClient
    sentry: SentryClient
    llm: Optional[TextGenerator]
    changelog: ChangelogService

    @classmethod
    def build(cls, settings: Settings, *, cache: Optional[TTLCache] = None) -> "Services":
        cache = cache if cache is not None else TTLCache.from_url(settings.cache.redis_url)
        github = GitHubClient.from_settings(settings.github)
        jira = JiraClient(settings.jira, cache=cache)
        llm = TextGenerator.from_settings(settings.anthropic)
        return cls(
            settings=settings,
            cache=cache,
            github=github,
            jira=jira,
            sentry=SentryClient(settings.sentry),
            llm=llm,
            changelog=ChangelogService(
                github,
                cache,
                jira=jira,
                llm=llm,
                ticket_prefix=settings.tickets.prefix,
                min_ticket_number=settings.tickets.min_number,
                mach_config_dir=settings.mach_config_dir,
            ),
        )


_services: Optional[Services] = None


def get_services() -> Services:
    """FastAPI dependency; built lazily from the environment on first use."""
    global _services
    if _services is None:
        _services = Services.build(load_settings())
    return _services
