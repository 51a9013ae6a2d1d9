"""Changelog and deployment aggregation.

Composes GitHub data, the version-change parser, ticket extraction, Jira
details and generated summaries into the records served by the API. Every
composed result goes through the TTL cache; summaries are best-effort and
are simply absent when generation fails.
"""
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .cache import CacheTTL, TTLCache
from .errors import NotConfiguredError, UpstreamError, ValidationError
from .github_client import GitHubClient
from .jira_client import JiraClient, format_tickets_for_ai
from .llm import TextGenerator
from .logging_utils import logger
from . import prompts
from .models import (
    ChangedFile,
    ChangelogCommit,
    ChangelogContext,
    CommitContext,
    CommitInfo,
    ComponentVersionChange,
    DeploymentInfo,
    JiraTicket,
    MachConfigDeployment,
    PullRequestInfo,
    RecentDeployment,
    ReleaseSummaries,
    SummaryResponse,
)
from .tickets import DEFAULT_MIN_NUMBER, DEFAULT_PREFIX, extract_tickets, extract_tickets_from_messages
from .version_changes import environment_from_filename, is_versions_file, parse_version_changes


log = logger.child("changelog")

MAX_WORKERS = 8
RECENT_DEPLOYMENTS_LIMIT = 20


def short_sha(sha: str) -> str:
    return (sha or "")[:7]


def first_line(message: str) -> str:
    return (message or "").split("\n")[0]


def commit_author(c: Dict[str, Any]) -> str:
    """GitHub login when the commit is linked to an account, else the git author name."""
    return ((c.get("author") or {}).get("login")) or (((c.get("commit") or {}).get("author") or {}).get("name")) or ""


def map_workflow_status(status: str, conclusion: Optional[str]) -> str:
    if status == "completed":
        return "success" if conclusion == "success" else "failure"
    if status in ("in_progress", "queued"):
        return status
    return "pending"


def _unique(items: List[str]) -> List[str]:
    seen: Dict[str, None] = {}
    for i in items:
        seen.setdefault(i, None)
    return list(seen)


def _sorted_tickets(keys: List[str]) -> List[str]:
    return sorted(set(keys), key=lambda k: int(k.rsplit("-", 1)[1]))


def _sum_stats(files: List[Dict[str, Any]]) -> Dict[str, int]:
    return {
        "additions": sum(f.get("additions") or 0 for f in files),
        "deletions": sum(f.get("deletions") or 0 for f in files),
        "total": len(files),
    }


class ChangelogService:
    def __init__(
        self,
        github: GitHubClient,
        cache: TTLCache,
        *,
        jira: Optional[JiraClient] = None,
        llm: Optional[TextGenerator] = None,
        ticket_prefix: str = DEFAULT_PREFIX,
        min_ticket_number: int = DEFAULT_MIN_NUMBER,
        mach_config_dir: str = "mach-config",
    ):
        self.github = github
        self.cache = cache
        self.jira = jira
        self.llm = llm
        self.ticket_prefix = ticket_prefix
        self.min_ticket_number = min_ticket_number
        self.mach_config_dir = mach_config_dir

    # ------------------------------------------------------------------
    # Commit ranges
    # ------------------------------------------------------------------

    def _to_changelog_commit(self, c: Dict[str, Any]) -> ChangelogCommit:
        message = ((c.get("commit") or {}).get("message")) or ""
        return ChangelogCommit(
            sha=c.get("sha") or "",
            shortSha=short_sha(c.get("sha") or ""),
            message=first_line(message),
            author=commit_author(c),
            date=(((c.get("commit") or {}).get("author") or {}).get("date")) or "",
            ticketRefs=extract_tickets(message, self.ticket_prefix),
            url=c.get("html_url") or "",
        )

    def _build_changelog(
        self,
        base: str,
        head: str,
        commits: List[ChangelogCommit],
        total: int,
        compare_url: str,
        files: List[ChangedFile],
    ) -> ChangelogContext:
        return ChangelogContext(
            fromSha=short_sha(base),
            toSha=short_sha(head),
            commits=commits,
            totalCommits=total,
            allTickets=_sorted_tickets([t for c in commits for t in c.ticketRefs]),
            authors=_unique([c.author for c in commits]),
            compareUrl=compare_url,
            files=files,
        )

    def compare(self, owner: str, repo: str, base: str, head: str) -> ChangelogContext:
        """Every commit and file between two refs."""
        cache_key = f"changelog:{owner}/{repo}:{base}...{head}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return ChangelogContext.model_validate(cached)

        data = self.github.compare(owner, repo, base, head)
        commits = [self._to_changelog_commit(c) for c in data.get("commits") or []]
        files = [ChangedFile.from_github(f) for f in data.get("files") or []]
        result = self._build_changelog(
            base,
            head,
            commits,
            int(data.get("total_commits") or len(commits)),
            data.get("html_url") or "",
            files,
        )
        self.cache.set(cache_key, result.model_dump(), CacheTTL.DIFF)
        return result

    def _commit_touches_path(self, owner: str, repo: str, sha: str, path: str) -> bool:
        detail = self.github.try_get_commit(owner, repo, sha)
        if not detail:
            return False
        return any((f.get("filename") or "").startswith(path) for f in detail.get("files") or [])

    def compare_scoped(self, owner: str, repo: str, base: str, head: str, path: str) -> ChangelogContext:
        """Comparison restricted to files under ``path`` and the commits that touch them.

        The compare payload does not say which commit changed which file, so
        each candidate commit is fetched individually; a failed fetch drops it.
        """
        cache_key = f"changelog:{owner}/{repo}:{base}...{head}:{path}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return ChangelogContext.model_validate(cached)

        data = self.github.compare(owner, repo, base, head)
        files = [
            ChangedFile.from_github(f)
            for f in data.get("files") or []
            if (f.get("filename") or "").startswith(path)
        ]
        raw_commits = data.get("commits") or []
        if raw_commits:
            with ThreadPoolExecutor(max_workers=min(MAX_WORKERS, len(raw_commits))) as pool:
                touches = list(
                    pool.map(lambda c: self._commit_touches_path(owner, repo, c.get("sha") or "", path), raw_commits)
                )
        else:
            touches = []
        commits = [self._to_changelog_commit(c) for c, hit in zip(raw_commits, touches) if hit]

        compare_url = data.get("html_url") or ""
        result = self._build_changelog(
            base,
            head,
            commits,
            len(commits),
            f"{compare_url}?diff=split&w=1" if compare_url else "",
            files,
        )
        log.debug("scoped_compare", repo=f"{owner}/{repo}", path=path, candidates=len(raw_commits), kept=len(commits))
        self.cache.set(cache_key, result.model_dump(), CacheTTL.PATH_COMMITS)
        return result

    def changelog_with_summary(self, owner: str, repo: str, base: str, head: str) -> ChangelogContext:
        changelog = self.compare(owner, repo, base, head)
        if not changelog.files or self.llm is None:
            return changelog

        cache_key = f"ai:changelog:{owner}/{repo}:{base}:{head}"
        summary = self.cache.get(cache_key)
        if not summary:
            summary = self.llm.try_generate(prompts.changelog_prompt(changelog), label="changelog")
            if summary:
                self.cache.set(cache_key, summary, CacheTTL.AI_CHANGELOG)
        if summary:
            changelog = changelog.model_copy(update={"summary": summary})
        return changelog

    # ------------------------------------------------------------------
    # Single commit
    # ------------------------------------------------------------------

    def commit_context(self, owner: str, repo: str, sha: str) -> CommitContext:
        """Commit + the PR that introduced it + its latest workflow run."""
        data = self.github.get_commit(owner, repo, sha)

        with ThreadPoolExecutor(max_workers=2) as pool:
            pr_future = pool.submit(self.github.find_pr_for_commit, owner, repo, sha)
            run_future = pool.submit(self.github.get_workflow_run, owner, repo, sha)
            pr = pr_future.result()
            run = run_future.result()

        message = ((data.get("commit") or {}).get("message")) or ""
        commit = CommitInfo(
            sha=short_sha(data.get("sha") or sha),
            message=first_line(message),
            author=commit_author(data),
            date=(((data.get("commit") or {}).get("author") or {}).get("date")) or "",
            ticketRefs=extract_tickets(message, self.ticket_prefix),
        )
        pr_info = None
        if pr:
            pr_info = PullRequestInfo(
                number=pr.get("number") or 0,
                title=pr.get("title") or "",
                mergedBy=((pr.get("merged_by") or {}).get("login")) or "unknown",
                url=pr.get("html_url") or "",
            )
        deployment = None
        if run:
            deployment = DeploymentInfo(
                status=map_workflow_status(run.get("status") or "", run.get("conclusion")),
                environment="production",
                url=run.get("html_url") or "",
                completedAt=run.get("updated_at") or "",
                workflowName=run.get("name") or "",
            )
        return CommitContext(commit=commit, pr=pr_info, deployment=deployment)

    # ------------------------------------------------------------------
    # Deployments (versions-file bumps)
    # ------------------------------------------------------------------

    def _component_changelog(self, owner: str, repo: str, change: ComponentVersionChange) -> ComponentVersionChange:
        try:
            changelog = self.compare_scoped(owner, repo, change.fromVersion, change.toVersion, change.componentPath)
        except UpstreamError as e:
            log.warn("component_changelog_failed", component=change.componentName, error=e.message)
            return change

        if changelog.files and self.llm is not None:
            cache_key = f"ai:machconfig:{owner}/{repo}:{change.componentName}:{change.fromVersion}:{change.toVersion}"
            summary = self.cache.get(cache_key)
            if not summary:
                summary = self.llm.try_generate(
                    prompts.component_prompt(change, changelog),
                    label=f"component:{change.componentName}",
                    max_tokens=800,
                )
                if summary:
                    self.cache.set(cache_key, summary, CacheTTL.AI_MACHCONFIG)
            if summary:
                changelog = changelog.model_copy(update={"summary": summary})
        return change.with_changelog(changelog)

    def mach_config_deployment(self, owner: str, repo: str, sha: str) -> MachConfigDeployment:
        """Component version bumps in a deployment commit, each with its scoped changelog."""
        data = self.github.get_commit(owner, repo, sha)
        version_files = [
            ChangedFile.from_github(f)
            for f in data.get("files") or []
            if is_versions_file(f.get("filename") or "", self.mach_config_dir) and f.get("patch")
        ]
        if not version_files:
            raise ValidationError("No mach-config version changes found in this commit")

        changes: List[ComponentVersionChange] = []
        for f in version_files:
            changes.extend(parse_version_changes(f.patch, f.filename))
        if not changes:
            raise ValidationError("No component version changes detected in the mach-config files")

        with ThreadPoolExecutor(max_workers=min(MAX_WORKERS, len(changes))) as pool:
            components = list(pool.map(lambda c: self._component_changelog(owner, repo, c), changes))

        message = ((data.get("commit") or {}).get("message")) or ""
        return MachConfigDeployment(
            commitSha=short_sha(sha),
            commitMessage=first_line(message),
            author=commit_author(data),
            date=(((data.get("commit") or {}).get("author") or {}).get("date")) or "",
            components=components,
        )

    def recent_deployments(self, owner: str, repo: str, limit: int = RECENT_DEPLOYMENTS_LIMIT) -> List[RecentDeployment]:
        """Latest commits that changed a versions file, newest first."""
        cache_key = f"deployments:{owner}/{repo}:{limit}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return [RecentDeployment.model_validate(d) for d in cached]

        out: List[RecentDeployment] = []
        for c in self.github.list_commits(owner, repo, path=self.mach_config_dir, per_page=100):
            if len(out) >= limit:
                break
            detail = self.github.try_get_commit(owner, repo, c.get("sha") or "")
            if not detail:
                continue
            envs = [
                environment_from_filename(f.get("filename") or "")
                for f in detail.get("files") or []
                if is_versions_file(f.get("filename") or "", self.mach_config_dir)
            ]
            if not envs:
                continue
            out.append(
                RecentDeployment(
                    sha=c.get("sha") or "",
                    shortSha=short_sha(c.get("sha") or ""),
                    message=first_line(((c.get("commit") or {}).get("message")) or ""),
                    author=commit_author(c),
                    date=(((c.get("commit") or {}).get("author") or {}).get("date")) or "",
                    environments=_unique(envs),
                )
            )
        self.cache.set(cache_key, [d.model_dump() for d in out], CacheTTL.PATH_COMMITS)
        return out

    # ------------------------------------------------------------------
    # Release summaries
    # ------------------------------------------------------------------

    def commit_details(self, owner: str, repo: str, sha: str) -> Dict[str, Any]:
        cache_key = f"commit:{owner}/{repo}:{sha}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        data = self.github.get_commit(owner, repo, sha)
        commit = data.get("commit") or {}
        author = commit.get("author") or {}
        details = {
            "sha": data.get("sha") or sha,
            "message": commit.get("message") or "",
            "author": {
                "name": author.get("name") or "",
                "login": (data.get("author") or {}).get("login"),
                "avatarUrl": (data.get("author") or {}).get("avatar_url"),
                "date": author.get("date") or "",
            },
            "url": data.get("html_url") or "",
            "stats": data.get("stats") or {"additions": 0, "deletions": 0, "total": 0},
            "files": [ChangedFile.from_github(f).model_dump() for f in data.get("files") or []],
            "parents": [{"sha": p.get("sha")} for p in data.get("parents") or []],
        }
        self.cache.set(cache_key, details, CacheTTL.COMMIT)
        return details

    def commit_range(
        self, owner: str, repo: str, base: str, head: str, path: Optional[str] = None
    ) -> Dict[str, Any]:
        """Range summary used for release notes; tickets use the min-number filter."""
        cache_key = f"compare:{owner}/{repo}:{base}...{head}" + (f":{path}" if path else "")
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        data = self.github.compare(owner, repo, base, head)
        files = [
            {k: v for k, v in ChangedFile.from_github(f).model_dump().items() if k != "patch"}
            for f in data.get("files") or []
        ]
        raw_commits = data.get("commits") or []
        if path:
            files = [f for f in files if f["filename"].startswith(path)]
            raw_commits = [c for c in raw_commits if self._commit_touches_path(owner, repo, c.get("sha") or "", path)]

        full_messages = [((c.get("commit") or {}).get("message")) or "" for c in raw_commits]
        result = {
            "baseCommit": base,
            "headCommit": head,
            "commits": [
                {
                    "sha": c.get("sha") or "",
                    "message": first_line(m),
                    "author": commit_author(c),
                    "date": (((c.get("commit") or {}).get("author") or {}).get("date")) or "",
                }
                for c, m in zip(raw_commits, full_messages)
            ],
            "files": files,
            "stats": _sum_stats(files),
            "tickets": extract_tickets_from_messages(full_messages, self.ticket_prefix, self.min_ticket_number),
        }
        self.cache.set(cache_key, result, CacheTTL.DIFF)
        return result

    def _ticket_details(self, tickets: List[str]) -> List[JiraTicket]:
        if not tickets or self.jira is None:
            return []
        if self.jira.should_attempt_connection():
            return self.jira.fetch_tickets(tickets)
        return self.jira.unavailable_tickets(tickets)

    def release_summaries(
        self,
        owner: str,
        repo: str,
        sha: str,
        *,
        base_ref: Optional[str] = None,
        component_path: Optional[str] = None,
        environment: Optional[str] = None,
    ) -> SummaryResponse:
        """Business, developer and devops release notes for a commit or range."""
        cache_key = f"summary:{owner}/{repo}:{sha}:{base_ref or 'single'}:{component_path or 'all'}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return SummaryResponse.model_validate({**cached, "cached": True})

        if self.llm is None:
            raise NotConfiguredError("ANTHROPIC_API_KEY environment variable is not set")

        path_context = f"\nFiltered to path: {component_path}" if component_path else ""
        if base_ref:
            commit_data = self.commit_range(owner, repo, base_ref, sha, component_path)
            context = prompts.range_context(owner, repo, base_ref, sha, commit_data, path_context)
        else:
            commit = self.commit_details(owner, repo, sha)
            files = commit["files"]
            if component_path:
                files = [f for f in files if f["filename"].startswith(component_path)]
            commit_data = {
                **commit,
                "files": files,
                "stats": _sum_stats(files) if component_path else commit["stats"],
                "tickets": extract_tickets_from_messages([commit["message"]], self.ticket_prefix, self.min_ticket_number),
            }
            context = prompts.single_commit_context(owner, repo, commit_data, path_context)

        ticket_details = self._ticket_details(commit_data.get("tickets") or [])
        if ticket_details:
            context += format_tickets_for_ai(ticket_details)
        jira_status = self.jira.status() if self.jira is not None else None

        release_date = datetime.now(timezone.utc).strftime("%A %d %B, %H:%M UTC")
        developer_context = prompts.developer_commit_context(commit_data, sha, bool(base_ref))
        variants = {
            "business": dict(
                prompt=f"Generate business-focused release notes for Product Owners:\n{context}",
                system=prompts.business_system_prompt(environment or "Unknown", release_date, self.ticket_prefix),
            ),
            "developer": dict(
                prompt=f"Generate developer-focused technical release notes with per-commit breakdown:\n{context}\n{developer_context}",
                system=prompts.developer_system_prompt(self.ticket_prefix),
            ),
            "devops": dict(
                prompt=f"Generate DevOps-focused deployment notes and risk assessment:\n{context}",
                system=prompts.DEVOPS_SYSTEM_PROMPT,
            ),
        }
        try:
            with ThreadPoolExecutor(max_workers=len(variants)) as pool:
                futures = {k: pool.submit(self.llm.generate, **kw) for k, kw in variants.items()}
                texts = {k: f.result() for k, f in futures.items()}
        except Exception as e:
            log.error("release_summaries_failed", repo=f"{owner}/{repo}", sha=sha, error=str(e))
            raise UpstreamError("anthropic", f"Failed to generate summary: {e}")

        payload = {
            "summaries": ReleaseSummaries(**texts).model_dump(),
            "commit": commit_data,
            "ticketDetails": [t.model_dump() for t in ticket_details],
            "jiraStatus": (jira_status.model_dump() if jira_status else {"configured": False, "connectionFailed": False}),
        }
        self.cache.set(cache_key, payload, CacheTTL.SUMMARY)
        return SummaryResponse.model_validate({**payload, "cached": False})
