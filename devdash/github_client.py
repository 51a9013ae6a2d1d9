"""Read-only GitHub REST v3 client (commits, compare, PRs, workflow runs)."""
from typing import Any, Dict, List, Optional

import requests

from .config import GITHUB_API, GitHubSettings
from .errors import UpstreamError
from .logging_utils import logger


log = logger.child("github")

DEFAULT_TIMEOUT = 30


def safe_json(resp: requests.Response) -> Any:
    try:
        return resp.json() if resp.content else {}
    except ValueError:
        return {"_raw": resp.text}


class GitHubClient:
    def __init__(
        self,
        token: str = "",
        *,
        api_base: str = GITHUB_API,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.token = (token or "").strip()
        self.api_base = api_base.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    @classmethod
    def from_settings(cls, s: GitHubSettings, session: Optional[requests.Session] = None) -> "GitHubClient":
        return cls(s.token, api_base=s.api_base, session=session)

    def headers(self) -> Dict[str, str]:
        h = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "devdash",
        }
        if self.token:
            h["Authorization"] = f"Bearer {self.token}"
        return h

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        url = f"{self.api_base}{path}"
        try:
            return self.session.get(url, headers=self.headers(), params=params, timeout=self.timeout)
        except requests.RequestException as e:
            log.error("request_failed", path=path, error=e.__class__.__name__)
            raise UpstreamError("github", f"GitHub request failed: {e.__class__.__name__}")

    def _raise_for_status(self, resp: requests.Response, not_found: str, action: str) -> None:
        if resp.ok:
            return
        status = resp.status_code
        if status == 404:
            token_info = (
                "Token is set but may not have access"
                if self.token
                else "No token set - private repos require authentication"
            )
            msg = f"{not_found}. {token_info}"
        elif status == 401:
            msg = "GitHub authentication failed. Check GITHUB_TOKEN is valid."
        elif status == 403:
            if resp.headers.get("x-ratelimit-remaining") == "0":
                msg = "GitHub API rate limit exceeded. Set GITHUB_TOKEN for higher limits."
            else:
                msg = "GitHub access forbidden. Check GITHUB_TOKEN has 'repo' scope."
        else:
            body = safe_json(resp)
            msg = (body.get("message") if isinstance(body, dict) else None) or f"Failed to {action}: {status}"
        log.warn("github_error", status=status, action=action)
        raise UpstreamError("github", msg, upstream_status=status)

    # ------------------------------------------------------------------
    # Commits
    # ------------------------------------------------------------------

    def get_commit(self, owner: str, repo: str, sha: str) -> Dict[str, Any]:
        """Full commit payload, including ``files`` with patches."""
        r = self._get(f"/repos/{owner}/{repo}/commits/{sha}")
        self._raise_for_status(r, f"Repository or commit not found: {owner}/{repo}@{sha}", "fetch commit")
        return r.json()

    def try_get_commit(self, owner: str, repo: str, sha: str) -> Optional[Dict[str, Any]]:
        """Like get_commit, but None on any failure (used for best-effort refetches)."""
        try:
            r = self._get(f"/repos/{owner}/{repo}/commits/{sha}")
        except UpstreamError:
            return None
        if not r.ok:
            return None
        try:
            return r.json()
        except ValueError:
            log.warn("commit_refetch_unparseable", repo=f"{owner}/{repo}", sha=sha)
            return None

    def list_commits(
        self,
        owner: str,
        repo: str,
        *,
        path: Optional[str] = None,
        since: Optional[str] = None,
        per_page: int = 100,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"per_page": per_page}
        if path:
            params["path"] = path
        if since:
            params["since"] = since
        r = self._get(f"/repos/{owner}/{repo}/commits", params=params)
        self._raise_for_status(r, f"Repository not found: {owner}/{repo}", "fetch commits")
        return r.json() or []

    def compare(self, owner: str, repo: str, base: str, head: str) -> Dict[str, Any]:
        r = self._get(f"/repos/{owner}/{repo}/compare/{base}...{head}")
        self._raise_for_status(r, f"Repository or commits not found: {owner}/{repo}", "compare commits")
        return r.json()

    # ------------------------------------------------------------------
    # Pull requests / workflow runs (best-effort: None when unavailable)
    # ------------------------------------------------------------------

    def find_pr_for_commit(self, owner: str, repo: str, sha: str) -> Optional[Dict[str, Any]]:
        try:
            r = self._get(f"/repos/{owner}/{repo}/commits/{sha}/pulls")
        except UpstreamError:
            return None
        if not r.ok:
            return None
        prs = r.json() or []
        return prs[0] if prs else None

    def get_workflow_run(
        self,
        owner: str,
        repo: str,
        sha: str,
        workflow_file: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        try:
            r = self._get(f"/repos/{owner}/{repo}/actions/runs", params={"head_sha": sha, "per_page": 10})
        except UpstreamError:
            return None
        if not r.ok:
            return None
        runs = (r.json() or {}).get("workflow_runs") or []
        if not runs:
            return None
        if workflow_file:
            stem = workflow_file.replace(".yml", "").lower()
            for run in runs:
                name = (run.get("name") or "").lower()
                if "deploy" in name or stem in name:
                    return run
        return runs[0]

    def get_user(self) -> requests.Response:
        """Authenticated user (connection test). Returns the raw response."""
        return self._get("/user")
