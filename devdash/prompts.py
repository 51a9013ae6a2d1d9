"""Prompt text for generated summaries.

Diff context is truncated (file count and patch length) to keep prompts
inside the model's context window.
"""
from typing import Any, Dict, List, Optional

from .models import ChangedFile, ChangelogContext, ComponentVersionChange


def files_context(files: List[ChangedFile], *, max_files: int, max_patch: int) -> str:
    blocks = []
    for f in files[:max_files]:
        patch = f.patch[:max_patch] if f.patch else "No diff available"
        truncated = "\n... (truncated)" if f.patch and len(f.patch) > max_patch else ""
        blocks.append(f"File: {f.filename} ({f.status})\n+{f.additions} -{f.deletions}\n{patch}{truncated}")
    return "\n\n---\n\n".join(blocks)


def commits_context(changelog: ChangelogContext, *, max_commits: int) -> str:
    return "\n".join(f"- {c.message} ({c.author})" for c in changelog.commits[:max_commits])


def changelog_prompt(changelog: ChangelogContext) -> str:
    return f"""You are a senior software engineer reviewing code changes. Analyze the following git diff and commit messages, then provide a concise summary.

COMMITS:
{commits_context(changelog, max_commits=20)}

FILE CHANGES:
{files_context(changelog.files, max_files=30, max_patch=1500)}

Provide a structured summary with:
1. **Overview**: A 1-2 sentence high-level summary of what changed
2. **Key Changes**: Bullet points of the most important changes (max 5)
3. **Impact**: Brief note on what areas of the codebase are affected

Keep it concise and technical. Focus on what matters to developers reviewing this changelog."""


def component_prompt(change: ComponentVersionChange, changelog: ChangelogContext) -> str:
    return f"""You are a senior software engineer reviewing code changes for the "{change.componentName}" component being deployed to {change.environment}.

COMMITS:
{commits_context(changelog, max_commits=15)}

FILE CHANGES (scoped to {change.componentPath}):
{files_context(changelog.files, max_files=20, max_patch=1000)}

Provide a concise deployment summary with:
1. **What Changed**: 2-3 bullet points of key changes
2. **Risk Assessment**: Low/Medium/High with brief justification
3. **Testing Notes**: What should be verified post-deployment

Keep it brief and actionable for the deployment team."""


# ----------------------------------------------------------------------
# Release summaries (business / developer / devops)
# ----------------------------------------------------------------------


def _file_lines(files: List[Dict[str, Any]], limit: Optional[int] = 30) -> str:
    shown = files if limit is None else files[:limit]
    out = "\n".join(
        f"- {f.get('status')}: {f.get('filename')} (+{f.get('additions', 0)}/-{f.get('deletions', 0)})" for f in shown
    )
    if limit is not None and len(files) > limit:
        out += f"\n\n... and {len(files) - limit} more files"
    return out


def range_context(owner: str, repo: str, base_ref: str, sha: str, data: Dict[str, Any], path_context: str) -> str:
    stats = data.get("stats") or {}
    commits = "\n".join(
        f"- {c['sha'][:7]}: {c['message']} (by {c['author']})" for c in data.get("commits") or []
    )
    return f"""
Repository: {owner}/{repo}
Comparing: {base_ref} → {sha}{path_context}
Total commits: {len(data.get('commits') or [])}
Files changed: {stats.get('total', 0)}
Additions: +{stats.get('additions', 0)}
Deletions: -{stats.get('deletions', 0)}

Commits in this range:
{commits}

Files changed:
{_file_lines(data.get('files') or [])}
"""


def single_commit_context(owner: str, repo: str, data: Dict[str, Any], path_context: str) -> str:
    author = data.get("author") or {}
    stats = data.get("stats") or {}
    files = data.get("files") or []
    return f"""
Repository: {owner}/{repo}
Commit: {data.get('sha')}{path_context}
Author: {author.get('name')} ({author.get('login') or 'unknown'})
Date: {author.get('date')}

Commit message:
{data.get('message')}

Stats: +{stats.get('additions', 0)} additions, -{stats.get('deletions', 0)} deletions across {len(files)} files

Files changed:
{_file_lines(files)}
"""


def developer_commit_context(data: Dict[str, Any], sha: str, is_range: bool) -> str:
    files = data.get("files") or []
    if is_range:
        blocks = []
        for c in data.get("commits") or []:
            blocks.append(
                f"\n### Commit: {c['sha'][:7]}\nAuthor: {c['author']}\nMessage: {c['message']}\n"
                "Files in this commit:\n  (file details not available per-commit)\n"
            )
        return (
            "\nDETAILED COMMIT BREAKDOWN:\n"
            + "\n".join(blocks)
            + "\n\nALL FILES CHANGED:\n"
            + _file_lines(files, limit=None)
            + "\n"
        )
    author = data.get("author") or {}
    return f"""
COMMIT: {(data.get('sha') or sha)[:7]}
Author: {author.get('name') or 'Unknown'}
Message: {data.get('message') or 'No message'}

FILES CHANGED:
{_file_lines(files, limit=None) or 'No files'}
"""


def business_system_prompt(environment: str, release_date: str, prefix: str) -> str:
    return f"""You are a product communications specialist writing release notes for Product Owners and business stakeholders.

Your output MUST follow this exact structure:

1. Start with a header block:
---
**Environment:** {environment}
**Release Date:** {release_date}
---

2. Then provide an Executive Summary (2-3 sentences summarizing the overall release and its business impact).

3. Then list each feature/improvement group in this format:

---
### [Feature Group Title]
**Feature:** [Main feature name] ([{prefix}-XXXXX])
**Stories:** [Related story 1] ([{prefix}-XXXXX]), [Related story 2] ([{prefix}-XXXXX])

[2-3 sentence description of customer impact and business value. Focus on what customers will notice and how it benefits them.]

---

Rules:
- Group related tickets together under a meaningful feature title
- Always include ticket numbers in format {prefix}-XXXXX in parentheses
- Write in clear, non-technical language
- Focus on customer impact and business value
- If a ticket doesn't have JIRA details, still reference it by number
- End with a brief "What's Next" or "Coming Soon" section if appropriate"""


def developer_system_prompt(prefix: str) -> str:
    return f"""You are a senior developer writing technical release notes for the engineering team.

Your output MUST follow this exact structure:

1. Start with a brief Technical Overview (2-3 sentences summarizing the technical scope of this release).

2. Then list each commit with this format:

---
### `<commit_sha>` - <brief_title>

**Summary:** <1-2 sentence technical summary of what this commit does>

**Files Changed:**
- `path/to/file1` - <brief description of change>
- `path/to/file2` - <brief description of change>

---

Rules:
- List commits in chronological order (oldest to newest)
- For each commit, provide a 1-2 sentence technical summary
- List the key files changed with a brief note on what changed in each
- Use technical language appropriate for developers
- If a commit references a ticket ({prefix}-XXXXX), include it in the title
- Group related commits under a feature heading if they clearly belong together
- Highlight any breaking changes, API modifications, or dependency updates"""


DEVOPS_SYSTEM_PROMPT = """You are a DevOps engineer writing deployment notes and risk assessment.
Focus on:
- Risk profile (Low/Medium/High) with justification
- Infrastructure changes (new services, config changes, env vars)
- Database migrations or schema changes
- Performance implications
- Monitoring recommendations (what to watch post-deployment)
- Rollback considerations
- Dependencies on external services
- Deployment order if multiple services affected

Be specific about what needs attention during and after deployment.
Start with an overall risk assessment, then detail specific concerns."""
