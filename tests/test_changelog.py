from __future__ import annotations

import pytest

from devdash.changelog import ChangelogService, map_workflow_status
from devdash.config import JiraSettings
from devdash.errors import NotConfiguredError, UpstreamError, ValidationError
from devdash.github_client import GitHubClient
from devdash.jira_client import JiraClient
from devdash.llm import TextGenerator

from conftest import FakeResponse, FakeSession, gh_commit, gh_file

COMPARE_URL = "https://github.com/acme/shop/compare/1111111...2222222"

VERSIONS_PATCH = """@@ -4,7 +4,7 @@ components:
   - name: cart
-    version: '@fx-component/cart-1111111'
+    version: '@fx-component/cart-2222222'
"""


def _compare_payload():
    return {
        "html_url": COMPARE_URL,
        "total_commits": 2,
        "commits": [
            gh_commit("c1" * 20, "PX-20002 cart totals\n\ndetails", login="alice"),
            gh_commit("c2" * 20, "PX-20001 search tweak (px-20002)", login=None, name="Bob"),
        ],
        "files": [
            gh_file("components/cart/index.ts", additions=4),
            gh_file("components/search/a.ts", status="added"),
            gh_file("README.md", status="copied"),
        ],
    }


def _service(session, cache, *, llm=None, jira=None):
    return ChangelogService(GitHubClient("t", session=session), cache, llm=llm, jira=jira)


@pytest.fixture
def repo_session():
    s = FakeSession()
    s.add("/compare/1111111...2222222", FakeResponse(200, _compare_payload()))
    s.add("/commits/" + "c1" * 20, FakeResponse(200, gh_commit("c1" * 20, "x", files=[gh_file("components/cart/index.ts")])))
    s.add("/commits/" + "c2" * 20, FakeResponse(200, gh_commit("c2" * 20, "y", files=[gh_file("components/search/a.ts")])))
    return s


# ----------------------------------------------------------------------
# Commit ranges
# ----------------------------------------------------------------------


def test_compare_builds_changelog(repo_session, cache):
    changelog = _service(repo_session, cache).compare("acme", "shop", "1111111", "2222222")

    assert changelog.fromSha == "1111111"
    assert changelog.toSha == "2222222"
    assert changelog.totalCommits == 2
    assert [c.shortSha for c in changelog.commits] == ["c1c1c1c", "c2c2c2c"]
    assert changelog.commits[0].message == "PX-20002 cart totals"
    assert changelog.commits[1].author == "Bob"
    assert changelog.commits[1].ticketRefs == ["PX-20001", "PX-20002"]
    assert changelog.allTickets == ["PX-20001", "PX-20002"]
    assert changelog.authors == ["alice", "Bob"]
    assert changelog.compareUrl == COMPARE_URL
    assert [f.status for f in changelog.files] == ["modified", "added", "modified"]
    assert changelog.summary is None


def test_compare_is_cached(repo_session, cache):
    service = _service(repo_session, cache)
    service.compare("acme", "shop", "1111111", "2222222")
    service.compare("acme", "shop", "1111111", "2222222")

    assert len(repo_session.calls) == 1


def test_compare_scoped_filters_files_and_commits(repo_session, cache):
    changelog = _service(repo_session, cache).compare_scoped(
        "acme", "shop", "1111111", "2222222", "components/cart"
    )

    assert [f.filename for f in changelog.files] == ["components/cart/index.ts"]
    assert [c.sha for c in changelog.commits] == ["c1" * 20]
    assert changelog.totalCommits == 1
    assert changelog.allTickets == ["PX-20002"]
    assert changelog.compareUrl == COMPARE_URL + "?diff=split&w=1"


def test_compare_scoped_drops_commits_that_cannot_be_fetched(repo_session, cache):
    repo_session.add("/commits/" + "c1" * 20, FakeResponse(500, {}))
    changelog = _service(repo_session, cache).compare_scoped(
        "acme", "shop", "1111111", "2222222", "components/cart"
    )

    assert changelog.commits == []
    assert [f.filename for f in changelog.files] == ["components/cart/index.ts"]


def test_compare_scoped_drops_commits_with_unparseable_bodies(repo_session, cache):
    repo_session.add("/commits/" + "c1" * 20, FakeResponse(200, text="<html>oops</html>"))
    changelog = _service(repo_session, cache).compare_scoped(
        "acme", "shop", "1111111", "2222222", "components/cart"
    )

    assert changelog.commits == []
    assert changelog.totalCommits == 0


def test_changelog_summary_attached(repo_session, cache, fake_anthropic):
    client = fake_anthropic("Overview: cart and search")
    service = _service(repo_session, cache, llm=TextGenerator(client))

    changelog = service.changelog_with_summary("acme", "shop", "1111111", "2222222")
    assert changelog.summary == "Overview: cart and search"

    service.changelog_with_summary("acme", "shop", "1111111", "2222222")
    assert len(client.messages.calls) == 1


def test_changelog_summary_absent_when_generation_fails(repo_session, cache, fake_anthropic):
    service = _service(repo_session, cache, llm=TextGenerator(fake_anthropic(error=RuntimeError("529"))))

    changelog = service.changelog_with_summary("acme", "shop", "1111111", "2222222")
    assert changelog.summary is None
    assert changelog.totalCommits == 2


def test_changelog_without_llm_has_no_summary(repo_session, cache):
    changelog = _service(repo_session, cache).changelog_with_summary("acme", "shop", "1111111", "2222222")
    assert changelog.summary is None


# ----------------------------------------------------------------------
# Single commit
# ----------------------------------------------------------------------


def test_commit_context_with_pr_and_deployment(session, cache):
    sha = "d" * 40
    session.add(f"/commits/{sha}", FakeResponse(200, gh_commit(sha, "PX-20001 Add cart\n\nlong body")))
    session.add(
        f"/commits/{sha}/pulls",
        FakeResponse(200, [{"number": 12, "title": "Cart", "merged_by": {"login": "bob"}, "html_url": "https://pr/12"}]),
    )
    session.add(
        "/actions/runs",
        FakeResponse(
            200,
            {
                "workflow_runs": [
                    {
                        "name": "Deploy",
                        "status": "completed",
                        "conclusion": "success",
                        "html_url": "https://run/1",
                        "updated_at": "2024-05-01T11:00:00Z",
                    }
                ]
            },
        ),
    )

    ctx = _service(session, cache).commit_context("acme", "shop", sha)

    assert ctx.commit.sha == "ddddddd"
    assert ctx.commit.message == "PX-20001 Add cart"
    assert ctx.commit.ticketRefs == ["PX-20001"]
    assert ctx.pr.number == 12
    assert ctx.pr.mergedBy == "bob"
    assert ctx.deployment.status == "success"
    assert ctx.deployment.workflowName == "Deploy"


def test_commit_context_without_pr_or_runs(session, cache):
    sha = "e" * 40
    session.add(f"/commits/{sha}", FakeResponse(200, gh_commit(sha, "chore")))
    session.add(f"/commits/{sha}/pulls", FakeResponse(200, []))
    session.add("/actions/runs", FakeResponse(200, {"workflow_runs": []}))

    ctx = _service(session, cache).commit_context("acme", "shop", sha)
    assert ctx.pr is None
    assert ctx.deployment is None


def test_commit_context_missing_commit_is_404(session, cache):
    with pytest.raises(UpstreamError) as exc:
        _service(session, cache).commit_context("acme", "shop", "nope")
    assert exc.value.status_code == 404


def test_map_workflow_status():
    assert map_workflow_status("completed", "success") == "success"
    assert map_workflow_status("completed", "cancelled") == "failure"
    assert map_workflow_status("in_progress", None) == "in_progress"
    assert map_workflow_status("queued", None) == "queued"
    assert map_workflow_status("waiting", None) == "pending"


# ----------------------------------------------------------------------
# Deployments
# ----------------------------------------------------------------------


def _deployment_session(repo_session):
    repo_session.add(
        "/commits/deploy1",
        FakeResponse(
            200,
            gh_commit(
                "deploy1",
                "Deploy cart to prd\n\n[skip ci]",
                files=[gh_file("mach-config/prd-versions.yaml", patch=VERSIONS_PATCH), gh_file("README.md")],
            ),
        ),
    )
    return repo_session


def test_mach_config_deployment(repo_session, cache, fake_anthropic):
    client = fake_anthropic("Risk: Low")
    service = _service(_deployment_session(repo_session), cache, llm=TextGenerator(client))

    deployment = service.mach_config_deployment("acme", "shop", "deploy1")

    assert deployment.commitMessage == "Deploy cart to prd"
    (component,) = deployment.components
    assert component.componentName == "cart"
    assert component.environment == "prd"
    assert (component.fromVersion, component.toVersion) == ("1111111", "2222222")
    assert [c.sha for c in component.changelog.commits] == ["c1" * 20]
    assert component.changelog.summary == "Risk: Low"
    assert client.messages.calls[0]["max_tokens"] == 800


def test_mach_config_component_keeps_going_when_compare_fails(session, cache):
    session.add(
        "/commits/deploy1",
        FakeResponse(200, gh_commit("deploy1", "Deploy", files=[gh_file("mach-config/prd-versions.yaml", patch=VERSIONS_PATCH)])),
    )
    session.add("/compare/", FakeResponse(404, {"message": "Not Found"}))

    deployment = _service(session, cache).mach_config_deployment("acme", "shop", "deploy1")
    assert deployment.components[0].changelog is None


def test_mach_config_without_versions_files(session, cache):
    session.add("/commits/plain", FakeResponse(200, gh_commit("plain", "docs", files=[gh_file("README.md")])))

    with pytest.raises(ValidationError):
        _service(session, cache).mach_config_deployment("acme", "shop", "plain")


def test_mach_config_without_version_changes(session, cache):
    session.add(
        "/commits/cmt",
        FakeResponse(200, gh_commit("cmt", "comment", files=[gh_file("mach-config/prd-versions.yaml", patch="-# a\n+# b")])),
    )

    with pytest.raises(ValidationError):
        _service(session, cache).mach_config_deployment("acme", "shop", "cmt")


def test_recent_deployments(session, cache):
    session.add(
        "/repos/acme/shop/commits",
        FakeResponse(200, [gh_commit("r1", "Deploy all\n\nbody"), gh_commit("r2", "Tweak"), gh_commit("r3", "Lost")]),
    )
    session.add(
        "/commits/r1",
        FakeResponse(
            200,
            gh_commit(
                "r1",
                "Deploy all",
                files=[gh_file("mach-config/prd-versions.yaml"), gh_file("mach-config/acc-test-versions.yaml")],
            ),
        ),
    )
    session.add("/commits/r2", FakeResponse(200, gh_commit("r2", "Tweak", files=[gh_file("mach-config/components.yaml")])))
    session.add("/commits/r3", FakeResponse(500, {}))

    deployments = _service(session, cache).recent_deployments("acme", "shop")

    assert [d.sha for d in deployments] == ["r1"]
    assert deployments[0].environments == ["prd", "acc-test"]
    assert deployments[0].message == "Deploy all"
    assert session.calls[0]["params"]["path"] == "mach-config"


def test_recent_deployments_caches_empty_result(session, cache):
    session.add("/repos/acme/shop/commits", FakeResponse(200, [gh_commit("r2", "Tweak")]))
    session.add("/commits/r2", FakeResponse(200, gh_commit("r2", "Tweak", files=[gh_file("mach-config/components.yaml")])))
    service = _service(session, cache)

    assert service.recent_deployments("acme", "shop") == []
    calls = len(session.calls)
    assert service.recent_deployments("acme", "shop") == []
    assert len(session.calls) == calls


# ----------------------------------------------------------------------
# Release summaries
# ----------------------------------------------------------------------


def _summary_session():
    s = FakeSession()
    s.add(
        "/commits/s1",
        FakeResponse(
            200,
            gh_commit(
                "s1",
                "PX-20001 and PX-42 work",
                files=[gh_file("src/app.py", additions=2), gh_file("components/cart/b.ts", additions=5, deletions=1)],
            ),
        ),
    )
    return s


def test_release_summaries_single_commit(cache, fake_anthropic):
    client = fake_anthropic("notes")
    service = _service(_summary_session(), cache, llm=TextGenerator(client))

    result = service.release_summaries("acme", "shop", "s1", environment="prd")

    assert result.summaries.business == result.summaries.developer == result.summaries.devops == "notes"
    assert result.commit["tickets"] == ["PX-20001"]
    assert result.ticketDetails == []
    assert result.jiraStatus.configured is False
    assert result.cached is False
    assert len(client.messages.calls) == 3
    assert any("**Environment:** prd" in c["system"] for c in client.messages.calls)

    again = service.release_summaries("acme", "shop", "s1", environment="prd")
    assert again.cached is True
    assert len(client.messages.calls) == 3


def test_release_summaries_scoped_to_component(cache, fake_anthropic):
    service = _service(_summary_session(), cache, llm=TextGenerator(fake_anthropic()))

    result = service.release_summaries("acme", "shop", "s1", component_path="components/cart")

    assert [f["filename"] for f in result.commit["files"]] == ["components/cart/b.ts"]
    assert result.commit["stats"] == {"additions": 5, "deletions": 1, "total": 1}


def test_release_summaries_for_range(repo_session, cache, fake_anthropic):
    client = fake_anthropic()
    service = _service(repo_session, cache, llm=TextGenerator(client))

    result = service.release_summaries("acme", "shop", "2222222", base_ref="1111111")

    assert result.commit["tickets"] == ["PX-20001", "PX-20002"]
    assert [c["message"] for c in result.commit["commits"]] == ["PX-20002 cart totals", "PX-20001 search tweak (px-20002)"]
    assert result.commit["stats"]["total"] == 3
    assert "patch" not in result.commit["files"][0]


def test_release_summaries_with_jira(cache, clock, fake_anthropic):
    jira_session = FakeSession()
    jira_session.add(
        "/issue/PX-20001",
        FakeResponse(200, {"key": "PX-20001", "fields": {"summary": "Cart", "status": {"name": "Done"}}}),
    )
    jira = JiraClient(
        JiraSettings(email="dev@acme.test", api_token="tok"), cache=cache, session=jira_session, clock=clock
    )
    client = fake_anthropic()
    service = _service(_summary_session(), cache, llm=TextGenerator(client), jira=jira)

    result = service.release_summaries("acme", "shop", "s1")

    assert [t.key for t in result.ticketDetails] == ["PX-20001"]
    assert result.jiraStatus.configured is True
    assert "PX-20001: Cart" in client.messages.calls[0]["messages"][0]["content"]


def test_release_summaries_require_llm(cache):
    with pytest.raises(NotConfiguredError):
        _service(_summary_session(), cache).release_summaries("acme", "shop", "s1")


def test_release_summaries_generation_failure(cache, fake_anthropic):
    service = _service(_summary_session(), cache, llm=TextGenerator(fake_anthropic(error=RuntimeError("boom"))))

    with pytest.raises(UpstreamError) as exc:
        service.release_summaries("acme", "shop", "s1")
    assert exc.value.status_code == 502
    assert "boom" in exc.value.message
