"""Tests for the GitHub plugin."""

import json
import re

import pytest
from pytest_httpx import HTTPXMock

from autonav.config import GitHubPluginConfig
from autonav.exceptions import (
    ActionNotSupportedError,
    PluginAuthError,
    RateLimitedError,
    RemoteCallError,
)
from autonav.integrations.github import GitHubPlugin
from autonav.plugins.base import (
    GitHubAddLabel,
    GitHubCloseIssue,
    GitHubCommentEvent,
    GitHubCommentPr,
    GitHubCreateIssue,
    GitHubIssueEvent,
    GitHubMergePr,
    GitHubPullRequestEvent,
    SlackSendMessage,
)

USER_URL = "https://api.github.com/user"


def issues_url(repo: str, page: int) -> re.Pattern[str]:
    return re.compile(rf"https://api\.github\.com/repos/acme/{repo}/issues\?.*\bpage={page}\b.*")


def pulls_url(repo: str, page: int) -> re.Pattern[str]:
    return re.compile(rf"https://api\.github\.com/repos/acme/{repo}/pulls\?.*\bpage={page}\b.*")


@pytest.fixture
def github_config() -> GitHubPluginConfig:
    """Create a test GitHub configuration."""
    return GitHubPluginConfig(
        enabled=True,
        token="ghp_test_token",
        owner="acme",
        repo="api",
        watch_issues=True,
    )


@pytest.fixture
def github_plugin(github_config: GitHubPluginConfig) -> GitHubPlugin:
    """Create a test GitHub plugin with small pages."""
    return GitHubPlugin(github_config, per_page=2, max_pages=3)


@pytest.fixture
async def ready_plugin(github_plugin: GitHubPlugin, httpx_mock: HTTPXMock) -> GitHubPlugin:
    """A GitHub plugin that has passed GET /user."""
    httpx_mock.add_response(url=USER_URL, json=SAMPLE_USER)
    await github_plugin.initialize()
    yield github_plugin
    await github_plugin.shutdown()


# Sample GitHub API responses
SAMPLE_USER = {"login": "navbot", "id": 42}

SAMPLE_ISSUES_PAGE_1 = [
    {"number": 12, "title": "Deploy guide is outdated", "body": "Step 3 fails"},
    {
        "number": 13,
        "title": "Add retry to webhook",
        "body": None,
        "pull_request": {"url": "https://api.github.com/repos/acme/api/pulls/13"},
    },
]

SAMPLE_ISSUES_PAGE_2 = [
    {"number": 14, "title": "Missing docs for rotation", "body": ""},
]

SAMPLE_PULLS = [
    {"number": 13, "title": "Add retry to webhook", "body": "Fixes #9"},
]

SAMPLE_CREATED_ISSUE = {
    "number": 101,
    "html_url": "https://github.com/acme/api/issues/101",
}

SAMPLE_COMMENT = {
    "id": 9001,
    "html_url": "https://github.com/acme/api/pull/13#issuecomment-9001",
}

SAMPLE_ISSUE_COMMENT_DELIVERY = {
    "action": "created",
    "issue": {"number": 12},
    "comment": {"body": "Still broken on main", "user": {"login": "octocat"}},
    "repository": {"name": "api", "owner": {"login": "acme"}},
}


class TestGitHubPluginLifecycle:
    """Tests for initialize/shutdown."""

    async def test_initialize_records_login(
        self, github_plugin: GitHubPlugin, httpx_mock: HTTPXMock
    ) -> None:
        """Test GET /user authentication and headers."""
        httpx_mock.add_response(url=USER_URL, json=SAMPLE_USER)

        await github_plugin.initialize()

        assert github_plugin.login == "navbot"
        request = httpx_mock.get_requests()[0]
        assert request.headers["Authorization"] == "Bearer ghp_test_token"
        assert request.headers["Accept"] == "application/vnd.github+json"
        await github_plugin.shutdown()

    async def test_initialize_unauthorized(
        self, github_plugin: GitHubPlugin, httpx_mock: HTTPXMock
    ) -> None:
        """Test that 401 raises PluginAuthError with GitHub's message."""
        httpx_mock.add_response(url=USER_URL, status_code=401, json={"message": "Bad credentials"})

        with pytest.raises(PluginAuthError) as exc_info:
            await github_plugin.initialize()

        assert exc_info.value.message == "Bad credentials"
        await github_plugin.shutdown()

    async def test_initialize_without_token(self) -> None:
        """Test that a missing token fails before any request."""
        plugin = GitHubPlugin(GitHubPluginConfig(enabled=True))

        with pytest.raises(PluginAuthError):
            await plugin.initialize()


class TestGitHubPluginPolling:
    """Tests for listen()."""

    async def test_listen_before_initialize_is_empty(self, github_plugin: GitHubPlugin) -> None:
        """Test that an uninitialized plugin doesn't poll."""
        assert await github_plugin.listen() == []

    async def test_listen_skips_pull_requests_on_issues_endpoint(
        self, ready_plugin: GitHubPlugin, httpx_mock: HTTPXMock
    ) -> None:
        """Test paginated issue polling, skipping PR entries."""
        httpx_mock.add_response(url=issues_url("api", 1), json=SAMPLE_ISSUES_PAGE_1)
        httpx_mock.add_response(url=issues_url("api", 2), json=SAMPLE_ISSUES_PAGE_2)

        events = await ready_plugin.listen()

        assert [type(e) for e in events] == [GitHubIssueEvent, GitHubIssueEvent]
        assert [e.number for e in events] == [12, 14]
        assert events[0].title == "Deploy guide is outdated"

    async def test_listen_reports_each_item_once(
        self, ready_plugin: GitHubPlugin, httpx_mock: HTTPXMock
    ) -> None:
        """Test that items already reported are not reported again."""
        for _ in range(2):
            httpx_mock.add_response(url=issues_url("api", 1), json=SAMPLE_ISSUES_PAGE_1)
            httpx_mock.add_response(url=issues_url("api", 2), json=SAMPLE_ISSUES_PAGE_2)

        first = await ready_plugin.listen()
        second = await ready_plugin.listen()

        assert len(first) == 2
        assert second == []

    async def test_reported_items_are_bounded(
        self, ready_plugin: GitHubPlugin, httpx_mock: HTTPXMock, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test the oldest reported item is forgotten once the limit is reached."""
        monkeypatch.setattr("autonav.integrations.github.GITHUB_SEEN_LIMIT", 2)
        httpx_mock.add_response(url=issues_url("api", 1), json=SAMPLE_ISSUES_PAGE_1)
        httpx_mock.add_response(url=issues_url("api", 2), json=SAMPLE_ISSUES_PAGE_2)
        httpx_mock.add_response(url=issues_url("api", 1), json=[{"number": 15, "title": "New"}])
        httpx_mock.add_response(url=issues_url("api", 1), json=SAMPLE_ISSUES_PAGE_1)
        httpx_mock.add_response(url=issues_url("api", 2), json=SAMPLE_ISSUES_PAGE_2)

        first = await ready_plugin.listen()
        second = await ready_plugin.listen()
        third = await ready_plugin.listen()

        assert [e.number for e in first] == [12, 14]
        assert [e.number for e in second] == [15]
        # #12 was evicted by #15; #14 is still remembered
        assert [e.number for e in third] == [12]

    async def test_pagination_is_bounded(self, httpx_mock: HTTPXMock) -> None:
        """Test that polling stops at max_pages even when pages are full."""
        config = GitHubPluginConfig(
            enabled=True, token="ghp_test_token", owner="acme", repo="api", watch_issues=True
        )
        plugin = GitHubPlugin(config, per_page=1, max_pages=2)
        httpx_mock.add_response(url=USER_URL, json=SAMPLE_USER)
        httpx_mock.add_response(url=issues_url("api", 1), json=[{"number": 1, "title": "a"}])
        httpx_mock.add_response(url=issues_url("api", 2), json=[{"number": 2, "title": "b"}])

        await plugin.initialize()
        events = await plugin.listen()
        await plugin.shutdown()

        assert [e.number for e in events] == [1, 2]
        issue_requests = [r for r in httpx_mock.get_requests() if "/issues" in r.url.path]
        assert len(issue_requests) == 2
        assert issue_requests[0].url.params["state"] == "open"
        assert issue_requests[0].url.params["per_page"] == "1"

    async def test_pull_requests_when_watched(self, httpx_mock: HTTPXMock) -> None:
        """Test pull request polling gated by watchPullRequests."""
        config = GitHubPluginConfig(
            enabled=True,
            token="ghp_test_token",
            owner="acme",
            repo="api",
            watch_pull_requests=True,
        )
        plugin = GitHubPlugin(config, per_page=10)
        httpx_mock.add_response(url=USER_URL, json=SAMPLE_USER)
        httpx_mock.add_response(url=pulls_url("api", 1), json=SAMPLE_PULLS)

        await plugin.initialize()
        events = await plugin.listen()
        await plugin.shutdown()

        assert len(events) == 1
        assert isinstance(events[0], GitHubPullRequestEvent)
        assert events[0].number == 13

    async def test_failing_repository_is_skipped(self, httpx_mock: HTTPXMock) -> None:
        """Test that one repository failing doesn't hide the others."""
        config = GitHubPluginConfig(
            enabled=True,
            token="ghp_test_token",
            owner="acme",
            repo="api",
            repositories=["acme/broken"],
            watch_issues=True,
        )
        plugin = GitHubPlugin(config, per_page=10)
        httpx_mock.add_response(url=USER_URL, json=SAMPLE_USER)
        httpx_mock.add_response(url=issues_url("api", 1), json=SAMPLE_ISSUES_PAGE_2)
        httpx_mock.add_response(
            url=issues_url("broken", 1),
            status_code=500,
            json={"message": "Server Error"},
        )

        await plugin.initialize()
        events = await plugin.listen()
        await plugin.shutdown()

        assert [(e.repo, e.number) for e in events] == [("api", 14)]

    async def test_ingest_issue_comment(self, github_plugin: GitHubPlugin) -> None:
        """Test that pushed comment deliveries come back from listen()."""
        event = github_plugin.ingest("issue_comment", SAMPLE_ISSUE_COMMENT_DELIVERY)

        assert isinstance(event, GitHubCommentEvent)
        assert event.user == "octocat"
        assert await github_plugin.listen() == [event]

    async def test_ingest_ignores_other_deliveries(self, github_plugin: GitHubPlugin) -> None:
        """Test that non-comment deliveries are ignored."""
        assert github_plugin.ingest("push", {"ref": "refs/heads/main"}) is None
        edited = {**SAMPLE_ISSUE_COMMENT_DELIVERY, "action": "edited"}
        assert github_plugin.ingest("issue_comment", edited) is None


class TestGitHubPluginActions:
    """Tests for execute()."""

    async def test_create_issue(self, ready_plugin: GitHubPlugin, httpx_mock: HTTPXMock) -> None:
        """Test issue creation request and result."""
        httpx_mock.add_response(
            method="POST",
            url="https://api.github.com/repos/acme/api/issues",
            status_code=201,
            json=SAMPLE_CREATED_ISSUE,
        )

        result = await ready_plugin.execute(
            GitHubCreateIssue(owner="acme", repo="api", title="Docs gap", labels=["docs"])
        )

        assert result.success is True
        assert result.data == {"number": 101, "url": "https://github.com/acme/api/issues/101"}
        body = json.loads(httpx_mock.get_requests()[-1].content)
        assert body == {"title": "Docs gap", "labels": ["docs"]}

    async def test_comment_on_pr_uses_issue_comments(
        self, ready_plugin: GitHubPlugin, httpx_mock: HTTPXMock
    ) -> None:
        """Test that PR comments go through the issue comments endpoint."""
        httpx_mock.add_response(
            method="POST",
            url="https://api.github.com/repos/acme/api/issues/13/comments",
            status_code=201,
            json=SAMPLE_COMMENT,
        )

        result = await ready_plugin.execute(
            GitHubCommentPr(owner="acme", repo="api", pr_number=13, body="LGTM")
        )

        assert result.data["id"] == 9001

    async def test_close_issue(self, ready_plugin: GitHubPlugin, httpx_mock: HTTPXMock) -> None:
        """Test closing an issue with PATCH."""
        httpx_mock.add_response(
            method="PATCH",
            url="https://api.github.com/repos/acme/api/issues/12",
            json={"number": 12, "state": "closed"},
        )

        result = await ready_plugin.execute(
            GitHubCloseIssue(owner="acme", repo="api", issue_number=12)
        )

        assert result.success is True
        assert json.loads(httpx_mock.get_requests()[-1].content) == {"state": "closed"}

    async def test_merge_pr(self, ready_plugin: GitHubPlugin, httpx_mock: HTTPXMock) -> None:
        """Test merging a pull request."""
        httpx_mock.add_response(
            method="PUT",
            url="https://api.github.com/repos/acme/api/pulls/13/merge",
            json={"merged": True, "sha": "abc123"},
        )

        result = await ready_plugin.execute(GitHubMergePr(owner="acme", repo="api", pr_number=13))

        assert result.data == {"merged": True, "sha": "abc123"}

    async def test_add_label(self, ready_plugin: GitHubPlugin, httpx_mock: HTTPXMock) -> None:
        """Test adding a label."""
        httpx_mock.add_response(
            method="POST",
            url="https://api.github.com/repos/acme/api/issues/12/labels",
            json=[{"name": "docs"}],
        )

        result = await ready_plugin.execute(
            GitHubAddLabel(owner="acme", repo="api", issue_number=12, label="docs")
        )

        assert result.success is True
        assert json.loads(httpx_mock.get_requests()[-1].content) == {"labels": ["docs"]}

    async def test_remote_error_carries_api_message(
        self, ready_plugin: GitHubPlugin, httpx_mock: HTTPXMock
    ) -> None:
        """Test that non-2xx responses surface GitHub's message."""
        httpx_mock.add_response(
            method="POST",
            url="https://api.github.com/repos/acme/api/issues",
            status_code=422,
            json={"message": "Validation Failed"},
        )

        with pytest.raises(RemoteCallError) as exc_info:
            await ready_plugin.execute(GitHubCreateIssue(owner="acme", repo="api", title=""))

        assert exc_info.value.message == "Validation Failed"
        assert exc_info.value.status_code == 422

    async def test_exhausted_rate_budget(
        self, ready_plugin: GitHubPlugin, httpx_mock: HTTPXMock
    ) -> None:
        """Test that 403 with no remaining budget is a rate limit."""
        httpx_mock.add_response(
            method="PATCH",
            url="https://api.github.com/repos/acme/api/issues/12",
            status_code=403,
            headers={"x-ratelimit-remaining": "0", "Retry-After": "60"},
            json={"message": "API rate limit exceeded"},
        )

        with pytest.raises(RateLimitedError) as exc_info:
            await ready_plugin.execute(GitHubCloseIssue(owner="acme", repo="api", issue_number=12))

        assert exc_info.value.retry_after == 60.0

    async def test_forbidden_without_rate_limit(
        self, ready_plugin: GitHubPlugin, httpx_mock: HTTPXMock
    ) -> None:
        """Test that a plain 403 is a remote-call error, not a rate limit."""
        httpx_mock.add_response(
            method="PATCH",
            url="https://api.github.com/repos/acme/api/issues/12",
            status_code=403,
            headers={"x-ratelimit-remaining": "4999"},
            json={"message": "Resource not accessible by integration"},
        )

        with pytest.raises(RemoteCallError) as exc_info:
            await ready_plugin.execute(GitHubCloseIssue(owner="acme", repo="api", issue_number=12))

        assert not isinstance(exc_info.value, RateLimitedError)

    async def test_non_json_reply_is_remote_error(
        self, ready_plugin: GitHubPlugin, httpx_mock: HTTPXMock
    ) -> None:
        """Test a 2xx reply that isn't JSON, such as a proxy page, is a typed failure."""
        httpx_mock.add_response(
            method="PATCH",
            url="https://api.github.com/repos/acme/api/issues/12",
            text="<html>proxy</html>",
        )

        with pytest.raises(RemoteCallError) as exc_info:
            await ready_plugin.execute(GitHubCloseIssue(owner="acme", repo="api", issue_number=12))

        assert exc_info.value.message == "Invalid JSON from GitHub"
        assert exc_info.value.status_code == 200

    async def test_foreign_action_not_supported(self, github_plugin: GitHubPlugin) -> None:
        """Test that a Slack action is rejected."""
        with pytest.raises(ActionNotSupportedError):
            await github_plugin.execute(SlackSendMessage(channel="C1", text="hi"))


class TestGitHubPluginHealth:
    """Tests for health_check()."""

    async def test_health_ok(self, ready_plugin: GitHubPlugin, httpx_mock: HTTPXMock) -> None:
        """Test health when GET /user succeeds."""
        httpx_mock.add_response(url=USER_URL, json=SAMPLE_USER)

        status = await ready_plugin.health_check()

        assert status.healthy is True

    async def test_health_token_revoked(
        self, ready_plugin: GitHubPlugin, httpx_mock: HTTPXMock
    ) -> None:
        """Test that health reports, rather than raises, auth failures."""
        httpx_mock.add_response(url=USER_URL, status_code=401, json={"message": "Bad credentials"})

        status = await ready_plugin.health_check()

        assert status.healthy is False
        assert "Bad credentials" in (status.message or "")

    async def test_health_disabled(self) -> None:
        """Test a disabled plugin reports why."""
        status = await GitHubPlugin(GitHubPluginConfig()).health_check()

        assert status.healthy is False
        assert status.message == "Plugin is disabled"

    async def test_health_non_json_never_raises(
        self, ready_plugin: GitHubPlugin, httpx_mock: HTTPXMock
    ) -> None:
        """Test a garbled GET /user reply is reported as unhealthy."""
        httpx_mock.add_response(url=USER_URL, text="<html>proxy</html>")

        status = await ready_plugin.health_check()

        assert status.healthy is False
        assert "Invalid JSON from GitHub" in (status.message or "")
