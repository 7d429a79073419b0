"""GitHub plugin for watching and acting on issues and pull requests.

Polls open issues and pull requests through the REST API v3 and performs
issue/PR actions (create, comment, close, label, merge) on request.
Webhook deliveries (issue comments) can be pushed in with `ingest()`.

Authentication:
    Uses a personal access token or fine-grained token, passed in config.

Example:
    config = GitHubPluginConfig(enabled=True, token="ghp_...", owner="org",
                                repo="api", watch_issues=True)
    plugin = GitHubPlugin(config)
    await plugin.initialize()
    events = await plugin.listen()
"""

from __future__ import annotations

import time
from typing import Any, ClassVar

import httpx

from autonav.config import GitHubPluginConfig
from autonav.constants import (
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    GITHUB_API_BASE_URL,
    GITHUB_API_VERSION,
    GITHUB_MAX_PAGES,
    GITHUB_PER_PAGE,
    GITHUB_SEEN_LIMIT,
    PLUGIN_GITHUB,
    PLUGIN_VERSION,
)
from autonav.exceptions import PluginAuthError, RateLimitedError, RemoteCallError
from autonav.logging import get_logger
from autonav.plugins.base import (
    ActionResult,
    GitHubAddLabel,
    GitHubCloseIssue,
    GitHubCommentEvent,
    GitHubCommentIssue,
    GitHubCommentPr,
    GitHubCreateIssue,
    GitHubCreatePr,
    GitHubIssueEvent,
    GitHubMergePr,
    GitHubPullRequestEvent,
    Plugin,
    PluginActionBase,
    PluginEventBase,
    PluginHealthStatus,
)

logger = get_logger(__name__)


class GitHubPlugin(Plugin):
    """GitHub integration.

    Class Attributes:
        name: Plugin identifier ("github").
        version: Plugin version.
        description: Human description.
        config_schema: Configuration model (GitHubPluginConfig).
    """

    name: ClassVar[str] = PLUGIN_GITHUB
    version: ClassVar[str] = PLUGIN_VERSION
    description: ClassVar[str] = "GitHub integration for issues and pull requests"
    config_schema: ClassVar[type[GitHubPluginConfig]] = GitHubPluginConfig

    def __init__(
        self,
        config: GitHubPluginConfig,
        *,
        per_page: int = GITHUB_PER_PAGE,
        max_pages: int = GITHUB_MAX_PAGES,
    ) -> None:
        """Initialize the GitHub plugin.

        Args:
            config: GitHub configuration with a resolved token.
            per_page: Items requested per page while polling.
            max_pages: Upper bound on pages fetched per resource per poll.
        """
        self._config = config
        self._per_page = per_page
        self._max_pages = max_pages
        self._client: httpx.AsyncClient | None = None
        self._initialized = False
        self._login: str | None = None
        self._seen: dict[tuple[str, str, str, int], None] = {}
        self._pushed: list[PluginEventBase] = []

    def is_enabled(self) -> bool:
        return self._config.enabled

    @property
    def login(self) -> str | None:
        """Login of the authenticated user, once initialized."""
        return self._login

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client with GitHub headers."""
        if not self._config.token:
            raise PluginAuthError("No GitHub token configured", plugin_name=self.name)
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=GITHUB_API_BASE_URL,
                headers={
                    "Authorization": f"Bearer {self._config.token}",
                    "Accept": "application/vnd.github+json",
                    "X-GitHub-Api-Version": GITHUB_API_VERSION,
                },
                timeout=DEFAULT_HTTP_TIMEOUT_SECONDS,
            )
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        """Make a GitHub API request and map failures to plugin errors.

        Raises:
            PluginAuthError: On 401.
            RateLimitedError: On 429, or 403 with an exhausted rate budget.
            RemoteCallError: On any other non-2xx, with GitHub's message.
        """
        client = self._get_client()

        try:
            response = await client.request(method, path, params=params, json=json)
        except httpx.RequestError as e:
            raise RemoteCallError(f"Network error: {e}", plugin_name=self.name) from e

        if response.is_success:
            if response.status_code == 204 or not response.content:
                return None
            try:
                return response.json()
            except ValueError as e:
                raise RemoteCallError(
                    "Invalid JSON from GitHub",
                    plugin_name=self.name,
                    status_code=response.status_code,
                    details={"path": path},
                ) from e

        status = response.status_code
        message = self._error_message(response)

        if status == 401:
            raise PluginAuthError(message, plugin_name=self.name)
        if status == 429 or (status == 403 and response.headers.get("x-ratelimit-remaining") == "0"):
            raise RateLimitedError(
                self.name,
                retry_after=self._retry_after(response),
                status_code=status,
            )
        raise RemoteCallError(
            message,
            plugin_name=self.name,
            status_code=status,
            details={"method": method, "path": path},
        )

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return f"HTTP {response.status_code}"
        if isinstance(data, dict) and data.get("message"):
            return str(data["message"])
        return f"HTTP {response.status_code}"

    @staticmethod
    def _retry_after(response: httpx.Response) -> float | None:
        retry_after = response.headers.get("Retry-After")
        if retry_after is not None:
            try:
                return float(retry_after)
            except ValueError:
                return None
        reset = response.headers.get("x-ratelimit-reset")
        if reset is not None:
            try:
                return max(0.0, float(reset) - time.time())
            except ValueError:
                return None
        return None

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def initialize(self) -> None:
        """Authenticate by fetching the current user."""
        if not self._config.enabled:
            logger.debug("GitHub plugin is disabled, skipping initialization")
            return
        if self._initialized:
            return

        user = await self._request("GET", "/user")
        self._login = (user or {}).get("login")
        self._initialized = True
        logger.info("GitHub authenticated", extra={"login": self._login})

    async def shutdown(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self._initialized = False
        self._pushed.clear()

    # =========================================================================
    # EVENTS
    # =========================================================================

    def _watched_repositories(self) -> list[tuple[str, str]]:
        repos: list[tuple[str, str]] = []
        if self._config.owner and self._config.repo:
            repos.append((self._config.owner, self._config.repo))
        for full_name in self._config.repositories:
            owner, _, repo = full_name.partition("/")
            if owner and repo and (owner, repo) not in repos:
                repos.append((owner, repo))
        return repos

    async def _fetch_open(self, path: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        """Fetch open items page by page, stopping at max_pages."""
        items: list[dict[str, Any]] = []
        for page in range(1, self._max_pages + 1):
            batch = await self._request(
                "GET",
                path,
                params={**params, "state": "open", "per_page": self._per_page, "page": page},
            )
            if not batch:
                break
            items.extend(batch)
            if len(batch) < self._per_page:
                break
        return items

    def _is_new(self, kind: str, owner: str, repo: str, number: int) -> bool:
        key = (kind, owner, repo, number)
        if key in self._seen:
            return False
        self._seen[key] = None
        if len(self._seen) > GITHUB_SEEN_LIMIT:
            self._seen.pop(next(iter(self._seen)))
        return True

    async def _poll_issues(self, owner: str, repo: str) -> list[PluginEventBase]:
        params: dict[str, Any] = {}
        if self._config.issue_labels:
            params["labels"] = ",".join(self._config.issue_labels)

        events: list[PluginEventBase] = []
        for item in await self._fetch_open(f"/repos/{owner}/{repo}/issues", params):
            # The issues endpoint also lists pull requests
            if "pull_request" in item:
                continue
            if self._is_new("issue", owner, repo, item["number"]):
                events.append(
                    GitHubIssueEvent(
                        owner=owner,
                        repo=repo,
                        number=item["number"],
                        title=item.get("title", ""),
                        body=item.get("body"),
                        action="opened",
                    )
                )
        return events

    async def _poll_pull_requests(self, owner: str, repo: str) -> list[PluginEventBase]:
        events: list[PluginEventBase] = []
        for item in await self._fetch_open(f"/repos/{owner}/{repo}/pulls", {}):
            if self._is_new("pull_request", owner, repo, item["number"]):
                events.append(
                    GitHubPullRequestEvent(
                        owner=owner,
                        repo=repo,
                        number=item["number"],
                        title=item.get("title") or "",
                        body=item.get("body"),
                        action="opened",
                    )
                )
        return events

    async def listen(self) -> list[PluginEventBase]:
        """Poll watched repositories for issues and PRs not reported before.

        A failing repository is logged and skipped; the others still report.
        """
        events, self._pushed = self._pushed, []
        if not self._initialized:
            return events

        for owner, repo in self._watched_repositories():
            try:
                if self._config.watch_issues:
                    events.extend(await self._poll_issues(owner, repo))
                if self._config.watch_pull_requests:
                    events.extend(await self._poll_pull_requests(owner, repo))
            except RemoteCallError as e:
                logger.warning(
                    "GitHub poll failed",
                    extra={"repository": f"{owner}/{repo}", "error": e.message},
                )

        return events

    def ingest(self, event_name: str, payload: dict[str, Any]) -> PluginEventBase | None:
        """Buffer a webhook delivery.

        Only `issue_comment` deliveries with action "created" are kept;
        issues and pull requests are picked up by polling.

        Args:
            event_name: Value of the X-GitHub-Event header.
            payload: Decoded delivery body.

        Returns:
            The buffered event, or None if the delivery was ignored.
        """
        if event_name != "issue_comment" or payload.get("action") != "created":
            return None

        repository = payload.get("repository") or {}
        comment = payload.get("comment") or {}
        issue = payload.get("issue") or {}
        owner = (repository.get("owner") or {}).get("login", "")

        event = GitHubCommentEvent(
            owner=owner,
            repo=repository.get("name", ""),
            issue_number=issue.get("number", 0),
            body=comment.get("body", ""),
            user=(comment.get("user") or {}).get("login", ""),
        )
        self._pushed.append(event)
        return event

    # =========================================================================
    # ACTIONS
    # =========================================================================

    async def execute(self, action: PluginActionBase) -> ActionResult:
        """Perform one GitHub action as a single API call."""
        self.ensure_supported(action)

        if isinstance(action, GitHubCreateIssue):
            body: dict[str, Any] = {"title": action.title}
            if action.body is not None:
                body["body"] = action.body
            if action.labels:
                body["labels"] = action.labels
            issue = await self._request(
                "POST", f"/repos/{action.owner}/{action.repo}/issues", json=body
            )
            return ActionResult.ok({"number": issue["number"], "url": issue.get("html_url")})

        if isinstance(action, GitHubCommentIssue | GitHubCommentPr):
            number = action.issue_number if isinstance(action, GitHubCommentIssue) else action.pr_number
            comment = await self._request(
                "POST",
                f"/repos/{action.owner}/{action.repo}/issues/{number}/comments",
                json={"body": action.body},
            )
            return ActionResult.ok({"id": comment["id"], "url": comment.get("html_url")})

        if isinstance(action, GitHubCloseIssue):
            await self._request(
                "PATCH",
                f"/repos/{action.owner}/{action.repo}/issues/{action.issue_number}",
                json={"state": "closed"},
            )
            return ActionResult.ok()

        if isinstance(action, GitHubCreatePr):
            pr = await self._request(
                "POST",
                f"/repos/{action.owner}/{action.repo}/pulls",
                json={
                    "title": action.title,
                    "body": action.body or "",
                    "head": action.head,
                    "base": action.base,
                },
            )
            return ActionResult.ok({"number": pr["number"], "url": pr.get("html_url")})

        if isinstance(action, GitHubMergePr):
            merge = await self._request(
                "PUT", f"/repos/{action.owner}/{action.repo}/pulls/{action.pr_number}/merge"
            )
            merge = merge or {}
            return ActionResult.ok({"merged": merge.get("merged", True), "sha": merge.get("sha")})

        if isinstance(action, GitHubAddLabel):
            await self._request(
                "POST",
                f"/repos/{action.owner}/{action.repo}/issues/{action.issue_number}/labels",
                json={"labels": [action.label]},
            )
            return ActionResult.ok()

        return ActionResult.failure(f"Unhandled GitHub action: {type(action).__name__}")

    async def health_check(self) -> PluginHealthStatus:
        """Check status with a read-only `GET /user`."""
        if not self._config.enabled:
            return PluginHealthStatus.unhealthy("Plugin is disabled")
        if not self._initialized:
            return PluginHealthStatus.unhealthy("Plugin not initialized")

        try:
            await self._request("GET", "/user")
        except (PluginAuthError, RemoteCallError) as e:
            return PluginHealthStatus.unhealthy(f"Health check failed: {e.message}")
        return PluginHealthStatus.ok()
