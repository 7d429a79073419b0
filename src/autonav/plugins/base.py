"""Base plugin interface for autonav.

This module defines the contract every integration implements and the
generic data it exchanges with the rest of the system:

- Plugin: lifecycle + event/action interface (Slack, GitHub, file watcher, ...)
- PluginEvent: tagged union of things a plugin noticed
- PluginAction: tagged union of things a plugin can be asked to do
- ActionResult / PluginHealthStatus: results of execute() and health_check()

Every event and action variant carries a `plugin_name` class attribute. It is
the single source of routing truth: the plugin manager sends an action to the
plugin whose `name` equals `action.plugin_name`. A variant class that forgets
to declare one fails when the class is defined, not when it is routed.

Design Principles:
- All I/O operations are async
- Plugins own their resources (HTTP clients, background tasks, buffers)
- Credentials arrive through config; plugins never read the environment
- health_check() never raises
- listen() returns [] when there is nothing new

Example Plugin:
    class EchoPlugin(Plugin):
        name = "echo"
        version = "1.0.0"
        description = "Echoes actions back"
        config_schema = EchoConfig

        async def execute(self, action):
            self.ensure_supported(action)
            return ActionResult.ok({"echo": action.model_dump()})
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import UTC, datetime
from typing import Annotated, Any, ClassVar, Literal

from pydantic import BaseModel, Field, TypeAdapter

from autonav.constants import PLUGIN_FILE_WATCHER, PLUGIN_GITHUB, PLUGIN_SLACK
from autonav.exceptions import ActionNotSupportedError

# =============================================================================
# ROUTING
# =============================================================================


class _RoutedModel(BaseModel):
    """Base for tagged variants that belong to exactly one plugin."""

    plugin_name: ClassVar[str]

    model_config = {"frozen": True}

    @classmethod
    def __pydantic_init_subclass__(cls, **kwargs: Any) -> None:
        super().__pydantic_init_subclass__(**kwargs)
        # Only tagged (concrete) variants are routed; grouping bases may omit it.
        if "type" not in cls.model_fields:
            return
        owner = getattr(cls, "plugin_name", None)
        if not isinstance(owner, str) or not owner:
            raise TypeError(f"{cls.__name__} must declare a plugin_name")


class PluginEventBase(_RoutedModel):
    """Base class for all plugin events."""


class PluginActionBase(_RoutedModel):
    """Base class for all plugin actions."""


# =============================================================================
# EVENTS
# =============================================================================


class SlackEvent(PluginEventBase):
    plugin_name: ClassVar[str] = PLUGIN_SLACK


class SlackMessageEvent(SlackEvent):
    """A message posted in a watched channel."""

    type: Literal["slack_message"] = "slack_message"
    channel: str
    user: str
    text: str
    ts: str
    thread_ts: str | None = None


class SlackMentionEvent(SlackEvent):
    """A message that mentions the bot."""

    type: Literal["slack_mention"] = "slack_mention"
    channel: str
    user: str
    text: str
    ts: str


class SlackReactionEvent(SlackEvent):
    """A reaction added to a message."""

    type: Literal["slack_reaction"] = "slack_reaction"
    channel: str
    user: str
    reaction: str
    item_ts: str


class GitHubEvent(PluginEventBase):
    plugin_name: ClassVar[str] = PLUGIN_GITHUB


class GitHubIssueEvent(GitHubEvent):
    """An issue seen while polling."""

    type: Literal["github_issue"] = "github_issue"
    owner: str
    repo: str
    number: int
    title: str
    body: str | None = None
    action: str = "opened"


class GitHubPullRequestEvent(GitHubEvent):
    """A pull request seen while polling."""

    type: Literal["github_pull_request"] = "github_pull_request"
    owner: str
    repo: str
    number: int
    title: str
    body: str | None = None
    action: str = "opened"


class GitHubCommentEvent(GitHubEvent):
    """A comment on an issue or pull request."""

    type: Literal["github_comment"] = "github_comment"
    owner: str
    repo: str
    issue_number: int
    body: str
    user: str


class FileEvent(PluginEventBase):
    plugin_name: ClassVar[str] = PLUGIN_FILE_WATCHER


class FileAddedEvent(FileEvent):
    type: Literal["file_added"] = "file_added"
    path: str


class FileChangedEvent(FileEvent):
    type: Literal["file_changed"] = "file_changed"
    path: str


class FileRemovedEvent(FileEvent):
    type: Literal["file_removed"] = "file_removed"
    path: str


PluginEvent = Annotated[
    SlackMessageEvent
    | SlackMentionEvent
    | SlackReactionEvent
    | GitHubIssueEvent
    | GitHubPullRequestEvent
    | GitHubCommentEvent
    | FileAddedEvent
    | FileChangedEvent
    | FileRemovedEvent,
    Field(discriminator="type"),
]


# =============================================================================
# ACTIONS
# =============================================================================


class SlackAction(PluginActionBase):
    plugin_name: ClassVar[str] = PLUGIN_SLACK


class SlackSendMessage(SlackAction):
    """Post a message, optionally as a thread reply."""

    type: Literal["slack_send_message"] = "slack_send_message"
    channel: str
    text: str
    thread_ts: str | None = None


class SlackAddReaction(SlackAction):
    type: Literal["slack_add_reaction"] = "slack_add_reaction"
    channel: str
    timestamp: str
    reaction: str


class SlackUpdateMessage(SlackAction):
    type: Literal["slack_update_message"] = "slack_update_message"
    channel: str
    timestamp: str
    text: str


class GitHubAction(PluginActionBase):
    plugin_name: ClassVar[str] = PLUGIN_GITHUB


class GitHubCreateIssue(GitHubAction):
    type: Literal["github_create_issue"] = "github_create_issue"
    owner: str
    repo: str
    title: str
    body: str | None = None
    labels: list[str] = Field(default_factory=list)


class GitHubCommentIssue(GitHubAction):
    type: Literal["github_comment_issue"] = "github_comment_issue"
    owner: str
    repo: str
    issue_number: int
    body: str


class GitHubCloseIssue(GitHubAction):
    type: Literal["github_close_issue"] = "github_close_issue"
    owner: str
    repo: str
    issue_number: int


class GitHubCreatePr(GitHubAction):
    type: Literal["github_create_pr"] = "github_create_pr"
    owner: str
    repo: str
    title: str
    body: str | None = None
    head: str
    base: str


class GitHubCommentPr(GitHubAction):
    type: Literal["github_comment_pr"] = "github_comment_pr"
    owner: str
    repo: str
    pr_number: int
    body: str


class GitHubMergePr(GitHubAction):
    type: Literal["github_merge_pr"] = "github_merge_pr"
    owner: str
    repo: str
    pr_number: int


class GitHubAddLabel(GitHubAction):
    type: Literal["github_add_label"] = "github_add_label"
    owner: str
    repo: str
    issue_number: int
    label: str


class FileWatcherAction(PluginActionBase):
    plugin_name: ClassVar[str] = PLUGIN_FILE_WATCHER


class FileWatcherRefresh(FileWatcherAction):
    """Rescan watched paths from scratch."""

    type: Literal["file_watcher_refresh"] = "file_watcher_refresh"


class FileWatcherClear(FileWatcherAction):
    """Drop buffered, not yet reported changes."""

    type: Literal["file_watcher_clear"] = "file_watcher_clear"


PluginAction = Annotated[
    SlackSendMessage
    | SlackAddReaction
    | SlackUpdateMessage
    | GitHubCreateIssue
    | GitHubCommentIssue
    | GitHubCloseIssue
    | GitHubCreatePr
    | GitHubCommentPr
    | GitHubMergePr
    | GitHubAddLabel
    | FileWatcherRefresh
    | FileWatcherClear,
    Field(discriminator="type"),
]

_event_adapter: TypeAdapter[Any] = TypeAdapter(PluginEvent)
_action_adapter: TypeAdapter[Any] = TypeAdapter(PluginAction)


def parse_event(data: Any) -> PluginEventBase:
    """Build the event variant named by data["type"]."""
    return _event_adapter.validate_python(data)


def parse_action(data: Any) -> PluginActionBase:
    """Build the action variant named by data["type"]."""
    return _action_adapter.validate_python(data)


# =============================================================================
# RESULTS
# =============================================================================


class ActionResult(BaseModel):
    """Outcome of a single executed action."""

    success: bool = Field(..., description="Whether the action succeeded")
    data: Any = Field(default=None, description="Provider payload on success")
    error: str | None = Field(default=None, description="Error message on failure")

    @classmethod
    def ok(cls, data: Any = None) -> ActionResult:
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, error: str) -> ActionResult:
        return cls(success=False, error=error)


class PluginHealthStatus(BaseModel):
    """Best-effort health of one plugin."""

    healthy: bool = Field(..., description="Whether the plugin is usable")
    message: str | None = Field(default=None, description="Reason when unhealthy")
    last_check: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def ok(cls) -> PluginHealthStatus:
        return cls(healthy=True)

    @classmethod
    def unhealthy(cls, message: str) -> PluginHealthStatus:
        return cls(healthy=False, message=message)


# =============================================================================
# PLUGIN INTERFACE
# =============================================================================


class Plugin(ABC):
    """Abstract base class for all integrations.

    Class Attributes:
        name: Unique identifier, also the routing key (e.g. "slack").
        version: Plugin version string.
        description: One-line human description.
        config_schema: Pydantic model class for the plugin's configuration.

    Implementation Requirements:
        - initialize() may be retried after a failure
        - shutdown() releases everything even if initialize() failed midway
        - listen() drains buffered events without blocking on the provider
        - execute() handles exactly the actions routed to `name`
        - health_check() never raises
    """

    name: ClassVar[str]
    version: ClassVar[str]
    description: ClassVar[str]
    config_schema: ClassVar[type[BaseModel]]

    @abstractmethod
    def is_enabled(self) -> bool:
        """Whether the plugin's configuration enables it."""
        ...

    @abstractmethod
    async def initialize(self) -> None:
        """Acquire resources and authenticate.

        Raises:
            PluginError: A typed reason if the plugin can't start.
        """
        ...

    @abstractmethod
    async def shutdown(self) -> None:
        """Release all resources. Safe to call repeatedly."""
        ...

    @abstractmethod
    async def listen(self) -> list[PluginEventBase]:
        """Drain and return events gathered since the last call.

        Returns:
            New events, deduplicated; empty if nothing happened.
        """
        ...

    @abstractmethod
    async def execute(self, action: PluginActionBase) -> ActionResult:
        """Perform one action owned by this plugin.

        Raises:
            ActionNotSupportedError: If the action belongs to another plugin.
            PluginAuthError: If the plugin isn't authenticated.
            RateLimitedError: If the provider throttled the call.
            RemoteCallError: If the provider call failed.
        """
        ...

    @abstractmethod
    async def health_check(self) -> PluginHealthStatus:
        """Report current status without raising."""
        ...

    def supports(self, action: PluginActionBase) -> bool:
        """Check whether an action is routed to this plugin."""
        return action.plugin_name == self.name

    def ensure_supported(self, action: PluginActionBase) -> None:
        """Raise ActionNotSupportedError for actions owned by other plugins."""
        if not self.supports(action):
            raise ActionNotSupportedError(self.name, getattr(action, "type", type(action).__name__))
