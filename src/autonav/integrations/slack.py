"""Slack plugin for sending and receiving messages.

Outbound actions (post, update, react) go straight to the Slack Web API.
Inbound messages are polled: each `listen()` reads `conversations.history`
for every configured channel since the last message it saw there. Events
API payloads can also be pushed through `SlackPlugin.ingest`; they are
returned by the next `listen()` and deduplicated against polled messages.

Example:
    config = SlackPluginConfig(enabled=True, token="xoxb-...", channels=["eng"])
    plugin = SlackPlugin(config)
    await plugin.initialize()
    await plugin.execute(SlackSendMessage(channel="C123", text="Deployed"))
"""

from __future__ import annotations

import time
from typing import Any, ClassVar

import httpx

from autonav.config import SlackPluginConfig
from autonav.constants import (
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    PLUGIN_SLACK,
    PLUGIN_VERSION,
    SLACK_API_BASE_URL,
    SLACK_HISTORY_LIMIT,
    SLACK_SEEN_LIMIT,
)
from autonav.exceptions import PluginAuthError, RateLimitedError, RemoteCallError
from autonav.logging import get_logger
from autonav.plugins.base import (
    ActionResult,
    Plugin,
    PluginActionBase,
    PluginEventBase,
    PluginHealthStatus,
    SlackAddReaction,
    SlackMentionEvent,
    SlackMessageEvent,
    SlackReactionEvent,
    SlackSendMessage,
    SlackUpdateMessage,
)

logger = get_logger(__name__)

# Slack error codes that mean the token itself is the problem
AUTH_ERRORS = frozenset(
    {"not_authed", "invalid_auth", "account_inactive", "token_revoked", "token_expired"}
)


def _retry_after(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class SlackPlugin(Plugin):
    """Slack integration.

    Class Attributes:
        name: Plugin identifier ("slack").
        version: Plugin version.
        description: Human description.
        config_schema: Configuration model (SlackPluginConfig).
    """

    name: ClassVar[str] = PLUGIN_SLACK
    version: ClassVar[str] = PLUGIN_VERSION
    description: ClassVar[str] = "Slack integration for sending and receiving messages"
    config_schema: ClassVar[type[SlackPluginConfig]] = SlackPluginConfig

    def __init__(self, config: SlackPluginConfig) -> None:
        """Initialize the Slack plugin.

        Args:
            config: Slack configuration with a resolved bot token.
        """
        self._config = config
        self._client: httpx.AsyncClient | None = None
        self._initialized = False
        self._bot_user_id: str | None = config.bot_user_id
        self._buffer: list[PluginEventBase] = []
        self._seen: dict[str, None] = {}
        # channel -> ts of the newest message already read from history
        self._cursors: dict[str, str] = {}
        self._started_at = "0"

    @property
    def bot_user_id(self) -> str | None:
        return self._bot_user_id

    def is_enabled(self) -> bool:
        return self._config.enabled

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if not self._config.token:
            raise PluginAuthError("No Slack bot token configured", plugin_name=self.name)
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=SLACK_API_BASE_URL,
                headers={
                    "Authorization": f"Bearer {self._config.token}",
                    "Content-Type": "application/json; charset=utf-8",
                },
                timeout=DEFAULT_HTTP_TIMEOUT_SECONDS,
            )
        return self._client

    async def _api_call(
        self,
        method: str,
        payload: dict[str, Any] | None = None,
        *,
        query: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Call a Slack Web API method.

        Args:
            method: API method name (e.g. "chat.postMessage").
            payload: JSON body.
            query: Query parameters. When given, the method is called with
                GET instead of a JSON POST (read methods such as
                `conversations.history` do not accept JSON bodies).

        Returns:
            The decoded response for an `ok: true` reply.

        Raises:
            PluginAuthError: Token missing or rejected.
            RateLimitedError: HTTP 429 or a `ratelimited` error.
            RemoteCallError: Any other failure, carrying Slack's error code.
        """
        client = self._get_client()

        try:
            if query is not None:
                response = await client.get(f"/{method}", params=query)
            else:
                response = await client.post(f"/{method}", json=payload or {})
        except httpx.RequestError as e:
            raise RemoteCallError(f"Network error: {e}", plugin_name=self.name) from e

        if response.status_code == 429:
            raise RateLimitedError(
                self.name,
                retry_after=_retry_after(response.headers.get("Retry-After")),
                status_code=429,
            )
        if response.is_error:
            raise RemoteCallError(
                f"HTTP {response.status_code}",
                plugin_name=self.name,
                status_code=response.status_code,
                details={"method": method},
            )

        try:
            data: dict[str, Any] = response.json()
        except ValueError as e:
            raise RemoteCallError("Invalid JSON from Slack", plugin_name=self.name) from e

        if not data.get("ok"):
            error = str(data.get("error", "unknown_error"))
            logger.warning("Slack API error", extra={"method": method, "error": error})
            if error == "ratelimited":
                raise RateLimitedError(self.name, retry_after=_retry_after(data.get("retry_after")))
            if error in AUTH_ERRORS:
                raise PluginAuthError(error, plugin_name=self.name)
            raise RemoteCallError(error, plugin_name=self.name, details={"method": method})

        return data

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def initialize(self) -> None:
        """Authenticate with `auth.test` and remember the bot's user id."""
        if not self._config.enabled:
            logger.debug("Slack plugin is disabled, skipping initialization")
            return
        if self._initialized:
            return

        auth = await self._api_call("auth.test")
        self._bot_user_id = auth.get("user_id") or self._bot_user_id
        # History before startup is not reported
        self._started_at = f"{time.time():.6f}"
        self._initialized = True
        logger.info(
            "Slack authenticated",
            extra={"bot_user": auth.get("user"), "team": auth.get("team")},
        )

    async def shutdown(self) -> None:
        """Close the HTTP client and drop buffered events."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self._initialized = False
        self._buffer.clear()
        self._cursors.clear()

    # =========================================================================
    # EVENTS
    # =========================================================================

    def ingest(self, payload: dict[str, Any]) -> PluginEventBase | None:
        """Buffer one Slack Events API event.

        Accepts either the inner `event` object or the full callback
        envelope. Bot messages, message edits and repeats of an already
        buffered message are ignored.

        Args:
            payload: Slack event payload.

        Returns:
            The buffered event, or None if the payload was ignored.
        """
        event_data = payload.get("event", payload)
        event = self._to_event(event_data)
        if event is None or not self._remember(event):
            return None

        self._buffer.append(event)
        return event

    def _remember(self, event: PluginEventBase) -> bool:
        """Record an event; False if it was already reported."""
        key = self._dedupe_key(event)
        if key in self._seen:
            return False
        self._seen[key] = None
        if len(self._seen) > SLACK_SEEN_LIMIT:
            self._seen.pop(next(iter(self._seen)))
        return True

    def _to_event(self, data: dict[str, Any]) -> PluginEventBase | None:
        event_type = data.get("type")

        if event_type == "reaction_added":
            item = data.get("item") or {}
            if not item.get("ts"):
                return None
            return SlackReactionEvent(
                channel=item.get("channel", ""),
                user=data.get("user", ""),
                reaction=data.get("reaction", ""),
                item_ts=item["ts"],
            )

        if event_type not in ("message", "app_mention"):
            return None
        if data.get("subtype") or data.get("bot_id") or not data.get("ts"):
            return None
        if self._bot_user_id and data.get("user") == self._bot_user_id:
            return None

        text = data.get("text", "")
        mention = f"<@{self._bot_user_id}>" if self._bot_user_id else None
        if event_type == "app_mention" or (mention and mention in text):
            return SlackMentionEvent(
                channel=data.get("channel", ""),
                user=data.get("user", ""),
                text=text,
                ts=data["ts"],
            )

        return SlackMessageEvent(
            channel=data.get("channel", ""),
            user=data.get("user", ""),
            text=text,
            ts=data["ts"],
            thread_ts=data.get("thread_ts"),
        )

    @staticmethod
    def _dedupe_key(event: PluginEventBase) -> str:
        if isinstance(event, SlackReactionEvent):
            return f"reaction:{event.item_ts}:{event.user}:{event.reaction}"
        # Slack delivers a mention as both `message` and `app_mention`
        return f"message:{getattr(event, 'ts', '')}"

    async def _poll_channel(self, channel: str) -> list[PluginEventBase]:
        oldest = self._cursors.get(channel, self._started_at)
        data = await self._api_call(
            "conversations.history",
            query={"channel": channel, "oldest": oldest, "limit": SLACK_HISTORY_LIMIT},
        )
        messages = [m for m in data.get("messages") or [] if m.get("ts")]
        if not messages:
            return []

        self._cursors[channel] = max((m["ts"] for m in messages), key=float)

        events: list[PluginEventBase] = []
        # History is newest first
        for message in sorted(messages, key=lambda m: float(m["ts"])):
            event = self._to_event({"type": "message", **message, "channel": channel})
            if event is not None and self._remember(event):
                events.append(event)
        return events

    async def listen(self) -> list[PluginEventBase]:
        """Return pushed events plus new messages from watched channels.

        A channel that fails to read is logged and skipped; the others
        still report.
        """
        events, self._buffer = self._buffer, []
        if not self._initialized:
            return events

        for channel in self._config.channels:
            try:
                events.extend(await self._poll_channel(channel))
            except RemoteCallError as e:
                logger.warning(
                    "Slack channel poll failed",
                    extra={"channel": channel, "error": e.message},
                )

        return events

    # =========================================================================
    # ACTIONS
    # =========================================================================

    async def execute(self, action: PluginActionBase) -> ActionResult:
        """Map a Slack action onto one Web API call."""
        self.ensure_supported(action)

        if isinstance(action, SlackSendMessage):
            payload: dict[str, Any] = {"channel": action.channel, "text": action.text}
            if action.thread_ts:
                payload["thread_ts"] = action.thread_ts
            data = await self._api_call("chat.postMessage", payload)
            return ActionResult.ok({"ts": data.get("ts"), "channel": data.get("channel")})

        if isinstance(action, SlackUpdateMessage):
            data = await self._api_call(
                "chat.update",
                {"channel": action.channel, "ts": action.timestamp, "text": action.text},
            )
            return ActionResult.ok({"ts": data.get("ts"), "channel": data.get("channel")})

        if isinstance(action, SlackAddReaction):
            await self._api_call(
                "reactions.add",
                {"channel": action.channel, "timestamp": action.timestamp, "name": action.reaction},
            )
            return ActionResult.ok()

        # A Slack-owned action this version doesn't implement
        return ActionResult.failure(f"Unhandled Slack action: {type(action).__name__}")

    async def health_check(self) -> PluginHealthStatus:
        """Check status with a read-only `auth.test` call."""
        if not self._config.enabled:
            return PluginHealthStatus.unhealthy("Plugin is disabled")
        if not self._initialized:
            return PluginHealthStatus.unhealthy("Plugin not initialized")

        try:
            await self._api_call("auth.test")
        except (PluginAuthError, RemoteCallError) as e:
            return PluginHealthStatus.unhealthy(f"Health check failed: {e.message}")
        return PluginHealthStatus.ok()
