"""Plugin manager for orchestrating integrations.

This module provides the PluginManager class that handles:
- Registration of plugin classes (built-in and custom)
- Loading and initializing plugins from the navigator's plugin config
- Fanning out listen() and health_check() across plugins
- Routing actions to the plugin named by the action's tag
- Shutdown of every plugin, whatever state it is in

Per-plugin lifecycle: unregistered -> initializing -> ready -> shut down.
A plugin that fails to initialize is reported to the caller and never
enters the registry.

Concurrency:
    initialize, listen, execute and shutdown take the plugin's own lock, so
    two of them never run at once on the same plugin. health_check takes no
    lock. listen, health_check and initialize are bounded by a per-plugin
    deadline; execute is not, since a dispatched side effect runs to
    completion or typed failure.

Example Usage:
    manager = PluginManager()
    manager.register_builtin_plugins()
    failures = await manager.load_from_config(Path(".claude/plugins.json"))

    events = await manager.listen_all()
    await manager.execute(SlackSendMessage(channel="C123", text="hi"))
    await manager.shutdown()
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from autonav.config import PluginConfig, load_plugin_config, resolve_credentials
from autonav.constants import DEFAULT_PLUGIN_TIMEOUT_SECONDS
from autonav.exceptions import (
    PluginInitializationError,
    PluginNotEnabledError,
    PluginNotFoundError,
)
from autonav.logging import get_logger
from autonav.plugins.base import (
    ActionResult,
    Plugin,
    PluginActionBase,
    PluginEventBase,
    PluginHealthStatus,
)
from autonav.utils import sanitize_credentials

if TYPE_CHECKING:
    from types import TracebackType

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class PluginRecord:
    """A registered plugin and the lock that serializes its operations."""

    name: str
    plugin: Plugin
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def enabled(self) -> bool:
        return self.plugin.is_enabled()


def _describe(error: BaseException) -> str:
    if isinstance(error, TimeoutError):
        return "timed out"
    return sanitize_credentials(str(error) or type(error).__name__)


class PluginManager:
    """Registry and orchestrator for live plugins.

    Attributes:
        plugin_timeout: Per-plugin deadline in seconds for initialize,
            listen and health_check.
    """

    def __init__(self, *, plugin_timeout: float = DEFAULT_PLUGIN_TIMEOUT_SECONDS) -> None:
        self.plugin_timeout = plugin_timeout
        self._plugin_classes: dict[str, type[Plugin]] = {}
        self._records: dict[str, PluginRecord] = {}
        self.config_path: Path | None = None

    # =========================================================================
    # PLUGIN CLASSES
    # =========================================================================

    def register_plugin_class(self, plugin_class: type[Plugin]) -> None:
        """Make a plugin kind loadable from configuration.

        Args:
            plugin_class: The Plugin subclass to register.

        Raises:
            ValueError: If another class already uses the same name.
        """
        name = plugin_class.name
        existing = self._plugin_classes.get(name)
        if existing is not None:
            if existing is not plugin_class:
                raise ValueError(f"Plugin '{name}' already registered by {existing.__module__}")
            return

        self._plugin_classes[name] = plugin_class
        logger.debug(f"Registered plugin class: {name} ({plugin_class.__module__})")

    def register_builtin_plugins(self) -> None:
        """Register the Slack, GitHub and file watcher plugin classes."""
        # Import here to avoid circular imports
        from autonav.integrations.file_watcher import FileWatcherPlugin
        from autonav.integrations.github import GitHubPlugin
        from autonav.integrations.slack import SlackPlugin

        self.register_plugin_class(SlackPlugin)
        self.register_plugin_class(GitHubPlugin)
        self.register_plugin_class(FileWatcherPlugin)

    def list_plugin_classes(self) -> list[str]:
        """Names of loadable plugin kinds, in registration order."""
        return list(self._plugin_classes)

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    async def register(self, plugin: Plugin) -> None:
        """Initialize a plugin and add it to the registry.

        The registry is unchanged if initialization fails; whatever the
        plugin acquired before failing is released.

        Args:
            plugin: A configured, not yet initialized plugin.

        Raises:
            PluginInitializationError: If the name is taken or initialize() fails.
        """
        name = plugin.name
        if name in self._records:
            raise PluginInitializationError("Plugin already registered", plugin_name=name)

        record = PluginRecord(name=name, plugin=plugin)
        logger.debug("Initializing plugin", extra={"plugin": name})

        try:
            async with record.lock:
                await asyncio.wait_for(plugin.initialize(), self.plugin_timeout)
        except Exception as e:
            reason = _describe(e)
            logger.error("Plugin initialization failed", extra={"plugin": name, "error": reason})
            await self._release(plugin)
            raise PluginInitializationError(
                f"Initialization failed: {reason}",
                plugin_name=name,
            ) from e

        self._records[name] = record
        logger.info("Plugin registered", extra={"plugin": name, "version": plugin.version})

    async def _release(self, plugin: Plugin) -> None:
        try:
            await asyncio.wait_for(plugin.shutdown(), self.plugin_timeout)
        except Exception as e:
            logger.warning(
                "Cleanup after failed initialization failed",
                extra={"plugin": plugin.name, "error": _describe(e)},
            )

    def _build_plugin(self, plugin_class: type[Plugin], section: Any) -> Plugin:
        schema = plugin_class.config_schema
        config = section if isinstance(section, schema) else schema.model_validate(section)
        return plugin_class(config)  # type: ignore[call-arg]

    @staticmethod
    def _section_enabled(section: Any) -> bool:
        if isinstance(section, BaseModel):
            return bool(getattr(section, "enabled", False))
        if isinstance(section, Mapping):
            return bool(section.get("enabled", False))
        return False

    async def load_from_config(
        self,
        config_path: Path | None = None,
        *,
        config: PluginConfig | None = None,
        env: Mapping[str, str] | None = None,
    ) -> list[PluginInitializationError]:
        """Register every enabled plugin kind found in configuration.

        The file is loaded with ${VAR} expansion and SLACK_BOT_TOKEN /
        GITHUB_TOKEN fallbacks; a missing or corrupt file means no plugins.
        Kinds are processed in registration order and independently: one
        kind failing doesn't stop the others.

        Args:
            config_path: Plugin configuration file.
            config: Already loaded configuration (takes precedence over the path).
            env: Environment for token fallbacks (defaults to os.environ).

        Returns:
            One error per enabled kind that failed to load.
        """
        if not self._plugin_classes:
            self.register_builtin_plugins()

        if config is None:
            config = load_plugin_config(config_path) if config_path else PluginConfig()
            self.config_path = config_path
        config = resolve_credentials(config, env)

        failures: list[PluginInitializationError] = []
        custom = config.custom

        for name, plugin_class in self._plugin_classes.items():
            section = getattr(config, name, None) if name in PluginConfig.model_fields else None
            if section is None:
                section = custom.get(name)
            if section is None or not self._section_enabled(section):
                continue

            try:
                plugin = self._build_plugin(plugin_class, section)
            except PydanticValidationError as e:
                error = PluginInitializationError(
                    "Invalid plugin configuration",
                    plugin_name=name,
                    details={"errors": e.error_count()},
                )
                logger.warning("Skipping plugin with invalid config", extra={"plugin": name})
                failures.append(error)
                continue

            try:
                await self.register(plugin)
            except PluginInitializationError as e:
                failures.append(e)

        logger.info(
            "Loaded plugins",
            extra={"registered": len(self._records), "failed": len(failures)},
        )
        return failures

    # =========================================================================
    # ACCESS
    # =========================================================================

    def get(self, name: str) -> Plugin | None:
        """Get a registered plugin by name."""
        record = self._records.get(name)
        return record.plugin if record else None

    @property
    def plugin_names(self) -> list[str]:
        return list(self._records)

    def enabled_plugins(self) -> list[str]:
        """Names of registered plugins whose config enables them."""
        return [name for name, record in self._records.items() if record.enabled]

    def __contains__(self, name: object) -> bool:
        return name in self._records

    def __len__(self) -> int:
        return len(self._records)

    # =========================================================================
    # FAN-OUT
    # =========================================================================

    async def _locked(self, record: PluginRecord, op: Callable[[Plugin], Awaitable[T]]) -> T:
        async with record.lock:
            return await op(record.plugin)

    async def listen_all(self) -> list[PluginEventBase]:
        """Collect new events from every enabled plugin.

        A plugin that raises or misses its deadline is logged and contributes
        nothing this round. Events keep their per-plugin order.
        """
        records = [record for record in self._records.values() if record.enabled]
        results = await asyncio.gather(
            *(
                asyncio.wait_for(self._locked(record, lambda p: p.listen()), self.plugin_timeout)
                for record in records
            ),
            return_exceptions=True,
        )

        events: list[PluginEventBase] = []
        for record, result in zip(records, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning(
                    "Plugin listen failed",
                    extra={"plugin": record.name, "error": _describe(result)},
                )
                continue
            events.extend(result)

        return events

    async def health_check_all(self) -> dict[str, PluginHealthStatus]:
        """Check every registered plugin, enabled or not. Never raises."""
        records = list(self._records.values())
        results = await asyncio.gather(
            *(asyncio.wait_for(record.plugin.health_check(), self.plugin_timeout) for record in records),
            return_exceptions=True,
        )

        statuses: dict[str, PluginHealthStatus] = {}
        for record, result in zip(records, results, strict=True):
            if isinstance(result, BaseException):
                reason = _describe(result)
                logger.warning("Plugin health check failed", extra={"plugin": record.name, "error": reason})
                statuses[record.name] = PluginHealthStatus.unhealthy(f"Health check failed: {reason}")
            else:
                statuses[record.name] = result
        return statuses

    async def execute(self, action: PluginActionBase) -> ActionResult:
        """Route an action to the plugin that owns it.

        Raises:
            PluginNotFoundError: No plugin registered under action.plugin_name.
            PluginNotEnabledError: The owning plugin is disabled.
            PluginError: Whatever the plugin raised, unchanged.
        """
        record = self._records.get(action.plugin_name)
        if record is None:
            raise PluginNotFoundError(action.plugin_name)
        if not record.enabled:
            raise PluginNotEnabledError(action.plugin_name)

        return await self._locked(record, lambda p: p.execute(action))

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def shutdown(self) -> None:
        """Shut down every plugin and empty the registry.

        Failures are logged per plugin. Calling this again is a no-op.
        """
        records, self._records = list(self._records.values()), {}

        for record in records:
            try:
                await asyncio.wait_for(
                    self._locked(record, lambda p: p.shutdown()),
                    self.plugin_timeout,
                )
                logger.debug("Plugin shut down", extra={"plugin": record.name})
            except Exception as e:
                logger.warning(
                    "Plugin shutdown failed",
                    extra={"plugin": record.name, "error": _describe(e)},
                )

    async def __aenter__(self) -> PluginManager:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.shutdown()
