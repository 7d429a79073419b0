"""Tests for the plugin manager."""

import asyncio
import json
import logging
from pathlib import Path
from typing import ClassVar, Literal

import pytest
from pydantic import BaseModel

from autonav.exceptions import (
    PluginInitializationError,
    PluginNotEnabledError,
    PluginNotFoundError,
    RemoteCallError,
)
from autonav.plugins.base import (
    ActionResult,
    Plugin,
    PluginActionBase,
    PluginEventBase,
    PluginHealthStatus,
    SlackSendMessage,
)
from autonav.plugins.manager import PluginManager


class EchoConfig(BaseModel):
    enabled: bool = False
    fail_init: bool = False
    fail_listen: bool = False
    slow: bool = False
    fail_health: bool = False
    fail_shutdown: bool = False


class EchoEvent(PluginEventBase):
    plugin_name: ClassVar[str] = "echo"
    type: Literal["echo_event"] = "echo_event"
    text: str


class EchoAction(PluginActionBase):
    plugin_name: ClassVar[str] = "echo"
    type: Literal["echo_say"] = "echo_say"
    text: str


class EchoPlugin(Plugin):
    """In-memory plugin whose behaviour is driven by its config."""

    name = "echo"
    version = "1.0.0"
    description = "Echoes actions back"
    config_schema = EchoConfig

    def __init__(self, config: EchoConfig) -> None:
        self.config = config
        self.initialized = False
        self.shutdown_calls = 0
        self.pending: list[PluginEventBase] = []
        self.active = 0
        self.max_active = 0

    def is_enabled(self) -> bool:
        return self.config.enabled

    async def initialize(self) -> None:
        if self.config.fail_init:
            raise RemoteCallError("invalid_auth", plugin_name=self.name)
        self.initialized = True

    async def shutdown(self) -> None:
        self.shutdown_calls += 1
        self.initialized = False
        if self.config.fail_shutdown:
            raise RuntimeError("socket already closed")

    async def listen(self) -> list[PluginEventBase]:
        if self.config.fail_listen:
            raise RemoteCallError("listen broke", plugin_name=self.name)
        if self.config.slow:
            await asyncio.sleep(5)
        events, self.pending = self.pending, []
        return events

    async def execute(self, action: PluginActionBase) -> ActionResult:
        self.ensure_supported(action)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        await asyncio.sleep(0.01)
        self.active -= 1
        return ActionResult.ok({"echo": action.text})

    async def health_check(self) -> PluginHealthStatus:
        if self.config.fail_health:
            raise RuntimeError("health endpoint exploded")
        if not self.initialized:
            return PluginHealthStatus.unhealthy("Plugin not initialized")
        return PluginHealthStatus.ok()


class OtherEchoPlugin(EchoPlugin):
    name = "other"


class ThirdEchoPlugin(EchoPlugin):
    name = "third"


PLUGIN_CLASSES = {cls.name: cls for cls in (EchoPlugin, OtherEchoPlugin, ThirdEchoPlugin)}


def make_plugin(name: str = "echo", **config: bool) -> EchoPlugin:
    return PLUGIN_CLASSES[name](EchoConfig(enabled=True, **config))


@pytest.fixture
async def manager() -> PluginManager:
    """A manager with a short deadline, shut down after the test."""
    manager = PluginManager(plugin_timeout=0.2)
    yield manager
    await manager.shutdown()


class TestRegistration:
    """Tests for register() and plugin classes."""

    async def test_register(self, manager: PluginManager) -> None:
        plugin = make_plugin()

        await manager.register(plugin)

        assert "echo" in manager
        assert manager.get("echo") is plugin
        assert plugin.initialized is True

    async def test_duplicate_name(self, manager: PluginManager) -> None:
        await manager.register(make_plugin())

        with pytest.raises(PluginInitializationError) as exc_info:
            await manager.register(make_plugin())

        assert exc_info.value.message == "Plugin already registered"
        assert len(manager) == 1

    async def test_failed_initialize_is_released(self, manager: PluginManager) -> None:
        """Test a failing plugin is cleaned up and never registered."""
        plugin = make_plugin(fail_init=True)

        with pytest.raises(PluginInitializationError) as exc_info:
            await manager.register(plugin)

        assert "invalid_auth" in exc_info.value.message
        assert plugin.shutdown_calls == 1
        assert "echo" not in manager

    def test_conflicting_plugin_class(self) -> None:
        manager = PluginManager()
        manager.register_plugin_class(EchoPlugin)
        manager.register_plugin_class(EchoPlugin)

        class Impostor(EchoPlugin):
            pass

        with pytest.raises(ValueError):
            manager.register_plugin_class(Impostor)

    def test_builtin_plugin_classes(self) -> None:
        manager = PluginManager()

        manager.register_builtin_plugins()

        assert manager.list_plugin_classes() == ["slack", "github", "file_watcher"]


class TestLoadFromConfig:
    """Tests for load_from_config()."""

    async def test_enabled_custom_sections_load(self, manager: PluginManager, tmp_path: Path) -> None:
        """Test only enabled sections are built, and failures are reported."""
        path = tmp_path / "plugins.json"
        path.write_text(
            json.dumps(
                {
                    "echo": {"enabled": True},
                    "other": {"enabled": True, "fail_init": True},
                    "slack": {"enabled": False},
                }
            )
        )
        manager.register_plugin_class(EchoPlugin)
        manager.register_plugin_class(OtherEchoPlugin)

        failures = await manager.load_from_config(path)

        assert manager.plugin_names == ["echo"]
        assert [f.plugin_name for f in failures] == ["other"]
        assert manager.config_path == path

    async def test_missing_file_loads_nothing(self, manager: PluginManager, tmp_path: Path) -> None:
        failures = await manager.load_from_config(tmp_path / "missing.json")

        assert failures == []
        assert len(manager) == 0
        assert manager.list_plugin_classes() == ["slack", "github", "file_watcher"]

    async def test_invalid_section(self, manager: PluginManager, tmp_path: Path) -> None:
        path = tmp_path / "plugins.json"
        path.write_text(json.dumps({"echo": {"enabled": True, "slow": "very"}}))
        manager.register_plugin_class(EchoPlugin)

        failures = await manager.load_from_config(path)

        assert failures[0].message == "Invalid plugin configuration"
        assert len(manager) == 0


class TestFanOut:
    """Tests for listen_all() and health_check_all()."""

    async def test_listen_isolates_failures(
        self, manager: PluginManager, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test the middle plugin failing doesn't hide the others' events."""
        first = make_plugin()
        first.pending = [EchoEvent(text="a"), EchoEvent(text="b")]
        third = make_plugin("third")
        third.pending = [EchoEvent(text="c")]
        await manager.register(first)
        await manager.register(make_plugin("other", fail_listen=True))
        await manager.register(third)

        with caplog.at_level(logging.WARNING, logger="autonav.plugins.manager"):
            events = await manager.listen_all()

        assert events == [EchoEvent(text="a"), EchoEvent(text="b"), EchoEvent(text="c")]
        failures = [r for r in caplog.records if r.getMessage() == "Plugin listen failed"]
        assert [r.plugin for r in failures] == ["other"]
        assert "listen broke" in failures[0].error
        assert await manager.listen_all() == []

    async def test_listen_deadline(self, manager: PluginManager) -> None:
        """Test a slow plugin is cut off at the deadline."""
        await manager.register(make_plugin(slow=True))

        assert await manager.listen_all() == []

    async def test_disabled_plugins_skipped(self, manager: PluginManager) -> None:
        plugin = EchoPlugin(EchoConfig(enabled=False))
        plugin.pending = [EchoEvent(text="hidden")]
        await manager.register(plugin)

        assert await manager.listen_all() == []

    async def test_health_of_every_plugin(self, manager: PluginManager) -> None:
        await manager.register(make_plugin())
        await manager.register(make_plugin("other", fail_health=True))

        statuses = await manager.health_check_all()

        assert statuses["echo"].healthy is True
        assert statuses["other"].healthy is False
        assert "Health check failed" in statuses["other"].message


class TestExecute:
    """Tests for action routing."""

    async def test_routes_by_plugin_name(self, manager: PluginManager) -> None:
        await manager.register(make_plugin())

        result = await manager.execute(EchoAction(text="hi"))

        assert result == ActionResult.ok({"echo": "hi"})

    async def test_not_found(self, manager: PluginManager) -> None:
        with pytest.raises(PluginNotFoundError):
            await manager.execute(SlackSendMessage(channel="C1", text="hi"))

    async def test_not_enabled(self, manager: PluginManager) -> None:
        await manager.register(EchoPlugin(EchoConfig(enabled=False)))

        with pytest.raises(PluginNotEnabledError):
            await manager.execute(EchoAction(text="hi"))

    async def test_actions_serialized_per_plugin(self, manager: PluginManager) -> None:
        """Test concurrent actions on one plugin never overlap."""
        plugin = make_plugin()
        await manager.register(plugin)

        await asyncio.gather(*(manager.execute(EchoAction(text=str(i))) for i in range(5)))

        assert plugin.max_active == 1


class TestShutdown:
    """Tests for shutdown()."""

    async def test_shutdown_is_idempotent(self) -> None:
        manager = PluginManager()
        plugin = make_plugin()
        await manager.register(plugin)

        await manager.shutdown()
        await manager.shutdown()

        assert plugin.shutdown_calls == 1
        assert len(manager) == 0

    async def test_context_manager(self) -> None:
        plugin = make_plugin()
        async with PluginManager() as manager:
            await manager.register(plugin)

        assert plugin.shutdown_calls == 1

    async def test_shutdown_continues_past_failure(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test a plugin failing to shut down doesn't stop the others."""
        manager = PluginManager()
        first = make_plugin()
        middle = make_plugin("other", fail_shutdown=True)
        last = make_plugin("third")
        for plugin in (first, middle, last):
            await manager.register(plugin)

        with caplog.at_level(logging.WARNING, logger="autonav.plugins.manager"):
            await manager.shutdown()

        assert [p.shutdown_calls for p in (first, middle, last)] == [1, 1, 1]
        assert len(manager) == 0
        failures = [r for r in caplog.records if r.getMessage() == "Plugin shutdown failed"]
        assert [r.plugin for r in failures] == ["other"]
