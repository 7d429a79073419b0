"""Plugin system for autonav.

This package provides the plugin architecture for external integrations.
Third-party packages can implement Plugin to add new integrations; the
manager routes actions by the `plugin_name` carried on every action type.

Plugin Interface:
    - Plugin: Base class for integrations (Slack, GitHub, file watcher, ...)

Data Models:
    - PluginEvent / PluginAction: tagged unions of event and action variants
    - ActionResult: Outcome of an executed action
    - PluginHealthStatus: Result of a health check

Manager:
    - PluginManager: Registry that drives plugin lifecycle and routing

Example:
    from autonav.plugins import PluginManager

    manager = PluginManager()
    manager.register_builtin_plugins()
    await manager.load_from_config(Path(".claude/plugins.json"))
"""

from autonav.plugins.base import (
    ActionResult,
    Plugin,
    PluginAction,
    PluginActionBase,
    PluginEvent,
    PluginEventBase,
    PluginHealthStatus,
    parse_action,
    parse_event,
)
from autonav.plugins.manager import PluginManager, PluginRecord

__all__ = [
    "ActionResult",
    "Plugin",
    "PluginAction",
    "PluginActionBase",
    "PluginEvent",
    "PluginEventBase",
    "PluginHealthStatus",
    "PluginManager",
    "PluginRecord",
    "parse_action",
    "parse_event",
]
