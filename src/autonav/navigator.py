"""Navigator loading.

A navigator directory looks like:

    my-navigator/
        config.json            NavigatorConfig (camelCase)
        CLAUDE.md              instructions
        knowledge-base/        documents answers are grounded in
        .claude/plugins.json   plugin configuration (optional)

`load_navigator()` turns such a directory into a NavigatorContext, the
read-only bundle a query runs against. When plugin configuration exists it
also starts a PluginManager; plugin failures are logged and never stop the
navigator from loading.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from autonav.constants import (
    DEFAULT_PLUGIN_TIMEOUT_SECONDS,
    DEFAULT_PLUGINS_CONFIG_FILE,
    NAVIGATOR_CONFIG_FILE,
)
from autonav.exceptions import ConfigError, NavigatorNotFoundError
from autonav.logging import get_logger
from autonav.models import NavigatorConfig
from autonav.plugins.manager import PluginManager
from autonav.prompts import DEFAULT_INSTRUCTIONS

logger = get_logger(__name__)


@dataclass
class NavigatorContext:
    """Everything a query needs to know about one navigator.

    Attributes:
        name: Navigator name.
        system_prompt: The navigator's own instructions; the chat adapter
            appends the fixed grounding rules.
        knowledge_base_path: Root that cited sources are relative to.
        plugins_config_path: Plugin configuration file, if plugins are set up.
        confidence_threshold: Minimum acceptable answer confidence.
        plugin_manager: Live plugins, if any were loaded.
        config: The parsed config.json, when loaded from disk.
    """

    name: str
    system_prompt: str
    knowledge_base_path: Path
    plugins_config_path: Path | None = None
    confidence_threshold: float | None = None
    plugin_manager: PluginManager | None = None
    config: NavigatorConfig | None = field(default=None, repr=False)

    async def shutdown(self) -> None:
        """Shut down the plugin manager, if any. Safe to call twice."""
        manager, self.plugin_manager = self.plugin_manager, None
        if manager is not None:
            await manager.shutdown()


def read_navigator_config(directory: Path) -> NavigatorConfig:
    """Parse a navigator's config.json.

    Raises:
        ConfigError: If the file is missing, not JSON, or invalid.
    """
    config_file = directory / NAVIGATOR_CONFIG_FILE
    if not config_file.is_file():
        raise ConfigError("Navigator config not found", {"path": str(config_file)})

    try:
        data = json.loads(config_file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(
            f"Invalid JSON in {NAVIGATOR_CONFIG_FILE}: {e.msg}",
            {"path": str(config_file), "line": e.lineno},
        ) from e
    except OSError as e:
        raise ConfigError(f"Cannot read {NAVIGATOR_CONFIG_FILE}: {e}", {"path": str(config_file)}) from e

    try:
        return NavigatorConfig.model_validate(data)
    except PydanticValidationError as e:
        errors = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
        ]
        raise ConfigError(
            f"Invalid {NAVIGATOR_CONFIG_FILE}",
            {"path": str(config_file), "errors": errors},
        ) from e


def _read_instructions(path: Path) -> str:
    if path.is_file():
        return path.read_text(encoding="utf-8")
    logger.warning("Instructions file not found, using default prompt", extra={"path": str(path)})
    return DEFAULT_INSTRUCTIONS


def _plugins_config_path(directory: Path, config: NavigatorConfig) -> Path | None:
    if config.plugins is not None:
        return directory / config.plugins.config_file
    default = directory / DEFAULT_PLUGINS_CONFIG_FILE
    return default if default.is_file() else None


async def load_navigator(
    path: Path | str,
    *,
    load_plugins: bool = True,
    env: Mapping[str, str] | None = None,
    plugin_timeout: float = DEFAULT_PLUGIN_TIMEOUT_SECONDS,
) -> NavigatorContext:
    """Load a navigator directory.

    Args:
        path: Navigator directory.
        load_plugins: Start a plugin manager when plugin configuration exists.
        env: Environment for plugin token fallbacks (defaults to os.environ).
        plugin_timeout: Per-plugin deadline for the plugin manager.

    Returns:
        The navigator context.

    Raises:
        NavigatorNotFoundError: If the directory does not exist.
        ConfigError: If config.json is missing or invalid.
    """
    directory = Path(path).expanduser().resolve()
    if not directory.is_dir():
        raise NavigatorNotFoundError("Navigator not found", {"path": str(directory)})

    config = read_navigator_config(directory)
    instructions = _read_instructions(directory / config.instructions_path)

    knowledge_base = directory / config.knowledge_base_path
    if not knowledge_base.is_dir():
        logger.warning("Knowledge base directory not found", extra={"path": str(knowledge_base)})

    plugins_path = _plugins_config_path(directory, config)
    navigator = NavigatorContext(
        name=config.name,
        system_prompt=instructions,
        knowledge_base_path=knowledge_base,
        plugins_config_path=plugins_path,
        confidence_threshold=config.confidence_threshold,
        config=config,
    )

    if load_plugins and plugins_path is not None and plugins_path.is_file():
        manager = PluginManager(plugin_timeout=plugin_timeout)
        failures = await manager.load_from_config(plugins_path, env=env)
        for failure in failures:
            logger.warning(
                "Plugin failed to load",
                extra={"plugin": failure.plugin_name, "error": failure.message},
            )
        navigator.plugin_manager = manager

    logger.info(
        "Loaded navigator",
        extra={
            "navigator": config.name,
            "plugins": len(navigator.plugin_manager) if navigator.plugin_manager else 0,
        },
    )
    return navigator
