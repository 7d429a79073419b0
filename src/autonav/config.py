"""Plugin configuration loader for autonav.

This module handles the navigator's persisted plugin configuration
(`.claude/plugins.json` by default): parsing it into Pydantic models,
expanding `${VAR}` placeholders, and the locked read-merge-write cycle used
when a navigator reconfigures itself.

There are two views of the same file:

- The *expanded* view (`load_plugin_config`) is what plugins are built from.
  Environment placeholders are substituted and token fallbacks resolved.
- The *raw* view (`read_plugin_config_data` / `update_plugin_section`) is
  what gets written back, so a `${SLACK_BOT_TOKEN}` reference stays a
  reference on disk.

Example:
    config = load_plugin_config(Path(".claude/plugins.json"))
    if config.slack and config.slack.enabled:
        print(config.slack.channels)
"""

from __future__ import annotations

import json
import os
import re
import tempfile
import threading
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from autonav.constants import (
    DEFAULT_FILE_POLL_INTERVAL_MS,
    GITHUB_TOKEN_ENV_VAR,
    PLUGIN_EMAIL,
    PLUGIN_FILE_WATCHER,
    PLUGIN_GITHUB,
    PLUGIN_SIGNAL,
    PLUGIN_SLACK,
    SLACK_TOKEN_ENV_VAR,
)
from autonav.exceptions import ConfigError, PluginConfigError
from autonav.logging import get_logger

logger = get_logger(__name__)

SECTION_CONFIG: dict[str, Any] = {
    "alias_generator": to_camel,
    "populate_by_name": True,
}


# =============================================================================
# CONFIG MODELS
# =============================================================================


class SummaryFrequency(str, Enum):
    """How often Slack summaries are posted."""

    REALTIME = "realtime"
    HOURLY = "hourly"
    DAILY = "daily"


class SlackPluginConfig(BaseModel):
    """Slack plugin configuration."""

    enabled: bool = Field(default=False, description="Whether the plugin is enabled")
    workspace: str = Field(default="", description="Slack workspace name")
    channels: list[str] = Field(default_factory=list, description="Channels to watch")
    thread_notifications: bool = Field(default=True, description="Notify on thread replies")
    summary_frequency: SummaryFrequency = Field(default=SummaryFrequency.DAILY)
    bot_user_id: str | None = Field(default=None, description="Bot user id (set on auth)")
    token: str | None = Field(default=None, description="Bot token, or a ${VAR} reference")

    model_config = SECTION_CONFIG


class SignalPluginConfig(BaseModel):
    """Signal check-in configuration. Read and written by the navigator only."""

    enabled: bool = Field(default=False)
    phone_number: str = Field(default="")
    check_in_schedule: str = Field(default="daily")
    check_in_time: str | None = Field(default=None)
    notification_types: list[str] = Field(default_factory=lambda: ["urgent", "daily-summary"])
    next_check_in: str | None = Field(default=None, description="ISO8601 timestamp")

    model_config = SECTION_CONFIG


class GitHubPluginConfig(BaseModel):
    """GitHub plugin configuration."""

    enabled: bool = Field(default=False, description="Whether the plugin is enabled")
    token: str | None = Field(default=None, description="API token, or a ${VAR} reference")
    owner: str = Field(default="", description="Default repository owner")
    repo: str = Field(default="", description="Default repository name")
    watch_issues: bool = Field(default=False, description="Poll open issues")
    watch_pull_requests: bool = Field(default=False, description="Poll open pull requests")
    watch_commits: bool = Field(default=False)
    poll_interval_minutes: int = Field(default=5, ge=1, description="Polling interval")
    repositories: list[str] = Field(
        default_factory=list,
        description="Additional repositories to watch, as owner/repo",
    )
    issue_labels: list[str] = Field(default_factory=list, description="Only report these labels")
    auto_respond: bool = Field(default=False)

    model_config = SECTION_CONFIG


class EmailPluginConfig(BaseModel):
    """Email digest configuration. Read and written by the navigator only."""

    enabled: bool = Field(default=False)
    addresses: list[str] = Field(default_factory=list)
    digest_frequency: str = Field(default="weekly")

    model_config = SECTION_CONFIG


class FileWatcherPluginConfig(BaseModel):
    """File watcher plugin configuration."""

    enabled: bool = Field(default=False, description="Whether the plugin is enabled")
    paths: list[str] = Field(default_factory=list, description="Directories or files to watch")
    patterns: list[str] = Field(default_factory=list, description="Include globs (empty = all)")
    ignore_patterns: list[str] = Field(default_factory=list, description="Ignore globs")
    poll_interval: int = Field(
        default=DEFAULT_FILE_POLL_INTERVAL_MS,
        ge=10,
        description="Scan interval in milliseconds",
    )

    model_config = SECTION_CONFIG


PLUGIN_SECTION_MODELS: dict[str, type[BaseModel]] = {
    PLUGIN_SLACK: SlackPluginConfig,
    PLUGIN_SIGNAL: SignalPluginConfig,
    PLUGIN_GITHUB: GitHubPluginConfig,
    PLUGIN_EMAIL: EmailPluginConfig,
    PLUGIN_FILE_WATCHER: FileWatcherPluginConfig,
}


class PluginConfig(BaseModel):
    """Root plugin configuration.

    Top-level keys other than the known plugin kinds are kept verbatim, so
    custom plugins can store their own sections without a schema.
    """

    workspaces: list[str] = Field(default_factory=list)
    slack: SlackPluginConfig | None = Field(default=None)
    signal: SignalPluginConfig | None = Field(default=None)
    github: GitHubPluginConfig | None = Field(default=None)
    email: EmailPluginConfig | None = Field(default=None)
    file_watcher: FileWatcherPluginConfig | None = Field(default=None)

    model_config = {"extra": "allow"}

    @property
    def custom(self) -> dict[str, Any]:
        """Sections for plugin kinds this package doesn't know about."""
        return dict(self.model_extra or {})

    def enabled_plugins(self) -> list[str]:
        """Names of known plugin kinds whose section has enabled=true."""
        return [
            name
            for name in PLUGIN_SECTION_MODELS
            if (section := getattr(self, name)) is not None and section.enabled
        ]


# =============================================================================
# ENVIRONMENT
# =============================================================================

# Pattern to match ${VAR_NAME} or $VAR_NAME
ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


def expand_env_vars(value: Any, env: Mapping[str, str] | None = None) -> Any:
    """Recursively expand environment variables in config values.

    Supports both ${VAR_NAME} and $VAR_NAME syntax.
    If the env var is not set, the placeholder is left unchanged.

    Args:
        value: The value to expand (can be str, dict, list, or primitive).
        env: Variables to expand from (defaults to os.environ).

    Returns:
        The value with environment variables expanded.
    """
    environ = os.environ if env is None else env

    if isinstance(value, str):

        def replace_env_var(match: re.Match[str]) -> str:
            var_name = match.group(1) or match.group(2)
            return environ.get(var_name, match.group(0))

        return ENV_VAR_PATTERN.sub(replace_env_var, value)

    elif isinstance(value, dict):
        return {k: expand_env_vars(v, environ) for k, v in value.items()}

    elif isinstance(value, list):
        return [expand_env_vars(item, environ) for item in value]

    else:
        return value


def resolve_credentials(
    config: PluginConfig,
    env: Mapping[str, str] | None = None,
) -> PluginConfig:
    """Fill missing plugin tokens from the environment.

    SLACK_BOT_TOKEN and GITHUB_TOKEN are consulted only when the matching
    section has no token (or an unexpanded placeholder). Plugins never read
    the environment themselves.

    Args:
        config: Expanded plugin configuration.
        env: Variables to read (defaults to os.environ).

    Returns:
        A copy of the configuration with tokens resolved.
    """
    environ = os.environ if env is None else env
    updates: dict[str, Any] = {}

    for name, env_var in ((PLUGIN_SLACK, SLACK_TOKEN_ENV_VAR), (PLUGIN_GITHUB, GITHUB_TOKEN_ENV_VAR)):
        section = getattr(config, name)
        if section is None:
            continue
        if _needs_token(section.token) and environ.get(env_var):
            updates[name] = section.model_copy(update={"token": environ[env_var]})

    return config.model_copy(update=updates) if updates else config


def _needs_token(token: str | None) -> bool:
    return not token or ENV_VAR_PATTERN.fullmatch(token) is not None


# =============================================================================
# LOADING
# =============================================================================


def read_plugin_config_data(path: Path) -> dict[str, Any]:
    """Read the raw plugin configuration file.

    Args:
        path: Path to the plugin configuration file.

    Returns:
        The parsed JSON object, or an empty dict if the file doesn't exist.

    Raises:
        ConfigError: If the file exists but is not a JSON object.
    """
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Failed to read plugin configuration: {e}", {"path": str(path)}) from e

    if not isinstance(data, dict):
        raise ConfigError("Plugin configuration must be a JSON object", {"path": str(path)})

    return data


def load_plugin_config(path: Path, *, expand_env: bool = True) -> PluginConfig:
    """Load plugin configuration, falling back to all-disabled defaults.

    A missing, unreadable, or invalid file is logged and treated as an empty
    configuration so a broken plugins file never stops a navigator from
    answering questions.

    Args:
        path: Path to the plugin configuration file.
        expand_env: Whether to expand ${VAR} placeholders.

    Returns:
        The loaded configuration.
    """
    try:
        data = read_plugin_config_data(path)
        if expand_env:
            data = expand_env_vars(data)
        return PluginConfig.model_validate(data)
    except ConfigError as e:
        logger.warning("Using default plugin configuration", extra={"error": e.message})
    except PydanticValidationError as e:
        logger.warning(
            "Invalid plugin configuration, using defaults",
            extra={"path": str(path), "errors": e.error_count()},
        )
    return PluginConfig()


def save_plugin_config_data(path: Path, data: dict[str, Any]) -> None:
    """Atomically write a plugin configuration file.

    The JSON is written to a temporary file in the same directory and
    moved over the target, so readers never see a half-written file.

    Args:
        path: Target path. Parent directories are created as needed.
        data: Configuration object to write.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


# =============================================================================
# UPDATES
# =============================================================================

_locks_guard = threading.Lock()
_file_locks: dict[Path, threading.Lock] = {}


def plugin_config_lock(path: Path) -> threading.Lock:
    """Get the process-wide lock guarding one plugin configuration file."""
    key = path.resolve()
    with _locks_guard:
        lock = _file_locks.get(key)
        if lock is None:
            lock = _file_locks[key] = threading.Lock()
        return lock


def normalize_update_keys(plugin_name: str, updates: Mapping[str, Any]) -> dict[str, Any]:
    """Rewrite snake_case field names to their on-disk camelCase aliases.

    Keys that are already aliases, or that the section model doesn't know,
    pass through unchanged.
    """
    model = PLUGIN_SECTION_MODELS.get(plugin_name)
    if model is None:
        return dict(updates)

    normalized: dict[str, Any] = {}
    for key, value in updates.items():
        field = model.model_fields.get(key)
        alias = field.alias if field is not None else None
        normalized[alias or key] = value
    return normalized


def merge_section(current: Mapping[str, Any], updates: Mapping[str, Any]) -> dict[str, Any]:
    """One-level merge: update keys overwrite, everything else is kept.

    Nested objects in the update replace the existing value wholesale.
    """
    merged = dict(current)
    merged.update(updates)
    return merged


def validate_section(plugin_name: str, data: Mapping[str, Any]) -> None:
    """Validate a plugin section against its model.

    Raises:
        PluginConfigError: If the section doesn't satisfy the model.
    """
    model = PLUGIN_SECTION_MODELS.get(plugin_name)
    if model is None:
        return
    try:
        model.model_validate(expand_env_vars(dict(data)))
    except PydanticValidationError as e:
        problems = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        ]
        raise PluginConfigError(
            "Invalid configuration update",
            plugin_name=plugin_name,
            details={"errors": problems},
        ) from e


def update_plugin_section(
    path: Path,
    plugin_name: str,
    updates: Mapping[str, Any],
) -> dict[str, Any]:
    """Merge a partial update into one plugin section and persist it.

    The whole read-merge-write cycle runs under the file's lock, so two
    concurrent updates to the same file can't lose each other's changes.

    Args:
        path: Plugin configuration file.
        plugin_name: Section to update (e.g. "slack").
        updates: Partial section; snake_case or camelCase keys.

    Returns:
        The merged section as written.

    Raises:
        ConfigError: If the existing file is corrupt.
        PluginConfigError: If the merged section is invalid.
    """
    with plugin_config_lock(path):
        data = read_plugin_config_data(path)
        current = data.get(plugin_name)
        if not isinstance(current, dict):
            current = {}

        merged = merge_section(current, normalize_update_keys(plugin_name, updates))
        validate_section(plugin_name, merged)

        data[plugin_name] = merged
        save_plugin_config_data(path, data)

    return merged
