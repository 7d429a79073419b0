"""Constants and configuration defaults for autonav.

This module contains all magic values, default configurations, and constants
used throughout the application. Import from here instead of hardcoding values.
"""

from typing import Final

# =============================================================================
# VERSION
# =============================================================================
VERSION: Final[str] = "0.1.0"
PROTOCOL_VERSION: Final[str] = "1.0.0"

# =============================================================================
# HTTP CLIENT DEFAULTS
# =============================================================================
DEFAULT_HTTP_TIMEOUT_SECONDS: Final[float] = 30.0

# =============================================================================
# LLM / CHAT ADAPTER
# =============================================================================
DEFAULT_MODEL: Final[str] = "claude-sonnet-4-20250514"
DEFAULT_MAX_TURNS: Final[int] = 10
DEFAULT_MAX_TOKENS: Final[int] = 4096
DEFAULT_FALLBACK_CONFIDENCE: Final[float] = 0.5
ANTHROPIC_API_URL: Final[str] = "https://api.anthropic.com"
ANTHROPIC_API_VERSION: Final[str] = "2023-06-01"
ANTHROPIC_API_KEY_ENV_VAR: Final[str] = "ANTHROPIC_API_KEY"

STOP_REASON_TOOL_USE: Final[str] = "tool_use"
STOP_REASON_END_TURN: Final[str] = "end_turn"

# =============================================================================
# TOOL NAMES
# =============================================================================
TOOL_SUBMIT_ANSWER: Final[str] = "submit_answer"
TOOL_GET_PLUGIN_CONFIG: Final[str] = "get_plugin_config"
TOOL_UPDATE_PLUGIN_CONFIG: Final[str] = "update_plugin_config"

# =============================================================================
# NAVIGATOR LAYOUT
# =============================================================================
NAVIGATOR_CONFIG_FILE: Final[str] = "config.json"
DEFAULT_INSTRUCTIONS_PATH: Final[str] = "CLAUDE.md"
DEFAULT_KNOWLEDGE_BASE_PATH: Final[str] = "knowledge-base"
DEFAULT_PLUGINS_CONFIG_FILE: Final[str] = ".claude/plugins.json"

# =============================================================================
# CONFIDENCE LEVELS
# =============================================================================
CONFIDENCE_HIGH: Final[float] = 0.8
CONFIDENCE_MEDIUM: Final[float] = 0.5
CONFIDENCE_LOW: Final[float] = 0.2

# =============================================================================
# PLUGIN NAMES (for consistent referencing)
# =============================================================================
PLUGIN_SLACK: Final[str] = "slack"
PLUGIN_SIGNAL: Final[str] = "signal"
PLUGIN_GITHUB: Final[str] = "github"
PLUGIN_EMAIL: Final[str] = "email"
PLUGIN_FILE_WATCHER: Final[str] = "file_watcher"

CONFIGURABLE_PLUGINS: Final[tuple[str, ...]] = (
    PLUGIN_SLACK,
    PLUGIN_SIGNAL,
    PLUGIN_GITHUB,
    PLUGIN_EMAIL,
    PLUGIN_FILE_WATCHER,
)

# =============================================================================
# PLUGIN MANAGER
# =============================================================================
DEFAULT_PLUGIN_TIMEOUT_SECONDS: Final[float] = 30.0
PLUGIN_VERSION: Final[str] = "2.0.0"

# =============================================================================
# SLACK API
# =============================================================================
SLACK_API_BASE_URL: Final[str] = "https://slack.com/api"
SLACK_TOKEN_ENV_VAR: Final[str] = "SLACK_BOT_TOKEN"
SLACK_SEEN_LIMIT: Final[int] = 1000
SLACK_HISTORY_LIMIT: Final[int] = 100

# =============================================================================
# GITHUB API
# =============================================================================
GITHUB_API_BASE_URL: Final[str] = "https://api.github.com"
GITHUB_API_VERSION: Final[str] = "2022-11-28"
GITHUB_TOKEN_ENV_VAR: Final[str] = "GITHUB_TOKEN"
GITHUB_PER_PAGE: Final[int] = 10
GITHUB_MAX_PAGES: Final[int] = 3
GITHUB_SEEN_LIMIT: Final[int] = 5000

# =============================================================================
# FILE WATCHER
# =============================================================================
DEFAULT_FILE_POLL_INTERVAL_MS: Final[int] = 1000
SENSITIVE_DIRS: Final[tuple[str, ...]] = (
    "/etc",
    "/root",
    "/var/log",
    "~/.ssh",
    "~/.aws",
    "~/.gnupg",
    "~/.config",
    "/proc",
    "/sys",
)

# =============================================================================
# LOGGING
# =============================================================================
LOG_FORMAT: Final[str] = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"
