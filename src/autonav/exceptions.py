"""Custom exceptions for autonav.

This module defines a hierarchy of exceptions used throughout autonav.
All exceptions inherit from AutonavError, making it easy to catch
all autonav-related errors in one place.

Exception Hierarchy:
    AutonavError (base)
    ├── ConfigError - Navigator or plugin configuration failures
    │   └── NavigatorNotFoundError
    ├── PluginError (base for plugin failures, carries plugin_name)
    │   ├── PluginNotFoundError
    │   ├── PluginNotEnabledError
    │   ├── PluginInitializationError
    │   ├── PluginConfigError
    │   ├── ActionNotSupportedError
    │   ├── PluginAuthError
    │   └── RemoteCallError
    │       └── RateLimitedError
    ├── ToolError - Tool-call bridge failures
    │   ├── UnknownToolError
    │   ├── InvalidToolInputError
    │   ├── UnknownPluginError
    │   └── NoPluginConfigError
    ├── QueryError - Chat adapter failures
    │   ├── EmptyQuestionError
    │   ├── ModelAPIError
    │   ├── ModelAuthError
    │   ├── QueryTimeoutError
    │   └── NoResponseError
    └── ResponseValidationError - Post-hoc answer checks
        ├── InvalidSourcePathError
        ├── SourceNotFoundError
        └── ConfidenceBelowThresholdError
"""

from typing import Any


class AutonavError(Exception):
    """Base exception for all autonav errors.

    Args:
        message: Human-readable error message.
        details: Optional dictionary with additional error context.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# =============================================================================
# CONFIGURATION
# =============================================================================


class ConfigError(AutonavError):
    """Raised when configuration loading or validation fails.

    Examples:
        - Invalid JSON in config.json
        - Navigator name not in kebab-case
        - Confidence threshold outside [0, 1]
    """


class NavigatorNotFoundError(ConfigError):
    """Raised when a navigator directory does not exist."""


# =============================================================================
# PLUGINS
# =============================================================================


class PluginError(AutonavError):
    """Base exception for plugin-related errors.

    All plugin-specific exceptions inherit from this class so the plugin
    manager can isolate one plugin's failures from the others.

    Args:
        message: Human-readable error message.
        plugin_name: Name of the plugin that raised the error.
        details: Optional dictionary with additional error context.
    """

    def __init__(
        self,
        message: str,
        plugin_name: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.plugin_name = plugin_name

    def __str__(self) -> str:
        base = f"[{self.plugin_name}] {self.message}"
        if self.details:
            return f"{base} | Details: {self.details}"
        return base


class PluginNotFoundError(PluginError):
    """Raised when an action targets a plugin that is not registered."""

    def __init__(self, plugin_name: str) -> None:
        super().__init__("Plugin not found", plugin_name=plugin_name)


class PluginNotEnabledError(PluginError):
    """Raised when an action targets a registered but disabled plugin."""

    def __init__(self, plugin_name: str) -> None:
        super().__init__("Plugin not enabled", plugin_name=plugin_name)


class PluginInitializationError(PluginError):
    """Raised when a plugin fails to initialize during registration."""


class PluginConfigError(PluginError):
    """Raised when a plugin's configuration is unusable.

    Examples:
        - Invalid glob pattern
        - No watchable paths after the sensitive-path filter
        - Config update produces an invalid record
    """


class ActionNotSupportedError(PluginError):
    """Raised when a plugin receives an action it does not own."""

    def __init__(self, plugin_name: str, action_type: str) -> None:
        super().__init__(
            f"Action '{action_type}' not supported",
            plugin_name=plugin_name,
            details={"action": action_type},
        )
        self.action_type = action_type


class PluginAuthError(PluginError):
    """Raised when provider credentials are missing or rejected."""


class RemoteCallError(PluginError):
    """Raised when a provider API call fails.

    The message carries the provider's own error text verbatim.

    Args:
        message: Provider error message.
        plugin_name: Name of the plugin.
        status_code: HTTP status code, if the failure had one.
        details: Optional dictionary with additional error context.
    """

    def __init__(
        self,
        message: str,
        plugin_name: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, plugin_name=plugin_name, details=details)
        self.status_code = status_code


class RateLimitedError(RemoteCallError):
    """Raised when a provider signals throttling.

    This core does not retry; callers can use retry_after for backoff.
    """

    def __init__(
        self,
        plugin_name: str,
        retry_after: float | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(
            "Rate limited",
            plugin_name=plugin_name,
            status_code=status_code,
            details={"retry_after": retry_after} if retry_after is not None else None,
        )
        self.retry_after = retry_after


# =============================================================================
# TOOLS
# =============================================================================


class ToolError(AutonavError):
    """Base exception for tool-call bridge failures."""


class UnknownToolError(ToolError):
    """Raised when the model calls a tool that was never advertised."""


class InvalidToolInputError(ToolError):
    """Raised when a tool call's input is missing required fields."""


class UnknownPluginError(ToolError):
    """Raised when a configuration tool names a plugin kind we don't know."""


class NoPluginConfigError(ToolError):
    """Raised when the navigator has no plugin configuration path."""

    def __init__(self) -> None:
        super().__init__("No plugin configuration available")


# =============================================================================
# QUERY
# =============================================================================


class QueryError(AutonavError):
    """Base exception for chat adapter and query failures."""


class EmptyQuestionError(QueryError):
    """Raised when a query has no question text."""


class ModelAPIError(QueryError):
    """Raised when the LLM endpoint answers with a non-2xx status.

    Args:
        status_code: HTTP status code from the endpoint.
        body: Response body text.
    """

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(
            f"LLM API error: HTTP {status_code}",
            details={"status_code": status_code, "body": body},
        )
        self.status_code = status_code
        self.body = body


class ModelAuthError(QueryError):
    """Raised when the LLM credential is missing or rejected."""


class QueryTimeoutError(QueryError):
    """Raised when the model call exceeds the query timeout."""


class NoResponseError(QueryError):
    """Raised when the loop ends without producing an answer."""

    def __init__(self, turns: int) -> None:
        super().__init__("No response generated", details={"turns": turns})
        self.turns = turns


# =============================================================================
# RESPONSE VALIDATION
# =============================================================================


class ResponseValidationError(AutonavError):
    """Base exception for post-hoc answer validation failures."""


class InvalidSourcePathError(ResponseValidationError):
    """Raised when a cited source escapes the knowledge base."""

    def __init__(self, file: str) -> None:
        super().__init__("Source path is not relative to the knowledge base", {"file": file})
        self.file = file


class SourceNotFoundError(ResponseValidationError):
    """Raised when a cited source does not exist in the knowledge base."""

    def __init__(self, file: str) -> None:
        super().__init__("Source file not found", {"file": file})
        self.file = file


class ConfidenceBelowThresholdError(ResponseValidationError):
    """Raised when an answer's confidence is under the configured floor."""

    def __init__(self, got: float, expected: float) -> None:
        super().__init__(
            f"Confidence threshold not met: got {got}, expected at least {expected}",
            {"got": got, "expected": expected},
        )
        self.got = got
        self.expected = expected
