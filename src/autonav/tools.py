"""Tools offered to the model, and the handlers that run them.

`submit_answer` is always offered. The two self-configuration tools,
`get_plugin_config` and `update_plugin_config`, are offered only when the
navigator has a plugin configuration path; they read and update that file
through `autonav.config`.

Configuration tools operate on the file as written, without environment
expansion, so `${VAR}` references survive an update and expanded secrets
are never shown to the model. Literal secrets in the file are masked in
what the model sees.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from autonav.config import ENV_VAR_PATTERN, read_plugin_config_data, update_plugin_section
from autonav.constants import (
    CONFIGURABLE_PLUGINS,
    TOOL_GET_PLUGIN_CONFIG,
    TOOL_SUBMIT_ANSWER,
    TOOL_UPDATE_PLUGIN_CONFIG,
)
from autonav.exceptions import InvalidToolInputError, NoPluginConfigError, UnknownPluginError
from autonav.logging import get_logger
from autonav.models import NavigatorResponse, Source

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from autonav.navigator import NavigatorContext

logger = get_logger(__name__)

DEFAULT_SUBMITTED_CONFIDENCE = 0.5
MASKED_SECRET = "***SET***"
_SECRET_KEY_PARTS = ("token", "secret", "password", "apikey", "api_key")


# =============================================================================
# TOOL MODELS
# =============================================================================


class Tool(BaseModel):
    """A tool described to the model."""

    name: str = Field(..., description="Tool name the model calls")
    description: str = Field(..., description="What the tool does")
    input_schema: dict[str, Any] = Field(..., description="JSON schema of the input")

    model_config = {"frozen": True}

    def to_api(self) -> dict[str, Any]:
        """Tool definition as sent to the messages endpoint."""
        return self.model_dump()


class ToolCall(BaseModel):
    """A tool invocation requested by the model."""

    id: str = Field(..., description="Correlation id from the model")
    name: str = Field(..., description="Tool name")
    input: dict[str, Any] = Field(default_factory=dict, description="Tool input")


class ToolResult(BaseModel):
    """The outcome of one tool call, fed back to the model."""

    tool_use_id: str = Field(..., description="Correlation id of the call")
    tool_name: str = Field(..., description="Tool name")
    result: Any = Field(default=None, description="Success payload or error description")
    is_error: bool = Field(default=False)


SUBMIT_ANSWER_TOOL = Tool(
    name=TOOL_SUBMIT_ANSWER,
    description="Submit a grounded answer with sources and confidence score",
    input_schema={
        "type": "object",
        "properties": {
            "answer": {
                "type": "string",
                "description": "The grounded answer with citations",
            },
            "sources": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "file": {"type": "string", "description": "Relative path to source file"},
                        "section": {"type": "string", "description": "Section or heading reference"},
                        "relevance": {"type": "string", "description": "Why this source is relevant"},
                    },
                    "required": ["file", "section", "relevance"],
                },
                "description": "Sources cited in the answer",
            },
            "confidence": {
                "type": "number",
                "minimum": 0,
                "maximum": 1,
                "description": "Confidence score (0-1)",
            },
        },
        "required": ["answer", "sources", "confidence"],
    },
)

GET_PLUGIN_CONFIG_TOOL = Tool(
    name=TOOL_GET_PLUGIN_CONFIG,
    description="Get current plugin configuration",
    input_schema={
        "type": "object",
        "properties": {
            "plugin": {
                "type": "string",
                "enum": [*CONFIGURABLE_PLUGINS, "all"],
                "description": "Plugin name or 'all' for all plugins",
            },
        },
        "required": ["plugin"],
    },
)

UPDATE_PLUGIN_CONFIG_TOOL = Tool(
    name=TOOL_UPDATE_PLUGIN_CONFIG,
    description="Update plugin configuration",
    input_schema={
        "type": "object",
        "properties": {
            "plugin": {
                "type": "string",
                "enum": list(CONFIGURABLE_PLUGINS),
                "description": "Plugin to update",
            },
            "updates": {
                "type": "object",
                "description": "Configuration updates to apply",
            },
            "reason": {
                "type": "string",
                "description": "Reason for the update (for audit trail)",
            },
        },
        "required": ["plugin", "updates", "reason"],
    },
)

SELF_CONFIG_TOOLS: tuple[Tool, ...] = (GET_PLUGIN_CONFIG_TOOL, UPDATE_PLUGIN_CONFIG_TOOL)


def tools_for(navigator: NavigatorContext) -> list[Tool]:
    """Tools to advertise for a navigator."""
    tools = [SUBMIT_ANSWER_TOOL]
    if navigator.plugins_config_path is not None:
        tools.extend(SELF_CONFIG_TOOLS)
    return tools


# =============================================================================
# SUBMIT ANSWER
# =============================================================================


def parse_submit_answer(tool_input: dict[str, Any], question: str) -> NavigatorResponse:
    """Build an answer from a `submit_answer` call.

    A missing answer is an error. Missing confidence defaults to 0.5.
    Sources that don't fit the schema are dropped as a whole, leaving the
    answer without citations rather than failing it.

    Args:
        tool_input: The tool call's input.
        question: The question being answered.

    Returns:
        The structured answer.

    Raises:
        InvalidToolInputError: If `answer` is missing or confidence is invalid.
    """
    answer = tool_input.get("answer")
    if not isinstance(answer, str):
        raise InvalidToolInputError(
            f"{TOOL_SUBMIT_ANSWER} requires an 'answer' string",
            {"keys": sorted(tool_input)},
        )

    confidence = tool_input.get("confidence", DEFAULT_SUBMITTED_CONFIDENCE)
    if confidence is None:
        confidence = DEFAULT_SUBMITTED_CONFIDENCE
    if isinstance(confidence, bool) or not isinstance(confidence, int | float):
        raise InvalidToolInputError(
            "Confidence must be a number between 0 and 1",
            {"confidence": confidence},
        )

    sources: list[Source] = []
    raw_sources = tool_input.get("sources")
    if isinstance(raw_sources, list):
        try:
            sources = [Source.model_validate(item) for item in raw_sources]
        except PydanticValidationError:
            logger.warning("Discarding malformed sources", extra={"count": len(raw_sources)})
            sources = []

    try:
        return NavigatorResponse(
            query=question,
            answer=answer,
            sources=sources,
            confidence=float(confidence),
        )
    except PydanticValidationError as e:
        raise InvalidToolInputError(
            "Confidence must be a number between 0 and 1",
            {"confidence": confidence},
        ) from e


# =============================================================================
# SELF-CONFIGURATION
# =============================================================================


def _is_secret_key(key: str) -> bool:
    lowered = key.lower()
    return any(part in lowered for part in _SECRET_KEY_PARTS)


def mask_secrets(value: Any) -> Any:
    """Replace literal secret values with a marker; ${VAR} references stay."""
    if isinstance(value, dict):
        masked: dict[str, Any] = {}
        for key, item in value.items():
            if (
                _is_secret_key(key)
                and isinstance(item, str)
                and item
                and not ENV_VAR_PATTERN.fullmatch(item)
            ):
                masked[key] = MASKED_SECRET
            else:
                masked[key] = mask_secrets(item)
        return masked
    if isinstance(value, list):
        return [mask_secrets(item) for item in value]
    return value


def _require_config_path(navigator: NavigatorContext) -> Any:
    if navigator.plugins_config_path is None:
        raise NoPluginConfigError()
    return navigator.plugins_config_path


def _require_plugin(tool_input: dict[str, Any], *, allow_all: bool) -> str:
    plugin = tool_input.get("plugin")
    if not isinstance(plugin, str) or not plugin:
        raise InvalidToolInputError("Missing plugin field")
    if plugin in CONFIGURABLE_PLUGINS or (allow_all and plugin == "all"):
        return plugin
    raise UnknownPluginError(f"Unknown plugin: {plugin}", {"plugin": plugin})


async def get_plugin_config(tool_input: dict[str, Any], navigator: NavigatorContext) -> dict[str, Any]:
    """Handle `get_plugin_config`.

    Returns:
        {"success": True, "config": <section, whole config, or None>}

    Raises:
        NoPluginConfigError: The navigator has no plugin configuration path.
        UnknownPluginError: The plugin name is not a known kind.
        InvalidToolInputError: The plugin field is missing.
    """
    path = _require_config_path(navigator)
    plugin = _require_plugin(tool_input, allow_all=True)

    data = await asyncio.to_thread(read_plugin_config_data, path)
    logger.debug("Reading plugin configuration", extra={"plugin": plugin})

    config = data if plugin == "all" else data.get(plugin)
    return {"success": True, "config": mask_secrets(config)}


async def update_plugin_config(
    tool_input: dict[str, Any],
    navigator: NavigatorContext,
) -> dict[str, Any]:
    """Handle `update_plugin_config`.

    Shallow-merges `updates` into the plugin's section and writes the file
    back under its lock.

    Returns:
        {"success": True, "message": ..., "reason": ...}

    Raises:
        NoPluginConfigError: The navigator has no plugin configuration path.
        UnknownPluginError: The plugin name is not a known kind.
        InvalidToolInputError: updates is not an object or reason is missing.
        PluginConfigError: The merged section is invalid.
    """
    path = _require_config_path(navigator)
    plugin = _require_plugin(tool_input, allow_all=False)

    updates = tool_input.get("updates")
    if not isinstance(updates, dict):
        raise InvalidToolInputError("updates must be an object", {"plugin": plugin})

    reason = tool_input.get("reason")
    if not isinstance(reason, str) or not reason.strip():
        raise InvalidToolInputError("A reason is required for configuration updates")

    # Echoed masks must not overwrite the real secret
    updates = {
        key: value
        for key, value in updates.items()
        if not (_is_secret_key(key) and value == MASKED_SECRET)
    }

    logger.info(
        "Updating plugin configuration",
        extra={"plugin": plugin, "reason": reason, "keys": sorted(updates)},
    )
    await asyncio.to_thread(update_plugin_section, path, plugin, updates)

    return {
        "success": True,
        "message": f"Updated {plugin} configuration",
        "reason": reason,
    }


CONFIG_TOOL_HANDLERS: dict[str, Callable[[dict[str, Any], NavigatorContext], Awaitable[dict[str, Any]]]] = {
    TOOL_GET_PLUGIN_CONFIG: get_plugin_config,
    TOOL_UPDATE_PLUGIN_CONFIG: update_plugin_config,
}
