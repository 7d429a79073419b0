"""Pydantic models for autonav.

This module contains the navigator-facing data models. All models use
Pydantic BaseModel with Field() descriptions for documentation and
validation, and serialize with camelCase keys so files written by other
navigator tooling round-trip unchanged.

Models are organized by domain:
- Answer models (Source, NavigatorResponse, ConfidenceLevel)
- Navigator config models (NavigatorConfig, KnowledgePackRef, PluginsRef)

Plugin configuration lives in `autonav.config`; plugin events and actions
live in `autonav.plugins.base`.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel

from autonav.constants import (
    CONFIDENCE_HIGH,
    CONFIDENCE_LOW,
    CONFIDENCE_MEDIUM,
    DEFAULT_INSTRUCTIONS_PATH,
    DEFAULT_KNOWLEDGE_BASE_PATH,
    DEFAULT_PLUGINS_CONFIG_FILE,
    PROTOCOL_VERSION,
)

KEBAB_CASE_PATTERN = re.compile(r"^[a-z][a-z0-9]*(-[a-z0-9]+)*$")

CAMEL_CASE_CONFIG: dict[str, Any] = {
    "alias_generator": to_camel,
    "populate_by_name": True,
}


# =============================================================================
# ANSWER MODELS
# =============================================================================


class Source(BaseModel):
    """A knowledge-base file cited in support of an answer."""

    file: str = Field(..., min_length=1, description="Path relative to the knowledge base")
    section: str = Field(default="", description="Heading or section within the file")
    relevance: str = Field(default="", description="Why this source supports the answer")


class NavigatorResponse(BaseModel):
    """A structured, grounded answer produced by a navigator.

    Confidence is range-checked here; whether cited files exist and whether
    the confidence clears a floor are caller-side checks in
    `autonav.validation`.

    Attributes:
        protocol_version: Response protocol version.
        query: The question that was asked.
        answer: The answer text.
        sources: Ordered list of cited knowledge-base files.
        confidence: Confidence score between 0.0 and 1.0.
        metadata: Free-form metadata (turn count, model, fallback flag).
        timestamp: When the answer was produced.
    """

    protocol_version: str = Field(default=PROTOCOL_VERSION, description="Protocol version")
    query: str = Field(..., description="Original question")
    answer: str = Field(..., description="Answer text")
    sources: list[Source] = Field(default_factory=list, description="Cited sources")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Confidence score (0-1)")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Additional metadata")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the answer was produced (UTC)",
    )

    model_config = CAMEL_CASE_CONFIG

    def meets_confidence(self, threshold: float) -> bool:
        """Check whether confidence is at or above a threshold."""
        return self.confidence >= threshold

    def to_json(self) -> str:
        """Serialize with camelCase keys."""
        return self.model_dump_json(by_alias=True, indent=2)


# Answers are what callers see; the response name mirrors the wire protocol.
Answer = NavigatorResponse


class ConfidenceLevel(str, Enum):
    """Named confidence floors."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def threshold(self) -> float:
        return _CONFIDENCE_THRESHOLDS[self]

    @classmethod
    def parse(cls, value: str) -> ConfidenceLevel | None:
        """Parse a level name case-insensitively; None if unknown."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


_CONFIDENCE_THRESHOLDS = {
    ConfidenceLevel.HIGH: CONFIDENCE_HIGH,
    ConfidenceLevel.MEDIUM: CONFIDENCE_MEDIUM,
    ConfidenceLevel.LOW: CONFIDENCE_LOW,
}


# =============================================================================
# NAVIGATOR CONFIG MODELS
# =============================================================================


class KnowledgePackRef(BaseModel):
    """Reference to the knowledge pack a navigator was built from."""

    name: str = Field(..., description="Pack name")
    version: str = Field(..., description="Pack version")
    source: str | None = Field(default=None, description="Where the pack came from")

    model_config = CAMEL_CASE_CONFIG


class PluginsRef(BaseModel):
    """Pointer to the navigator's plugin configuration file."""

    config_file: str = Field(
        default=DEFAULT_PLUGINS_CONFIG_FILE,
        description="Plugin config path, relative to the navigator directory",
    )

    model_config = CAMEL_CASE_CONFIG


class NavigatorConfig(BaseModel):
    """A navigator's `config.json`."""

    version: str = Field(default="1.0.0", min_length=1, description="Config version")
    name: str = Field(..., min_length=1, max_length=50, description="Navigator name (kebab-case)")
    description: str | None = Field(default=None, description="What this navigator knows about")
    communication_layer_version: str = Field(default="^1.0.0")
    sdk_adapter_version: str = Field(default="^1.0.0")
    knowledge_base_path: str = Field(
        default=DEFAULT_KNOWLEDGE_BASE_PATH,
        description="Knowledge base directory, relative to the navigator directory",
    )
    instructions_path: str = Field(
        default=DEFAULT_INSTRUCTIONS_PATH,
        description="Instructions file, relative to the navigator directory",
    )
    created_at: datetime | None = Field(default=None)
    updated_at: datetime | None = Field(default=None)
    metadata: dict[str, Any] = Field(default_factory=dict)
    knowledge_pack: KnowledgePackRef | None = Field(default=None)
    confidence_threshold: float | None = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Minimum acceptable answer confidence",
    )
    plugins: PluginsRef | None = Field(default=None, description="Plugin configuration pointer")

    model_config = CAMEL_CASE_CONFIG

    @field_validator("name")
    @classmethod
    def _validate_kebab_case(cls, value: str) -> str:
        if not KEBAB_CASE_PATTERN.match(value):
            raise ValueError("Name must be in kebab-case (e.g., my-navigator)")
        return value

    def touch(self) -> None:
        """Mark the config as updated now."""
        self.updated_at = datetime.now(UTC)
