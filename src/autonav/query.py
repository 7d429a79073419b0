"""Query engine: ask a navigator, then validate what comes back.

QueryEngine wraps the chat adapter with the caller-side checks: cited
sources must exist inside the knowledge base, and confidence must meet the
floor from QueryOptions or the navigator's config.

Example:
    engine = QueryEngine(ChatAdapter(create_model_client()))
    navigator = await load_navigator("./platform-docs")
    answer = await engine.query(navigator, "How do I rotate keys?")
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, field_validator

from autonav.exceptions import EmptyQuestionError
from autonav.logging import get_logger
from autonav.models import ConfidenceLevel, NavigatorResponse
from autonav.utils import parse_timeout
from autonav.validation import find_placeholder_text, validate_confidence, validate_sources

if TYPE_CHECKING:
    from autonav.adapter import ChatAdapter
    from autonav.navigator import NavigatorContext

logger = get_logger(__name__)


class QueryOptions(BaseModel):
    """Per-query settings.

    `timeout` accepts seconds or a duration string ("90s", "1m30s", or bare
    milliseconds). `confidence_threshold` accepts a number in [0, 1] or a
    level name (high, medium, low).
    """

    timeout: float | None = Field(default=None, gt=0, description="Seconds per model call")
    confidence_threshold: float | None = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Overrides the navigator's confidence floor",
    )
    validate_sources: bool = Field(default=True, description="Check cited files exist")

    @field_validator("timeout", mode="before")
    @classmethod
    def _parse_timeout(cls, value: object) -> object:
        if isinstance(value, str):
            return parse_timeout(value)
        return value

    @field_validator("confidence_threshold", mode="before")
    @classmethod
    def _parse_level(cls, value: object) -> object:
        if isinstance(value, ConfidenceLevel):
            return value.threshold
        if isinstance(value, str):
            level = ConfidenceLevel.parse(value)
            if level is not None:
                return level.threshold
        return value


class QueryEngine:
    """Runs questions through a chat adapter and applies answer validation."""

    def __init__(self, adapter: ChatAdapter) -> None:
        self.adapter = adapter

    async def query(
        self,
        navigator: NavigatorContext,
        question: str,
        options: QueryOptions | None = None,
    ) -> NavigatorResponse:
        """Ask one question and validate the answer.

        Raises:
            EmptyQuestionError: If the question is blank.
            InvalidSourcePathError: A cited path escapes the knowledge base.
            SourceNotFoundError: A cited file doesn't exist.
            ConfidenceBelowThresholdError: Confidence is under the floor.
            QueryError / ToolError: Whatever the chat adapter raised.
        """
        if not question.strip():
            raise EmptyQuestionError("Question must not be empty")
        options = options or QueryOptions()

        answer = await self.adapter.query(navigator, question, timeout=options.timeout)

        if options.validate_sources:
            validate_sources(answer, navigator.knowledge_base_path)

        floor = (
            options.confidence_threshold
            if options.confidence_threshold is not None
            else navigator.confidence_threshold
        )
        if floor is not None:
            validate_confidence(answer, floor)

        warnings = find_placeholder_text(answer)
        if warnings:
            logger.warning("Answer contains placeholder text", extra={"findings": warnings})
            answer.metadata = {**answer.metadata, "warnings": warnings}

        return answer

    async def chat(
        self,
        navigator: NavigatorContext,
        messages: list[str],
        options: QueryOptions | None = None,
    ) -> NavigatorResponse:
        """Answer a multi-message exchange as one question, turns joined in order."""
        turns = [message.strip() for message in messages if message.strip()]
        if not turns:
            raise EmptyQuestionError("At least one message is required")
        return await self.query(navigator, "\n\n".join(turns), options)
