"""Chat adapter: the agentic tool-use loop.

One query is a sequence of turns. Each turn makes exactly one model call:

    call model
      stop_reason == tool_use  -> run every requested tool, append the
                                  results as one message, next turn;
                                  a submit_answer call ends the query
      stop_reason == end_turn  -> first text block becomes a fallback
                                  answer (no sources, fallback confidence)
      anything else            -> logged, query ends without an answer

Running out of turns raises NoResponseError. Errors from the model or the
tools propagate; the conversation is dropped either way and nothing is
retried.

Example:
    adapter = ChatAdapter(create_model_client())
    answer = await adapter.query(navigator, "How do I deploy?")
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from autonav.constants import (
    DEFAULT_FALLBACK_CONFIDENCE,
    DEFAULT_MAX_TOKENS,
    DEFAULT_MAX_TURNS,
    DEFAULT_MODEL,
    STOP_REASON_END_TURN,
    TOOL_SUBMIT_ANSWER,
)
from autonav.exceptions import NoResponseError, QueryTimeoutError, UnknownToolError
from autonav.logging import LogContext, get_logger
from autonav.models import NavigatorResponse
from autonav.prompts import build_question_prompt, build_system_prompt
from autonav.tools import (
    CONFIG_TOOL_HANDLERS,
    ToolCall,
    ToolResult,
    parse_submit_answer,
    tools_for,
)

if TYPE_CHECKING:
    from autonav.llm import ModelClient, ModelResponse
    from autonav.navigator import NavigatorContext

logger = get_logger(__name__)


@dataclass
class Conversation:
    """Message history for one query, in messages API format."""

    messages: list[dict[str, Any]] = field(default_factory=list)

    def add_user(self, text: str) -> None:
        self.messages.append({"role": "user", "content": text})

    def add_assistant(self, response: ModelResponse) -> None:
        self.messages.append(response.to_message())

    def add_tool_results(self, results: list[ToolResult]) -> None:
        """Append one user message carrying every result from a turn."""
        self.messages.append(
            {
                "role": "user",
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": result.tool_use_id,
                        "content": json.dumps(result.result, default=str),
                        "is_error": result.is_error,
                    }
                    for result in results
                ],
            }
        )

    def __len__(self) -> int:
        return len(self.messages)


class ChatAdapter:
    """Drives a question through the model until it produces an answer.

    Attributes:
        model: Model identifier sent with every call.
        max_turns: Maximum number of model calls per query.
        max_tokens: Token budget per model call.
        fallback_confidence: Confidence given to plain-text fallback answers.
    """

    def __init__(
        self,
        model_client: ModelClient,
        *,
        model: str = DEFAULT_MODEL,
        max_turns: int = DEFAULT_MAX_TURNS,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        fallback_confidence: float = DEFAULT_FALLBACK_CONFIDENCE,
    ) -> None:
        if max_turns < 1:
            raise ValueError("max_turns must be at least 1")
        if not 0.0 <= fallback_confidence <= 1.0:
            raise ValueError("fallback_confidence must be between 0 and 1")
        self._client = model_client
        self.model = model
        self.max_turns = max_turns
        self.max_tokens = max_tokens
        self.fallback_confidence = fallback_confidence

    async def query(
        self,
        navigator: NavigatorContext,
        question: str,
        *,
        timeout: float | None = None,
    ) -> NavigatorResponse:
        """Answer a question.

        Args:
            navigator: The navigator to answer with.
            question: The question.
            timeout: Seconds allowed for each model call.

        Returns:
            The answer, either submitted through the tool or a fallback.

        Raises:
            NoResponseError: No answer within the turn budget, or the model
                stopped for an unexpected reason.
            QueryTimeoutError: A model call exceeded the timeout.
            UnknownToolError: The model called a tool we don't have.
            ToolError: A tool rejected its input.
            QueryError: The model call failed.
        """
        system = build_system_prompt(
            navigator.system_prompt,
            str(navigator.knowledge_base_path),
            self_config=navigator.plugins_config_path is not None,
        )
        tools = [tool.to_api() for tool in tools_for(navigator)]
        conversation = Conversation()
        conversation.add_user(build_question_prompt(question))

        for turn in range(1, self.max_turns + 1):
            with LogContext(navigator=navigator.name, turn=turn):
                response = await self._call_model(system, conversation, tools, timeout)
                conversation.add_assistant(response)

                if response.wants_tools:
                    calls = [
                        ToolCall(id=block.id, name=block.name, input=block.input)
                        for block in response.tool_uses
                    ]
                    if not calls:
                        logger.warning("Model asked for tools but sent no tool calls")
                        raise NoResponseError(turn)

                    results, answer = await self._run_tools(calls, navigator, question)
                    if answer is not None:
                        return self._finish(answer, turn, navigator)
                    conversation.add_tool_results(results)
                    continue

                if response.stop_reason == STOP_REASON_END_TURN:
                    text = response.first_text
                    if text is None:
                        raise NoResponseError(turn)
                    logger.info("Model answered without submit_answer, using text fallback")
                    answer = NavigatorResponse(
                        query=question,
                        answer=text,
                        sources=[],
                        confidence=self.fallback_confidence,
                        metadata={"fallback": True},
                    )
                    return self._finish(answer, turn, navigator)

                logger.warning(
                    "Unexpected stop reason",
                    extra={"stop_reason": response.stop_reason},
                )
                raise NoResponseError(turn)

        raise NoResponseError(self.max_turns)

    async def _call_model(
        self,
        system: str,
        conversation: Conversation,
        tools: list[dict[str, Any]],
        timeout: float | None,
    ) -> ModelResponse:
        call = self._client.create_message(
            model=self.model,
            system=system,
            messages=list(conversation.messages),
            tools=tools,
            max_tokens=self.max_tokens,
            timeout=timeout,
        )
        if timeout is None:
            return await call
        try:
            return await asyncio.wait_for(call, timeout)
        except TimeoutError as e:
            raise QueryTimeoutError("Query timed out", {"timeout": timeout}) from e

    async def _run_tools(
        self,
        calls: list[ToolCall],
        navigator: NavigatorContext,
        question: str,
    ) -> tuple[list[ToolResult], NavigatorResponse | None]:
        """Run a turn's tool calls in order.

        Every call runs even after a submit_answer; the first submitted
        answer is the one returned.
        """
        results: list[ToolResult] = []
        answer: NavigatorResponse | None = None
        available = {TOOL_SUBMIT_ANSWER}
        if navigator.plugins_config_path is not None:
            available.update(CONFIG_TOOL_HANDLERS)

        for call in calls:
            if call.name not in available:
                raise UnknownToolError(f"Unknown tool: {call.name}", {"tool": call.name})

            logger.debug("Running tool", extra={"tool": call.name})
            if call.name == TOOL_SUBMIT_ANSWER:
                submitted = parse_submit_answer(call.input, question)
                if answer is None:
                    answer = submitted
                output: Any = {"success": True}
            else:
                output = await CONFIG_TOOL_HANDLERS[call.name](call.input, navigator)

            results.append(ToolResult(tool_use_id=call.id, tool_name=call.name, result=output))

        return results, answer

    def _finish(
        self,
        answer: NavigatorResponse,
        turns: int,
        navigator: NavigatorContext,
    ) -> NavigatorResponse:
        answer.metadata = {
            **answer.metadata,
            "navigator": navigator.name,
            "model": self.model,
            "turns": turns,
        }
        logger.info(
            "Query answered",
            extra={"turns": turns, "confidence": answer.confidence},
        )
        return answer
