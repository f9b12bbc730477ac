"""Main orchestration loop for toolmux: LLM -> tools -> LLM -> ... -> final answer."""

from __future__ import annotations

import logging
import threading
from typing import (
    Any,
    List,
    Sequence,
)

from toolmux.agent.llm_client import BaseLLMClient
from toolmux.agent.prompt_builder import (
    build_system_prompt,
    format_tool_result,
)
from toolmux.agent.response_parser import ResponseParser
from toolmux.agent.tool_executor import execute_tool_calls
from toolmux.config import settings
from toolmux.core.schema import (
    AgentRunResult,
    ConversationMessage,
    FinalStep,
    ToolCallRecord,
    ToolResult,
)
from toolmux.dispatch.facade import ToolDispatcher

logger = logging.getLogger(__name__)

EMPTY_ANSWER = "The assistant returned an empty answer."
INCOMPLETE_ANSWER = (
    "I could not complete the request within {limit} steps. Please rephrase or narrow it down."
)


class AgentCancelledError(RuntimeError):
    """Raised when a run is cancelled (e.g. the client went away)."""


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------
def collect_sources(result: Any, sources: List[str]) -> None:
    """Add the ``documentName`` of every retrieved document in *result* to *sources*."""
    if not isinstance(result, list):
        return
    for item in result:
        if not isinstance(item, dict):
            continue
        name = item.get("documentName")
        if isinstance(name, str) and name.strip() and name != "null" and name not in sources:
            sources.append(name)


def append_sources(answer: str, sources: Sequence[str]) -> str:
    """Answer followed by a numbered list of the documents it is based on."""
    if not sources:
        return answer
    lines = [f"{i}. `{source}`" for i, source in enumerate(sources, start=1)]
    return answer + "\n\n---\n\n**Sources:**\n" + "\n".join(lines)


# ---------------------------------------------------------------------------
# Agent Loop
# ---------------------------------------------------------------------------
class AgentLoop:
    """
    Per-request tool-calling loop.

    The instance only holds collaborators (dispatcher, LLM client, parser) and limits; all
    per-request state lives in the local variables of :meth:`run_detailed`, so one instance can
    serve concurrent requests.
    """

    def __init__(
        self,
        dispatcher: ToolDispatcher,
        llm: BaseLLMClient,
        parser: ResponseParser | None = None,
        max_iterations: int | None = None,
        max_parallel_tools: int | None = None,
        attach_sources: bool | None = None,
    ):
        self.dispatcher = dispatcher
        self.llm = llm
        self.parser = parser or ResponseParser()
        self.max_iterations = (
            settings.MAX_TOOL_ITERATIONS if max_iterations is None else max_iterations
        )
        self.max_parallel_tools = max_parallel_tools or settings.MAX_PARALLEL_TOOLS
        self.attach_sources = settings.APPEND_SOURCES if attach_sources is None else attach_sources
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")

    def run(
        self,
        system_prompt: str | None,
        history: Sequence[ConversationMessage],
        user_message: str,
        temperature: float | None = None,
    ) -> str:
        """Run the loop and return only the final answer."""
        return self.run_detailed(system_prompt, history, user_message, temperature).answer

    def run_detailed(
        self,
        system_prompt: str | None,
        history: Sequence[ConversationMessage],
        user_message: str,
        temperature: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> AgentRunResult:
        """
        Run the loop for one request.

        Raises
        ------
        LLMCallError
            The LLM call failed; the run is aborted.
        AgentCancelledError
            *cancel_event* was set.
        """
        if temperature is None:
            temperature = settings.LLM_TEMPERATURE

        system_text = build_system_prompt(system_prompt, self.dispatcher.all_definitions())
        messages: List[ConversationMessage] = [ConversationMessage.system(system_text)]
        messages.extend(history)
        messages.append(ConversationMessage.user(user_message))

        records: List[ToolCallRecord] = []
        sources: List[str] = []
        partial_answer: str | None = None

        for iteration in range(1, self.max_iterations + 1):
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Run cancelled before iteration %d", iteration)
                raise AgentCancelledError("request was cancelled")

            logger.info("Tool loop iteration: %d/%d", iteration, self.max_iterations)
            raw = self.llm.complete(messages, temperature)
            logger.debug("LLM raw response: %s", raw)

            step = self.parser.parse(raw)
            if isinstance(step, FinalStep):
                logger.info("Got final answer after %d iteration(s)", iteration)
                return AgentRunResult(
                    answer=self._finish(step.answer or EMPTY_ANSWER, sources),
                    completed=True,
                    iterations=iteration,
                    tool_calls=records,
                    sources=sources,
                    messages=messages,
                )

            if step.answer:
                partial_answer = step.answer
            logger.info(
                "Executing %d tool(s): %s", len(step.calls), [call.name for call in step.calls]
            )
            messages.append(ConversationMessage.assistant(step.to_json()))

            results = execute_tool_calls(self.dispatcher, step.calls, self.max_parallel_tools)
            for call, result in zip(step.calls, results):
                self._record(iteration, call.name, call.arguments, result, records, sources)
                messages.append(ConversationMessage.tool(format_tool_result(call.name, result)))

        logger.error("Max iterations (%d) reached in tool loop", self.max_iterations)
        answer = partial_answer or INCOMPLETE_ANSWER.format(limit=self.max_iterations)
        return AgentRunResult(
            answer=self._finish(answer, sources),
            completed=False,
            iterations=self.max_iterations,
            tool_calls=records,
            sources=sources,
            messages=messages,
        )

    @staticmethod
    def _record(
        iteration: int,
        name: str,
        arguments: dict,
        result: ToolResult,
        records: List[ToolCallRecord],
        sources: List[str],
    ) -> None:
        if result.success:
            logger.info("Tool %s executed successfully", name)
            collect_sources(result.result, sources)
        else:
            logger.warning("Tool %s returned error: %s", name, result.error)
        records.append(
            ToolCallRecord(iteration=iteration, name=name, arguments=arguments, result=result)
        )

    def _finish(self, answer: str, sources: Sequence[str]) -> str:
        return append_sources(answer, sources) if self.attach_sources else answer
