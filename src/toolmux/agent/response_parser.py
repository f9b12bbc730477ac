"""
Turn raw LLM text into an :data:`~toolmux.core.schema.AgentStep`.

The LLM is asked to answer with

    {"step": "tool" | "final", "tool_calls": [{"name": ..., "arguments": {...}}], "answer": "..."}

but frequently does not.  :class:`ResponseParser` runs an ordered chain of strategies; the first
one whose :meth:`ParserStrategy.can_parse` matches and whose :meth:`ParserStrategy.parse` succeeds
wins.  The last strategy accepts any text as a final answer, so parsing always yields a step.
"""

import json
import logging
import re
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Dict,
    List,
    Optional,
    Sequence,
)

from pydantic import (
    AliasChoices,
    BaseModel,
    Field,
    ValidationError,
    field_validator,
)

from toolmux.agent.json_repair import (
    loads_with_repair,
    strip_code_fences,
)
from toolmux.core.schema import (
    AgentStep,
    FinalStep,
    ToolCallRequest,
    ToolStep,
)

logger = logging.getLogger(__name__)

STEP_TOOL = "tool"
STEP_FINAL = "final"

_STEP_KEY_RE = re.compile(r'\{\s*"(?:step|tool_calls)"\s*:')


class ResponseParsingError(RuntimeError):
    """Raised by a strategy that cannot turn the text into a step."""


# ---------------------------------------------------------------------------
# Pydantic models for payload validation
# ---------------------------------------------------------------------------
class RawToolCall(BaseModel):
    """One entry of ``tool_calls`` as the LLM wrote it."""

    name: str = Field(..., min_length=1)
    arguments: Dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("arguments", "args")
    )

    @field_validator("arguments", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return {} if value is None else value


class StepPayload(BaseModel):
    """Validates the decoded step object."""

    step: Optional[str] = None
    tool_calls: List[RawToolCall] = Field(default_factory=list)
    answer: Optional[str] = None

    @field_validator("tool_calls", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("answer", mode="before")
    @classmethod
    def _stringify_answer(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return json.dumps(value, ensure_ascii=False)


def payload_to_step(payload: StepPayload, raw_text: str) -> AgentStep:
    """
    Apply the loose step semantics.

    ``final`` wins outright; otherwise any tool calls make a tool step; a ``tool`` step without
    calls or a step name the LLM invented is treated as final.
    """
    step = (payload.step or "").strip().lower()
    calls = [ToolCallRequest(name=c.name, arguments=c.arguments) for c in payload.tool_calls]

    if step == STEP_FINAL:
        return FinalStep(answer=payload.answer or "")
    if calls:
        return ToolStep(calls=calls, answer=payload.answer or None)
    if step and step != STEP_TOOL:
        logger.warning("Unknown step '%s', treating as final answer", step)
    elif step == STEP_TOOL:
        logger.warning("Step is 'tool' but no tool_calls were given, treating as final answer")
    return FinalStep(answer=payload.answer if payload.answer is not None else raw_text.strip())


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------
class ParserStrategy(ABC):
    """One way of reading an LLM response."""

    name = "base"

    @abstractmethod
    def can_parse(self, text: str) -> bool:
        """Cheap check whether this strategy applies to *text*."""

    @abstractmethod
    def parse(self, text: str) -> AgentStep:
        """Return the step, or raise :class:`ResponseParsingError`."""


class JsonStrategy(ParserStrategy):
    """Structured responses, repaired when the LLM broke the JSON."""

    name = "json"

    def can_parse(self, text: str) -> bool:
        trimmed = (text or "").strip()
        if not trimmed:
            return False
        if trimmed.startswith(("{", "[")):
            return True
        if trimmed.startswith("```json") or trimmed.startswith("```JSON"):
            return True
        if trimmed.startswith("```") and "{" in trimmed:
            return True
        # Prose around an embedded step object.
        return bool(_STEP_KEY_RE.search(trimmed))

    def parse(self, text: str) -> AgentStep:
        cleaned = strip_code_fences(text)
        try:
            data = loads_with_repair(cleaned)
        except json.JSONDecodeError as exc:
            raise ResponseParsingError(f"invalid JSON: {exc}") from exc

        try:
            payload = self._to_payload(data)
        except ValidationError as exc:
            raise ResponseParsingError(f"JSON does not describe a step: {exc}") from exc
        return payload_to_step(payload, text)

    @staticmethod
    def _to_payload(data: Any) -> StepPayload:
        if isinstance(data, list):
            # A bare list of calls.
            return StepPayload(step=STEP_TOOL, tool_calls=data)
        if not isinstance(data, dict):
            raise ResponseParsingError(f"expected a JSON object, got {type(data).__name__}")

        if "tool" in data and not data.get("tool_calls"):
            # Shorthand {"tool": "<name>", "args": {...}}
            return StepPayload(
                step=STEP_TOOL,
                tool_calls=[{"name": data["tool"], "arguments": data.get("args", {})}],
                answer=data.get("answer"),
            )
        if not {"step", "tool_calls", "answer"} & data.keys():
            raise ResponseParsingError("JSON object has none of 'step', 'tool_calls', 'answer'")
        return StepPayload.model_validate(data)


class PlainTextStrategy(ParserStrategy):
    """Fallback: the whole response is the final answer."""

    name = "plain_text"

    def can_parse(self, text: str) -> bool:
        return True

    def parse(self, text: str) -> AgentStep:
        logger.info("Parsing response as plain text (not JSON)")
        return FinalStep(answer=(text or "").strip())


DEFAULT_STRATEGIES: Sequence[ParserStrategy] = (JsonStrategy(), PlainTextStrategy())


class ResponseParser:
    """Ordered strategy chain; :meth:`parse` never raises."""

    def __init__(self, strategies: Sequence[ParserStrategy] | None = None):
        self._strategies = list(strategies if strategies is not None else DEFAULT_STRATEGIES)

    def parse(self, text: str) -> AgentStep:
        for strategy in self._strategies:
            if not strategy.can_parse(text):
                continue
            try:
                step = strategy.parse(text)
            except (ResponseParsingError, ValueError, RecursionError) as exc:
                logger.debug("Strategy '%s' failed: %s", strategy.name, exc)
                continue
            logger.debug("Strategy '%s' produced a %s step", strategy.name, step.kind)
            return step

        # Only reachable with a custom chain that lacks the plain-text fallback.
        logger.warning("No parser strategy accepted the response, using it verbatim")
        return FinalStep(answer=(text or "").strip())
