"""
Schema definitions for LLM <-> agent loop <-> tool messages.

These data models serve as the contract between the response parser, the orchestration loop, the
dispatch facade and individual tool servers.  We keep them separate from runtime logic so they can
be imported anywhere without side-effects.
"""

import json
from enum import Enum
from typing import (
    Any,
    Dict,
    List,
    Literal,
    Optional,
    Union,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


# ---------------------------------------------------------------------------
# Tool catalogue
# ---------------------------------------------------------------------------
class PropertyDefinition(BaseModel):
    """One parameter of a tool input schema."""

    model_config = ConfigDict(frozen=True, extra="allow")

    # JSON Schema allows a list of types, e.g. ["string", "null"]
    type: Union[str, List[str], None] = None
    description: Optional[str] = None
    default: Any = None
    enum: Optional[List[Any]] = None


class InputSchema(BaseModel):
    """JSON-Schema-like description of a tool's parameters."""

    model_config = ConfigDict(frozen=True, extra="allow")

    type: Union[str, List[str]] = "object"
    properties: Dict[str, PropertyDefinition] = Field(default_factory=dict)
    required: List[str] = Field(default_factory=list)


class ToolDefinition(BaseModel):
    """A tool as presented to the LLM."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(..., min_length=1, description="Globally unique (namespaced) tool name")
    description: str = ""
    input_schema: InputSchema = Field(default_factory=InputSchema, alias="inputSchema")

    def with_name(self, name: str) -> "ToolDefinition":
        """Return a copy of this definition under another name."""
        return self.model_copy(update={"name": name})


# ---------------------------------------------------------------------------
# Calls and results
# ---------------------------------------------------------------------------
class ToolCallRequest(BaseModel):
    """A call that the LLM wants the agent to execute."""

    name: str = Field(..., description="'server:tool' for remote tools, bare name for local ones")
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):
    """
    Outcome of a single tool execution.

    Exactly one of ``result`` / ``error`` is meaningful: ``error`` is set iff ``success`` is False.
    A successful result may legitimately be ``None`` (JSON ``null``).
    """

    success: bool
    result: Any = None
    error: Optional[str] = None

    @model_validator(mode="after")
    def _check_exclusive(self) -> "ToolResult":
        if self.success and self.error is not None:
            raise ValueError("a successful ToolResult must not carry an error")
        if not self.success:
            if not self.error:
                raise ValueError("a failed ToolResult must carry an error message")
            if self.result is not None:
                raise ValueError("a failed ToolResult must not carry a result")
        return self

    @classmethod
    def ok(cls, result: Any = None) -> "ToolResult":
        """Build a successful result."""
        return cls(success=True, result=result)

    @classmethod
    def fail(cls, error: str) -> "ToolResult":
        """Build a failed result."""
        return cls(success=False, error=error or "Unknown error")


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------
class Role(str, Enum):
    """Conversation roles understood by the loop."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ConversationMessage(BaseModel):
    """A single entry of the per-request message sequence."""

    role: Role
    content: str

    @classmethod
    def system(cls, content: str) -> "ConversationMessage":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "ConversationMessage":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "ConversationMessage":
        return cls(role=Role.ASSISTANT, content=content)

    @classmethod
    def tool(cls, content: str) -> "ConversationMessage":
        return cls(role=Role.TOOL, content=content)


# ---------------------------------------------------------------------------
# Parsed LLM intent
# ---------------------------------------------------------------------------
class ToolStep(BaseModel):
    """The LLM asks for one or more tool calls."""

    kind: Literal["tool"] = "tool"
    calls: List[ToolCallRequest] = Field(..., min_length=1)
    answer: Optional[str] = None  # partial answer / scratchpad, if the LLM sent one

    def to_json(self) -> str:
        """Normalised wire form, fed back to the LLM as its own previous turn."""
        return json.dumps(
            {
                "step": "tool",
                "tool_calls": [call.model_dump() for call in self.calls],
                "answer": self.answer or "",
            },
            ensure_ascii=False,
            default=str,
        )


class FinalStep(BaseModel):
    """The LLM is done and hands back its answer."""

    kind: Literal["final"] = "final"
    answer: str


AgentStep = Union[ToolStep, FinalStep]


# ---------------------------------------------------------------------------
# Loop report
# ---------------------------------------------------------------------------
class ToolCallRecord(BaseModel):
    """A tool call executed during one loop run (for logging / API responses)."""

    iteration: int
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    result: ToolResult


class AgentRunResult(BaseModel):
    """Everything one orchestration loop run produced."""

    answer: str
    completed: bool = Field(..., description="False when the iteration bound was hit")
    iterations: int
    tool_calls: List[ToolCallRecord] = Field(default_factory=list)
    sources: List[str] = Field(default_factory=list)
    messages: List[ConversationMessage] = Field(default_factory=list)
