"""
Pydantic models for toolmux API requests and responses.
This module defines the request and response schemas used by the toolmux API.
"""

from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)

from toolmux.core.schema import ToolCallRecord


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class SessionResponse(BaseModel):
    """Response with session information."""

    session_id: str


class MessageRequest(BaseModel):
    """Incoming user message."""

    message: str = Field(..., min_length=1, description="User message for the agent")
    session_id: Optional[str] = Field(None, description="Session ID for conversation context")
    temperature: Optional[float] = Field(None, ge=0.0, le=2.0)
    system_prompt: Optional[str] = Field(None, description="Behavioural instructions for the LLM")


class MessageResponse(BaseModel):
    """API response returned to the caller."""

    reply: str
    session_id: str
    iterations: int
    completed: bool
    tool_calls: List[ToolCallRecord] = Field(default_factory=list)


class ExecuteRequest(BaseModel):
    """Direct tool invocation, same shape remote tool servers accept."""

    model_config = ConfigDict(populate_by_name=True)

    tool_name: str = Field(..., alias="toolName", min_length=1)
    arguments: Dict[str, Any] = Field(default_factory=dict)
