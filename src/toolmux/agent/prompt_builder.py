"""Text that the agent loop sends to the LLM: the system prompt and tool result messages."""

import json
from typing import (
    Any,
    Sequence,
)

from toolmux.core.schema import (
    ToolDefinition,
    ToolResult,
)

DEFAULT_INSTRUCTIONS = """\
You are a helpful assistant that can call tools to gather information or perform actions.
Use a tool only when it is needed; answer directly otherwise."""

RESPONSE_FORMAT = """\
## Response format

Always respond with exactly one JSON object and nothing else:
{"step": "tool" | "final", "tool_calls": [{"name": "<tool name>", "arguments": {...}}], "answer": "..."}

- To call tools: "step": "tool" and one entry per call in "tool_calls".
- To answer the user: "step": "final", an empty "tool_calls" list and the reply in "answer".
- Use tool names exactly as listed, including any "server:" prefix.
- Tool results come back in messages starting with TOOL_RESULT."""


def format_tools(tools: Sequence[ToolDefinition]) -> str:
    """Numbered tool catalogue with each tool's input schema."""
    if not tools:
        return "No tools are currently available."

    lines = ["## Available tools", ""]
    for i, tool in enumerate(tools, start=1):
        lines.append(f"{i}. **{tool.name}**")
        lines.append(f"   - Description: {tool.description or 'No description available'}")
        schema = tool.input_schema.model_dump(exclude_none=True)
        if schema.get("properties"):
            lines.append("   - Input Schema:")
            lines.append("```json")
            lines.append(json.dumps(schema, indent=2, ensure_ascii=False, default=str))
            lines.append("```")
        lines.append("")
    return "\n".join(lines).rstrip()


def build_system_prompt(instructions: str | None, tools: Sequence[ToolDefinition]) -> str:
    """Caller instructions, then the tool catalogue, then the response contract."""
    return "\n\n".join(
        [(instructions or DEFAULT_INSTRUCTIONS).strip(), format_tools(tools), RESPONSE_FORMAT]
    )


def _to_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


def format_tool_result(name: str, result: ToolResult) -> str:
    """Content of the ``tool`` message that reports one call back to the LLM."""
    body = _to_text(result.result) if result.success else f"ERROR: {result.error}"
    return f"TOOL_RESULT {name}:\n{body}"
