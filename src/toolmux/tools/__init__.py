"""
Local tool registry for toolmux.

Local tools are plain Python functions wrapped as :class:`LocalTool` by the :func:`local_tool`
decorator.  A :class:`ToolRegistry` is built once at startup from an explicit list of such tools
and is read-only afterwards; lookups never raise and execution always yields a
:class:`~toolmux.core.schema.ToolResult`.
"""

import inspect
import logging
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    get_type_hints,
)

from pydantic import (
    ValidationError,
    validate_call,
)

from toolmux.core.schema import (
    InputSchema,
    PropertyDefinition,
    ToolDefinition,
    ToolResult,
)

logger = logging.getLogger(__name__)


class ToolExecutionError(RuntimeError):
    """Raised by a tool implementation when it cannot produce a result."""


_JSON_TYPES: Dict[Any, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    dict: "object",
}


def _json_type(annotation: Any) -> str:
    origin = getattr(annotation, "__origin__", None)
    return _JSON_TYPES.get(annotation) or _JSON_TYPES.get(origin) or "string"


def build_input_schema(fn: Callable, params: Mapping[str, str] | None = None) -> InputSchema:
    """Derive an input schema from the signature of *fn*.

    *params* maps parameter names to the human readable description shown to the LLM.
    """
    params = params or {}
    sig = inspect.signature(fn)
    type_hints = get_type_hints(fn)
    properties: Dict[str, PropertyDefinition] = {}
    required: List[str] = []
    for param_name, param in sig.parameters.items():
        has_default = param.default is not inspect.Parameter.empty
        properties[param_name] = PropertyDefinition(
            type=_json_type(type_hints.get(param_name, str)),
            description=params.get(param_name),
            default=param.default if has_default else None,
        )
        if not has_default:
            required.append(param_name)
    return InputSchema(type="object", properties=properties, required=required)


class LocalTool:
    """A tool implemented in-process: its definition plus the function behind it."""

    def __init__(self, definition: ToolDefinition, fn: Callable[..., Any]):
        self.definition = definition
        self.fn = fn
        # Lax validation turns "2" into 2 the way LLM arguments usually need it.
        self._validated = validate_call(fn)

    @property
    def name(self) -> str:
        return self.definition.name

    def __call__(self, **kwargs: Any) -> Any:
        return self._validated(**kwargs)

    def __repr__(self) -> str:
        return f"LocalTool({self.name!r})"


def local_tool(
    name: str, description: str | None = None, params: Mapping[str, str] | None = None
) -> Callable[[Callable[..., Any]], LocalTool]:
    """
    Turn a function into a :class:`LocalTool`.

    The decorator does not register anything; the returned tools are handed to a
    :class:`ToolRegistry` explicitly:

        @local_tool("add_numbers", params={"a": "First number", "b": "Second number"})
        def add_numbers(a: int, b: int) -> int:
            '''Add two numbers.'''
            return a + b

        registry = ToolRegistry([add_numbers])

    Parameters
    ----------
    name: str
        Bare tool name (must not contain ':').
    description: str, optional
        Text shown to the LLM; defaults to the function docstring.
    params: Mapping[str, str], optional
        Per-parameter descriptions.
    """
    if ":" in name:
        raise ValueError(f"Local tool name '{name}' must not contain ':'.")

    def wrapper(fn: Callable[..., Any]) -> LocalTool:
        definition = ToolDefinition(
            name=name,
            description=description or inspect.getdoc(fn) or "",
            input_schema=build_input_schema(fn, params),
        )
        return LocalTool(definition, fn)

    return wrapper


class ToolRegistry:
    """In-process tools, keyed by bare name.  Performs no I/O."""

    def __init__(self, tools: Iterable[LocalTool] = ()):
        self._tools: Dict[str, LocalTool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: LocalTool) -> None:
        """Add *tool*; a second tool with the same name is a configuration error."""
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered.")
        logger.debug("Registering local tool '%s'", tool.name)
        self._tools[tool.name] = tool

    def find(self, name: str) -> Optional[LocalTool]:
        return self._tools.get(name)

    def exists(self, name: str) -> bool:
        return name in self._tools

    def list_definitions(self) -> List[ToolDefinition]:
        """Definitions of all registered tools, in registration order."""
        return [tool.definition for tool in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)

    def execute(self, name: str, arguments: Dict[str, Any] | None = None) -> ToolResult:
        """
        Look up *name* and invoke it with *arguments*.

        Returns
        -------
        ToolResult
            ``success=False`` if the tool is missing, the arguments do not fit its signature or
            the tool raised.  Nothing is raised to the caller.
        """
        if arguments is None:
            arguments = {}

        tool = self.find(name)
        if tool is None:
            return ToolResult.fail(f"Tool '{name}' is not registered.")

        try:
            logger.debug("Executing local tool '%s' with args=%s", name, arguments)
            return ToolResult.ok(tool(**arguments))
        except (ValidationError, TypeError) as exc:
            logger.warning("Argument error while executing tool '%s': %s", name, exc)
            return ToolResult.fail(f"Invalid arguments for tool '{name}': {exc}")
        except ToolExecutionError as exc:
            logger.warning("Tool '%s' failed: %s", name, exc)
            return ToolResult.fail(f"Tool '{name}' failed: {exc}")
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unhandled error in tool '%s'", name)
            return ToolResult.fail(f"Tool '{name}' raised an error: {exc}")
