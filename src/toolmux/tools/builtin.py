"""Native tools that ship with toolmux and run in-process."""

import logging
from typing import List

from toolmux.tools import (
    LocalTool,
    ToolExecutionError,
    ToolRegistry,
    local_tool,
)

logger = logging.getLogger(__name__)

# fib(10_000) already has about 2_100 digits
MAX_FIBONACCI_N = 10_000


@local_tool(
    "add_numbers",
    description="Add two numbers and return the sum.",
    params={"a": "First number", "b": "Second number"},
)
def add_numbers(a: int, b: int) -> int:
    return a + b


@local_tool("reverse_string", params={"text": "The string to reverse"})
def reverse_string(text: str) -> str:
    """Reverse a string."""
    return text[::-1]


@local_tool(
    "calculate_fibonacci",
    params={"n": f"Position in the Fibonacci sequence (0 to {MAX_FIBONACCI_N})"},
)
def calculate_fibonacci(n: int) -> int:
    """Compute the n-th Fibonacci number."""
    if n < 0:
        raise ToolExecutionError("parameter 'n' must be non-negative")
    if n > MAX_FIBONACCI_N:
        raise ToolExecutionError(f"parameter 'n' must not exceed {MAX_FIBONACCI_N}")
    a, b = 0, 1
    for _ in range(n):
        a, b = b, a + b
    logger.debug("Fibonacci(%d) = %d", n, a)
    return a


@local_tool("count_words", params={"text": "Text whose words are counted"})
def count_words(text: str) -> int:
    """Count the whitespace-separated words in a text."""
    return len(text.split())


BUILTIN_TOOLS: List[LocalTool] = [
    add_numbers,
    reverse_string,
    calculate_fibonacci,
    count_words,
]


def default_registry() -> ToolRegistry:
    """A fresh registry holding every built-in tool."""
    return ToolRegistry(BUILTIN_TOOLS)
