"""
Best-effort repair of the almost-JSON that LLMs produce.

Every helper takes a string and returns a (possibly) modified string; none of them raise.  They
are heuristics: :func:`escape_inner_quotes` in particular can misfire on text that legitimately
quotes things, which is why callers only reach for it after the cheaper repairs failed.
"""

import json
import logging
import re
from typing import (
    Any,
    Callable,
    List,
    Tuple,
)

logger = logging.getLogger(__name__)

_WS = " \t\r\n"
_CLOSERS = {"{": "}", "[": "]"}
_FENCE_RE = re.compile(r"```(?:json|JSON)?[ \t]*\n?(.*?)```", re.DOTALL)
_OPEN_FENCE_RE = re.compile(r"^```(?:json|JSON)?[ \t]*\n?")

_CONTROL_ESCAPES = {
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\b": "\\b",
    "\f": "\\f",
}


def _is_control(ch: str) -> bool:
    code = ord(ch)
    return code < 0x20 or 0x7F <= code <= 0x9F


def _next_non_ws(s: str, i: int) -> str:
    """The first non-whitespace character at or after *i* ('' at end of input)."""
    while i < len(s) and s[i] in _WS:
        i += 1
    return s[i] if i < len(s) else ""


# ---------------------------------------------------------------------------
# Repairs
# ---------------------------------------------------------------------------
def strip_code_fences(text: str) -> str:
    """Return the body of a Markdown code block (```json ... ```), or *text* trimmed."""
    cleaned = text.strip()
    match = _FENCE_RE.search(cleaned)
    if match:
        return match.group(1).strip()
    # An opening fence the LLM never closed.
    return _OPEN_FENCE_RE.sub("", cleaned).strip()


def escape_control_chars(text: str) -> str:
    """Escape raw control characters that appear inside string literals."""
    out: List[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if escaped:
            out.append(ch)
            escaped = False
        elif ch == "\\":
            out.append(ch)
            escaped = in_string
        elif ch == '"':
            in_string = not in_string
            out.append(ch)
        elif in_string and _is_control(ch):
            out.append(_CONTROL_ESCAPES.get(ch, f"\\u{ord(ch):04x}"))
        else:
            out.append(ch)
    return "".join(out)


def strip_surrounding_text(text: str) -> str:
    """Drop anything before the first '{' and after the last '}'."""
    first = text.find("{")
    if first > 0:
        logger.debug("Removing %d chars before first '{'", first)
        text = text[first:]
    last = text.rfind("}")
    if last >= 0 and text[last + 1 :].strip():
        logger.debug("Removing text after last '}': %.50s", text[last + 1 :].strip())
        text = text[: last + 1]
    return text


def balance_brackets(text: str) -> str:
    """
    Close what was left open and drop closers nobody opened.

    Brackets inside string literals are ignored.  An unterminated string is closed first, then
    the open objects/arrays in nesting order.
    """
    stack: List[str] = []
    excess: List[int] = []
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in "}]":
            if stack and stack[-1] == ch:
                stack.pop()
            else:
                excess.append(i)

    if excess:
        logger.debug("Dropping %d unmatched closing bracket(s)", len(excess))
        drop = set(excess)
        text = "".join(ch for i, ch in enumerate(text) if i not in drop)
    if in_string:
        text += '"'
    if stack:
        logger.debug("Adding %d closing bracket(s) to balance JSON", len(stack))
        text += "".join(reversed(stack))
    return text


def escape_inner_quotes(text: str) -> str:
    """
    Escape '"' characters that sit in the middle of a string value.

    A quote inside a value is taken as the real end of the string only when the next
    non-whitespace character is ',', '}', ']' or the end of input; otherwise it is escaped.
    Object keys are left alone.
    """
    out: List[str] = []
    containers: List[str] = []  # '{' or '['
    expecting_key = False
    in_string = False
    in_key = False
    escaped = False

    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                if in_key or _next_non_ws(text, i + 1) in (",", "}", "]", ""):
                    in_string = False
                else:
                    logger.debug("Escaping unescaped quote at position %d", i)
                    out.append("\\")
            out.append(ch)
            continue

        if ch == '"':
            in_string = True
            in_key = bool(containers) and containers[-1] == "{" and expecting_key
        elif ch in "{[":
            containers.append(ch)
            expecting_key = ch == "{"
        elif ch in "}]":
            if containers:
                containers.pop()
            expecting_key = False
        elif ch == ":":
            expecting_key = False
        elif ch == ",":
            expecting_key = bool(containers) and containers[-1] == "{"
        out.append(ch)
    return "".join(out)


# Order matters: each repair is applied on top of the previous ones.
REPAIRS: Tuple[Tuple[str, Callable[[str], str]], ...] = (
    ("control_chars", escape_control_chars),
    ("surrounding_text", strip_surrounding_text),
    ("bracket_balance", balance_brackets),
    ("inner_quotes", escape_inner_quotes),
)


def _decode(text: str) -> Any:
    """``json.loads`` that reports nesting too deep for the decoder as a decode error."""
    try:
        return json.loads(text)
    except RecursionError as exc:
        raise json.JSONDecodeError("nesting too deep", text, 0) from exc


def loads_with_repair(text: str) -> Any:
    """
    Decode *text* as JSON, applying :data:`REPAIRS` one after the other until it decodes.

    Raises
    ------
    json.JSONDecodeError
        If the text is still not valid JSON after every repair.
    """
    try:
        return _decode(text)
    except json.JSONDecodeError as exc:
        logger.debug("Initial JSON decode failed: %s", exc)
        error = exc

    candidate = text
    for name, repair in REPAIRS:
        repaired = repair(candidate)
        if repaired == candidate:
            continue
        candidate = repaired
        try:
            value = _decode(candidate)
        except json.JSONDecodeError as exc:
            logger.debug("JSON still invalid after '%s' repair: %s", name, exc)
            error = exc
            continue
        logger.info("Parsed JSON after '%s' repair", name)
        return value
    raise error
