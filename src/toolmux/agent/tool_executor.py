"""Runs the tool calls of one step through the dispatcher, concurrently, keeping their order."""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import (
    List,
    Sequence,
)

from toolmux.core.schema import (
    ToolCallRequest,
    ToolResult,
)
from toolmux.dispatch.facade import ToolDispatcher

logger = logging.getLogger(__name__)


def _route_one(dispatcher: ToolDispatcher, call: ToolCallRequest) -> ToolResult:
    try:
        return dispatcher.route(call.name, call.arguments)
    except Exception as exc:  # noqa: BLE001
        # route() is total; this only guards against a misbehaving custom connector.
        logger.exception("Dispatcher raised while executing '%s'", call.name)
        return ToolResult.fail(f"Tool '{call.name}' raised an error: {exc}")


def execute_tool_calls(
    dispatcher: ToolDispatcher, calls: Sequence[ToolCallRequest], max_workers: int = 4
) -> List[ToolResult]:
    """
    Execute *calls* and return their results.

    Parameters
    ----------
    dispatcher:
        Facade that owns every tool.
    calls:
        The calls of a single tool step; they are independent of each other.
    max_workers:
        Upper bound on calls running at the same time.  ``1`` runs them sequentially.

    Returns
    -------
    List[ToolResult]
        ``results[i]`` belongs to ``calls[i]``, whatever order the calls finished in.
    """
    if not calls:
        return []
    if max_workers <= 1 or len(calls) == 1:
        return [_route_one(dispatcher, call) for call in calls]

    workers = min(max_workers, len(calls))
    logger.debug("Executing %d tool calls with %d workers", len(calls), workers)
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="toolmux-tool") as pool:
        return list(pool.map(lambda call: _route_one(dispatcher, call), calls))
