"""
Connector to one remote tool server.

A remote tool server speaks a tiny HTTP protocol:

- ``GET  /tools``          -> ``[{"name", "description", "inputSchema"}, ...]``
- ``POST /tools/execute``  with ``{"toolName", "arguments"}`` -> ``{"success", "result" | "error"}``

The connector caches the server's catalogue the first time it is fetched successfully and
re-publishes every tool under its own namespace, ``<server>:<tool>``.
"""

import logging
from typing import (
    Any,
    Dict,
    List,
    Optional,
)

import httpx
from pydantic import ValidationError

from toolmux.core.schema import (
    ToolDefinition,
    ToolResult,
)

logger = logging.getLogger(__name__)

SEPARATOR = ":"
TOOLS_PATH = "/tools"
EXECUTE_PATH = "/tools/execute"


def qualify(server_name: str, tool_name: str) -> str:
    """Drop any foreign prefix from *tool_name* and prefix it with *server_name*."""
    bare = tool_name.rsplit(SEPARATOR, 1)[-1]
    return f"{server_name}{SEPARATOR}{bare}"


class RemoteToolConnector:
    """Talks to one remote tool server; safe for concurrent use."""

    def __init__(
        self,
        server_name: str,
        base_url: str,
        *,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ):
        if not server_name or SEPARATOR in server_name:
            raise ValueError(f"Invalid server name {server_name!r}: must be non-empty without ':'")
        self.server_name = server_name
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(base_url=self.base_url, timeout=timeout)
        # Written once per successful fetch; ``refresh()`` is the only thing that clears it.
        self._catalogue: Optional[List[ToolDefinition]] = None

    def __repr__(self) -> str:
        return f"RemoteToolConnector({self.server_name!r}, {self.base_url!r})"

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    def execute(self, tool_name: str, arguments: Dict[str, Any] | None = None) -> ToolResult:
        """Run *tool_name* (bare name) on the remote server; never raises."""
        payload = {"toolName": tool_name, "arguments": arguments or {}}
        logger.info(
            "Executing tool %s:%s with args=%s", self.server_name, tool_name, payload["arguments"]
        )

        try:
            resp = self._client.post(EXECUTE_PATH, json=payload)
            resp.raise_for_status()
            data = resp.json()
        except httpx.TimeoutException as exc:
            logger.warning("Timeout executing %s:%s: %s", self.server_name, tool_name, exc)
            return ToolResult.fail(f"Tool server '{self.server_name}' timed out: {exc}")
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Tool server '%s' answered %d for '%s'",
                self.server_name,
                exc.response.status_code,
                tool_name,
            )
            return ToolResult.fail(
                f"Tool server '{self.server_name}' returned HTTP {exc.response.status_code}"
                f" for '{tool_name}': {exc.response.text[:500]}"
            )
        except httpx.HTTPError as exc:
            logger.warning("Transport error executing %s:%s: %s", self.server_name, tool_name, exc)
            return ToolResult.fail(f"Tool server '{self.server_name}' is unreachable: {exc}")
        except ValueError as exc:  # body is not JSON
            logger.warning("Invalid JSON from '%s' for '%s': %s", self.server_name, tool_name, exc)
            return ToolResult.fail(
                f"Tool server '{self.server_name}' sent an invalid response: {exc}"
            )

        return self._to_result(tool_name, data)

    def _to_result(self, tool_name: str, data: Any) -> ToolResult:
        if not isinstance(data, dict) or "success" not in data:
            return ToolResult.fail(
                f"Tool server '{self.server_name}' sent an unexpected response for '{tool_name}'"
            )
        if data["success"]:
            return ToolResult.ok(data.get("result"))
        error = data.get("error") or f"Tool '{tool_name}' failed without an error message"
        logger.warning("Tool %s:%s reported failure: %s", self.server_name, tool_name, error)
        return ToolResult.fail(str(error))

    # ------------------------------------------------------------------
    # Catalogue
    # ------------------------------------------------------------------
    def list_definitions(self) -> List[ToolDefinition]:
        """
        The server's tools, namespaced with this connector's server name.

        Fetched once and cached; an unreachable server yields an empty list (and is asked again
        next time) instead of an error.
        """
        catalogue = self._catalogue
        if catalogue is not None:
            return list(catalogue)

        try:
            resp = self._client.get(TOOLS_PATH)
            resp.raise_for_status()
            remote_tools = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "Failed to fetch tool definitions from server '%s': %s"
                " - server may be temporarily unavailable",
                self.server_name,
                exc,
            )
            return []

        if not isinstance(remote_tools, list):
            logger.warning("Server '%s' sent a non-list tool catalogue", self.server_name)
            return []

        catalogue = []
        seen = set()
        for raw in remote_tools:
            try:
                definition = ToolDefinition.model_validate(raw)
            except ValidationError as exc:
                logger.warning("Skipping malformed tool from '%s': %s", self.server_name, exc)
                continue
            name = qualify(self.server_name, definition.name)
            # 'search' and 'docs:search' both qualify to '<server>:search'; the first one wins.
            if name in seen:
                logger.warning(
                    "Skipping tool '%s' from '%s': name collides with '%s'",
                    definition.name,
                    self.server_name,
                    name,
                )
                continue
            seen.add(name)
            catalogue.append(definition.with_name(name))

        self._catalogue = catalogue
        logger.info("Loaded %d tools from %s", len(catalogue), self.server_name)
        return list(catalogue)

    def refresh(self) -> None:
        """Forget the cached catalogue; the next :meth:`list_definitions` fetches again."""
        logger.info("Invalidating tool catalogue of '%s'", self.server_name)
        self._catalogue = None

    def close(self) -> None:
        self._client.close()
