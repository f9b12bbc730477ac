"""
Tool dispatch facade.

One flat namespace over every tool the agent may call:

- remote tools as ``<server>:<tool>``, one :class:`RemoteToolConnector` per server;
- local tools by bare name (or ``local:<tool>``), backed by a :class:`ToolRegistry`.
"""

import logging
from typing import (
    Any,
    Dict,
    Iterable,
    List,
    Set,
)

from toolmux.config import Settings
from toolmux.core.schema import (
    ToolDefinition,
    ToolResult,
)
from toolmux.dispatch.connector import (
    SEPARATOR,
    RemoteToolConnector,
)
from toolmux.tools import ToolRegistry

logger = logging.getLogger(__name__)

LOCAL_SERVER = "local"


class ToolDispatcher:
    """Routes qualified tool calls to the owning connector or to the local registry."""

    def __init__(
        self,
        connectors: Iterable[RemoteToolConnector] = (),
        local_registry: ToolRegistry | None = None,
    ):
        self._local = local_registry if local_registry is not None else ToolRegistry()
        self._connectors: Dict[str, RemoteToolConnector] = {}
        for connector in connectors:
            self.add_connector(connector)

    def add_connector(self, connector: RemoteToolConnector) -> None:
        """Register a remote server; meant for startup only."""
        name = connector.server_name
        if name == LOCAL_SERVER or name in self._connectors:
            raise ValueError(f"Tool server '{name}' is already registered.")
        logger.info("Registering tool server: %s (%s)", name, connector.base_url)
        self._connectors[name] = connector

    @property
    def local_registry(self) -> ToolRegistry:
        return self._local

    def registered_servers(self) -> Set[str]:
        """Remote server keys plus the implicit local bucket."""
        return {LOCAL_SERVER, *self._connectors}

    def all_definitions(self) -> List[ToolDefinition]:
        """Local tools first, then every remote catalogue in server registration order."""
        definitions = self._local.list_definitions()
        for connector in self._connectors.values():
            definitions.extend(connector.list_definitions())
        return definitions

    def route(self, qualified_name: str, arguments: Dict[str, Any] | None = None) -> ToolResult:
        """
        Execute the tool named *qualified_name*.

        ``server:tool`` is split on the first ':'; a bare name addresses the local registry.
        Unknown servers and malformed names come back as ``success=False`` so the loop can show
        the error to the LLM.
        """
        logger.info("Routing tool call: %s with args=%s", qualified_name, arguments)
        arguments = arguments or {}

        if SEPARATOR not in qualified_name:
            return self._local.execute(qualified_name, arguments)

        server, tool = qualified_name.split(SEPARATOR, 1)
        if not server or not tool:
            return ToolResult.fail(
                f"Invalid tool name '{qualified_name}'. Expected 'server:tool'."
            )
        if server == LOCAL_SERVER:
            return self._local.execute(tool, arguments)

        connector = self._connectors.get(server)
        if connector is None:
            logger.warning("Unknown tool server '%s' in call '%s'", server, qualified_name)
            known = ", ".join(sorted(self.registered_servers()))
            return ToolResult.fail(f"Unknown tool server '{server}'. Known servers: {known}")
        return connector.execute(tool, arguments)

    def refresh(self, server: str | None = None) -> None:
        """Invalidate the cached catalogue of *server*, or of every server."""
        if server is None:
            for connector in self._connectors.values():
                connector.refresh()
            return
        connector = self._connectors.get(server)
        if connector is None:
            raise KeyError(server)
        connector.refresh()

    def close(self) -> None:
        for connector in self._connectors.values():
            connector.close()


def build_dispatcher(config: Settings) -> ToolDispatcher:
    """Create the dispatcher described by *config* (local tools + ``MCP_SERVERS``)."""
    # Imported here so that the registry module stays free of the demo tools.
    from toolmux.tools.builtin import default_registry  # pylint: disable=import-outside-toplevel

    registry = default_registry() if config.ENABLE_LOCAL_TOOLS else ToolRegistry()
    connectors = [
        RemoteToolConnector(name, url, timeout=config.TOOL_TIMEOUT)
        for name, url in config.MCP_SERVERS.items()
    ]
    return ToolDispatcher(connectors, registry)
