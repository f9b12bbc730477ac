"""Tests for the remote tool connector."""

import httpx
import pytest

from conftest import (
    FakeToolServer,
    unreachable_connector,
)
from toolmux.dispatch.connector import (
    RemoteToolConnector,
    qualify,
)


def _connector_for(handler, name: str = "srv") -> RemoteToolConnector:
    client = httpx.Client(transport=httpx.MockTransport(handler), base_url="http://srv.test")
    return RemoteToolConnector(name, "http://srv.test", client=client)


def test_qualify_replaces_foreign_prefix() -> None:
    """Whatever prefix the server used is replaced by ours."""

    assert qualify("rag", "search_documents") == "rag:search_documents"
    assert qualify("rag", "docs:search_documents") == "rag:search_documents"
    assert qualify("rag", "a:b:search_documents") == "rag:search_documents"


def test_list_definitions_prefixes_and_caches(rag_server: FakeToolServer) -> None:
    """The catalogue is fetched once and namespaced with the server name."""

    connector = rag_server.connector("rag")
    first = connector.list_definitions()
    second = connector.list_definitions()

    assert [d.name for d in first] == ["rag:search_documents"]
    assert first == second
    assert rag_server.catalogue_requests == 1
    assert first[0].input_schema.required == ["query"]
    assert first[0].input_schema.properties["query"].type == "string"


def test_refresh_fetches_again(rag_server: FakeToolServer) -> None:
    """refresh() is the only way to drop the cache."""

    connector = rag_server.connector("rag")
    connector.list_definitions()
    connector.refresh()
    connector.list_definitions()
    assert rag_server.catalogue_requests == 2


def test_unreachable_server_yields_empty_catalogue() -> None:
    """A dead server means fewer tools, not an exception."""

    assert unreachable_connector("git").list_definitions() == []


def test_failed_fetch_is_not_cached() -> None:
    """After an outage the catalogue is fetched again on the next call."""

    state = {"up": False}

    def handler(request: httpx.Request) -> httpx.Response:
        if not state["up"]:
            return httpx.Response(503)
        return httpx.Response(200, json=[{"name": "ping", "description": "", "inputSchema": {}}])

    connector = _connector_for(handler)
    assert connector.list_definitions() == []
    state["up"] = True
    assert [d.name for d in connector.list_definitions()] == ["srv:ping"]


def test_malformed_catalogue_entries_are_skipped() -> None:
    """Entries without a name are dropped; the rest is kept."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{"description": "no name"}, {"name": "ok"}])

    assert [d.name for d in _connector_for(handler).list_definitions()] == ["srv:ok"]


def test_execute_success(rag_server: FakeToolServer) -> None:
    """The bare tool name and the arguments are posted to the execute endpoint."""

    result = rag_server.connector("rag").execute("search_documents", {"query": "x"})

    assert result.success
    assert result.result[0]["documentName"] == "handbook.md"
    assert rag_server.executed == [{"toolName": "search_documents", "arguments": {"query": "x"}}]


def test_execute_remote_failure(rag_server: FakeToolServer) -> None:
    """A failure reported by the server is passed through."""

    result = rag_server.connector("rag").execute("nope", {})
    assert not result.success
    assert "unknown tool nope" in result.error


def test_execute_http_error_status() -> None:
    """Non-2xx answers become failed results carrying the status."""

    result = _connector_for(lambda request: httpx.Response(500, text="kaputt")).execute("t", {})
    assert not result.success
    assert "HTTP 500" in result.error


def test_execute_transport_error() -> None:
    """Connection errors become failed results."""

    result = unreachable_connector("git").execute("git_status", {})
    assert not result.success
    assert "unreachable" in result.error


def test_execute_timeout() -> None:
    """A deadline hit at the transport layer is a failed result, not a crash."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    result = _connector_for(handler).execute("slow", {})
    assert not result.success
    assert "timed out" in result.error


def test_execute_unexpected_body() -> None:
    """Bodies that are not {success, ...} objects are rejected."""

    result = _connector_for(lambda request: httpx.Response(200, json=[1, 2])).execute("t", {})
    assert not result.success
    result = _connector_for(lambda request: httpx.Response(200, text="<html>")).execute("t", {})
    assert not result.success


def test_failure_without_error_message() -> None:
    """success=false without an error still produces an error text."""

    result = _connector_for(lambda request: httpx.Response(200, json={"success": False})).execute(
        "t", {}
    )
    assert not result.success
    assert result.error


@pytest.mark.parametrize("name", ["", "a:b"])
def test_invalid_server_names(name: str) -> None:
    """Server keys must be non-empty and colon-free."""

    with pytest.raises(ValueError):
        RemoteToolConnector(name, "http://x.test")


def test_colliding_names_keep_the_first_tool() -> None:
    """'search' and 'docs:search' both qualify to 'srv:search'; only the first is published."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json=[
                {"name": "search", "description": "first"},
                {"name": "docs:search", "description": "second"},
                {"name": "docs:fetch"},
            ],
        )

    definitions = _connector_for(handler).list_definitions()
    assert [(d.name, d.description) for d in definitions] == [
        ("srv:search", "first"),
        ("srv:fetch", ""),
    ]


def test_union_typed_properties_are_accepted() -> None:
    """JSON Schema type lists such as ["string", "null"] do not drop the tool."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json=[
                {
                    "name": "lookup",
                    "inputSchema": {
                        "type": "object",
                        "properties": {
                            "query": {"type": "string"},
                            "limit": {"type": ["integer", "null"], "default": None},
                        },
                        "required": ["query"],
                    },
                }
            ],
        )

    definitions = _connector_for(handler).list_definitions()
    assert [d.name for d in definitions] == ["srv:lookup"]
    assert definitions[0].input_schema.properties["limit"].type == ["integer", "null"]
    assert definitions[0].input_schema.properties["query"].type == "string"
