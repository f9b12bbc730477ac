"""Shared fixtures: a scripted LLM and in-memory remote tool servers."""

import json
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Sequence,
)

import httpx
import pytest

from toolmux.agent.llm_client import BaseLLMClient
from toolmux.core.schema import ConversationMessage
from toolmux.dispatch.connector import RemoteToolConnector


class ScriptedLLM(BaseLLMClient):
    """Returns the given completions in order; repeats the last one when it runs out."""

    def __init__(self, replies: Sequence[str]):
        self.replies = list(replies)
        self.calls: List[List[ConversationMessage]] = []
        self.temperatures: List[float] = []

    def complete(self, messages: Sequence[ConversationMessage], temperature: float) -> str:
        self.calls.append(list(messages))
        self.temperatures.append(temperature)
        index = min(len(self.calls) - 1, len(self.replies) - 1)
        return self.replies[index]


class FakeToolServer:
    """Minimal remote tool server behind an ``httpx.MockTransport``."""

    def __init__(
        self,
        tools: List[Dict[str, Any]],
        handlers: Dict[str, Callable[[Dict[str, Any]], Any]] | None = None,
    ):
        self.tools = tools
        self.handlers = handlers or {}
        self.catalogue_requests = 0
        self.executed: List[Dict[str, Any]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET" and request.url.path == "/tools":
            self.catalogue_requests += 1
            return httpx.Response(200, json=self.tools)
        if request.method == "POST" and request.url.path == "/tools/execute":
            body = json.loads(request.content)
            self.executed.append(body)
            handler = self.handlers.get(body["toolName"])
            if handler is None:
                return httpx.Response(
                    200, json={"success": False, "error": f"unknown tool {body['toolName']}"}
                )
            return httpx.Response(200, json={"success": True, "result": handler(body["arguments"])})
        return httpx.Response(404, json={"detail": "not found"})

    def connector(self, name: str) -> RemoteToolConnector:
        base_url = f"http://{name}.test"
        client = httpx.Client(transport=httpx.MockTransport(self), base_url=base_url)
        return RemoteToolConnector(name, base_url, client=client)


def unreachable_connector(name: str) -> RemoteToolConnector:
    """A connector whose server refuses every connection."""

    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    base_url = f"http://{name}.test"
    client = httpx.Client(transport=httpx.MockTransport(refuse), base_url=base_url)
    return RemoteToolConnector(name, base_url, client=client)


@pytest.fixture
def rag_server() -> FakeToolServer:
    """A document-retrieval server exposing ``search_documents``."""
    return FakeToolServer(
        tools=[
            {
                "name": "search_documents",
                "description": "Semantic search over the knowledge base",
                "inputSchema": {
                    "type": "object",
                    "properties": {"query": {"type": "string", "description": "Search text"}},
                    "required": ["query"],
                },
            }
        ],
        handlers={
            "search_documents": lambda args: [
                {"documentName": "handbook.md", "content": f"about {args.get('query')}"},
                {"documentName": "faq.md", "content": "more"},
            ]
        },
    )
