"""Tests for the tool-calling orchestration loop."""

import json
import threading
import time

import pytest

from conftest import (
    FakeToolServer,
    ScriptedLLM,
)
from toolmux.agent.agent_loop import (
    EMPTY_ANSWER,
    AgentCancelledError,
    AgentLoop,
    append_sources,
    collect_sources,
)
from toolmux.agent.llm_client import (
    BaseLLMClient,
    LLMCallError,
)
from toolmux.agent.tool_executor import execute_tool_calls
from toolmux.core.schema import (
    ConversationMessage,
    Role,
    ToolCallRequest,
)
from toolmux.dispatch.facade import ToolDispatcher
from toolmux.tools import (
    ToolRegistry,
    local_tool,
)
from toolmux.tools.builtin import default_registry


def _tool_step(*calls, answer: str = "") -> str:
    return json.dumps(
        {
            "step": "tool",
            "tool_calls": [{"name": name, "arguments": args} for name, args in calls],
            "answer": answer,
        }
    )


def _final(answer: str) -> str:
    return json.dumps({"step": "final", "tool_calls": [], "answer": answer})


@pytest.fixture
def dispatcher() -> ToolDispatcher:
    return ToolDispatcher(local_registry=default_registry())


def test_direct_final_answer(dispatcher: ToolDispatcher) -> None:
    """A final step on the first turn ends the run without touching any tool."""
    llm = ScriptedLLM([_final("Hello!")])
    result = AgentLoop(dispatcher, llm, attach_sources=False).run_detailed(None, [], "Hi")

    assert result.answer == "Hello!"
    assert result.completed
    assert result.iterations == 1
    assert result.tool_calls == []
    assert len(llm.calls) == 1


def test_plain_text_reply_is_the_answer(dispatcher: ToolDispatcher) -> None:
    llm = ScriptedLLM(["Just a plain reply."])
    assert AgentLoop(dispatcher, llm).run(None, [], "Hi") == "Just a plain reply."


def test_empty_reply_gets_placeholder(dispatcher: ToolDispatcher) -> None:
    llm = ScriptedLLM(['{"step": "final", "answer": ""}'])
    assert AgentLoop(dispatcher, llm).run(None, [], "Hi") == EMPTY_ANSWER


def test_tool_then_final(dispatcher: ToolDispatcher) -> None:
    """Tool output is fed back to the LLM before it answers."""
    llm = ScriptedLLM([_tool_step(("add_numbers", {"a": 2, "b": 3})), _final("2 + 3 = 5")])
    result = AgentLoop(dispatcher, llm).run_detailed("Be terse.", [], "What is 2 + 3?")

    assert result.answer == "2 + 3 = 5"
    assert result.iterations == 2
    assert [(r.name, r.result.result) for r in result.tool_calls] == [("add_numbers", 5)]

    second_turn = llm.calls[1]
    assert [m.role for m in second_turn] == [Role.SYSTEM, Role.USER, Role.ASSISTANT, Role.TOOL]
    assert second_turn[0].content.startswith("Be terse.")
    assert "add_numbers" in second_turn[0].content
    assert json.loads(second_turn[2].content)["step"] == "tool"
    assert second_turn[3].content == "TOOL_RESULT add_numbers:\n5"


def test_history_sits_between_system_and_user(dispatcher: ToolDispatcher) -> None:
    llm = ScriptedLLM([_final("ok")])
    history = [ConversationMessage.user("earlier"), ConversationMessage.assistant("reply")]
    AgentLoop(dispatcher, llm).run(None, history, "now")

    assert [m.content for m in llm.calls[0][1:]] == ["earlier", "reply", "now"]


def test_tool_errors_are_shown_to_the_llm(dispatcher: ToolDispatcher) -> None:
    """A failing tool does not abort the run."""
    llm = ScriptedLLM([_tool_step(("jira:create_issue", {})), _final("Sorry, no Jira.")])
    result = AgentLoop(dispatcher, llm).run_detailed(None, [], "File a bug")

    assert result.completed
    assert not result.tool_calls[0].result.success
    assert llm.calls[1][-1].content.startswith("TOOL_RESULT jira:create_issue:\nERROR: ")


def test_iteration_bound(dispatcher: ToolDispatcher) -> None:
    """An LLM that never stops calling tools is cut off after max_iterations LLM calls."""
    llm = ScriptedLLM([_tool_step(("count_words", {"text": "a b"}))])
    result = AgentLoop(dispatcher, llm, max_iterations=3).run_detailed(None, [], "loop")

    assert not result.completed
    assert result.iterations == 3
    assert len(llm.calls) == 3
    assert len(result.tool_calls) == 3
    assert "3 steps" in result.answer


def test_iteration_bound_uses_partial_answer(dispatcher: ToolDispatcher) -> None:
    llm = ScriptedLLM([_tool_step(("count_words", {"text": "a"}), answer="Still counting")])
    result = AgentLoop(dispatcher, llm, max_iterations=2).run_detailed(None, [], "loop")

    assert not result.completed
    assert result.answer == "Still counting"


def test_invalid_iteration_bound(dispatcher: ToolDispatcher) -> None:
    with pytest.raises(ValueError):
        AgentLoop(dispatcher, ScriptedLLM(["x"]), max_iterations=-1)


def test_results_keep_call_order_in_parallel(dispatcher: ToolDispatcher) -> None:
    """Calls of one step run concurrently; their results are reported in request order."""
    barrier = threading.Barrier(2, timeout=5)

    @local_tool("slow")
    def slow() -> str:
        """Finish last."""
        barrier.wait()
        time.sleep(0.05)
        return "slow"

    @local_tool("fast")
    def fast() -> str:
        """Finish first."""
        barrier.wait()
        return "fast"

    parallel = ToolDispatcher(local_registry=ToolRegistry([slow, fast]))
    llm = ScriptedLLM([_tool_step(("slow", {}), ("fast", {})), _final("done")])
    result = AgentLoop(parallel, llm, max_parallel_tools=4).run_detailed(None, [], "go")

    assert [r.result.result for r in result.tool_calls] == ["slow", "fast"]
    assert [m.content for m in llm.calls[1][-2:]] == [
        "TOOL_RESULT slow:\nslow",
        "TOOL_RESULT fast:\nfast",
    ]


def test_execute_tool_calls_sequential(dispatcher: ToolDispatcher) -> None:
    calls = [
        ToolCallRequest(name="reverse_string", arguments={"text": "abc"}),
        ToolCallRequest(name="add_numbers", arguments={"a": 1, "b": 1}),
    ]
    results = execute_tool_calls(dispatcher, calls, max_workers=1)
    assert [r.result for r in results] == ["cba", 2]
    assert execute_tool_calls(dispatcher, [], max_workers=4) == []


def test_sources_footer(rag_server: FakeToolServer) -> None:
    """Documents returned by retrieval tools are listed under the answer."""
    dispatcher = ToolDispatcher([rag_server.connector("rag")])
    llm = ScriptedLLM(
        [_tool_step(("rag:search_documents", {"query": "leave"})), _final("You get 30 days.")]
    )
    result = AgentLoop(dispatcher, llm, attach_sources=True).run_detailed(None, [], "Leave?")

    assert result.sources == ["handbook.md", "faq.md"]
    assert result.answer == (
        "You get 30 days.\n\n---\n\n**Sources:**\n1. `handbook.md`\n2. `faq.md`"
    )


def test_collect_sources_skips_junk() -> None:
    sources = ["a.md"]
    collect_sources(
        [
            {"documentName": "a.md"},
            {"documentName": "null"},
            {"other": 1},
            "text",
            {"documentName": "b"},
        ],
        sources,
    )
    collect_sources({"documentName": "c"}, sources)
    assert sources == ["a.md", "b"]
    assert append_sources("x", []) == "x"


def test_cancel_before_first_call(dispatcher: ToolDispatcher) -> None:
    cancel = threading.Event()
    cancel.set()
    llm = ScriptedLLM([_final("never")])
    with pytest.raises(AgentCancelledError):
        AgentLoop(dispatcher, llm).run_detailed(None, [], "Hi", cancel_event=cancel)
    assert llm.calls == []


def test_llm_error_propagates(dispatcher: ToolDispatcher) -> None:
    class BrokenLLM(BaseLLMClient):
        def complete(self, messages, temperature):
            raise LLMCallError("provider down")

    with pytest.raises(LLMCallError):
        AgentLoop(dispatcher, BrokenLLM()).run(None, [], "Hi")


def test_temperature_is_passed_through(dispatcher: ToolDispatcher) -> None:
    llm = ScriptedLLM([_final("ok")])
    AgentLoop(dispatcher, llm).run(None, [], "Hi", temperature=0.1)
    assert llm.temperatures == [0.1]
