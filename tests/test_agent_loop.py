from __future__ import annotations

import json

import pytest

from pm_agent.agent.loop import AgentLoop
from pm_agent.approval.queue import ApprovalQueue
from pm_agent.db.db import AgentDB
from pm_agent.events import EventBus
from pm_agent.integrations.github_connector_inmemory import InMemoryGitHubConnector
from pm_agent.llm.providers import LLMResponse, ScriptedProvider, TextBlock, ToolUseBlock
from pm_agent.orchestration.task_store import TaskStore
from pm_agent.store.cache import InMemoryKeyValueStore, WriteBehindQueue
from pm_agent.tools.github_tools import GitHubTools
from pm_agent.tools.registry import ToolRegistry


def _tool_turn(*calls: tuple[str, str, dict], text: str = "") -> LLMResponse:
    blocks: list = [TextBlock(text=text)] if text else []
    blocks.extend(ToolUseBlock(id=call_id, name=name, input=args) for call_id, name, args in calls)
    return LLMResponse(content=blocks, stop_reason="tool_use")


def _final(text: str, stop_reason: str = "end_turn") -> LLMResponse:
    return LLMResponse(content=[TextBlock(text=text)], stop_reason=stop_reason)


def _loop(responses: list) -> tuple[AgentLoop, ScriptedProvider, EventBus, ApprovalQueue]:
    db = AgentDB()
    events = EventBus()
    connector = InMemoryGitHubConnector()
    connector.seed_repo(
        "acme/api",
        runs=[{"status": "completed", "conclusion": "failure", "databaseId": 1}],
    )
    approvals = ApprovalQueue(
        db, connector, events, TaskStore(db, InMemoryKeyValueStore(), WriteBehindQueue())
    )
    registry = ToolRegistry(GitHubTools(connector, approvals).specs())
    provider = ScriptedProvider(responses)
    return AgentLoop(provider, registry, events), provider, events, approvals


def test_tool_results_are_fed_back_before_next_turn() -> None:
    loop, provider, events, _ = _loop(
        [
            _tool_turn(("tu-1", "repo_status", {"repo": "acme/api"}), text="Checking. "),
            _final("CI is failing."),
        ]
    )

    result = loop.run("How is acme/api?")

    assert result.turns == 2
    assert result.tool_calls == 1
    assert result.stop_reason == "end_turn"
    assert result.response == "Checking. CI is failing."
    second_request = provider.requests[1]["messages"]
    assert [message["role"] for message in second_request] == ["user", "assistant", "user"]
    tool_result = second_request[2]["content"][0]
    assert tool_result["type"] == "tool_result"
    assert tool_result["tool_use_id"] == "tu-1"
    payload = json.loads(tool_result["content"])
    assert payload["success"] is True
    assert payload["data"]["ciStatus"] == "failing"
    assert [event.data["text"] for event in events.events_of("agent_log")] == [
        "Checking. ",
        "CI is failing.",
    ]


def test_multiple_tool_uses_in_one_turn_share_one_result_message() -> None:
    loop, provider, _, _ = _loop(
        [
            _tool_turn(
                ("a", "list_issues", {"repo": "acme/api"}),
                ("b", "run_status", {"repo": "acme/api"}),
            ),
            _final("done"),
        ]
    )

    result = loop.run("scan")

    assert result.tool_calls == 2
    results_message = provider.requests[1]["messages"][2]
    assert [item["tool_use_id"] for item in results_message["content"]] == ["a", "b"]


def test_unknown_tool_is_reported_back_and_loop_continues() -> None:
    loop, _, _, _ = _loop([_tool_turn(("x", "delete_repo", {})), _final("ok")])

    result = loop.run("go")

    assert result.turns == 2
    assert result.exchanges[0].result.success is False
    assert result.exchanges[0].result.error == "unknown_tool:delete_repo"


def test_approval_gated_tool_broadcasts_pending_action() -> None:
    loop, _, events, approvals = _loop(
        [
            _tool_turn(
                (
                    "c",
                    "create_issue",
                    {"repo": "acme/api", "title": "CI red", "body": "Investigate"},
                )
            ),
            _final("Queued an issue for approval."),
        ]
    )

    result = loop.run("file an issue")

    pending = approvals.list_pending()
    assert len(pending) == 1
    exchange = result.exchanges[0]
    assert exchange.result.requires_approval is True
    assert exchange.result.pending_action_id == pending[0].id
    announced = {event.data["actionId"] for event in events.events_of("action_pending")}
    assert announced == {pending[0].id}


def test_non_tool_stop_reason_ends_the_loop() -> None:
    loop, provider, _, _ = _loop([_final("truncated", stop_reason="max_tokens"), _final("never")])

    result = loop.run("long answer")

    assert result.turns == 1
    assert result.stop_reason == "max_tokens"
    assert len(provider.responses) == 1


def test_loop_has_no_turn_cap() -> None:
    turns = [_tool_turn((f"t{i}", "run_status", {"repo": "acme/api"})) for i in range(30)]
    loop, _, _, _ = _loop([*turns, _final("finally")])

    result = loop.run("keep going")

    assert result.turns == 31
    assert result.tool_calls == 30


def test_tool_filter_and_timeout_reach_the_provider() -> None:
    loop, provider, _, _ = _loop([_final("hi")])

    loop.run("hello", tools=["repo_status"], timeout_s=12.5, system="be brief")

    request = provider.requests[0]
    assert request["tools"] == ["repo_status"]
    assert request["timeout_s"] == 12.5
    assert request["system"] == "be brief"


def test_provider_failure_propagates() -> None:
    loop, _, _, _ = _loop([RuntimeError("model unavailable")])
    with pytest.raises(RuntimeError, match="model unavailable"):
        loop.run("hello")
