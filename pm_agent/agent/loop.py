"""Multi-turn tool-calling conversation with the model."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from pm_agent.events import EventBus
from pm_agent.llm.providers.base import LLMProvider, block_to_dict
from pm_agent.models.tool_contracts import ToolCall, ToolResult
from pm_agent.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an autonomous project manager overseeing software projects.

Your responsibilities:
1. Monitor project health (CI/CD, issues, PRs, security)
2. Generate actionable tasks for project development
3. Track progress from idea to launch
4. Identify bottlenecks and risks
5. Propose improvements and optimizations

Available tools:
- repo_status: Get repository status (issues, PRs, CI, health score)
- list_issues: List issues with filters
- list_prs: List pull requests
- run_status: Check CI/CD workflow runs
- create_issue: Propose creating an issue (requires approval)
- comment_issue: Propose adding a comment (requires approval)

Guidelines:
- Be proactive in identifying problems
- Prioritize tasks by impact and urgency
- Provide clear reasoning for each task
- Actions that modify data require user approval
- Generate structured reports

Current projects and their status will be provided in the user message."""


@dataclass
class ToolExchange:
    call: ToolCall
    result: ToolResult


@dataclass
class AgentLoopResult:
    response: str
    stop_reason: str
    turns: int = 0
    exchanges: list[ToolExchange] = field(default_factory=list)
    messages: list[dict[str, Any]] = field(default_factory=list)

    @property
    def tool_calls(self) -> int:
        return len(self.exchanges)


class AgentLoop:
    """Runs model turns until the model ends without requesting a tool.

    Tool results are appended to the conversation before the next model call.
    There is no iteration cap; each model call is bounded only by ``timeout_s``.
    """

    def __init__(
        self,
        provider: LLMProvider,
        registry: ToolRegistry,
        events: EventBus,
        system_prompt: str = SYSTEM_PROMPT,
    ) -> None:
        self.provider = provider
        self.registry = registry
        self.events = events
        self.system_prompt = system_prompt

    def _tool_definitions(self, tools: list[str] | None) -> list[dict[str, Any]]:
        definitions = self.registry.definitions()
        if tools is None:
            return definitions
        allowed = set(tools)
        return [definition for definition in definitions if definition["name"] in allowed]

    def run(
        self,
        prompt: str,
        *,
        system: str | None = None,
        tools: list[str] | None = None,
        timeout_s: float | None = None,
    ) -> AgentLoopResult:
        messages: list[dict[str, Any]] = [{"role": "user", "content": prompt}]
        definitions = self._tool_definitions(tools)
        result = AgentLoopResult(response="", stop_reason="", messages=messages)
        response_parts: list[str] = []

        while True:
            response = self.provider.create_message(
                system=system or self.system_prompt,
                messages=messages,
                tools=definitions,
                timeout_s=timeout_s,
            )
            result.turns += 1
            result.stop_reason = response.stop_reason
            messages.append(
                {"role": "assistant", "content": [block_to_dict(b) for b in response.content]}
            )

            for block in response.content:
                if block.type == "text" and block.text:
                    response_parts.append(block.text)
                    self.events.broadcast("agent_log", {"text": block.text})

            tool_results: list[dict[str, Any]] = []
            for block in response.tool_uses:
                call = ToolCall(id=block.id, name=block.name, input=block.input)
                tool_result = self.registry.dispatch(call)
                result.exchanges.append(ToolExchange(call=call, result=tool_result))
                logger.debug("Tool %s -> success=%s", call.name, tool_result.success)
                tool_results.append(
                    {
                        "type": "tool_result",
                        "tool_use_id": block.id,
                        "content": json.dumps(tool_result.to_wire(), default=str),
                    }
                )
                if tool_result.requires_approval and tool_result.pending_action_id:
                    self.events.broadcast(
                        "action_pending", {"actionId": tool_result.pending_action_id}
                    )
            if tool_results:
                messages.append({"role": "user", "content": tool_results})

            # end_turn, max_tokens, and anything unrecognized all end the run
            if response.stop_reason != "tool_use":
                break

        result.response = "".join(response_parts)
        logger.info(
            "Agent loop finished after %d turn(s), %d tool call(s), stop=%s",
            result.turns,
            result.tool_calls,
            result.stop_reason,
        )
        return result
