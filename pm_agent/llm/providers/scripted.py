"""Deterministic provider that replays a fixed sequence of turns."""

from __future__ import annotations

from typing import Any, Iterable

from pm_agent.llm.providers.base import LLMProvider, LLMResponse, TextBlock


class ScriptedProvider(LLMProvider):
    """Returns queued responses in order and records every request it receives."""

    name = "scripted"

    def __init__(self, responses: Iterable[LLMResponse | Exception] = ()) -> None:
        self.responses: list[LLMResponse | Exception] = list(responses)
        self.requests: list[dict[str, Any]] = []

    def queue(self, response: LLMResponse | Exception) -> None:
        self.responses.append(response)

    def create_message(
        self,
        *,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        timeout_s: float | None = None,
    ) -> LLMResponse:
        self.requests.append(
            {
                "system": system,
                "messages": [dict(message) for message in messages],
                "tools": [tool["name"] for tool in tools],
                "timeout_s": timeout_s,
            }
        )
        if not self.responses:
            return LLMResponse(
                content=[TextBlock(text="")], stop_reason="end_turn", model="scripted"
            )
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item
