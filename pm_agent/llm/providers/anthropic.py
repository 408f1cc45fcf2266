"""Anthropic Messages API provider with bounded retry and exponential backoff."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

import anthropic

from pm_agent.llm.providers.base import (
    ContentBlock,
    LLMProvider,
    LLMResponse,
    TextBlock,
    ToolUseBlock,
)

logger = logging.getLogger(__name__)

RetryHook = Callable[[int, Exception, float], None]

RETRYABLE_ERRORS: tuple[type[Exception], ...] = (
    anthropic.APIConnectionError,
    anthropic.RateLimitError,
    anthropic.InternalServerError,
)


class AnthropicProvider(LLMProvider):
    name = "anthropic"

    def __init__(
        self,
        model: str,
        max_tokens: int = 4096,
        client: Any | None = None,
        max_retries: int = 3,
        initial_delay_s: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        on_retry: RetryHook | None = None,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self._client = client
        self.max_retries = max(0, max_retries)
        self.initial_delay_s = initial_delay_s
        self._sleep = sleep
        self.on_retry = on_retry

    @property
    def client(self) -> Any:
        if self._client is None:
            # retries are handled here so every attempt is observable
            self._client = anthropic.Anthropic(max_retries=0)
        return self._client

    def create_message(
        self,
        *,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        timeout_s: float | None = None,
    ) -> LLMResponse:
        delay = self.initial_delay_s
        attempt = 0
        while True:
            try:
                return self._call(system, messages, tools, timeout_s)
            except RETRYABLE_ERRORS as exc:
                if attempt >= self.max_retries:
                    logger.error("Model call failed after %d retries: %s", attempt, exc)
                    raise
                attempt += 1
                logger.warning(
                    "Model call failed (attempt %d/%d), retrying in %.1fs: %s",
                    attempt,
                    self.max_retries,
                    delay,
                    exc,
                )
                if self.on_retry is not None:
                    self.on_retry(attempt, exc, delay)
                self._sleep(delay)
                delay *= 2

    def _call(
        self,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        timeout_s: float | None,
    ) -> LLMResponse:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": system,
            "messages": messages,
        }
        if tools:
            kwargs["tools"] = tools
        if timeout_s is not None:
            kwargs["timeout"] = timeout_s
        response = self.client.messages.create(**kwargs)

        blocks: list[ContentBlock] = []
        for block in response.content:
            if block.type == "text":
                blocks.append(TextBlock(text=block.text))
            elif block.type == "tool_use":
                blocks.append(ToolUseBlock(id=block.id, name=block.name, input=dict(block.input)))
        usage = getattr(response, "usage", None)
        return LLMResponse(
            content=blocks,
            stop_reason=str(response.stop_reason or ""),
            model=str(getattr(response, "model", self.model)),
            usage={
                "input_tokens": int(getattr(usage, "input_tokens", 0) or 0),
                "output_tokens": int(getattr(usage, "output_tokens", 0) or 0),
            },
        )
