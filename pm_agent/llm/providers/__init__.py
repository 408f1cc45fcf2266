"""Provider adapters for the agent loop."""

from pm_agent.llm.providers.anthropic import AnthropicProvider
from pm_agent.llm.providers.base import (
    ContentBlock,
    LLMProvider,
    LLMResponse,
    TextBlock,
    ToolUseBlock,
    block_to_dict,
)
from pm_agent.llm.providers.scripted import ScriptedProvider

__all__ = [
    "AnthropicProvider",
    "ContentBlock",
    "LLMProvider",
    "LLMResponse",
    "ScriptedProvider",
    "TextBlock",
    "ToolUseBlock",
    "block_to_dict",
]
