"""Exact-name tool registry mapping tool names to schemas, effect classes, and handlers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Literal

from pm_agent.models.tool_contracts import ToolCall, ToolResult

logger = logging.getLogger(__name__)

ToolEffect = Literal["read_only", "approval_gated", "idea_state", "code_generation"]
ToolHandler = Callable[[dict[str, Any]], ToolResult]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    input_schema: dict[str, Any]
    effect: ToolEffect
    handler: ToolHandler

    @property
    def required_inputs(self) -> list[str]:
        return [str(name) for name in self.input_schema.get("required", [])]

    def definition(self) -> dict[str, Any]:
        """Tool definition in the shape the model API expects."""

        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


def object_schema(
    properties: dict[str, dict[str, Any]], required: list[str] | None = None
) -> dict[str, Any]:
    return {"type": "object", "properties": properties, "required": list(required or [])}


class ToolRegistry:
    def __init__(self, specs: list[ToolSpec] | None = None) -> None:
        self._specs: dict[str, ToolSpec] = {}
        for spec in specs or []:
            self.register(spec)

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._specs:
            raise ValueError(f"duplicate_tool:{spec.name}")
        self._specs[spec.name] = spec

    def extend(self, specs: list[ToolSpec]) -> None:
        for spec in specs:
            self.register(spec)

    def get(self, name: str) -> ToolSpec | None:
        return self._specs.get(name)

    def names(self) -> list[str]:
        return sorted(self._specs)

    def definitions(self) -> list[dict[str, Any]]:
        return [self._specs[name].definition() for name in self.names()]

    def dispatch(self, call: ToolCall) -> ToolResult:
        """Run a tool call; every failure comes back as an unsuccessful result."""

        spec = self._specs.get(call.name)
        if spec is None:
            logger.warning("Model requested unknown tool %s", call.name)
            return ToolResult.fail(f"unknown_tool:{call.name}")
        for field_name in spec.required_inputs:
            value = call.input.get(field_name)
            if value is None or (isinstance(value, str) and not value.strip()):
                return ToolResult.fail(f"missing_input:{field_name}")
        try:
            result = spec.handler(dict(call.input))
        except Exception as exc:
            logger.error("Tool %s failed: %s", call.name, exc)
            return ToolResult.fail(str(exc) or exc.__class__.__name__)
        # a successful gated call must hand back a pending action, never a finished write
        if (
            spec.effect == "approval_gated"
            and result.success
            and not (result.requires_approval and result.pending_action_id)
        ):
            logger.error("Approval-gated tool %s returned without a pending action", call.name)
            return ToolResult.fail(f"approval_required:{call.name}")
        return result
