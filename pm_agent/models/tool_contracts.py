"""In-memory contracts exchanged between the agent loop and tool handlers."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from pm_agent.shared.clock import now_ms


class ToolCall(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    success: bool
    data: Any = None
    error: str | None = None
    requires_approval: bool = False
    pending_action_id: str | None = None

    @classmethod
    def ok(cls, data: Any = None) -> "ToolResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "ToolResult":
        return cls(success=False, error=error)

    @classmethod
    def pending(cls, pending_action_id: str, message: str = "") -> "ToolResult":
        return cls(
            success=True,
            data={"message": message} if message else None,
            requires_approval=True,
            pending_action_id=pending_action_id,
        )

    def to_wire(self) -> dict[str, Any]:
        """camelCase shape the model sees in ``tool_result`` blocks."""

        payload: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            payload["data"] = self.data
        if self.error is not None:
            payload["error"] = self.error
        if self.requires_approval:
            payload["requiresApproval"] = True
            payload["pendingActionId"] = self.pending_action_id
        return payload


class BroadcastEvent(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    type: str = Field(min_length=1)
    timestamp: int = Field(default_factory=now_ms)
    data: dict[str, Any] = Field(default_factory=dict)
