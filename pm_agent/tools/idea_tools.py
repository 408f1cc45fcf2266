"""Idea tools exposed to the agent."""

from __future__ import annotations

from typing import Any

from pm_agent.approval.queue import ApprovalQueue
from pm_agent.ideas.service import IdeaService
from pm_agent.models.task_contracts import SuggestedAction
from pm_agent.models.tool_contracts import ToolResult
from pm_agent.tools.registry import ToolSpec, object_schema

PLAN_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "summary": {"type": "string"},
        "techStack": {"type": "array", "items": {"type": "string"}},
        "structure": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "path": {"type": "string"},
                    "type": {"type": "string", "enum": ["file", "directory"]},
                    "description": {"type": "string"},
                },
            },
        },
        "features": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "description": {"type": "string"},
                    "priority": {"type": "string", "enum": ["core", "important", "nice-to-have"]},
                },
            },
        },
        "estimatedFiles": {"type": "number"},
        "repoNameSuggestion": {"type": "string"},
    },
}


class IdeaTools:
    def __init__(self, ideas: IdeaService, approvals: ApprovalQueue) -> None:
        self.ideas = ideas
        self.approvals = approvals

    def idea_analyze(self, tool_input: dict[str, Any]) -> ToolResult:
        idea_id = str(tool_input["ideaId"])
        output = self.ideas.analyze(
            idea_id,
            title=str(tool_input["title"]),
            description=str(tool_input["description"]),
            tech_stack=[str(item) for item in tool_input.get("techStack") or []],
        )
        return ToolResult.ok({"ideaId": idea_id, "analysis": output})

    def idea_save_plan(self, tool_input: dict[str, Any]) -> ToolResult:
        idea_id = str(tool_input["ideaId"])
        if self.ideas.get(idea_id) is None:
            return ToolResult.fail("Idea not found")
        plan = tool_input["plan"]
        if not isinstance(plan, dict):
            return ToolResult.fail("invalid_plan:expected_object")
        idea = self.ideas.save_plan(idea_id, plan)
        return ToolResult.ok({"ideaId": idea.id, "status": idea.status})

    def idea_create_repo(self, tool_input: dict[str, Any]) -> ToolResult:
        idea_id = str(tool_input["ideaId"])
        repo_name = str(tool_input["repoName"])
        is_private = bool(tool_input.get("isPrivate", False))
        action_id = self.approvals.enqueue(
            SuggestedAction(
                type="create_repo",
                description=(
                    f"Create {'private' if is_private else 'public'} repository {repo_name}"
                ),
                payload={
                    "ideaId": idea_id,
                    "repoName": repo_name,
                    "description": str(tool_input.get("description") or ""),
                    "isPrivate": is_private,
                },
            )
        )
        return ToolResult.pending(
            action_id, f"Repository creation queued for approval. Action ID: {action_id}"
        )

    def idea_generate_code(self, tool_input: dict[str, Any]) -> ToolResult:
        idea_id = str(tool_input["ideaId"])
        output = self.ideas.generate_code(
            idea_id, repo_path=str(tool_input["repoPath"]), prompt=str(tool_input["prompt"])
        )
        return ToolResult.ok({"ideaId": idea_id, "output": output})

    def specs(self) -> list[ToolSpec]:
        idea_id = {"type": "string", "description": "Idea identifier"}
        return [
            ToolSpec(
                name="idea_analyze",
                description="Analyze an idea and generate an implementation plan",
                input_schema=object_schema(
                    {
                        "ideaId": idea_id,
                        "title": {"type": "string"},
                        "description": {"type": "string"},
                        "techStack": {"type": "array", "items": {"type": "string"}},
                    },
                    ["ideaId", "title", "description"],
                ),
                effect="idea_state",
                handler=self.idea_analyze,
            ),
            ToolSpec(
                name="idea_save_plan",
                description="Save the generated plan for an idea",
                input_schema=object_schema(
                    {"ideaId": idea_id, "plan": PLAN_SCHEMA}, ["ideaId", "plan"]
                ),
                effect="idea_state",
                handler=self.idea_save_plan,
            ),
            ToolSpec(
                name="idea_create_repo",
                description="Create a GitHub repository for an idea (requires approval)",
                input_schema=object_schema(
                    {
                        "ideaId": idea_id,
                        "repoName": {"type": "string"},
                        "description": {"type": "string"},
                        "isPrivate": {"type": "boolean"},
                    },
                    ["ideaId", "repoName"],
                ),
                effect="approval_gated",
                handler=self.idea_create_repo,
            ),
            ToolSpec(
                name="idea_generate_code",
                description="Generate project code in a working copy with the code generation CLI",
                input_schema=object_schema(
                    {
                        "ideaId": idea_id,
                        "repoPath": {"type": "string"},
                        "prompt": {"type": "string"},
                    },
                    ["ideaId", "repoPath", "prompt"],
                ),
                effect="code_generation",
                handler=self.idea_generate_code,
            ),
        ]
