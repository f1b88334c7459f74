"""Plan-capture tool for the planner session.

The planner ends its turn by calling ``submit_implementation_plan``. The
handler validates the submission against :class:`ImplementationPlan` and
keeps it for the loop to pick up.
"""

from __future__ import annotations

import logging
from typing import Any

from autonav.types.plan import ImplementationPlan
from autonav.types.tools import ToolDefinition, ToolParam, ToolResult, define_tool

logger = logging.getLogger(__name__)

SUBMIT_PLAN_TOOL = "submit_implementation_plan"
NAV_PROTOCOL_SERVER = "autonav-nav-protocol"

SUBMIT_PLAN_DESCRIPTION = """\
Submit your implementation plan for the current iteration. You MUST use this tool to provide your plan.

This tool allows you to:
1. Define concrete implementation steps for the implementer agent
2. Specify validation criteria to verify the implementation
3. Signal when the overall task is complete

When the task is fully complete, set isComplete to true and provide a completionMessage.

Do NOT respond with plain text - always use this tool to submit your plan."""

_STEP_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "description": {
            "type": "string",
            "minLength": 5,
            "description": "Clear description of what this step accomplishes",
        },
        "files": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Specific files to create or modify (relative paths)",
        },
        "commands": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Shell commands to run (e.g., 'npm install', 'npm test')",
        },
    },
    "required": ["description"],
}

PLAN_PARAMETERS = (
    ToolParam(
        name="summary",
        type="string",
        description="Brief summary of what this plan will accomplish in this iteration. Be specific about the goal.",
        constraints={"minLength": 10},
    ),
    ToolParam(
        name="steps",
        type="array",
        description="Ordered list of implementation steps. Each step should be atomic and verifiable.",
        items=_STEP_SCHEMA,
        constraints={"minItems": 1},
    ),
    ToolParam(
        name="validationCriteria",
        type="array",
        description=(
            "How to verify the implementation worked. Include specific checks like "
            "'npm test passes' or 'file X exists with content Y'."
        ),
        items={"type": "string"},
        constraints={"minItems": 1},
    ),
    ToolParam(
        name="isComplete",
        type="boolean",
        description=(
            "Set to true when the OVERALL TASK is complete and no more iterations are needed. "
            "Only set this to true when all requirements have been fulfilled."
        ),
    ),
    ToolParam(
        name="completionMessage",
        type="string",
        description="Message to display when isComplete is true. Summarize what was accomplished.",
        required=False,
    ),
)


class PlanCapture:
    """Holds the plan-submission tool and the last plan it accepted."""

    def __init__(self) -> None:
        self._plan: ImplementationPlan | None = None
        self.tool: ToolDefinition = define_tool(
            SUBMIT_PLAN_TOOL, SUBMIT_PLAN_DESCRIPTION, PLAN_PARAMETERS, self._submit
        )

    @property
    def tools(self) -> list[ToolDefinition]:
        return [self.tool]

    def get_captured_plan(self) -> ImplementationPlan | None:
        return self._plan

    def reset_captured_plan(self) -> None:
        self._plan = None

    async def _submit(self, args: dict[str, Any]) -> ToolResult:
        # Raises pydantic.ValidationError on a bad submission.
        plan = ImplementationPlan.model_validate(args)
        self._plan = plan
        logger.debug("Captured plan: %s (%d steps)", plan.summary, len(plan.steps))
        if plan.is_complete:
            message = "Task marked as complete. Memento loop will end."
        else:
            message = f"Plan submitted with {len(plan.steps)} steps. Implementer will implement this."
        return ToolResult.json({"success": True, "message": message, "plan": plan.to_wire()})
