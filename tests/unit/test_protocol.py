"""Tests for the plan-submission tool."""

from __future__ import annotations

import json

import pytest

from autonav.memento.protocol import NAV_PROTOCOL_SERVER, SUBMIT_PLAN_TOOL, PlanCapture
from tests.conftest import plan_args


class TestPlanCapture:
    def test_tool_shape(self):
        capture = PlanCapture()
        assert capture.tools == [capture.tool]
        assert capture.tool.name == SUBMIT_PLAN_TOOL
        assert NAV_PROTOCOL_SERVER == "autonav-nav-protocol"

        schema = capture.tool.input_schema()
        assert schema["required"] == ["summary", "steps", "validationCriteria", "isComplete"]
        props = schema["properties"]
        assert props["summary"]["minLength"] == 10
        assert props["steps"]["minItems"] == 1
        assert props["steps"]["items"]["properties"]["description"]["minLength"] == 5
        assert props["validationCriteria"]["items"] == {"type": "string"}
        assert props["isComplete"]["type"] == "boolean"

    @pytest.mark.asyncio
    async def test_valid_submission_is_captured(self):
        capture = PlanCapture()
        assert capture.get_captured_plan() is None

        result = await capture.tool.invoke(plan_args())
        assert result.is_error is False
        payload = json.loads(result.content)
        assert payload["success"] is True
        assert payload["message"] == "Plan submitted with 1 steps. Implementer will implement this."
        assert payload["plan"]["validationCriteria"] == ["greet.py exists"]

        plan = capture.get_captured_plan()
        assert plan.summary == "feat: add greeting module"
        assert plan.steps[0].files == ["greet.py"]

    @pytest.mark.asyncio
    async def test_completion_submission(self):
        capture = PlanCapture()
        result = await capture.tool.invoke(plan_args(complete=True, completion_message="All done"))
        assert json.loads(result.content)["message"] == "Task marked as complete. Memento loop will end."
        assert capture.get_captured_plan().completion_message == "All done"

    @pytest.mark.asyncio
    async def test_invalid_submission_is_an_error_result(self):
        capture = PlanCapture()
        args = plan_args()
        args["steps"] = []
        result = await capture.tool.invoke(args)
        assert result.is_error is True
        assert "steps" in result.content
        assert capture.get_captured_plan() is None

    @pytest.mark.asyncio
    async def test_last_submission_wins_and_reset(self):
        capture = PlanCapture()
        await capture.tool.invoke(plan_args("feat: first attempt here"))
        await capture.tool.invoke(plan_args("feat: second attempt here"))
        assert capture.get_captured_plan().summary == "feat: second attempt here"
        capture.reset_captured_plan()
        assert capture.get_captured_plan() is None

    @pytest.mark.asyncio
    async def test_captures_are_independent(self):
        a, b = PlanCapture(), PlanCapture()
        await a.tool.invoke(plan_args())
        assert b.get_captured_plan() is None
