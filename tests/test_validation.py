"""Tests for flow validation.

Every problem is reported at once as a structured issue; nothing is fixed up.
"""

from __future__ import annotations

from dataclasses import replace

import pytest

from conftest import build_flow
from stepflow.runtime.errors import ValidationError
from stepflow.runtime.types import Flow, FlowStep, StepType
from stepflow.runtime.validation import ensure_valid, validate_flow


def _codes(flow: Flow):
    return [issue.code for issue in validate_flow(flow).issues]


class TestValidFlows:
    def test_block_flow_is_valid(self):
        assert validate_flow(build_flow(3)).ok

    def test_agent_step_is_valid(self):
        assert validate_flow(build_flow(3, agent_steps=(2,))).ok

    def test_zero_based_orders_are_valid(self):
        flow = build_flow(3)
        steps = tuple(replace(s, order=s.order - 1) for s in flow.steps)
        assert validate_flow(replace(flow, steps=steps)).ok

    def test_validation_does_not_mutate(self):
        flow = build_flow(3)
        before = repr(flow)
        validate_flow(flow)
        assert repr(flow) == before


class TestStructuralIssues:
    def test_empty_flow(self):
        assert _codes(Flow(id="empty", name="Empty")) == ["EMPTY_FLOW"]

    def test_duplicate_step_ids(self):
        flow = build_flow(2)
        steps = (flow.steps[0], replace(flow.steps[1], id="step-0"))
        assert "DUPLICATE_STEP_ID" in _codes(replace(flow, steps=steps))

    def test_duplicate_block_ids(self):
        flow = build_flow(2)
        blocks = (flow.blocks[0], replace(flow.blocks[1], id="blk-0"))
        assert "DUPLICATE_BLOCK_ID" in _codes(replace(flow, blocks=blocks))

    def test_duplicate_orders(self):
        flow = build_flow(3)
        steps = (flow.steps[0], replace(flow.steps[1], order=1), flow.steps[2])
        assert "DUPLICATE_ORDER" in _codes(replace(flow, steps=steps))

    def test_order_gap(self):
        flow = build_flow(3)
        steps = (flow.steps[0], flow.steps[1], replace(flow.steps[2], order=5))
        assert "ORDER_GAP" in _codes(replace(flow, steps=steps))

    def test_orders_must_start_at_zero_or_one(self):
        flow = build_flow(2)
        steps = tuple(replace(s, order=s.order + 4) for s in flow.steps)
        assert "ORDER_START" in _codes(replace(flow, steps=steps))


class TestStepBindings:
    def test_block_step_without_block_id(self):
        flow = build_flow(2)
        steps = (flow.steps[0], replace(flow.steps[1], block_id=None))
        assert _codes(replace(flow, steps=steps)) == ["MISSING_BLOCK"]

    def test_block_step_with_unknown_block(self):
        flow = build_flow(2)
        steps = (flow.steps[0], replace(flow.steps[1], block_id="nope"))
        assert _codes(replace(flow, steps=steps)) == ["UNKNOWN_BLOCK"]

    def test_agent_step_with_block_id(self):
        flow = build_flow(2)
        steps = (flow.steps[0], replace(flow.steps[1], step_type=StepType.AGENT))
        assert _codes(replace(flow, steps=steps)) == ["AGENT_WITH_BLOCK"]

    def test_unselected_step_rejected(self):
        flow = build_flow(1)
        extra = FlowStep(id="step-x", order=2, title="Pick a block")
        assert _codes(replace(flow, steps=flow.steps + (extra,))) == ["UNSELECTED_STEP"]


class TestReporting:
    def test_all_issues_reported_together(self):
        flow = build_flow(3)
        steps = (
            flow.steps[0],
            replace(flow.steps[1], block_id="missing"),
            replace(flow.steps[2], order=9),
        )
        codes = _codes(replace(flow, steps=steps))
        assert "UNKNOWN_BLOCK" in codes
        assert "ORDER_GAP" in codes

    def test_format_uses_fail_prefix(self):
        result = validate_flow(Flow(id="empty", name="Empty"))
        assert result.format() == "[FAIL] EMPTY_FLOW: flow:empty has no steps"

    def test_to_dict(self):
        data = validate_flow(Flow(id="empty", name="Empty")).to_dict()
        assert data["ok"] is False
        assert data["issues"][0]["code"] == "EMPTY_FLOW"

    def test_ensure_valid_raises_with_issues(self):
        with pytest.raises(ValidationError) as excinfo:
            ensure_valid(Flow(id="empty", name="Empty"))
        assert [i.code for i in excinfo.value.issues] == ["EMPTY_FLOW"]
        assert excinfo.value.to_dict()["issues"][0]["location"] == "flow:empty"
