"""Tests for the executor registry and the demo executors."""

from __future__ import annotations

import threading

import pytest

from conftest import ScriptedExecutor, build_flow
from stepflow.runtime.data_bus import DataBusSnapshot
from stepflow.runtime.executors import (
    DemoAgentExecutor,
    DemoCollectExecutor,
    DemoExecutor,
    DemoUserActionExecutor,
    ExecutorRegistry,
    StepContext,
    build_demo_registry,
    make_result,
)
from stepflow.runtime.types import BlockCategory, FlowBlock, OutcomeKind, StepResult


def _ctx(**kwargs) -> StepContext:
    return StepContext(run_id="run-1", flow_id="f", step_index=0, total_steps=1, **kwargs)


class TestExecutorRegistry:
    def test_exact_match_wins_over_wildcard(self):
        exact, wildcard = ScriptedExecutor(), ScriptedExecutor()
        registry = ExecutorRegistry()
        registry.register(BlockCategory.ACT, wildcard)
        registry.register(BlockCategory.ACT, exact, option="Send Email")

        assert registry.lookup(BlockCategory.ACT, "Send Email") is exact
        assert registry.lookup(BlockCategory.ACT, "Slack") is wildcard

    def test_default_used_last(self):
        default = ScriptedExecutor()
        registry = ExecutorRegistry(default=default)
        assert registry.lookup(BlockCategory.THINK, "Insights") is default

    def test_missing_returns_none(self):
        assert ExecutorRegistry().lookup(BlockCategory.COLLECT) is None

    def test_agent_steps_resolve_as_agent_category(self):
        agent = ScriptedExecutor()
        registry = ExecutorRegistry().register(BlockCategory.AGENT, agent)
        flow = build_flow(1, agent_steps=(0,))
        step = flow.ordered_steps()[0]
        assert registry.resolve(step, None) is agent

    def test_registered_keys(self):
        registry = ExecutorRegistry()
        registry.register(BlockCategory.ACT, ScriptedExecutor(), option="Send Email")
        registry.register(BlockCategory.COLLECT, ScriptedExecutor())
        assert registry.registered_keys() == [("act", "Send Email"), ("collect", "*")]


class TestMakeResult:
    def test_uses_block_name_and_category(self):
        flow = build_flow(1)
        step, block = flow.steps_with_blocks()[0]
        result = make_result(step, block, {"a": 1})
        assert result.block_name == "Block 0"
        assert result.category == BlockCategory.COLLECT

    def test_agent_step_uses_title(self):
        flow = build_flow(1, agent_steps=(0,))
        step, block = flow.steps_with_blocks()[0]
        result = make_result(step, block, {})
        assert result.block_name == "Step 0"
        assert result.category == BlockCategory.AGENT


class TestDemoExecutors:
    def test_demo_base_is_abstract(self):
        with pytest.raises(TypeError):
            DemoExecutor(0)

    def test_collect_upload_sheet(self):
        flow = build_flow(1, options={0: "Upload Sheet"})
        step, block = flow.steps_with_blocks()[0]
        outcome = DemoCollectExecutor(0).execute(step, block, DataBusSnapshot([]), _ctx())

        assert outcome.kind == OutcomeKind.COMPLETED
        assert outcome.result.data["rows"] == 15
        assert outcome.result.data["demo"] is True

    def test_agent_uses_agent_name(self):
        flow = build_flow(1, agent_steps=(0,))
        step, _ = flow.steps_with_blocks()[0]
        block = FlowBlock(id="a", category=BlockCategory.AGENT, option="Agent", agent_name="Ada")
        outcome = DemoAgentExecutor(0).execute(step, block, DataBusSnapshot([]), _ctx())
        assert outcome.result.data["agent_name"] == "Ada"

    def test_cancel_during_delay(self):
        flow = build_flow(1)
        step, block = flow.steps_with_blocks()[0]
        cancel = threading.Event()
        cancel.set()
        outcome = DemoCollectExecutor(30).execute(step, block, DataBusSnapshot([]), _ctx(cancel_event=cancel))
        assert outcome.kind == OutcomeKind.FAILED

    def test_send_email_asks_for_user_action(self):
        flow = build_flow(3, options={2: "Send Email"})
        step, block = flow.steps_with_blocks()[2]
        executor = DemoUserActionExecutor(0)
        outcome = executor.execute(step, block, DataBusSnapshot([]), _ctx())

        assert outcome.kind == OutcomeKind.NEEDS_USER_ACTION
        assert '"Block 2" step requires your input' in outcome.prompt
        assert outcome.partial_data["email_status"]["sent"] is False

        done = executor.complete_user_action(step, block, outcome, "sent it")
        assert done.kind == OutcomeKind.COMPLETED
        assert done.result.data["user_response"] == "sent it"
        assert done.result.data["email_status"]["sent"] is True


class TestBuildDemoRegistry:
    @pytest.mark.parametrize(
        "category,option",
        [
            (BlockCategory.COLLECT, "User Text"),
            (BlockCategory.ACT, "Human in the Loop"),
            (BlockCategory.ACT, "Send Email"),
        ],
    )
    def test_user_action_options(self, category, option):
        registry = build_demo_registry(0)
        assert isinstance(registry.lookup(category, option), DemoUserActionExecutor)

    def test_every_category_covered(self):
        registry = build_demo_registry(0)
        for category in BlockCategory:
            assert registry.lookup(category, "Anything") is not None

    def test_delay_from_config(self, monkeypatch):
        monkeypatch.setenv("STEPFLOW_DEMO_DELAY", "0")
        registry = build_demo_registry()
        assert registry.lookup(BlockCategory.THINK)._delay_seconds == 0.0

    def test_think_sees_earlier_steps(self):
        flow = build_flow(2)
        step, block = flow.steps_with_blocks()[1]
        earlier = StepResult(step_id="step-0", block_name="Block 0", data={"x": 1})
        outcome = build_demo_registry(0).resolve(step, block).execute(
            step, block, DataBusSnapshot([earlier]), _ctx()
        )
        assert outcome.result.data["input_steps"] == ["step-0"]
