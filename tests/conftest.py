"""
Test fixtures and utilities for stepflow tests.

This module provides flow builders, a scriptable step executor and
configuration isolation shared by the runtime, service, API and CLI tests.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import pytest

from stepflow.config import runtime_config
from stepflow.config.flow_registry import FlowRegistry
from stepflow.runtime.executors import ExecutorRegistry, StepExecutor, make_result
from stepflow.runtime.service import RunService
from stepflow.runtime.types import (
    BlockCategory,
    Flow,
    FlowBlock,
    FlowStep,
    StepOutcome,
    StepType,
)

# ============================================================================
# Flow Builders
# ============================================================================

_CATEGORIES = (BlockCategory.COLLECT, BlockCategory.THINK, BlockCategory.ACT)


def build_flow(
    n: int = 3,
    flow_id: str = "test-flow",
    options: Optional[Dict[int, str]] = None,
    agent_steps: Tuple[int, ...] = (),
) -> Flow:
    """Build a valid n-step flow.

    Step i has id ``step-i``, order ``i + 1`` and (unless it is listed in
    ``agent_steps``) is bound to block ``blk-i`` whose category cycles
    collect -> think -> act.
    """
    options = options or {}
    steps: List[FlowStep] = []
    blocks: List[FlowBlock] = []
    for i in range(n):
        if i in agent_steps:
            steps.append(
                FlowStep(id=f"step-{i}", order=i + 1, title=f"Step {i}", step_type=StepType.AGENT)
            )
            continue
        blocks.append(
            FlowBlock(
                id=f"blk-{i}",
                category=_CATEGORIES[i % len(_CATEGORIES)],
                option=options.get(i, f"Option {i}"),
                name=f"Block {i}",
            )
        )
        steps.append(
            FlowStep(
                id=f"step-{i}",
                order=i + 1,
                title=f"Step {i}",
                block_id=f"blk-{i}",
                step_type=StepType.BLOCK,
            )
        )
    return Flow(id=flow_id, name="Test Flow", steps=tuple(steps), blocks=tuple(blocks))


def flow_dict(n: int = 3, flow_id: str = "test-flow") -> Dict[str, Any]:
    """The JSON/YAML shape of ``build_flow(n)``."""
    from stepflow.runtime.types import flow_to_dict

    return flow_to_dict(build_flow(n, flow_id=flow_id))


# ============================================================================
# Scripted Executor
# ============================================================================

ScriptAction = Union[StepOutcome, Exception, Callable[..., StepOutcome]]


class ScriptedExecutor(StepExecutor):
    """Executor whose behaviour per step id is scripted by the test.

    Steps without a script entry complete with ``{"value": "<step_id>-out"}``.
    Every call records the step id and the Data Bus keys it was shown.
    """

    def __init__(self, script: Optional[Dict[str, ScriptAction]] = None):
        self.script: Dict[str, ScriptAction] = dict(script or {})
        self.calls: List[Tuple[str, Tuple[str, ...]]] = []
        self.completions: List[Tuple[str, Any]] = []

    def execute(self, step, block, data_bus, ctx):
        self.calls.append((step.id, tuple(data_bus.keys())))
        action = self.script.get(step.id)
        if action is None:
            return StepOutcome.completed(make_result(step, block, {"value": f"{step.id}-out"}))
        if isinstance(action, StepOutcome):
            return action
        if isinstance(action, Exception):
            raise action
        return action(step, block, data_bus, ctx)

    def complete_user_action(self, step, block, pending, response):
        self.completions.append((step.id, response))
        return super().complete_user_action(step, block, pending, response)

    @property
    def executed_steps(self) -> List[str]:
        return [step_id for step_id, _ in self.calls]


def scripted_registry(executor: StepExecutor) -> ExecutorRegistry:
    return ExecutorRegistry(default=executor)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def three_step_flow() -> Flow:
    return build_flow(3)


@pytest.fixture
def executor() -> ScriptedExecutor:
    return ScriptedExecutor()


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Keep tests independent of the developer's environment and of each other."""
    for var in (
        "STEPFLOW_CONFIG",
        "STEPFLOW_AUTO_RUN_DELAY",
        "STEPFLOW_SIM_STEP_DELAY",
        "STEPFLOW_SIM_TRANSITION_DELAY",
        "STEPFLOW_DEMO_DELAY",
        "STEPFLOW_PAUSE_TIMEOUT",
        "STEPFLOW_FLOWS_DIR",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("STEPFLOW_RUNS_DIR", str(tmp_path / "runs"))
    runtime_config.reset_config()
    FlowRegistry.reset()
    RunService.reset()
    yield
    runtime_config.reset_config()
    FlowRegistry.reset()
    RunService.reset()


@pytest.fixture
def runs_dir(tmp_path):
    path = tmp_path / "runs"
    path.mkdir(parents=True, exist_ok=True)
    return path
