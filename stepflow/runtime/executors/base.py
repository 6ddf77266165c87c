"""
base.py - The step executor contract.

Every concrete block (collect/think/act/agent) is run through a StepExecutor.
Executors are supplied by the caller through an ExecutorRegistry; the engine
never inspects ``block.option`` itself.

Executors are responsible for:
- Taking the step, its block and a read-only Data Bus snapshot
- Doing the work (API calls, inference, notifications...)
- Returning a StepOutcome

Executors do NOT own:
- Step ordering (that's the engine's job)
- Writing to the Data Bus (the engine records returned results)
- Pause/resume bookkeeping (that's the gate's job)
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..data_bus import DataBusSnapshot
from ..types import (
    BlockCategory,
    FlowBlock,
    FlowStep,
    RunId,
    StepOutcome,
    StepResult,
    _utcnow,
)


@dataclass
class StepContext:
    """Per-call context handed to an executor.

    Attributes:
        run_id: The run identifier.
        flow_id: The flow being executed.
        step_index: 0-based position of the step.
        total_steps: Number of steps in the flow.
        cancel_event: Set when the run has been asked to cancel. Long-running
            executors should check it and return early.
        extra: Caller-supplied context (credentials lookups, task ids...).
    """

    run_id: RunId
    flow_id: str
    step_index: int
    total_steps: int
    cancel_event: threading.Event = field(default_factory=threading.Event)
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def cancel_requested(self) -> bool:
        return self.cancel_event.is_set()


def block_name_for(step: FlowStep, block: Optional[FlowBlock]) -> str:
    """Name recorded on a StepResult: the block's name, else the step title."""
    if block is not None:
        return block.display_name
    return step.title


def category_for(block: Optional[FlowBlock]) -> BlockCategory:
    """Category of the work; steps without a block are agent delegations."""
    return block.category if block is not None else BlockCategory.AGENT


def make_result(
    step: FlowStep, block: Optional[FlowBlock], data: Dict[str, Any]
) -> StepResult:
    """Build a StepResult stamped with the step's block name and category."""
    return StepResult(
        step_id=step.id,
        block_name=block_name_for(step, block),
        data=dict(data),
        executed_at=_utcnow(),
        category=category_for(block),
    )


class StepExecutor(ABC):
    """Abstract base class for step executors.

    ``execute`` must be safe to call at most once per step per run attempt.
    """

    @property
    def executor_id(self) -> str:
        """Identifier used in logs and events."""
        return type(self).__name__

    @abstractmethod
    def execute(
        self,
        step: FlowStep,
        block: Optional[FlowBlock],
        data_bus: DataBusSnapshot,
        ctx: StepContext,
    ) -> StepOutcome:
        """Run one step.

        Args:
            step: The step being executed.
            block: The bound block, or None for agent steps.
            data_bus: Results of every earlier step.
            ctx: Run metadata and the cancellation signal.

        Returns:
            StepOutcome.completed / needs_user_action / failed.
        """
        ...

    def complete_user_action(
        self,
        step: FlowStep,
        block: Optional[FlowBlock],
        pending: StepOutcome,
        response: Any,
    ) -> StepOutcome:
        """Finish a step that paused for human input.

        The default folds the response into the partial data under
        ``user_response``. Override to validate the response or to fail the
        step on a rejection.
        """
        data = dict(pending.partial_data)
        data["user_response"] = response
        return StepOutcome.completed(make_result(step, block, data))
