"""
simulation.py - No-I/O stand-in for the execution engine.

The harness walks a flow's steps in order with artificial delays and drives
the same StepStatusTable and EngineCallbacks as the real engine, so a canvas
or chat front-end can be exercised without executors. Passing
``fail_at_index`` makes that step fail and halts the walk, which is how the
failure path of the visualization is tested.

After a run with fail_at_index=k, steps 0..k-1 are SUCCESS, step k is FAILED
and every later step is still IDLE.

Usage:
    from stepflow.runtime.simulation import simulate

    result = simulate(flow, fail_at_index=2, callbacks=callbacks)
    assert result.state == EngineState.FAILED
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from .callbacks import EngineCallbacks, notify
from .errors import StepExecutionError
from .executors.base import make_result
from .status import StepStatusTable
from .types import EngineState, ExecutionStatus, Flow, RunId, generate_run_id
from .validation import ensure_valid

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SimulationResult:
    """Final state of a simulated run."""

    run_id: RunId
    flow_id: str
    state: EngineState
    statuses: Tuple[ExecutionStatus, ...]
    failed_index: Optional[int] = None
    error: Optional[str] = None


class SimulationHarness:
    """Deterministic walk over a flow's steps.

    Args:
        flow: Flow to simulate. Validated like the engine validates it.
        fail_at_index: 0-based step that should fail, or None for a clean run.
        callbacks: Same observers the engine accepts.
        step_delay_seconds: Time each step spends RUNNING. Defaults to config.
        transition_delay_seconds: Time the connector between two steps stays
            active. Defaults to config.
        sleep: Injected for tests.
    """

    def __init__(
        self,
        flow: Flow,
        fail_at_index: Optional[int] = None,
        callbacks: Optional[EngineCallbacks] = None,
        step_delay_seconds: Optional[float] = None,
        transition_delay_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        run_id: Optional[RunId] = None,
    ):
        ensure_valid(flow)
        self._steps = flow.steps_with_blocks()
        if fail_at_index is not None and not 0 <= fail_at_index < len(self._steps):
            raise ValueError(
                f"fail_at_index {fail_at_index} is outside 0..{len(self._steps) - 1}"
            )
        if step_delay_seconds is None or transition_delay_seconds is None:
            from stepflow.config.runtime_config import (
                get_simulation_step_delay_seconds,
                get_simulation_transition_delay_seconds,
            )

            if step_delay_seconds is None:
                step_delay_seconds = get_simulation_step_delay_seconds()
            if transition_delay_seconds is None:
                transition_delay_seconds = get_simulation_transition_delay_seconds()

        self._flow_id = flow.id
        self._run_id = run_id or generate_run_id()
        self._fail_at_index = fail_at_index
        self._callbacks = callbacks or EngineCallbacks()
        self._step_delay = step_delay_seconds
        self._transition_delay = transition_delay_seconds
        self._sleep = sleep
        self._stop = threading.Event()
        self._table = StepStatusTable(
            len(self._steps),
            on_status_change=self._callbacks.on_status_change,
            on_transition=self._callbacks.on_transition,
        )

    @property
    def run_id(self) -> RunId:
        return self._run_id

    @property
    def statuses(self) -> Tuple[ExecutionStatus, ...]:
        return self._table.snapshot()

    @property
    def active_transition(self) -> Optional[Tuple[int, int]]:
        return self._table.active_transition

    def cancel(self) -> None:
        """Stop before the next step starts."""
        self._stop.set()

    def run(self) -> SimulationResult:
        logger.info(
            "Simulating flow '%s' (%d steps, fail_at_index=%s)",
            self._flow_id,
            len(self._steps),
            self._fail_at_index,
        )
        for index, (step, block) in enumerate(self._steps):
            if index > 0:
                self._table.begin_transition(index - 1, index)
                self._sleep(self._transition_delay)
                self._table.end_transition()
            if self._stop.is_set():
                logger.info("Simulation of '%s' cancelled before step %d", self._flow_id, index)
                return self._result(EngineState.CANCELLED)

            notify(self._callbacks.on_block_start, "on_block_start", index)
            self._table.set(index, ExecutionStatus.RUNNING)
            self._sleep(self._step_delay)

            if index == self._fail_at_index:
                message = f"Simulated failure at step {index}"
                self._table.set(index, ExecutionStatus.FAILED)
                error = StepExecutionError(message, step_index=index, step_id=step.id)
                notify(self._callbacks.on_error, "on_error", error, index)
                return self._result(EngineState.FAILED, failed_index=index, error=message)

            self._table.set(index, ExecutionStatus.SUCCESS)
            result = make_result(step, block, {"simulated": True, "step_index": index})
            notify(self._callbacks.on_block_complete, "on_block_complete", index, result)

        notify(self._callbacks.on_complete, "on_complete")
        return self._result(EngineState.COMPLETED)

    def _result(
        self,
        state: EngineState,
        failed_index: Optional[int] = None,
        error: Optional[str] = None,
    ) -> SimulationResult:
        return SimulationResult(
            run_id=self._run_id,
            flow_id=self._flow_id,
            state=state,
            statuses=self._table.snapshot(),
            failed_index=failed_index,
            error=error,
        )


def simulate(
    flow: Flow,
    fail_at_index: Optional[int] = None,
    callbacks: Optional[EngineCallbacks] = None,
    **kwargs,
) -> SimulationResult:
    """Build a SimulationHarness and run it to the end."""
    return SimulationHarness(flow, fail_at_index=fail_at_index, callbacks=callbacks, **kwargs).run()


def simulation_result_to_dict(result: SimulationResult) -> Dict[str, Any]:
    """Convert SimulationResult to a dictionary for serialization."""
    return {
        "run_id": result.run_id,
        "flow_id": result.flow_id,
        "state": result.state.value,
        "statuses": [s.value for s in result.statuses],
        "failed_index": result.failed_index,
        "error": result.error,
    }
