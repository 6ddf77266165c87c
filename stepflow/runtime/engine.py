"""
engine.py - State machine that runs a flow's steps in order.

The ExecutionEngine owns everything mutable about one run: its private copy of
the flow, the Data Bus, the User Action Gate and the per-step status table.
Nothing is shared between engines, so concurrent runs never interfere.

Lifecycle:
    created -> initialized -> running -> (paused <-> running)
            -> completed | failed | cancelled

    failed -> initialized   via reset_step() / retry_from()
    any non-terminal state -> cancelled   via cancel()

The loop runs in the caller's thread. The executor call is the only blocking
point and is made without holding the engine lock, so cancel() and
get_status() stay responsive from other threads. A step that returns
NEEDS_USER_ACTION makes start_execution() return with the engine PAUSED;
resume() continues the run in whichever thread calls it.

Two driving modes share the same loop:
- start_execution(): run until completion, failure or a pause.
- advance(): run exactly one step. This is what the AutoRunner uses so it can
  pace steps itself. In this mode resume() only finalizes the paused step.

Usage:
    from stepflow.runtime.engine import ExecutionEngine

    engine = ExecutionEngine(flow, callbacks=callbacks, registry=registry)
    engine.initialize()
    status = engine.start_execution()
    if status.state == EngineState.PAUSED:
        engine.resume("yes")
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from .callbacks import EngineCallbacks, notify
from .data_bus import DataBus
from .errors import (
    CancellationError,
    GateMisuseError,
    InvalidStateError,
    StepExecutionError,
)
from .executors import ExecutorRegistry, StepContext, StepExecutor
from .gate import PendingUserAction, ResumeSignal, UserActionGate
from .status import StepStatusTable
from .types import (
    EngineState,
    ExecutionSnapshot,
    ExecutionStatus,
    Flow,
    FlowBlock,
    FlowStep,
    OutcomeKind,
    RunEvent,
    RunId,
    StepOutcome,
    StepResult,
    _utcnow,
    generate_run_id,
)
from .validation import validate_flow

logger = logging.getLogger(__name__)

EventSink = Callable[[RunEvent], None]

USER_ACTION_TIMEOUT_MESSAGE = "user action timed out"

# Allowed engine state transitions
_TRANSITIONS: Dict[EngineState, Set[EngineState]] = {
    EngineState.CREATED: {EngineState.INITIALIZED, EngineState.CANCELLED},
    EngineState.INITIALIZED: {EngineState.RUNNING, EngineState.CANCELLED},
    EngineState.RUNNING: {
        EngineState.PAUSED,
        EngineState.COMPLETED,
        EngineState.FAILED,
        EngineState.CANCELLED,
    },
    EngineState.PAUSED: {EngineState.RUNNING, EngineState.FAILED, EngineState.CANCELLED},
    EngineState.FAILED: {EngineState.INITIALIZED, EngineState.CANCELLED},
    EngineState.COMPLETED: set(),
    EngineState.CANCELLED: set(),
}


class ExecutionEngine:
    """Runs one flow, one step at a time.

    Args:
        flow: The flow to run. The engine works on its own copy; the caller's
            definition is never mutated.
        run_id: Identifier for this run. Generated if omitted.
        callbacks: Lifecycle observers. Exceptions they raise are logged.
        registry: Executors for the flow's blocks. Defaults to the demo
            registry.
        event_sink: Receives every RunEvent as it is emitted.
        pause_timeout_seconds: How long a pending user action stays valid.
            None waits indefinitely.
        context_extra: Copied into every StepContext.extra.
    """

    def __init__(
        self,
        flow: Flow,
        run_id: Optional[RunId] = None,
        callbacks: Optional[EngineCallbacks] = None,
        registry: Optional[ExecutorRegistry] = None,
        event_sink: Optional[EventSink] = None,
        pause_timeout_seconds: Optional[float] = None,
        context_extra: Optional[Dict[str, Any]] = None,
    ):
        if registry is None:
            from .executors.demo import build_demo_registry

            registry = build_demo_registry()

        self._run_id = run_id or generate_run_id()
        self._flow = replace(flow, steps=tuple(replace(s, completed=False) for s in flow.steps))
        self._callbacks = callbacks or EngineCallbacks()
        self._registry = registry
        self._event_sink = event_sink
        self._context_extra = dict(context_extra or {})

        self._steps: List[FlowStep] = self._flow.ordered_steps()
        self._blocks: List[Optional[FlowBlock]] = [self._flow.block_for_step(s) for s in self._steps]
        self._executors: List[StepExecutor] = []

        self._lock = threading.RLock()
        self._cancel_event = threading.Event()
        self._state = EngineState.CREATED
        self._step_mode = False
        self._in_flight = False
        self._current_index: Optional[int] = None
        self._error: Optional[StepExecutionError] = None

        self._data_bus = DataBus(self._run_id)
        self._gate = UserActionGate(pause_timeout_seconds)
        self._statuses = StepStatusTable(
            len(self._steps),
            on_status_change=self._callbacks.on_status_change,
            on_transition=self._callbacks.on_transition,
        )
        self._events: List[RunEvent] = []
        self._seq = 0

    # -------------------------------------------------------------------------
    # Read-only views
    # -------------------------------------------------------------------------

    @property
    def run_id(self) -> RunId:
        return self._run_id

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def flow(self) -> Flow:
        """The engine's copy of the flow, with ``completed`` flags applied."""
        return self._flow

    @property
    def data_bus(self) -> DataBus:
        return self._data_bus

    @property
    def statuses(self) -> Tuple[ExecutionStatus, ...]:
        return self._statuses.snapshot()

    @property
    def pending_action(self) -> Optional[PendingUserAction]:
        return self._gate.pending

    @property
    def error(self) -> Optional[StepExecutionError]:
        return self._error

    @property
    def events(self) -> List[RunEvent]:
        with self._lock:
            return list(self._events)

    @property
    def total_steps(self) -> int:
        return len(self._steps)

    def get_status(self) -> ExecutionSnapshot:
        """Point-in-time view of the run."""
        with self._lock:
            pending = self._gate.pending
            return ExecutionSnapshot(
                run_id=self._run_id,
                flow_id=self._flow.id,
                state=self._state,
                current_index=self._current_index,
                total_steps=len(self._steps),
                statuses=self._statuses.snapshot(),
                results=dict(self._data_bus.snapshot()),
                pending_prompt=pending.prompt if pending else None,
                pending_index=pending.block_index if pending else None,
                error=self._error.message if self._error else None,
                active_transition=self._statuses.active_transition,
            )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def initialize(self) -> None:
        """Validate the flow and resolve an executor for every step.

        Raises:
            ValidationError: The flow is malformed or a step has no executor.
                The engine stays CREATED.
        """
        with self._lock:
            self._ensure_not_terminal("initialize")
            if self._state != EngineState.CREATED:
                raise InvalidStateError(f"initialize() requires created state, engine is {self._state.value}")

            result = validate_flow(self._flow)
            executors: List[StepExecutor] = []
            for step, block in zip(self._steps, self._blocks):
                executor = self._registry.resolve(step, block)
                if executor is None and result.ok:
                    category = block.category.value if block else "agent"
                    option = block.option if block else "*"
                    result.add(
                        "NO_EXECUTOR",
                        f"step:{step.id}",
                        f"has no executor registered for {category}/{option}",
                    )
                executors.append(executor)
            result.raise_if_invalid()

            self._executors = executors
            self._transition(EngineState.INITIALIZED)
            self._emit(
                "run_initialized",
                payload={
                    "total_steps": len(self._steps),
                    "executors": [e.executor_id for e in executors],
                },
            )
            logger.info(
                "Run %s initialized for flow '%s' (%d steps)",
                self._run_id,
                self._flow.id,
                len(self._steps),
            )

    def start_execution(self) -> ExecutionSnapshot:
        """Run from the first step that has not succeeded until the run
        completes, fails, pauses or is cancelled."""
        with self._lock:
            self._ensure_not_terminal("start_execution")
            if self._state != EngineState.INITIALIZED:
                raise InvalidStateError(
                    f"start_execution() requires initialized state, engine is {self._state.value}"
                )
            self._step_mode = False
            self._start_running()
        self._drive(max_steps=None)
        return self.get_status()

    def advance(self) -> ExecutionSnapshot:
        """Execute exactly one step.

        Starts the run if it is still INITIALIZED. If that step succeeds and
        was the last one, the run completes.
        """
        with self._lock:
            self._ensure_not_terminal("advance")
            if self._state == EngineState.INITIALIZED:
                self._start_running()
            elif self._state != EngineState.RUNNING or self._in_flight:
                raise InvalidStateError(f"advance() not allowed while {self._state.value}")
            self._step_mode = True
        self._drive(max_steps=1)
        return self.get_status()

    def resume(self, response: Any = None) -> ExecutionSnapshot:
        """Answer the pending user action and continue the run.

        Raises:
            GateMisuseError: Nothing is pending. Engine state is unchanged.
            CancellationError: The run is already cancelled or completed.
        """
        return self._resume(response, None)

    def expire_stale_action(self) -> bool:
        """Fail the paused step if its user action has outlived the timeout.

        Returns:
            True if an action expired.
        """
        with self._lock:
            if self._state != EngineState.PAUSED or not self._gate.is_expired():
                return False
            signal, action = self._gate.take()
            if signal != ResumeSignal.EXPIRED or action is None:
                return False
            logger.warning("Run %s: user action for step %d expired", self._run_id, action.block_index)
            self._fail_step(action.block_index, USER_ACTION_TIMEOUT_MESSAGE)
            return True

    def cancel(self, reason: str = "user_requested") -> ExecutionSnapshot:
        """Stop the run.

        With no step in flight the engine moves to CANCELLED immediately.
        Otherwise the in-flight executor is asked to stop through its
        ``cancel_event`` and the engine cancels as soon as it returns.

        Raises:
            CancellationError: The run is already cancelled or completed.
        """
        with self._lock:
            self._ensure_not_terminal("cancel")
            self._cancel_event.set()
            if self._in_flight:
                logger.info(
                    "Run %s: cancel requested while step %s is executing",
                    self._run_id,
                    self._current_index,
                )
                self._emit("cancel_requested", step_index=self._current_index, payload={"reason": reason})
            else:
                self._finish_cancel(reason)
            return self.get_status()

    def reset_step(self, index: int) -> None:
        """Return the failed step to IDLE so start_execution() can run it again."""
        with self._lock:
            failed_index = self._require_failed("reset_step")
            if index != failed_index:
                raise InvalidStateError(f"Step {index} is not the failed step ({failed_index})")
            self._statuses.set(index, ExecutionStatus.IDLE)
            self._error = None
            self._cancel_event.clear()
            self._transition(EngineState.INITIALIZED)
            self._emit("step_reset", step_index=index)
            logger.info("Run %s: reset failed step %d", self._run_id, index)

    def retry_from(self, index: int, restart: bool = True) -> ExecutionSnapshot:
        """Reset steps ``index..`` and run again.

        Results recorded for steps before ``index`` are kept as they are and
        are not recomputed.

        Args:
            index: First step to run again. Must not be after the failed step.
            restart: Call start_execution() straight away. The AutoRunner
                passes False and drives the steps itself.
        """
        with self._lock:
            failed_index = self._require_failed("retry_from")
            if not 0 <= index <= failed_index:
                raise InvalidStateError(
                    f"retry_from({index}) must target a step between 0 and the failed step {failed_index}"
                )
            retried = self._steps[index:]
            self._statuses.reset_from(index)
            self._data_bus.rewind(s.id for s in retried)
            for step in retried:
                self._flow = self._flow.with_step_completed(step.id, False)
            self._error = None
            self._current_index = None
            self._cancel_event.clear()
            self._transition(EngineState.INITIALIZED)
            self._emit("step_reset", step_index=index, payload={"reset_steps": [s.id for s in retried]})
            logger.info("Run %s: retrying from step %d", self._run_id, index)

        if restart:
            return self.start_execution()
        return self.get_status()

    # -------------------------------------------------------------------------
    # Control loop
    # -------------------------------------------------------------------------

    def _drive(self, max_steps: Optional[int]) -> None:
        executed = 0
        while True:
            with self._lock:
                if self._state != EngineState.RUNNING or self._in_flight:
                    return
                if self._cancel_event.is_set():
                    self._finish_cancel("user_requested")
                    return
                index = self._statuses.first_not_successful()
                if index is None:
                    self._complete_run()
                    return
                if max_steps is not None and executed >= max_steps:
                    return
                prepared = self._begin_step(index)
                if prepared is None:
                    return
            executed += 1

            step, block, executor, ctx = prepared
            snapshot = self._data_bus.snapshot()
            outcome = self._call_executor(
                index, lambda: executor.execute(step, block, snapshot, ctx)
            )

            with self._lock:
                self._in_flight = False
                self._apply_outcome(index, outcome)

    def _begin_step(
        self, index: int
    ) -> Optional[Tuple[FlowStep, Optional[FlowBlock], StepExecutor, StepContext]]:
        step = self._steps[index]
        self._current_index = index
        self._statuses.end_transition()
        notify(self._callbacks.on_block_start, "on_block_start", index)
        # on_block_start may have cancelled the run
        if self._state != EngineState.RUNNING:
            return None

        self._statuses.set(index, ExecutionStatus.RUNNING)
        executor = self._executors[index]
        self._emit(
            "step_started",
            step_index=index,
            payload={"executor": executor.executor_id},
        )
        logger.info("Run %s: step %d (%s) started", self._run_id, index, step.id)
        ctx = StepContext(
            run_id=self._run_id,
            flow_id=self._flow.id,
            step_index=index,
            total_steps=len(self._steps),
            cancel_event=self._cancel_event,
            extra=dict(self._context_extra),
        )
        self._in_flight = True
        return step, self._blocks[index], executor, ctx

    def _call_executor(self, index: int, call: Callable[[], StepOutcome]) -> StepOutcome:
        try:
            outcome = call()
        except Exception as exc:
            logger.exception("Run %s: executor for step %d raised", self._run_id, index)
            return StepOutcome.failed(str(exc) or type(exc).__name__)
        if not isinstance(outcome, StepOutcome):
            return StepOutcome.failed(f"Executor returned {type(outcome).__name__}, not a StepOutcome")
        return outcome

    def _apply_outcome(self, index: int, outcome: StepOutcome) -> None:
        step = self._steps[index]

        if outcome.kind == OutcomeKind.COMPLETED:
            result = outcome.result
            if result is None:
                outcome = StepOutcome.failed("Executor completed without a result")
            elif result.step_id != step.id:
                outcome = StepOutcome.failed(
                    f"Executor returned a result for step '{result.step_id}'"
                )

        if self._cancel_event.is_set():
            if outcome.kind == OutcomeKind.COMPLETED:
                self._complete_step(index, outcome.result)
            self._finish_cancel("user_requested")
            return

        if outcome.kind == OutcomeKind.COMPLETED:
            self._complete_step(index, outcome.result)
        elif outcome.kind == OutcomeKind.NEEDS_USER_ACTION:
            self._pause(index, outcome)
        else:
            self._fail_step(index, outcome.error or "Step failed")

    def _complete_step(self, index: int, result: StepResult) -> None:
        step = self._steps[index]
        self._data_bus.record(step.id, result)
        self._flow = self._flow.with_step_completed(step.id)
        self._statuses.set(index, ExecutionStatus.SUCCESS)
        self._emit(
            "step_completed",
            step_index=index,
            payload={"block_name": result.block_name, "data_keys": sorted(result.data)},
        )
        logger.info("Run %s: step %d (%s) succeeded", self._run_id, index, step.id)
        if index + 1 < len(self._steps) and not self._cancel_event.is_set():
            self._statuses.begin_transition(index, index + 1)
        notify(self._callbacks.on_block_complete, "on_block_complete", index, result)

    def _pause(self, index: int, outcome: StepOutcome) -> None:
        step = self._steps[index]
        prompt = outcome.prompt or f'Step "{step.title}" requires your input.'

        def resume_fn(response: Any = None) -> ExecutionSnapshot:
            return self._resume(response, action)

        action = self._gate.open(index, step.id, prompt, outcome, resume_fn)
        self._transition(EngineState.PAUSED)
        self._emit("user_action_required", step_index=index, payload={"prompt": prompt})
        self._emit("run_paused", step_index=index)
        logger.info("Run %s: paused at step %d waiting for user action", self._run_id, index)
        notify(
            self._callbacks.on_user_action_required,
            "on_user_action_required",
            index,
            prompt,
            resume_fn,
        )

    def _fail_step(self, index: int, message: str) -> None:
        step = self._steps[index]
        error = StepExecutionError(message, step_index=index, step_id=step.id)
        self._error = error
        self._statuses.set(index, ExecutionStatus.FAILED)
        self._statuses.end_transition()
        self._emit("step_failed", step_index=index, payload={"error": message})
        self._transition(EngineState.FAILED)
        self._emit("run_failed", step_index=index, payload={"error": message})
        logger.warning("Run %s: step %d (%s) failed: %s", self._run_id, index, step.id, message)
        notify(self._callbacks.on_error, "on_error", error, index)

    def _complete_run(self) -> None:
        self._statuses.end_transition()
        self._transition(EngineState.COMPLETED)
        self._emit("run_completed", payload={"results": len(self._data_bus)})
        logger.info("Run %s completed", self._run_id)
        notify(self._callbacks.on_complete, "on_complete")

    def _finish_cancel(self, reason: str) -> None:
        self._cancel_event.set()
        dropped = self._gate.clear()
        for index, status in enumerate(self._statuses.snapshot()):
            if status == ExecutionStatus.RUNNING:
                self._statuses.set(index, ExecutionStatus.IDLE)
        self._statuses.end_transition()
        self._transition(EngineState.CANCELLED)
        self._emit(
            "run_cancelled",
            step_index=self._current_index,
            payload={"reason": reason, "dropped_user_action": dropped is not None},
        )
        logger.info("Run %s cancelled (%s)", self._run_id, reason)

    def _resume(self, response: Any, action: Optional[PendingUserAction]) -> ExecutionSnapshot:
        with self._lock:
            self._ensure_not_terminal("resume")
            if action is not None and action.resolved:
                raise GateMisuseError("This user action has already been resolved")
            if self._state != EngineState.PAUSED:
                raise GateMisuseError(f"No user action is pending (engine is {self._state.value})")

            signal, taken = self._gate.take(action)
            if signal == ResumeSignal.NOTHING_PENDING:
                raise GateMisuseError("No user action is pending")
            if signal == ResumeSignal.ALREADY_RESOLVED:
                raise GateMisuseError("This user action has already been resolved")

            index = taken.block_index
            if signal == ResumeSignal.EXPIRED:
                logger.warning("Run %s: resume arrived after the user action expired", self._run_id)
                self._fail_step(index, USER_ACTION_TIMEOUT_MESSAGE)
                return self.get_status()

            step = self._steps[index]
            block = self._blocks[index]
            executor = self._executors[index]
            self._transition(EngineState.RUNNING)
            self._emit("run_resumed", step_index=index, payload={"response": response})
            logger.info("Run %s: resumed at step %d", self._run_id, index)
            self._in_flight = True

        outcome = self._call_executor(
            index,
            lambda: executor.complete_user_action(step, block, taken.outcome, response),
        )
        with self._lock:
            self._in_flight = False
            self._apply_outcome(index, outcome)
            step_mode = self._step_mode

        self._drive(max_steps=0 if step_mode else None)
        return self.get_status()

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _start_running(self) -> None:
        self._transition(EngineState.RUNNING)
        self._emit("run_started", payload={"from_index": self._statuses.first_not_successful()})
        logger.info("Run %s started", self._run_id)

    def _require_failed(self, operation: str) -> int:
        self._ensure_not_terminal(operation)
        if self._state != EngineState.FAILED:
            raise InvalidStateError(f"{operation}() requires failed state, engine is {self._state.value}")
        failed = [i for i, s in enumerate(self._statuses.snapshot()) if s == ExecutionStatus.FAILED]
        if not failed:
            raise InvalidStateError(f"{operation}(): no step is marked failed")
        return failed[0]

    def _ensure_not_terminal(self, operation: str) -> None:
        if self._state.is_terminal:
            raise CancellationError(f"{operation}() called on a {self._state.value} run")

    def _transition(self, target: EngineState) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise InvalidStateError(f"Illegal transition {self._state.value} -> {target.value}")
        logger.debug("Run %s: %s -> %s", self._run_id, self._state.value, target.value)
        self._state = target

    def _emit(
        self,
        kind: str,
        step_index: Optional[int] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> RunEvent:
        self._seq += 1
        event = RunEvent(
            run_id=self._run_id,
            ts=_utcnow(),
            kind=kind,
            flow_id=self._flow.id,
            seq=self._seq,
            step_id=self._steps[step_index].id if step_index is not None else None,
            step_index=step_index,
            payload=dict(payload or {}),
        )
        self._events.append(event)
        notify(self._event_sink, "event_sink", event)
        return event
