"""
autorunner.py - Drives an engine one step at a time until it stops.

The AutoRunner calls ``ExecutionEngine.advance()`` for each step, waiting a
configurable delay between a step succeeding and the next one starting so a
front-end has time to show the transition. It stops when the run:

- completes
- fails (the error is surfaced, nothing is retried automatically)
- pauses for user action (call ``resume(response)`` to continue)

The runner remembers the last step index it triggered. A step is never
triggered twice, even if ``run()`` is called again from a UI refresh or a
second thread while a step is already in flight. A step reset on the engine
(``reset_step``, ``retry_from``) is picked up by the next ``run()``.

Usage:
    runner = AutoRunner(engine, listener=print)
    runner.run()
    if engine.state == EngineState.PAUSED:
        runner.resume("approved")
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from .callbacks import notify
from .engine import ExecutionEngine
from .errors import CancellationError, InvalidStateError
from .types import EngineState, ExecutionSnapshot, ExecutionStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AutoRunEvent:
    """Narration for a conversational front-end.

    Attributes:
        kind: step_triggered | step_succeeded | waiting_for_user |
            stopped_on_error | completed
        step_index: Step the event is about, if any.
        message: Human-readable line.
        payload: Extra details (prompt, error...).
    """

    kind: str
    step_index: Optional[int] = None
    message: str = ""
    payload: Dict[str, Any] = field(default_factory=dict)


AutoRunListener = Callable[[AutoRunEvent], None]


class AutoRunner:
    """Advances an ExecutionEngine until completion, failure or a pause."""

    def __init__(
        self,
        engine: ExecutionEngine,
        delay_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        listener: Optional[AutoRunListener] = None,
    ):
        if delay_seconds is None:
            from stepflow.config.runtime_config import get_auto_run_delay_seconds

            delay_seconds = get_auto_run_delay_seconds()
        self._engine = engine
        self._delay_seconds = delay_seconds
        self._sleep = sleep
        self._listener = listener
        self._last_triggered_index = -1
        self._guard = threading.Lock()

    @property
    def engine(self) -> ExecutionEngine:
        return self._engine

    @property
    def last_triggered_index(self) -> int:
        """Index of the last step this runner started (-1 before the first)."""
        return self._last_triggered_index

    def run(self) -> ExecutionSnapshot:
        """Advance until the run stops. Re-entrant calls return immediately."""
        if not self._guard.acquire(blocking=False):
            logger.debug("AutoRunner for run %s already active", self._engine.run_id)
            return self._engine.get_status()
        try:
            return self._loop()
        finally:
            self._guard.release()

    def resume(self, response: Any = None) -> ExecutionSnapshot:
        """Answer the pending user action, then keep advancing."""
        self._engine.resume(response)
        return self.run()

    def rewind(self, index: int) -> None:
        """Reset the failed run to ``index`` without advancing."""
        self._engine.retry_from(index, restart=False)
        self._last_triggered_index = index - 1

    def retry_from(self, index: int) -> ExecutionSnapshot:
        """Reset the failed run to ``index`` and advance again from there."""
        self.rewind(index)
        return self.run()

    def _loop(self) -> ExecutionSnapshot:
        engine = self._engine
        if engine.state == EngineState.CREATED:
            engine.initialize()

        while True:
            status = engine.get_status()
            if self._stopped(status):
                return status

            next_index = _first_not_successful(status)
            if (
                next_index is not None
                and next_index <= self._last_triggered_index
                and status.state == EngineState.INITIALIZED
            ):
                # Reset on the engine directly (reset_step / retry_from)
                self._last_triggered_index = next_index - 1
            if next_index is None or next_index <= self._last_triggered_index:
                # Already triggered and still in flight elsewhere
                return status

            if next_index > 0 and self._delay_seconds > 0:
                self._sleep(self._delay_seconds)
                status = engine.get_status()
                if self._stopped(status):
                    return status

            try:
                status = engine.advance()
            except (CancellationError, InvalidStateError) as exc:
                logger.info("AutoRunner for run %s stopped: %s", engine.run_id, exc)
                return engine.get_status()

            step = engine.flow.ordered_steps()[next_index]
            self._last_triggered_index = next_index
            self._narrate(
                "step_triggered",
                next_index,
                f"Ran step {next_index + 1} of {status.total_steps}: {step.title}",
            )

            if status.statuses[next_index] == ExecutionStatus.SUCCESS:
                self._narrate("step_succeeded", next_index, f"Step {next_index + 1} completed")

    def _stopped(self, status: ExecutionSnapshot) -> bool:
        if status.state == EngineState.COMPLETED:
            self._narrate("completed", None, "All steps completed successfully")
            return True
        if status.state == EngineState.FAILED:
            self._narrate(
                "stopped_on_error",
                status.current_index,
                f"Execution stopped: {status.error}",
                {"error": status.error},
            )
            return True
        if status.state == EngineState.PAUSED:
            self._narrate(
                "waiting_for_user",
                status.pending_index,
                status.pending_prompt or "Waiting for your input",
                {"prompt": status.pending_prompt},
            )
            return True
        return status.state in (EngineState.CANCELLED, EngineState.CREATED)

    def _narrate(
        self,
        kind: str,
        step_index: Optional[int],
        message: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        logger.debug("AutoRunner %s: %s", kind, message)
        notify(
            self._listener,
            "auto_run_listener",
            AutoRunEvent(kind=kind, step_index=step_index, message=message, payload=dict(payload or {})),
        )


def _first_not_successful(status: ExecutionSnapshot) -> Optional[int]:
    for index, step_status in enumerate(status.statuses):
        if step_status != ExecutionStatus.SUCCESS:
            return index
    return None
