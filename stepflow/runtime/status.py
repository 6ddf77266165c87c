"""
status.py - Per-step status table and active-transition signal.

Both the execution engine and the simulation harness drive one of these, so
the canvas can render either without knowing which is behind it.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Tuple

from .types import ExecutionStatus

logger = logging.getLogger(__name__)

StatusListener = Callable[[int, ExecutionStatus], None]
TransitionListener = Callable[[Optional[Tuple[int, int]]], None]


class StepStatusTable:
    """ExecutionStatus for each step of one run.

    Invariant: at most one step is RUNNING at any time.
    """

    def __init__(
        self,
        total_steps: int,
        on_status_change: Optional[StatusListener] = None,
        on_transition: Optional[TransitionListener] = None,
    ):
        self._statuses: List[ExecutionStatus] = [ExecutionStatus.IDLE] * total_steps
        self._active_transition: Optional[Tuple[int, int]] = None
        self._on_status_change = on_status_change
        self._on_transition = on_transition

    def __len__(self) -> int:
        return len(self._statuses)

    def __getitem__(self, index: int) -> ExecutionStatus:
        return self._statuses[index]

    def snapshot(self) -> Tuple[ExecutionStatus, ...]:
        return tuple(self._statuses)

    @property
    def active_transition(self) -> Optional[Tuple[int, int]]:
        """(from_index, to_index) of the connection currently animating."""
        return self._active_transition

    @property
    def running_index(self) -> Optional[int]:
        for index, status in enumerate(self._statuses):
            if status == ExecutionStatus.RUNNING:
                return index
        return None

    def set(self, index: int, status: ExecutionStatus) -> None:
        """Set a step's status, enforcing the single-RUNNING invariant."""
        if status == ExecutionStatus.RUNNING:
            running = self.running_index
            if running is not None and running != index:
                raise RuntimeError(
                    f"Step {running} is still running; cannot start step {index}"
                )
        if self._statuses[index] == status:
            return
        self._statuses[index] = status
        if self._on_status_change is not None:
            try:
                self._on_status_change(index, status)
            except Exception:
                logger.exception("Status listener failed for step %d", index)

    def begin_transition(self, from_index: int, to_index: int) -> None:
        self._active_transition = (from_index, to_index)
        self._notify_transition()

    def end_transition(self) -> None:
        if self._active_transition is None:
            return
        self._active_transition = None
        self._notify_transition()

    def reset_from(self, index: int) -> None:
        """Return steps ``index..`` to IDLE (used by retry)."""
        for i in range(index, len(self._statuses)):
            self.set(i, ExecutionStatus.IDLE)

    def first_not_successful(self) -> Optional[int]:
        for index, status in enumerate(self._statuses):
            if status != ExecutionStatus.SUCCESS:
                return index
        return None

    def _notify_transition(self) -> None:
        if self._on_transition is None:
            return
        try:
            self._on_transition(self._active_transition)
        except Exception:
            logger.exception("Transition listener failed")
