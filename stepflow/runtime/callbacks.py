"""
callbacks.py - Observer interface shared by the engine and the simulator.

All callbacks are fire-and-forget notifications. A callback that raises is
logged and the run carries on; the only callback whose effect matters is
``on_user_action_required``, whose ``resume`` continuation must eventually be
called for the run to continue.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

from .errors import StepExecutionError
from .types import ExecutionStatus, StepResult

logger = logging.getLogger(__name__)

ResumeFn = Callable[[Any], Any]


@dataclass
class EngineCallbacks:
    """Lifecycle notifications emitted by a run.

    Attributes:
        on_block_start: (index) a step is about to execute.
        on_block_complete: (index, result) a step succeeded.
        on_user_action_required: (index, prompt, resume) the run paused.
        on_error: (error, index) a step failed and the run halted.
        on_complete: () every step succeeded.
        on_status_change: (index, status) a step's ExecutionStatus changed.
        on_transition: ((from, to) | None) the active connection changed.
    """

    on_block_start: Optional[Callable[[int], None]] = None
    on_block_complete: Optional[Callable[[int, StepResult], None]] = None
    on_user_action_required: Optional[Callable[[int, str, ResumeFn], None]] = None
    on_error: Optional[Callable[[StepExecutionError, int], None]] = None
    on_complete: Optional[Callable[[], None]] = None
    on_status_change: Optional[Callable[[int, ExecutionStatus], None]] = None
    on_transition: Optional[Callable[[Optional[Tuple[int, int]]], None]] = None


def notify(callback: Optional[Callable[..., Any]], name: str, *args: Any) -> None:
    """Invoke a callback if set, logging (not propagating) its failures."""
    if callback is None:
        return
    try:
        callback(*args)
    except Exception:
        logger.exception("Callback %s raised; continuing", name)
