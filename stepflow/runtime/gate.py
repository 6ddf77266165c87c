"""
gate.py - Suspend/resume primitive for steps that need a human response.

The gate holds at most one PendingUserAction per run. It is owned by a
single engine instance; continuations never live outside the run that
created them.

An optional timeout can be configured. Without one (the default) a paused
run waits indefinitely.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Optional, Tuple

from .types import StepId, StepOutcome, _utcnow

logger = logging.getLogger(__name__)


class ResumeSignal(str, Enum):
    """What happened when a response was offered to the gate."""

    ACCEPTED = "accepted"
    NOTHING_PENDING = "nothing_pending"
    ALREADY_RESOLVED = "already_resolved"
    EXPIRED = "expired"


@dataclass
class PendingUserAction:
    """An outstanding request for human input.

    Attributes:
        block_index: 0-based index of the paused step.
        step_id: Id of the paused step.
        prompt: Question shown to the user.
        resolve: Continuation to call with the user's response.
        outcome: The NEEDS_USER_ACTION outcome that caused the pause.
        created_at: When the pause began.
    """

    block_index: int
    step_id: StepId
    prompt: str
    resolve: Callable[[Any], Any]
    outcome: StepOutcome
    created_at: datetime = field(default_factory=_utcnow)
    resolved: bool = False


class UserActionGate:
    """Holds the single pending user action of one run."""

    def __init__(self, timeout_seconds: Optional[float] = None):
        self._timeout_seconds = timeout_seconds
        self._pending: Optional[PendingUserAction] = None
        self._lock = threading.Lock()

    @property
    def pending(self) -> Optional[PendingUserAction]:
        return self._pending

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    @property
    def timeout_seconds(self) -> Optional[float]:
        return self._timeout_seconds

    def open(
        self,
        block_index: int,
        step_id: StepId,
        prompt: str,
        outcome: StepOutcome,
        resolve: Callable[[Any], Any],
    ) -> PendingUserAction:
        """Register a new pending action.

        Raises:
            RuntimeError: If another action is still outstanding.
        """
        with self._lock:
            if self._pending is not None:
                raise RuntimeError(
                    f"User action for step {self._pending.block_index} is still pending"
                )
            self._pending = PendingUserAction(
                block_index=block_index,
                step_id=step_id,
                prompt=prompt,
                resolve=resolve,
                outcome=outcome,
            )
            logger.info("Gate opened for step %d (%s): %s", block_index, step_id, prompt)
            return self._pending

    def take(
        self, action: Optional[PendingUserAction] = None
    ) -> Tuple[ResumeSignal, Optional[PendingUserAction]]:
        """Consume the pending action.

        Args:
            action: The specific action the caller was handed. When given, a
                resume for an action that was already resolved is rejected
                even if a newer action is now pending.

        Returns:
            (signal, action). The action is only returned with ACCEPTED or
            EXPIRED.
        """
        with self._lock:
            if action is not None and action.resolved:
                return ResumeSignal.ALREADY_RESOLVED, None
            if self._pending is None:
                return ResumeSignal.NOTHING_PENDING, None
            if action is not None and action is not self._pending:
                return ResumeSignal.ALREADY_RESOLVED, None
            taken = self._pending
            taken.resolved = True
            self._pending = None
            if self._is_expired(taken):
                return ResumeSignal.EXPIRED, taken
            return ResumeSignal.ACCEPTED, taken

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Whether the pending action has outlived the configured timeout."""
        pending = self._pending
        return pending is not None and self._is_expired(pending, now)

    def _is_expired(self, action: PendingUserAction, now: Optional[datetime] = None) -> bool:
        if self._timeout_seconds is None:
            return False
        now = now or _utcnow()
        return now - action.created_at > timedelta(seconds=self._timeout_seconds)

    def clear(self) -> Optional[PendingUserAction]:
        """Destroy any pending action (flow teardown)."""
        with self._lock:
            dropped = self._pending
            if dropped is not None:
                dropped.resolved = True
                logger.info("Gate cleared pending action for step %d", dropped.block_index)
            self._pending = None
            return dropped
