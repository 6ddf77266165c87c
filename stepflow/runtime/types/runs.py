"""Run types for the execution lifecycle and event tracking.

This module contains the per-run transient types: engine and step statuses,
step results and outcomes, run events, and the status snapshot returned by
``ExecutionEngine.get_status()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ._ids import RunId, StepId, _generate_event_id
from ._time import _datetime_to_iso, _iso_to_datetime, _utcnow
from .flow import BlockCategory


class EngineState(str, Enum):
    """Lifecycle state of one execution engine run."""

    CREATED = "created"
    INITIALIZED = "initialized"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (EngineState.COMPLETED, EngineState.CANCELLED)


class ExecutionStatus(str, Enum):
    """Status of a single step within a run."""

    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class OutcomeKind(str, Enum):
    """Kinds of value a step executor may return."""

    COMPLETED = "completed"
    NEEDS_USER_ACTION = "needs_user_action"
    FAILED = "failed"


@dataclass(frozen=True)
class StepResult:
    """Output of one successfully executed step.

    Immutable once produced. The Data Bus stores its own copy.

    Attributes:
        step_id: Step that produced the result.
        block_name: Name of the block (or step title for agent steps).
        data: Output values made visible to later steps.
        executed_at: When the step finished.
        category: Category of the owning block, for convenience lookups.
    """

    step_id: StepId
    block_name: str
    data: Dict[str, Any] = field(default_factory=dict)
    executed_at: datetime = field(default_factory=_utcnow)
    category: Optional[BlockCategory] = None


@dataclass(frozen=True)
class StepOutcome:
    """What a step executor returns.

    Build instances with the ``completed``, ``needs_user_action`` and
    ``failed`` constructors rather than directly.

    Attributes:
        kind: Which outcome this is.
        result: The StepResult for COMPLETED outcomes.
        prompt: Question shown to the user for NEEDS_USER_ACTION outcomes.
        partial_data: Data gathered before the pause; folded into the final
            result together with the user's response.
        error: Error message for FAILED outcomes.
    """

    kind: OutcomeKind
    result: Optional[StepResult] = None
    prompt: Optional[str] = None
    partial_data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @classmethod
    def completed(cls, result: StepResult) -> "StepOutcome":
        return cls(kind=OutcomeKind.COMPLETED, result=result)

    @classmethod
    def needs_user_action(
        cls, prompt: str, partial_data: Optional[Dict[str, Any]] = None
    ) -> "StepOutcome":
        return cls(
            kind=OutcomeKind.NEEDS_USER_ACTION,
            prompt=prompt,
            partial_data=dict(partial_data or {}),
        )

    @classmethod
    def failed(cls, error: str) -> "StepOutcome":
        return cls(kind=OutcomeKind.FAILED, error=error)


@dataclass
class RunEvent:
    """A single event in a run's timeline.

    Attributes:
        run_id: The run this event belongs to.
        ts: Timestamp of the event.
        kind: Event type. Standard types include:
              - "run_initialized", "run_started", "run_completed"
              - "step_started", "step_completed", "step_failed", "step_reset"
              - "user_action_required", "run_paused", "run_resumed"
              - "run_failed", "cancel_requested", "run_cancelled"
        flow_id: The flow being executed.
        event_id: Globally unique identifier for this event.
        seq: Monotonic sequence number within the run.
        step_id: Optional step identifier.
        step_index: Optional 0-based step position.
        payload: Arbitrary event-specific data.
    """

    run_id: RunId
    ts: datetime
    kind: str
    flow_id: str
    event_id: str = field(default_factory=_generate_event_id)
    seq: int = 0
    step_id: Optional[str] = None
    step_index: Optional[int] = None
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ExecutionSnapshot:
    """Point-in-time view of an engine run (what the UI polls)."""

    run_id: RunId
    flow_id: str
    state: EngineState
    current_index: Optional[int]
    total_steps: int
    statuses: Tuple[ExecutionStatus, ...]
    results: Dict[StepId, StepResult]
    pending_prompt: Optional[str] = None
    pending_index: Optional[int] = None
    error: Optional[str] = None
    active_transition: Optional[Tuple[int, int]] = None

    @property
    def is_executing(self) -> bool:
        return self.state == EngineState.RUNNING

    @property
    def is_completed(self) -> bool:
        return self.state == EngineState.COMPLETED


# =============================================================================
# Serialization Functions
# =============================================================================


def step_result_to_dict(result: StepResult) -> Dict[str, Any]:
    """Convert StepResult to a dictionary for serialization."""
    return {
        "step_id": result.step_id,
        "block_name": result.block_name,
        "data": dict(result.data),
        "executed_at": _datetime_to_iso(result.executed_at),
        "category": result.category.value if result.category else None,
    }


def step_result_from_dict(data: Dict[str, Any]) -> StepResult:
    """Parse StepResult from a dictionary."""
    category = data.get("category")
    return StepResult(
        step_id=data.get("step_id", ""),
        block_name=data.get("block_name", ""),
        data=dict(data.get("data", {})),
        executed_at=_iso_to_datetime(data.get("executed_at")) or _utcnow(),
        category=BlockCategory(category) if category else None,
    )


def run_event_to_dict(event: RunEvent) -> Dict[str, Any]:
    """Convert RunEvent to a dictionary for serialization."""
    return {
        "run_id": event.run_id,
        "ts": _datetime_to_iso(event.ts),
        "kind": event.kind,
        "flow_id": event.flow_id,
        "event_id": event.event_id,
        "seq": event.seq,
        "step_id": event.step_id,
        "step_index": event.step_index,
        "payload": dict(event.payload),
    }


def run_event_from_dict(data: Dict[str, Any]) -> RunEvent:
    """Parse RunEvent from a dictionary.

    Events written without an event_id get a fresh one.
    """
    return RunEvent(
        run_id=data.get("run_id", ""),
        ts=_iso_to_datetime(data.get("ts")) or _utcnow(),
        kind=data.get("kind", ""),
        flow_id=data.get("flow_id", ""),
        event_id=data.get("event_id") or _generate_event_id(),
        seq=data.get("seq", 0),
        step_id=data.get("step_id"),
        step_index=data.get("step_index"),
        payload=dict(data.get("payload", {})),
    )


def execution_snapshot_to_dict(snapshot: ExecutionSnapshot) -> Dict[str, Any]:
    """Convert ExecutionSnapshot to a dictionary for serialization."""
    return {
        "run_id": snapshot.run_id,
        "flow_id": snapshot.flow_id,
        "state": snapshot.state.value,
        "current_index": snapshot.current_index,
        "total_steps": snapshot.total_steps,
        "statuses": [s.value for s in snapshot.statuses],
        "results": {k: step_result_to_dict(v) for k, v in snapshot.results.items()},
        "pending_prompt": snapshot.pending_prompt,
        "pending_index": snapshot.pending_index,
        "error": snapshot.error,
        "active_transition": list(snapshot.active_transition)
        if snapshot.active_transition
        else None,
    }


def execution_snapshot_from_dict(data: Dict[str, Any]) -> ExecutionSnapshot:
    """Rebuild an ExecutionSnapshot from a stored summary."""
    transition = data.get("active_transition")
    return ExecutionSnapshot(
        run_id=data["run_id"],
        flow_id=data["flow_id"],
        state=EngineState(data["state"]),
        current_index=data.get("current_index"),
        total_steps=data.get("total_steps", len(data.get("statuses", []))),
        statuses=tuple(ExecutionStatus(s) for s in data.get("statuses", [])),
        results={k: step_result_from_dict(v) for k, v in data.get("results", {}).items()},
        pending_prompt=data.get("pending_prompt"),
        pending_index=data.get("pending_index"),
        error=data.get("error"),
        active_transition=tuple(transition) if transition else None,
    )
