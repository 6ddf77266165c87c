"""
types - Core type definitions for the stepflow runtime.

This package provides the data types shared by the engine, the simulation
harness, the auto-runner and the service layer. All types are dataclasses
with full type annotations plus ``*_to_dict`` / ``*_from_dict`` helpers.

Usage:
    from stepflow.runtime.types import (
        Flow, FlowStep, FlowBlock, BlockCategory, StepType, FlowTrigger,
        EngineState, ExecutionStatus, OutcomeKind,
        StepResult, StepOutcome, RunEvent, ExecutionSnapshot,
        RunId, StepId, BlockId, generate_run_id,
        flow_to_dict, flow_from_dict,
        step_result_to_dict, step_result_from_dict,
        run_event_to_dict, run_event_from_dict,
        execution_snapshot_to_dict, execution_snapshot_from_dict,
    )
"""

from __future__ import annotations

from ._ids import BlockId, RunId, StepId, generate_run_id
from ._time import _datetime_to_iso, _iso_to_datetime, _utcnow
from .flow import (
    BlockCategory,
    Flow,
    FlowBlock,
    FlowStep,
    FlowTrigger,
    StepType,
    flow_block_from_dict,
    flow_block_to_dict,
    flow_from_dict,
    flow_step_from_dict,
    flow_step_to_dict,
    flow_to_dict,
)
from .runs import (
    EngineState,
    ExecutionSnapshot,
    ExecutionStatus,
    OutcomeKind,
    RunEvent,
    StepOutcome,
    StepResult,
    execution_snapshot_from_dict,
    execution_snapshot_to_dict,
    run_event_from_dict,
    run_event_to_dict,
    step_result_from_dict,
    step_result_to_dict,
)

__all__ = [
    # Ids
    "RunId",
    "StepId",
    "BlockId",
    "generate_run_id",
    # Flow model
    "BlockCategory",
    "Flow",
    "FlowBlock",
    "FlowStep",
    "FlowTrigger",
    "StepType",
    "flow_block_from_dict",
    "flow_block_to_dict",
    "flow_from_dict",
    "flow_step_from_dict",
    "flow_step_to_dict",
    "flow_to_dict",
    # Runs
    "EngineState",
    "ExecutionSnapshot",
    "ExecutionStatus",
    "OutcomeKind",
    "RunEvent",
    "StepOutcome",
    "StepResult",
    "execution_snapshot_from_dict",
    "execution_snapshot_to_dict",
    "run_event_from_dict",
    "run_event_to_dict",
    "step_result_from_dict",
    "step_result_to_dict",
    # Time helpers
    "_datetime_to_iso",
    "_iso_to_datetime",
    "_utcnow",
]
