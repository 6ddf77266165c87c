# stepflow/runtime package
# Executes flows step by step and tracks their runs.
#
# Core components:
#   - types: Flow model, step results/outcomes, run events, status snapshots
#   - validation: Pre-flight checks for flow definitions
#   - executors: StepExecutor contract, ExecutorRegistry, demo executors
#   - engine: ExecutionEngine state machine
#   - simulation: No-I/O SimulationHarness
#   - autorunner: AutoRunner that paces an engine step by step
#   - storage: Disk I/O for run history
#   - service: RunService singleton for orchestration
#
# Usage:
#     from stepflow.runtime import ExecutionEngine, EngineCallbacks
#     engine = ExecutionEngine(flow, callbacks=EngineCallbacks(on_complete=done))
#     engine.initialize()
#     engine.start_execution()

from typing import TYPE_CHECKING

from .autorunner import AutoRunEvent, AutoRunner
from .callbacks import EngineCallbacks
from .data_bus import DataBus, DataBusSnapshot
from .engine import ExecutionEngine
from .errors import (
    CancellationError,
    GateMisuseError,
    InvalidStateError,
    RunNotFoundError,
    StepExecutionError,
    StepflowError,
    ValidationError,
    ValidationIssue,
)
from .executors import ExecutorRegistry, StepContext, StepExecutor, build_demo_registry
from .gate import PendingUserAction, UserActionGate
from .simulation import SimulationHarness, SimulationResult, simulate
from .types import (
    BlockCategory,
    EngineState,
    ExecutionSnapshot,
    ExecutionStatus,
    Flow,
    FlowBlock,
    FlowStep,
    FlowTrigger,
    RunEvent,
    RunId,
    StepOutcome,
    StepResult,
    StepType,
    generate_run_id,
)
from .validation import ValidationResult, ensure_valid, validate_flow

# TYPE_CHECKING stubs so `from stepflow.runtime import RunService` type-checks
# while the service module is still imported lazily at runtime
if TYPE_CHECKING:
    from .service import RunService as RunService
    from .service import get_run_service as get_run_service

__all__ = [
    # Types
    "BlockCategory",
    "EngineState",
    "ExecutionSnapshot",
    "ExecutionStatus",
    "Flow",
    "FlowBlock",
    "FlowStep",
    "FlowTrigger",
    "RunEvent",
    "RunId",
    "StepOutcome",
    "StepResult",
    "StepType",
    "generate_run_id",
    # Errors
    "StepflowError",
    "ValidationError",
    "ValidationIssue",
    "StepExecutionError",
    "GateMisuseError",
    "CancellationError",
    "InvalidStateError",
    "RunNotFoundError",
    # Components
    "AutoRunEvent",
    "AutoRunner",
    "DataBus",
    "DataBusSnapshot",
    "EngineCallbacks",
    "ExecutionEngine",
    "ExecutorRegistry",
    "PendingUserAction",
    "SimulationHarness",
    "SimulationResult",
    "StepContext",
    "StepExecutor",
    "UserActionGate",
    "ValidationResult",
    "build_demo_registry",
    "ensure_valid",
    "simulate",
    "validate_flow",
    # Service (imported lazily at runtime, statically available for type checking)
    "RunService",
    "get_run_service",
]


def __getattr__(name: str):
    """Lazy import for the service layer."""
    if name == "RunService":
        from .service import RunService

        return RunService
    if name == "get_run_service":
        from .service import get_run_service

        return get_run_service
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
