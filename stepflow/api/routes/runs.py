"""
Run control endpoints for the stepflow API.

Provides REST endpoints for:
- Starting new runs (from a registered flow id or an inline definition)
- Listing runs and getting run status
- Reading a run's event timeline
- Resuming a paused run with the user's response
- Cancelling and retrying runs
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from stepflow.config.flow_registry import FlowRegistry, flow_schema_errors
from stepflow.runtime.errors import (
    CancellationError,
    GateMisuseError,
    InvalidStateError,
    RunNotFoundError,
    StepflowError,
    ValidationError,
)
from stepflow.runtime.service import RUN_MODES, get_run_service
from stepflow.runtime.types import (
    Flow,
    execution_snapshot_to_dict,
    flow_from_dict,
    run_event_to_dict,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/runs", tags=["runs"])


# =============================================================================
# Pydantic Models
# =============================================================================


class RunStartRequest(BaseModel):
    """Request to start a new run. Give either ``flow_id`` or ``flow``."""

    flow_id: Optional[str] = Field(None, description="Registered flow to execute")
    flow: Optional[Dict[str, Any]] = Field(None, description="Inline flow definition")
    run_id: Optional[str] = Field(None, description="Custom run ID (generated if not provided)")
    mode: str = Field("continuous", description="Execution mode: continuous or auto")


class RunStartResponse(BaseModel):
    """Response when starting a new run."""

    run_id: str
    flow_id: str
    state: str
    events_url: str


class RunStatusResponse(BaseModel):
    """Point-in-time status of a run."""

    run_id: str
    flow_id: str
    state: str
    current_index: Optional[int] = None
    total_steps: int
    statuses: List[str] = Field(default_factory=list)
    results: Dict[str, Any] = Field(default_factory=dict)
    pending_prompt: Optional[str] = None
    pending_index: Optional[int] = None
    error: Optional[str] = None
    active_transition: Optional[List[int]] = None
    updated_at: Optional[str] = None


class RunListResponse(BaseModel):
    """Response for list runs endpoint."""

    runs: List[RunStatusResponse]


class RunEventsResponse(BaseModel):
    run_id: str
    events: List[Dict[str, Any]]


class ResumeRequest(BaseModel):
    """The user's answer to a pending user action."""

    response: Any = Field(None, description="Value folded into the paused step's result")


class RetryRequest(BaseModel):
    from_index: Optional[int] = Field(
        None, description="First step to re-run (defaults to the failed step)"
    )


# =============================================================================
# Helpers
# =============================================================================


def http_error(exc: StepflowError) -> HTTPException:
    """Map a runtime error onto an HTTP status.

    validation -> 422, unknown run -> 404, misuse/wrong state -> 409.
    """
    if isinstance(exc, ValidationError):
        return HTTPException(
            status_code=422,
            detail={"error": "invalid_flow", "message": exc.reason, "details": exc.to_dict()},
        )
    if isinstance(exc, RunNotFoundError):
        return HTTPException(
            status_code=404,
            detail={"error": "run_not_found", "message": str(exc), "details": {}},
        )
    if isinstance(exc, GateMisuseError):
        code = "nothing_pending"
    elif isinstance(exc, CancellationError):
        code = "run_finished"
    elif isinstance(exc, InvalidStateError):
        code = "invalid_state"
    else:
        code = "run_error"
    return HTTPException(status_code=409, detail={"error": code, "message": str(exc), "details": {}})


def resolve_flow(flow_id: Optional[str], flow: Optional[Dict[str, Any]]) -> Flow:
    """Turn a request's flow reference into a Flow."""
    if flow is not None:
        errors = flow_schema_errors(flow)
        if errors:
            raise HTTPException(
                status_code=422,
                detail={
                    "error": "invalid_flow",
                    "message": "Flow does not match the flow schema",
                    "details": {"schema_errors": errors},
                },
            )
        try:
            return flow_from_dict(flow)
        except (KeyError, TypeError, ValueError) as e:
            raise HTTPException(
                status_code=422,
                detail={"error": "invalid_flow", "message": f"Malformed flow: {e}", "details": {}},
            )
    if flow_id:
        found = FlowRegistry.get_instance().get_flow(flow_id)
        if found is None:
            raise HTTPException(
                status_code=404,
                detail={"error": "flow_not_found", "message": f"Flow '{flow_id}' not found", "details": {}},
            )
        return found
    raise HTTPException(
        status_code=422,
        detail={"error": "missing_flow", "message": "Provide flow_id or flow", "details": {}},
    )


# =============================================================================
# Endpoints
# =============================================================================


@router.post("", response_model=RunStartResponse, status_code=201)
async def start_run(request: RunStartRequest):
    """Start a new run.

    The flow is validated before anything is recorded; an invalid flow is
    rejected with 422.
    """
    if request.mode not in RUN_MODES:
        raise HTTPException(
            status_code=422,
            detail={"error": "invalid_mode", "message": f"Unknown mode '{request.mode}'", "details": {}},
        )
    flow = resolve_flow(request.flow_id, request.flow)
    service = get_run_service()
    try:
        run_id = service.start_run(flow, mode=request.mode, run_id=request.run_id)
    except StepflowError as e:
        raise http_error(e)
    except ValueError as e:
        raise HTTPException(
            status_code=409, detail={"error": "run_exists", "message": str(e), "details": {}}
        )

    status = service.get_status(run_id)
    return RunStartResponse(
        run_id=run_id,
        flow_id=flow.id,
        state=status.state.value,
        events_url=f"/api/runs/{run_id}/events",
    )


@router.get("", response_model=RunListResponse)
async def list_runs():
    """List live and stored runs, newest first."""
    runs = get_run_service().list_runs()
    return RunListResponse(runs=[RunStatusResponse(**summary) for summary in runs])


@router.get("/{run_id}", response_model=RunStatusResponse)
async def get_run(run_id: str):
    try:
        return RunStatusResponse(**get_run_service().get_run(run_id))
    except StepflowError as e:
        raise http_error(e)


@router.get("/{run_id}/events", response_model=RunEventsResponse)
async def get_run_events(run_id: str):
    try:
        events = get_run_service().get_events(run_id)
    except StepflowError as e:
        raise http_error(e)
    return RunEventsResponse(run_id=run_id, events=[run_event_to_dict(e) for e in events])


@router.post("/{run_id}/resume", response_model=RunStatusResponse)
async def resume_run(run_id: str, request: ResumeRequest):
    """Answer a paused run. 409 if nothing is pending."""
    try:
        status = get_run_service().resume_run(run_id, request.response)
    except StepflowError as e:
        raise http_error(e)
    return RunStatusResponse(**execution_snapshot_to_dict(status))


@router.post("/{run_id}/cancel", response_model=RunStatusResponse)
async def cancel_run(run_id: str):
    try:
        status = get_run_service().cancel_run(run_id)
    except StepflowError as e:
        raise http_error(e)
    return RunStatusResponse(**execution_snapshot_to_dict(status))


@router.post("/{run_id}/retry", response_model=RunStatusResponse)
async def retry_run(run_id: str, request: Optional[RetryRequest] = None):
    """Re-run a failed run from a step. Earlier results are kept."""
    from_index = request.from_index if request else None
    try:
        status = get_run_service().retry_run(run_id, from_index)
    except StepflowError as e:
        raise http_error(e)
    return RunStatusResponse(**execution_snapshot_to_dict(status))
