"""
Flow endpoints for the stepflow API.

Provides REST endpoints for:
- Listing and reading registered flow definitions
- Validating a flow without running it
- Running the simulation harness over a flow
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from stepflow.config.flow_registry import FlowRegistry
from stepflow.runtime.errors import StepflowError
from stepflow.runtime.service import get_run_service
from stepflow.runtime.simulation import simulation_result_to_dict
from stepflow.runtime.types import flow_to_dict
from stepflow.runtime.validation import validate_flow

from .runs import http_error, resolve_flow

logger = logging.getLogger(__name__)

router = APIRouter(tags=["flows"])


# =============================================================================
# Pydantic Models
# =============================================================================


class FlowSummary(BaseModel):
    id: str
    name: str
    description: str = ""
    trigger: str
    step_count: int


class FlowListResponse(BaseModel):
    flows: List[FlowSummary]


class FlowRef(BaseModel):
    """A registered flow id or an inline definition."""

    flow_id: Optional[str] = None
    flow: Optional[Dict[str, Any]] = None


class ValidationIssueModel(BaseModel):
    code: str
    location: str
    problem: str


class ValidateResponse(BaseModel):
    flow_id: str
    ok: bool
    issues: List[ValidationIssueModel]


class SimulationRequest(FlowRef):
    fail_at_index: Optional[int] = Field(None, description="Step that should fail (0-based)")
    step_delay_seconds: Optional[float] = Field(None, ge=0)
    transition_delay_seconds: Optional[float] = Field(None, ge=0)


class SimulationResponse(BaseModel):
    run_id: str
    flow_id: str
    state: str
    statuses: List[str]
    failed_index: Optional[int] = None
    error: Optional[str] = None


# =============================================================================
# Endpoints
# =============================================================================


@router.get("/flows", response_model=FlowListResponse)
async def list_flows():
    registry = FlowRegistry.get_instance()
    flows = [registry.get_flow(flow_id) for flow_id in registry.flow_ids()]
    return FlowListResponse(
        flows=[
            FlowSummary(
                id=f.id,
                name=f.name,
                description=f.description,
                trigger=f.trigger.value,
                step_count=len(f.steps),
            )
            for f in flows
        ]
    )


@router.get("/flows/{flow_id}")
async def get_flow(flow_id: str):
    flow = FlowRegistry.get_instance().get_flow(flow_id)
    if flow is None:
        raise HTTPException(
            status_code=404,
            detail={"error": "flow_not_found", "message": f"Flow '{flow_id}' not found", "details": {}},
        )
    return flow_to_dict(flow)


@router.post("/flows/validate", response_model=ValidateResponse)
async def validate(request: FlowRef):
    """Report every problem with a flow. Always 200; check ``ok``."""
    flow = resolve_flow(request.flow_id, request.flow)
    return ValidateResponse(**validate_flow(flow).to_dict())


@router.post("/simulations", response_model=SimulationResponse)
def run_simulation(request: SimulationRequest):
    """Simulate a flow to the end and return the final step statuses."""
    flow = resolve_flow(request.flow_id, request.flow)
    try:
        result = get_run_service().simulate(
            flow,
            fail_at_index=request.fail_at_index,
            step_delay_seconds=request.step_delay_seconds,
            transition_delay_seconds=request.transition_delay_seconds,
        )
    except StepflowError as e:
        raise http_error(e)
    except ValueError as e:
        raise HTTPException(
            status_code=422,
            detail={"error": "invalid_fail_index", "message": str(e), "details": {}},
        )
    return SimulationResponse(**simulation_result_to_dict(result))
