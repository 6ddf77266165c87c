"""
Routes package for the stepflow API.

This package contains the FastAPI routers for:
- runs: Run control endpoints (start, status, events, resume, cancel, retry)
- flows: Flow listing, validation and simulation endpoints
"""

from .flows import router as flows_router
from .runs import router as runs_router

__all__ = ["flows_router", "runs_router"]
