"""
FastAPI server for the stepflow engine.

Usage:
    # Run standalone
    python -m stepflow.api.server

    # Or via factory
    from stepflow.api import create_app
    app = create_app()
    uvicorn.run(app, port=5001)

API Structure:
    /api/runs/             - Run control endpoints (from routes/runs.py)
    /api/runs/{id}/events  - Run event timeline
    /api/flows/            - Flow listing and validation (from routes/flows.py)
    /api/simulations       - Simulation harness
    /api/health            - Health check
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from stepflow import __version__
from stepflow.config.runtime_config import get_pause_timeout_seconds
from stepflow.runtime.service import RunService, get_run_service

from .routes import flows_router, runs_router

logger = logging.getLogger(__name__)

# How often paused runs are checked for an expired user action
EXPIRY_SWEEP_INTERVAL_SECONDS = 5.0


def create_app(
    service: Optional[RunService] = None,
    enable_cors: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        service: RunService to serve. Installed as the singleton so routes
            pick it up. Defaults to the existing singleton.
        enable_cors: Whether to enable CORS middleware.
    """
    if service is not None:
        RunService._instance = service

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start the expired-action sweeper when a pause timeout is configured."""
        logger.info("stepflow API server starting...")
        sweeper: Optional[asyncio.Task] = None

        if get_pause_timeout_seconds() is not None:

            async def sweep_expired_actions():
                while True:
                    await asyncio.sleep(EXPIRY_SWEEP_INTERVAL_SECONDS)
                    expired = get_run_service().expire_stale_actions()
                    if expired:
                        logger.info("Expired pending user actions for runs: %s", expired)

            sweeper = asyncio.create_task(sweep_expired_actions())

        yield

        logger.info("stepflow API server shutting down...")
        if sweeper is not None:
            sweeper.cancel()
            try:
                await sweeper
            except asyncio.CancelledError:
                pass

    app = FastAPI(
        title="stepflow API",
        description="Run, steer and simulate step-sequenced flows.",
        version=__version__,
        lifespan=lifespan,
    )

    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    app.include_router(runs_router, prefix="/api")
    app.include_router(flows_router, prefix="/api")

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        logger.info(
            "%s %s %s %.3fs",
            request.method,
            request.url.path,
            response.status_code,
            time.time() - start_time,
        )
        return response

    @app.get("/api/health")
    async def health():
        return {"status": "ok", "version": __version__}

    return app


def main() -> None:
    import argparse

    import uvicorn

    parser = argparse.ArgumentParser(description="Serve the stepflow API")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=5001)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    uvicorn.run(create_app(), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
