"""
service.py - RunService: one isolated engine per run id.

All consumers (HTTP API, CLI) go through RunService rather than building
engines themselves. The service:

- builds an ExecutionEngine per run and drops it once the run completes or
  is cancelled (persisted runs stay readable from run history)
- runs engines on background worker threads (or inline when asked)
- forwards every RunEvent and status snapshot to run history storage
- offers resume / cancel / retry / simulate by run id

Usage:
    from stepflow.runtime.service import RunService, get_run_service

    service = get_run_service()
    run_id = service.start_run(flow)
    status = service.get_status(run_id)
    service.resume_run(run_id, "approved")
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from . import storage
from .autorunner import AutoRunListener, AutoRunner
from .callbacks import EngineCallbacks
from .engine import ExecutionEngine
from .errors import CancellationError, GateMisuseError, RunNotFoundError
from .executors import ExecutorRegistry
from .simulation import SimulationResult, simulate
from .types import (
    EngineState,
    ExecutionSnapshot,
    Flow,
    RunEvent,
    RunId,
    execution_snapshot_from_dict,
    execution_snapshot_to_dict,
    generate_run_id,
)

logger = logging.getLogger(__name__)

RUN_MODES = ("continuous", "auto")


@dataclass
class _RunHandle:
    engine: ExecutionEngine
    runner: Optional[AutoRunner] = None
    worker: Optional[threading.Thread] = None


class RunService:
    """Central service for starting and steering runs.

    Args:
        runs_dir: Where run history is written. Defaults to config.
        registry_factory: Builds the executor registry for each new run.
            Defaults to the demo registry.
        background: Run engines on worker threads. When False every call
            returns only after the run has stopped (completed, failed,
            paused or cancelled).
        persist: Write run history to disk.
    """

    _instance: Optional["RunService"] = None

    def __init__(
        self,
        runs_dir: Optional[Path] = None,
        registry_factory: Optional[Callable[[], ExecutorRegistry]] = None,
        background: bool = True,
        persist: bool = True,
        pause_timeout_seconds: Optional[float] = None,
        auto_run_delay_seconds: Optional[float] = None,
    ):
        from stepflow.config.runtime_config import get_pause_timeout_seconds, get_runs_dir

        if registry_factory is None:
            from .executors.demo import build_demo_registry

            registry_factory = build_demo_registry

        self._runs_dir = runs_dir or get_runs_dir()
        self._registry_factory = registry_factory
        self._background = background
        self._persist = persist
        self._pause_timeout_seconds = (
            pause_timeout_seconds if pause_timeout_seconds is not None else get_pause_timeout_seconds()
        )
        self._auto_run_delay_seconds = auto_run_delay_seconds
        self._runs: Dict[RunId, _RunHandle] = {}
        self._lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> "RunService":
        """Get or create the singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Reset singleton (for testing)."""
        cls._instance = None

    @property
    def runs_dir(self) -> Path:
        return self._runs_dir

    # -------------------------------------------------------------------------
    # Starting runs
    # -------------------------------------------------------------------------

    def start_run(
        self,
        flow: Flow,
        mode: str = "continuous",
        run_id: Optional[RunId] = None,
        callbacks: Optional[EngineCallbacks] = None,
        listener: Optional[AutoRunListener] = None,
    ) -> RunId:
        """Validate a flow and start running it.

        Args:
            flow: The flow to execute.
            mode: "continuous" runs every step back to back; "auto" paces
                steps through an AutoRunner.
            run_id: Explicit id; generated if omitted.
            callbacks: Extra engine observers.
            listener: AutoRunner narration listener ("auto" mode only).

        Raises:
            ValidationError: The flow cannot run. Nothing is recorded.
            ValueError: Unknown mode.
        """
        if mode not in RUN_MODES:
            raise ValueError(f"Unknown run mode '{mode}' (expected one of {', '.join(RUN_MODES)})")

        run_id = run_id or generate_run_id()
        engine = ExecutionEngine(
            flow,
            run_id=run_id,
            callbacks=callbacks,
            registry=self._registry_factory(),
            event_sink=self._record_event,
            pause_timeout_seconds=self._pause_timeout_seconds,
        )
        engine.initialize()

        handle = _RunHandle(engine=engine)
        if mode == "auto":
            handle.runner = AutoRunner(
                engine, delay_seconds=self._auto_run_delay_seconds, listener=listener
            )

        with self._lock:
            if run_id in self._runs or (self._persist and storage.run_exists(run_id, self._runs_dir)):
                raise ValueError(f"Run '{run_id}' already exists")
            self._runs[run_id] = handle

        if self._persist:
            storage.write_flow(run_id, flow, self._runs_dir)
            storage.write_summary(run_id, engine.get_status(), self._runs_dir)

        logger.info("Starting run %s for flow '%s' (%s)", run_id, flow.id, mode)
        if handle.runner is not None:
            self._dispatch(handle, handle.runner.run)
        else:
            self._dispatch(handle, engine.start_execution)
        return run_id

    def simulate(
        self,
        flow: Flow,
        fail_at_index: Optional[int] = None,
        step_delay_seconds: Optional[float] = None,
        transition_delay_seconds: Optional[float] = None,
    ) -> SimulationResult:
        """Run the simulation harness to the end (always inline)."""
        return simulate(
            flow,
            fail_at_index=fail_at_index,
            step_delay_seconds=step_delay_seconds,
            transition_delay_seconds=transition_delay_seconds,
        )

    # -------------------------------------------------------------------------
    # Steering runs
    # -------------------------------------------------------------------------

    def resume_run(self, run_id: RunId, response: Any = None) -> ExecutionSnapshot:
        """Answer a paused run.

        Raises:
            RunNotFoundError: No live run has this id.
            GateMisuseError: The run is not waiting for a response.
            CancellationError: The run already completed or was cancelled.
        """
        handle = self._get_handle(run_id)
        engine = handle.engine
        if engine.state.is_terminal:
            # Let the engine raise its CancellationError
            engine.resume(response)
        if engine.state != EngineState.PAUSED:
            raise GateMisuseError(f"Run '{run_id}' is not waiting for user action")

        if handle.runner is not None:
            self._dispatch(handle, lambda: handle.runner.resume(response))
        else:
            self._dispatch(handle, lambda: engine.resume(response))
        return engine.get_status()

    def cancel_run(self, run_id: RunId) -> ExecutionSnapshot:
        handle = self._get_handle(run_id)
        status = handle.engine.cancel()
        self._write_summary(handle.engine)
        self._release_if_finished(handle)
        return status

    def retry_run(self, run_id: RunId, from_index: Optional[int] = None) -> ExecutionSnapshot:
        """Re-run a failed run from ``from_index`` (default: the failed step)."""
        handle = self._get_handle(run_id)
        engine = handle.engine
        index = from_index if from_index is not None else engine.get_status().current_index
        if index is None:
            index = 0

        if handle.runner is not None:
            handle.runner.rewind(index)
            self._dispatch(handle, handle.runner.run)
        else:
            engine.retry_from(index, restart=False)
            self._dispatch(handle, engine.start_execution)
        return engine.get_status()

    def expire_stale_actions(self) -> List[RunId]:
        """Fail every paused run whose user action has timed out."""
        with self._lock:
            handles = list(self._runs.items())
        expired = []
        for run_id, handle in handles:
            if handle.engine.expire_stale_action():
                self._write_summary(handle.engine)
                expired.append(run_id)
        return expired

    def wait(self, run_id: RunId, timeout: Optional[float] = None) -> bool:
        """Block until the run's current worker finishes. Returns False on timeout."""
        with self._lock:
            handle = self._runs.get(run_id)
        if handle is None:
            if self._persist and storage.run_exists(run_id, self._runs_dir):
                return True
            raise RunNotFoundError(f"Run '{run_id}' not found")
        worker = handle.worker
        if worker is None:
            return True
        worker.join(timeout)
        return not worker.is_alive()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_engine(self, run_id: RunId) -> Optional[ExecutionEngine]:
        with self._lock:
            handle = self._runs.get(run_id)
        return handle.engine if handle else None

    def get_status(self, run_id: RunId) -> ExecutionSnapshot:
        engine = self.get_engine(run_id)
        if engine is not None:
            return engine.get_status()
        return execution_snapshot_from_dict(self.get_run(run_id))

    def get_run(self, run_id: RunId) -> Dict[str, Any]:
        """Status of a live run, or the stored summary of a finished one."""
        engine = self.get_engine(run_id)
        if engine is not None:
            return execution_snapshot_to_dict(engine.get_status())
        summary = storage.read_summary(run_id, self._runs_dir) if self._persist else None
        if summary is None:
            raise RunNotFoundError(f"Run '{run_id}' not found")
        return summary

    def list_runs(self) -> List[Dict[str, Any]]:
        """Summaries of live and stored runs, newest first."""
        summaries: Dict[RunId, Dict[str, Any]] = {}
        if self._persist:
            for run_id in storage.list_runs(self._runs_dir):
                summary = storage.read_summary(run_id, self._runs_dir)
                if summary is not None:
                    summaries[run_id] = summary
        with self._lock:
            live = list(self._runs.items())
        for run_id, handle in live:
            summaries[run_id] = execution_snapshot_to_dict(handle.engine.get_status())
        return [summaries[run_id] for run_id in sorted(summaries, reverse=True)]

    def get_events(self, run_id: RunId) -> List[RunEvent]:
        engine = self.get_engine(run_id)
        if engine is not None:
            return engine.events
        if self._persist and storage.run_exists(run_id, self._runs_dir):
            return storage.read_events(run_id, self._runs_dir)
        raise RunNotFoundError(f"Run '{run_id}' not found")

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _get_handle(self, run_id: RunId) -> _RunHandle:
        with self._lock:
            handle = self._runs.get(run_id)
        if handle is not None:
            return handle
        summary = storage.read_summary(run_id, self._runs_dir) if self._persist else None
        if summary is not None and EngineState(summary["state"]).is_terminal:
            raise CancellationError(f"Run '{run_id}' is already {summary['state']}")
        raise RunNotFoundError(f"Run '{run_id}' is not active")

    def _dispatch(self, handle: _RunHandle, work: Callable[[], Any]) -> None:
        run_id = handle.engine.run_id

        def target() -> None:
            try:
                work()
            except Exception:
                logger.exception("Run %s: worker stopped with an error", run_id)
            finally:
                self._write_summary(handle.engine)
                self._release_if_finished(handle)

        if not self._background:
            try:
                work()
            finally:
                self._write_summary(handle.engine)
                self._release_if_finished(handle)
            return

        worker = threading.Thread(target=target, name=f"stepflow-{run_id}", daemon=True)
        handle.worker = worker
        worker.start()

    def _release_if_finished(self, handle: _RunHandle) -> None:
        """Drop a completed or cancelled run. Its history stays on disk."""
        engine = handle.engine
        if not self._persist or not engine.state.is_terminal:
            return
        with self._lock:
            if self._runs.get(engine.run_id) is handle:
                del self._runs[engine.run_id]
        storage.release_run_lock(engine.run_id)
        logger.debug("Run %s released (%s)", engine.run_id, engine.state.value)

    def _record_event(self, event: RunEvent) -> None:
        if not self._persist:
            return
        storage.append_event(event.run_id, event, self._runs_dir)

    def _write_summary(self, engine: ExecutionEngine) -> None:
        if not self._persist:
            return
        try:
            storage.write_summary(engine.run_id, engine.get_status(), self._runs_dir)
        except OSError as e:
            logger.warning("Failed to write summary for run %s: %s", engine.run_id, e)


def get_run_service() -> RunService:
    """Get the RunService singleton."""
    return RunService.get_instance()
