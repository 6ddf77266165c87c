"""
storage.py - Disk I/O helpers for run history.

The execution engine never touches disk. The run service forwards each
engine's events and status snapshots here. The storage layout is:

    runs/
      <run_id>/
        meta.json          # latest ExecutionSnapshot, serialized
        flow.json          # the flow definition the run was started with
        events.jsonl       # newline-delimited RunEvent objects

Usage:
    from stepflow.runtime.storage import (
        get_run_path, run_exists, create_run_dir,
        write_flow, read_flow,
        write_summary, read_summary,
        append_event, read_events,
        list_runs, release_run_lock,
    )
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from .types import (
    ExecutionSnapshot,
    Flow,
    RunEvent,
    RunId,
    _datetime_to_iso,
    _utcnow,
    execution_snapshot_to_dict,
    flow_from_dict,
    flow_to_dict,
    run_event_from_dict,
    run_event_to_dict,
)

logger = logging.getLogger(__name__)

# File names
META_FILE = "meta.json"
FLOW_FILE = "flow.json"
EVENTS_FILE = "events.jsonl"

# -----------------------------------------------------------------------------
# Per-run locking for thread safety
# -----------------------------------------------------------------------------
# Resumes and cancels arrive on API worker threads while the run that owns
# the events may still be appending. Locking is in-process only.

_RUN_LOCKS: Dict[RunId, threading.Lock] = {}
_RUN_LOCKS_LOCK = threading.Lock()


def _get_run_lock(run_id: RunId) -> threading.Lock:
    """Get or create the lock for a run id."""
    with _RUN_LOCKS_LOCK:
        lock = _RUN_LOCKS.get(run_id)
        if lock is None:
            lock = threading.Lock()
            _RUN_LOCKS[run_id] = lock
        return lock


def release_run_lock(run_id: RunId) -> None:
    """Forget a run's lock once nothing will write to it again."""
    with _RUN_LOCKS_LOCK:
        _RUN_LOCKS.pop(run_id, None)


# -----------------------------------------------------------------------------
# Atomic File I/O Helpers
# -----------------------------------------------------------------------------


def _atomic_write_json(path: Path, data: Any, indent: int = 2) -> None:
    """Write JSON to ``path`` via a temp file and os.replace."""
    parent = path.parent
    parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(suffix=".tmp", prefix=path.name + ".", dir=parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=indent, ensure_ascii=False, default=str)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def _load_json_safe(path: Path, run_id: str, file_type: str) -> Optional[Dict[str, Any]]:
    """Load a JSON file, returning None (and logging) if it is missing or corrupt."""
    if not path.exists():
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        logger.warning("Corrupt %s for run '%s' at %s: %s", file_type, run_id, path, e)
        return None
    except OSError as e:
        logger.warning("Failed to read %s for run '%s' at %s: %s", file_type, run_id, path, e)
        return None


# -----------------------------------------------------------------------------
# Path Helpers
# -----------------------------------------------------------------------------


def _default_runs_dir() -> Path:
    from stepflow.config.runtime_config import get_runs_dir

    return get_runs_dir()


def get_run_path(run_id: RunId, runs_dir: Optional[Path] = None) -> Path:
    return (runs_dir or _default_runs_dir()) / run_id


def run_exists(run_id: RunId, runs_dir: Optional[Path] = None) -> bool:
    return get_run_path(run_id, runs_dir).is_dir()


def create_run_dir(run_id: RunId, runs_dir: Optional[Path] = None) -> Path:
    path = get_run_path(run_id, runs_dir)
    path.mkdir(parents=True, exist_ok=True)
    return path


# -----------------------------------------------------------------------------
# Flow and summary
# -----------------------------------------------------------------------------


def write_flow(run_id: RunId, flow: Flow, runs_dir: Optional[Path] = None) -> Path:
    """Record the flow definition a run was started with."""
    path = create_run_dir(run_id, runs_dir) / FLOW_FILE
    _atomic_write_json(path, flow_to_dict(flow))
    return path


def read_flow(run_id: RunId, runs_dir: Optional[Path] = None) -> Optional[Flow]:
    data = _load_json_safe(get_run_path(run_id, runs_dir) / FLOW_FILE, run_id, "flow")
    return flow_from_dict(data) if data is not None else None


def write_summary(
    run_id: RunId, snapshot: ExecutionSnapshot, runs_dir: Optional[Path] = None
) -> Path:
    """Overwrite meta.json with the latest status snapshot."""
    data = execution_snapshot_to_dict(snapshot)
    data["updated_at"] = _datetime_to_iso(_utcnow())
    lock = _get_run_lock(run_id)
    with lock:
        path = create_run_dir(run_id, runs_dir) / META_FILE
        _atomic_write_json(path, data)
    return path


def read_summary(run_id: RunId, runs_dir: Optional[Path] = None) -> Optional[Dict[str, Any]]:
    """Latest stored snapshot as a plain dict, or None."""
    return _load_json_safe(get_run_path(run_id, runs_dir) / META_FILE, run_id, "summary")


# -----------------------------------------------------------------------------
# Events
# -----------------------------------------------------------------------------


def append_event(run_id: RunId, event: RunEvent, runs_dir: Optional[Path] = None) -> None:
    """Append a RunEvent to events.jsonl.

    Failures are logged, not raised: history is a side channel and must not
    break the run that produces it.
    """
    lock = _get_run_lock(run_id)
    with lock:
        events_path = create_run_dir(run_id, runs_dir) / EVENTS_FILE
        try:
            line = json.dumps(run_event_to_dict(event), ensure_ascii=False, default=str)
            with open(events_path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
                f.flush()
        except OSError as e:
            logger.warning("Failed to append event for run '%s' at %s: %s", run_id, events_path, e)
        except (TypeError, ValueError) as e:
            logger.warning("Failed to serialize event for run '%s': %s", run_id, e)


def read_events(run_id: RunId, runs_dir: Optional[Path] = None) -> List[RunEvent]:
    """Read events in the order they were written. Malformed lines are skipped."""
    events_path = get_run_path(run_id, runs_dir) / EVENTS_FILE
    if not events_path.exists():
        return []

    events: List[RunEvent] = []
    with open(events_path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                events.append(run_event_from_dict(json.loads(line)))
            except (json.JSONDecodeError, KeyError, TypeError, ValueError):
                logger.debug("Skipping malformed event line for run '%s'", run_id)
                continue
    return events


def list_runs(runs_dir: Optional[Path] = None) -> List[RunId]:
    """Run ids that have a meta.json, sorted (ids embed their start time)."""
    base = runs_dir or _default_runs_dir()
    if not base.exists():
        return []
    return sorted(
        entry.name for entry in base.iterdir() if entry.is_dir() and (entry / META_FILE).exists()
    )
