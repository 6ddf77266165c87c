"""Runtime configuration for the stepflow engine.

Provides centralized timing and storage settings. Environment variables take
precedence over YAML config, which takes precedence over built-in defaults.

Usage:
    from stepflow.config.runtime_config import (
        get_auto_run_delay_seconds,
        get_simulation_step_delay_seconds,
        get_demo_delay_seconds,
        get_pause_timeout_seconds,
        get_runs_dir,
    )

Environment overrides:
    STEPFLOW_CONFIG            Path to an alternative runtime.yaml
    STEPFLOW_AUTO_RUN_DELAY    Seconds the auto-runner waits between steps
    STEPFLOW_SIM_STEP_DELAY    Seconds the simulator spends "running" a step
    STEPFLOW_SIM_TRANSITION_DELAY  Seconds the simulator animates a transition
    STEPFLOW_DEMO_DELAY        Seconds a demo executor "processes" a block
    STEPFLOW_PAUSE_TIMEOUT     Seconds before a pending user action expires
                               ("none" or empty disables the timeout)
    STEPFLOW_RUNS_DIR          Directory for run history files
    STEPFLOW_FLOWS_DIR         Directory of flow definition YAML files
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

_CONFIG_PATH = Path(__file__).parent / "runtime.yaml"
_cached_config: Optional[Dict[str, Any]] = None

# Delays above this are almost certainly a units mistake (ms given as s)
DELAY_MAX_SECONDS = 60.0


def _default_config() -> Dict[str, Any]:
    """Return default configuration if runtime.yaml doesn't exist."""
    return {
        "version": "1.0",
        "auto_run": {"delay_seconds": 2.0},
        "simulation": {"step_delay_seconds": 1.0, "transition_delay_seconds": 0.5},
        "demo": {"delay_seconds": 1.5},
        "gate": {"pause_timeout_seconds": None},
        "storage": {"runs_dir": "runs", "flows_dir": None},
    }


def _config_path() -> Path:
    override = os.environ.get("STEPFLOW_CONFIG")
    return Path(override) if override else _CONFIG_PATH


def _load_config() -> Dict[str, Any]:
    """Load runtime.yaml configuration, with caching."""
    global _cached_config
    if _cached_config is not None:
        return _cached_config

    path = _config_path()
    config = _default_config()
    if path.exists():
        with open(path) as f:
            loaded = yaml.safe_load(f) or {}
        for section, values in loaded.items():
            if isinstance(values, dict) and isinstance(config.get(section), dict):
                config[section] = {**config[section], **values}
            else:
                config[section] = values
    else:
        logger.debug("No runtime config at %s; using defaults", path)

    _cached_config = config
    return _cached_config


def reset_config() -> None:
    """Reset cached config (for testing)."""
    global _cached_config
    _cached_config = None


def get_setting(section: str, key: str, fallback: Any = None) -> Any:
    """Read one value from the loaded config."""
    value = _load_config().get(section, {})
    if not isinstance(value, dict):
        return fallback
    return value.get(key, fallback)


def _clamp_delay(value: Any, name: str, default: float) -> float:
    """Coerce a delay to a float within [0, DELAY_MAX_SECONDS], logging fixes."""
    try:
        delay = float(value)
    except (TypeError, ValueError):
        logger.warning("Setting '%s' has non-numeric value %r; using %.2f", name, value, default)
        return default
    if delay < 0:
        logger.warning("Setting '%s' value %.2f is negative. Clamping to 0.", name, delay)
        return 0.0
    if delay > DELAY_MAX_SECONDS:
        logger.warning(
            "Setting '%s' value %.2f exceeds %.0fs. Clamping.", name, delay, DELAY_MAX_SECONDS
        )
        return DELAY_MAX_SECONDS
    return delay


def _delay(env_var: str, section: str, key: str, default: float) -> float:
    raw = os.environ.get(env_var)
    if raw is None or raw == "":
        raw = get_setting(section, key, default)
    return _clamp_delay(raw, f"{section}.{key}", default)


def get_auto_run_delay_seconds() -> float:
    """Pause between a step succeeding and the auto-runner starting the next."""
    return _delay("STEPFLOW_AUTO_RUN_DELAY", "auto_run", "delay_seconds", 2.0)


def get_simulation_step_delay_seconds() -> float:
    return _delay("STEPFLOW_SIM_STEP_DELAY", "simulation", "step_delay_seconds", 1.0)


def get_simulation_transition_delay_seconds() -> float:
    return _delay("STEPFLOW_SIM_TRANSITION_DELAY", "simulation", "transition_delay_seconds", 0.5)


def get_demo_delay_seconds() -> float:
    return _delay("STEPFLOW_DEMO_DELAY", "demo", "delay_seconds", 1.5)


def get_pause_timeout_seconds() -> Optional[float]:
    """Timeout for an abandoned user action, or None to wait indefinitely.

    The default is None: a paused run stays paused until someone answers.
    """
    raw = os.environ.get("STEPFLOW_PAUSE_TIMEOUT")
    if raw is None:
        raw = get_setting("gate", "pause_timeout_seconds")
    if raw is None or (isinstance(raw, str) and raw.strip().lower() in ("", "none", "null")):
        return None
    try:
        timeout = float(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid pause timeout %r; pausing indefinitely", raw)
        return None
    if timeout <= 0:
        logger.warning("Pause timeout %.2f is not positive; pausing indefinitely", timeout)
        return None
    return timeout


def get_runs_dir() -> Path:
    """Directory where run histories are written."""
    raw = os.environ.get("STEPFLOW_RUNS_DIR") or get_setting("storage", "runs_dir", "runs")
    return Path(raw)


def get_flows_dir() -> Path:
    """Directory holding flow definition YAML files."""
    raw = os.environ.get("STEPFLOW_FLOWS_DIR") or get_setting("storage", "flows_dir")
    return Path(raw) if raw else Path(__file__).parent / "flows"
