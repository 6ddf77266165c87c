"""Tests for runtime configuration loading and environment overrides."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from stepflow.config import runtime_config
from stepflow.config.runtime_config import (
    DELAY_MAX_SECONDS,
    get_auto_run_delay_seconds,
    get_demo_delay_seconds,
    get_flows_dir,
    get_pause_timeout_seconds,
    get_runs_dir,
    get_setting,
    get_simulation_step_delay_seconds,
    get_simulation_transition_delay_seconds,
)


def _write_config(tmp_path: Path, text: str, monkeypatch) -> Path:
    path = tmp_path / "runtime.yaml"
    path.write_text(text)
    monkeypatch.setenv("STEPFLOW_CONFIG", str(path))
    runtime_config.reset_config()
    return path


class TestDefaults:
    """Values shipped in the bundled runtime.yaml."""

    def test_delays(self):
        assert get_auto_run_delay_seconds() == 2.0
        assert get_simulation_step_delay_seconds() == 1.0
        assert get_simulation_transition_delay_seconds() == 0.5
        assert get_demo_delay_seconds() == 1.5

    def test_pause_timeout_disabled(self):
        assert get_pause_timeout_seconds() is None

    def test_flows_dir_is_bundled(self):
        flows_dir = get_flows_dir()
        assert flows_dir.name == "flows"
        assert (flows_dir / "inventory-restock.yaml").exists()

    def test_runs_dir_from_env(self, tmp_path):
        # conftest points STEPFLOW_RUNS_DIR at the test's tmp dir
        assert get_runs_dir() == tmp_path / "runs"

    def test_missing_config_file_uses_builtin_defaults(self, tmp_path, monkeypatch):
        monkeypatch.setenv("STEPFLOW_CONFIG", str(tmp_path / "absent.yaml"))
        runtime_config.reset_config()
        assert get_auto_run_delay_seconds() == 2.0
        assert get_setting("storage", "runs_dir") == "runs"


class TestConfigFile:
    def test_partial_section_merges_over_defaults(self, tmp_path, monkeypatch):
        _write_config(tmp_path, "simulation:\n  step_delay_seconds: 0.2\n", monkeypatch)
        assert get_simulation_step_delay_seconds() == 0.2
        assert get_simulation_transition_delay_seconds() == 0.5

    def test_pause_timeout_from_file(self, tmp_path, monkeypatch):
        _write_config(tmp_path, "gate:\n  pause_timeout_seconds: 300\n", monkeypatch)
        assert get_pause_timeout_seconds() == 300.0

    def test_config_is_cached(self, tmp_path, monkeypatch):
        path = _write_config(tmp_path, "demo:\n  delay_seconds: 0.1\n", monkeypatch)
        assert get_demo_delay_seconds() == 0.1
        path.write_text("demo:\n  delay_seconds: 0.9\n")
        assert get_demo_delay_seconds() == 0.1
        runtime_config.reset_config()
        assert get_demo_delay_seconds() == 0.9

    def test_get_setting_fallback(self):
        assert get_setting("nope", "key", "fallback") == "fallback"
        assert get_setting("version", "key", "fallback") == "fallback"


class TestEnvironmentOverrides:
    @pytest.mark.parametrize(
        "var,getter",
        [
            ("STEPFLOW_AUTO_RUN_DELAY", get_auto_run_delay_seconds),
            ("STEPFLOW_SIM_STEP_DELAY", get_simulation_step_delay_seconds),
            ("STEPFLOW_SIM_TRANSITION_DELAY", get_simulation_transition_delay_seconds),
            ("STEPFLOW_DEMO_DELAY", get_demo_delay_seconds),
        ],
    )
    def test_env_beats_yaml(self, var, getter, monkeypatch):
        monkeypatch.setenv(var, "0.75")
        assert getter() == 0.75

    def test_flows_dir_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("STEPFLOW_FLOWS_DIR", str(tmp_path))
        assert get_flows_dir() == tmp_path


class TestClamping:
    def test_negative_clamped_to_zero(self, monkeypatch, caplog):
        monkeypatch.setenv("STEPFLOW_AUTO_RUN_DELAY", "-3")
        with caplog.at_level(logging.WARNING):
            assert get_auto_run_delay_seconds() == 0.0
        assert "Clamping to 0" in caplog.text

    def test_huge_delay_clamped(self, monkeypatch):
        monkeypatch.setenv("STEPFLOW_DEMO_DELAY", "1500")
        assert get_demo_delay_seconds() == DELAY_MAX_SECONDS

    def test_non_numeric_falls_back(self, monkeypatch, caplog):
        monkeypatch.setenv("STEPFLOW_SIM_STEP_DELAY", "fast")
        with caplog.at_level(logging.WARNING):
            assert get_simulation_step_delay_seconds() == 1.0
        assert "non-numeric" in caplog.text


class TestPauseTimeout:
    @pytest.mark.parametrize("raw", ["", "none", "None", "null"])
    def test_disabled_spellings(self, raw, monkeypatch):
        monkeypatch.setenv("STEPFLOW_PAUSE_TIMEOUT", raw)
        assert get_pause_timeout_seconds() is None

    def test_positive(self, monkeypatch):
        monkeypatch.setenv("STEPFLOW_PAUSE_TIMEOUT", "45")
        assert get_pause_timeout_seconds() == 45.0

    @pytest.mark.parametrize("raw", ["0", "-5", "soon"])
    def test_unusable_values_disable(self, raw, monkeypatch):
        monkeypatch.setenv("STEPFLOW_PAUSE_TIMEOUT", raw)
        assert get_pause_timeout_seconds() is None
