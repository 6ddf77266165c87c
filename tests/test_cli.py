"""Tests for the stepflow command-line interface."""

from __future__ import annotations

import json

import pytest
import yaml

from conftest import build_flow, flow_dict
from stepflow.cli import EXIT_FAILED, EXIT_OK, EXIT_USAGE, EXIT_WAITING, main
from stepflow.runtime.types import flow_to_dict


@pytest.fixture
def flow_file(tmp_path):
    path = tmp_path / "flow.yaml"
    path.write_text(yaml.safe_dump(flow_dict(3)))
    return str(path)


@pytest.fixture
def approval_flow_file(tmp_path):
    path = tmp_path / "approval.yaml"
    path.write_text(yaml.safe_dump(flow_to_dict(build_flow(3, options={2: "Human in the Loop"}))))
    return str(path)


class TestValidate:
    def test_valid(self, flow_file, capsys):
        assert main(["validate", flow_file]) == EXIT_OK
        assert "[PASS] test-flow: 3 step(s)" in capsys.readouterr().out

    def test_invalid(self, tmp_path, capsys):
        path = tmp_path / "empty.yaml"
        path.write_text("id: empty\nname: Empty\nsteps: []\n")
        assert main(["validate", str(path)]) == EXIT_FAILED
        assert "[FAIL] EMPTY_FLOW" in capsys.readouterr().out

    def test_json(self, flow_file, capsys):
        assert main(["validate", flow_file, "--json"]) == EXIT_OK
        data = json.loads(capsys.readouterr().out)
        assert data == {"flow_id": "test-flow", "ok": True, "issues": []}

    def test_missing_file(self, tmp_path, capsys):
        assert main(["validate", str(tmp_path / "nope.yaml")]) == EXIT_USAGE
        assert "not found" in capsys.readouterr().err


class TestRun:
    def test_run_completes(self, flow_file, capsys):
        code = main(["run", flow_file, "--demo-delay", "0", "--no-persist"])

        out = capsys.readouterr().out
        assert code == EXIT_OK
        assert "[1/3] Step 0: ok" in out
        assert "All steps completed successfully" in out
        assert out.strip().endswith(": completed")

    def test_waits_without_responses(self, approval_flow_file, capsys):
        code = main(["run", approval_flow_file, "--demo-delay", "0", "--no-persist"])

        out = capsys.readouterr().out
        assert code == EXIT_WAITING
        assert "[3/3] Step 2: waiting for input" in out
        assert "is waiting for input at step 2" in out

    def test_responses_answer_pauses(self, approval_flow_file, capsys):
        code = main(
            ["run", approval_flow_file, "--demo-delay", "0", "--no-persist", "--responses", "approved"]
        )
        assert code == EXIT_OK
        assert "All steps completed successfully" in capsys.readouterr().out

    def test_auto_mode(self, flow_file, capsys):
        code = main(["run", flow_file, "--auto", "--auto-delay", "0", "--demo-delay", "0", "--no-persist"])
        assert code == EXIT_OK

    def test_persists_history(self, flow_file, tmp_path, capsys):
        runs_dir = tmp_path / "history"
        assert main(["run", flow_file, "--demo-delay", "0", "--runs-dir", str(runs_dir)]) == EXIT_OK
        run_dirs = list(runs_dir.iterdir())
        assert len(run_dirs) == 1
        assert (run_dirs[0] / "meta.json").exists()

    def test_invalid_flow(self, tmp_path, capsys):
        path = tmp_path / "empty.yaml"
        path.write_text("id: empty\nname: Empty\nsteps: []\n")
        assert main(["run", str(path), "--demo-delay", "0", "--no-persist"]) == EXIT_FAILED
        assert "EMPTY_FLOW" in capsys.readouterr().err


class TestSimulate:
    def test_clean(self, flow_file, capsys):
        code = main(["simulate", flow_file, "--step-delay", "0", "--transition-delay", "0"])
        assert code == EXIT_OK
        assert capsys.readouterr().out.strip().endswith("success success success")

    def test_fail_at(self, flow_file, capsys):
        code = main(
            ["simulate", flow_file, "--fail-at", "1", "--step-delay", "0", "--transition-delay", "0"]
        )
        out = capsys.readouterr().out
        assert code == EXIT_FAILED
        assert "Simulated failure at step 1" in out
        assert out.strip().endswith("success failed idle")

    def test_fail_at_out_of_range(self, flow_file, capsys):
        code = main(["simulate", flow_file, "--fail-at", "7", "--step-delay", "0"])
        assert code == EXIT_USAGE
