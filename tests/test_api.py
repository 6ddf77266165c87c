"""Tests for the stepflow HTTP API.

Uses FastAPI's TestClient against an app wired to an inline RunService, so
every request returns after the run has stopped.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import ScriptedExecutor, flow_dict, scripted_registry
from stepflow import __version__
from stepflow.api import create_app
from stepflow.runtime.service import RunService
from stepflow.runtime.types import StepOutcome


@pytest.fixture
def executor():
    return ScriptedExecutor({"step-1": StepOutcome.needs_user_action("Confirm X")})


@pytest.fixture
def client(runs_dir, executor):
    service = RunService(
        runs_dir=runs_dir,
        registry_factory=lambda: scripted_registry(executor),
        background=False,
    )
    return TestClient(create_app(service=service))


def _start(client, **body):
    body.setdefault("flow", flow_dict(3))
    response = client.post("/api/runs", json=body)
    assert response.status_code == 201, response.text
    return response.json()


class TestHealth:
    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "version": __version__}


class TestStartRun:
    def test_inline_flow(self, client):
        data = _start(client, run_id="run-1")
        assert data == {
            "run_id": "run-1",
            "flow_id": "test-flow",
            "state": "paused",
            "events_url": "/api/runs/run-1/events",
        }

    def test_registered_flow(self, client):
        response = client.post("/api/runs", json={"flow_id": "inventory-restock"})
        assert response.status_code == 201
        assert response.json()["flow_id"] == "inventory-restock"

    def test_unknown_flow_id(self, client):
        response = client.post("/api/runs", json={"flow_id": "nope"})
        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "flow_not_found"

    def test_missing_flow(self, client):
        response = client.post("/api/runs", json={})
        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "missing_flow"

    def test_malformed_flow(self, client):
        response = client.post("/api/runs", json={"flow": {"name": "no id"}})
        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "invalid_flow"
        assert "root: 'id' is a required property" in response.json()["detail"]["details"]["schema_errors"]

    def test_invalid_flow(self, client):
        response = client.post("/api/runs", json={"flow": {"id": "empty", "name": "Empty", "steps": []}})
        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["error"] == "invalid_flow"
        assert detail["details"]["issues"][0]["code"] == "EMPTY_FLOW"

    def test_invalid_mode(self, client):
        response = client.post("/api/runs", json={"flow": flow_dict(1), "mode": "turbo"})
        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "invalid_mode"

    def test_duplicate_run_id(self, client):
        _start(client, run_id="run-1")
        response = client.post("/api/runs", json={"flow": flow_dict(3), "run_id": "run-1"})
        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "run_exists"


class TestRunQueries:
    def test_get_run(self, client):
        _start(client, run_id="run-1")
        data = client.get("/api/runs/run-1").json()
        assert data["state"] == "paused"
        assert data["statuses"] == ["success", "running", "idle"]
        assert data["pending_prompt"] == "Confirm X"
        assert data["pending_index"] == 1
        assert list(data["results"]) == ["step-0"]

    def test_get_unknown_run(self, client):
        response = client.get("/api/runs/run-missing")
        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "run_not_found"

    def test_list_runs(self, client):
        _start(client, run_id="run-1")
        _start(client, run_id="run-2")
        ids = [r["run_id"] for r in client.get("/api/runs").json()["runs"]]
        assert ids == ["run-2", "run-1"]

    def test_events(self, client):
        _start(client, run_id="run-1")
        data = client.get("/api/runs/run-1/events").json()
        kinds = [e["kind"] for e in data["events"]]
        assert kinds[0] == "run_initialized"
        assert kinds[-1] == "run_paused"
        assert data["events"][-1]["step_id"] == "step-1"


class TestSteering:
    def test_resume(self, client):
        _start(client, run_id="run-1")
        response = client.post("/api/runs/run-1/resume", json={"response": {"approved": True}})
        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "completed"
        assert data["results"]["step-1"]["data"]["user_response"] == {"approved": True}

    def test_resume_finished_run(self, client):
        _start(client, run_id="run-1")
        client.post("/api/runs/run-1/resume", json={"response": "yes"})
        response = client.post("/api/runs/run-1/resume", json={"response": "again"})
        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "run_finished"

    def test_resume_with_nothing_pending(self, client, executor):
        executor.script["step-1"] = StepOutcome.failed("timeout")
        _start(client, run_id="run-1")
        response = client.post("/api/runs/run-1/resume", json={"response": "yes"})
        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "nothing_pending"

    def test_resume_unknown_run(self, client):
        response = client.post("/api/runs/run-missing/resume", json={"response": "yes"})
        assert response.status_code == 404

    def test_cancel(self, client):
        _start(client, run_id="run-1")
        response = client.post("/api/runs/run-1/cancel")
        assert response.status_code == 200
        assert response.json()["state"] == "cancelled"

        again = client.post("/api/runs/run-1/cancel")
        assert again.status_code == 409

    def test_retry(self, client, executor):
        executor.script["step-1"] = StepOutcome.failed("timeout")
        _start(client, run_id="run-1")
        assert client.get("/api/runs/run-1").json()["error"] == "timeout"

        del executor.script["step-1"]
        response = client.post("/api/runs/run-1/retry", json={"from_index": 1})

        assert response.status_code == 200
        assert response.json()["state"] == "completed"

    def test_retry_running_run_rejected(self, client):
        _start(client, run_id="run-1")
        response = client.post("/api/runs/run-1/retry", json={})
        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "invalid_state"


class TestFlows:
    def test_list_flows(self, client):
        flows = client.get("/api/flows").json()["flows"]
        assert [f["id"] for f in flows] == ["inventory-restock", "listing-health-agent"]
        assert flows[0]["step_count"] == 4

    def test_get_flow(self, client):
        assert client.get("/api/flows/listing-health-agent").json()["trigger"] == "scheduled"
        assert client.get("/api/flows/nope").status_code == 404

    def test_validate(self, client):
        good = client.post("/api/flows/validate", json={"flow": flow_dict(2)}).json()
        assert good["ok"] is True

        broken = flow_dict(2)
        broken["steps"][1]["block_id"] = "blk-missing"
        bad = client.post("/api/flows/validate", json={"flow": broken})
        assert bad.status_code == 200
        assert bad.json()["ok"] is False
        assert bad.json()["issues"][0]["code"] == "UNKNOWN_BLOCK"

    def test_simulation(self, client):
        response = client.post(
            "/api/simulations",
            json={
                "flow": flow_dict(3),
                "fail_at_index": 1,
                "step_delay_seconds": 0,
                "transition_delay_seconds": 0,
            },
        )
        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "failed"
        assert data["statuses"] == ["success", "failed", "idle"]

    def test_simulation_bad_index(self, client):
        response = client.post(
            "/api/simulations",
            json={"flow": flow_dict(2), "fail_at_index": 5, "step_delay_seconds": 0},
        )
        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "invalid_fail_index"
