"""
Tests for the workflow and credits API endpoints.

Authentication, persistence and generation are replaced through
``app.dependency_overrides``; Supabase is an in-memory fake.
"""

import json
import pytest
from fastapi.testclient import TestClient

import sys
from pathlib import Path

backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from fake_supabase import FakeSupabase
from pipedream.main import app
from pipedream.api.dependencies import (
    get_credit_ledger,
    get_executor_registry,
    get_run_options,
    get_workflow_store,
)
from pipedream.auth.dependencies import User, get_current_user
from pipedream.db.workflow_store import WorkflowStore
from pipedream.services.credits import SupabaseCreditLedger
from pipedream.services.executors import build_executor_registry
from pipedream.services.workflow_runner import RunOptions

TEST_USER_1_ID = "11111111-1111-1111-1111-111111111111"
TEST_USER_2_ID = "22222222-2222-2222-2222-222222222222"


def get_test_user_1():
    return User(sub=TEST_USER_1_ID, email="test1@example.com", role="authenticated")


async def fake_flux(prompt, media):
    return f"https://cdn/{prompt.replace(' ', '_')}.png"


def poster_graph():
    return {
        "nodes": [
            {"id": "in-1", "type": "input", "data": {"name": "subject", "required": True}},
            {"id": "in-2", "type": "input", "data": {"name": "styles", "inputType": "string[]", "defaultValue": "ink"}},
            {"id": "text-1", "type": "text", "data": {"value": "A {style} poster of {subject}"}},
            {"id": "flux-1", "type": "fluxDev"},
            {"id": "out-1", "type": "output", "data": {"name": "posters", "outputType": "image[]"}},
        ],
        "edges": [
            {"id": "e1", "source": "in-1", "target": "text-1", "targetHandle": "subject"},
            {"id": "e2", "source": "in-2", "target": "text-1", "targetHandle": "style"},
            {"id": "e3", "source": "text-1", "target": "flux-1", "targetHandle": "prompt"},
            {"id": "e4", "source": "flux-1", "target": "out-1", "targetHandle": "value"},
        ],
    }


@pytest.fixture
def db():
    return {
        "workflows": [
            {
                "id": "wf-1",
                "name": "Posters",
                "user_id": TEST_USER_1_ID,
                "graph": poster_graph(),
                "default_inputs": {"styles": "ink, watercolor"},
            },
            {"id": "wf-2", "name": "Private", "user_id": TEST_USER_2_ID, "graph": poster_graph()},
        ],
        "user_credits": [
            {"user_id": TEST_USER_1_ID, "balance": 4.5, "total_purchased": 10.0, "total_spent": 5.5},
        ],
    }


@pytest.fixture
def client(db):
    supabase = FakeSupabase(db)
    app.dependency_overrides[get_current_user] = get_test_user_1
    app.dependency_overrides[get_workflow_store] = lambda: WorkflowStore(supabase)
    app.dependency_overrides[get_credit_ledger] = lambda: SupabaseCreditLedger(client=supabase, markup=1.0)
    app.dependency_overrides[get_executor_registry] = lambda: build_executor_registry({"fluxDev": fake_flux})
    app.dependency_overrides[get_run_options] = lambda: RunOptions()
    yield TestClient(app)
    app.dependency_overrides.clear()


def _sse_events(response):
    return [
        json.loads(line[len("data: "):])
        for line in response.text.split("\n")
        if line.startswith("data: ")
    ]


class TestSchemaEndpoint:
    def test_schema(self, client):
        response = client.get("/api/v1/workflows/wf-1/schema")

        assert response.status_code == 200
        body = response.json()
        assert [i["name"] for i in body["inputs"]] == ["subject", "styles"]
        assert body["inputs"][0]["required"] is True
        assert body["outputs"] == [{"name": "posters", "type": "image[]"}]

    def test_not_found(self, client):
        assert client.get("/api/v1/workflows/missing/schema").status_code == 404

    def test_other_users_workflow(self, client):
        assert client.get("/api/v1/workflows/wf-2/schema").status_code == 403


class TestRunSavedWorkflow:
    def test_run_fans_out_and_records_run(self, client, db):
        response = client.post("/api/v1/workflows/wf-1/run", json={"inputs": {"subject": "a fox"}})

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "completed"
        assert body["runId"] == "workflow_runs-1"
        assert body["namedOutputs"]["posters"]["items"] == [
            "https://cdn/A_ink_poster_of_a_fox.png",
            "https://cdn/A_watercolor_poster_of_a_fox.png",
        ]

        run = db["workflow_runs"][0]
        assert run["status"] == "completed"
        assert run["triggered_by"] == TEST_USER_1_ID
        assert run["inputs"] == {"styles": "ink, watercolor", "subject": "a fox"}
        assert "posters" in run["outputs"]
        assert run["completed_at"]

    def test_missing_required_input(self, client, db):
        response = client.post("/api/v1/workflows/wf-1/run", json={"inputs": {}})

        assert response.status_code == 422
        assert response.json()["detail"] == {
            "message": "Invalid inputs",
            "errors": ['Required input "subject" is missing'],
        }
        assert "workflow_runs" not in db

    def test_not_found(self, client):
        response = client.post("/api/v1/workflows/missing/run", json={"inputs": {"subject": "x"}})
        assert response.status_code == 404

    def test_other_users_workflow(self, client):
        response = client.post("/api/v1/workflows/wf-2/run", json={"inputs": {"subject": "x"}})
        assert response.status_code == 403

    def test_stream(self, client, db):
        with client.stream(
            "POST", "/api/v1/workflows/wf-1/run/stream", json={"inputs": {"subject": "a fox"}}
        ) as response:
            assert response.status_code == 200
            assert response.headers["content-type"].startswith("text/event-stream")
            response.read()
            events = _sse_events(response)

        assert events[0]["event"] == "workflow_start"
        assert events[0]["totalNodes"] == 5
        final = events[-1]
        assert final["event"] == "workflow_complete"
        assert final["runId"] == "workflow_runs-1"
        assert final["status"] == "completed"
        assert db["workflow_runs"][0]["status"] == "completed"

    def test_run_and_stream_share_result_shape(self, client):
        inputs = {"inputs": {"subject": "a fox"}}
        body = client.post("/api/v1/workflows/wf-1/run", json=inputs).json()
        with client.stream("POST", "/api/v1/workflows/wf-1/run/stream", json=inputs) as response:
            response.read()
            final = _sse_events(response)[-1]

        streamed = final["result"]
        assert set(body) - {"runId"} == set(streamed)
        assert set(body["nodeStates"]["flux-1"]) == set(streamed["nodeStates"]["flux-1"])

        run_item = body["nodeStates"]["flux-1"]["output"]["galleryOutputs"][0]
        stream_item = streamed["nodeStates"]["flux-1"]["output"]["galleryOutputs"][0]
        assert run_item == stream_item
        assert run_item["inputValue"] == "A ink poster of a fox"
        assert body["namedOutputs"] == streamed["namedOutputs"]

    def test_list_runs(self, client):
        client.post("/api/v1/workflows/wf-1/run", json={"inputs": {"subject": "a fox"}})
        client.post("/api/v1/workflows/wf-1/run", json={"inputs": {}})

        response = client.get("/api/v1/workflows/wf-1/runs")

        assert response.status_code == 200
        runs = response.json()
        assert len(runs) == 1
        assert runs[0]["workflow_id"] == "wf-1"
        assert runs[0]["status"] == "completed"


class TestRawWorkflow:
    def test_run_raw(self, client, db):
        graph = poster_graph()
        response = client.post(
            "/api/v1/workflows/run",
            json={**graph, "inputs": {"subject": "a heron", "styles": ["ink"]}},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["runId"] is None
        assert body["nodeStates"]["flux-1"]["status"] == "completed"
        assert body["outputs"]["out-1"]["value"] == "https://cdn/A_ink_poster_of_a_heron.png"
        assert "workflow_runs" not in db

    def test_malformed_graph(self, client):
        response = client.post(
            "/api/v1/workflows/run",
            json={"nodes": [{"id": "l", "type": "list", "data": {"items": 5}}], "edges": []},
        )

        assert response.status_code == 422
        assert response.json()["detail"]["message"] == "Invalid workflow graph"

    def test_validate(self, client):
        graph = poster_graph()
        graph["edges"].append({"id": "bad", "source": "flux-1", "target": "missing", "targetHandle": "x"})

        response = client.post("/api/v1/workflows/validate", json=graph)

        assert response.status_code == 200
        body = response.json()
        assert body["valid"] is True
        assert any(d["edgeId"] == "bad" for d in body["diagnostics"])
        assert [o["name"] for o in body["schema"]["outputs"]] == ["posters"]


class TestCreditsEndpoint:
    def test_get_credits(self, client):
        response = client.get("/api/v1/credits")

        assert response.status_code == 200
        body = response.json()
        assert body["balance"] == 4.5
        assert body["total_spent"] == 5.5
        assert body["transactions"] == []
