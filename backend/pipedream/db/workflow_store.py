"""
Workflow and run persistence.

``workflows`` rows hold the editor graph as an opaque JSON blob plus default
run inputs; ``workflow_runs`` rows record one run each (inputs, outputs,
per-node states and timing).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field
from supabase import Client

from pipedream.models.execution import WorkflowRunResult

logger = logging.getLogger(__name__)

RUNS_PAGE_SIZE = 50


class StoredWorkflow(BaseModel):
    id: str
    name: str = ""
    user_id: str | None = None
    graph: dict[str, Any] = Field(default_factory=lambda: {"nodes": [], "edges": []})
    default_inputs: dict[str, Any] = Field(default_factory=dict)

    @property
    def nodes(self) -> list[dict[str, Any]]:
        return list(self.graph.get("nodes") or [])

    @property
    def edges(self) -> list[dict[str, Any]]:
        return list(self.graph.get("edges") or [])

    def run_inputs(self, overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        """Stored defaults overlaid with the caller's inputs."""
        return {**self.default_inputs, **(overrides or {})}


class WorkflowRunRecord(BaseModel):
    id: str
    workflow_id: str
    status: Literal["pending", "running", "completed", "failed"]
    triggered_by: str | None = None
    inputs: dict[str, Any] = Field(default_factory=dict)
    outputs: dict[str, Any] | None = None
    node_states: dict[str, Any] | None = None
    error: str | None = None
    triggered_at: datetime | None = None
    completed_at: datetime | None = None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class WorkflowStore:
    def __init__(self, client: Client):
        self.client = client

    def get_workflow(self, workflow_id: str) -> StoredWorkflow | None:
        result = self.client.table("workflows")\
            .select("id, name, user_id, graph, default_inputs")\
            .eq("id", workflow_id)\
            .execute()
        if not result.data:
            return None

        row = result.data[0]
        return StoredWorkflow(
            id=str(row["id"]),
            name=row.get("name") or "",
            user_id=str(row["user_id"]) if row.get("user_id") else None,
            graph=row.get("graph") or {"nodes": [], "edges": []},
            default_inputs=row.get("default_inputs") or {},
        )

    def create_run(self, workflow_id: str, inputs: dict[str, Any], triggered_by: str | None) -> str:
        result = self.client.table("workflow_runs")\
            .insert({
                "workflow_id": workflow_id,
                "status": "running",
                "triggered_by": triggered_by,
                "inputs": inputs,
                "triggered_at": _now(),
            })\
            .execute()
        if not result.data:
            raise RuntimeError("Failed to create workflow run")
        return str(result.data[0]["id"])

    def finish_run(self, run_id: str, result: WorkflowRunResult) -> None:
        dumped = result.model_dump(mode="json", by_alias=True)
        self.client.table("workflow_runs")\
            .update({
                "status": result.status,
                "outputs": dumped["namedOutputs"] or dumped["outputs"],
                "node_states": dumped["nodeStates"],
                "error": result.error.message if result.error else None,
                "completed_at": _now(),
            })\
            .eq("id", run_id)\
            .execute()
        logger.info("Workflow run %s stored with status %s", run_id, result.status)

    def list_runs(self, workflow_id: str, limit: int = RUNS_PAGE_SIZE) -> list[WorkflowRunRecord]:
        result = self.client.table("workflow_runs")\
            .select("*")\
            .eq("workflow_id", workflow_id)\
            .order("triggered_at", desc=True)\
            .limit(limit)\
            .execute()
        return [WorkflowRunRecord.model_validate(row) for row in (result.data or [])]
