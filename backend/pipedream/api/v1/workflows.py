"""
Workflow execution API endpoints.

Saved workflows are run by id with named run inputs; their Input and Output
nodes form the callable contract exposed by ``/schema``. Raw (unsaved) graphs
can be run or validated directly.

Generative calls made during a run are billed to the requesting user.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field, ValidationError

from pipedream.api.dependencies import get_executor_registry, get_run_options, get_workflow_store
from pipedream.auth.dependencies import User, get_current_user
from pipedream.db.workflow_store import StoredWorkflow, WorkflowRunRecord, WorkflowStore
from pipedream.models.execution import WorkflowRunResult
from pipedream.models.graph import parse_graph
from pipedream.services.connection_validation import ConnectionDiagnostic, validate_connections
from pipedream.services.executors import ExecutorRegistry
from pipedream.services.schema_extractor import extract_workflow_schema, validate_workflow_inputs
from pipedream.services.workflow_runner import RunOptions, run_workflow, stream_workflow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workflows", tags=["workflows"])

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # disable nginx buffering
}


class RunWorkflowRequest(BaseModel):
    """Run a saved workflow. ``inputs`` override the workflow's stored defaults."""
    inputs: Dict[str, Any] = Field(default_factory=dict)


class RunRawRequest(BaseModel):
    """Run an unsaved editor graph."""
    nodes: List[Dict[str, Any]]
    edges: List[Dict[str, Any]] = Field(default_factory=list)
    inputs: Dict[str, Any] = Field(default_factory=dict)


class ValidateRequest(BaseModel):
    nodes: List[Dict[str, Any]]
    edges: List[Dict[str, Any]] = Field(default_factory=list)


class ValidateResponse(BaseModel):
    valid: bool
    diagnostics: List[ConnectionDiagnostic]
    workflow_schema: Dict[str, Any] = Field(serialization_alias="schema")


class WorkflowRunResponse(WorkflowRunResult):
    run_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_workflow_or_404(store: WorkflowStore, workflow_id: str, user: User) -> StoredWorkflow:
    workflow = store.get_workflow(workflow_id)
    if workflow is None:
        raise HTTPException(status_code=404, detail="Workflow not found")
    if workflow.user_id and workflow.user_id != user.sub:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have permission to access this workflow",
        )
    return workflow


def _check_graph(nodes: List[Dict[str, Any]], edges: List[Dict[str, Any]]) -> None:
    try:
        parse_graph(nodes, edges)
    except ValidationError as e:
        raise HTTPException(
            status_code=422,
            detail={"message": "Invalid workflow graph", "errors": e.errors(include_url=False)},
        )


def _check_inputs(nodes: List[Dict[str, Any]], inputs: Dict[str, Any]) -> None:
    errors = validate_workflow_inputs(extract_workflow_schema(nodes), inputs)
    if errors:
        raise HTTPException(status_code=422, detail={"message": "Invalid inputs", "errors": errors})


def _start_run(store: WorkflowStore, workflow_id: str, inputs: Dict[str, Any], user: User) -> Optional[str]:
    try:
        return store.create_run(workflow_id, inputs, triggered_by=user.sub)
    except Exception:
        # Run history is best effort; the run itself still goes ahead.
        logger.exception("Failed to record run start for workflow %s", workflow_id)
        return None


def _finish_run(store: WorkflowStore, run_id: Optional[str], result: WorkflowRunResult) -> None:
    if run_id is None:
        return
    try:
        store.finish_run(run_id, result)
    except Exception:
        logger.exception("Failed to store result of run %s", run_id)


# ---------------------------------------------------------------------------
# Raw graphs
# ---------------------------------------------------------------------------


@router.post("/run", response_model=WorkflowRunResponse)
async def run_raw_workflow(
    request: RunRawRequest,
    user: User = Depends(get_current_user),
    registry: ExecutorRegistry = Depends(get_executor_registry),
    options: RunOptions = Depends(get_run_options),
):
    """Run an unsaved graph and return every node's state. Nothing is persisted."""
    _check_graph(request.nodes, request.edges)
    _check_inputs(request.nodes, request.inputs)

    logger.info("Running raw workflow for user %s (%d nodes)", user.sub, len(request.nodes))
    result = await run_workflow(
        request.nodes, request.edges, request.inputs, registry=registry, options=options
    )
    return WorkflowRunResponse(**result.model_dump())


@router.post("/validate", response_model=ValidateResponse, response_model_by_alias=True)
async def validate_workflow(
    request: ValidateRequest,
    user: User = Depends(get_current_user),
):
    """Connection diagnostics and the callable schema for an unsaved graph."""
    _check_graph(request.nodes, request.edges)
    graph = parse_graph(request.nodes, request.edges)
    diagnostics = validate_connections(graph.nodes, graph.edges)
    return ValidateResponse(
        valid=not any(d.level == "error" for d in diagnostics),
        diagnostics=diagnostics,
        workflow_schema=extract_workflow_schema(graph.nodes).to_response(),
    )


# ---------------------------------------------------------------------------
# Saved workflows
# ---------------------------------------------------------------------------


@router.get("/{workflow_id}/schema")
async def get_workflow_schema(
    workflow_id: str,
    user: User = Depends(get_current_user),
    store: WorkflowStore = Depends(get_workflow_store),
):
    """Input parameters and named outputs of a saved workflow."""
    workflow = _get_workflow_or_404(store, workflow_id, user)
    return extract_workflow_schema(workflow.nodes).to_response()


@router.post("/{workflow_id}/run", response_model=WorkflowRunResponse)
async def run_saved_workflow(
    workflow_id: str,
    request: RunWorkflowRequest,
    user: User = Depends(get_current_user),
    store: WorkflowStore = Depends(get_workflow_store),
    registry: ExecutorRegistry = Depends(get_executor_registry),
    options: RunOptions = Depends(get_run_options),
):
    """
    Run a saved workflow headlessly.

    Returns 422 when a required input is missing. A run in which some nodes
    fail still returns 200 with ``status="failed"`` and the partial results.
    """
    workflow = _get_workflow_or_404(store, workflow_id, user)
    inputs = workflow.run_inputs(request.inputs)
    _check_graph(workflow.nodes, workflow.edges)
    _check_inputs(workflow.nodes, inputs)

    run_id = _start_run(store, workflow_id, inputs, user)
    logger.info("Running workflow %s (run %s)", workflow_id, run_id)

    result = await run_workflow(
        workflow.nodes, workflow.edges, inputs, registry=registry, options=options
    )
    _finish_run(store, run_id, result)
    return WorkflowRunResponse(run_id=run_id, **result.model_dump())


@router.post("/{workflow_id}/run/stream")
async def run_saved_workflow_stream(
    workflow_id: str,
    request: RunWorkflowRequest,
    user: User = Depends(get_current_user),
    store: WorkflowStore = Depends(get_workflow_store),
    registry: ExecutorRegistry = Depends(get_executor_registry),
    options: RunOptions = Depends(get_run_options),
):
    """
    Run a saved workflow with Server-Sent Events (SSE) streaming.

    Events: workflow_start, node_start, node_complete, node_error and a final
    workflow_complete carrying the full run result and ``runId``.
    """
    workflow = _get_workflow_or_404(store, workflow_id, user)
    inputs = workflow.run_inputs(request.inputs)
    _check_graph(workflow.nodes, workflow.edges)
    _check_inputs(workflow.nodes, inputs)

    run_id = _start_run(store, workflow_id, inputs, user)

    async def event_generator():
        async for event in stream_workflow(
            workflow.nodes, workflow.edges, inputs, registry=registry, options=options
        ):
            payload = json.loads(event[len("data: "):])
            if payload.get("event") != "workflow_complete":
                yield event
                continue

            _finish_run(store, run_id, WorkflowRunResult.model_validate(payload["result"]))
            payload["runId"] = run_id
            yield f"data: {json.dumps(payload)}\n\n"

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers=_SSE_HEADERS,
    )


@router.get("/{workflow_id}/runs", response_model=List[WorkflowRunRecord])
async def list_workflow_runs(
    workflow_id: str,
    user: User = Depends(get_current_user),
    store: WorkflowStore = Depends(get_workflow_store),
):
    """Latest runs of a workflow, newest first."""
    _get_workflow_or_404(store, workflow_id, user)
    try:
        return store.list_runs(workflow_id)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to fetch runs: {e}")
