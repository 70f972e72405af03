"""
FastAPI dependencies shared by the v1 routers.

Everything with side effects (database, billing, remote generation) is
provided here so tests can swap it through ``app.dependency_overrides``.
"""

from __future__ import annotations

from fastapi import Depends

from pipedream.auth.dependencies import User, get_current_user
from pipedream.db.supabase import get_supabase
from pipedream.db.workflow_store import WorkflowStore
from pipedream.generation.fal import build_fal_generators
from pipedream.services.credits import SupabaseCreditLedger, billing_wrapper
from pipedream.services.executors import ExecutorRegistry, build_executor_registry
from pipedream.services.workflow_runner import RunOptions


def get_workflow_store() -> WorkflowStore:
    return WorkflowStore(get_supabase().client)


def get_credit_ledger() -> SupabaseCreditLedger:
    return SupabaseCreditLedger()


def get_run_options() -> RunOptions:
    return RunOptions.from_env()


def get_executor_registry(
    user: User = Depends(get_current_user),
    ledger: SupabaseCreditLedger = Depends(get_credit_ledger),
) -> ExecutorRegistry:
    """Executors whose fal.ai calls are billed to the requesting user."""
    generators = build_fal_generators(wrap=billing_wrapper(ledger, user.sub))
    return build_executor_registry(generators)
