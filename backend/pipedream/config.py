"""
Runtime configuration read from the environment (``backend/.env`` in development).

Every setting is a small function so changes to the environment are picked up
without re-importing, and a malformed value falls back to its default.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUTHY


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        parsed = int(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %s", name, raw, default)
        return default
    if parsed < 0:
        return default
    return parsed


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, str(default))
    try:
        parsed = float(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %s", name, raw, default)
        return default
    if parsed < 0:
        return default
    return parsed


# ---------------------------------------------------------------------------
# fal.ai
# ---------------------------------------------------------------------------


def fal_key() -> str:
    key = (os.getenv("FAL_KEY") or "").strip()
    if not key:
        raise ValueError("FAL_KEY environment variable is required")
    return key


def fal_queue_url() -> str:
    return (os.getenv("FAL_QUEUE_URL") or "https://queue.fal.run").rstrip("/")


def fal_pricing_url() -> str:
    return os.getenv("FAL_PRICING_URL") or "https://api.fal.ai/v1/models/pricing"


def fal_poll_interval_seconds() -> float:
    return _env_float("FAL_POLL_INTERVAL_SECONDS", 1.0)


def fal_request_timeout_seconds() -> float:
    return _env_float("FAL_REQUEST_TIMEOUT_SECONDS", 600.0)


# ---------------------------------------------------------------------------
# Supabase
# ---------------------------------------------------------------------------


def supabase_url() -> str:
    return (os.getenv("SUPABASE_URL") or "").rstrip("/")


def supabase_service_role_key() -> str:
    return (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip()


def jwt_issuer() -> str:
    """``SUPABASE_JWT_ISSUER``, or the project's auth endpoint."""
    issuer = os.getenv("SUPABASE_JWT_ISSUER")
    if issuer:
        return issuer
    if supabase_url():
        return f"{supabase_url()}/auth/v1"
    raise ValueError("SUPABASE_JWT_ISSUER or SUPABASE_URL environment variable is required")


def jwt_audience() -> str:
    return os.getenv("SUPABASE_JWT_AUDIENCE") or "authenticated"


def is_local_supabase() -> bool:
    """Local Supabase storage is not reachable by remote viewers, so media is not rehosted."""
    url = supabase_url()
    return "127.0.0.1" in url or "localhost" in url


def media_bucket() -> str:
    return os.getenv("MEDIA_BUCKET") or "media"


# ---------------------------------------------------------------------------
# Workflow runs
# ---------------------------------------------------------------------------


def fanout_max_concurrency() -> int:
    """0 means unbounded."""
    return _env_int("WORKFLOW_FANOUT_MAX_CONCURRENCY", 0)


def item_timeout_seconds() -> float:
    """0 means no per-item timeout."""
    return _env_float("WORKFLOW_ITEM_TIMEOUT_SECONDS", 0.0)


def cycle_policy() -> str:
    raw = (os.getenv("WORKFLOW_CYCLE_POLICY") or "fail").strip().lower()
    if raw not in {"fail", "skip"}:
        logger.warning("Ignoring invalid WORKFLOW_CYCLE_POLICY=%r, using 'fail'", raw)
        return "fail"
    return raw


def parallel_waves_enabled() -> bool:
    return _env_flag("WORKFLOW_PARALLEL_WAVES")


def fail_empty_batch() -> bool:
    """Fail a fan-out node when every one of its items failed."""
    return _env_flag("WORKFLOW_FAIL_EMPTY_BATCH")


# ---------------------------------------------------------------------------
# Credits
# ---------------------------------------------------------------------------


def credit_markup_multiplier() -> float:
    return _env_float("CREDIT_MARKUP_MULTIPLIER", 1.1)
