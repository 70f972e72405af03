"""
Authentication for the API.

Requests carry a Supabase-issued JWT; it is verified against the project's
JWKS and mapped to a ``User`` whose ``sub`` owns workflows, runs and credits.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

import jwt
from fastapi import Header, HTTPException, status
from jwt import PyJWKClient
from pydantic import BaseModel

from pipedream import config

logger = logging.getLogger(__name__)

_ALGORITHMS = ["RS256", "ES256"]


class User(BaseModel):
    sub: str  # user id; owner of workflows and credit balance
    email: Optional[str] = None
    role: Optional[str] = None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def get_supabase_jwks_url() -> str:
    base = config.supabase_url()
    if not base:
        raise ValueError("SUPABASE_URL environment variable is required")
    return f"{base}/auth/v1/.well-known/jwks.json"


@lru_cache(maxsize=1)
def get_jwks_client() -> PyJWKClient:
    jwks_url = get_supabase_jwks_url()
    logger.info("Using JWKS endpoint %s", jwks_url)
    return PyJWKClient(jwks_url)


def decode_token(token: str, signing_key) -> User:
    """Check signature, audience and issuer, then build the ``User``."""
    try:
        claims = jwt.decode(
            token,
            signing_key,
            algorithms=_ALGORITHMS,
            audience=config.jwt_audience(),
            issuer=config.jwt_issuer(),
        )
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token has expired")
    except jwt.InvalidTokenError as e:
        raise _unauthorized(f"Invalid token: {e}")

    if not claims.get("sub"):
        raise _unauthorized("Token missing 'sub' claim")
    return User(
        sub=claims["sub"],
        email=claims.get("email"),
        role=claims.get("role", "authenticated"),
    )


def verify_jwt(token: str) -> User:
    try:
        signing_key = get_jwks_client().get_signing_key_from_jwt(token).key
    except jwt.PyJWKClientError as e:
        logger.error("Could not resolve signing key: %s", e)
        raise _unauthorized(f"Token verification failed: {e}")
    except jwt.InvalidTokenError as e:
        raise _unauthorized(f"Invalid token: {e}")
    return decode_token(token, signing_key)


def bearer_token(authorization: str) -> str:
    scheme, _, token = authorization.partition(" ")
    if scheme != "Bearer":
        raise _unauthorized("Authorization header must start with 'Bearer '")
    token = token.strip()
    if not token:
        raise _unauthorized("Token is required")
    return token


async def get_current_user(authorization: str = Header(..., description="Bearer token")) -> User:
    """
    Resolve the caller from ``Authorization: Bearer <jwt>``.

    Usage:
        @router.post("/{workflow_id}/run")
        async def run(workflow_id: str, user: User = Depends(get_current_user)): ...
    """
    return verify_jwt(bearer_token(authorization))
