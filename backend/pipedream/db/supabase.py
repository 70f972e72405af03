"""
Process-wide Supabase client.

Connects with the service role key; row access checks (workflow ownership,
credit balances) are done by the API layer, not by RLS.
"""

from __future__ import annotations

import logging
from typing import Optional

from supabase import Client, create_client

from pipedream import config

logger = logging.getLogger(__name__)


class SupabaseClient:
    """Singleton wrapper; the first instantiation creates the client."""

    _instance: Optional["SupabaseClient"] = None
    _client: Optional[Client] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._client is not None:
            return

        url = config.supabase_url()
        key = config.supabase_service_role_key()
        if not url:
            raise ValueError("SUPABASE_URL environment variable is required")
        if not key:
            raise ValueError("SUPABASE_SERVICE_ROLE_KEY environment variable is required")

        try:
            self._client = create_client(url, key)
        except Exception as e:
            raise ValueError(f"Failed to create Supabase client: {e}") from e
        logger.info("Supabase client created for %s", url)

    @property
    def client(self) -> Client:
        if self._client is None:
            raise RuntimeError("Supabase client not initialized. Check environment variables.")
        return self._client

    def storage(self):
        return self.client.storage


def get_supabase() -> SupabaseClient:
    return SupabaseClient()
