from __future__ import annotations

from functools import lru_cache

from supabase import Client, create_client

from src.config import settings


class PersistenceError(Exception):
    """Raised when a read or write against the store fails."""


@lru_cache(maxsize=1)
def get_supabase() -> Client:
    """Process-wide client, created on first use and never replaced."""
    return create_client(settings.supabase_url, settings.supabase_service_role_key)
