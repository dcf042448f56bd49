"""
Supabase client module for the scheduling repository.

Only this module creates Supabase clients; the repository receives a client
built here (or a test double) through its constructor.
"""
import os
import logging
from typing import Dict

from supabase import create_client, Client
from supabase.client import ClientOptions

logger = logging.getLogger(__name__)


class Schema:
    """Database schema constants for explicit schema binding."""
    PUBLIC = 'public'
    HEALTHCARE = 'healthcare'


def _get_credentials() -> tuple:
    """Get Supabase credentials from environment."""
    supabase_url = os.getenv("SUPABASE_URL")
    supabase_key = os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_ANON_KEY")

    if not supabase_url or not supabase_key:
        raise ValueError("SUPABASE_URL and SUPABASE_ANON_KEY/SERVICE_ROLE_KEY must be set")

    return supabase_url, supabase_key


# Cached clients per schema
_supabase_clients: Dict[str, Client] = {}


def create_supabase_client(schema: str = Schema.HEALTHCARE) -> Client:
    """
    Create or get cached Supabase client for specified schema.

    Args:
        schema: Database schema to use ('healthcare', 'public')

    Returns:
        Configured Supabase client
    """
    if schema in _supabase_clients:
        return _supabase_clients[schema]

    supabase_url, supabase_key = _get_credentials()

    options = ClientOptions(
        schema=schema,
        auto_refresh_token=False,  # For server/service-role usage
        persist_session=False
    )

    client = create_client(supabase_url, supabase_key, options=options)
    _supabase_clients[schema] = client
    logger.info(f"Created Supabase client for schema: {schema}")

    return client


def get_healthcare_client() -> Client:
    """Get Supabase client bound to the healthcare schema."""
    return create_supabase_client(Schema.HEALTHCARE)
