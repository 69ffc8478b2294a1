"""
Supabase Client
===============
Provides the configured Supabase client used by the remote store and by
bearer-token verification in the routers.

Uses the service_role key because session writes and summary increments
run through RPCs on behalf of the authenticated owner.
"""

import logging
from functools import lru_cache

from supabase import Client, create_client

from hydracat.config import Settings, get_settings

logger = logging.getLogger(__name__)


class SupabaseConfigError(RuntimeError):
    """Supabase credentials are missing from the environment."""


def create_supabase_client(settings: Settings) -> Client:
    if not settings.supabase_service_key:
        raise SupabaseConfigError("SUPABASE_SERVICE_KEY is not set; the remote store cannot connect")
    logger.info("Connecting to Supabase at %s", settings.supabase_url)
    return create_client(settings.supabase_url, settings.supabase_service_key)


@lru_cache
def get_supabase_client() -> Client:
    return create_supabase_client(get_settings())
