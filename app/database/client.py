"""Supabase client construction."""

from typing import Optional

from supabase import Client, create_client

from app.core.config import Settings
from app.core.logging import get_logger

logger = get_logger(__name__)


def create_supabase_client(settings: Settings) -> Optional[Client]:
    """
    Create the Supabase client used by the agent registry and handlers.

    Returns:
        A client, or None when Supabase is not configured or the client
        cannot be created (the service then runs in development mode)
    """
    if not settings.supabase_configured:
        logger.warning("Supabase not configured, running in development mode")
        return None

    try:
        return create_client(str(settings.supabase_url), settings.supabase_key)
    except Exception as e:
        logger.warning("Database connection failed, running in development mode", error=str(e))
        return None
