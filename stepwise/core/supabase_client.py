from fastapi import status
from supabase import Client, create_client

from stepwise.core.config import settings
from stepwise.utils.exception import AppException
from stepwise.utils.logging.otel_logger import logger


def get_supabase_client() -> Client:
    """
    Dependency function to create and return a Supabase client.
    """
    if not settings.SUPABASE_URL or not settings.SUPABASE_KEY:
        raise AppException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            message="Supabase client is not configured on the server.",
            code="AUTH_PROVIDER_UNAVAILABLE",
        )
    try:
        return create_client(settings.SUPABASE_URL, settings.SUPABASE_KEY)
    except Exception as e:
        logger.error(f"Failed to create Supabase client: {e}")
        raise
