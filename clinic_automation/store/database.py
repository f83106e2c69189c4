"""
Supabase clients for the record store and the settings service.

create_supabase_client() is the only place that calls supabase.create_client.
Clients are synchronous and cached per (schema, project URL); the store and
settings service run .execute() on worker threads.
"""
import logging
from typing import Dict, Optional, Tuple

import httpx
from supabase import Client, create_client
from supabase.client import ClientOptions

from clinic_automation.config import AutomationSettings, get_settings
from clinic_automation.utils.timeouts import SUPABASE_HTTP_TIMEOUT

logger = logging.getLogger(__name__)


class Schema:
    """Postgres schemas the engine reads."""
    PUBLIC = 'public'
    HEALTHCARE = 'healthcare'


# One pooled connection set per scheduler process is plenty for batch jobs
HTTP_LIMITS = httpx.Limits(max_connections=20, max_keepalive_connections=5, keepalive_expiry=30.0)

_clients: Dict[Tuple[str, str], Client] = {}


def create_supabase_client(
    schema: str = Schema.HEALTHCARE,
    settings: Optional[AutomationSettings] = None,
) -> Client:
    """
    Return the cached client for a schema, creating it on first use.

    Raises:
        ValueError: SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY are not set
    """
    settings = settings or get_settings()
    if not settings.supabase_configured:
        raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")

    key = (schema, settings.SUPABASE_URL)
    client = _clients.get(key)
    if client is not None:
        return client

    # Service-role key: no user session to persist or refresh
    options = ClientOptions(schema=schema, auto_refresh_token=False, persist_session=False)
    client = create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY, options=options)

    postgrest = getattr(client, '_postgrest', None)
    if postgrest is not None and hasattr(postgrest, 'session'):
        postgrest.session = httpx.Client(
            http2=False,
            timeout=SUPABASE_HTTP_TIMEOUT,
            limits=HTTP_LIMITS,
            follow_redirects=True,
        )

    _clients[key] = client
    logger.info(f"Supabase client ready (schema={schema})")
    return client


def reset_clients() -> None:
    """Drop cached clients (credential rotation, tests)."""
    _clients.clear()
