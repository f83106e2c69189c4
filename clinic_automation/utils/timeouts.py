"""
Timeouts for external collaborator calls.

Every network-bound call the engine makes (record store queries, channel
sends) is bounded individually so a hung call cannot stall a tenant's batch.
Separate from the HTTP-level timeouts handed to the Supabase client.

Usage:
    from clinic_automation.utils.timeouts import with_timeout

    rows = await with_timeout(fetch(), settings.STORE_TIMEOUT_SECONDS, "appointments query")
"""
import asyncio
import logging
from typing import Awaitable, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Supabase PostgREST - bulk candidate queries can be slow on large tenants
SUPABASE_HTTP_TIMEOUT = httpx.Timeout(30.0, connect=10.0)

# Slack incoming webhook used for ops alerts
SLACK_TIMEOUT_SECONDS = 10.0

# SMTP socket timeout (passed to smtplib.SMTP)
SMTP_SOCKET_TIMEOUT_SECONDS = 10.0


class CallTimeout(TimeoutError):
    """Raised when a bounded external call exceeds its time limit."""

    def __init__(self, what: str, seconds: float):
        self.what = what
        self.seconds = seconds
        super().__init__(f"{what} timed out after {seconds:.1f}s")


async def with_timeout(awaitable: Awaitable[T], seconds: float, what: str) -> T:
    """Await with a deadline, raising CallTimeout (a TimeoutError) on expiry."""
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError:
        logger.warning(f"{what} timed out after {seconds:.1f}s")
        raise CallTimeout(what, seconds)
