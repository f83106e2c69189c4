"""
Settings services answering "is this automation enabled for this tenant".

An automation is enabled unless its settings key is explicitly false in the
tenant's automation_settings, or it is listed in DISABLED_AUTOMATIONS.
"""
import asyncio
import logging
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional

from supabase import Client

from clinic_automation.exceptions import DependencyUnavailable
from clinic_automation.store.base import SettingsService
from clinic_automation.store.supabase_store import TENANT_COLUMN
from clinic_automation.utils.circuit_breaker import (
    NETWORK_EXCEPTIONS,
    CircuitBreaker,
    CircuitBreakerOpen,
    supabase_breaker,
)
from clinic_automation.utils.timeouts import with_timeout

logger = logging.getLogger(__name__)


def _enabled_in(automation_settings: Optional[Mapping[str, Any]], automation_key: str) -> bool:
    if not automation_settings:
        return True
    return automation_settings.get(automation_key) is not False


class StaticSettingsService(SettingsService):
    """
    In-process settings, keyed by tenant id (None for the untenanted scope).

    Used by the CLI when no settings backend is configured, and in tests.
    """

    def __init__(
        self,
        overrides: Optional[Dict[Optional[str], Dict[str, bool]]] = None,
        disabled: Iterable[str] = (),
    ):
        self.overrides = overrides or {}
        self.disabled: FrozenSet[str] = frozenset(disabled)

    def set(self, tenant_id: Optional[str], automation_key: str, enabled: bool) -> None:
        self.overrides.setdefault(tenant_id, {})[automation_key] = enabled

    async def is_automation_enabled(self, tenant_id: Optional[str], automation_key: str) -> bool:
        if automation_key in self.disabled:
            return False
        return _enabled_in(self.overrides.get(tenant_id), automation_key)


class SupabaseSettingsService(SettingsService):
    """Reads clinic_settings.automation_settings (JSON object of settings key -> bool)."""

    def __init__(
        self,
        client: Client,
        disabled: Iterable[str] = (),
        timeout_seconds: float = 30.0,
        breaker: CircuitBreaker = supabase_breaker,
    ):
        self.client = client
        self.disabled: FrozenSet[str] = frozenset(disabled)
        self.timeout_seconds = timeout_seconds
        self.breaker = breaker

    async def _fetch(self, tenant_id: Optional[str]):
        query = self.client.table('clinic_settings').select('automation_settings')
        if tenant_id:
            query = query.eq(TENANT_COLUMN, tenant_id)
        else:
            query = query.is_(TENANT_COLUMN, 'null')
        query = query.limit(1)
        return await with_timeout(asyncio.to_thread(query.execute), self.timeout_seconds, 'settings query')

    async def is_automation_enabled(self, tenant_id: Optional[str], automation_key: str) -> bool:
        if automation_key in self.disabled:
            return False

        try:
            result = await self.breaker.call(self._fetch, tenant_id)
        except CircuitBreakerOpen as e:
            raise DependencyUnavailable('settings service', str(e))
        except NETWORK_EXCEPTIONS as e:
            raise DependencyUnavailable('settings service', str(e))

        rows = result.data or []
        settings = rows[0].get('automation_settings') if rows else None
        enabled = _enabled_in(settings, automation_key)
        if not enabled:
            logger.debug(f"{automation_key} disabled for tenant {tenant_id}")
        return enabled
