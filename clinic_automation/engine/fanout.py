"""
Tenant Fan-out Driver

Runs one job for every tenant, concurrently up to MAX_CONCURRENT_TENANTS.
Tenants share no mutable state, so their runs are independent: a tenant
whose run raises is recorded as failed (and reported to ops) while the other
tenants carry on. With no tenants configured the job runs once in the
untenanted scope.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence

from clinic_automation.engine.job import AutomationJob
from clinic_automation.engine.ops_alerts import OpsAlerter
from clinic_automation.models import JobRunResult
from clinic_automation.store.base import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class FanOutResult:
    job_id: str
    results: Dict[Optional[str], JobRunResult] = field(default_factory=dict)
    failures: Dict[Optional[str], str] = field(default_factory=dict)

    @property
    def tenants(self) -> int:
        return len(self.results) + len(self.failures)

    def totals(self) -> Dict[str, int]:
        totals = {"processed": 0, "succeeded": 0, "skipped": 0, "failed": 0}
        for result in self.results.values():
            for key, value in result.counts().items():
                totals[key] += value
        totals["failed_tenants"] = len(self.failures)
        return totals


class TenantFanOut:
    """Runs a job once per tenant with bounded concurrency."""

    def __init__(
        self,
        store: RecordStore,
        max_concurrency: int = 4,
        alerter: Optional[OpsAlerter] = None,
    ):
        self.store = store
        self.max_concurrency = max_concurrency
        self.alerter = alerter

    async def _resolve_tenants(self, tenant_ids: Optional[Sequence[Optional[str]]]) -> Sequence[Optional[str]]:
        if tenant_ids is not None:
            return tenant_ids
        tenants = await self.store.list_tenant_ids()
        return tenants or [None]

    async def run(self, job: AutomationJob, tenant_ids: Optional[Sequence[Optional[str]]] = None) -> FanOutResult:
        tenants = await self._resolve_tenants(tenant_ids)
        semaphore = asyncio.Semaphore(self.max_concurrency)
        outcome = FanOutResult(job_id=job.job_id)

        async def run_tenant(tenant_id: Optional[str]) -> None:
            async with semaphore:
                try:
                    outcome.results[tenant_id] = await job.run(tenant_id)
                except Exception as e:
                    reason = f"{type(e).__name__}: {e}"
                    outcome.failures[tenant_id] = reason
                    logger.error(f"[{job.job_id}] tenant {tenant_id} run failed: {reason}", exc_info=True)
                    if self.alerter is not None:
                        await self.alerter.tenant_run_failed(job.job_id, tenant_id, reason)

        await asyncio.gather(*(run_tenant(tenant_id) for tenant_id in tenants))

        logger.info(f"[{job.job_id}] fan-out across {outcome.tenants} tenants: {outcome.totals()}")
        return outcome
