"""
Automation Scheduler

Registers every catalog entry on an APScheduler AsyncIOScheduler with its
cron schedule. Each tick re-reads the registry's enabled flag, so disabling a
job takes effect before its next tick without cancelling a run in flight.
"""
import logging
from typing import Any, Dict, Mapping, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from clinic_automation.engine.fanout import FanOutResult, TenantFanOut
from clinic_automation.engine.job import AutomationJob
from clinic_automation.exceptions import NotFoundError
from clinic_automation.models import JobRunResult
from clinic_automation.registry import AutomationRegistry

logger = logging.getLogger(__name__)

MISFIRE_GRACE_SECONDS = 120


class AutomationScheduler:
    """Cron-driven trigger for the registered automations."""

    def __init__(
        self,
        registry: AutomationRegistry,
        jobs: Mapping[str, AutomationJob],
        fanout: TenantFanOut,
        timezone: str = "UTC",
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.registry = registry
        self.jobs = dict(jobs)
        self.fanout = fanout
        self.timezone = timezone
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone)
        self.is_running = False
        self.stats: Dict[str, Dict[str, Any]] = {}

    def job_for(self, job_id: str) -> AutomationJob:
        self.registry.get(job_id)  # raises NotFoundError for unknown ids
        job = self.jobs.get(job_id)
        if job is None:
            raise NotFoundError("automation implementation", job_id)
        return job

    async def tick(self, job_id: str) -> Optional[FanOutResult]:
        """One scheduled firing: skip when disabled, otherwise fan out across tenants."""
        if not self.registry.is_enabled(job_id):
            logger.info(f"[{job_id}] disabled in registry, skipping tick")
            self.stats.setdefault(job_id, {}).update(last_skipped=True)
            return None

        try:
            result = await self.fanout.run(self.job_for(job_id))
        except Exception as e:
            # Tenant listing failed; nothing ran
            logger.error(f"[{job_id}] scheduled run failed before fan-out: {e}", exc_info=True)
            self.stats.setdefault(job_id, {}).update(last_error=str(e), last_skipped=False)
            return None

        self.stats[job_id] = {
            "last_skipped": False,
            "last_totals": result.totals(),
            "failed_tenants": sorted(str(t) for t in result.failures),
        }
        return result

    def register_all(self) -> None:
        for descriptor in self.registry.list():
            if descriptor.id not in self.jobs:
                logger.warning(f"No implementation registered for automation {descriptor.id}")
                continue
            self.scheduler.add_job(
                self.tick,
                trigger=CronTrigger.from_crontab(descriptor.schedule, timezone=self.timezone),
                args=[descriptor.id],
                id=descriptor.id,
                name=descriptor.name,
                misfire_grace_time=MISFIRE_GRACE_SECONDS,
                coalesce=True,
                max_instances=1,
                replace_existing=True,
            )
            logger.info(f"Scheduled {descriptor.id} ({descriptor.schedule}, enabled={descriptor.enabled})")

    def start(self) -> None:
        if not self.is_running:
            self.register_all()
            self.scheduler.start()
            self.is_running = True
            logger.info(f"Automation scheduler started with {len(self.scheduler.get_jobs())} jobs")

    def stop(self) -> None:
        if self.is_running:
            self.scheduler.shutdown(wait=False)
            self.is_running = False
            logger.info("Automation scheduler stopped")

    async def run_now(self, job_id: str, tenant_id: Optional[str] = None):
        """
        Run a job immediately, regardless of its schedule.

        With a tenant id the job runs for that tenant only and returns its
        JobRunResult; without one it fans out and returns a FanOutResult.
        """
        job = self.job_for(job_id)
        if tenant_id is not None:
            result: JobRunResult = await job.run(tenant_id)
            return result
        return await self.fanout.run(job)
