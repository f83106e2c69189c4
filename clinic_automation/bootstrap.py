"""
Engine wiring.

create_engine() builds the collaborators from settings (Supabase record store
and settings service, Twilio/SMTP/in-app channels, Slack ops alerts) unless
they are passed in, and returns an AutomationEngine that owns the registry,
the job instances, the tenant fan-out, the cron scheduler and the one-shot
pool.
"""
import logging
from typing import Dict, Optional

from clinic_automation.config import AutomationSettings, get_settings
from clinic_automation.engine.fanout import FanOutResult, TenantFanOut
from clinic_automation.engine.job import AutomationContext, AutomationJob
from clinic_automation.engine.ops_alerts import OpsAlerter
from clinic_automation.engine.scheduler import AutomationScheduler
from clinic_automation.engine.worker_pool import OneShotPool
from clinic_automation.jobs import build_jobs
from clinic_automation.jobs.welcome_messages import WelcomeMessageJob, WelcomeMessenger
from clinic_automation.models import JobRunResult
from clinic_automation.notifications.channels import InAppNotifier, SmtpEmailSender, TwilioSmsSender
from clinic_automation.notifications.dispatcher import NotificationDispatcher
from clinic_automation.notifications.roles import RoleMap
from clinic_automation.registry import AutomationRegistry
from clinic_automation.store.base import RecordStore, SettingsService
from clinic_automation.utils.circuit_breaker import get_circuit_stats
from clinic_automation.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


class AutomationEngine:
    """Everything needed to run automations on demand or on schedule."""

    def __init__(
        self,
        context: AutomationContext,
        registry: AutomationRegistry,
        jobs: Dict[str, AutomationJob],
        fanout: TenantFanOut,
        scheduler: AutomationScheduler,
        pool: OneShotPool,
    ):
        self.context = context
        self.registry = registry
        self.jobs = jobs
        self.fanout = fanout
        self.scheduler = scheduler
        self.pool = pool
        self.welcome = WelcomeMessenger(self.jobs[WelcomeMessageJob.job_id], pool)

    async def run(self, job_id: str, tenant_id: Optional[str] = None) -> JobRunResult:
        """Run one job for one tenant (None: the untenanted scope)."""
        return await self.scheduler.job_for(job_id).run(tenant_id)

    async def run_all_tenants(self, job_id: str) -> FanOutResult:
        return await self.scheduler.run_now(job_id)

    def start(self) -> None:
        self.scheduler.start()

    async def stop(self) -> None:
        self.scheduler.stop()
        if self.pool.pending:
            logger.info(f"Waiting for {self.pool.pending} one-shot tasks")
        await self.pool.drain()

    def status(self) -> dict:
        return {
            "scheduler_running": self.scheduler.is_running,
            "automations": [
                {
                    "id": d.id,
                    "name": d.name,
                    "schedule": d.schedule,
                    "category": d.category.value,
                    "priority": d.priority.value,
                    "enabled": d.enabled,
                }
                for d in self.registry.list()
            ],
            "last_ticks": self.scheduler.stats,
            "one_shot_pool": {**self.pool.stats, "pending": self.pool.pending},
            "circuit_breakers": get_circuit_stats(),
        }


def _default_store(settings: AutomationSettings) -> RecordStore:
    from clinic_automation.store.database import Schema, create_supabase_client
    from clinic_automation.store.supabase_store import SupabaseRecordStore

    client = create_supabase_client(Schema.HEALTHCARE, settings)
    return SupabaseRecordStore(client, timeout_seconds=settings.STORE_TIMEOUT_SECONDS)


def _default_settings_service(settings: AutomationSettings) -> SettingsService:
    from clinic_automation.store.settings_service import StaticSettingsService, SupabaseSettingsService

    if not settings.supabase_configured:
        logger.warning("Supabase not configured - every automation is enabled unless listed in DISABLED_AUTOMATIONS")
        return StaticSettingsService(disabled=settings.disabled_automations)

    from clinic_automation.store.database import Schema, create_supabase_client

    client = create_supabase_client(Schema.HEALTHCARE, settings)
    return SupabaseSettingsService(
        client,
        disabled=settings.disabled_automations,
        timeout_seconds=settings.STORE_TIMEOUT_SECONDS,
    )


def create_engine(
    settings: Optional[AutomationSettings] = None,
    store: Optional[RecordStore] = None,
    settings_service: Optional[SettingsService] = None,
    clock: Optional[Clock] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
    registry: Optional[AutomationRegistry] = None,
    alerter: Optional[OpsAlerter] = None,
    role_map: Optional[RoleMap] = None,
) -> AutomationEngine:
    """Build an engine; collaborators not given are created from settings."""
    settings = settings or get_settings()
    store = store or _default_store(settings)
    settings_service = settings_service or _default_settings_service(settings)
    clock = clock or SystemClock()

    if dispatcher is None:
        dispatcher = NotificationDispatcher(
            sms=TwilioSmsSender.from_settings(settings),
            email=SmtpEmailSender.from_settings(settings),
            in_app=InAppNotifier(store),
            timeout_seconds=settings.CHANNEL_TIMEOUT_SECONDS,
            clinic_name=settings.CLINIC_NAME,
        )

    context = AutomationContext(
        store=store,
        settings_service=settings_service,
        dispatcher=dispatcher,
        clock=clock,
        settings=settings,
        role_map=role_map or RoleMap(),
    )
    registry = registry or AutomationRegistry()
    jobs = build_jobs(context)
    fanout = TenantFanOut(
        store,
        max_concurrency=settings.MAX_CONCURRENT_TENANTS,
        alerter=alerter or OpsAlerter(settings.SLACK_OPS_WEBHOOK_URL),
    )
    scheduler = AutomationScheduler(registry, jobs, fanout, timezone=settings.SCHEDULER_TIMEZONE)
    pool = OneShotPool(max_workers=settings.ONE_SHOT_POOL_SIZE)

    logger.info(
        f"Automation engine ready: {len(jobs)} jobs, "
        f"{sum(1 for d in registry.list() if d.enabled)} enabled, timezone={settings.SCHEDULER_TIMEZONE}"
    )
    return AutomationEngine(context, registry, jobs, fanout, scheduler, pool)
