"""
Automation job base class.

Every automation follows the same shape: consult the tenant's settings, pull
candidates from the record store, run the per-candidate step through the
batch runner, optionally finish with a per-run summary. Subclasses provide
fetch_candidates() and process(); the engine keeps no memory between runs.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Generic, List, Optional, Sequence, TypeVar

from clinic_automation.config import AutomationSettings
from clinic_automation.engine.runner import BatchRunner, StepResult
from clinic_automation.models import (
    DispatchResult,
    EntityRef,
    JobRunResult,
    NotificationIntent,
    NotificationPriority,
    Patient,
    StaffRole,
)
from clinic_automation.notifications.dispatcher import NotificationDispatcher
from clinic_automation.notifications.roles import RoleMap, StaffDirectory
from clinic_automation.notifications.templates import MessageText
from clinic_automation.store.base import RecordStore, SettingsService
from clinic_automation.utils.clock import Clock, local_date

logger = logging.getLogger(__name__)

C = TypeVar('C')


@dataclass
class AutomationContext:
    """Collaborators shared by every job."""
    store: RecordStore
    settings_service: SettingsService
    dispatcher: NotificationDispatcher
    clock: Clock
    settings: AutomationSettings
    role_map: RoleMap = field(default_factory=RoleMap)


@dataclass
class JobRun:
    """State for one job run against one tenant; discarded when the run ends."""
    job_id: str
    tenant_id: Optional[str]
    now: datetime
    tz_name: str
    staff: StaffDirectory
    state: Dict[str, Any] = field(default_factory=dict)

    @property
    def today(self) -> date:
        return local_date(self.now, self.tz_name)


class AutomationJob(ABC, Generic[C]):
    """Base for all scheduled automations."""

    job_id: str = ""
    settings_key: str = ""

    def __init__(self, context: AutomationContext):
        self.context = context
        self.runner = BatchRunner(context.clock)
        self._locks: Dict[Optional[str], asyncio.Lock] = {}

    @property
    def store(self) -> RecordStore:
        return self.context.store

    @property
    def settings(self) -> AutomationSettings:
        return self.context.settings

    @property
    def dispatcher(self) -> NotificationDispatcher:
        return self.context.dispatcher

    def _lock_for(self, tenant_id: Optional[str]) -> asyncio.Lock:
        # Serializes overlapping runs for the same tenant within this process
        if tenant_id not in self._locks:
            self._locks[tenant_id] = asyncio.Lock()
        return self._locks[tenant_id]

    def action_url(self, path: str) -> str:
        return f"{self.settings.APP_BASE_URL.rstrip('/')}/{path.lstrip('/')}"

    async def run(self, tenant_id: Optional[str] = None) -> JobRunResult:
        """Run the job once for a tenant (None: the untenanted scope)."""
        if not await self.context.settings_service.is_automation_enabled(tenant_id, self.settings_key):
            logger.info(f"[{self.job_id}] disabled for tenant {tenant_id}, nothing to do")
            return JobRunResult.empty(self.job_id, tenant_id, self.context.clock.now())

        async with self._lock_for(tenant_id):
            now = self.context.clock.now()
            run = JobRun(
                job_id=self.job_id,
                tenant_id=tenant_id,
                now=now,
                tz_name=self.settings.SCHEDULER_TIMEZONE,
                staff=StaffDirectory(self.store, tenant_id, self.context.role_map),
            )

            candidates = await self.fetch_candidates(run)
            logger.info(f"[{self.job_id}] tenant {tenant_id}: {len(candidates)} candidates")

            result = await self.runner.run(
                self.job_id,
                tenant_id,
                candidates,
                lambda candidate: self.process(candidate, run),
                self.entity_id,
                started_at=now,
            )
            await self.finish(run, result)

        logger.info(
            f"[{self.job_id}] tenant {tenant_id} finished: "
            f"processed={result.processed} succeeded={result.succeeded} "
            f"skipped={result.skipped} failed={result.failed}"
        )
        return result

    @abstractmethod
    async def fetch_candidates(self, run: JobRun) -> Sequence[C]:
        ...

    @abstractmethod
    async def process(self, candidate: C, run: JobRun) -> StepResult:
        ...

    def entity_id(self, candidate: C) -> str:
        return candidate.id

    async def finish(self, run: JobRun, result: JobRunResult) -> None:
        """Hook run after the batch (per-tenant summaries)."""

    # -- notification helpers -------------------------------------------------

    def patient_intent(
        self,
        run: JobRun,
        patient: Patient,
        text: MessageText,
        related: Optional[EntityRef] = None,
        priority: NotificationPriority = NotificationPriority.NORMAL,
        action_path: Optional[str] = None,
        category: str = "system",
        **metadata: Any,
    ) -> NotificationIntent:
        return NotificationIntent(
            recipient_id=patient.recipient_id,
            tenant_id=run.tenant_id,
            title=text.title,
            message=text.body,
            priority=priority,
            related_entity=related,
            action_url=self.action_url(action_path) if action_path else None,
            phone=patient.phone,
            email=patient.email,
            category=category,
            metadata={"automation": self.job_id, **metadata},
        )

    def staff_intent(
        self,
        run: JobRun,
        text: MessageText,
        related: Optional[EntityRef] = None,
        priority: NotificationPriority = NotificationPriority.HIGH,
        action_path: Optional[str] = None,
        category: str = "system",
        **metadata: Any,
    ) -> NotificationIntent:
        """Intent addressed per staff member by notify_staff()."""
        return NotificationIntent(
            recipient_id="",
            tenant_id=run.tenant_id,
            title=text.title,
            message=text.body,
            priority=priority,
            related_entity=related,
            action_url=self.action_url(action_path) if action_path else None,
            category=category,
            metadata={"automation": self.job_id, **metadata},
        )

    async def notify(self, intent: NotificationIntent) -> DispatchResult:
        return await self.dispatcher.send(intent)

    async def notify_staff(self, run: JobRun, roles: Sequence[StaffRole],
                           intent: NotificationIntent) -> List[DispatchResult]:
        return await self.dispatcher.notify_staff(run.staff, roles, intent)
