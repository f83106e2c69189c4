"""
Welcome messages for newly registered patients.

Runs as a backfill over the last week's registrations and, through
WelcomeMessenger, as a one-shot task when a patient is created.
"""
import logging
from datetime import timedelta
from typing import List, Optional

from clinic_automation.eligibility import welcome_due
from clinic_automation.engine.job import AutomationJob, JobRun
from clinic_automation.engine.runner import StepResult
from clinic_automation.engine.worker_pool import OneShotPool
from clinic_automation.exceptions import AlreadyProcessedError
from clinic_automation.models import EntityRef, Patient
from clinic_automation.notifications import templates
from clinic_automation.notifications.roles import StaffDirectory

logger = logging.getLogger(__name__)

BACKFILL_DAYS = 7


class WelcomeMessageJob(AutomationJob[Patient]):
    job_id = "welcome-messages"
    settings_key = "auto_welcome_messages"

    async def fetch_candidates(self, run: JobRun) -> List[Patient]:
        since = run.now - timedelta(days=BACKFILL_DAYS)
        return await self.store.find_patients_without_welcome(run.tenant_id, since)

    async def process(self, candidate: Patient, run: JobRun) -> StepResult:
        patient = await self.store.get_patient(run.tenant_id, candidate.id)
        check = welcome_due(patient)
        if not check:
            return StepResult.skip(check.reason)

        if not await self.store.mark_welcome_sent(run.tenant_id, patient.id, run.now):
            raise AlreadyProcessedError("patient", patient.id, "welcome already sent")

        dispatch = await self.notify(self.patient_intent(
            run, patient,
            templates.welcome(patient.first_name or "there", self.settings.CLINIC_NAME),
            related=EntityRef("patient", patient.id),
            action_path="portal",
            category="welcome",
        ))
        return StepResult.done("welcome sent", delivered=dispatch.delivered)

    async def welcome_one(self, patient: Patient) -> Optional[StepResult]:
        """Welcome a single patient right after registration; None when disabled."""
        tenant_id = patient.tenant_id
        if not await self.context.settings_service.is_automation_enabled(tenant_id, self.settings_key):
            return None

        run = JobRun(
            job_id=self.job_id,
            tenant_id=tenant_id,
            now=self.context.clock.now(),
            tz_name=self.settings.SCHEDULER_TIMEZONE,
            staff=StaffDirectory(self.store, tenant_id, self.context.role_map),
        )
        async with self._lock_for(tenant_id):
            return await self.process(patient, run)


class WelcomeMessenger:
    """Submits welcome messages for new patients to the one-shot pool."""

    def __init__(self, job: WelcomeMessageJob, pool: OneShotPool):
        self.job = job
        self.pool = pool

    def schedule(self, patient: Patient):
        return self.pool.submit(f"welcome:{patient.id}", lambda: self.job.welcome_one(patient))
