"""Marks appointments nobody showed up for and offers to reschedule."""
import logging
from datetime import timedelta
from typing import List

from clinic_automation.eligibility import missed
from clinic_automation.engine.job import AutomationJob, JobRun
from clinic_automation.engine.runner import StepResult
from clinic_automation.exceptions import AlreadyProcessedError
from clinic_automation.models import ACTIVE_APPOINTMENT_STATUSES, Appointment, EntityRef, NotificationPriority
from clinic_automation.notifications import templates

logger = logging.getLogger(__name__)


class NoShowHandlingJob(AutomationJob[Appointment]):
    job_id = "no-show-handling"
    settings_key = "auto_no_show_handling"

    async def fetch_candidates(self, run: JobRun) -> List[Appointment]:
        cutoff = run.now - timedelta(minutes=self.settings.NO_SHOW_GRACE_MINUTES)
        return await self.store.find_appointments_started_before(
            run.tenant_id, cutoff, ACTIVE_APPOINTMENT_STATUSES
        )

    async def process(self, candidate: Appointment, run: JobRun) -> StepResult:
        appointment = await self.store.get_appointment(run.tenant_id, candidate.id)
        check = missed(appointment, run.now, self.settings.NO_SHOW_GRACE_MINUTES, run.tz_name)
        if not check:
            return StepResult.skip(check.reason)

        if not await self.store.mark_no_show(run.tenant_id, appointment.id, ACTIVE_APPOINTMENT_STATUSES):
            raise AlreadyProcessedError("appointment", appointment.id, "status changed before no-show update")

        if appointment.patient is None:
            return StepResult.done("marked no-show (no patient to notify)")

        text = templates.missed_appointment(
            appointment.patient.first_name or "there",
            appointment.start(run.tz_name),
            self.action_url(f"book?reschedule={appointment.id}"),
        )
        dispatch = await self.notify(self.patient_intent(
            run, appointment.patient, text,
            related=EntityRef("appointment", appointment.id),
            priority=NotificationPriority.HIGH,
            action_path=f"appointments?reschedule={appointment.id}",
            category="appointment",
        ))
        return StepResult.done("marked no-show", delivered=dispatch.delivered)
