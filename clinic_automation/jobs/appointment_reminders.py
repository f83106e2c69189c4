"""Appointment reminders, sent once per appointment about 24 hours ahead."""
import logging
from datetime import timedelta
from typing import Dict, List, Optional

from clinic_automation.eligibility import reminder_due
from clinic_automation.engine.job import AutomationJob, JobRun
from clinic_automation.engine.runner import StepResult
from clinic_automation.exceptions import AlreadyProcessedError, ValidationError
from clinic_automation.models import ACTIVE_APPOINTMENT_STATUSES, Appointment, EntityRef
from clinic_automation.notifications import templates

logger = logging.getLogger(__name__)

REMINDER_LEAD = timedelta(hours=24)
REMINDER_WINDOW = timedelta(hours=1)


class AppointmentReminderJob(AutomationJob[Appointment]):
    job_id = "appointment-reminders"
    settings_key = "auto_appointment_reminders"

    def _window(self, run: JobRun):
        start = run.now + REMINDER_LEAD
        return start, start + REMINDER_WINDOW

    async def fetch_candidates(self, run: JobRun) -> List[Appointment]:
        start, end = self._window(run)
        return await self.store.find_appointments_starting_between(
            run.tenant_id, start, end, ACTIVE_APPOINTMENT_STATUSES
        )

    async def _doctor_name(self, run: JobRun, doctor_id: Optional[str]) -> Optional[str]:
        if not doctor_id:
            return None
        if "doctors" not in run.state:
            doctors = await self.store.list_active_doctors(run.tenant_id)
            run.state["doctors"] = {d.id: d.display_name for d in doctors}
        names: Dict[str, str] = run.state["doctors"]
        return names.get(doctor_id)

    async def process(self, candidate: Appointment, run: JobRun) -> StepResult:
        appointment = await self.store.get_appointment(run.tenant_id, candidate.id)
        start, end = self._window(run)
        check = reminder_due(appointment, start, end, run.tz_name)
        if not check:
            return StepResult.skip(check.reason)
        if appointment.patient is None:
            raise ValidationError("appointment has no patient", field="patient")

        if not await self.store.mark_reminder_sent(run.tenant_id, appointment.id, run.now):
            raise AlreadyProcessedError("appointment", appointment.id, "reminder already sent")

        text = templates.appointment_reminder(
            appointment.patient.first_name or "there",
            appointment.start(run.tz_name),
            await self._doctor_name(run, appointment.doctor_id),
            self.settings.CLINIC_NAME,
        )
        dispatch = await self.notify(self.patient_intent(
            run, appointment.patient, text,
            related=EntityRef("appointment", appointment.id),
            action_path=f"appointments/{appointment.id}",
            category="appointment",
        ))
        return StepResult.done("reminder sent", delivered=dispatch.delivered)
