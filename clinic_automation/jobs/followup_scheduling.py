"""Books the follow-up appointments doctors asked for when closing a visit."""
import logging
from typing import List

from clinic_automation.eligibility import needs_followup
from clinic_automation.engine.job import AutomationJob, JobRun
from clinic_automation.engine.runner import StepResult
from clinic_automation.jobs.codes import next_code
from clinic_automation.models import AppointmentDraft, EntityRef, Visit
from clinic_automation.notifications import templates
from clinic_automation.utils.clock import at_local_time

logger = logging.getLogger(__name__)


class FollowupSchedulingJob(AutomationJob[Visit]):
    job_id = "followup-scheduling"
    settings_key = "auto_followup_scheduling"

    async def fetch_candidates(self, run: JobRun) -> List[Visit]:
        return await self.store.find_closed_visits_with_followup(run.tenant_id, run.today)

    async def process(self, candidate: Visit, run: JobRun) -> StepResult:
        visit = await self.store.get_visit(run.tenant_id, candidate.id)
        check = await needs_followup(self.store, visit, run.today)
        if not check:
            return StepResult.skip(check.reason)

        prefix = self.settings.APPOINTMENT_CODE_PREFIX
        code = next_code(prefix, await self.store.last_appointment_code(run.tenant_id, prefix))
        appointment = await self.store.create_appointment(AppointmentDraft(
            tenant_id=run.tenant_id,
            patient_id=visit.patient.id,
            doctor_id=visit.provider_id,
            code=code,
            appointment_date=visit.follow_up_date,
            appointment_time=self.settings.FOLLOWUP_DEFAULT_TIME,
            reason=f"Follow-up for visit {visit.code or visit.id}",
            source_visit_id=visit.id,
            scheduled_at=at_local_time(visit.follow_up_date, self.settings.FOLLOWUP_DEFAULT_TIME, run.tz_name),
        ))
        logger.info(f"[{self.job_id}] booked {code} on {visit.follow_up_date} for visit {visit.id}")

        dispatch = await self.notify(self.patient_intent(
            run, visit.patient,
            templates.followup_booked(visit.patient.first_name or "there", visit.follow_up_date,
                                      self.settings.FOLLOWUP_DEFAULT_TIME, code),
            related=EntityRef("appointment", appointment.id),
            action_path=f"appointments/{appointment.id}",
            category="appointment",
        ))
        return StepResult.done(f"booked {code}", delivered=dispatch.delivered)
