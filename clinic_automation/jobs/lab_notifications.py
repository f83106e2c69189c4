"""
Lab result notifications.

Patients hear about completed or reviewed results once; the ordering doctor
gets an in-app note, escalated to urgent when any value is flagged high or
low.
"""
import logging
from typing import List

from clinic_automation.eligibility import lab_result_ready
from clinic_automation.engine.job import AutomationJob, JobRun
from clinic_automation.engine.runner import StepResult
from clinic_automation.exceptions import AlreadyProcessedError, ValidationError
from clinic_automation.models import EntityRef, LabResult, NotificationPriority
from clinic_automation.notifications import templates
from clinic_automation.policies.lab_results import is_critical

logger = logging.getLogger(__name__)


class LabResultNotificationJob(AutomationJob[LabResult]):
    job_id = "lab-notifications"
    settings_key = "auto_lab_notifications"

    async def fetch_candidates(self, run: JobRun) -> List[LabResult]:
        return await self.store.find_unnotified_lab_results(run.tenant_id)

    async def process(self, candidate: LabResult, run: JobRun) -> StepResult:
        lab_result = await self.store.get_lab_result(run.tenant_id, candidate.id)
        check = lab_result_ready(lab_result)
        if not check:
            return StepResult.skip(check.reason)
        if lab_result.patient is None:
            raise ValidationError("lab result has no patient", field="patient")

        if not await self.store.mark_lab_result_notified(run.tenant_id, lab_result.id, run.now):
            raise AlreadyProcessedError("lab result", lab_result.id, "patient notified concurrently")

        related = EntityRef("lab_result", lab_result.id)
        action_path = f"lab-results/{lab_result.id}"
        dispatch = await self.notify(self.patient_intent(
            run, lab_result.patient,
            templates.lab_result_ready(
                lab_result.patient.first_name or "there", lab_result.test_type, lab_result.request_code
            ),
            related=related,
            action_path=action_path,
            category="lab_result",
        ))

        critical = is_critical(lab_result.abnormal_flags)
        if lab_result.ordered_by:
            # In-app only: the doctor's contact details live with their user account
            await self.notify(self.staff_intent(
                run,
                templates.lab_result_doctor(lab_result.test_type, critical),
                related=related,
                priority=NotificationPriority.URGENT if critical else NotificationPriority.NORMAL,
                action_path=action_path,
                category="lab_result",
                critical=critical,
            ).for_recipient(lab_result.ordered_by))
        elif critical:
            logger.warning(f"[{self.job_id}] critical lab result {lab_result.id} has no ordering doctor")

        detail = "patient notified"
        if lab_result.ordered_by:
            detail += ", urgent doctor alert" if critical else ", doctor notified"
        return StepResult.done(detail, delivered=dispatch.delivered)
