"""
Progressive booking restrictions for patients who keep missing appointments.

The restriction is recomputed from the live no-show count every run and
written only when it differs from the stored one, so a corrected no-show
record lowers it again.
"""
import logging
from datetime import timedelta
from typing import Dict, List

from clinic_automation.engine.job import AutomationJob, JobRun
from clinic_automation.engine.runner import StepResult
from clinic_automation.exceptions import AlreadyProcessedError
from clinic_automation.models import EntityRef, NotificationPriority, Patient, StaffRole
from clinic_automation.notifications import templates
from clinic_automation.policies.no_show import (
    NO_SHOW_LOOKBACK_DAYS,
    NoShowRestriction,
    no_show_restriction,
    parse_restriction,
)

logger = logging.getLogger(__name__)

STAFF_ROLES = (StaffRole.ADMIN, StaffRole.FRONT_DESK)


class AutoCancellationPolicyJob(AutomationJob[Patient]):
    job_id = "auto-cancellation-policies"
    settings_key = "auto_cancellation_policies"

    async def fetch_candidates(self, run: JobRun) -> List[Patient]:
        since = run.now - timedelta(days=NO_SHOW_LOOKBACK_DAYS)
        patients: Dict[str, Patient] = {}
        for patient in await self.store.find_patients_with_no_shows(run.tenant_id, since):
            patients.setdefault(patient.id, patient)
        # Restricted patients whose no-shows were all corrected must be lowered too
        for patient in await self.store.find_restricted_patients(run.tenant_id):
            patients.setdefault(patient.id, patient)
        return list(patients.values())

    async def process(self, candidate: Patient, run: JobRun) -> StepResult:
        patient = await self.store.get_patient(run.tenant_id, candidate.id)
        since = run.now - timedelta(days=NO_SHOW_LOOKBACK_DAYS)
        count = await self.store.count_no_shows(run.tenant_id, patient.id, since)

        level = no_show_restriction(count)
        current = parse_restriction(patient.appointment_restriction)
        if level == current:
            return StepResult.skip(f"restriction already {level.value} ({count} no-shows)")

        if level.alerts_staff:
            # Resolve staff before the write so a failed lookup leaves the patient for the next run
            await run.staff.members(STAFF_ROLES)

        if not await self.store.set_patient_restriction(run.tenant_id, patient.id, level.value, current.value):
            raise AlreadyProcessedError("patient", patient.id, "restriction changed concurrently")

        logger.info(
            f"[{self.job_id}] patient {patient.id}: {current.value} -> {level.value} ({count} no-shows)"
        )

        related = EntityRef("patient", patient.id)
        priority = NotificationPriority.HIGH if level.severity > current.severity else NotificationPriority.NORMAL
        dispatch = await self.notify(self.patient_intent(
            run, patient, templates.restriction_notice(level.value, count),
            related=related, priority=priority, category="appointment",
            restriction=level.value, no_show_count=count,
        ))

        if level.alerts_staff:
            await self.notify_staff(run, STAFF_ROLES, self.staff_intent(
                run, templates.restriction_staff_alert(patient.full_name, level.value, count),
                related=related,
                priority=NotificationPriority.URGENT if level == NoShowRestriction.BANNED else NotificationPriority.HIGH,
                action_path=f"patients/{patient.id}",
                category="appointment",
                restriction=level.value,
            ))

        return StepResult.done(f"{current.value} -> {level.value}", delivered=dispatch.delivered)
