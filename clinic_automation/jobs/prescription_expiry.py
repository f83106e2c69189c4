"""Warnings for active prescriptions about to expire."""
import logging
from datetime import timedelta
from typing import List

from clinic_automation.eligibility import level_changed
from clinic_automation.engine.job import AutomationJob, JobRun
from clinic_automation.engine.runner import StepResult
from clinic_automation.exceptions import AlreadyProcessedError, ValidationError
from clinic_automation.models import EntityRef, NotificationPriority, Prescription
from clinic_automation.notifications import templates
from clinic_automation.policies.prescription import (
    REGULAR_WINDOW_DAYS,
    PrescriptionWarningLevel,
    prescription_warning_level,
)
from clinic_automation.utils.clock import days_until_ceil

logger = logging.getLogger(__name__)

PRIORITY_BY_LEVEL = {
    PrescriptionWarningLevel.REMINDER: NotificationPriority.NORMAL,
    PrescriptionWarningLevel.WARNING: NotificationPriority.HIGH,
    PrescriptionWarningLevel.URGENT: NotificationPriority.URGENT,
}


class PrescriptionExpiryJob(AutomationJob[Prescription]):
    job_id = "prescription-expiry-warnings"
    settings_key = "auto_prescription_expiry_warnings"

    async def fetch_candidates(self, run: JobRun) -> List[Prescription]:
        return await self.store.find_prescriptions_expiring_between(
            run.tenant_id, run.now, run.now + timedelta(days=REGULAR_WINDOW_DAYS)
        )

    async def process(self, candidate: Prescription, run: JobRun) -> StepResult:
        prescription = await self.store.get_prescription(run.tenant_id, candidate.id)
        if prescription.status != "active":
            return StepResult.skip(f"prescription is {prescription.status}")
        if prescription.expires_at is None:
            raise ValidationError("prescription has no expiry", field="expires_at")

        days = days_until_ceil(prescription.expires_at, run.now)
        level = prescription_warning_level(days, prescription.controlled_substance)
        if level is None:
            return StepResult.skip(f"outside warning window ({days} days)")

        check = level_changed(prescription.last_warning_level, level.value)
        if not check:
            return StepResult.skip(check.reason)
        if prescription.patient is None:
            raise ValidationError("prescription has no patient", field="patient")

        if not await self.store.record_prescription_warning(
            run.tenant_id, prescription.id, level.value, prescription.last_warning_level
        ):
            raise AlreadyProcessedError("prescription", prescription.id, "warning level changed concurrently")

        dispatch = await self.notify(self.patient_intent(
            run, prescription.patient,
            templates.prescription_expiry(
                prescription.patient.first_name or "there",
                prescription.code or prescription.id,
                days, level.value, prescription.controlled_substance,
            ),
            related=EntityRef("prescription", prescription.id),
            priority=PRIORITY_BY_LEVEL[level],
            action_path=f"prescriptions/{prescription.id}",
            category="clinical",
            warning_level=level.value,
        ))
        return StepResult.done(f"{level.value} warning ({days} days)", delivered=dispatch.delivered)
