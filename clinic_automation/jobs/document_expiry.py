"""Warnings for patient documents (insurance cards, IDs, certificates) nearing expiry."""
import logging
from datetime import timedelta
from typing import List

from clinic_automation.eligibility import level_changed
from clinic_automation.engine.job import AutomationJob, JobRun
from clinic_automation.engine.runner import StepResult
from clinic_automation.exceptions import AlreadyProcessedError, ValidationError
from clinic_automation.models import Document, EntityRef, NotificationPriority, StaffRole
from clinic_automation.notifications import templates
from clinic_automation.policies.document_expiry import (
    DOCUMENT_WINDOW_DAYS,
    DocumentWarningLevel,
    document_warning_level,
    is_critical,
)
from clinic_automation.utils.clock import days_until_date

logger = logging.getLogger(__name__)

STAFF_ROLES = (StaffRole.ADMIN, StaffRole.FRONT_DESK)

PRIORITY_BY_LEVEL = {
    DocumentWarningLevel.REMINDER: NotificationPriority.NORMAL,
    DocumentWarningLevel.WARNING: NotificationPriority.HIGH,
    DocumentWarningLevel.URGENT: NotificationPriority.URGENT,
}


class DocumentExpiryJob(AutomationJob[Document]):
    job_id = "document-expiration-tracking"
    settings_key = "auto_document_expiry_tracking"

    async def fetch_candidates(self, run: JobRun) -> List[Document]:
        horizon = run.today + timedelta(days=DOCUMENT_WINDOW_DAYS)
        return await self.store.find_documents_expiring_between(run.tenant_id, run.today, horizon)

    async def process(self, candidate: Document, run: JobRun) -> StepResult:
        document = await self.store.get_document(run.tenant_id, candidate.id)
        if document.expiry_date is None:
            raise ValidationError("document has no expiry date", field="expiry_date")

        days = days_until_date(document.expiry_date, run.today)
        level = document_warning_level(document.category, days, document.document_type)
        if level is None:
            return StepResult.skip(f"outside warning window ({days} days)")

        check = level_changed(document.last_warning_level, level.value)
        if not check:
            return StepResult.skip(check.reason)
        if document.patient is None:
            raise ValidationError("document has no patient", field="patient")

        alert_staff = level == DocumentWarningLevel.URGENT and is_critical(document.category, document.document_type)
        if alert_staff:
            await run.staff.members(STAFF_ROLES)

        if not await self.store.record_document_warning(
            run.tenant_id, document.id, level.value, document.last_warning_level
        ):
            raise AlreadyProcessedError("document", document.id, "warning level changed concurrently")

        title = document.title or document.category.replace("_", " ")
        related = EntityRef("document", document.id)
        dispatch = await self.notify(self.patient_intent(
            run, document.patient,
            templates.document_expiry(document.patient.first_name or "there", title, days, level.value),
            related=related,
            priority=PRIORITY_BY_LEVEL[level],
            action_path=f"documents/{document.id}",
            category="document",
            warning_level=level.value,
        ))

        if alert_staff:
            await self.notify_staff(run, STAFF_ROLES, self.staff_intent(
                run,
                templates.document_staff_alert(document.patient.full_name, title, days),
                related=related,
                priority=NotificationPriority.HIGH,
                action_path=f"patients/{document.patient.id}",
                category="document",
            ))

        return StepResult.done(f"{level.value} warning ({days} days)", delivered=dispatch.delivered)
