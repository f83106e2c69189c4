"""Payment reminders on day 7, 14, 30 and weekly after that."""
import logging
from typing import List

from clinic_automation.eligibility import payment_reminder_due
from clinic_automation.engine.job import AutomationJob, JobRun
from clinic_automation.engine.runner import StepResult
from clinic_automation.exceptions import AlreadyProcessedError, ValidationError
from clinic_automation.models import EntityRef, Invoice, NotificationPriority
from clinic_automation.notifications import templates
from clinic_automation.policies.payment_reminder import ReminderLevel, payment_reminder_level
from clinic_automation.utils.clock import elapsed_days

logger = logging.getLogger(__name__)

PRIORITY_BY_LEVEL = {
    ReminderLevel.FIRST: NotificationPriority.NORMAL,
    ReminderLevel.SECOND: NotificationPriority.HIGH,
    ReminderLevel.FINAL: NotificationPriority.URGENT,
}


class PaymentReminderJob(AutomationJob[Invoice]):
    job_id = "payment-reminders"
    settings_key = "auto_payment_reminders"

    async def fetch_candidates(self, run: JobRun) -> List[Invoice]:
        return await self.store.find_outstanding_invoices(run.tenant_id)

    async def process(self, candidate: Invoice, run: JobRun) -> StepResult:
        invoice = await self.store.get_invoice(run.tenant_id, candidate.id)
        check = payment_reminder_due(invoice, run.today)
        if not check:
            return StepResult.skip(check.reason)
        if invoice.created_at is None:
            raise ValidationError("invoice has no creation date", field="created_at")

        days = elapsed_days(invoice.created_at, run.now)
        level = payment_reminder_level(days)
        if level is None:
            return StepResult.skip(f"day {days} is not a reminder day")
        if invoice.patient is None:
            raise ValidationError("invoice has no patient", field="patient")

        if not await self.store.record_payment_reminder(run.tenant_id, invoice.id, run.today, level.value):
            raise AlreadyProcessedError("invoice", invoice.id, "reminder already recorded today")

        number = invoice.invoice_number or invoice.id
        dispatch = await self.notify(self.patient_intent(
            run, invoice.patient,
            templates.payment_reminder(invoice.patient.first_name or "patient", number,
                                       invoice.outstanding_balance, days, level.value),
            related=EntityRef("invoice", invoice.id),
            priority=PRIORITY_BY_LEVEL[level],
            action_path=f"invoices/{invoice.id}",
            category="billing",
            reminder_level=level.value,
            days_since_issue=days,
        ))
        return StepResult.done(f"{level.value} reminder (day {days})", delivered=dispatch.delivered)
