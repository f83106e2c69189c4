"""
Automatic invoice generation for closed visits.

The "invoice exists for this visit" check is repeated immediately before the
invoice is created, and a uniqueness conflict at insert time is treated as
already processed, so overlapping runs never produce two invoices for one
visit.
"""
import logging
from typing import List, Optional

from clinic_automation.eligibility import needs_invoice
from clinic_automation.engine.job import AutomationJob, JobRun
from clinic_automation.engine.runner import StepResult
from clinic_automation.exceptions import ValidationError
from clinic_automation.jobs.codes import next_code
from clinic_automation.models import EntityRef, InvoiceDraft, InvoiceLine, ServicePrice, Visit
from clinic_automation.notifications import templates

logger = logging.getLogger(__name__)

_PRICE_KEY = "consultation_price"


class InvoiceGenerationJob(AutomationJob[Visit]):
    job_id = "invoice-generation"
    settings_key = "auto_invoice_generation"

    async def fetch_candidates(self, run: JobRun) -> List[Visit]:
        return await self.store.find_closed_visits_without_invoice(run.tenant_id)

    async def _consultation_price(self, run: JobRun) -> Optional[ServicePrice]:
        if _PRICE_KEY not in run.state:
            run.state[_PRICE_KEY] = await self.store.find_consultation_price(run.tenant_id)
        return run.state[_PRICE_KEY]

    async def build_draft(self, visit: Visit, run: JobRun) -> InvoiceDraft:
        service = await self._consultation_price(run)
        if service is not None:
            line = InvoiceLine(
                code=service.code,
                description=service.name,
                category="service",
                quantity=1,
                unit_price=service.unit_price,
                service_id=service.id,
            )
        else:
            line = InvoiceLine(
                code="CONSULT",
                description="Consultation Fee",
                category="service",
                quantity=1,
                unit_price=self.settings.DEFAULT_CONSULTATION_FEE,
            )

        subtotal = line.total
        tax = round(subtotal * self.settings.TAX_RATE_PERCENT / 100, 2)
        prefix = self.settings.INVOICE_PREFIX
        number = next_code(prefix, await self.store.last_invoice_number(run.tenant_id, prefix))

        return InvoiceDraft(
            tenant_id=run.tenant_id,
            patient_id=visit.patient.id,
            visit_id=visit.id,
            invoice_number=number,
            items=(line,),
            subtotal=subtotal,
            tax=tax,
            total=round(subtotal + tax, 2),
            created_at=run.now,
        )

    async def process(self, candidate: Visit, run: JobRun) -> StepResult:
        visit = await self.store.get_visit(run.tenant_id, candidate.id)
        if visit.patient is None:
            raise ValidationError("visit has no patient", field="patient")

        draft = await self.build_draft(visit, run)

        check = await needs_invoice(self.store, visit)
        if not check:
            return StepResult.skip(check.reason)

        invoice = await self.store.create_invoice(draft)
        logger.info(f"[{self.job_id}] created {invoice.invoice_number} for visit {visit.id}")

        dispatch = await self.notify(self.patient_intent(
            run, visit.patient,
            templates.invoice_created(visit.patient.first_name or "there", invoice.invoice_number, invoice.total),
            related=EntityRef("invoice", invoice.id),
            action_path=f"invoices/{invoice.id}",
            category="billing",
        ))
        return StepResult.done(f"created {invoice.invoice_number}", delivered=dispatch.delivered)
