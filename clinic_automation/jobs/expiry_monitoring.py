"""Inventory expiry alerts at the 30, 7 and 1 day checkpoints."""
import logging
from datetime import timedelta
from typing import List

from clinic_automation.engine.job import AutomationJob, JobRun
from clinic_automation.engine.runner import StepResult
from clinic_automation.exceptions import ValidationError
from clinic_automation.models import EntityRef, InventoryItem, NotificationPriority, StaffRole
from clinic_automation.notifications import templates
from clinic_automation.policies.inventory import EXPIRY_CHECKPOINTS, expiry_checkpoint
from clinic_automation.utils.clock import days_until_date

logger = logging.getLogger(__name__)

STAFF_ROLES = (StaffRole.ADMIN, StaffRole.ACCOUNTANT)


class ExpiryMonitoringJob(AutomationJob[InventoryItem]):
    job_id = "expiry-monitoring"
    settings_key = "auto_expiry_monitoring"

    async def fetch_candidates(self, run: JobRun) -> List[InventoryItem]:
        horizon = run.today + timedelta(days=max(EXPIRY_CHECKPOINTS))
        return await self.store.find_inventory_expiring_between(run.tenant_id, run.today, horizon)

    async def process(self, candidate: InventoryItem, run: JobRun) -> StepResult:
        item = await self.store.get_inventory_item(run.tenant_id, candidate.id)
        if item.expiry_date is None:
            raise ValidationError("item has no expiry date", field="expiry_date")

        days = days_until_date(item.expiry_date, run.today)
        checkpoint = expiry_checkpoint(days)
        if checkpoint is None:
            return StepResult.skip(f"{days} days to expiry is not a checkpoint")

        priority = NotificationPriority.URGENT if checkpoint == 1 else (
            NotificationPriority.HIGH if checkpoint == 7 else NotificationPriority.NORMAL
        )
        results = await self.notify_staff(run, STAFF_ROLES, self.staff_intent(
            run,
            templates.inventory_expiry([(item.name, item.quantity, item.unit, days)]),
            related=EntityRef("inventory", item.id),
            priority=priority,
            action_path=f"inventory/{item.id}",
            category="inventory",
            days_until_expiry=days,
        ))
        return StepResult.done(
            f"{checkpoint}-day checkpoint, {len(results)} staff notified",
            delivered=any(r.delivered for r in results),
        )
