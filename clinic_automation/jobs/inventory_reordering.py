"""
Reorder requests for out-of-stock, low-stock and soon-expiring items.

One request per item while an earlier one is still open; staff receive a
single summary per tenant run, grouped by priority.
"""
import logging
from datetime import timedelta
from typing import List, Tuple

from clinic_automation.eligibility import needs_reorder
from clinic_automation.engine.job import AutomationJob, JobRun
from clinic_automation.engine.runner import StepResult
from clinic_automation.models import (
    EntityRef,
    InventoryItem,
    JobRunResult,
    NotificationPriority,
    ReorderRequest,
    StaffRole,
)
from clinic_automation.notifications import templates
from clinic_automation.policies.inventory import (
    REORDER_EXPIRY_WINDOW_DAYS,
    ReorderPriority,
    classify_reorder,
    order_quantity,
    reorder_priority,
)
from clinic_automation.utils.clock import days_until_date

logger = logging.getLogger(__name__)

STAFF_ROLES = (StaffRole.ADMIN, StaffRole.ACCOUNTANT)
_REQUESTS_KEY = "reorder_requests"


class InventoryReorderingJob(AutomationJob[InventoryItem]):
    job_id = "inventory-reordering"
    settings_key = "auto_inventory_reordering"

    async def fetch_candidates(self, run: JobRun) -> List[InventoryItem]:
        horizon = run.today + timedelta(days=REORDER_EXPIRY_WINDOW_DAYS)
        return await self.store.find_reorder_candidates(run.tenant_id, horizon)

    async def process(self, candidate: InventoryItem, run: JobRun) -> StepResult:
        item = await self.store.get_inventory_item(run.tenant_id, candidate.id)
        days = days_until_date(item.expiry_date, run.today) if item.expiry_date else None

        reason = classify_reorder(item, days)
        if reason is None:
            return StepResult.skip("stock and expiry are fine")

        check = await needs_reorder(self.store, run.tenant_id, item.id)
        if not check:
            return StepResult.skip(check.reason)

        request = ReorderRequest(
            tenant_id=run.tenant_id,
            item_id=item.id,
            item_name=item.name,
            unit=item.unit,
            quantity=order_quantity(reason, item),
            reason=reason.value,
            priority=reorder_priority(reason, item, days).value,
            created_at=run.now,
        )
        await self.store.create_reorder_request(request)
        run.state.setdefault(_REQUESTS_KEY, []).append(request)
        return StepResult.done(f"{request.priority}: order {request.quantity:g} {request.unit} ({request.reason})")

    @staticmethod
    def group_by_priority(requests: List[ReorderRequest]) -> List[Tuple[str, List[Tuple[str, float, str, str]]]]:
        groups = []
        for priority in ReorderPriority:
            lines = [(r.item_name, r.quantity, r.unit, r.reason) for r in requests if r.priority == priority.value]
            if lines:
                groups.append((priority.value, lines))
        return groups

    async def finish(self, run: JobRun, result: JobRunResult) -> None:
        requests: List[ReorderRequest] = run.state.get(_REQUESTS_KEY, [])
        if not requests:
            return

        has_urgent = any(r.priority == ReorderPriority.URGENT.value for r in requests)
        results = await self.notify_staff(run, STAFF_ROLES, self.staff_intent(
            run,
            templates.reorder_summary(self.group_by_priority(requests), len(requests)),
            related=EntityRef("inventory", "reorder-summary"),
            priority=NotificationPriority.URGENT if has_urgent else NotificationPriority.HIGH,
            action_path="inventory/reorders",
            category="inventory",
            request_count=len(requests),
        ))
        logger.info(
            f"[{self.job_id}] tenant {run.tenant_id}: {len(requests)} reorder requests, "
            f"summary delivered to {sum(1 for r in results if r.delivered)}/{len(results)} staff"
        )
