"""
Tests for inventory expiry monitoring and reorder requests
"""

from datetime import timedelta

from clinic_automation.jobs import ExpiryMonitoringJob, InventoryReorderingJob
from clinic_automation.models import InventoryItem, NotificationPriority, ReorderRequest

from tests.fakes import NOW, TENANT

TODAY = NOW.date()


def item(item_id, **kwargs):
    defaults = dict(id=item_id, tenant_id=TENANT, name=f"Item {item_id}", quantity=100, unit="boxes")
    defaults.update(kwargs)
    return InventoryItem(**defaults)


def staff_notifications(store):
    return [n for n in store.notifications if n.recipient_id.startswith("staff-")]


class TestExpiryMonitoring:
    """Checkpoint alerts to admins and accountants"""

    async def test_checkpoints_notify_admin_and_accountant(self, context, store, staff):
        store.add(
            item("d30", expiry_date=TODAY + timedelta(days=30)),
            item("d7", expiry_date=TODAY + timedelta(days=7)),
            item("d1", expiry_date=TODAY + timedelta(days=1)),
            item("d8", expiry_date=TODAY + timedelta(days=8)),
        )

        result = await ExpiryMonitoringJob(context).run(TENANT)

        assert result.succeeded == 3
        assert result.skipped == 1
        notified = staff_notifications(store)
        assert {n.recipient_id for n in notified} == {"staff-admin", "staff-billing"}
        assert len(notified) == 6

    async def test_priority_rises_near_expiry(self, context, store, staff):
        store.add(item("d1", expiry_date=TODAY + timedelta(days=1)))

        await ExpiryMonitoringJob(context).run(TENANT)

        assert {n.priority for n in staff_notifications(store)} == {NotificationPriority.URGENT}

    async def test_empty_stock_is_not_reported(self, context, store, staff):
        store.add(item("gone", quantity=0, expiry_date=TODAY + timedelta(days=7)))
        result = await ExpiryMonitoringJob(context).run(TENANT)
        assert result.processed == 0


class TestInventoryReordering:
    """Reorder requests and the per-run summary"""

    def _stock(self, store):
        store.add(
            item("out", quantity=0, status="out-of-stock", reorder_level=10, reorder_quantity=30),
            item("low", quantity=2, reorder_level=10, reorder_quantity=40),
            item("expiring", quantity=100, expiry_date=TODAY + timedelta(days=45)),
            item("fine", quantity=100),
        )

    async def test_creates_requests_and_one_summary(self, context, store, staff):
        self._stock(store)

        result = await InventoryReorderingJob(context).run(TENANT)

        assert result.succeeded == 3
        requests = {r.item_id: r for r in store.reorder_requests.values()}
        assert set(requests) == {"out", "low", "expiring"}
        assert requests["out"].priority == "urgent"
        assert requests["out"].quantity == 30
        assert requests["low"].priority == "urgent"
        assert requests["expiring"].priority == "medium"
        assert requests["expiring"].quantity == 50

        summaries = staff_notifications(store)
        assert sorted(n.recipient_id for n in summaries) == ["staff-admin", "staff-billing"]
        assert all(n.priority == NotificationPriority.URGENT for n in summaries)

    async def test_open_request_blocks_another(self, context, store, staff):
        self._stock(store)
        job = InventoryReorderingJob(context)

        await job.run(TENANT)
        second = await job.run(TENANT)

        assert second.skipped == 3
        assert len(store.reorder_requests) == 3
        assert len(staff_notifications(store)) == 2

    async def test_closed_request_allows_new_one(self, context, store, staff):
        store.add(item("low", quantity=2))
        job = InventoryReorderingJob(context)

        await job.run(TENANT)
        store.closed_reorder_ids.update(store.reorder_requests)
        second = await job.run(TENANT)

        assert second.succeeded == 1
        assert len(store.reorder_requests) == 2

    def test_group_by_priority(self):
        def request(name, priority):
            return ReorderRequest(tenant_id=TENANT, item_id=name, item_name=name, unit="boxes",
                                  quantity=5, reason="low_stock", priority=priority, created_at=NOW)

        groups = InventoryReorderingJob.group_by_priority(
            [request("a", "low"), request("b", "urgent"), request("c", "low")]
        )

        assert [g[0] for g in groups] == ["urgent", "low"]
        assert [line[0] for line in groups[1][1]] == ["a", "c"]
