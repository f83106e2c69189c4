"""
Tests for the Supabase record store: tenant scoping, row conversion and error mapping
"""

from datetime import date, datetime, timedelta, timezone
from unittest.mock import Mock

import pytest
from postgrest.exceptions import APIError

from clinic_automation.exceptions import AlreadyProcessedError, DependencyUnavailable, NotFoundError, ValidationError
from clinic_automation.models import InvoiceDraft, InvoiceLine
from clinic_automation.store import database
from clinic_automation.store.supabase_store import SupabaseRecordStore
from clinic_automation.utils.circuit_breaker import CircuitBreaker

from tests.fakes import NOW, TENANT


class FakeQuery:
    """Chainable PostgREST query stand-in; records every builder call."""

    def __init__(self, data=None, error=None):
        self.data = data or []
        self.error = error
        self.calls = []

    def __getattr__(self, name):
        def chain(*args, **kwargs):
            self.calls.append((name, args))
            return self
        return chain

    def execute(self):
        if self.error is not None:
            raise self.error
        return Mock(data=self.data)


def make_store(query, failure_threshold=5):
    client = Mock()
    client.table.return_value = query
    store = SupabaseRecordStore(client, timeout_seconds=5,
                                breaker=CircuitBreaker("test-store", failure_threshold=failure_threshold))
    return store, client


PATIENT_ROW = {
    "id": "pat-1",
    "clinic_id": TENANT,
    "first_name": "Ana",
    "last_name": "Lopez",
    "phone": "+15551234567",
    "created_at": "2025-03-10T09:00:00Z",
}


class TestScoping:
    """clinic_id filter"""

    async def test_tenant_filter_applied(self):
        query = FakeQuery(data=[PATIENT_ROW])
        store, client = make_store(query)

        patient = await store.get_patient(TENANT, "pat-1")

        client.table.assert_called_with("patients")
        assert ("eq", ("clinic_id", TENANT)) in query.calls
        assert patient.full_name == "Ana Lopez"
        assert patient.created_at == datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)
        assert patient.appointment_restriction == "none"

    async def test_untenanted_scope_has_no_filter(self):
        query = FakeQuery(data=[PATIENT_ROW])
        store, _ = make_store(query)

        await store.get_patient(None, "pat-1")

        assert not any(name == "eq" and args[0] == "clinic_id" for name, args in query.calls)


class TestErrorMapping:
    """Store failures surface as engine errors"""

    async def test_missing_row_is_not_found(self):
        store, _ = make_store(FakeQuery(data=[]))
        with pytest.raises(NotFoundError):
            await store.get_patient(TENANT, "missing")

    async def test_network_error_is_dependency_unavailable(self):
        store, _ = make_store(FakeQuery(error=ConnectionError("refused")))
        with pytest.raises(DependencyUnavailable):
            await store.list_tenant_ids()

    async def test_open_circuit_is_dependency_unavailable(self):
        store, _ = make_store(FakeQuery(error=ConnectionError("refused")), failure_threshold=1)
        with pytest.raises(DependencyUnavailable):
            await store.list_tenant_ids()
        with pytest.raises(DependencyUnavailable) as exc_info:
            await store.list_tenant_ids()
        assert "circuit" in str(exc_info.value).lower()

    async def test_duplicate_invoice_is_already_processed(self):
        error = APIError({"code": "23505", "message": "duplicate key value violates unique constraint"})
        store, _ = make_store(FakeQuery(error=error))
        draft = InvoiceDraft(
            tenant_id=TENANT, patient_id="pat-1", visit_id="v1", invoice_number="INV-000001",
            items=(InvoiceLine(code="CONSULT", description="Consultation Fee", category="service",
                               quantity=1, unit_price=500.0),),
            subtotal=500.0, tax=0.0, total=500.0, created_at=NOW,
        )

        with pytest.raises(AlreadyProcessedError):
            await store.create_invoice(draft)

    async def test_other_api_errors_propagate(self):
        error = APIError({"code": "42501", "message": "permission denied"})
        store, _ = make_store(FakeQuery(error=error))
        with pytest.raises(APIError):
            await store.list_tenant_ids()


class TestConditionalWrites:
    """One updated row means the write happened"""

    async def test_welcome_marked(self):
        query = FakeQuery(data=[{"id": "pat-1"}])
        store, _ = make_store(query)

        assert await store.mark_welcome_sent(TENANT, "pat-1", NOW) is True
        assert ("is_", ("welcome_sent_at", "null")) in query.calls

    async def test_welcome_already_sent(self):
        store, _ = make_store(FakeQuery(data=[]))
        assert await store.mark_welcome_sent(TENANT, "pat-1", NOW) is False


    async def test_lab_result_notified_once(self):
        query = FakeQuery(data=[{"id": "lab-1"}])
        store, _ = make_store(query)

        assert await store.mark_lab_result_notified(TENANT, "lab-1", NOW) is True
        assert ("is_", ("notification_sent_at", "null")) in query.calls

    async def test_report_day_claimed_once(self):
        error = APIError({"code": "23505", "message": "duplicate key value violates unique constraint"})
        store, client = make_store(FakeQuery(error=error))

        assert await store.claim_report(TENANT, "daily", date(2025, 3, 10)) is False
        client.table.assert_called_with("automation_reports")


class TestOperationsQueries:
    """Lab results, retention and report aggregation"""

    async def test_lab_result_row(self):
        row = {"id": "lab-1", "clinic_id": TENANT, "patient": PATIENT_ROW, "test_type": "CBC",
               "status": "completed", "ordered_by": "user-1", "abnormal_flags": {"wbc": "high"}}
        store, client = make_store(FakeQuery(data=[row]))

        [lab_result] = await store.find_unnotified_lab_results(TENANT)

        client.table.assert_called_with("lab_results")
        assert lab_result.patient.first_name == "Ana"
        assert lab_result.abnormal_flags == {"wbc": "high"}
        assert lab_result.notified_at is None

    async def test_documents_archived_by_upload_date(self):
        query = FakeQuery(data=[{"id": "d1"}, {"id": "d2"}])
        store, client = make_store(query)
        cutoff = NOW - timedelta(days=730)

        assert await store.archive_records(TENANT, "documents", cutoff, NOW) == 2
        client.table.assert_called_with("patient_documents")
        assert ("lt", ("uploaded_at", cutoff.isoformat())) in query.calls

    async def test_unknown_retention_resource(self):
        store, _ = make_store(FakeQuery())
        with pytest.raises(ValidationError):
            await store.archive_records(TENANT, "payroll", NOW, NOW)

    async def test_daily_summary_totals(self):
        row = {"id": "x", "status": "closed", "total_amount": 120.5, "outstanding_balance": 40}
        store, _ = make_store(FakeQuery(data=[row, dict(row, status="open")]))
        start = datetime(2025, 3, 10, tzinfo=timezone.utc)

        summary = await store.daily_summary(TENANT, start, start + timedelta(days=1))

        assert summary.day == date(2025, 3, 10)
        assert summary.appointments_by_status == {"closed": 1, "open": 1}
        assert summary.visits_closed == 1
        assert summary.paid_invoices == 2
        assert summary.revenue == 241.0
        assert summary.outstanding_balance == 80.0


class TestClientFactory:
    """Cached Supabase clients per schema"""

    @pytest.fixture(autouse=True)
    def fresh_cache(self):
        database.reset_clients()
        yield
        database.reset_clients()

    def test_client_cached_per_schema(self, monkeypatch, settings):
        settings.SUPABASE_URL = "https://example.supabase.co"
        settings.SUPABASE_SERVICE_ROLE_KEY = "service-key"
        created = []
        monkeypatch.setattr(database, "create_client",
                            lambda url, key, options=None: created.append(options.schema) or Mock())

        first = database.create_supabase_client(database.Schema.HEALTHCARE, settings)
        second = database.create_supabase_client(database.Schema.HEALTHCARE, settings)

        assert first is second
        assert created == ["healthcare"]

    def test_requires_credentials(self, settings):
        with pytest.raises(ValueError):
            database.create_supabase_client(database.Schema.HEALTHCARE, settings)
