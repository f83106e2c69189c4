"""
Supabase-backed record store.

Rows from the healthcare schema are converted into the engine's value
objects; patients are embedded through PostgREST joins so jobs receive
hydrated records. Every query runs on a worker thread, bounded by
STORE_TIMEOUT_SECONDS and guarded by the supabase circuit breaker.

Error mapping:
- timeouts, network errors, open circuit -> DependencyUnavailable
- unique violation (23505) on create     -> AlreadyProcessedError
- missing single row                     -> NotFoundError
"""
import asyncio
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence

from postgrest.exceptions import APIError
from supabase import Client

from clinic_automation.exceptions import AlreadyProcessedError, DependencyUnavailable, NotFoundError, ValidationError
from clinic_automation.models import (
    ACTIVE_APPOINTMENT_STATUSES,
    ACTIVE_QUEUE_STATUSES,
    BOOKABLE_APPOINTMENT_STATUSES,
    OUTSTANDING_INVOICE_STATUSES,
    READY_LAB_STATUSES,
    Appointment,
    AppointmentDraft,
    DailySummary,
    Doctor,
    Document,
    InventoryItem,
    Invoice,
    InvoiceDraft,
    LabResult,
    Membership,
    NotificationIntent,
    Patient,
    Prescription,
    QueueEntry,
    ReorderRequest,
    ServicePrice,
    StaffMember,
    Visit,
)
from clinic_automation.store.base import RecordStore
from clinic_automation.utils.circuit_breaker import (
    NETWORK_EXCEPTIONS,
    CircuitBreaker,
    CircuitBreakerOpen,
    supabase_breaker,
)
from clinic_automation.utils.timeouts import with_timeout

logger = logging.getLogger(__name__)

TENANT_COLUMN = 'clinic_id'
PATIENT_EMBED = 'patient:patients(*)'

# retention resource -> (table, age column)
RETENTION_TABLES = {
    'patients': ('patients', 'created_at'),
    'appointments': ('appointments', 'created_at'),
    'visits': ('visits', 'created_at'),
    'invoices': ('invoices', 'created_at'),
    'lab_results': ('lab_results', 'created_at'),
    'prescriptions': ('prescriptions', 'created_at'),
    'documents': ('patient_documents', 'uploaded_at'),
    'audit_logs': ('audit_logs', 'created_at'),
}


# =============================================================================
# Row conversion
# =============================================================================

def _parse_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace('Z', '+00:00'))


def _parse_date(value: Any) -> Optional[date]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _patient(row: Optional[Dict[str, Any]]) -> Optional[Patient]:
    if not row:
        return None
    return Patient(
        id=row['id'],
        tenant_id=row.get(TENANT_COLUMN),
        first_name=row.get('first_name') or '',
        last_name=row.get('last_name') or '',
        email=row.get('email'),
        phone=row.get('phone'),
        user_id=row.get('user_id'),
        appointment_restriction=row.get('appointment_restriction') or 'none',
        created_at=_parse_datetime(row.get('created_at')),
        welcome_sent_at=_parse_datetime(row.get('welcome_sent_at')),
    )


def _appointment(row: Dict[str, Any]) -> Appointment:
    return Appointment(
        id=row['id'],
        tenant_id=row.get(TENANT_COLUMN),
        patient=_patient(row.get('patient')),
        doctor_id=row.get('doctor_id'),
        status=row.get('status') or 'scheduled',
        appointment_date=_parse_date(row.get('appointment_date')),
        appointment_time=row.get('start_time'),
        scheduled_at=_parse_datetime(row.get('scheduled_at')),
        duration_minutes=row.get('duration_minutes') or 30,
        code=row.get('appointment_code'),
        reason=row.get('reason'),
        specialization=row.get('specialization'),
        preferred_doctor_id=row.get('preferred_doctor_id'),
        reminder_sent_at=_parse_datetime(row.get('reminder_sent_at')),
    )


def _doctor(row: Dict[str, Any]) -> Doctor:
    return Doctor(
        id=row['id'],
        tenant_id=row.get(TENANT_COLUMN),
        first_name=row.get('first_name') or '',
        last_name=row.get('last_name') or '',
        specialization=row.get('specialization'),
        specializations=tuple(row.get('specializations') or ()),
        active=row.get('active', True),
    )


def _staff(row: Dict[str, Any]) -> StaffMember:
    return StaffMember(
        id=row['id'],
        tenant_id=row.get(TENANT_COLUMN),
        name=row.get('name') or '',
        role_name=row.get('role') or '',
        email=row.get('email'),
        phone=row.get('phone'),
        active=row.get('is_active', True),
    )


def _visit(row: Dict[str, Any]) -> Visit:
    return Visit(
        id=row['id'],
        tenant_id=row.get(TENANT_COLUMN),
        patient=_patient(row.get('patient')),
        provider_id=row.get('provider_id'),
        status=row.get('status') or 'open',
        visit_date=_parse_datetime(row.get('visit_date')),
        visit_type=row.get('visit_type') or 'consultation',
        follow_up_date=_parse_date(row.get('follow_up_date')),
        code=row.get('visit_code'),
    )


def _invoice(row: Dict[str, Any]) -> Invoice:
    return Invoice(
        id=row['id'],
        tenant_id=row.get(TENANT_COLUMN),
        patient=_patient(row.get('patient')),
        visit_id=row.get('visit_id'),
        invoice_number=row.get('invoice_number'),
        status=row.get('status') or 'unpaid',
        total=float(row.get('total_amount') or 0),
        outstanding_balance=float(row.get('outstanding_balance') or 0),
        created_at=_parse_datetime(row.get('created_at')),
        last_reminder_on=_parse_date(row.get('last_reminder_on')),
        last_reminder_level=row.get('last_reminder_level'),
        paid_at=_parse_datetime(row.get('paid_at')),
    )


def _inventory_item(row: Dict[str, Any]) -> InventoryItem:
    return InventoryItem(
        id=row['id'],
        tenant_id=row.get(TENANT_COLUMN),
        name=row.get('name') or '',
        quantity=float(row.get('quantity') or 0),
        unit=row.get('unit') or 'units',
        reorder_level=float(row.get('reorder_level') or 10),
        reorder_quantity=float(row.get('reorder_quantity') or 50),
        status=row.get('status') or 'in-stock',
        expiry_date=_parse_date(row.get('expiry_date')),
    )


def _document(row: Dict[str, Any]) -> Document:
    return Document(
        id=row['id'],
        tenant_id=row.get(TENANT_COLUMN),
        patient=_patient(row.get('patient')),
        title=row.get('title'),
        category=row.get('category') or 'other',
        document_type=row.get('document_type'),
        code=row.get('document_code'),
        expiry_date=_parse_date(row.get('expiry_date')),
        last_warning_level=row.get('last_warning_level'),
    )


def _membership(row: Dict[str, Any]) -> Membership:
    return Membership(
        id=row['id'],
        tenant_id=row.get(TENANT_COLUMN),
        patient=_patient(row.get('patient')),
        tier=row.get('tier') or 'standard',
        number=row.get('membership_number'),
        status=row.get('status') or 'active',
        expiry_date=_parse_datetime(row.get('expiry_date')),
        points=row.get('points') or 0,
    )


def _prescription(row: Dict[str, Any]) -> Prescription:
    return Prescription(
        id=row['id'],
        tenant_id=row.get(TENANT_COLUMN),
        patient=_patient(row.get('patient')),
        code=row.get('prescription_code'),
        expires_at=_parse_datetime(row.get('expires_at')),
        controlled_substance=bool(row.get('controlled_substance')),
        status=row.get('status') or 'active',
        last_warning_level=row.get('last_warning_level'),
    )


def _lab_result(row: Dict[str, Any]) -> LabResult:
    return LabResult(
        id=row['id'],
        tenant_id=row.get(TENANT_COLUMN),
        patient=_patient(row.get('patient')),
        test_type=row.get('test_type') or 'lab test',
        request_code=row.get('request_code'),
        status=row.get('status') or 'pending',
        ordered_by=row.get('ordered_by'),
        abnormal_flags=dict(row.get('abnormal_flags') or {}),
        notified_at=_parse_datetime(row.get('notification_sent_at')),
    )


def _queue_entry(row: Dict[str, Any]) -> QueueEntry:
    return QueueEntry(
        id=row['id'],
        tenant_id=row.get(TENANT_COLUMN),
        patient=_patient(row.get('patient')),
        doctor_id=row.get('doctor_id'),
        status=row.get('status') or 'waiting',
        queue_number=row.get('queue_number') or 0,
        priority=row.get('priority') or 'normal',
        specialization=row.get('specialization'),
        created_at=_parse_datetime(row.get('created_at')),
    )


def _is_unique_violation(error: Exception) -> bool:
    code = getattr(error, 'code', None)
    return code == '23505' or '23505' in str(error) or 'duplicate key' in str(error).lower()


# =============================================================================
# Store
# =============================================================================

class SupabaseRecordStore(RecordStore):
    """RecordStore over the Supabase healthcare schema."""

    def __init__(
        self,
        client: Client,
        timeout_seconds: float = 30.0,
        breaker: CircuitBreaker = supabase_breaker,
    ):
        self.client = client
        self.timeout_seconds = timeout_seconds
        self.breaker = breaker

    def _table(self, name: str):
        return self.client.table(name)

    @staticmethod
    def _scoped(query, tenant_id: Optional[str]):
        # No tenant id means the legacy untenanted scope: no filter at all
        if tenant_id:
            query = query.eq(TENANT_COLUMN, tenant_id)
        return query

    async def _bounded(self, query, what: str):
        return await with_timeout(asyncio.to_thread(query.execute), self.timeout_seconds, what)

    async def _execute(self, query, what: str):
        """Run a PostgREST query, mapping transport failures to DependencyUnavailable."""
        try:
            return await self.breaker.call(self._bounded, query, what)
        except CircuitBreakerOpen as e:
            raise DependencyUnavailable('record store', str(e))
        except NETWORK_EXCEPTIONS as e:
            raise DependencyUnavailable('record store', f"{what}: {e}")

    async def _rows(self, query, what: str) -> List[Dict[str, Any]]:
        result = await self._execute(query, what)
        return result.data or []

    async def _single(self, query, entity: str, entity_id: str) -> Dict[str, Any]:
        rows = await self._rows(query.limit(1), f"{entity} {entity_id} lookup")
        if not rows:
            raise NotFoundError(entity, entity_id)
        return rows[0]

    async def _conditional_update(self, query, what: str) -> bool:
        # Exactly one updated row means the precondition still held
        rows = await self._rows(query, what)
        return len(rows) == 1

    async def _insert(self, table: str, payload: Dict[str, Any], entity: str, entity_id: str) -> Dict[str, Any]:
        try:
            rows = await self._rows(self._table(table).insert(payload), f"{table} insert")
        except APIError as e:
            if _is_unique_violation(e):
                raise AlreadyProcessedError(entity, entity_id, 'already exists')
            raise
        if not rows:
            raise DependencyUnavailable('record store', f"{table} insert returned no row")
        return rows[0]

    # -- tenants / staff ------------------------------------------------------

    async def list_tenant_ids(self) -> List[str]:
        rows = await self._rows(
            self._table('clinics').select('id').eq('is_active', True).order('id'),
            'clinics query',
        )
        return [row['id'] for row in rows]

    async def list_active_staff(self, tenant_id: Optional[str]) -> List[StaffMember]:
        query = self._scoped(self._table('staff_members').select('*'), tenant_id).eq('is_active', True)
        return [_staff(row) for row in await self._rows(query, 'staff query')]

    # -- patients -------------------------------------------------------------

    async def get_patient(self, tenant_id: Optional[str], patient_id: str) -> Patient:
        query = self._scoped(self._table('patients').select('*'), tenant_id).eq('id', patient_id)
        return _patient(await self._single(query, 'patient', patient_id))

    async def find_patients_with_no_shows(self, tenant_id: Optional[str], since: datetime) -> List[Patient]:
        query = self._scoped(
            self._table('appointments').select(f'patient_id, {PATIENT_EMBED}'), tenant_id
        ).eq('status', 'no-show').gte('scheduled_at', since.isoformat())

        patients: Dict[str, Patient] = {}
        for row in await self._rows(query, 'no-show patients query'):
            patient = _patient(row.get('patient'))
            if patient and patient.id not in patients:
                patients[patient.id] = patient
        return list(patients.values())

    async def find_restricted_patients(self, tenant_id: Optional[str]) -> List[Patient]:
        query = self._scoped(self._table('patients').select('*'), tenant_id).in_(
            'appointment_restriction', ['deposit_required', 'walk_in_only', 'banned']
        )
        return [_patient(row) for row in await self._rows(query, 'restricted patients query')]

    async def count_no_shows(self, tenant_id: Optional[str], patient_id: str, since: datetime) -> int:
        query = self._scoped(
            self._table('appointments').select('id', count='exact'), tenant_id
        ).eq('patient_id', patient_id).eq('status', 'no-show').gte('scheduled_at', since.isoformat())
        result = await self._execute(query, 'no-show count')
        return result.count if result.count is not None else len(result.data or [])

    async def set_patient_restriction(self, tenant_id: Optional[str], patient_id: str,
                                      restriction: str, expected_current: str) -> bool:
        query = self._scoped(
            self._table('patients').update({'appointment_restriction': restriction}), tenant_id
        ).eq('id', patient_id)
        if expected_current == 'none':
            query = query.or_('appointment_restriction.is.null,appointment_restriction.eq.none')
        else:
            query = query.eq('appointment_restriction', expected_current)
        return await self._conditional_update(query, 'patient restriction update')

    async def find_patients_without_welcome(self, tenant_id: Optional[str], since: datetime) -> List[Patient]:
        query = self._scoped(self._table('patients').select('*'), tenant_id).gte(
            'created_at', since.isoformat()
        ).is_('welcome_sent_at', 'null').order('created_at')
        return [_patient(row) for row in await self._rows(query, 'new patients query')]

    async def mark_welcome_sent(self, tenant_id: Optional[str], patient_id: str, sent_at: datetime) -> bool:
        query = self._scoped(
            self._table('patients').update({'welcome_sent_at': sent_at.isoformat()}), tenant_id
        ).eq('id', patient_id).is_('welcome_sent_at', 'null')
        return await self._conditional_update(query, 'welcome update')

    # -- appointments ---------------------------------------------------------

    def _appointments(self, tenant_id: Optional[str]):
        return self._scoped(self._table('appointments').select(f'*, {PATIENT_EMBED}'), tenant_id)

    async def get_appointment(self, tenant_id: Optional[str], appointment_id: str) -> Appointment:
        query = self._appointments(tenant_id).eq('id', appointment_id)
        return _appointment(await self._single(query, 'appointment', appointment_id))

    async def find_appointments_starting_between(
        self, tenant_id: Optional[str], start: datetime, end: datetime,
        statuses: Sequence[str],
    ) -> List[Appointment]:
        query = self._appointments(tenant_id).gte('scheduled_at', start.isoformat()).lt(
            'scheduled_at', end.isoformat()
        ).in_('status', list(statuses)).order('scheduled_at')
        return [_appointment(row) for row in await self._rows(query, 'appointments window query')]

    async def find_appointments_started_before(
        self, tenant_id: Optional[str], before: datetime, statuses: Sequence[str],
    ) -> List[Appointment]:
        query = self._appointments(tenant_id).lt('scheduled_at', before.isoformat()).in_(
            'status', list(statuses)
        ).order('scheduled_at')
        return [_appointment(row) for row in await self._rows(query, 'past appointments query')]

    async def mark_reminder_sent(self, tenant_id: Optional[str], appointment_id: str, sent_at: datetime) -> bool:
        query = self._scoped(
            self._table('appointments').update({'reminder_sent_at': sent_at.isoformat()}), tenant_id
        ).eq('id', appointment_id).is_('reminder_sent_at', 'null')
        return await self._conditional_update(query, 'reminder update')

    async def mark_no_show(self, tenant_id: Optional[str], appointment_id: str,
                           expected_statuses: Sequence[str]) -> bool:
        query = self._scoped(
            self._table('appointments').update({'status': 'no-show'}), tenant_id
        ).eq('id', appointment_id).in_('status', list(expected_statuses))
        return await self._conditional_update(query, 'no-show update')

    async def find_unassigned_appointments(self, tenant_id: Optional[str], after: datetime,
                                           limit: int) -> List[Appointment]:
        query = self._appointments(tenant_id).is_('doctor_id', 'null').gte(
            'scheduled_at', after.isoformat()
        ).in_('status', list(BOOKABLE_APPOINTMENT_STATUSES)).order('scheduled_at').limit(limit)
        return [_appointment(row) for row in await self._rows(query, 'unassigned appointments query')]

    async def list_doctor_appointments(self, tenant_id: Optional[str], doctor_id: str,
                                       start: datetime, end: datetime) -> List[Appointment]:
        query = self._scoped(self._table('appointments').select('*'), tenant_id).eq(
            'doctor_id', doctor_id
        ).gte('scheduled_at', start.isoformat()).lt('scheduled_at', end.isoformat()).in_(
            'status', list(ACTIVE_APPOINTMENT_STATUSES)
        )
        return [_appointment(row) for row in await self._rows(query, 'doctor schedule query')]

    async def assign_doctor(self, tenant_id: Optional[str], appointment_id: str, doctor_id: str) -> bool:
        query = self._scoped(
            self._table('appointments').update({'doctor_id': doctor_id}), tenant_id
        ).eq('id', appointment_id).is_('doctor_id', 'null')
        return await self._conditional_update(query, 'doctor assignment')

    async def has_active_appointment_on(self, tenant_id: Optional[str], patient_id: str, day: date) -> bool:
        query = self._scoped(self._table('appointments').select('id'), tenant_id).eq(
            'patient_id', patient_id
        ).eq('appointment_date', day.isoformat()).in_(
            'status', list(BOOKABLE_APPOINTMENT_STATUSES)
        ).limit(1)
        return bool(await self._rows(query, 'appointment existence check'))

    async def last_appointment_code(self, tenant_id: Optional[str], prefix: str) -> Optional[str]:
        query = self._scoped(self._table('appointments').select('appointment_code'), tenant_id).like(
            'appointment_code', f'{prefix}-%'
        ).order('appointment_code', desc=True).limit(1)
        rows = await self._rows(query, 'appointment code query')
        return rows[0]['appointment_code'] if rows else None

    async def create_appointment(self, draft: AppointmentDraft) -> Appointment:
        row = await self._insert('appointments', {
            TENANT_COLUMN: draft.tenant_id,
            'patient_id': draft.patient_id,
            'doctor_id': draft.doctor_id,
            'appointment_code': draft.code,
            'appointment_date': draft.appointment_date.isoformat(),
            'start_time': draft.appointment_time,
            'scheduled_at': draft.scheduled_at.isoformat() if draft.scheduled_at else None,
            'reason': draft.reason,
            'status': draft.status,
            'source_visit_id': draft.source_visit_id,
        }, 'appointment', draft.code)
        return _appointment(row)

    # -- doctors / visits -----------------------------------------------------

    async def list_active_doctors(self, tenant_id: Optional[str]) -> List[Doctor]:
        query = self._scoped(self._table('doctors').select('*'), tenant_id).eq('active', True).order('id')
        return [_doctor(row) for row in await self._rows(query, 'doctors query')]

    async def count_recent_closed_visits(self, tenant_id: Optional[str], doctor_id: str, patient_id: str,
                                         limit: int) -> int:
        query = self._scoped(self._table('visits').select('id'), tenant_id).eq(
            'provider_id', doctor_id
        ).eq('patient_id', patient_id).eq('status', 'closed').order('visit_date', desc=True).limit(limit)
        return len(await self._rows(query, 'continuity visits query'))

    def _visits(self, tenant_id: Optional[str]):
        return self._scoped(self._table('visits').select(f'*, {PATIENT_EMBED}'), tenant_id)

    async def get_visit(self, tenant_id: Optional[str], visit_id: str) -> Visit:
        return _visit(await self._single(self._visits(tenant_id).eq('id', visit_id), 'visit', visit_id))

    async def find_closed_visits_without_invoice(self, tenant_id: Optional[str]) -> List[Visit]:
        visits = [
            _visit(row) for row in await self._rows(
                self._visits(tenant_id).eq('status', 'closed').order('visit_date'), 'closed visits query'
            )
        ]
        if not visits:
            return []

        invoiced_query = self._scoped(self._table('invoices').select('visit_id'), tenant_id).in_(
            'visit_id', [v.id for v in visits]
        )
        invoiced = {row['visit_id'] for row in await self._rows(invoiced_query, 'invoiced visits query')}
        return [v for v in visits if v.id not in invoiced]

    async def find_closed_visits_with_followup(self, tenant_id: Optional[str], from_date: date) -> List[Visit]:
        query = self._visits(tenant_id).eq('status', 'closed').gte(
            'follow_up_date', from_date.isoformat()
        ).order('follow_up_date')
        return [_visit(row) for row in await self._rows(query, 'follow-up visits query')]

    # -- invoices -------------------------------------------------------------

    def _invoices(self, tenant_id: Optional[str]):
        return self._scoped(self._table('invoices').select(f'*, {PATIENT_EMBED}'), tenant_id)

    async def get_invoice(self, tenant_id: Optional[str], invoice_id: str) -> Invoice:
        return _invoice(await self._single(self._invoices(tenant_id).eq('id', invoice_id), 'invoice', invoice_id))

    async def find_outstanding_invoices(self, tenant_id: Optional[str]) -> List[Invoice]:
        query = self._invoices(tenant_id).in_('status', list(OUTSTANDING_INVOICE_STATUSES)).gt(
            'outstanding_balance', 0
        ).order('created_at')
        return [_invoice(row) for row in await self._rows(query, 'outstanding invoices query')]

    async def record_payment_reminder(self, tenant_id: Optional[str], invoice_id: str,
                                      on: date, level: str) -> bool:
        query = self._scoped(self._table('invoices').update({
            'last_reminder_on': on.isoformat(),
            'last_reminder_level': level,
        }), tenant_id).eq('id', invoice_id).or_(
            f'last_reminder_on.is.null,last_reminder_on.neq.{on.isoformat()}'
        )
        return await self._conditional_update(query, 'payment reminder update')

    async def invoice_exists_for_visit(self, tenant_id: Optional[str], visit_id: str) -> bool:
        query = self._scoped(self._table('invoices').select('id'), tenant_id).eq('visit_id', visit_id).limit(1)
        return bool(await self._rows(query, 'invoice existence check'))

    async def find_consultation_price(self, tenant_id: Optional[str]) -> Optional[ServicePrice]:
        query = self._scoped(self._table('services').select('*'), tenant_id).eq(
            'category', 'consultation'
        ).eq('is_active', True).order('created_at').limit(1)
        rows = await self._rows(query, 'consultation price query')
        if not rows:
            return None
        row = rows[0]
        return ServicePrice(
            id=row['id'],
            code=row.get('code') or 'CONSULT',
            name=row.get('name') or 'Consultation',
            unit_price=float(row.get('base_price') or 0),
        )

    async def last_invoice_number(self, tenant_id: Optional[str], prefix: str) -> Optional[str]:
        query = self._scoped(self._table('invoices').select('invoice_number'), tenant_id).like(
            'invoice_number', f'{prefix}-%'
        ).order('invoice_number', desc=True).limit(1)
        rows = await self._rows(query, 'invoice number query')
        return rows[0]['invoice_number'] if rows else None

    async def create_invoice(self, draft: InvoiceDraft) -> Invoice:
        row = await self._insert('invoices', {
            TENANT_COLUMN: draft.tenant_id,
            'patient_id': draft.patient_id,
            'visit_id': draft.visit_id,
            'invoice_number': draft.invoice_number,
            'status': 'unpaid',
            'items': [
                {
                    'service_id': line.service_id,
                    'code': line.code,
                    'description': line.description,
                    'category': line.category,
                    'quantity': line.quantity,
                    'unit_price': line.unit_price,
                    'total': line.total,
                }
                for line in draft.items
            ],
            'subtotal': draft.subtotal,
            'tax_amount': draft.tax,
            'total_amount': draft.total,
            'outstanding_balance': draft.total,
            'created_at': draft.created_at.isoformat(),
        }, 'invoice for visit', draft.visit_id)
        return _invoice(row)

    # -- inventory ------------------------------------------------------------

    async def find_inventory_expiring_between(self, tenant_id: Optional[str], start: date,
                                              end: date) -> List[InventoryItem]:
        query = self._scoped(self._table('inventory_items').select('*'), tenant_id).gte(
            'expiry_date', start.isoformat()
        ).lte('expiry_date', end.isoformat()).gt('quantity', 0)
        return [_inventory_item(row) for row in await self._rows(query, 'expiring inventory query')]

    async def find_reorder_candidates(self, tenant_id: Optional[str], expiring_before: date) -> List[InventoryItem]:
        stock_query = self._scoped(self._table('inventory_items').select('*'), tenant_id).or_(
            'status.in.(low-stock,out-of-stock),quantity.lte.0'
        )
        expiring_query = self._scoped(self._table('inventory_items').select('*'), tenant_id).lte(
            'expiry_date', expiring_before.isoformat()
        ).gt('quantity', 0)

        items: Dict[str, InventoryItem] = {}
        for row in await self._rows(stock_query, 'low stock query'):
            items[row['id']] = _inventory_item(row)
        for row in await self._rows(expiring_query, 'expiring stock query'):
            items.setdefault(row['id'], _inventory_item(row))
        return list(items.values())

    async def get_inventory_item(self, tenant_id: Optional[str], item_id: str) -> InventoryItem:
        query = self._scoped(self._table('inventory_items').select('*'), tenant_id).eq('id', item_id)
        return _inventory_item(await self._single(query, 'inventory item', item_id))

    async def has_open_reorder_request(self, tenant_id: Optional[str], item_id: str) -> bool:
        query = self._scoped(self._table('reorder_requests').select('id'), tenant_id).eq(
            'inventory_item_id', item_id
        ).in_('status', ['pending', 'ordered']).limit(1)
        return bool(await self._rows(query, 'open reorder check'))

    async def create_reorder_request(self, request: ReorderRequest) -> str:
        row = await self._insert('reorder_requests', {
            TENANT_COLUMN: request.tenant_id,
            'inventory_item_id': request.item_id,
            'item_name': request.item_name,
            'quantity': request.quantity,
            'unit': request.unit,
            'reason': request.reason,
            'priority': request.priority,
            'status': 'pending',
            'created_at': request.created_at.isoformat(),
        }, 'reorder request for item', request.item_id)
        return row['id']

    # -- documents / memberships / prescriptions ------------------------------

    async def find_documents_expiring_between(self, tenant_id: Optional[str], start: date,
                                              end: date) -> List[Document]:
        query = self._scoped(
            self._table('patient_documents').select(f'*, {PATIENT_EMBED}'), tenant_id
        ).gte('expiry_date', start.isoformat()).lte('expiry_date', end.isoformat()).order('expiry_date')
        return [_document(row) for row in await self._rows(query, 'expiring documents query')]

    async def get_document(self, tenant_id: Optional[str], document_id: str) -> Document:
        query = self._scoped(
            self._table('patient_documents').select(f'*, {PATIENT_EMBED}'), tenant_id
        ).eq('id', document_id)
        return _document(await self._single(query, 'document', document_id))

    async def _record_warning(self, table: str, tenant_id: Optional[str], entity_id: str,
                              level: str, expected_previous: Optional[str]) -> bool:
        query = self._scoped(
            self._table(table).update({'last_warning_level': level}), tenant_id
        ).eq('id', entity_id)
        if expected_previous is None:
            query = query.is_('last_warning_level', 'null')
        else:
            query = query.eq('last_warning_level', expected_previous)
        return await self._conditional_update(query, f'{table} warning update')

    async def record_document_warning(self, tenant_id: Optional[str], document_id: str,
                                      level: str, expected_previous: Optional[str]) -> bool:
        return await self._record_warning('patient_documents', tenant_id, document_id, level, expected_previous)

    async def find_memberships_expiring_before(self, tenant_id: Optional[str], until: datetime) -> List[Membership]:
        query = self._scoped(
            self._table('memberships').select(f'*, {PATIENT_EMBED}'), tenant_id
        ).eq('status', 'active').lte('expiry_date', until.isoformat()).order('expiry_date')
        return [_membership(row) for row in await self._rows(query, 'memberships query')]

    async def expire_membership(self, tenant_id: Optional[str], membership_id: str) -> bool:
        query = self._scoped(
            self._table('memberships').update({'status': 'expired'}), tenant_id
        ).eq('id', membership_id).eq('status', 'active')
        return await self._conditional_update(query, 'membership expiry update')

    async def find_prescriptions_expiring_between(self, tenant_id: Optional[str], start: datetime,
                                                  end: datetime) -> List[Prescription]:
        query = self._scoped(
            self._table('prescriptions').select(f'*, {PATIENT_EMBED}'), tenant_id
        ).eq('status', 'active').gte('expires_at', start.isoformat()).lte(
            'expires_at', end.isoformat()
        ).order('expires_at')
        return [_prescription(row) for row in await self._rows(query, 'prescriptions query')]

    async def get_prescription(self, tenant_id: Optional[str], prescription_id: str) -> Prescription:
        query = self._scoped(
            self._table('prescriptions').select(f'*, {PATIENT_EMBED}'), tenant_id
        ).eq('id', prescription_id)
        return _prescription(await self._single(query, 'prescription', prescription_id))

    async def record_prescription_warning(self, tenant_id: Optional[str], prescription_id: str,
                                          level: str, expected_previous: Optional[str]) -> bool:
        return await self._record_warning('prescriptions', tenant_id, prescription_id, level, expected_previous)

    # -- lab results / queue ---------------------------------------------------

    def _lab_results(self, tenant_id: Optional[str]):
        return self._scoped(self._table('lab_results').select(f'*, {PATIENT_EMBED}'), tenant_id)

    async def find_unnotified_lab_results(self, tenant_id: Optional[str]) -> List[LabResult]:
        query = self._lab_results(tenant_id).in_('status', list(READY_LAB_STATUSES)).is_(
            'notification_sent_at', 'null'
        ).order('created_at')
        return [_lab_result(row) for row in await self._rows(query, 'lab results query')]

    async def get_lab_result(self, tenant_id: Optional[str], lab_result_id: str) -> LabResult:
        query = self._lab_results(tenant_id).eq('id', lab_result_id)
        return _lab_result(await self._single(query, 'lab result', lab_result_id))

    async def mark_lab_result_notified(self, tenant_id: Optional[str], lab_result_id: str,
                                       notified_at: datetime) -> bool:
        query = self._scoped(self._table('lab_results').update({
            'notification_sent': True,
            'notification_sent_at': notified_at.isoformat(),
        }), tenant_id).eq('id', lab_result_id).is_('notification_sent_at', 'null')
        return await self._conditional_update(query, 'lab notification update')

    async def list_active_queue(self, tenant_id: Optional[str]) -> List[QueueEntry]:
        query = self._scoped(
            self._table('queue_entries').select(f'*, {PATIENT_EMBED}'), tenant_id
        ).in_('status', list(ACTIVE_QUEUE_STATUSES)).order('queue_number')
        return [_queue_entry(row) for row in await self._rows(query, 'queue query')]

    async def set_queue_position(self, tenant_id: Optional[str], entry_id: str,
                                 queue_number: int, expected_number: int) -> bool:
        query = self._scoped(
            self._table('queue_entries').update({'queue_number': queue_number}), tenant_id
        ).eq('id', entry_id).eq('queue_number', expected_number).eq('status', 'waiting')
        return await self._conditional_update(query, 'queue position update')

    async def reassign_queue_doctor(self, tenant_id: Optional[str], entry_id: str,
                                    doctor_id: str, expected_doctor_id: Optional[str]) -> bool:
        query = self._scoped(
            self._table('queue_entries').update({'doctor_id': doctor_id}), tenant_id
        ).eq('id', entry_id).eq('status', 'waiting')
        if expected_doctor_id is None:
            query = query.is_('doctor_id', 'null')
        else:
            query = query.eq('doctor_id', expected_doctor_id)
        return await self._conditional_update(query, 'queue doctor update')

    # -- retention / reports --------------------------------------------------

    @staticmethod
    def _retention_table(resource: str):
        try:
            return RETENTION_TABLES[resource]
        except KeyError:
            raise ValidationError(f"unknown retention resource {resource!r}", 'resource')

    async def archive_records(self, tenant_id: Optional[str], resource: str,
                              created_before: datetime, archived_at: datetime) -> int:
        table, age_column = self._retention_table(resource)
        query = self._scoped(self._table(table).update({
            'archived': True,
            'archived_at': archived_at.isoformat(),
        }), tenant_id).lt(age_column, created_before.isoformat()).or_('archived.is.null,archived.eq.false')
        return len(await self._rows(query, f'{table} archive'))

    async def delete_archived_records(self, tenant_id: Optional[str], resource: str,
                                      archived_before: datetime) -> int:
        table, _ = self._retention_table(resource)
        query = self._scoped(self._table(table).delete(), tenant_id).eq('archived', True).lt(
            'archived_at', archived_before.isoformat()
        )
        return len(await self._rows(query, f'{table} purge'))

    async def daily_summary(self, tenant_id: Optional[str], start: datetime, end: datetime) -> DailySummary:
        lo, hi = start.isoformat(), end.isoformat()

        patients = await self._rows(
            self._scoped(self._table('patients').select('id'), tenant_id).gte('created_at', lo).lt('created_at', hi),
            'new patients count',
        )
        appointments = await self._rows(
            self._scoped(self._table('appointments').select('status'), tenant_id).gte(
                'scheduled_at', lo
            ).lt('scheduled_at', hi),
            'appointments summary',
        )
        visits = await self._rows(
            self._scoped(self._table('visits').select('status'), tenant_id).gte('visit_date', lo).lt('visit_date', hi),
            'visits summary',
        )
        new_invoices = await self._rows(
            self._scoped(self._table('invoices').select('id'), tenant_id).gte('created_at', lo).lt('created_at', hi),
            'new invoices count',
        )
        paid = await self._rows(
            self._scoped(self._table('invoices').select('total_amount'), tenant_id).eq('status', 'paid').gte(
                'paid_at', lo
            ).lt('paid_at', hi),
            'paid invoices summary',
        )
        outstanding = await self._rows(
            self._scoped(self._table('invoices').select('outstanding_balance'), tenant_id).in_(
                'status', list(OUTSTANDING_INVOICE_STATUSES)
            ),
            'outstanding balance summary',
        )

        by_status: Dict[str, int] = {}
        for row in appointments:
            status = row.get('status') or 'scheduled'
            by_status[status] = by_status.get(status, 0) + 1

        return DailySummary(
            day=start.date(),
            new_patients=len(patients),
            appointments_by_status=by_status,
            visits_total=len(visits),
            visits_closed=sum(1 for row in visits if row.get('status') == 'closed'),
            new_invoices=len(new_invoices),
            paid_invoices=len(paid),
            revenue=round(sum(float(row.get('total_amount') or 0) for row in paid), 2),
            outstanding_balance=round(sum(float(row.get('outstanding_balance') or 0) for row in outstanding), 2),
        )

    async def claim_report(self, tenant_id: Optional[str], kind: str, day: date) -> bool:
        try:
            await self._insert('automation_reports', {
                TENANT_COLUMN: tenant_id,
                'kind': kind,
                'report_date': day.isoformat(),
            }, f'{kind} report', day.isoformat())
        except AlreadyProcessedError:
            return False
        return True

    # -- notifications --------------------------------------------------------

    async def insert_notification(self, intent: NotificationIntent) -> str:
        payload = {
            TENANT_COLUMN: intent.tenant_id,
            'recipient_id': intent.recipient_id,
            'title': intent.title,
            'message': intent.message,
            'priority': intent.priority.value,
            'category': intent.category,
            'action_url': intent.action_url,
            'metadata': intent.metadata,
            'is_read': False,
        }
        if intent.related_entity:
            payload['related_entity_type'] = intent.related_entity.type
            payload['related_entity_id'] = intent.related_entity.id

        rows = await self._rows(self._table('notifications').insert(payload), 'notification insert')
        return rows[0]['id'] if rows else ''
