"""
In-memory collaborators for automation tests.

InMemoryRecordStore follows the same conditional-write contract as the
Supabase store: mark_*/assign_*/record_* return False once the precondition
no longer holds and create_invoice raises AlreadyProcessedError on a second
invoice for the same visit.
"""

import itertools
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Sequence

from clinic_automation.exceptions import AlreadyProcessedError, NotFoundError, ValidationError
from clinic_automation.models import (
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
    SendResult,
    ServicePrice,
    StaffMember,
    Visit,
)
from clinic_automation.store.base import RecordStore

NO_SHOW = "no-show"

TENANT = "clinic-1"
OTHER_TENANT = "clinic-2"

# Monday 2025-03-10 09:00 UTC
NOW = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


def _in_scope(record, tenant_id: Optional[str]) -> bool:
    return tenant_id is None or record.tenant_id == tenant_id


def _start(appointment: Appointment) -> Optional[datetime]:
    return appointment.start("UTC")


class InMemoryRecordStore(RecordStore):
    """Dict-backed RecordStore; every call is logged in .calls."""

    def __init__(self):
        self.tenants: List[str] = []
        self.staff: Dict[str, StaffMember] = {}
        self.patients: Dict[str, Patient] = {}
        self.appointments: Dict[str, Appointment] = {}
        self.doctors: Dict[str, Doctor] = {}
        self.visits: Dict[str, Visit] = {}
        self.invoices: Dict[str, Invoice] = {}
        self.consultation_prices: Dict[Optional[str], ServicePrice] = {}
        self.inventory: Dict[str, InventoryItem] = {}
        self.reorder_requests: Dict[str, ReorderRequest] = {}
        self.closed_reorder_ids: set = set()
        self.documents: Dict[str, Document] = {}
        self.memberships: Dict[str, Membership] = {}
        self.prescriptions: Dict[str, Prescription] = {}
        self.lab_results: Dict[str, LabResult] = {}
        self.queue: Dict[str, QueueEntry] = {}
        # resource -> rows with tenant_id, created_at, archived, archived_at
        self.retention_rows: Dict[str, List[dict]] = {}
        self.reports: set = set()
        self.notifications: List[NotificationIntent] = []

        self.calls: List[str] = []
        self.failures: Dict[str, Exception] = {}
        self._ids = itertools.count(1)

    # -- helpers --------------------------------------------------------------

    def _touch(self, name: str) -> None:
        self.calls.append(name)
        error = self.failures.get(name)
        if error is not None:
            raise error

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def add(self, *records) -> None:
        """Store records by type."""
        tables = {
            StaffMember: self.staff,
            Patient: self.patients,
            Appointment: self.appointments,
            Doctor: self.doctors,
            Visit: self.visits,
            Invoice: self.invoices,
            InventoryItem: self.inventory,
            Document: self.documents,
            Membership: self.memberships,
            Prescription: self.prescriptions,
            LabResult: self.lab_results,
            QueueEntry: self.queue,
        }
        for record in records:
            tables[type(record)][record.id] = record

    @staticmethod
    def _get(table: dict, entity: str, tenant_id: Optional[str], entity_id: str):
        record = table.get(entity_id)
        if record is None or not _in_scope(record, tenant_id):
            raise NotFoundError(entity, entity_id)
        return record

    def _with_patient(self, record):
        # Embed the current patient snapshot, like the PostgREST join
        if record.patient is not None and record.patient.id in self.patients:
            return replace(record, patient=self.patients[record.patient.id])
        return record

    # -- tenants / staff ------------------------------------------------------

    async def list_tenant_ids(self) -> List[str]:
        self._touch("list_tenant_ids")
        return list(self.tenants)

    async def list_active_staff(self, tenant_id):
        self._touch("list_active_staff")
        return [s for s in self.staff.values() if s.active and _in_scope(s, tenant_id)]

    # -- patients -------------------------------------------------------------

    async def get_patient(self, tenant_id, patient_id):
        self._touch("get_patient")
        return self._get(self.patients, "patient", tenant_id, patient_id)

    def _no_shows(self, tenant_id, patient_id: Optional[str], since: datetime) -> List[Appointment]:
        return [
            a for a in self.appointments.values()
            if a.status == NO_SHOW and _in_scope(a, tenant_id) and a.patient is not None
            and (patient_id is None or a.patient.id == patient_id)
            and _start(a) is not None and _start(a) >= since
        ]

    async def find_patients_with_no_shows(self, tenant_id, since):
        self._touch("find_patients_with_no_shows")
        ids = {a.patient.id for a in self._no_shows(tenant_id, None, since)}
        return [self.patients[i] for i in sorted(ids) if i in self.patients]

    async def find_restricted_patients(self, tenant_id):
        self._touch("find_restricted_patients")
        return [
            p for p in self.patients.values()
            if _in_scope(p, tenant_id) and p.appointment_restriction not in (None, "", "none")
        ]

    async def count_no_shows(self, tenant_id, patient_id, since):
        self._touch("count_no_shows")
        return len(self._no_shows(tenant_id, patient_id, since))

    async def set_patient_restriction(self, tenant_id, patient_id, restriction, expected_current):
        self._touch("set_patient_restriction")
        patient = self._get(self.patients, "patient", tenant_id, patient_id)
        if (patient.appointment_restriction or "none") != expected_current:
            return False
        self.patients[patient_id] = replace(patient, appointment_restriction=restriction)
        return True

    async def find_patients_without_welcome(self, tenant_id, since):
        self._touch("find_patients_without_welcome")
        return [
            p for p in self.patients.values()
            if _in_scope(p, tenant_id) and p.welcome_sent_at is None
            and p.created_at is not None and p.created_at >= since
        ]

    async def mark_welcome_sent(self, tenant_id, patient_id, sent_at):
        self._touch("mark_welcome_sent")
        patient = self._get(self.patients, "patient", tenant_id, patient_id)
        if patient.welcome_sent_at is not None:
            return False
        self.patients[patient_id] = replace(patient, welcome_sent_at=sent_at)
        return True

    # -- appointments ---------------------------------------------------------

    async def get_appointment(self, tenant_id, appointment_id):
        self._touch("get_appointment")
        return self._with_patient(self._get(self.appointments, "appointment", tenant_id, appointment_id))

    async def find_appointments_starting_between(self, tenant_id, start, end, statuses: Sequence[str]):
        self._touch("find_appointments_starting_between")
        return sorted(
            (a for a in self.appointments.values()
             if _in_scope(a, tenant_id) and a.status in statuses
             and _start(a) is not None and start <= _start(a) < end),
            key=_start,
        )

    async def find_appointments_started_before(self, tenant_id, before, statuses: Sequence[str]):
        self._touch("find_appointments_started_before")
        return sorted(
            (a for a in self.appointments.values()
             if _in_scope(a, tenant_id) and a.status in statuses
             and _start(a) is not None and _start(a) < before),
            key=_start,
        )

    async def mark_reminder_sent(self, tenant_id, appointment_id, sent_at):
        self._touch("mark_reminder_sent")
        appointment = self._get(self.appointments, "appointment", tenant_id, appointment_id)
        if appointment.reminder_sent_at is not None:
            return False
        self.appointments[appointment_id] = replace(appointment, reminder_sent_at=sent_at)
        return True

    async def mark_no_show(self, tenant_id, appointment_id, expected_statuses):
        self._touch("mark_no_show")
        appointment = self._get(self.appointments, "appointment", tenant_id, appointment_id)
        if appointment.status not in expected_statuses:
            return False
        self.appointments[appointment_id] = replace(appointment, status=NO_SHOW)
        return True

    async def find_unassigned_appointments(self, tenant_id, after, limit):
        self._touch("find_unassigned_appointments")
        found = sorted(
            (a for a in self.appointments.values()
             if _in_scope(a, tenant_id) and a.doctor_id is None
             and a.status in BOOKABLE_APPOINTMENT_STATUSES
             and _start(a) is not None and _start(a) >= after),
            key=_start,
        )
        return found[:limit]

    async def list_doctor_appointments(self, tenant_id, doctor_id, start, end):
        self._touch("list_doctor_appointments")
        return [
            a for a in self.appointments.values()
            if _in_scope(a, tenant_id) and a.doctor_id == doctor_id
            and a.status in ("scheduled", "confirmed")
            and _start(a) is not None and start <= _start(a) < end
        ]

    async def assign_doctor(self, tenant_id, appointment_id, doctor_id):
        self._touch("assign_doctor")
        appointment = self._get(self.appointments, "appointment", tenant_id, appointment_id)
        if appointment.doctor_id is not None:
            return False
        self.appointments[appointment_id] = replace(appointment, doctor_id=doctor_id)
        return True

    async def has_active_appointment_on(self, tenant_id, patient_id, day: date):
        self._touch("has_active_appointment_on")
        return any(
            a.patient is not None and a.patient.id == patient_id and _in_scope(a, tenant_id)
            and a.status in BOOKABLE_APPOINTMENT_STATUSES
            and _start(a) is not None and _start(a).date() == day
            for a in self.appointments.values()
        )

    async def last_appointment_code(self, tenant_id, prefix):
        self._touch("last_appointment_code")
        codes = sorted(
            a.code for a in self.appointments.values()
            if _in_scope(a, tenant_id) and a.code and a.code.startswith(f"{prefix}-")
        )
        return codes[-1] if codes else None

    async def create_appointment(self, draft: AppointmentDraft):
        self._touch("create_appointment")
        if any(a.code == draft.code for a in self.appointments.values() if _in_scope(a, draft.tenant_id)):
            raise AlreadyProcessedError("appointment", draft.code, "duplicate code")
        appointment = Appointment(
            id=self._next_id("appt"),
            tenant_id=draft.tenant_id,
            patient=self.patients.get(draft.patient_id) or Patient(id=draft.patient_id),
            doctor_id=draft.doctor_id,
            status=draft.status,
            appointment_date=draft.appointment_date,
            appointment_time=draft.appointment_time,
            scheduled_at=draft.scheduled_at,
            code=draft.code,
            reason=draft.reason,
        )
        self.appointments[appointment.id] = appointment
        return appointment

    # -- doctors / visits -----------------------------------------------------

    async def list_active_doctors(self, tenant_id):
        self._touch("list_active_doctors")
        return sorted(
            (d for d in self.doctors.values() if d.active and _in_scope(d, tenant_id)),
            key=lambda d: d.id,
        )

    async def count_recent_closed_visits(self, tenant_id, doctor_id, patient_id, limit):
        self._touch("count_recent_closed_visits")
        shared = [
            v for v in self.visits.values()
            if _in_scope(v, tenant_id) and v.provider_id == doctor_id and v.status == "closed"
            and v.patient is not None and v.patient.id == patient_id
        ]
        return min(len(shared), limit)

    async def get_visit(self, tenant_id, visit_id):
        self._touch("get_visit")
        return self._with_patient(self._get(self.visits, "visit", tenant_id, visit_id))

    def _invoiced_visit_ids(self) -> set:
        return {i.visit_id for i in self.invoices.values() if i.visit_id}

    async def find_closed_visits_without_invoice(self, tenant_id):
        self._touch("find_closed_visits_without_invoice")
        invoiced = self._invoiced_visit_ids()
        return [
            v for v in self.visits.values()
            if _in_scope(v, tenant_id) and v.status == "closed" and v.id not in invoiced
        ]

    async def find_closed_visits_with_followup(self, tenant_id, from_date):
        self._touch("find_closed_visits_with_followup")
        return [
            v for v in self.visits.values()
            if _in_scope(v, tenant_id) and v.status == "closed"
            and v.follow_up_date is not None and v.follow_up_date >= from_date
        ]

    # -- invoices -------------------------------------------------------------

    async def get_invoice(self, tenant_id, invoice_id):
        self._touch("get_invoice")
        return self._with_patient(self._get(self.invoices, "invoice", tenant_id, invoice_id))

    async def find_outstanding_invoices(self, tenant_id):
        self._touch("find_outstanding_invoices")
        return [
            i for i in self.invoices.values()
            if _in_scope(i, tenant_id) and i.status in OUTSTANDING_INVOICE_STATUSES
            and i.outstanding_balance > 0
        ]

    async def record_payment_reminder(self, tenant_id, invoice_id, on, level):
        self._touch("record_payment_reminder")
        invoice = self._get(self.invoices, "invoice", tenant_id, invoice_id)
        if invoice.last_reminder_on == on:
            return False
        self.invoices[invoice_id] = replace(invoice, last_reminder_on=on, last_reminder_level=level)
        return True

    async def invoice_exists_for_visit(self, tenant_id, visit_id):
        self._touch("invoice_exists_for_visit")
        return visit_id in self._invoiced_visit_ids()

    async def find_consultation_price(self, tenant_id):
        self._touch("find_consultation_price")
        return self.consultation_prices.get(tenant_id)

    async def last_invoice_number(self, tenant_id, prefix):
        self._touch("last_invoice_number")
        numbers = sorted(
            i.invoice_number for i in self.invoices.values()
            if _in_scope(i, tenant_id) and i.invoice_number and i.invoice_number.startswith(f"{prefix}-")
        )
        return numbers[-1] if numbers else None

    async def create_invoice(self, draft: InvoiceDraft):
        self._touch("create_invoice")
        if draft.visit_id in self._invoiced_visit_ids():
            raise AlreadyProcessedError("invoice for visit", draft.visit_id, "duplicate key")
        invoice = Invoice(
            id=self._next_id("inv"),
            tenant_id=draft.tenant_id,
            patient=self.patients.get(draft.patient_id) or Patient(id=draft.patient_id),
            visit_id=draft.visit_id,
            invoice_number=draft.invoice_number,
            status="unpaid",
            total=draft.total,
            outstanding_balance=draft.total,
            created_at=draft.created_at,
        )
        self.invoices[invoice.id] = invoice
        return invoice

    # -- inventory ------------------------------------------------------------

    async def find_inventory_expiring_between(self, tenant_id, start, end):
        self._touch("find_inventory_expiring_between")
        return [
            i for i in self.inventory.values()
            if _in_scope(i, tenant_id) and i.quantity > 0
            and i.expiry_date is not None and start <= i.expiry_date <= end
        ]

    async def find_reorder_candidates(self, tenant_id, expiring_before):
        self._touch("find_reorder_candidates")
        return [
            i for i in self.inventory.values()
            if _in_scope(i, tenant_id) and (
                i.quantity <= 0 or i.status in ("low-stock", "out-of-stock")
                or i.quantity <= i.reorder_level
                or (i.expiry_date is not None and i.expiry_date <= expiring_before)
            )
        ]

    async def get_inventory_item(self, tenant_id, item_id):
        self._touch("get_inventory_item")
        return self._get(self.inventory, "inventory item", tenant_id, item_id)

    async def has_open_reorder_request(self, tenant_id, item_id):
        self._touch("has_open_reorder_request")
        return any(
            r.item_id == item_id and request_id not in self.closed_reorder_ids and _in_scope(r, tenant_id)
            for request_id, r in self.reorder_requests.items()
        )

    async def create_reorder_request(self, request: ReorderRequest):
        self._touch("create_reorder_request")
        request_id = self._next_id("reorder")
        self.reorder_requests[request_id] = request
        return request_id

    # -- documents / memberships / prescriptions ------------------------------

    async def find_documents_expiring_between(self, tenant_id, start, end):
        self._touch("find_documents_expiring_between")
        return [
            d for d in self.documents.values()
            if _in_scope(d, tenant_id) and d.expiry_date is not None and start <= d.expiry_date <= end
        ]

    async def get_document(self, tenant_id, document_id):
        self._touch("get_document")
        return self._with_patient(self._get(self.documents, "document", tenant_id, document_id))

    async def record_document_warning(self, tenant_id, document_id, level, expected_previous):
        self._touch("record_document_warning")
        document = self._get(self.documents, "document", tenant_id, document_id)
        if document.last_warning_level != expected_previous:
            return False
        self.documents[document_id] = replace(document, last_warning_level=level)
        return True

    async def find_memberships_expiring_before(self, tenant_id, until):
        self._touch("find_memberships_expiring_before")
        return [
            self._with_patient(m) for m in self.memberships.values()
            if _in_scope(m, tenant_id) and m.status == "active"
            and m.expiry_date is not None and m.expiry_date <= until
        ]

    async def expire_membership(self, tenant_id, membership_id):
        self._touch("expire_membership")
        membership = self._get(self.memberships, "membership", tenant_id, membership_id)
        if membership.status != "active":
            return False
        self.memberships[membership_id] = replace(membership, status="expired")
        return True

    async def find_prescriptions_expiring_between(self, tenant_id, start, end):
        self._touch("find_prescriptions_expiring_between")
        return [
            p for p in self.prescriptions.values()
            if _in_scope(p, tenant_id) and p.status == "active"
            and p.expires_at is not None and start <= p.expires_at <= end
        ]

    async def get_prescription(self, tenant_id, prescription_id):
        self._touch("get_prescription")
        return self._with_patient(self._get(self.prescriptions, "prescription", tenant_id, prescription_id))

    async def record_prescription_warning(self, tenant_id, prescription_id, level, expected_previous):
        self._touch("record_prescription_warning")
        prescription = self._get(self.prescriptions, "prescription", tenant_id, prescription_id)
        if prescription.last_warning_level != expected_previous:
            return False
        self.prescriptions[prescription_id] = replace(prescription, last_warning_level=level)
        return True

    # -- lab results / queue ---------------------------------------------------

    async def find_unnotified_lab_results(self, tenant_id):
        self._touch("find_unnotified_lab_results")
        return [
            self._with_patient(r) for r in self.lab_results.values()
            if _in_scope(r, tenant_id) and r.status in READY_LAB_STATUSES and r.notified_at is None
        ]

    async def get_lab_result(self, tenant_id, lab_result_id):
        self._touch("get_lab_result")
        return self._with_patient(self._get(self.lab_results, "lab result", tenant_id, lab_result_id))

    async def mark_lab_result_notified(self, tenant_id, lab_result_id, notified_at):
        self._touch("mark_lab_result_notified")
        result = self._get(self.lab_results, "lab result", tenant_id, lab_result_id)
        if result.notified_at is not None:
            return False
        self.lab_results[lab_result_id] = replace(result, notified_at=notified_at)
        return True

    async def list_active_queue(self, tenant_id):
        self._touch("list_active_queue")
        return sorted(
            (e for e in self.queue.values() if _in_scope(e, tenant_id) and e.status in ACTIVE_QUEUE_STATUSES),
            key=lambda e: e.queue_number,
        )

    async def set_queue_position(self, tenant_id, entry_id, queue_number, expected_number):
        self._touch("set_queue_position")
        entry = self._get(self.queue, "queue entry", tenant_id, entry_id)
        if entry.status != "waiting" or entry.queue_number != expected_number:
            return False
        self.queue[entry_id] = replace(entry, queue_number=queue_number)
        return True

    async def reassign_queue_doctor(self, tenant_id, entry_id, doctor_id, expected_doctor_id):
        self._touch("reassign_queue_doctor")
        entry = self._get(self.queue, "queue entry", tenant_id, entry_id)
        if entry.status != "waiting" or entry.doctor_id != expected_doctor_id:
            return False
        self.queue[entry_id] = replace(entry, doctor_id=doctor_id)
        return True

    # -- retention / reports --------------------------------------------------

    def _retention_rows(self, resource: str, tenant_id) -> List[dict]:
        if resource not in self.retention_rows:
            raise ValidationError(f"unknown retention resource {resource!r}", "resource")
        return [row for row in self.retention_rows[resource]
                if tenant_id is None or row.get("tenant_id") == tenant_id]

    async def archive_records(self, tenant_id, resource, created_before, archived_at):
        self._touch(f"archive_records:{resource}")
        count = 0
        for row in self._retention_rows(resource, tenant_id):
            if not row.get("archived") and row["created_at"] < created_before:
                row.update(archived=True, archived_at=archived_at)
                count += 1
        return count

    async def delete_archived_records(self, tenant_id, resource, archived_before):
        self._touch(f"delete_archived_records:{resource}")
        doomed = [
            row for row in self._retention_rows(resource, tenant_id)
            if row.get("archived") and row.get("archived_at") is not None and row["archived_at"] < archived_before
        ]
        self.retention_rows[resource] = [row for row in self.retention_rows[resource] if row not in doomed]
        return len(doomed)

    async def daily_summary(self, tenant_id, start, end):
        self._touch("daily_summary")

        def within(moment: Optional[datetime]) -> bool:
            return moment is not None and start <= moment < end

        by_status: Dict[str, int] = {}
        for a in self.appointments.values():
            if _in_scope(a, tenant_id) and within(_start(a)):
                by_status[a.status] = by_status.get(a.status, 0) + 1

        visits = [v for v in self.visits.values() if _in_scope(v, tenant_id) and within(v.visit_date)]
        invoices = [i for i in self.invoices.values() if _in_scope(i, tenant_id)]
        paid = [i for i in invoices if i.status == "paid" and within(i.paid_at)]
        return DailySummary(
            day=start.date(),
            new_patients=sum(1 for p in self.patients.values() if _in_scope(p, tenant_id) and within(p.created_at)),
            appointments_by_status=by_status,
            visits_total=len(visits),
            visits_closed=sum(1 for v in visits if v.status == "closed"),
            new_invoices=sum(1 for i in invoices if within(i.created_at)),
            paid_invoices=len(paid),
            revenue=round(sum(i.total for i in paid), 2),
            outstanding_balance=round(sum(
                i.outstanding_balance for i in invoices if i.status in OUTSTANDING_INVOICE_STATUSES
            ), 2),
        )

    async def claim_report(self, tenant_id, kind, day):
        self._touch("claim_report")
        key = (tenant_id, kind, day)
        if key in self.reports:
            return False
        self.reports.add(key)
        return True

    # -- notifications --------------------------------------------------------

    async def insert_notification(self, intent: NotificationIntent):
        self._touch("insert_notification")
        self.notifications.append(intent)
        return self._next_id("notif")


class RecordingSmsSender:
    """Stands in for TwilioSmsSender; fails when error is set."""

    def __init__(self, error: Optional[Exception] = None):
        self.sent: List[tuple] = []
        self.error = error

    async def send_sms(self, to: str, text: str) -> SendResult:
        if self.error is not None:
            raise self.error
        self.sent.append((to, text))
        return SendResult(success=True, message_id=f"SM{len(self.sent)}")


class RecordingEmailSender:
    """Stands in for SmtpEmailSender; fails when error is set."""

    def __init__(self, error: Optional[Exception] = None):
        self.sent: List[tuple] = []
        self.error = error

    async def send_email(self, to: str, subject: str, html: str, text: Optional[str] = None) -> SendResult:
        if self.error is not None:
            raise self.error
        self.sent.append((to, subject))
        return SendResult(success=True)
