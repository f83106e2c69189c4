"""
Eligibility and idempotency checks.

Every check is derived from the record as it is now, re-read just before the
side effect; the engine keeps no counters between runs. A failed check means
the candidate is skipped, never that it failed.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from clinic_automation.models import (
    ACTIVE_APPOINTMENT_STATUSES,
    BOOKABLE_APPOINTMENT_STATUSES,
    Appointment,
    READY_LAB_STATUSES,
    Invoice,
    LabResult,
    Patient,
    Visit,
)
from clinic_automation.policies.payment_reminder import has_outstanding_balance
from clinic_automation.store.base import RecordStore


@dataclass(frozen=True)
class Eligibility:
    eligible: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.eligible


ELIGIBLE = Eligibility(True)


def ineligible(reason: str) -> Eligibility:
    return Eligibility(False, reason)


def reminder_due(appointment: Appointment, window_start: datetime, window_end: datetime,
                 tz_name: str = "UTC") -> Eligibility:
    if appointment.status not in ACTIVE_APPOINTMENT_STATUSES:
        return ineligible(f"appointment is {appointment.status}")
    if appointment.reminder_sent_at is not None:
        return ineligible("reminder already sent")
    start = appointment.start(tz_name)
    if start is None or not (window_start <= start < window_end):
        return ineligible("appointment no longer in reminder window")
    return ELIGIBLE


def missed(appointment: Appointment, now: datetime, grace_minutes: int, tz_name: str = "UTC") -> Eligibility:
    if appointment.status not in ACTIVE_APPOINTMENT_STATUSES:
        return ineligible(f"appointment is {appointment.status}")
    start = appointment.start(tz_name)
    if start is None:
        return ineligible("appointment has no start time")
    if start + timedelta(minutes=grace_minutes) > now:
        return ineligible("grace period not over")
    return ELIGIBLE


def needs_doctor(appointment: Appointment, now: datetime, tz_name: str = "UTC") -> Eligibility:
    if appointment.doctor_id:
        return ineligible("doctor already assigned")
    if appointment.status not in BOOKABLE_APPOINTMENT_STATUSES:
        return ineligible(f"appointment is {appointment.status}")
    start = appointment.start(tz_name)
    if start is None or start < now:
        return ineligible("appointment is in the past")
    return ELIGIBLE


async def needs_invoice(store: RecordStore, visit: Visit) -> Eligibility:
    if visit.status != "closed":
        return ineligible(f"visit is {visit.status}")
    if await store.invoice_exists_for_visit(visit.tenant_id, visit.id):
        return ineligible("invoice already exists for visit")
    return ELIGIBLE


async def needs_followup(store: RecordStore, visit: Visit, today: date) -> Eligibility:
    if visit.status != "closed":
        return ineligible(f"visit is {visit.status}")
    if visit.follow_up_date is None or visit.follow_up_date < today:
        return ineligible("no upcoming follow-up date")
    if visit.patient is None:
        return ineligible("visit has no patient")
    if await store.has_active_appointment_on(visit.tenant_id, visit.patient.id, visit.follow_up_date):
        return ineligible("patient already has an appointment that day")
    return ELIGIBLE


def payment_reminder_due(invoice: Invoice, today: date) -> Eligibility:
    if not has_outstanding_balance(invoice.status, invoice.outstanding_balance):
        return ineligible(f"invoice is {invoice.status} with balance {invoice.outstanding_balance}")
    if invoice.last_reminder_on == today:
        return ineligible("reminder already sent today")
    return ELIGIBLE


async def needs_reorder(store: RecordStore, tenant_id: Optional[str], item_id: str) -> Eligibility:
    if await store.has_open_reorder_request(tenant_id, item_id):
        return ineligible("open reorder request exists")
    return ELIGIBLE


def level_changed(previous: Optional[str], current: str) -> Eligibility:
    if previous == current:
        return ineligible(f"already notified at level {current}")
    return ELIGIBLE


def welcome_due(patient: Patient) -> Eligibility:
    if patient.welcome_sent_at is not None:
        return ineligible("welcome already sent")
    return ELIGIBLE


def lab_result_ready(lab_result: LabResult) -> Eligibility:
    if lab_result.status not in READY_LAB_STATUSES:
        return ineligible(f"lab result is {lab_result.status}")
    if lab_result.notified_at is not None:
        return ineligible("patient already notified")
    return ELIGIBLE
