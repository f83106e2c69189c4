"""
Collaborator interfaces consumed by the automation engine.

The record store returns fully-hydrated value objects (patients embedded in
appointments, invoices, documents ...) so jobs never reach into foreign
tables. Every query is tenant-scoped by an optional tenant id; None means the
legacy untenanted scope.

Conditional writes (mark_*, assign_*, record_*) return False when the row no
longer matches the precondition, which is how jobs detect that a concurrent
or earlier run already applied the side effect. Creates raise
AlreadyProcessedError on a uniqueness conflict.

Any call may raise DependencyUnavailable when the backing service cannot be
reached; lookups of a single entity raise NotFoundError when it is gone.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import List, Optional, Sequence

from clinic_automation.models import (
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


class SettingsService(ABC):
    """Per-tenant automation switches."""

    @abstractmethod
    async def is_automation_enabled(self, tenant_id: Optional[str], automation_key: str) -> bool:
        ...


class RecordStore(ABC):
    """Persistent clinic records, as seen by the automation jobs."""

    # -- tenants / staff ------------------------------------------------------

    @abstractmethod
    async def list_tenant_ids(self) -> List[str]:
        """Every active tenant, in a stable order."""

    @abstractmethod
    async def list_active_staff(self, tenant_id: Optional[str]) -> List[StaffMember]:
        ...

    # -- patients -------------------------------------------------------------

    @abstractmethod
    async def get_patient(self, tenant_id: Optional[str], patient_id: str) -> Patient:
        ...

    @abstractmethod
    async def find_patients_with_no_shows(self, tenant_id: Optional[str], since: datetime) -> List[Patient]:
        """Patients with at least one no-show appointment since the given instant."""

    @abstractmethod
    async def find_restricted_patients(self, tenant_id: Optional[str]) -> List[Patient]:
        """Patients currently carrying a booking restriction other than none."""

    @abstractmethod
    async def count_no_shows(self, tenant_id: Optional[str], patient_id: str, since: datetime) -> int:
        ...

    @abstractmethod
    async def set_patient_restriction(self, tenant_id: Optional[str], patient_id: str,
                                      restriction: str, expected_current: str) -> bool:
        """Write the restriction only if the stored value still equals expected_current."""

    @abstractmethod
    async def find_patients_without_welcome(self, tenant_id: Optional[str], since: datetime) -> List[Patient]:
        ...

    @abstractmethod
    async def mark_welcome_sent(self, tenant_id: Optional[str], patient_id: str, sent_at: datetime) -> bool:
        """Record the welcome only if none is recorded yet."""

    # -- appointments ---------------------------------------------------------

    @abstractmethod
    async def get_appointment(self, tenant_id: Optional[str], appointment_id: str) -> Appointment:
        ...

    @abstractmethod
    async def find_appointments_starting_between(
        self, tenant_id: Optional[str], start: datetime, end: datetime,
        statuses: Sequence[str],
    ) -> List[Appointment]:
        ...

    @abstractmethod
    async def find_appointments_started_before(
        self, tenant_id: Optional[str], before: datetime, statuses: Sequence[str],
    ) -> List[Appointment]:
        ...

    @abstractmethod
    async def mark_reminder_sent(self, tenant_id: Optional[str], appointment_id: str, sent_at: datetime) -> bool:
        ...

    @abstractmethod
    async def mark_no_show(self, tenant_id: Optional[str], appointment_id: str,
                           expected_statuses: Sequence[str]) -> bool:
        ...

    @abstractmethod
    async def find_unassigned_appointments(self, tenant_id: Optional[str], after: datetime,
                                           limit: int) -> List[Appointment]:
        ...

    @abstractmethod
    async def list_doctor_appointments(self, tenant_id: Optional[str], doctor_id: str,
                                       start: datetime, end: datetime) -> List[Appointment]:
        """Active appointments for one doctor starting in [start, end)."""

    @abstractmethod
    async def assign_doctor(self, tenant_id: Optional[str], appointment_id: str, doctor_id: str) -> bool:
        """Assign only if the appointment is still unassigned."""

    @abstractmethod
    async def has_active_appointment_on(self, tenant_id: Optional[str], patient_id: str, day: date) -> bool:
        ...

    @abstractmethod
    async def last_appointment_code(self, tenant_id: Optional[str], prefix: str) -> Optional[str]:
        ...

    @abstractmethod
    async def create_appointment(self, draft: AppointmentDraft) -> Appointment:
        ...

    # -- doctors / visits -----------------------------------------------------

    @abstractmethod
    async def list_active_doctors(self, tenant_id: Optional[str]) -> List[Doctor]:
        ...

    @abstractmethod
    async def count_recent_closed_visits(self, tenant_id: Optional[str], doctor_id: str, patient_id: str,
                                         limit: int) -> int:
        """Closed visits between this doctor and patient, newest first, capped at limit."""

    @abstractmethod
    async def get_visit(self, tenant_id: Optional[str], visit_id: str) -> Visit:
        ...

    @abstractmethod
    async def find_closed_visits_without_invoice(self, tenant_id: Optional[str]) -> List[Visit]:
        ...

    @abstractmethod
    async def find_closed_visits_with_followup(self, tenant_id: Optional[str], from_date: date) -> List[Visit]:
        ...

    # -- invoices -------------------------------------------------------------

    @abstractmethod
    async def get_invoice(self, tenant_id: Optional[str], invoice_id: str) -> Invoice:
        ...

    @abstractmethod
    async def find_outstanding_invoices(self, tenant_id: Optional[str]) -> List[Invoice]:
        ...

    @abstractmethod
    async def record_payment_reminder(self, tenant_id: Optional[str], invoice_id: str,
                                      on: date, level: str) -> bool:
        """Record the reminder only if none was recorded on that day."""

    @abstractmethod
    async def invoice_exists_for_visit(self, tenant_id: Optional[str], visit_id: str) -> bool:
        ...

    @abstractmethod
    async def find_consultation_price(self, tenant_id: Optional[str]) -> Optional[ServicePrice]:
        ...

    @abstractmethod
    async def last_invoice_number(self, tenant_id: Optional[str], prefix: str) -> Optional[str]:
        ...

    @abstractmethod
    async def create_invoice(self, draft: InvoiceDraft) -> Invoice:
        ...

    # -- inventory ------------------------------------------------------------

    @abstractmethod
    async def find_inventory_expiring_between(self, tenant_id: Optional[str], start: date,
                                              end: date) -> List[InventoryItem]:
        ...

    @abstractmethod
    async def find_reorder_candidates(self, tenant_id: Optional[str], expiring_before: date) -> List[InventoryItem]:
        """Out-of-stock, low-stock, or in-stock items expiring before the given date."""

    @abstractmethod
    async def get_inventory_item(self, tenant_id: Optional[str], item_id: str) -> InventoryItem:
        ...

    @abstractmethod
    async def has_open_reorder_request(self, tenant_id: Optional[str], item_id: str) -> bool:
        ...

    @abstractmethod
    async def create_reorder_request(self, request: ReorderRequest) -> str:
        ...

    # -- documents / memberships / prescriptions ------------------------------

    @abstractmethod
    async def find_documents_expiring_between(self, tenant_id: Optional[str], start: date,
                                              end: date) -> List[Document]:
        ...

    @abstractmethod
    async def get_document(self, tenant_id: Optional[str], document_id: str) -> Document:
        ...

    @abstractmethod
    async def record_document_warning(self, tenant_id: Optional[str], document_id: str,
                                      level: str, expected_previous: Optional[str]) -> bool:
        ...

    @abstractmethod
    async def find_memberships_expiring_before(self, tenant_id: Optional[str], until: datetime) -> List[Membership]:
        """Active memberships expiring before the given instant (including past-due ones)."""

    @abstractmethod
    async def expire_membership(self, tenant_id: Optional[str], membership_id: str) -> bool:
        ...

    @abstractmethod
    async def find_prescriptions_expiring_between(self, tenant_id: Optional[str], start: datetime,
                                                  end: datetime) -> List[Prescription]:
        ...

    @abstractmethod
    async def get_prescription(self, tenant_id: Optional[str], prescription_id: str) -> Prescription:
        ...

    @abstractmethod
    async def record_prescription_warning(self, tenant_id: Optional[str], prescription_id: str,
                                          level: str, expected_previous: Optional[str]) -> bool:
        ...

    # -- lab results / queue ---------------------------------------------------

    @abstractmethod
    async def find_unnotified_lab_results(self, tenant_id: Optional[str]) -> List[LabResult]:
        """Completed or reviewed results the patient has not been told about."""

    @abstractmethod
    async def get_lab_result(self, tenant_id: Optional[str], lab_result_id: str) -> LabResult:
        ...

    @abstractmethod
    async def mark_lab_result_notified(self, tenant_id: Optional[str], lab_result_id: str,
                                       notified_at: datetime) -> bool:
        """Record the notification only if none is recorded yet."""

    @abstractmethod
    async def list_active_queue(self, tenant_id: Optional[str]) -> List[QueueEntry]:
        """Waiting and in-progress entries ordered by queue number."""

    @abstractmethod
    async def set_queue_position(self, tenant_id: Optional[str], entry_id: str,
                                 queue_number: int, expected_number: int) -> bool:
        ...

    @abstractmethod
    async def reassign_queue_doctor(self, tenant_id: Optional[str], entry_id: str,
                                    doctor_id: str, expected_doctor_id: Optional[str]) -> bool:
        """Move a waiting entry to another doctor if its doctor is unchanged."""

    # -- retention / reports --------------------------------------------------

    @abstractmethod
    async def archive_records(self, tenant_id: Optional[str], resource: str,
                              created_before: datetime, archived_at: datetime) -> int:
        """Flag unarchived rows created before the cutoff; returns how many changed."""

    @abstractmethod
    async def delete_archived_records(self, tenant_id: Optional[str], resource: str,
                                      archived_before: datetime) -> int:
        ...

    @abstractmethod
    async def daily_summary(self, tenant_id: Optional[str], start: datetime, end: datetime) -> DailySummary:
        """Activity counts and money totals for [start, end)."""

    @abstractmethod
    async def claim_report(self, tenant_id: Optional[str], kind: str, day: date) -> bool:
        """Reserve the (kind, day) report slot; False when it was already taken."""

    # -- notifications --------------------------------------------------------

    @abstractmethod
    async def insert_notification(self, intent: NotificationIntent) -> str:
        """Persist an in-app notification and return its id."""
