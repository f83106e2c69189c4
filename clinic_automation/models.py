"""
Value objects shared across the automation engine.

Records (Patient, Appointment, Invoice, ...) are fully-hydrated snapshots
returned by the record store; the engine never reaches into storage rows
directly. Result objects (JobRunResult, DispatchResult, DoctorScore) are
created per run and never persisted by the engine.
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any, Dict, Optional, Tuple
from zoneinfo import ZoneInfo


class JobCategory(str, Enum):
    """Automation catalog categories"""
    APPOINTMENT = "appointment"
    FINANCIAL = "financial"
    INVENTORY = "inventory"
    CLINICAL = "clinical"
    PATIENT = "patient"
    REPORTING = "reporting"
    OPERATIONS = "operations"


class JobPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Outcome(str, Enum):
    """Per-candidate outcome of a batch run"""
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"


class Channel(str, Enum):
    SMS = "sms"
    EMAIL = "email"
    IN_APP = "in_app"


class NotificationPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class StaffRole(str, Enum):
    """Engine-level staff roles; tenant role names are mapped onto these once per run"""
    ADMIN = "admin"
    FRONT_DESK = "front_desk"
    ACCOUNTANT = "accountant"
    DOCTOR = "doctor"
    NURSE = "nurse"
    PHARMACIST = "pharmacist"
    OTHER = "other"


# Appointment statuses considered "still on the books"
ACTIVE_APPOINTMENT_STATUSES = ("scheduled", "confirmed")
BOOKABLE_APPOINTMENT_STATUSES = ("pending", "scheduled", "confirmed")
OUTSTANDING_INVOICE_STATUSES = ("unpaid", "partial")
READY_LAB_STATUSES = ("completed", "reviewed")
ACTIVE_QUEUE_STATUSES = ("waiting", "in-progress")


# =============================================================================
# Hydrated records
# =============================================================================

@dataclass(frozen=True)
class Patient:
    id: str
    tenant_id: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    user_id: Optional[str] = None
    appointment_restriction: str = "none"
    created_at: Optional[datetime] = None
    welcome_sent_at: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or "Patient"

    @property
    def recipient_id(self) -> str:
        """In-app notification recipient: linked user account, else the patient record"""
        return self.user_id or self.id


@dataclass(frozen=True)
class Doctor:
    id: str
    tenant_id: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    specialization: Optional[str] = None
    specializations: Tuple[str, ...] = ()
    active: bool = True

    @property
    def display_name(self) -> str:
        return f"Dr. {self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class StaffMember:
    id: str
    tenant_id: Optional[str] = None
    name: str = ""
    role_name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    active: bool = True


@dataclass(frozen=True)
class Appointment:
    id: str
    tenant_id: Optional[str] = None
    patient: Optional[Patient] = None
    doctor_id: Optional[str] = None
    status: str = "scheduled"
    appointment_date: Optional[date] = None
    appointment_time: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    duration_minutes: int = 30
    code: Optional[str] = None
    reason: Optional[str] = None
    specialization: Optional[str] = None
    preferred_doctor_id: Optional[str] = None
    reminder_sent_at: Optional[datetime] = None

    def start(self, tz_name: str = "UTC", default_time: str = "09:00") -> Optional[datetime]:
        """Start instant, from scheduled_at or appointment_date + appointment_time"""
        if self.scheduled_at is not None:
            if self.scheduled_at.tzinfo is None:
                return self.scheduled_at.replace(tzinfo=ZoneInfo(tz_name))
            return self.scheduled_at
        if self.appointment_date is None:
            return None
        hours, minutes = (self.appointment_time or default_time).split(":")[:2]
        return datetime.combine(
            self.appointment_date,
            time(int(hours), int(minutes)),
            tzinfo=ZoneInfo(tz_name),
        )

    def end(self, tz_name: str = "UTC", default_time: str = "09:00") -> Optional[datetime]:
        start = self.start(tz_name, default_time)
        if start is None:
            return None
        return start + timedelta(minutes=self.duration_minutes or 30)


@dataclass(frozen=True)
class Visit:
    id: str
    tenant_id: Optional[str] = None
    patient: Optional[Patient] = None
    provider_id: Optional[str] = None
    status: str = "open"
    visit_date: Optional[datetime] = None
    visit_type: str = "consultation"
    follow_up_date: Optional[date] = None
    code: Optional[str] = None


@dataclass(frozen=True)
class Invoice:
    id: str
    tenant_id: Optional[str] = None
    patient: Optional[Patient] = None
    visit_id: Optional[str] = None
    invoice_number: Optional[str] = None
    status: str = "unpaid"
    total: float = 0.0
    outstanding_balance: float = 0.0
    created_at: Optional[datetime] = None
    last_reminder_on: Optional[date] = None
    last_reminder_level: Optional[str] = None
    paid_at: Optional[datetime] = None


@dataclass(frozen=True)
class ServicePrice:
    id: str
    code: str
    name: str
    unit_price: float


@dataclass(frozen=True)
class InvoiceLine:
    code: str
    description: str
    category: str
    quantity: int
    unit_price: float
    service_id: Optional[str] = None

    @property
    def total(self) -> float:
        return round(self.quantity * self.unit_price, 2)


@dataclass(frozen=True)
class InvoiceDraft:
    """Invoice about to be created by the invoice-generation automation"""
    tenant_id: Optional[str]
    patient_id: str
    visit_id: str
    invoice_number: str
    items: Tuple[InvoiceLine, ...]
    subtotal: float
    tax: float
    total: float
    created_at: datetime


@dataclass(frozen=True)
class AppointmentDraft:
    """Appointment about to be created by the follow-up automation"""
    tenant_id: Optional[str]
    patient_id: str
    doctor_id: Optional[str]
    code: str
    appointment_date: date
    appointment_time: str
    reason: str
    source_visit_id: Optional[str] = None
    status: str = "scheduled"
    scheduled_at: Optional[datetime] = None


@dataclass(frozen=True)
class Document:
    id: str
    tenant_id: Optional[str] = None
    patient: Optional[Patient] = None
    title: Optional[str] = None
    category: str = "other"
    document_type: Optional[str] = None
    code: Optional[str] = None
    expiry_date: Optional[date] = None
    last_warning_level: Optional[str] = None


@dataclass(frozen=True)
class InventoryItem:
    id: str
    tenant_id: Optional[str] = None
    name: str = ""
    quantity: float = 0
    unit: str = "units"
    reorder_level: float = 10
    reorder_quantity: float = 50
    status: str = "in-stock"
    expiry_date: Optional[date] = None


@dataclass(frozen=True)
class ReorderRequest:
    tenant_id: Optional[str]
    item_id: str
    item_name: str
    unit: str
    quantity: float
    reason: str
    priority: str
    created_at: datetime


@dataclass(frozen=True)
class Membership:
    id: str
    tenant_id: Optional[str] = None
    patient: Optional[Patient] = None
    tier: str = "standard"
    number: Optional[str] = None
    status: str = "active"
    expiry_date: Optional[datetime] = None
    points: int = 0


@dataclass(frozen=True)
class Prescription:
    id: str
    tenant_id: Optional[str] = None
    patient: Optional[Patient] = None
    code: Optional[str] = None
    expires_at: Optional[datetime] = None
    controlled_substance: bool = False
    status: str = "active"
    last_warning_level: Optional[str] = None


@dataclass(frozen=True)
class LabResult:
    id: str
    tenant_id: Optional[str] = None
    patient: Optional[Patient] = None
    test_type: str = "lab test"
    request_code: Optional[str] = None
    status: str = "pending"
    ordered_by: Optional[str] = None
    # analyte -> flag ("high", "low", "abnormal", ...)
    abnormal_flags: Dict[str, str] = field(default_factory=dict)
    notified_at: Optional[datetime] = None


@dataclass(frozen=True)
class QueueEntry:
    id: str
    tenant_id: Optional[str] = None
    patient: Optional[Patient] = None
    doctor_id: Optional[str] = None
    status: str = "waiting"
    queue_number: int = 0
    priority: str = "normal"
    specialization: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class DailySummary:
    """Clinic activity for one local day"""
    day: date
    new_patients: int = 0
    appointments_by_status: Dict[str, int] = field(default_factory=dict)
    visits_total: int = 0
    visits_closed: int = 0
    new_invoices: int = 0
    paid_invoices: int = 0
    revenue: float = 0.0
    outstanding_balance: float = 0.0

    @property
    def appointments_total(self) -> int:
        return sum(self.appointments_by_status.values())


# =============================================================================
# Notifications
# =============================================================================

@dataclass(frozen=True)
class EntityRef:
    type: str
    id: str


@dataclass(frozen=True)
class NotificationIntent:
    """
    Channel-agnostic notification produced by a job step.

    phone/email are the recipient's addresses for the SMS and email channels;
    a missing address means that channel is not attempted.
    """
    recipient_id: str
    tenant_id: Optional[str]
    title: str
    message: str
    priority: NotificationPriority = NotificationPriority.NORMAL
    related_entity: Optional[EntityRef] = None
    action_url: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    email_html: Optional[str] = None
    category: str = "system"
    metadata: Dict[str, Any] = field(default_factory=dict)

    def for_recipient(self, recipient_id: str, phone: Optional[str] = None,
                      email: Optional[str] = None, **changes) -> "NotificationIntent":
        """Copy of this intent addressed to someone else"""
        return replace(self, recipient_id=recipient_id, phone=phone, email=email, **changes)


@dataclass(frozen=True)
class SendResult:
    """Result of one channel sender call"""
    success: bool
    error: Optional[str] = None
    message_id: Optional[str] = None


@dataclass(frozen=True)
class ChannelResult:
    channel: Channel
    sent: bool
    error: Optional[str] = None
    attempted: bool = True


@dataclass(frozen=True)
class DispatchResult:
    recipient_id: str
    channel_results: Tuple[ChannelResult, ...] = ()

    @property
    def delivered(self) -> bool:
        """At least one channel succeeded"""
        return any(r.sent for r in self.channel_results)

    @property
    def errors(self) -> Dict[str, str]:
        return {r.channel.value: r.error for r in self.channel_results if r.error}


# =============================================================================
# Scoring
# =============================================================================

@dataclass(frozen=True)
class DoctorScore:
    candidate_id: str
    score: float
    reasons: Tuple[str, ...] = ()


# =============================================================================
# Job results
# =============================================================================

@dataclass(frozen=True)
class EntityOutcome:
    entity_id: str
    outcome: Outcome
    error: Optional[str] = None
    detail: Optional[str] = None
    delivered: Optional[bool] = None


@dataclass(frozen=True)
class JobRunResult:
    """Aggregate result of one job run for one tenant (or the untenanted scope)"""
    job_id: str
    tenant_id: Optional[str] = None
    outcomes: Tuple[EntityOutcome, ...] = ()
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @classmethod
    def empty(cls, job_id: str, tenant_id: Optional[str] = None,
              at: Optional[datetime] = None) -> "JobRunResult":
        return cls(job_id=job_id, tenant_id=tenant_id, started_at=at, finished_at=at)

    def _count(self, outcome: Outcome) -> int:
        return sum(1 for o in self.outcomes if o.outcome == outcome)

    @property
    def processed(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return self._count(Outcome.SUCCEEDED)

    @property
    def skipped(self) -> int:
        return self._count(Outcome.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(Outcome.FAILED)

    @property
    def delivered(self) -> int:
        return sum(1 for o in self.outcomes if o.delivered)

    def counts(self) -> Dict[str, int]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "tenant_id": self.tenant_id,
            **self.counts(),
            "delivered": self.delivered,
            "outcomes": [
                {
                    "entity_id": o.entity_id,
                    "outcome": o.outcome.value,
                    "error": o.error,
                    "detail": o.detail,
                }
                for o in self.outcomes
            ],
        }
