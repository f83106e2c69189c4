"""
Automation Registry

Catalog of every scheduled automation: id, human description, cron schedule,
category, priority and the operator-controlled enabled flag. Descriptors are
defined at process start and never removed, only disabled. The enabled flags
are the only engine-owned mutable state and are guarded by a lock so that
operator toggles and scheduler ticks can race safely.
"""

import logging
import threading
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional

from apscheduler.triggers.cron import CronTrigger

from clinic_automation.exceptions import NotFoundError, ValidationError
from clinic_automation.models import JobCategory, JobPriority

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobDescriptor:
    """Static description of one automation"""
    id: str
    name: str
    description: str
    schedule: str  # 5-field crontab expression
    category: JobCategory
    priority: JobPriority
    settings_key: str
    enabled: bool = True


DEFAULT_AUTOMATIONS: List[JobDescriptor] = [
    JobDescriptor(
        id="appointment-reminders",
        name="Appointment Reminders",
        description="Sends SMS/email/in-app reminders 24 hours before appointments",
        schedule="0 9 * * *",
        category=JobCategory.APPOINTMENT,
        priority=JobPriority.HIGH,
        settings_key="auto_appointment_reminders",
    ),
    JobDescriptor(
        id="no-show-handling",
        name="No-Show Handling",
        description="Marks missed appointments as no-show and offers rescheduling",
        schedule="*/30 * * * *",
        category=JobCategory.APPOINTMENT,
        priority=JobPriority.MEDIUM,
        settings_key="auto_no_show_handling",
    ),
    JobDescriptor(
        id="auto-cancellation-policies",
        name="Auto-Cancellation Policies",
        description="Progressive booking restrictions for chronic no-shows",
        schedule="0 10 * * *",
        category=JobCategory.APPOINTMENT,
        priority=JobPriority.MEDIUM,
        settings_key="auto_cancellation_policies",
    ),
    JobDescriptor(
        id="payment-reminders",
        name="Payment Reminders",
        description="Sends reminders for invoices with an outstanding balance",
        schedule="0 10 * * *",
        category=JobCategory.FINANCIAL,
        priority=JobPriority.HIGH,
        settings_key="auto_payment_reminders",
    ),
    JobDescriptor(
        id="invoice-generation",
        name="Automatic Invoice Generation",
        description="Creates invoices for closed visits that have none",
        schedule="*/30 * * * *",
        category=JobCategory.FINANCIAL,
        priority=JobPriority.HIGH,
        settings_key="auto_invoice_generation",
    ),
    JobDescriptor(
        id="followup-scheduling",
        name="Follow-up Scheduling",
        description="Books follow-up appointments requested in closed visits",
        schedule="0 11 * * *",
        category=JobCategory.APPOINTMENT,
        priority=JobPriority.MEDIUM,
        settings_key="auto_followup_scheduling",
    ),
    JobDescriptor(
        id="smart-appointment-assignment",
        name="Smart Appointment Assignment",
        description="Auto-assigns doctors based on workload, specialization and continuity of care",
        schedule="0 * * * *",
        category=JobCategory.APPOINTMENT,
        priority=JobPriority.HIGH,
        settings_key="auto_smart_assignment",
    ),
    JobDescriptor(
        id="expiry-monitoring",
        name="Expiry Monitoring",
        description="Alerts staff 30, 7 and 1 days before inventory expires",
        schedule="0 7 * * *",
        category=JobCategory.INVENTORY,
        priority=JobPriority.HIGH,
        settings_key="auto_expiry_monitoring",
    ),
    JobDescriptor(
        id="inventory-reordering",
        name="Automatic Inventory Reordering",
        description="Creates reorder requests when stock hits its reorder point or expiry approaches",
        schedule="0 9 * * *",
        category=JobCategory.INVENTORY,
        priority=JobPriority.HIGH,
        settings_key="auto_inventory_reordering",
    ),
    JobDescriptor(
        id="document-expiration-tracking",
        name="Document Expiration Tracking",
        description="Tracks and alerts on expiring insurance cards, IDs and certificates",
        schedule="0 9 * * *",
        category=JobCategory.OPERATIONS,
        priority=JobPriority.MEDIUM,
        settings_key="auto_document_expiry_tracking",
    ),
    JobDescriptor(
        id="membership-expiry",
        name="Membership Expiry Reminders",
        description="Renewal reminders 30/14/7/3/1 days before expiry; expires past-due memberships",
        schedule="0 8 * * *",
        category=JobCategory.PATIENT,
        priority=JobPriority.MEDIUM,
        settings_key="auto_membership_expiry",
    ),
    JobDescriptor(
        id="prescription-expiry-warnings",
        name="Prescription Expiry Warnings",
        description="Alerts patients before prescriptions expire",
        schedule="0 8 * * *",
        category=JobCategory.CLINICAL,
        priority=JobPriority.HIGH,
        settings_key="auto_prescription_expiry_warnings",
    ),
    JobDescriptor(
        id="welcome-messages",
        name="Welcome Messages",
        description="Welcomes newly registered patients that have not been greeted yet",
        schedule="0 * * * *",
        category=JobCategory.PATIENT,
        priority=JobPriority.LOW,
        settings_key="auto_welcome_messages",
    ),
    JobDescriptor(
        id="lab-notifications",
        name="Lab Result Notifications",
        description="Tells patients their lab results are ready and alerts the ordering doctor on critical values",
        schedule="*/30 * * * *",
        category=JobCategory.CLINICAL,
        priority=JobPriority.HIGH,
        settings_key="auto_lab_notifications",
    ),
    JobDescriptor(
        id="queue-optimization",
        name="Queue Optimization",
        description="Moves urgent patients up the waiting queue and off busy doctors",
        schedule="*/15 * * * *",
        category=JobCategory.OPERATIONS,
        priority=JobPriority.MEDIUM,
        settings_key="auto_queue_optimization",
    ),
    JobDescriptor(
        id="data-retention",
        name="Data Retention",
        description="Archives records past their retention age and purges old audit logs",
        schedule="0 2 * * 0",
        category=JobCategory.OPERATIONS,
        priority=JobPriority.LOW,
        settings_key="auto_data_retention",
    ),
    JobDescriptor(
        id="daily-reports",
        name="Daily Reports",
        description="Emails the day's activity and revenue summary to admins and accountants",
        schedule="0 23 * * *",
        category=JobCategory.REPORTING,
        priority=JobPriority.MEDIUM,
        settings_key="auto_daily_reports",
    ),
]


class AutomationRegistry:
    """
    Thread-safe registry of automation descriptors.

    Descriptors are immutable; get()/list() return copies carrying the
    current enabled flag.
    """

    def __init__(self, descriptors: Optional[Iterable[JobDescriptor]] = None):
        self._lock = threading.Lock()
        self._descriptors: Dict[str, JobDescriptor] = {}
        self._enabled: Dict[str, bool] = {}

        for descriptor in (DEFAULT_AUTOMATIONS if descriptors is None else descriptors):
            self._register(descriptor)

        logger.info(f"Automation registry initialized with {len(self._descriptors)} automations")

    def _register(self, descriptor: JobDescriptor) -> None:
        if descriptor.id in self._descriptors:
            raise ValidationError(f"duplicate automation id '{descriptor.id}'", field="id")
        try:
            CronTrigger.from_crontab(descriptor.schedule)
        except ValueError as e:
            raise ValidationError(f"invalid schedule '{descriptor.schedule}': {e}", field="schedule")

        self._descriptors[descriptor.id] = descriptor
        self._enabled[descriptor.id] = descriptor.enabled

    def list(
        self,
        category: Optional[JobCategory] = None,
        priority: Optional[JobPriority] = None,
        enabled_only: bool = False,
    ) -> List[JobDescriptor]:
        """All descriptors in catalog order, optionally filtered"""
        with self._lock:
            snapshot = [
                replace(d, enabled=self._enabled[d.id]) for d in self._descriptors.values()
            ]

        return [
            d for d in snapshot
            if (category is None or d.category == category)
            and (priority is None or d.priority == priority)
            and (not enabled_only or d.enabled)
        ]

    def get(self, job_id: str) -> JobDescriptor:
        with self._lock:
            descriptor = self._descriptors.get(job_id)
            if descriptor is None:
                raise NotFoundError("automation", job_id)
            return replace(descriptor, enabled=self._enabled[job_id])

    def is_enabled(self, job_id: str) -> bool:
        with self._lock:
            if job_id not in self._enabled:
                raise NotFoundError("automation", job_id)
            return self._enabled[job_id]

    def set_enabled(self, job_id: str, enabled: bool) -> None:
        """Toggle an automation; takes effect on its next scheduled tick"""
        with self._lock:
            if job_id not in self._enabled:
                raise NotFoundError("automation", job_id)
            previous = self._enabled[job_id]
            self._enabled[job_id] = bool(enabled)

        if previous != bool(enabled):
            logger.info(f"Automation {job_id} {'enabled' if enabled else 'disabled'}")
