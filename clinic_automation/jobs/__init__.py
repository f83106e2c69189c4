"""Concrete automations, one module per catalog entry."""
from typing import Dict

from clinic_automation.engine.job import AutomationContext, AutomationJob

from .appointment_reminders import AppointmentReminderJob
from .cancellation_policies import AutoCancellationPolicyJob
from .daily_reports import DailyReportJob
from .data_retention import DataRetentionJob
from .document_expiry import DocumentExpiryJob
from .expiry_monitoring import ExpiryMonitoringJob
from .followup_scheduling import FollowupSchedulingJob
from .inventory_reordering import InventoryReorderingJob
from .invoice_generation import InvoiceGenerationJob
from .lab_notifications import LabResultNotificationJob
from .membership_expiry import MembershipExpiryJob
from .no_show_handling import NoShowHandlingJob
from .payment_reminders import PaymentReminderJob
from .prescription_expiry import PrescriptionExpiryJob
from .queue_optimization import QueueOptimizationJob
from .smart_assignment import SmartAssignmentJob
from .welcome_messages import WelcomeMessageJob, WelcomeMessenger

JOB_CLASSES = (
    AppointmentReminderJob,
    NoShowHandlingJob,
    AutoCancellationPolicyJob,
    PaymentReminderJob,
    InvoiceGenerationJob,
    FollowupSchedulingJob,
    SmartAssignmentJob,
    ExpiryMonitoringJob,
    InventoryReorderingJob,
    DocumentExpiryJob,
    MembershipExpiryJob,
    PrescriptionExpiryJob,
    WelcomeMessageJob,
    LabResultNotificationJob,
    QueueOptimizationJob,
    DataRetentionJob,
    DailyReportJob,
)


def build_jobs(context: AutomationContext) -> Dict[str, AutomationJob]:
    """One instance of every automation, keyed by job id."""
    return {cls.job_id: cls(context) for cls in JOB_CLASSES}


__all__ = [
    "JOB_CLASSES",
    "build_jobs",
    "AppointmentReminderJob",
    "NoShowHandlingJob",
    "AutoCancellationPolicyJob",
    "PaymentReminderJob",
    "InvoiceGenerationJob",
    "FollowupSchedulingJob",
    "SmartAssignmentJob",
    "ExpiryMonitoringJob",
    "InventoryReorderingJob",
    "DocumentExpiryJob",
    "MembershipExpiryJob",
    "PrescriptionExpiryJob",
    "WelcomeMessageJob",
    "LabResultNotificationJob",
    "QueueOptimizationJob",
    "DataRetentionJob",
    "DailyReportJob",
    "WelcomeMessenger",
]
