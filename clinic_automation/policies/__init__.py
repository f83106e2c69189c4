"""
Escalation policies.

Each policy is a pure function from current facts (a count or a number of
days) to a discrete level. Nothing here keeps state between runs.
"""

from .no_show import NO_SHOW_LOOKBACK_DAYS, NoShowRestriction, no_show_restriction, parse_restriction  # noqa: F401
from .payment_reminder import ReminderLevel, has_outstanding_balance, payment_reminder_level  # noqa: F401
from .document_expiry import DocumentWarningLevel, document_warning_level  # noqa: F401
from .inventory import (  # noqa: F401
    EXPIRY_CHECKPOINTS,
    ReorderPriority,
    ReorderReason,
    classify_reorder,
    expiry_checkpoint,
    order_quantity,
    reorder_priority,
)
from .membership import is_past_due, membership_reminder_stage  # noqa: F401
from .prescription import PrescriptionWarningLevel, prescription_warning_level  # noqa: F401
from .lab_results import has_abnormal_values, is_critical as is_critical_lab_result  # noqa: F401
from .queue import BUSY_WINDOW_MINUTES, average_wait_minutes, pick_doctor, plan_positions  # noqa: F401
from .retention import DEFAULT_RETENTION_POLICIES, RetentionPolicy  # noqa: F401
