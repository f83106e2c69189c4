"""
Payment reminder escalation.

Reminders fire only on exact days since invoice creation: day 7 (first),
day 14 (second), day 30 (final) and every 7 days after that (day 37, 44, ...).
"""

from enum import Enum
from typing import Optional

from clinic_automation.models import OUTSTANDING_INVOICE_STATUSES

FIRST_REMINDER_DAY = 7
SECOND_REMINDER_DAY = 14
FINAL_REMINDER_DAY = 30
FINAL_REPEAT_INTERVAL_DAYS = 7


class ReminderLevel(str, Enum):
    FIRST = "first"
    SECOND = "second"
    FINAL = "final"


def payment_reminder_level(days_since_creation: int) -> Optional[ReminderLevel]:
    """Reminder due on this day, or None when today is not a reminder day."""
    if days_since_creation == FIRST_REMINDER_DAY:
        return ReminderLevel.FIRST
    if days_since_creation == SECOND_REMINDER_DAY:
        return ReminderLevel.SECOND
    if days_since_creation == FINAL_REMINDER_DAY:
        return ReminderLevel.FINAL
    days_past_final = days_since_creation - FINAL_REMINDER_DAY
    if days_past_final > 0 and days_past_final % FINAL_REPEAT_INTERVAL_DAYS == 0:
        return ReminderLevel.FINAL
    return None


def has_outstanding_balance(status: str, outstanding_balance: float) -> bool:
    return status in OUTSTANDING_INVOICE_STATUSES and (outstanding_balance or 0) > 0
