"""
Membership expiry stages.

A renewal reminder goes out exactly 30, 14, 7, 3 and 1 days before expiry
(days rounded up); memberships already past expiry are expired.
"""

from typing import Optional

REMINDER_STAGES = (30, 14, 7, 3, 1)


def membership_reminder_stage(days_until_expiry: int) -> Optional[int]:
    return days_until_expiry if days_until_expiry in REMINDER_STAGES else None


def is_past_due(days_until_expiry: int) -> bool:
    return days_until_expiry <= 0
