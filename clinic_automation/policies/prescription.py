"""
Prescription expiry warnings.

Controlled substances are watched for 14 days before expiry, regular
prescriptions for 30.
"""

from enum import Enum
from typing import Optional

CONTROLLED_WINDOW_DAYS = 14
REGULAR_WINDOW_DAYS = 30


class PrescriptionWarningLevel(str, Enum):
    REMINDER = "reminder"
    WARNING = "warning"
    URGENT = "urgent"


def warning_window_days(controlled_substance: bool) -> int:
    return CONTROLLED_WINDOW_DAYS if controlled_substance else REGULAR_WINDOW_DAYS


def prescription_warning_level(days_until_expiry: int, controlled_substance: bool) -> Optional[PrescriptionWarningLevel]:
    """controlled: urgent <=7, warning <=14; regular: urgent <=14, warning <=30."""
    if days_until_expiry < 0 or days_until_expiry > warning_window_days(controlled_substance):
        return None
    urgent_at, warning_at = (7, 14) if controlled_substance else (14, 30)
    if days_until_expiry <= urgent_at:
        return PrescriptionWarningLevel.URGENT
    if days_until_expiry <= warning_at:
        return PrescriptionWarningLevel.WARNING
    return PrescriptionWarningLevel.REMINDER
