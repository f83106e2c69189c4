"""
Document expiry warning levels.

Insurance cards and IDs are critical and escalate over a 90-day horizon;
medical certificates and everything else escalate over shorter windows.
Only documents expiring within the candidate window and not yet expired are
evaluated; expired documents are handled elsewhere.
"""

from enum import Enum
from typing import Optional

DOCUMENT_WINDOW_DAYS = 90
# Non-critical documents get no reminder earlier than this
NON_CRITICAL_REMINDER_DAYS = 30

CRITICAL_CATEGORIES = frozenset({"insurance", "id"})
MEDICAL_CERTIFICATE = "medical_certificate"


class DocumentWarningLevel(str, Enum):
    REMINDER = "reminder"
    WARNING = "warning"
    URGENT = "urgent"


def is_critical(category: Optional[str], document_type: Optional[str] = None) -> bool:
    return (category or "").lower() in CRITICAL_CATEGORIES or (document_type or "").lower() in CRITICAL_CATEGORIES


def document_warning_level(
    category: Optional[str],
    days_until_expiry: int,
    document_type: Optional[str] = None,
) -> Optional[DocumentWarningLevel]:
    """
    Warning level for a document, or None when it is outside the window.

    Critical (insurance/id): urgent <=30, warning <=60, reminder <=90.
    Medical certificate: urgent <=7, warning <=14, reminder <=30.
    Other: urgent <=14, warning <=30.
    """
    if days_until_expiry < 0 or days_until_expiry > DOCUMENT_WINDOW_DAYS:
        return None

    if is_critical(category, document_type):
        urgent_at, warning_at = 30, 60
    elif days_until_expiry > NON_CRITICAL_REMINDER_DAYS:
        return None
    elif (category or "").lower() == MEDICAL_CERTIFICATE or (document_type or "").lower() == MEDICAL_CERTIFICATE:
        urgent_at, warning_at = 7, 14
    else:
        urgent_at, warning_at = 14, 30

    if days_until_expiry <= urgent_at:
        return DocumentWarningLevel.URGENT
    if days_until_expiry <= warning_at:
        return DocumentWarningLevel.WARNING
    return DocumentWarningLevel.REMINDER
