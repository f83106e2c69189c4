"""Phone number normalisation for SMS delivery."""

import re
from typing import Optional

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw: Optional[str], default_country_code: str = "+1") -> Optional[str]:
    """
    Normalise a stored phone number to E.164.

    Numbers already carrying a leading '+' are kept (whitespace and
    punctuation removed); bare numbers get the default country code.
    Returns None when there are no digits at all.
    """
    if not raw:
        return None

    phone = raw.strip()
    digits = _NON_DIGITS.sub("", phone)
    if not digits:
        return None

    if phone.startswith("+"):
        return f"+{digits}"

    prefix = default_country_code if default_country_code.startswith("+") else f"+{default_country_code}"
    return f"{prefix}{digits}"
