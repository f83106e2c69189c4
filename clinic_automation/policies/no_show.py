"""
No-show escalation policy.

The restriction is recomputed from the live count of no-show appointments in
a trailing window on every run; it is never incremented, so a corrected
no-show record lowers the level on the next run.
"""

from enum import Enum

NO_SHOW_LOOKBACK_DAYS = 365


class NoShowRestriction(str, Enum):
    """Booking restriction levels, least to most severe"""
    NONE = "none"
    DEPOSIT_REQUIRED = "deposit_required"
    WALK_IN_ONLY = "walk_in_only"
    BANNED = "banned"

    @property
    def severity(self) -> int:
        return _ORDER.index(self)

    @property
    def alerts_staff(self) -> bool:
        return self in (NoShowRestriction.WALK_IN_ONLY, NoShowRestriction.BANNED)


_ORDER = [
    NoShowRestriction.NONE,
    NoShowRestriction.DEPOSIT_REQUIRED,
    NoShowRestriction.WALK_IN_ONLY,
    NoShowRestriction.BANNED,
]


def no_show_restriction(no_show_count: int) -> NoShowRestriction:
    """0-1 none, 2 deposit_required, 3 walk_in_only, 4+ banned."""
    if no_show_count < 0:
        raise ValueError(f"no-show count cannot be negative: {no_show_count}")
    if no_show_count >= 4:
        return NoShowRestriction.BANNED
    if no_show_count == 3:
        return NoShowRestriction.WALK_IN_ONLY
    if no_show_count == 2:
        return NoShowRestriction.DEPOSIT_REQUIRED
    return NoShowRestriction.NONE


def parse_restriction(value) -> NoShowRestriction:
    """Stored restriction value; unknown or empty values read as none."""
    try:
        return NoShowRestriction(value or "none")
    except ValueError:
        return NoShowRestriction.NONE
