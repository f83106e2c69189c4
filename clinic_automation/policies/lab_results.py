"""
Lab result severity.

A result carrying any "high" or "low" flag is critical: the ordering doctor
gets an urgent alert instead of the routine "results available" note.
"""

from typing import Mapping, Optional

CRITICAL_FLAGS = frozenset({"high", "low"})


def has_abnormal_values(abnormal_flags: Optional[Mapping[str, str]]) -> bool:
    return bool(abnormal_flags)


def is_critical(abnormal_flags: Optional[Mapping[str, str]]) -> bool:
    return any((flag or "").lower() in CRITICAL_FLAGS for flag in (abnormal_flags or {}).values())
