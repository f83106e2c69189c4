"""Scoring engines for automated decisions."""

from .assignment import (
    AssignmentRequest,
    CandidateFacts,
    Slot,
    intervals_overlap,
    rank,
    score_candidate,
    select,
)

__all__ = [
    "AssignmentRequest",
    "CandidateFacts",
    "Slot",
    "intervals_overlap",
    "rank",
    "score_candidate",
    "select",
]
