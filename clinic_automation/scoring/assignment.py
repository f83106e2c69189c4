"""
Smart doctor assignment scoring.

Scores every active candidate for an unassigned appointment and picks the
strictly highest score; ties go to the candidate enumerated first. Scoring
is a pure function of the facts handed in, so the same facts always produce
the same ranking.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from clinic_automation.models import Appointment, Doctor, DoctorScore

logger = logging.getLogger(__name__)

# Tunable weights. These are empirical values, not business rules.
BASE_SCORE = 100.0
PREFERRED_PROVIDER_BONUS = 50.0
SPECIALIZATION_MATCH_BONUS = 30.0
SPECIALIZATION_MISS_PENALTY = 20.0
SAME_DAY_LOAD_WEIGHT = 0.5
OVERLAP_PENALTY = 10.0
HEAVY_DAY_THRESHOLD = 10
HEAVY_DAY_WEIGHT = 0.5
CONTINUITY_BONUS = 20.0
CONTINUITY_LOOKBACK_VISITS = 5


@dataclass(frozen=True)
class Slot:
    """Target appointment interval, half-open [start, end)"""
    start: datetime
    end: datetime


@dataclass(frozen=True)
class CandidateFacts:
    """Everything the scorer needs to know about one candidate"""
    doctor: Doctor
    same_day_appointments: Tuple[Appointment, ...] = ()
    # Closed visits with the requesting patient among the last CONTINUITY_LOOKBACK_VISITS of theirs
    prior_visits_with_patient: int = 0


@dataclass(frozen=True)
class AssignmentRequest:
    patient_id: Optional[str]
    slot: Optional[Slot]
    requested_specialization: Optional[str] = None
    preferred_doctor_id: Optional[str] = None
    tz_name: str = "UTC"


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """True intersection only; touching intervals do not overlap."""
    return a_start < b_end and b_start < a_end


def matches_specialization(doctor: Doctor, requested: str) -> bool:
    needle = requested.strip().lower()
    if not needle:
        return False
    fields = [doctor.specialization, *doctor.specializations]
    return any(needle in (value or "").lower() for value in fields)


def workload_penalty(appointments: Sequence[Appointment], slot: Optional[Slot], tz_name: str = "UTC") -> Tuple[float, int, int]:
    """Returns (penalty, same-day count, overlap count)."""
    same_day = len(appointments)
    overlaps = 0
    if slot is not None:
        for appointment in appointments:
            start = appointment.start(tz_name)
            end = appointment.end(tz_name)
            if start is not None and intervals_overlap(start, end, slot.start, slot.end):
                overlaps += 1

    penalty = SAME_DAY_LOAD_WEIGHT * same_day + OVERLAP_PENALTY * overlaps
    if same_day > HEAVY_DAY_THRESHOLD:
        penalty += HEAVY_DAY_WEIGHT * (same_day - HEAVY_DAY_THRESHOLD)
    return penalty, same_day, overlaps


def score_candidate(facts: CandidateFacts, request: AssignmentRequest) -> DoctorScore:
    doctor = facts.doctor
    score = BASE_SCORE
    reasons: List[str] = []

    if request.preferred_doctor_id and doctor.id == request.preferred_doctor_id:
        score += PREFERRED_PROVIDER_BONUS
        reasons.append("Preferred doctor")

    if request.requested_specialization:
        if matches_specialization(doctor, request.requested_specialization):
            score += SPECIALIZATION_MATCH_BONUS
            reasons.append(f"Specialization match: {request.requested_specialization}")
        else:
            score -= SPECIALIZATION_MISS_PENALTY
            reasons.append("Specialization mismatch")

    penalty, same_day, overlaps = workload_penalty(facts.same_day_appointments, request.slot, request.tz_name)
    score -= penalty
    if same_day:
        reasons.append(f"Workload: {same_day} appointments that day")
    if overlaps:
        reasons.append(f"Schedule conflicts: {overlaps}")

    if request.patient_id and facts.prior_visits_with_patient > 0:
        score += CONTINUITY_BONUS
        reasons.append("Continuity of care")

    return DoctorScore(candidate_id=doctor.id, score=max(0.0, score), reasons=tuple(reasons))


def rank(candidates: Iterable[CandidateFacts], request: AssignmentRequest) -> List[DoctorScore]:
    """Scores sorted best first; sorted() is stable so equal scores keep enumeration order."""
    scores = [score_candidate(facts, request) for facts in candidates]
    return sorted(scores, key=lambda s: s.score, reverse=True)


def select(candidates: Iterable[CandidateFacts], request: AssignmentRequest) -> Optional[DoctorScore]:
    ranking = rank(candidates, request)
    if not ranking:
        return None
    logger.debug(
        "Assignment ranking: "
        + ", ".join(f"{s.candidate_id}={s.score:.1f}" for s in ranking)
    )
    return ranking[0]
