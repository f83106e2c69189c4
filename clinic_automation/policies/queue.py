"""
Waiting-room queue ordering and doctor hand-off.

Urgent entries move ahead of everyone else still waiting; among equals the
existing queue order is kept. Waiting entries only trade the queue numbers
they already hold, so in-progress entries keep theirs and a queue that is
already in order produces no changes.

A doctor is busy while one of their queue entries is in progress or they
have an appointment starting within BUSY_WINDOW_MINUTES of now.
"""

from datetime import datetime
from typing import Collection, Dict, Iterable, List, Optional, Sequence

from clinic_automation.models import Doctor, QueueEntry
from clinic_automation.scoring.assignment import matches_specialization

BUSY_WINDOW_MINUTES = 30
URGENT = "urgent"


def is_urgent(entry: QueueEntry) -> bool:
    return (entry.priority or "").lower() == URGENT


def plan_positions(waiting: Iterable[QueueEntry]) -> Dict[str, int]:
    """Target queue number for every waiting entry."""
    entries = sorted(waiting, key=lambda e: e.queue_number)
    numbers = [e.queue_number for e in entries]
    ordered = sorted(entries, key=lambda e: not is_urgent(e))  # stable
    return {entry.id: number for entry, number in zip(ordered, numbers)}


def pick_doctor(doctors: Sequence[Doctor], unavailable: Collection[str],
                specialization: Optional[str] = None) -> Optional[Doctor]:
    """First free doctor, preferring a specialization match."""
    free = [d for d in doctors if d.id not in unavailable]
    if specialization:
        for doctor in free:
            if matches_specialization(doctor, specialization):
                return doctor
    return free[0] if free else None


def average_wait_minutes(entries: Iterable[QueueEntry], now: datetime) -> float:
    waits: List[float] = [
        (now - e.created_at).total_seconds() / 60
        for e in entries
        if e.status == "waiting" and e.created_at is not None
    ]
    return round(sum(waits) / len(waits), 2) if waits else 0.0
