"""
Waiting-room queue optimization.

Each run renumbers waiting entries so urgent patients are seen first and
moves patients off doctors who are busy onto a free one, preferring a
matching specialization. Every change is a conditional write against the
entry as it was read, so a receptionist editing the queue mid-run wins.
"""
import logging
from datetime import timedelta
from typing import Dict, List, Set

from clinic_automation.engine.job import AutomationJob, JobRun
from clinic_automation.engine.runner import StepResult
from clinic_automation.exceptions import AlreadyProcessedError
from clinic_automation.models import Doctor, JobRunResult, QueueEntry
from clinic_automation.policies.queue import (
    BUSY_WINDOW_MINUTES,
    average_wait_minutes,
    pick_doctor,
    plan_positions,
)

logger = logging.getLogger(__name__)


class QueueOptimizationJob(AutomationJob[QueueEntry]):
    job_id = "queue-optimization"
    settings_key = "auto_queue_optimization"

    async def fetch_candidates(self, run: JobRun) -> List[QueueEntry]:
        entries = await self.store.list_active_queue(run.tenant_id)
        waiting = [e for e in entries if e.status == "waiting"]
        doctors = await self.store.list_active_doctors(run.tenant_id)

        run.state["entries"] = entries
        run.state["doctors"] = doctors
        run.state["positions"] = plan_positions(waiting)
        run.state["busy"] = await self._busy_doctors(run, entries, doctors)
        return waiting

    async def _busy_doctors(self, run: JobRun, entries: List[QueueEntry], doctors: List[Doctor]) -> Set[str]:
        busy = {e.doctor_id for e in entries if e.status == "in-progress" and e.doctor_id}
        window = timedelta(minutes=BUSY_WINDOW_MINUTES)
        doctor_ids = {d.id for d in doctors} | {e.doctor_id for e in entries if e.doctor_id}
        for doctor_id in sorted(doctor_ids - busy):
            if await self.store.list_doctor_appointments(run.tenant_id, doctor_id, run.now - window, run.now + window):
                busy.add(doctor_id)
        return busy

    async def process(self, candidate: QueueEntry, run: JobRun) -> StepResult:
        positions: Dict[str, int] = run.state["positions"]
        busy: Set[str] = run.state["busy"]
        changes = []

        target = positions.get(candidate.id, candidate.queue_number)
        if target != candidate.queue_number:
            if not await self.store.set_queue_position(
                run.tenant_id, candidate.id, target, candidate.queue_number
            ):
                raise AlreadyProcessedError("queue entry", candidate.id, "position changed concurrently")
            changes.append(f"moved from #{candidate.queue_number} to #{target}")

        if candidate.doctor_id and candidate.doctor_id in busy:
            doctor = pick_doctor(run.state["doctors"], busy, candidate.specialization)
            if doctor is not None:
                if not await self.store.reassign_queue_doctor(
                    run.tenant_id, candidate.id, doctor.id, candidate.doctor_id
                ):
                    raise AlreadyProcessedError("queue entry", candidate.id, "doctor changed concurrently")
                busy.add(doctor.id)
                changes.append(f"reassigned to {doctor.display_name}")

        if not changes:
            return StepResult.skip("already in place")
        return StepResult.done("; ".join(changes))

    async def finish(self, run: JobRun, result: JobRunResult) -> None:
        entries: List[QueueEntry] = run.state.get("entries", [])
        if not entries:
            return
        busy: Set[str] = run.state.get("busy", set())
        free = sum(1 for d in run.state.get("doctors", []) if d.id not in busy)
        logger.info(
            f"[{self.job_id}] tenant {run.tenant_id}: {len(entries)} patients in queue, "
            f"average wait {average_wait_minutes(entries, run.now)} min, "
            f"{free} doctors free, {result.succeeded} entries changed"
        )
