"""Assigns doctors to unassigned upcoming appointments using the assignment scorer."""
import logging
from typing import List, Optional

from clinic_automation.eligibility import needs_doctor
from clinic_automation.engine.job import AutomationJob, JobRun
from clinic_automation.engine.runner import StepResult
from clinic_automation.exceptions import AlreadyProcessedError, ValidationError
from clinic_automation.models import Appointment, Doctor, EntityRef
from clinic_automation.notifications import templates
from clinic_automation.scoring.assignment import (
    CONTINUITY_LOOKBACK_VISITS,
    AssignmentRequest,
    CandidateFacts,
    Slot,
    select,
)
from clinic_automation.utils.clock import day_bounds, local_date

logger = logging.getLogger(__name__)


class SmartAssignmentJob(AutomationJob[Appointment]):
    job_id = "smart-appointment-assignment"
    settings_key = "auto_smart_assignment"

    async def fetch_candidates(self, run: JobRun) -> List[Appointment]:
        return await self.store.find_unassigned_appointments(
            run.tenant_id, run.now, self.settings.SMART_ASSIGNMENT_BATCH_LIMIT
        )

    async def _doctors(self, run: JobRun) -> List[Doctor]:
        if "doctors" not in run.state:
            run.state["doctors"] = await self.store.list_active_doctors(run.tenant_id)
        return run.state["doctors"]

    async def _facts(self, run: JobRun, doctor: Doctor, slot: Slot, patient_id: Optional[str]) -> CandidateFacts:
        day_start, day_end = day_bounds(local_date(slot.start, run.tz_name), run.tz_name)
        same_day = await self.store.list_doctor_appointments(run.tenant_id, doctor.id, day_start, day_end)
        shared = 0
        if patient_id:
            shared = await self.store.count_recent_closed_visits(
                run.tenant_id, doctor.id, patient_id, CONTINUITY_LOOKBACK_VISITS
            )
        return CandidateFacts(
            doctor=doctor,
            same_day_appointments=tuple(same_day),
            prior_visits_with_patient=shared,
        )

    async def process(self, candidate: Appointment, run: JobRun) -> StepResult:
        appointment = await self.store.get_appointment(run.tenant_id, candidate.id)
        check = needs_doctor(appointment, run.now, run.tz_name)
        if not check:
            return StepResult.skip(check.reason)

        start = appointment.start(run.tz_name)
        if start is None:
            raise ValidationError("appointment has no start time", field="scheduled_at")
        slot = Slot(start=start, end=appointment.end(run.tz_name))

        doctors = await self._doctors(run)
        if not doctors:
            return StepResult.skip("no active doctors")

        patient_id = appointment.patient.id if appointment.patient else None
        facts = [await self._facts(run, doctor, slot, patient_id) for doctor in doctors]
        best = select(facts, AssignmentRequest(
            patient_id=patient_id,
            slot=slot,
            requested_specialization=appointment.specialization,
            preferred_doctor_id=appointment.preferred_doctor_id,
            tz_name=run.tz_name,
        ))

        if not await self.store.assign_doctor(run.tenant_id, appointment.id, best.candidate_id):
            raise AlreadyProcessedError("appointment", appointment.id, "doctor assigned concurrently")

        logger.info(
            f"[{self.job_id}] appointment {appointment.id} -> doctor {best.candidate_id} "
            f"(score {best.score:.1f}: {'; '.join(best.reasons)})"
        )

        delivered = None
        if appointment.patient is not None:
            doctor = next(d for d in doctors if d.id == best.candidate_id)
            dispatch = await self.notify(self.patient_intent(
                run, appointment.patient,
                templates.doctor_assigned(appointment.patient.first_name or "there", doctor.display_name, start),
                related=EntityRef("appointment", appointment.id),
                action_path=f"appointments/{appointment.id}",
                category="appointment",
            ))
            delivered = dispatch.delivered

        return StepResult.done(f"assigned {best.candidate_id} (score {best.score:.1f})", delivered=delivered)
