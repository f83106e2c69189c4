"""Membership renewal reminders and expiry of past-due memberships."""
import logging
from datetime import timedelta
from typing import List

from clinic_automation.engine.job import AutomationJob, JobRun
from clinic_automation.engine.runner import StepResult
from clinic_automation.exceptions import AlreadyProcessedError, ValidationError
from clinic_automation.models import EntityRef, Membership, NotificationPriority
from clinic_automation.notifications import templates
from clinic_automation.policies.membership import REMINDER_STAGES, is_past_due, membership_reminder_stage
from clinic_automation.utils.clock import days_until_ceil

logger = logging.getLogger(__name__)


class MembershipExpiryJob(AutomationJob[Membership]):
    job_id = "membership-expiry"
    settings_key = "auto_membership_expiry"

    async def fetch_candidates(self, run: JobRun) -> List[Membership]:
        until = run.now + timedelta(days=max(REMINDER_STAGES))
        return await self.store.find_memberships_expiring_before(run.tenant_id, until)

    async def process(self, candidate: Membership, run: JobRun) -> StepResult:
        membership = candidate
        if membership.expiry_date is None:
            raise ValidationError("membership has no expiry date", field="expiry_date")
        if membership.patient is None:
            raise ValidationError("membership has no patient", field="patient")

        related = EntityRef("membership", membership.id)
        first_name = membership.patient.first_name or "there"
        days = days_until_ceil(membership.expiry_date, run.now)

        if is_past_due(days):
            if not await self.store.expire_membership(run.tenant_id, membership.id):
                raise AlreadyProcessedError("membership", membership.id, "no longer active")
            dispatch = await self.notify(self.patient_intent(
                run, membership.patient, templates.membership_expired(first_name, membership.tier),
                related=related, priority=NotificationPriority.HIGH,
                action_path=f"memberships/{membership.id}", category="membership",
            ))
            return StepResult.done("expired", delivered=dispatch.delivered)

        stage = membership_reminder_stage(days)
        if stage is None:
            return StepResult.skip(f"{days} days to expiry is not a reminder stage")

        dispatch = await self.notify(self.patient_intent(
            run, membership.patient,
            templates.membership_reminder(first_name, membership.tier, days, membership.expiry_date),
            related=related,
            priority=NotificationPriority.HIGH if stage <= 3 else NotificationPriority.NORMAL,
            action_path=f"memberships/{membership.id}/renew",
            category="membership",
            days_until_expiry=days,
        ))
        return StepResult.done(f"{stage}-day reminder", delivered=dispatch.delivered)
