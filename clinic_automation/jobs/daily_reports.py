"""
End-of-day activity report for clinic admins and accountants.

One report per tenant per local day; the day is claimed in the store before
anything is sent so a rerun (or a second scheduler) stays quiet.
"""
import logging
from dataclasses import replace
from datetime import date
from typing import List

from clinic_automation.engine.job import AutomationJob, JobRun
from clinic_automation.engine.runner import StepResult
from clinic_automation.exceptions import AlreadyProcessedError
from clinic_automation.models import EntityRef, NotificationPriority, StaffRole
from clinic_automation.notifications import templates
from clinic_automation.utils.clock import day_bounds

logger = logging.getLogger(__name__)

STAFF_ROLES = (StaffRole.ADMIN, StaffRole.ACCOUNTANT)
REPORT_KIND = "daily"


class DailyReportJob(AutomationJob[date]):
    job_id = "daily-reports"
    settings_key = "auto_daily_reports"

    async def fetch_candidates(self, run: JobRun) -> List[date]:
        return [run.today]

    def entity_id(self, candidate: date) -> str:
        return candidate.isoformat()

    async def process(self, candidate: date, run: JobRun) -> StepResult:
        start, end = day_bounds(candidate, run.tz_name)
        summary = await self.store.daily_summary(run.tenant_id, start, end)

        recipients = await run.staff.members(STAFF_ROLES)
        if not recipients:
            return StepResult.skip("no admin or accountant to send to")

        if not await self.store.claim_report(run.tenant_id, REPORT_KIND, candidate):
            raise AlreadyProcessedError("daily report", candidate.isoformat(), "already sent")

        clinic_name = self.settings.CLINIC_NAME
        intent = self.staff_intent(
            run,
            templates.daily_report(summary, clinic_name),
            related=EntityRef("report", f"{REPORT_KIND}-{candidate.isoformat()}"),
            priority=NotificationPriority.NORMAL,
            action_path="reports",
            category="report",
            report_date=candidate.isoformat(),
        )
        results = await self.notify_staff(
            run, STAFF_ROLES, replace(intent, email_html=templates.daily_report_html(summary, clinic_name))
        )
        delivered = sum(1 for r in results if r.delivered)
        return StepResult.done(
            f"{summary.appointments_total} appointments, revenue {summary.revenue:.2f}; "
            f"sent to {delivered}/{len(results)} staff",
            delivered=delivered > 0,
        )
