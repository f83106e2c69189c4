"""Archive (and for audit logs, eventually purge) records past their retention age."""
import logging
from datetime import timedelta
from typing import List, Sequence

from clinic_automation.engine.job import AutomationJob, JobRun
from clinic_automation.engine.runner import StepResult
from clinic_automation.exceptions import ValidationError
from clinic_automation.policies.retention import (
    DEFAULT_RETENTION_POLICIES,
    DELETABLE_RESOURCES,
    RetentionPolicy,
)

logger = logging.getLogger(__name__)


class DataRetentionJob(AutomationJob[RetentionPolicy]):
    job_id = "data-retention"
    settings_key = "auto_data_retention"

    policies: Sequence[RetentionPolicy] = DEFAULT_RETENTION_POLICIES

    async def fetch_candidates(self, run: JobRun) -> List[RetentionPolicy]:
        return [policy for policy in self.policies if policy.has_work]

    async def process(self, candidate: RetentionPolicy, run: JobRun) -> StepResult:
        if candidate.delete_after_days and candidate.resource not in DELETABLE_RESOURCES:
            raise ValidationError(f"{candidate.resource} records are never deleted", field="delete_after_days")

        archived = deleted = 0
        if candidate.archive_after_days > 0:
            archived = await self.store.archive_records(
                run.tenant_id, candidate.resource,
                run.now - timedelta(days=candidate.archive_after_days), run.now,
            )
        if candidate.delete_after_days > 0:
            deleted = await self.store.delete_archived_records(
                run.tenant_id, candidate.resource, run.now - timedelta(days=candidate.delete_after_days),
            )

        if not archived and not deleted:
            return StepResult.skip("nothing past retention age")
        logger.info(
            f"[{self.job_id}] tenant {run.tenant_id}: {candidate.resource} archived={archived} deleted={deleted}"
        )
        return StepResult.done(f"archived {archived}, deleted {deleted}")
