"""
Batch Runner

Runs one job step per candidate, sequentially, and folds every outcome into
a JobRunResult. A bad candidate never aborts the batch:

- NotFoundError / ValidationError / AlreadyProcessedError -> skipped
- DependencyUnavailable                                  -> re-raised (tenant run fails)
- any other exception                                    -> failed
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Iterable, List, Optional, TypeVar

from clinic_automation.exceptions import SKIPPABLE_ERRORS, DependencyUnavailable
from clinic_automation.models import EntityOutcome, JobRunResult, Outcome
from clinic_automation.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

C = TypeVar('C')


@dataclass(frozen=True)
class StepResult:
    """What a job step reports back for one candidate"""
    outcome: Outcome = Outcome.SUCCEEDED
    detail: Optional[str] = None
    delivered: Optional[bool] = None

    @classmethod
    def done(cls, detail: Optional[str] = None, delivered: Optional[bool] = None) -> "StepResult":
        return cls(Outcome.SUCCEEDED, detail, delivered)

    @classmethod
    def skip(cls, detail: str) -> "StepResult":
        return cls(Outcome.SKIPPED, detail)


class BatchRunner:
    """Sequential per-candidate pipeline with failure isolation."""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or SystemClock()

    async def run(
        self,
        job_id: str,
        tenant_id: Optional[str],
        candidates: Iterable[C],
        step: Callable[[C], Awaitable[StepResult]],
        entity_id: Callable[[C], str],
        started_at: Optional[datetime] = None,
    ) -> JobRunResult:
        started_at = started_at or self.clock.now()
        outcomes: List[EntityOutcome] = []

        for candidate in candidates:
            candidate_id = entity_id(candidate)
            try:
                result = await step(candidate)
            except DependencyUnavailable:
                raise
            except SKIPPABLE_ERRORS as e:
                logger.info(f"[{job_id}] skipped {candidate_id}: {e}")
                outcomes.append(EntityOutcome(candidate_id, Outcome.SKIPPED, error=str(e)))
                continue
            except Exception as e:
                logger.warning(f"[{job_id}] candidate {candidate_id} failed: {type(e).__name__}: {e}", exc_info=True)
                outcomes.append(EntityOutcome(candidate_id, Outcome.FAILED, error=f"{type(e).__name__}: {e}"))
                continue

            outcomes.append(EntityOutcome(
                candidate_id,
                result.outcome,
                detail=result.detail,
                delivered=result.delivered,
            ))

        return JobRunResult(
            job_id=job_id,
            tenant_id=tenant_id,
            outcomes=tuple(outcomes),
            started_at=started_at,
            finished_at=self.clock.now(),
        )
