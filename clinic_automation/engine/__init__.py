"""Batch runner, job base class, tenant fan-out, scheduling and side-task pool."""

from .fanout import FanOutResult, TenantFanOut
from .job import AutomationContext, AutomationJob, JobRun
from .ops_alerts import OpsAlerter
from .runner import BatchRunner, StepResult
from .scheduler import AutomationScheduler
from .worker_pool import OneShotPool, TaskFailure

__all__ = [
    "FanOutResult",
    "TenantFanOut",
    "AutomationContext",
    "AutomationJob",
    "JobRun",
    "OpsAlerter",
    "BatchRunner",
    "StepResult",
    "AutomationScheduler",
    "OneShotPool",
    "TaskFailure",
]
