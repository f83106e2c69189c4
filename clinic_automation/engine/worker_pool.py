"""
One-shot worker pool.

Side tasks that should not block the caller (a welcome message when a
patient registers) are submitted here instead of being fired and forgotten.
At most max_workers run at once and every failure is kept in a bounded log
so it can be inspected.
"""
import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Deque, List, Set

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskFailure:
    label: str
    error: str
    failed_at: datetime


class OneShotPool:
    """Bounded pool for fire-once coroutines with an observable error log."""

    def __init__(self, max_workers: int = 4, max_failures_kept: int = 100):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._semaphore = asyncio.Semaphore(max_workers)
        self._tasks: Set[asyncio.Task] = set()
        self._failures: Deque[TaskFailure] = deque(maxlen=max_failures_kept)
        self.stats = {
            'submitted': 0,
            'completed': 0,
            'failed': 0,
        }

    async def _run(self, label: str, factory: Callable[[], Awaitable]) -> None:
        async with self._semaphore:
            try:
                await factory()
                self.stats['completed'] += 1
            except Exception as e:
                self.stats['failed'] += 1
                self._failures.append(TaskFailure(label, f"{type(e).__name__}: {e}", datetime.now(timezone.utc)))
                logger.error(f"One-shot task {label} failed: {e}", exc_info=True)

    def submit(self, label: str, factory: Callable[[], Awaitable]) -> asyncio.Task:
        """Schedule factory() on the running loop; returns the wrapping task."""
        task = asyncio.create_task(self._run(label, factory), name=f"oneshot:{label}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self.stats['submitted'] += 1
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    @property
    def failures(self) -> List[TaskFailure]:
        return list(self._failures)

    async def drain(self) -> None:
        """Wait for everything submitted so far (and anything they submit)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
