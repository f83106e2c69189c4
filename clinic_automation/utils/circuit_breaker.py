"""
Circuit breakers for the engine's external collaborators.

Once a dependency keeps failing, every candidate in a batch would otherwise
wait out its own timeout against it. The breaker opens after
failure_threshold consecutive network failures, rejects calls for
recovery_timeout seconds, then lets one trial call through (HALF_OPEN): a
success closes it again, a network failure reopens it.

Only NETWORK_EXCEPTIONS are counted; a bug in a job step never opens a
circuit.

Usage:
    from clinic_automation.utils.circuit_breaker import supabase_breaker

    rows = await supabase_breaker.call(fetch_rows, query)

    @twilio_breaker
    async def send(...):
        ...
"""
import asyncio
import logging
import smtplib
import time
from enum import Enum
from functools import wraps
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar('T')

NETWORK_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    httpx.TimeoutException,
    httpx.NetworkError,
    ConnectionError,
    TimeoutError,
    smtplib.SMTPConnectError,
    smtplib.SMTPServerDisconnected,
)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpen(Exception):
    """A call was rejected without reaching the dependency."""

    def __init__(self, name: str, retry_in: float):
        self.name = name
        self.retry_in = retry_in
        super().__init__(f"Circuit {name} is open, retry in {retry_in:.0f}s")


class CircuitBreaker:
    """Breaker guarding one dependency; usable via call() or as a decorator."""

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        expected_exceptions: Tuple[Type[Exception], ...] = NETWORK_EXCEPTIONS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exceptions = expected_exceptions
        self._clock = clock
        self._lock = asyncio.Lock()
        self.reset()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failures

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at: Optional[float] = None
        self._last_error: Optional[str] = None
        self._trial_running = False

    def _move_to(self, state: CircuitState, why: str) -> None:
        previous, self._state = self._state, state
        log = logger.warning if state == CircuitState.OPEN else logger.info
        log(f"Circuit {self.name}: {previous.name} -> {state.name} ({why})")

    def _retry_in(self) -> float:
        if self._opened_at is None:
            return 0.0
        return max(0.0, self.recovery_timeout - (self._clock() - self._opened_at))

    async def _admit(self) -> None:
        async with self._lock:
            if self._state == CircuitState.OPEN:
                retry_in = self._retry_in()
                if retry_in > 0:
                    raise CircuitBreakerOpen(self.name, retry_in)
                self._move_to(CircuitState.HALF_OPEN, "recovery timeout elapsed")
                self._trial_running = False

            if self._state == CircuitState.HALF_OPEN:
                if self._trial_running:
                    raise CircuitBreakerOpen(self.name, self.recovery_timeout)
                self._trial_running = True

    async def _record(self, error: Optional[BaseException], counted: bool) -> None:
        async with self._lock:
            trial = self._state == CircuitState.HALF_OPEN
            self._trial_running = False

            if error is None:
                self._failures = 0
                if trial:
                    self._move_to(CircuitState.CLOSED, "trial call succeeded")
                return
            if not counted:
                # Not a dependency failure; the trial slot is simply released
                return

            self._failures += 1
            self._last_error = f"{type(error).__name__}: {error}"
            if trial or self._failures >= self.failure_threshold:
                self._opened_at = self._clock()
                reason = "trial call failed" if trial else f"{self._failures} consecutive failures"
                self._move_to(CircuitState.OPEN, f"{reason}, last error {self._last_error}")

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run an async callable through the breaker."""
        await self._admit()
        try:
            result = await func(*args, **kwargs)
        except self.expected_exceptions as e:
            await self._record(e, counted=True)
            raise
        except BaseException as e:
            await self._record(e, counted=False)
            raise
        await self._record(None, counted=False)
        return result

    def __call__(self, func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def guarded(*args: Any, **kwargs: Any) -> T:
            return await self.call(func, *args, **kwargs)

        return guarded

    def stats(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "failures": self._failures,
            "retry_in": round(self._retry_in(), 1) if self._state == CircuitState.OPEN else None,
            "last_error": self._last_error,
        }


twilio_breaker = CircuitBreaker("twilio", failure_threshold=5, recovery_timeout=60.0)
smtp_breaker = CircuitBreaker("smtp", failure_threshold=3, recovery_timeout=120.0)
supabase_breaker = CircuitBreaker("supabase", failure_threshold=5, recovery_timeout=30.0)


def get_circuit_stats() -> Dict[str, Dict[str, Any]]:
    """State of the shared breakers, for the engine status report."""
    return {breaker.name: breaker.stats() for breaker in (twilio_breaker, smtp_breaker, supabase_breaker)}
