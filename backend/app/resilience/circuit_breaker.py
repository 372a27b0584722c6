"""
Circuit breaker around calls to an unreliable external dependency.

State machine
-------------
  CLOSED    --(failure_count >= failure_threshold)-->  OPEN
  OPEN      --(now >= next_attempt_at)------------->  HALF_OPEN
  HALF_OPEN --(success_count >= success_threshold)->  CLOSED
  HALF_OPEN --(any failure)------------------------>  OPEN

Every call races the wrapped work against a fixed per-call timeout; running out of time is
recorded exactly like a raised failure. The transition rules live in plain functions over a
`BreakerRecord` so the in-memory breaker here and the durable one in `durable_breaker` share a
single state machine and differ only in where the record is kept.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from backend.app.config import BreakerSettings
from backend.app.resilience.errors import CircuitOpenError, DependencyTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BreakerState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class BreakerRecord:
    service_name: str
    state: BreakerState = BreakerState.CLOSED
    failure_count: int = 0
    success_count: int = 0
    last_failure_at: Optional[datetime] = None
    next_attempt_at: datetime = field(default_factory=utcnow)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "name": self.service_name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "last_failure_at": self.last_failure_at.isoformat() if self.last_failure_at else None,
            "next_attempt_at": self.next_attempt_at.isoformat() if self.state is BreakerState.OPEN else None,
        }


def admit(record: BreakerRecord, now: datetime) -> bool:
    """
    Decide whether a call may proceed.

    Returns True when the record moved from OPEN to HALF_OPEN. Raises CircuitOpenError while
    the reset window has not elapsed.
    """
    if record.state is not BreakerState.OPEN:
        return False
    if now < record.next_attempt_at:
        raise CircuitOpenError(record.service_name)
    record.state = BreakerState.HALF_OPEN
    return True


def record_success(record: BreakerRecord, settings: BreakerSettings) -> bool:
    """Apply a successful outcome. Returns True when the circuit closed."""
    record.failure_count = 0
    if record.state is not BreakerState.HALF_OPEN:
        return False
    record.success_count += 1
    if record.success_count >= settings.success_threshold:
        record.state = BreakerState.CLOSED
        record.failure_count = 0
        record.success_count = 0
        return True
    return False


def record_failure(record: BreakerRecord, settings: BreakerSettings, now: datetime) -> bool:
    """Apply a failed outcome. Returns True when the circuit opened."""
    record.failure_count += 1
    record.success_count = 0
    record.last_failure_at = now
    if record.state is BreakerState.HALF_OPEN or record.failure_count >= settings.failure_threshold:
        record.state = BreakerState.OPEN
        record.next_attempt_at = now + timedelta(seconds=settings.reset_timeout)
        return True
    return False


async def run_with_timeout(work: Callable[[], Awaitable[T]], timeout: float, service_name: str) -> T:
    try:
        return await asyncio.wait_for(work(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise DependencyTimeoutError(
            f"{service_name} call exceeded {timeout:.1f}s",
            service=service_name,
        ) from exc


def log_opened(record: BreakerRecord) -> None:
    logger.error(
        "Circuit breaker %s opened (failure_count=%d, next_attempt_at=%s)",
        record.service_name,
        record.failure_count,
        record.next_attempt_at.isoformat(),
    )


class CircuitBreaker:
    """In-memory breaker for one named service, owned by the pipeline context."""

    def __init__(
        self,
        name: str,
        settings: Optional[BreakerSettings] = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.name = name
        self.settings = settings or BreakerSettings()
        self._clock = clock
        self._record = BreakerRecord(service_name=name, next_attempt_at=clock())
        self._trial_in_flight = False

    @property
    def state(self) -> BreakerState:
        return self._record.state

    @property
    def failure_count(self) -> int:
        return self._record.failure_count

    @property
    def success_count(self) -> int:
        return self._record.success_count

    @property
    def next_attempt_at(self) -> datetime:
        return self._record.next_attempt_at

    def allows_request(self) -> bool:
        """Non-mutating check: would `execute` invoke its work right now?"""
        if self._record.state is BreakerState.OPEN:
            return self._clock() >= self._record.next_attempt_at
        if self._record.state is BreakerState.HALF_OPEN:
            return not self._trial_in_flight
        return True

    async def execute(self, work: Callable[[], Awaitable[T]]) -> T:
        admit(self._record, self._clock())
        is_trial = self._record.state is BreakerState.HALF_OPEN
        if is_trial:
            if self._trial_in_flight:
                raise CircuitOpenError(self.name)
            self._trial_in_flight = True

        try:
            result = await run_with_timeout(work, self.settings.timeout, self.name)
        except Exception:
            if record_failure(self._record, self.settings, self._clock()):
                log_opened(self._record)
            raise
        else:
            if record_success(self._record, self.settings):
                logger.info("Circuit breaker %s closed", self.name)
            return result
        finally:
            if is_trial:
                self._trial_in_flight = False

    def reset(self) -> None:
        self._record = BreakerRecord(service_name=self.name, next_attempt_at=self._clock())
        self._trial_in_flight = False

    def snapshot(self) -> Dict[str, Any]:
        return self._record.snapshot()
