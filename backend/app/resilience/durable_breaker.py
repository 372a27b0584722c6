from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from sqlalchemy.orm import Session, sessionmaker

from backend.app.config import DURABLE_BREAKER_DEFAULTS, BreakerSettings
from backend.app.models import CircuitBreakerState
from backend.app.resilience.errors import CircuitOpenError
from backend.app.resilience.circuit_breaker import (
    BreakerRecord,
    BreakerState,
    admit,
    log_opened,
    record_failure,
    record_success,
    run_with_timeout,
    utcnow,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _normalize_dt(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_record(row: CircuitBreakerState) -> BreakerRecord:
    return BreakerRecord(
        service_name=row.service_name,
        state=BreakerState(row.state),
        failure_count=row.failure_count,
        success_count=row.success_count,
        last_failure_at=_normalize_dt(row.last_failure_at),
        next_attempt_at=_normalize_dt(row.next_attempt_at) or utcnow(),
    )


class DurableCircuitBreaker:
    """
    Breaker whose state lives in the `circuit_breaker_states` table.

    The record is read before every call and written after every outcome, so the breaker
    survives restarts and is shared across process instances. Reads and writes are plain
    last-write-wins updates; there is no version check between concurrent updaters.
    Within one instance only a single HALF_OPEN trial runs at a time.
    """

    def __init__(
        self,
        service_name: str,
        session_factory: sessionmaker,
        settings: Optional[BreakerSettings] = None,
        *,
        action: Optional[Callable[..., Awaitable[Any]]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.service_name = service_name
        self.action = action
        self.session_factory = session_factory
        self.settings = settings or DURABLE_BREAKER_DEFAULTS
        self._clock = clock
        self._trial_in_flight = False

    # -------------------------
    # Storage
    # -------------------------

    def _load_or_init(self, db: Session) -> BreakerRecord:
        row = db.get(CircuitBreakerState, self.service_name)
        if row is None:
            row = CircuitBreakerState(
                service_name=self.service_name,
                state=BreakerState.CLOSED.value,
                failure_count=0,
                success_count=0,
                next_attempt_at=self._clock(),
            )
            db.add(row)
            db.commit()
        return _to_record(row)

    def _save(self, db: Session, record: BreakerRecord) -> None:
        row = db.get(CircuitBreakerState, self.service_name)
        if row is None:
            row = CircuitBreakerState(service_name=self.service_name)
            db.add(row)
        row.state = record.state.value
        row.failure_count = record.failure_count
        row.success_count = record.success_count
        row.last_failure_at = record.last_failure_at
        row.next_attempt_at = record.next_attempt_at
        row.updated_at = self._clock()
        db.commit()

    def get_state(self) -> BreakerRecord:
        with self.session_factory() as db:
            return self._load_or_init(db)

    def update_state(self, record: BreakerRecord) -> None:
        with self.session_factory() as db:
            self._save(db, record)

    # -------------------------
    # Calls
    # -------------------------

    async def fire(self, *args: Any, **kwargs: Any) -> Any:
        """Invoke the bound action with the given arguments under breaker protection."""
        if self.action is None:
            raise TypeError(f"Circuit breaker {self.service_name} has no bound action")
        return await self.execute(lambda: self.action(*args, **kwargs))

    async def execute(self, work: Callable[[], Awaitable[T]]) -> T:
        record = await asyncio.to_thread(self.get_state)

        moved = admit(record, self._clock())
        is_trial = record.state is BreakerState.HALF_OPEN
        if is_trial:
            if self._trial_in_flight:
                raise CircuitOpenError(self.service_name)
            self._trial_in_flight = True

        try:
            if moved:
                await asyncio.to_thread(self.update_state, record)

            try:
                result = await run_with_timeout(work, self.settings.timeout, self.service_name)
            except Exception:
                opened = record_failure(record, self.settings, self._clock())
                await asyncio.to_thread(self.update_state, record)
                if opened:
                    log_opened(record)
                raise

            if record_success(record, self.settings):
                logger.info("Circuit breaker %s closed", self.service_name)
            await asyncio.to_thread(self.update_state, record)
            return result
        finally:
            if is_trial:
                self._trial_in_flight = False

    def allows_request(self) -> bool:
        if self._trial_in_flight:
            return False
        record = self.get_state()
        if record.state is BreakerState.OPEN:
            return self._clock() >= record.next_attempt_at
        return True

    def snapshot(self) -> Dict[str, Any]:
        return self.get_state().snapshot()
