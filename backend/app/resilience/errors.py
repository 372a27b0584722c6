from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    AUTH_EXPIRED = "auth_expired"
    RATE_LIMITED = "rate_limited"
    DEPENDENCY_TIMEOUT = "dependency_timeout"
    DEPENDENCY_UNAVAILABLE = "dependency_unavailable"
    PARSE_FAILURE = "parse_failure"
    NO_DATA = "no_data"
    UNRECOVERABLE = "unrecoverable"


class LeakDetectorError(Exception):
    """Base for every failure the pipeline knows how to tag."""

    kind: ErrorKind = ErrorKind.UNRECOVERABLE
    transient: bool = False

    def __init__(self, message: str, *, service: Optional[str] = None, transient: Optional[bool] = None):
        super().__init__(message)
        self.message = message
        self.service = service
        if transient is not None:
            self.transient = transient


class AuthExpiredError(LeakDetectorError):
    kind = ErrorKind.AUTH_EXPIRED


class RateLimitedError(LeakDetectorError):
    kind = ErrorKind.RATE_LIMITED
    transient = True

    def __init__(self, message: str, *, service: Optional[str] = None, retry_after: Optional[float] = None):
        super().__init__(message, service=service)
        self.retry_after = retry_after


class DependencyTimeoutError(LeakDetectorError, TimeoutError):
    kind = ErrorKind.DEPENDENCY_TIMEOUT
    transient = True


class CircuitOpenError(LeakDetectorError):
    kind = ErrorKind.DEPENDENCY_UNAVAILABLE

    def __init__(self, service: str):
        super().__init__(f"Circuit breaker {service} is OPEN", service=service)


class ParseFailureError(LeakDetectorError):
    kind = ErrorKind.PARSE_FAILURE


class NoTransactionsError(LeakDetectorError):
    kind = ErrorKind.NO_DATA

    def __init__(self, audit_id: str):
        super().__init__(f"No transactions found for audit {audit_id}")
        self.audit_id = audit_id


class UnrecoverableError(LeakDetectorError):
    kind = ErrorKind.UNRECOVERABLE


def classify_error(exc: BaseException) -> ErrorKind:
    if isinstance(exc, LeakDetectorError):
        return exc.kind
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return ErrorKind.DEPENDENCY_TIMEOUT
    return ErrorKind.UNRECOVERABLE


def is_transient(exc: BaseException) -> bool:
    """True when a blind retry has a reasonable chance of succeeding."""
    if isinstance(exc, LeakDetectorError):
        return exc.transient
    return isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError))


@dataclass(frozen=True)
class RecoveryAction:
    recoverable: bool
    action: str
    message: str
    retry_after: Optional[int] = None

    def as_dict(self) -> dict:
        payload = {"recoverable": self.recoverable, "action": self.action, "message": self.message}
        if self.retry_after is not None:
            payload["retry_after"] = self.retry_after
        return payload


AI_SERVICE = "anthropic"


def recovery_for(exc: BaseException) -> RecoveryAction:
    kind = classify_error(exc)
    if kind is ErrorKind.AUTH_EXPIRED:
        return RecoveryAction(True, "plaid_reauth", "Bank connection expired. Please reconnect.")
    if kind is ErrorKind.RATE_LIMITED:
        retry_after = getattr(exc, "retry_after", None)
        return RecoveryAction(
            True,
            "retry_later",
            "Too many requests. Please try again in 1 hour.",
            retry_after=int(retry_after) if retry_after else 3600,
        )
    if kind is ErrorKind.DEPENDENCY_TIMEOUT:
        return RecoveryAction(True, "retry_later", "An upstream service timed out. Retrying shortly.", retry_after=60)
    if kind is ErrorKind.DEPENDENCY_UNAVAILABLE:
        if getattr(exc, "service", None) == AI_SERVICE:
            return RecoveryAction(True, "fallback_analysis", "Using alternative analysis method...")
        return RecoveryAction(True, "retry_later", "An upstream service is unavailable. Please try again later.", retry_after=300)
    if kind is ErrorKind.NO_DATA:
        return RecoveryAction(True, "manual_upload", "No transactions were found. Upload a CSV export instead.")
    return RecoveryAction(False, "manual_intervention", "An unexpected error occurred. Our team has been notified.")
