from .batch import BatchProcessor
from .cache import TTLCache
from .circuit_breaker import BreakerState, CircuitBreaker
from .errors import (
    AuthExpiredError,
    CircuitOpenError,
    DependencyTimeoutError,
    ErrorKind,
    LeakDetectorError,
    NoTransactionsError,
    ParseFailureError,
    RateLimitedError,
    RecoveryAction,
    UnrecoverableError,
    classify_error,
    recovery_for,
)
from .retry import retry_async

__all__ = [
    "AuthExpiredError",
    "BatchProcessor",
    "BreakerState",
    "CircuitBreaker",
    "CircuitOpenError",
    "DependencyTimeoutError",
    "ErrorKind",
    "LeakDetectorError",
    "NoTransactionsError",
    "ParseFailureError",
    "RateLimitedError",
    "RecoveryAction",
    "TTLCache",
    "UnrecoverableError",
    "classify_error",
    "recovery_for",
    "retry_async",
]
