from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class BreakerSettings:
    failure_threshold: int = 5
    success_threshold: int = 2
    timeout: float = 30.0
    reset_timeout: float = 60.0


# Calibration per external dependency class. Bank data fails closed fast and waits longer
# before probing, the AI classifier is moderate, the payment processor tolerates more noise.
DEFAULT_BREAKERS: Dict[str, BreakerSettings] = {
    "plaid": BreakerSettings(failure_threshold=3, reset_timeout=120.0),
    "anthropic": BreakerSettings(failure_threshold=3, reset_timeout=60.0),
    "stripe": BreakerSettings(failure_threshold=5, reset_timeout=300.0),
}

DURABLE_BREAKER_DEFAULTS = BreakerSettings(failure_threshold=3, success_threshold=1, timeout=10.0, reset_timeout=10.0)


@dataclass(frozen=True)
class RetrySettings:
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    exponential_base: float = 2.0


@dataclass(frozen=True)
class Settings:
    breakers: Dict[str, BreakerSettings] = field(default_factory=lambda: dict(DEFAULT_BREAKERS))
    retry: RetrySettings = field(default_factory=RetrySettings)

    bank_fetch_cache_ttl: int = 3600
    ai_response_cache_ttl: int = 7200
    audit_summary_cache_ttl: int = 60

    transaction_batch_size: int = 1000
    transaction_batch_wait: float = 0.1

    lookback_days: int = 365
    plaid_page_size: int = 500

    anthropic_model: str = "claude-sonnet-4-20250514"
    anthropic_max_tokens: int = 4000

    slow_operation_seconds: float = 5.0

    # keep the AI breaker in the database instead of process memory
    durable_ai_breaker: bool = False
    # calibration for the durable AI breaker, overridable as BREAKER_ANTHROPIC_DURABLE_*
    durable_ai_breaker_settings: BreakerSettings = DURABLE_BREAKER_DEFAULTS

    def breaker(self, name: str) -> BreakerSettings:
        return self.breakers.get(name) or BreakerSettings()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw not in (None, "") else default


def _breaker_from_env(name: str, base: BreakerSettings) -> BreakerSettings:
    prefix = f"BREAKER_{name.upper()}_"
    return BreakerSettings(
        failure_threshold=_env_int(prefix + "FAILURE_THRESHOLD", base.failure_threshold),
        success_threshold=_env_int(prefix + "SUCCESS_THRESHOLD", base.success_threshold),
        timeout=_env_float(prefix + "TIMEOUT", base.timeout),
        reset_timeout=_env_float(prefix + "RESET_TIMEOUT", base.reset_timeout),
    )


def load_settings(base_breakers: Optional[Dict[str, BreakerSettings]] = None) -> Settings:
    """
    Build Settings from the process environment.

    Every value has a default; environment variables only override. Breaker calibration is
    read per service as BREAKER_<NAME>_FAILURE_THRESHOLD, _SUCCESS_THRESHOLD, _TIMEOUT and
    _RESET_TIMEOUT. The durable AI breaker reads BREAKER_ANTHROPIC_DURABLE_* instead, because its
    defaults differ from the in-memory anthropic breaker.
    """
    base_breakers = base_breakers or DEFAULT_BREAKERS
    breakers = {name: _breaker_from_env(name, base) for name, base in base_breakers.items()}
    retry = RetrySettings(
        max_attempts=_env_int("RETRY_MAX_ATTEMPTS", 3),
        initial_delay=_env_float("RETRY_INITIAL_DELAY", 1.0),
        max_delay=_env_float("RETRY_MAX_DELAY", 10.0),
        exponential_base=_env_float("RETRY_EXPONENTIAL_BASE", 2.0),
    )
    return Settings(
        breakers=breakers,
        retry=retry,
        bank_fetch_cache_ttl=_env_int("BANK_FETCH_CACHE_TTL", 3600),
        ai_response_cache_ttl=_env_int("AI_RESPONSE_CACHE_TTL", 7200),
        audit_summary_cache_ttl=_env_int("AUDIT_SUMMARY_CACHE_TTL", 60),
        transaction_batch_size=_env_int("TRANSACTION_BATCH_SIZE", 1000),
        transaction_batch_wait=_env_float("TRANSACTION_BATCH_WAIT", 0.1),
        lookback_days=_env_int("TRANSACTION_LOOKBACK_DAYS", 365),
        plaid_page_size=_env_int("PLAID_PAGE_SIZE", 500),
        anthropic_model=os.getenv("ANTHROPIC_MODEL") or "claude-sonnet-4-20250514",
        anthropic_max_tokens=_env_int("ANTHROPIC_MAX_TOKENS", 4000),
        slow_operation_seconds=_env_float("SLOW_OPERATION_SECONDS", 5.0),
        durable_ai_breaker=(os.getenv("AI_BREAKER_DURABLE") or "").strip().lower() == "true",
        durable_ai_breaker_settings=_breaker_from_env("anthropic_durable", DURABLE_BREAKER_DEFAULTS),
    )
