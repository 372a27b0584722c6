"""Domain contracts and shared types."""

from backend.app.domain.contracts import (  # noqa: F401
    AILeakItem,
    AuditContract,
    AuditSummaryContract,
    LeakContract,
    TransactionContract,
    TransactionPageContract,
)
