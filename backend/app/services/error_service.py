from __future__ import annotations

import asyncio
import logging
import traceback
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from backend.app.models import ErrorLog
from backend.app.resilience.errors import RecoveryAction, classify_error, recovery_for

logger = logging.getLogger(__name__)


def _json_safe(context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return {str(k): v if isinstance(v, (str, int, float, bool, type(None))) else str(v) for k, v in (context or {}).items()}


class ErrorHandler:
    """
    Logs a pipeline failure, stores it in the `errors` table and returns the recovery action.

    Storing the error is best effort: a database failure here is logged and never masks the
    error being handled.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def _persist(self, exc: BaseException, context: Dict[str, Any]) -> None:
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        with self.session_factory() as db:
            db.add(
                ErrorLog(
                    error_type=type(exc).__name__,
                    kind=classify_error(exc).value,
                    message=str(exc),
                    stack=stack,
                    context=context,
                )
            )
            db.commit()

    async def handle(self, exc: BaseException, context: Optional[Dict[str, Any]] = None) -> RecoveryAction:
        safe_context = _json_safe(context)
        logger.error(
            "Pipeline error (%s) %s: %s",
            classify_error(exc).value,
            safe_context,
            exc,
        )
        try:
            await asyncio.to_thread(self._persist, exc, safe_context)
        except SQLAlchemyError as log_exc:
            logger.error("Failed to store error log: %s", log_exc)
        return recovery_for(exc)
