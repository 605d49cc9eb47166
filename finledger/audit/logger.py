"""
Audit logging and the activity sink.

Two audiences read what happens to the shared ledger:
operators get structured JSON lines through structlog, and the person at
the keyboard gets one ActivityNotice per mutating action. Remote and
extractor failures reach the user through this class only.

Listener errors are logged, never propagated to the flow that notified.
"""

from collections import deque
from typing import Callable, Optional
from uuid import UUID, uuid4

import structlog

from finledger.models.audit import (
    ActivityNotice,
    AuditEvent,
    AuditEventBuilder,
    AuditSeverity,
    NoticeKind,
)


structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


NoticeListener = Callable[[ActivityNotice], None]

_LEVELS = {
    AuditSeverity.DEBUG: "debug",
    AuditSeverity.INFO: "info",
    AuditSeverity.WARNING: "warning",
    AuditSeverity.ERROR: "error",
    AuditSeverity.CRITICAL: "critical",
}


class AuditLogger:
    """
    Writes audit events to the structured log and keeps the recent
    success/failure notices for the UI.
    """

    def __init__(self, history_size: int = 50):
        self._logger = structlog.get_logger("finledger.audit")
        self._notices: deque[ActivityNotice] = deque(maxlen=history_size)
        self._listeners: list[NoticeListener] = []

    def log(self, event: AuditEvent) -> None:
        emit = getattr(self._logger, _LEVELS[event.severity])
        emit("audit_event", **event.to_log_dict())

    # ------------------------------------------------------------------
    # Activity notices
    # ------------------------------------------------------------------

    @property
    def latest_notice(self) -> Optional[ActivityNotice]:
        return self._notices[-1] if self._notices else None

    @property
    def notices(self) -> list[ActivityNotice]:
        """Recent notices, oldest first."""
        return list(self._notices)

    def add_listener(self, listener: NoticeListener) -> Callable[[], None]:
        """Register a callback for new notices. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def notify(self, message: str, kind: NoticeKind = NoticeKind.SUCCESS) -> ActivityNotice:
        """Record the terminal outcome of a user action."""
        notice = ActivityNotice(message=message, kind=kind)
        self._notices.append(notice)
        self._logger.info(
            "activity_notice",
            message=message,
            kind=kind.value,
        )
        for listener in list(self._listeners):
            try:
                listener(notice)
            except Exception as e:
                self._logger.error("activity_listener_failed", error=str(e))
        return notice

    def success(self, message: str) -> ActivityNotice:
        return self.notify(message, NoticeKind.SUCCESS)

    def error(self, message: str) -> ActivityNotice:
        return self.notify(message, NoticeKind.ERROR)

    def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """One id per user action, threaded through every event it causes."""
    return uuid4()
