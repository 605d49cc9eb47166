"""
Audit Models for the Household Ledger

Every significant action in the system produces an audit event.
This provides:
1. Traceability of who changed what in the shared ledger
2. Debugging information when a sync or AI call goes wrong
3. The single user-facing "activity" notice for each mutation

DESIGN DECISION: Audit events are emitted as structured logs; the latest
user-facing outcome is kept as an ActivityNotice for the UI.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Each step of the entry, import and loan flows has its own event type.
    """
    # Ledger mutations
    TRANSACTIONS_ADDED = "transactions_added"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    BORROWING_ADDED = "borrowing_added"
    BORROWING_UPDATED = "borrowing_updated"
    REPAYMENT_ADDED = "repayment_added"
    BUDGET_ADDED = "budget_added"
    BUDGET_DELETED = "budget_deleted"
    TEMPLATE_SAVED = "template_saved"
    TEMPLATE_DELETED = "template_deleted"
    SETTINGS_UPDATED = "settings_updated"

    # Reconciliation
    BATCH_RECONCILED = "batch_reconciled"
    DUPLICATE_FLAGGED = "duplicate_flagged"
    CATEGORY_COERCED = "category_coerced"

    # Validation
    VALIDATION_FAILED = "validation_failed"

    # Sync
    SNAPSHOT_RECEIVED = "snapshot_received"
    STORE_WRITE_FAILED = "store_write_failed"
    STORE_UNAVAILABLE = "store_unavailable"

    # AI extraction
    EXTRACTION_COMPLETED = "extraction_completed"
    EXTRACTOR_FAILED = "extractor_failed"

    # Session
    USER_LOGGED_IN = "user_logged_in"
    USER_LOGGED_OUT = "user_logged_out"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """How loudly an event is reported."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class NoticeKind(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class ActivityNotice(BaseModel):
    """
    The transient message shown to the user after an action.

    Exactly one notice is produced per mutating action.
    """

    message: str
    kind: NoticeKind = NoticeKind.SUCCESS
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def is_error(self) -> bool:
        return self.kind == NoticeKind.ERROR


class AuditEvent(BaseModel):
    """
    A single audit event.

    One ledger mutation, sync failure or extractor outcome.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Event id"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Emission time, always UTC"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Subject
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'borrowing', 'budget')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="Id of the record the event is about"
    )

    # Who did it
    actor: Optional[str] = Field(
        default=None,
        description="Ledger user who triggered the event"
    )

    # Groups the events of one user action
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one bulk import)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Short summary shown in logs"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Event-specific payload"
    )

    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Flatten into structlog keyword arguments."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor": self.actor,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Factory methods for the events the ledger emits.

    Usage:
        event = AuditEventBuilder.transactions_added(ids, actor)
        event = AuditEventBuilder.repayment_added(borrowing_id, amount, balance)
    """

    @staticmethod
    def transactions_added(
        transaction_ids: list[str],
        actor: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTIONS_ADDED,
            entity_type="transaction",
            entity_id=transaction_ids[0] if len(transaction_ids) == 1 else None,
            actor=actor,
            correlation_id=correlation_id,
            description=f"{len(transaction_ids)} transaction(s) added",
            details={"transaction_ids": transaction_ids},
        )

    @staticmethod
    def transaction_changed(
        event_type: AuditEventType,
        transaction_id: str,
        actor: Optional[str],
    ) -> AuditEvent:
        verb = "updated" if event_type == AuditEventType.TRANSACTION_UPDATED else "deleted"
        return AuditEvent(
            event_type=event_type,
            entity_type="transaction",
            entity_id=transaction_id,
            actor=actor,
            description=f"Transaction {verb}",
        )

    @staticmethod
    def repayment_added(
        borrowing_id: str,
        amount: str,
        balance: str,
        status: str,
        actor: Optional[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REPAYMENT_ADDED,
            entity_type="borrowing",
            entity_id=borrowing_id,
            actor=actor,
            description=f"Repayment of {amount} recorded, balance {balance}",
            details={
                "amount": amount,
                "balance": balance,
                "status": status,
            },
        )

    @staticmethod
    def collection_changed(
        event_type: AuditEventType,
        entity_type: str,
        entity_id: Optional[str],
        description: str,
        actor: Optional[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            actor=actor,
            description=description,
        )

    @staticmethod
    def batch_reconciled(
        candidate_count: int,
        duplicate_count: int,
        coerced_count: int,
        dropped_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        severity = AuditSeverity.WARNING if duplicate_count or coerced_count else AuditSeverity.INFO
        return AuditEvent(
            event_type=AuditEventType.BATCH_RECONCILED,
            severity=severity,
            entity_type="batch",
            correlation_id=correlation_id,
            description=(
                f"Reconciled {candidate_count} candidates: "
                f"{duplicate_count} possible duplicates, {coerced_count} categories corrected"
            ),
            details={
                "candidates": candidate_count,
                "duplicates": duplicate_count,
                "coerced": coerced_count,
                "dropped": dropped_count,
            },
        )

    @staticmethod
    def candidate_flagged(
        event_type: AuditEventType,
        description: str,
        details: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        """A duplicate flag or a category correction on one candidate."""
        return AuditEvent(
            event_type=event_type,
            severity=AuditSeverity.WARNING,
            entity_type="candidate",
            correlation_id=correlation_id,
            description=description,
            details=details,
        )

    @staticmethod
    def validation_failed(
        entity_type: str,
        issues: list[dict],
        actor: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            actor=actor,
            description=f"Validation failed with {len(issues)} issue(s)",
            details={"issues": issues},
        )

    @staticmethod
    def store_write_failed(
        fields: list[str],
        error_message: str,
        offline: bool,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.STORE_UNAVAILABLE if offline
                else AuditEventType.STORE_WRITE_FAILED
            ),
            severity=AuditSeverity.ERROR,
            entity_type="document",
            description=f"Write of {', '.join(fields)} failed",
            error_message=error_message,
            details={"fields": fields, "offline": offline},
        )

    @staticmethod
    def extraction_completed(
        source: str,
        candidate_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTRACTION_COMPLETED,
            entity_type="extraction",
            correlation_id=correlation_id,
            description=f"Extractor returned {candidate_count} candidate(s) from {source}",
            details={"source": source, "candidates": candidate_count},
        )

    @staticmethod
    def extractor_failed(
        source: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTRACTOR_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="extraction",
            correlation_id=correlation_id,
            description=f"Extractor failed for {source}",
            error_message=error_message,
            details={"source": source},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"Unexpected {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
