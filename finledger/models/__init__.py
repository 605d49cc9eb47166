"""
Data Models Package

This package contains all Pydantic models used by the Household Ledger.
All data flowing through the system must conform to these schemas.
"""

from finledger.models.ledger import (
    MAIN_CATEGORIES,
    AdditionalCost,
    AiChatCompletion,
    Borrowing,
    BorrowingDraft,
    BorrowingStatus,
    Budget,
    CandidateStatus,
    CandidateTransaction,
    CompletionType,
    Currency,
    EditLog,
    ImportFile,
    ImportFileKind,
    ImportRow,
    LedgerSettings,
    LedgerSnapshot,
    MainCategory,
    Repayment,
    Template,
    TemplateBody,
    Theme,
    Transaction,
    TransactionDraft,
    TransactionMedium,
    TransactionType,
    User,
    ValidationIssue,
    suggested_tags,
)
from finledger.models.audit import (
    ActivityNotice,
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
    NoticeKind,
)

__all__ = [
    # Ledger models
    "MAIN_CATEGORIES",
    "AdditionalCost",
    "AiChatCompletion",
    "Borrowing",
    "BorrowingDraft",
    "BorrowingStatus",
    "Budget",
    "CandidateStatus",
    "CandidateTransaction",
    "CompletionType",
    "Currency",
    "EditLog",
    "ImportFile",
    "ImportFileKind",
    "ImportRow",
    "LedgerSettings",
    "LedgerSnapshot",
    "MainCategory",
    "Repayment",
    "Template",
    "TemplateBody",
    "Theme",
    "Transaction",
    "TransactionDraft",
    "TransactionMedium",
    "TransactionType",
    "User",
    "ValidationIssue",
    "suggested_tags",
    # Audit models
    "ActivityNotice",
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    "NoticeKind",
]
