"""
Candidate Reconciliation

Compares AI-suggested transactions against the existing ledger before the
user sees them.

DESIGN DECISION: Reconciliation only ANNOTATES. It never writes to the
ledger and never mutates its inputs; it returns copies with a status:
- NEW: looks like a fresh entry, pre-selected for import
- DUPLICATE: probably already recorded, pre-deselected
- REVIEW: missing amount, type or date; the user must complete it

Duplicates are advisory only. The user can still import them.

Duplicate rule (all must hold against one existing transaction):
1. Amounts are equal
2. Both fall on the same calendar day in the ledger timezone
3. Payee matches OR sub-category matches
"""

from datetime import datetime, timezone, tzinfo
from typing import Iterable, Optional
from uuid import UUID

from finledger.audit import AuditLogger
from finledger.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from finledger.models.ledger import (
    CandidateStatus,
    CandidateTransaction,
    ImportRow,
    MainCategory,
    Transaction,
)


FALLBACK_CATEGORY = MainCategory.PERSONAL
_CATEGORY_VALUES = {c.value for c in MainCategory}


class TransactionReconciler:
    """
    Flags likely duplicates and repairs invalid categories.

    Args:
        tz: Timezone used to decide whether two instants share a calendar day.
            Defaults to UTC.
        audit_logger: Optional sink for a batch summary event.
    """

    def __init__(
        self,
        tz: Optional[tzinfo] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._tz = tz or timezone.utc
        self._audit = audit_logger

    def same_day(self, first: datetime, second: datetime) -> bool:
        return first.astimezone(self._tz).date() == second.astimezone(self._tz).date()

    def is_duplicate(
        self,
        candidate: CandidateTransaction,
        existing: Iterable[Transaction],
    ) -> bool:
        """
        True if any existing transaction looks like the same real-world event.

        A candidate without an amount or a date is never a duplicate.
        """
        if candidate.amount is None or candidate.date is None:
            return False

        for transaction in existing:
            if transaction.amount != candidate.amount:
                continue
            if not self.same_day(transaction.date, candidate.date):
                continue
            payee_match = candidate.payee is not None and candidate.payee == transaction.payee
            tag_match = (
                candidate.sub_category is not None
                and candidate.sub_category == transaction.sub_category
            )
            if payee_match or tag_match:
                return True
        return False

    @staticmethod
    def coerce_category(
        candidate: CandidateTransaction,
    ) -> tuple[CandidateTransaction, bool]:
        """
        Replace an unknown main category with Personal.

        The rejected suggestion is appended to the notes so nothing is lost.
        A missing category is left missing.

        Returns: (candidate_copy, was_coerced)
        """
        raw = candidate.main_category
        if raw is None or raw in _CATEGORY_VALUES:
            return candidate.model_copy(), False

        notes = f"{candidate.notes or ''} | Original category: {raw}".strip()
        return candidate.model_copy(update={
            "main_category": FALLBACK_CATEGORY.value,
            "notes": notes,
        }), True

    def reconcile(
        self,
        candidates: Iterable[CandidateTransaction],
        existing: Iterable[Transaction],
        require_complete: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> list[CandidateTransaction]:
        """
        Annotate a batch of candidates.

        Args:
            candidates: Suggestions from the extractor
            existing: Current ledger transactions
            require_complete: Drop candidates missing amount, type or date
                (bulk import). Otherwise they are kept with status REVIEW.
            correlation_id: Ties the summary event to one user action

        Returns:
            Annotated copies, in input order
        """
        existing = list(existing)
        annotated: list[CandidateTransaction] = []
        duplicates = coerced = dropped = 0
        total = 0

        for candidate in candidates:
            total += 1
            if require_complete and not candidate.has_required_fields:
                dropped += 1
                continue

            fixed, was_coerced = self.coerce_category(candidate)
            if was_coerced:
                coerced += 1
                self._log(AuditEventBuilder.candidate_flagged(
                    AuditEventType.CATEGORY_COERCED,
                    f"Unknown category '{candidate.main_category}' filed under {FALLBACK_CATEGORY.value}",
                    {"original_category": candidate.main_category},
                    correlation_id,
                ))

            if not fixed.has_required_fields:
                status = CandidateStatus.REVIEW
            elif self.is_duplicate(fixed, existing):
                status = CandidateStatus.DUPLICATE
                duplicates += 1
                self._log(AuditEventBuilder.candidate_flagged(
                    AuditEventType.DUPLICATE_FLAGGED,
                    "Candidate matches an existing transaction",
                    {
                        "amount": str(fixed.amount),
                        "date": fixed.date.isoformat(),
                        "payee": fixed.payee,
                        "sub_category": fixed.sub_category,
                    },
                    correlation_id,
                ))
            else:
                status = CandidateStatus.NEW

            annotated.append(fixed.model_copy(update={"status": status}))

        if total:
            self._log(AuditEventBuilder.batch_reconciled(
                candidate_count=total,
                duplicate_count=duplicates,
                coerced_count=coerced,
                dropped_count=dropped,
                correlation_id=correlation_id,
            ))

        return annotated

    def _log(self, event: AuditEvent) -> None:
        if self._audit is not None:
            self._audit.log(event)

    @staticmethod
    def build_import_rows(
        reconciled: Iterable[CandidateTransaction],
    ) -> list[ImportRow]:
        """Review table rows: duplicates start unchecked, everything else checked."""
        return [
            ImportRow(
                is_checked=candidate.status != CandidateStatus.DUPLICATE,
                candidate=candidate,
            )
            for candidate in reconciled
        ]
