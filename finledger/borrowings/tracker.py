"""
Borrowing Tracker

Loan arithmetic. Everything about a loan's standing is derived from its
principal, interest, additional costs and repayments:

    total_due = principal * (1 + interest / 100) + sum(additional costs)
    balance   = total_due - sum(repayments)
    status    = PAID iff sum(repayments) >= total_due

IMPORTANT: status is never trusted from storage. It is recomputed on load
and after every repayment.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from pydantic import BaseModel

from finledger.models.ledger import (
    AdditionalCost,
    Borrowing,
    BorrowingDraft,
    BorrowingStatus,
    Repayment,
    ValidationIssue,
    utc_now,
)
from finledger.validation.errors import ValidationError


HUNDRED = Decimal("100")


class BorrowingView(BaseModel):
    """A loan plus its derived figures, ready for display."""

    borrowing: Borrowing
    total_due: Decimal
    total_repaid: Decimal
    balance: Decimal
    progress_percent: float

    @property
    def status(self) -> BorrowingStatus:
        return self.borrowing.status


def _parse_decimal(raw: Any) -> Optional[Decimal]:
    if raw is None or isinstance(raw, bool):
        return None
    text = str(raw).replace(",", "").strip()
    if not text:
        return None
    try:
        value = Decimal(text)
    except InvalidOperation:
        return None
    return value if value.is_finite() else None


class BorrowingTracker:
    """
    Creates loans and records repayments.

    Args:
        tolerance: How far a repayment may exceed the balance and still be
            accepted. Absorbs rounding in interest.
    """

    def __init__(self, tolerance: Decimal = Decimal("0.005")):
        self._tolerance = Decimal(str(tolerance))

    @staticmethod
    def total_due(borrowing: Borrowing) -> Decimal:
        costs = sum((c.amount for c in borrowing.additional_costs), Decimal("0"))
        return borrowing.principal * (1 + borrowing.interest / HUNDRED) + costs

    @staticmethod
    def total_repaid(borrowing: Borrowing) -> Decimal:
        return sum((r.amount for r in borrowing.repayments), Decimal("0"))

    def outstanding_balance(self, borrowing: Borrowing) -> Decimal:
        return self.total_due(borrowing) - self.total_repaid(borrowing)

    def progress_percent(self, borrowing: Borrowing) -> float:
        due = self.total_due(borrowing)
        if due <= 0:
            return 100.0
        return min(float(self.total_repaid(borrowing) / due * HUNDRED), 100.0)

    def derive_status(self, borrowing: Borrowing) -> BorrowingStatus:
        if self.total_repaid(borrowing) >= self.total_due(borrowing):
            return BorrowingStatus.PAID
        return BorrowingStatus.ACTIVE

    def refresh(self, borrowing: Borrowing) -> Borrowing:
        """Copy of the loan with its status recomputed."""
        return borrowing.model_copy(update={"status": self.derive_status(borrowing)})

    def view(self, borrowing: Borrowing) -> BorrowingView:
        borrowing = self.refresh(borrowing)
        return BorrowingView(
            borrowing=borrowing,
            total_due=self.total_due(borrowing),
            total_repaid=self.total_repaid(borrowing),
            balance=self.outstanding_balance(borrowing),
            progress_percent=self.progress_percent(borrowing),
        )

    def split_by_status(
        self,
        borrowings: Iterable[Borrowing],
    ) -> tuple[list[BorrowingView], list[BorrowingView]]:
        """Returns (active, paid) views, each keeping input order."""
        active, paid = [], []
        for borrowing in borrowings:
            view = self.view(borrowing)
            (paid if view.status == BorrowingStatus.PAID else active).append(view)
        return active, paid

    def create(
        self,
        draft: BorrowingDraft,
        now: Optional[datetime] = None,
    ) -> Borrowing:
        """
        Validate a loan form and build the stored record.

        Additional cost lines without a description or a positive amount
        are silently discarded.

        Raises:
            ValidationError: blank lender, non-positive principal,
                negative interest, or missing return date
        """
        issues: list[ValidationIssue] = []

        lender = (draft.lender_name or "").strip()
        if not lender:
            issues.append(ValidationIssue(
                field="lender_name",
                issue_type="missing",
                message="Lender name is required.",
            ))

        principal = _parse_decimal(draft.principal)
        if principal is None or principal <= 0:
            issues.append(ValidationIssue(
                field="principal",
                issue_type="invalid_value",
                message="Principal must be greater than zero.",
            ))

        interest = Decimal("0")
        if draft.interest not in (None, ""):
            parsed = _parse_decimal(draft.interest)
            if parsed is None or parsed < 0:
                issues.append(ValidationIssue(
                    field="interest",
                    issue_type="invalid_value",
                    message="Interest must be zero or a positive percentage.",
                ))
            else:
                interest = parsed

        if draft.return_date is None:
            issues.append(ValidationIssue(
                field="return_date",
                issue_type="missing",
                message="Return date is required.",
            ))

        if issues:
            raise ValidationError(issues)

        costs = []
        for line in draft.additional_costs:
            description = str(line.get("description") or "").strip()
            amount = _parse_decimal(line.get("amount"))
            if description and amount is not None and amount > 0:
                costs.append(AdditionalCost(description=description, amount=amount))

        borrowing = Borrowing(
            lender_name=lender,
            principal=principal,
            interest=interest,
            additional_costs=costs,
            loan_date=draft.loan_date or now or utc_now(),
            return_date=draft.return_date,
        )
        return self.refresh(borrowing)

    def add_repayment(
        self,
        borrowing: Borrowing,
        amount: Any,
        now: Optional[datetime] = None,
    ) -> Borrowing:
        """
        Append a repayment and recompute the status.

        Raises:
            ValidationError: non-positive amount, or more than the balance
        """
        value = _parse_decimal(amount)
        if value is None or value <= 0:
            raise ValidationError.single(
                field="amount",
                issue_type="invalid_value",
                message="Please enter a valid repayment amount.",
            )

        balance = self.outstanding_balance(borrowing)
        if value > balance + self._tolerance:
            raise ValidationError.single(
                field="amount",
                issue_type="exceeds_balance",
                message=f"Repayment cannot exceed the outstanding balance of {balance:.2f}.",
                suggested_fix=f"Enter {balance:.2f} or less",
            )

        updated = borrowing.model_copy(update={
            "repayments": [
                *borrowing.repayments,
                Repayment(amount=value, date=now or utc_now()),
            ],
        })
        return self.refresh(updated)
