"""Tests for loan arithmetic and repayment rules."""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from finledger.borrowings import BorrowingTracker
from finledger.models.ledger import (
    AdditionalCost,
    Borrowing,
    BorrowingDraft,
    BorrowingStatus,
    Repayment,
)
from finledger.validation import ValidationError


RETURN_DATE = datetime(2025, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def tracker():
    return BorrowingTracker()


@pytest.fixture
def loan():
    return Borrowing(
        lender_name="Bank",
        principal=Decimal("1000"),
        interest=Decimal("10"),
        additional_costs=[AdditionalCost(description="Processing fee", amount=Decimal("50"))],
        return_date=RETURN_DATE,
    )


class TestArithmetic:

    def test_total_due(self, tracker, loan):
        assert tracker.total_due(loan) == Decimal("1150")
        assert tracker.outstanding_balance(loan) == Decimal("1150")
        assert tracker.progress_percent(loan) == 0.0

    def test_partial_repayment(self, tracker, loan):
        updated = tracker.add_repayment(loan, "150")
        assert tracker.total_repaid(updated) == Decimal("150")
        assert tracker.outstanding_balance(updated) == Decimal("1000")
        assert updated.status == BorrowingStatus.ACTIVE
        assert len(loan.repayments) == 0

    def test_full_repayment_marks_paid(self, tracker, loan):
        updated = tracker.add_repayment(loan, Decimal("1150"))
        assert updated.status == BorrowingStatus.PAID
        assert tracker.progress_percent(updated) == 100.0

    def test_rounding_tolerance(self, tracker):
        awkward = Borrowing(
            lender_name="Friend",
            principal=Decimal("333.33"),
            interest=Decimal("7.5"),
            return_date=RETURN_DATE,
        )
        updated = tracker.add_repayment(awkward, "358.33")
        assert updated.status == BorrowingStatus.PAID

    def test_repay_in_two_steps_then_reject_extra(self, tracker, loan):
        first = tracker.add_repayment(loan, "600")
        assert tracker.outstanding_balance(first) == Decimal("550")
        assert first.status == BorrowingStatus.ACTIVE

        settled = tracker.add_repayment(first, "550")
        assert tracker.outstanding_balance(settled) == Decimal("0")
        assert settled.status == BorrowingStatus.PAID

        with pytest.raises(ValidationError) as exc:
            tracker.add_repayment(settled, "1")
        assert exc.value.issues[0].issue_type == "exceeds_balance"
        assert len(settled.repayments) == 2

    def test_overpayment_rejected(self, tracker, loan):
        with pytest.raises(ValidationError) as exc:
            tracker.add_repayment(loan, "1151")
        assert exc.value.issues[0].issue_type == "exceeds_balance"

    @pytest.mark.parametrize("raw", [None, "", "0", "-10", "ten"])
    def test_invalid_repayment_amount(self, tracker, loan, raw):
        with pytest.raises(ValidationError, match="valid repayment amount"):
            tracker.add_repayment(loan, raw)

    def test_stored_status_is_not_trusted(self, tracker, loan):
        stale = loan.model_copy(update={
            "status": BorrowingStatus.PAID,
            "repayments": [Repayment(amount=Decimal("100"))],
        })
        assert tracker.refresh(stale).status == BorrowingStatus.ACTIVE

    def test_split_by_status(self, tracker, loan):
        paid = tracker.add_repayment(loan, "1150")
        active, done = tracker.split_by_status([loan, paid])
        assert [v.borrowing.id for v in active] == [loan.id]
        assert [v.borrowing.id for v in done] == [paid.id]
        assert done[0].balance == Decimal("0")


class TestCreate:

    def test_all_problems_reported(self, tracker):
        with pytest.raises(ValidationError) as exc:
            tracker.create(BorrowingDraft(lender_name="  ", principal="0", interest="-1"))
        fields = {issue.field for issue in exc.value.issues}
        assert fields == {"lender_name", "principal", "interest", "return_date"}

    def test_cost_lines_filtered(self, tracker):
        borrowing = tracker.create(BorrowingDraft(
            lender_name="Bank",
            principal="1,000",
            interest="",
            return_date="2025-01-01",
            additional_costs=[
                {"description": "Fee", "amount": "50"},
                {"description": "", "amount": "20"},
                {"description": "Stamp", "amount": "0"},
                {"description": "Insurance", "amount": "abc"},
            ],
        ))
        assert borrowing.interest == Decimal("0")
        assert [c.description for c in borrowing.additional_costs] == ["Fee"]
        assert tracker.total_due(borrowing) == Decimal("1050")
        assert borrowing.status == BorrowingStatus.ACTIVE
        assert borrowing.return_date == RETURN_DATE

    def test_loan_date_defaults_to_now(self, tracker):
        now = datetime(2024, 6, 1, tzinfo=timezone.utc)
        borrowing = tracker.create(
            BorrowingDraft(lender_name="Bank", principal="10", return_date=RETURN_DATE),
            now=now,
        )
        assert borrowing.loan_date == now
