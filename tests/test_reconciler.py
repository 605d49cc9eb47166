"""Tests for duplicate detection and category coercion."""

import pytest
from datetime import datetime, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

from finledger.models.ledger import (
    CandidateStatus,
    CandidateTransaction,
    MainCategory,
    TransactionType,
)
from finledger.validation import TransactionReconciler


JUNE_1_MORNING = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)
JUNE_1_EVENING = datetime(2024, 6, 1, 20, 0, tzinfo=timezone.utc)
JUNE_2 = datetime(2024, 6, 2, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def existing(make_transaction):
    return [
        make_transaction(
            amount="25.50",
            when=JUNE_1_MORNING,
            payee="Cafe",
            sub_category="Dining Out",
        )
    ]


def candidate(**fields) -> CandidateTransaction:
    values = {
        "amount": Decimal("25.5"),
        "type": TransactionType.EXPENSE,
        "date": JUNE_1_EVENING,
    }
    values.update(fields)
    return CandidateTransaction(**values)


class TestDuplicateDetection:

    def test_same_amount_day_and_payee(self, existing):
        assert TransactionReconciler().is_duplicate(candidate(payee="Cafe"), existing)

    def test_sub_category_match_is_enough(self, existing):
        found = candidate(payee="Someone else", sub_category="Dining Out")
        assert TransactionReconciler().is_duplicate(found, existing)

    def test_different_day_is_not_duplicate(self, existing):
        assert not TransactionReconciler().is_duplicate(candidate(payee="Cafe", date=JUNE_2), existing)

    def test_different_amount_is_not_duplicate(self, existing):
        found = candidate(payee="Cafe", amount=Decimal("25.51"))
        assert not TransactionReconciler().is_duplicate(found, existing)

    def test_no_payee_or_tag_match(self, existing):
        found = candidate(payee="Bakery", sub_category="Groceries")
        assert not TransactionReconciler().is_duplicate(found, existing)

    def test_missing_amount_or_date_never_duplicate(self, existing):
        reconciler = TransactionReconciler()
        assert not reconciler.is_duplicate(candidate(payee="Cafe", amount=None), existing)
        assert not reconciler.is_duplicate(candidate(payee="Cafe", date=None), existing)

    def test_calendar_day_uses_ledger_timezone(self, make_transaction):
        late = make_transaction(
            amount="10",
            when=datetime(2024, 6, 1, 22, 0, tzinfo=timezone.utc),
            payee="Taxi",
        )
        early = candidate(
            amount=Decimal("10"),
            payee="Taxi",
            date=datetime(2024, 6, 2, 1, 0, tzinfo=timezone.utc),
        )
        assert not TransactionReconciler().is_duplicate(early, [late])
        assert TransactionReconciler(tz=ZoneInfo("Asia/Dubai")).is_duplicate(early, [late])


class TestCategoryCoercion:

    def test_unknown_category_becomes_personal(self):
        original = candidate(main_category="Vacation", notes="Trip")
        fixed, coerced = TransactionReconciler.coerce_category(original)

        assert coerced
        assert fixed.main_category == MainCategory.PERSONAL.value
        assert fixed.notes == "Trip | Original category: Vacation"
        # Input is untouched
        assert original.main_category == "Vacation"

    def test_known_category_kept(self):
        fixed, coerced = TransactionReconciler.coerce_category(candidate(main_category="Gym"))
        assert not coerced
        assert fixed.main_category == "Gym"

    def test_missing_category_left_missing(self):
        fixed, coerced = TransactionReconciler.coerce_category(candidate())
        assert not coerced
        assert fixed.main_category is None


class TestReconcile:

    def test_statuses(self, existing):
        batch = [
            candidate(payee="Cafe"),
            candidate(payee="Bakery"),
            candidate(amount=None),
        ]
        result = TransactionReconciler().reconcile(batch, existing)

        assert [c.status for c in result] == [
            CandidateStatus.DUPLICATE,
            CandidateStatus.NEW,
            CandidateStatus.REVIEW,
        ]
        assert all(c.status is None for c in batch)

    def test_flags_are_audited(self, existing):
        class RecordingAudit:
            def __init__(self):
                self.events = []

            def log(self, event):
                self.events.append(event)

        audit = RecordingAudit()
        reconciler = TransactionReconciler(audit_logger=audit)
        reconciler.reconcile([candidate(payee="Cafe", main_category="Vacation")], existing)

        assert [e.event_type.value for e in audit.events] == [
            "category_coerced",
            "duplicate_flagged",
            "batch_reconciled",
        ]

    def test_bulk_mode_drops_incomplete(self, existing):
        batch = [candidate(payee="Bakery"), candidate(type=None), candidate(date=None)]
        result = TransactionReconciler().reconcile(batch, existing, require_complete=True)
        assert len(result) == 1
        assert result[0].payee == "Bakery"

    def test_negative_amount_needs_review(self, existing):
        reconciler = TransactionReconciler()
        [chat] = reconciler.reconcile([candidate(amount=Decimal("-45"))], existing)
        assert chat.status == CandidateStatus.REVIEW

        bulk = reconciler.reconcile(
            [candidate(amount=Decimal("-45")), candidate(payee="Bakery")],
            existing,
            require_complete=True,
        )
        assert [c.payee for c in bulk] == ["Bakery"]

    def test_import_rows_uncheck_duplicates(self, existing):
        reconciler = TransactionReconciler()
        reconciled = reconciler.reconcile(
            [candidate(payee="Cafe"), candidate(payee="Bakery")],
            existing,
            require_complete=True,
        )
        rows = reconciler.build_import_rows(reconciled)
        assert [row.is_checked for row in rows] == [False, True]
        assert rows[0].row_id != rows[1].row_id
