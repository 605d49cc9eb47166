"""Tests for period windows, rollups, balances and CSV export."""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from finledger.models.ledger import (
    Currency,
    MainCategory,
    TransactionMedium,
    TransactionType,
)
from finledger.queries import (
    EXPORT_COLUMNS,
    DateWindow,
    Period,
    ReportingEngine,
    export_csv,
    export_dataframe,
)


WEDNESDAY = datetime(2024, 6, 5, 15, 30, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    return ReportingEngine()


class TestPeriodWindows:

    def test_daily(self, engine):
        window = engine.period_window(Period.DAILY, WEDNESDAY)
        assert window.start == datetime(2024, 6, 5, tzinfo=timezone.utc)
        assert window.end == datetime(2024, 6, 5, 23, 59, 59, 999999, tzinfo=timezone.utc)
        assert engine.window_label(Period.DAILY, window) == "05 June 2024"

    def test_week_starts_on_sunday(self, engine):
        window = engine.period_window(Period.WEEKLY, WEDNESDAY)
        assert window.start == datetime(2024, 6, 2, tzinfo=timezone.utc)
        assert window.start.weekday() == 6
        assert window.end == datetime(2024, 6, 8, 23, 59, 59, 999999, tzinfo=timezone.utc)

    def test_sunday_is_first_day_of_its_own_week(self, engine):
        sunday = datetime(2024, 6, 2, 8, 0, tzinfo=timezone.utc)
        assert engine.period_window(Period.WEEKLY, sunday).start.day == 2

    def test_leap_february(self, engine):
        window = engine.period_window(Period.MONTHLY, datetime(2024, 2, 10, tzinfo=timezone.utc))
        assert window.start == datetime(2024, 2, 1, tzinfo=timezone.utc)
        assert window.end.day == 29
        assert engine.window_label(Period.MONTHLY, window) == "February 2024"

    def test_shift_clamps_month_end(self, engine):
        shifted = engine.shift(Period.MONTHLY, datetime(2024, 1, 31, tzinfo=timezone.utc), 1)
        assert shifted.date() == datetime(2024, 2, 29).date()

    def test_shift_backwards(self, engine):
        assert engine.shift(Period.WEEKLY, WEDNESDAY, -1).day == 29
        assert engine.shift(Period.DAILY, WEDNESDAY, -5).day == 31

    def test_can_navigate_next(self, engine):
        now = datetime(2024, 6, 20, tzinfo=timezone.utc)
        assert engine.can_navigate_next(Period.MONTHLY, datetime(2024, 5, 1, tzinfo=timezone.utc), now)
        assert not engine.can_navigate_next(Period.MONTHLY, WEDNESDAY, now)
        assert engine.can_navigate_next(Period.WEEKLY, WEDNESDAY, now)


class TestAggregation:

    @pytest.fixture
    def ledger(self, make_transaction):
        return [
            make_transaction(amount="500", type=TransactionType.INCOME,
                             category=MainCategory.GYM, medium=TransactionMedium.CASH,
                             when=datetime(2024, 6, 3, tzinfo=timezone.utc)),
            make_transaction(amount="120", category=MainCategory.GYM,
                             medium=TransactionMedium.CARD,
                             when=datetime(2024, 6, 4, tzinfo=timezone.utc)),
            make_transaction(amount="80", category=MainCategory.PERSONAL,
                             medium=TransactionMedium.CASH,
                             when=datetime(2024, 6, 4, tzinfo=timezone.utc)),
            make_transaction(amount="1000", type=TransactionType.INCOME,
                             category=MainCategory.TYPING_SERVICES,
                             medium=TransactionMedium.MAMO,
                             when=datetime(2024, 5, 20, tzinfo=timezone.utc)),
        ]

    def test_rollup_covers_every_category(self, engine, ledger):
        window = engine.period_window(Period.WEEKLY, WEDNESDAY)
        rollup = engine.category_rollup(ledger, window)

        assert set(rollup) == set(MainCategory)
        assert rollup[MainCategory.GYM].income == Decimal("500")
        assert rollup[MainCategory.GYM].expense == Decimal("120")
        assert rollup[MainCategory.GYM].net == Decimal("380")
        assert rollup[MainCategory.PERSONAL].expense == Decimal("80")
        # May income is outside the window
        assert rollup[MainCategory.TYPING_SERVICES].income == Decimal("0")

    def test_rollup_is_repeatable(self, engine, ledger):
        window = engine.period_window(Period.MONTHLY, WEDNESDAY)
        first = engine.category_rollup(ledger, window)
        second = engine.category_rollup(ledger, window)
        assert first == second
        assert first is not second

    def test_summary(self, engine, ledger):
        summary = engine.summary(ledger)
        assert summary.total_income == Decimal("1500")
        assert summary.total_expense == Decimal("200")
        assert summary.total_balance == Decimal("1300")
        assert summary.cash_in_hand == Decimal("420")
        assert summary.bank_total == Decimal("880")

    def test_category_finance_newest_first(self, engine, ledger):
        finance = engine.category_finance(ledger, MainCategory.GYM)
        assert [t.amount for t in finance.transactions] == [Decimal("120"), Decimal("500")]
        assert finance.profit == Decimal("380")

    def test_category_finance_keeps_order_for_same_date(self, engine, make_transaction):
        same_day = datetime(2024, 6, 4, tzinfo=timezone.utc)
        ledger = [
            make_transaction(amount=amount, category=MainCategory.GYM, when=same_day)
            for amount in ("30", "10", "20")
        ]
        finance = engine.category_finance(ledger, MainCategory.GYM)
        assert [t.amount for t in finance.transactions] == [
            Decimal("30"), Decimal("10"), Decimal("20"),
        ]

    def test_window_is_inclusive(self, engine, make_transaction):
        window = DateWindow(
            start=datetime(2024, 6, 1, tzinfo=timezone.utc),
            end=datetime(2024, 6, 1, 23, 59, tzinfo=timezone.utc),
        )
        edge = make_transaction(when=window.end)
        assert engine.transactions_in([edge], window) == [edge]


class TestExport:

    def test_csv_header_and_row(self, make_transaction):
        tx = make_transaction(amount="12.5", payee="Cafe", notes="Latte")
        text = export_csv([tx], Currency.INR)
        lines = text.strip().splitlines()

        assert lines[0] == ",".join(EXPORT_COLUMNS)
        assert len(lines) == 2
        assert tx.id in lines[1]
        assert "INR" in lines[1]
        assert "Ajmal" in lines[1]

    def test_empty_export_keeps_columns(self):
        frame = export_dataframe([])
        assert list(frame.columns) == EXPORT_COLUMNS
        assert frame.empty
