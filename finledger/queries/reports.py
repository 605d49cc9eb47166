"""
Reporting Engine

Pure aggregation over the transaction list: period windows, per-category
rollups, dashboard balances and per-category finance views.

All calendar arithmetic happens in the ledger timezone. Weeks start on
Sunday.
"""

from datetime import datetime, timedelta, timezone, tzinfo
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional

from dateutil.relativedelta import relativedelta
from pydantic import BaseModel, Field

from finledger.models.ledger import (
    MAIN_CATEGORIES,
    MainCategory,
    Transaction,
    TransactionMedium,
    TransactionType,
    utc_now,
)


ZERO = Decimal("0")


class Period(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class DateWindow(BaseModel):
    """Inclusive time window."""

    start: datetime
    end: datetime

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant <= self.end


class CategoryTotals(BaseModel):
    income: Decimal = ZERO
    expense: Decimal = ZERO

    @property
    def net(self) -> Decimal:
        return self.income - self.expense


class LedgerSummary(BaseModel):
    """Dashboard balances."""

    total_income: Decimal = ZERO
    total_expense: Decimal = ZERO
    cash_in_hand: Decimal = ZERO
    bank_total: Decimal = ZERO

    @property
    def total_balance(self) -> Decimal:
        return self.total_income - self.total_expense


class CategoryFinance(BaseModel):
    category: MainCategory
    total_income: Decimal = ZERO
    total_expense: Decimal = ZERO
    transactions: list[Transaction] = Field(default_factory=list)

    @property
    def profit(self) -> Decimal:
        return self.total_income - self.total_expense


class ReportingEngine:
    """Period and category aggregation over ledger transactions."""

    def __init__(self, tz: Optional[tzinfo] = None):
        self._tz = tz or timezone.utc

    def _local(self, instant: datetime) -> datetime:
        if instant.tzinfo is None:
            return instant.replace(tzinfo=self._tz)
        return instant.astimezone(self._tz)

    # ------------------------------------------------------------------
    # Period navigation
    # ------------------------------------------------------------------

    def period_window(self, period: Period, display_date: datetime) -> DateWindow:
        """The day, Sunday-start week, or month containing display_date."""
        local = self._local(display_date)
        day_start = local.replace(hour=0, minute=0, second=0, microsecond=0)

        if period == Period.DAILY:
            start = day_start
            end = start + relativedelta(days=1)
        elif period == Period.WEEKLY:
            # weekday(): Monday=0 ... Sunday=6
            start = day_start - timedelta(days=(day_start.weekday() + 1) % 7)
            end = start + relativedelta(weeks=1)
        else:
            start = day_start.replace(day=1)
            end = start + relativedelta(months=1)

        return DateWindow(start=start, end=end - timedelta(microseconds=1))

    def shift(self, period: Period, display_date: datetime, steps: int) -> datetime:
        """Move the display date by whole periods (negative steps go back)."""
        local = self._local(display_date)
        if period == Period.DAILY:
            return local + relativedelta(days=steps)
        if period == Period.WEEKLY:
            return local + relativedelta(weeks=steps)
        return local + relativedelta(months=steps)

    def can_navigate_next(
        self,
        period: Period,
        display_date: datetime,
        now: Optional[datetime] = None,
    ) -> bool:
        """False once the displayed window already contains (or passes) now."""
        window = self.period_window(period, display_date)
        return window.end < (now or utc_now())

    @staticmethod
    def window_label(period: Period, window: DateWindow) -> str:
        if period == Period.DAILY:
            return window.start.strftime("%d %B %Y")
        if period == Period.WEEKLY:
            return (
                f"{window.start.strftime('%d %b')} - "
                f"{window.end.strftime('%d %b %Y')}"
            )
        return window.start.strftime("%B %Y")

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    @staticmethod
    def transactions_in(
        transactions: Iterable[Transaction],
        window: DateWindow,
    ) -> list[Transaction]:
        return [t for t in transactions if window.contains(t.date)]

    def category_rollup(
        self,
        transactions: Iterable[Transaction],
        window: DateWindow,
    ) -> dict[MainCategory, CategoryTotals]:
        """Income and expense per main category inside the window."""
        rollup = {category: CategoryTotals() for category in MAIN_CATEGORIES}
        for transaction in self.transactions_in(transactions, window):
            totals = rollup[transaction.main_category]
            if transaction.type == TransactionType.INCOME:
                totals.income += transaction.amount
            else:
                totals.expense += transaction.amount
        return rollup

    @staticmethod
    def summary(transactions: Iterable[Transaction]) -> LedgerSummary:
        """
        Dashboard balances.

        cash_in_hand covers the cash medium; bank_total covers every
        other medium.
        """
        result = LedgerSummary()
        for transaction in transactions:
            if transaction.type == TransactionType.INCOME:
                result.total_income += transaction.amount
            else:
                result.total_expense += transaction.amount

            if transaction.medium == TransactionMedium.CASH:
                result.cash_in_hand += transaction.signed_amount
            else:
                result.bank_total += transaction.signed_amount
        return result

    @staticmethod
    def category_finance(
        transactions: Iterable[Transaction],
        category: MainCategory,
    ) -> CategoryFinance:
        """Totals and the newest-first transaction list for one category."""
        matching = [t for t in transactions if t.main_category == category]
        # sorted() is stable, so equal dates keep their ledger order
        matching = sorted(matching, key=lambda t: t.date, reverse=True)
        result = CategoryFinance(category=category, transactions=matching)
        for transaction in matching:
            if transaction.type == TransactionType.INCOME:
                result.total_income += transaction.amount
            else:
                result.total_expense += transaction.amount
        return result
