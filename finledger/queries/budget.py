"""
Budget Evaluation

DESIGN DECISION: Budget numbers are DETERMINISTIC.
They come from the stored transactions only. The AI sees the result of
these calculations as context, never the other way round.

Window: the calendar month (ledger timezone) containing "now", first to
last instant inclusive. Only expenses of the budget's category count.
"""

from datetime import datetime, timezone, tzinfo
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from dateutil.relativedelta import relativedelta
from pydantic import BaseModel

from finledger.models.ledger import (
    Budget,
    MainCategory,
    Transaction,
    TransactionType,
    utc_now,
)


class BudgetProjection(BaseModel):
    """Where a category stands against its limit, including a pending entry."""

    category: MainCategory
    limit: Decimal
    current: Decimal
    projected: Decimal
    remaining: Decimal

    @property
    def is_over_budget(self) -> bool:
        return self.projected > self.limit

    @property
    def usage_percent(self) -> float:
        if self.limit <= 0:
            return 100.0
        return float(self.projected / self.limit * 100)


def month_window(now: datetime, tz: tzinfo) -> tuple[datetime, datetime]:
    """First and last instant of the calendar month containing now."""
    local = now.astimezone(tz)
    start = local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    end = start + relativedelta(months=1) - relativedelta(microseconds=1)
    return start, end


def _lenient_amount(raw: Any) -> Decimal:
    """Half-typed form amounts count as zero in the preview."""
    if raw is None or isinstance(raw, bool):
        return Decimal("0")
    try:
        amount = Decimal(str(raw).replace(",", "").strip())
    except InvalidOperation:
        return Decimal("0")
    return amount if amount.is_finite() else Decimal("0")


class BudgetEvaluator:
    """Computes month-to-date spending against category budgets."""

    def __init__(self, tz: Optional[tzinfo] = None):
        self._tz = tz or timezone.utc

    @staticmethod
    def find_budget(
        budgets: Iterable[Budget],
        category: Optional[MainCategory],
    ) -> Optional[Budget]:
        for budget in budgets:
            if budget.category == category:
                return budget
        return None

    def month_spent(
        self,
        transactions: Iterable[Transaction],
        category: MainCategory,
        now: Optional[datetime] = None,
    ) -> Decimal:
        """Sum of this month's expenses in the category."""
        start, end = month_window(now or utc_now(), self._tz)
        total = Decimal("0")
        for transaction in transactions:
            if (
                transaction.type == TransactionType.EXPENSE
                and transaction.main_category == category
                and start <= transaction.date <= end
            ):
                total += transaction.amount
        return total

    def evaluate(
        self,
        transactions: Iterable[Transaction],
        budgets: Iterable[Budget],
        category: Optional[MainCategory],
        prospective_amount: Any = None,
        editing: Optional[Transaction] = None,
        now: Optional[datetime] = None,
    ) -> Optional[BudgetProjection]:
        """
        Project the category's month total if the pending entry were saved.

        Args:
            transactions: Current ledger transactions
            budgets: Configured budgets
            category: Category of the pending expense
            prospective_amount: Raw amount from the form; unparseable counts as 0
            editing: The stored transaction being edited, whose old amount
                must not be counted twice
            now: Reference instant (defaults to current time)

        Returns:
            None when the category has no budget
        """
        budget = self.find_budget(budgets, category)
        if budget is None:
            return None

        now = now or utc_now()
        current = self.month_spent(transactions, budget.category, now)

        if (
            editing is not None
            and editing.type == TransactionType.EXPENSE
            and editing.main_category == budget.category
        ):
            start, end = month_window(now, self._tz)
            if start <= editing.date <= end:
                current -= editing.amount

        projected = current + _lenient_amount(prospective_amount)
        return BudgetProjection(
            category=budget.category,
            limit=budget.limit,
            current=current,
            projected=projected,
            remaining=budget.limit - projected,
        )

    def status_all(
        self,
        transactions: Iterable[Transaction],
        budgets: Iterable[Budget],
        now: Optional[datetime] = None,
    ) -> list[BudgetProjection]:
        """Current standing of every budget, no pending entry."""
        transactions = list(transactions)
        budgets = list(budgets)
        results = []
        for budget in budgets:
            projection = self.evaluate(transactions, budgets, budget.category, now=now)
            if projection is not None:
                results.append(projection)
        return results

    def prompt_context(
        self,
        transactions: Iterable[Transaction],
        budgets: Iterable[Budget],
        now: Optional[datetime] = None,
    ) -> list[dict]:
        """Budget standing in the compact shape handed to the extractor."""
        return [
            {
                "category": p.category.value,
                "limit": float(p.limit),
                "spent": float(p.current),
            }
            for p in self.status_all(transactions, budgets, now)
        ]
