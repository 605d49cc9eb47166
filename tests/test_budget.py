"""Tests for month-to-date budget evaluation."""

import pytest
from datetime import datetime, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

from finledger.models.ledger import Budget, MainCategory, TransactionType
from finledger.queries import BudgetEvaluator, month_window


NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def budgets():
    return [Budget(category=MainCategory.GYM, limit=Decimal("1000"))]


@pytest.fixture
def gym_spending(make_transaction):
    return [
        make_transaction(amount="400", category=MainCategory.GYM,
                         when=datetime(2024, 6, 2, tzinfo=timezone.utc)),
        make_transaction(amount="250", category=MainCategory.GYM,
                         when=datetime(2024, 6, 14, tzinfo=timezone.utc)),
        # Last month, income, other category: none of these count
        make_transaction(amount="900", category=MainCategory.GYM,
                         when=datetime(2024, 5, 31, 23, 59, tzinfo=timezone.utc)),
        make_transaction(amount="300", category=MainCategory.GYM,
                         type=TransactionType.INCOME,
                         when=datetime(2024, 6, 3, tzinfo=timezone.utc)),
        make_transaction(amount="75", category=MainCategory.PERSONAL,
                         when=datetime(2024, 6, 3, tzinfo=timezone.utc)),
    ]


class TestMonthWindow:

    def test_june(self):
        start, end = month_window(NOW, timezone.utc)
        assert start == datetime(2024, 6, 1, tzinfo=timezone.utc)
        assert end == datetime(2024, 6, 30, 23, 59, 59, 999999, tzinfo=timezone.utc)

    def test_local_month_differs_from_utc(self):
        dubai = ZoneInfo("Asia/Dubai")
        # 22:00 UTC on May 31 is already June 1 in Dubai
        start, _ = month_window(datetime(2024, 5, 31, 22, 0, tzinfo=timezone.utc), dubai)
        assert start.month == 6
        assert start.astimezone(timezone.utc) == datetime(2024, 5, 31, 20, 0, tzinfo=timezone.utc)


class TestEvaluate:

    def test_no_budget_returns_none(self, gym_spending, budgets):
        evaluator = BudgetEvaluator()
        assert evaluator.evaluate(gym_spending, budgets, MainCategory.PERSONAL, "10", now=NOW) is None

    def test_projection_includes_pending_amount(self, gym_spending, budgets):
        projection = BudgetEvaluator().evaluate(
            gym_spending, budgets, MainCategory.GYM, "200", now=NOW,
        )
        assert projection.current == Decimal("650")
        assert projection.projected == Decimal("850")
        assert projection.remaining == Decimal("150")
        assert not projection.is_over_budget
        assert projection.usage_percent == pytest.approx(85.0)

    def test_personal_budget_overrun(self, make_transaction):
        budgets = [Budget(category=MainCategory.PERSONAL, limit=Decimal("500"))]
        spent = [make_transaction(amount="300", when=datetime(2024, 6, 5, tzinfo=timezone.utc))]

        projection = BudgetEvaluator().evaluate(spent, budgets, MainCategory.PERSONAL, "250", now=NOW)
        assert projection.projected == Decimal("550")
        assert projection.remaining == Decimal("-50")
        assert projection.is_over_budget

    def test_over_budget(self, gym_spending, budgets):
        projection = BudgetEvaluator().evaluate(
            gym_spending, budgets, MainCategory.GYM, "400", now=NOW,
        )
        assert projection.is_over_budget
        assert projection.remaining == Decimal("-50")

    @pytest.mark.parametrize("raw", [None, "", "abc", "NaN"])
    def test_junk_amount_counts_as_zero(self, gym_spending, budgets, raw):
        projection = BudgetEvaluator().evaluate(
            gym_spending, budgets, MainCategory.GYM, raw, now=NOW,
        )
        assert projection.projected == Decimal("650")

    def test_editing_does_not_double_count(self, gym_spending, budgets):
        editing = gym_spending[1]
        projection = BudgetEvaluator().evaluate(
            gym_spending, budgets, MainCategory.GYM, "300", editing=editing, now=NOW,
        )
        assert projection.current == Decimal("400")
        assert projection.projected == Decimal("700")

    def test_editing_last_month_entry_not_subtracted(self, gym_spending, budgets):
        projection = BudgetEvaluator().evaluate(
            gym_spending, budgets, MainCategory.GYM, "0",
            editing=gym_spending[2], now=NOW,
        )
        assert projection.current == Decimal("650")


class TestStatus:

    def test_status_all_and_prompt_context(self, gym_spending, budgets):
        evaluator = BudgetEvaluator()
        statuses = evaluator.status_all(gym_spending, budgets, now=NOW)
        assert len(statuses) == 1
        assert statuses[0].projected == statuses[0].current == Decimal("650")

        assert evaluator.prompt_context(gym_spending, budgets, now=NOW) == [
            {"category": "Gym", "limit": 1000.0, "spent": 650.0}
        ]

    def test_empty_ledger(self, budgets):
        [status] = BudgetEvaluator().status_all([], budgets, now=NOW)
        assert status.current == Decimal("0")
        assert status.remaining == Decimal("1000")
