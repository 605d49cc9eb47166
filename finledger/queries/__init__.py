"""Deterministic read-side calculations: budgets, reports, export."""

from finledger.queries.budget import BudgetEvaluator, BudgetProjection, month_window
from finledger.queries.export import EXPORT_COLUMNS, export_csv, export_dataframe, export_rows
from finledger.queries.reports import (
    CategoryFinance,
    CategoryTotals,
    DateWindow,
    LedgerSummary,
    Period,
    ReportingEngine,
)

__all__ = [
    "BudgetEvaluator",
    "BudgetProjection",
    "CategoryFinance",
    "CategoryTotals",
    "DateWindow",
    "EXPORT_COLUMNS",
    "LedgerSummary",
    "Period",
    "ReportingEngine",
    "export_csv",
    "export_dataframe",
    "export_rows",
    "month_window",
]
