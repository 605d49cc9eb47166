"""CSV export of the transaction list."""

from typing import Iterable

import pandas as pd

from finledger.models.ledger import Currency, Transaction


EXPORT_COLUMNS = [
    "ID",
    "Type",
    "Main Category",
    "Sub Category",
    "Amount",
    "Currency",
    "Medium",
    "Date",
    "Payee",
    "Notes",
    "Recorded By",
]


def export_rows(
    transactions: Iterable[Transaction],
    currency: Currency = Currency.AED,
) -> list[dict]:
    return [
        {
            "ID": t.id,
            "Type": t.type.value,
            "Main Category": t.main_category.value,
            "Sub Category": t.sub_category,
            "Amount": float(t.amount),
            "Currency": currency.value,
            "Medium": t.medium.value,
            "Date": t.date.isoformat(),
            "Payee": t.payee,
            "Notes": t.notes,
            "Recorded By": t.recorded_by.value,
        }
        for t in transactions
    ]


def export_dataframe(
    transactions: Iterable[Transaction],
    currency: Currency = Currency.AED,
) -> pd.DataFrame:
    return pd.DataFrame(export_rows(transactions, currency), columns=EXPORT_COLUMNS)


def export_csv(
    transactions: Iterable[Transaction],
    currency: Currency = Currency.AED,
) -> str:
    """CSV text with a header row, one line per transaction."""
    return export_dataframe(transactions, currency).to_csv(index=False)
