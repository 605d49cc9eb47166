"""Shared fixtures. No real API calls in tests (fakes only)."""

from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from finledger.models.ledger import (
    MainCategory,
    Transaction,
    TransactionMedium,
    TransactionType,
    User,
)


class FakeGenerativeModel:
    """
    Stands in for genai.GenerativeModel.

    Each call pops the next scripted reply. A reply that is an exception
    is raised instead of returned.
    """

    def __init__(self, replies):
        self._replies = list(replies)
        self.calls = []

    async def generate_content_async(self, contents, **kwargs):
        self.calls.append((contents, kwargs))
        reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(text=reply)


@pytest.fixture
def fake_model():
    return FakeGenerativeModel


@pytest.fixture
def make_transaction():
    def factory(
        amount="100",
        type=TransactionType.EXPENSE,
        category=MainCategory.PERSONAL,
        medium=TransactionMedium.CARD,
        when=datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc),
        payee="",
        sub_category="",
        **extra,
    ) -> Transaction:
        return Transaction(
            type=type,
            main_category=category,
            sub_category=sub_category,
            amount=Decimal(str(amount)),
            medium=medium,
            date=when,
            payee=payee,
            recorded_by=User.AJMAL,
            **extra,
        )

    return factory
