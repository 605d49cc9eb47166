"""
Tests for the Household Ledger models

Test strategy:
1. Unit tests for individual components (models, normalizer, reconciler)
2. Integration tests for flows (with fake backends and a fake model)
3. No real API calls in tests
"""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal

from finledger.models.ledger import (
    AiChatCompletion,
    Borrowing,
    BorrowingStatus,
    Budget,
    CandidateTransaction,
    CompletionType,
    Currency,
    ImportFile,
    ImportFileKind,
    LedgerSettings,
    LedgerSnapshot,
    MainCategory,
    Theme,
    Transaction,
    TransactionDraft,
    TransactionMedium,
    TransactionType,
    User,
    coerce_instant,
    suggested_tags,
)
from finledger.models.audit import (
    ActivityNotice,
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
    NoticeKind,
)


STORED_TRANSACTION = {
    "id": "tx-1",
    "type": "expense",
    "mainCategory": "Gym",
    "subCategory": "Rent",
    "amount": 2500,
    "medium": "card",
    "date": "2024-06-01T10:00:00.000Z",
    "notes": "June rent",
    "payee": "Landlord",
    "recordedBy": "Irfan",
}


class TestTransactionModel:
    """Tests for committed transactions."""

    def test_loads_stored_document(self):
        """Test that camelCase documents load into snake_case fields."""
        tx = Transaction.model_validate(STORED_TRANSACTION)
        assert tx.main_category == MainCategory.GYM
        assert tx.sub_category == "Rent"
        assert tx.amount == Decimal("2500")
        assert tx.recorded_by == User.IRFAN
        assert tx.date == datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc)
        assert tx.edits == []

    def test_to_document_uses_wire_names(self):
        tx = Transaction.model_validate(STORED_TRANSACTION)
        doc = tx.to_document()
        assert doc["mainCategory"] == "Gym"
        assert doc["recordedBy"] == "Irfan"
        assert doc["amount"] == 2500.0
        assert "main_category" not in doc

    def test_rejects_non_positive_amount(self):
        with pytest.raises(ValueError):
            Transaction.model_validate({**STORED_TRANSACTION, "amount": 0})

    def test_rejects_transfer_type(self):
        """Transfers must be stored as a pair, never as one record."""
        with pytest.raises(ValueError, match="Transfer"):
            Transaction.model_validate({**STORED_TRANSACTION, "type": "transfer"})

    def test_missing_optional_text_becomes_empty(self):
        tx = Transaction.model_validate({**STORED_TRANSACTION, "notes": None, "payee": None})
        assert tx.notes == ""
        assert tx.payee == ""

    def test_signed_amount(self):
        expense = Transaction.model_validate(STORED_TRANSACTION)
        income = Transaction.model_validate({**STORED_TRANSACTION, "type": "income"})
        assert expense.signed_amount == Decimal("-2500")
        assert income.signed_amount == Decimal("2500")


class TestBorrowingModel:

    def test_missing_interest_and_costs_default(self):
        loan = Borrowing.model_validate({
            "lenderName": "Bank",
            "principal": 1000,
            "interest": None,
            "additionalCosts": None,
            "returnDate": "2025-01-01",
        })
        assert loan.interest == Decimal("0")
        assert loan.additional_costs == []
        assert loan.status == BorrowingStatus.ACTIVE
        assert loan.return_date == datetime(2025, 1, 1, tzinfo=timezone.utc)

    def test_rejects_negative_interest(self):
        with pytest.raises(ValueError):
            Borrowing(
                lender_name="Bank",
                principal=Decimal("1000"),
                interest=Decimal("-1"),
                return_date=datetime(2025, 1, 1, tzinfo=timezone.utc),
            )


class TestSnapshotModel:

    def test_defaults(self):
        snapshot = LedgerSnapshot.model_validate({"settings": None})
        assert snapshot.settings.theme == Theme.DARK
        assert snapshot.settings.currency == Currency.AED
        assert snapshot.settings.voice_enabled is True
        assert snapshot.transactions == []

    def test_field_document(self):
        snapshot = LedgerSnapshot(
            budgets=[Budget(id="b1", category=MainCategory.GYM, limit=Decimal("500"))],
        )
        assert snapshot.field_document("budgets") == [
            {"id": "b1", "category": "Gym", "limit": 500.0}
        ]
        assert snapshot.field_document("settings") == {
            "theme": "dark",
            "currency": "AED",
            "voiceEnabled": True,
        }

    def test_settings_pin_roundtrip_by_alias(self):
        settings = LedgerSettings.model_validate({"pin": "1234", "voiceEnabled": False})
        assert settings.pin == "1234"
        assert settings.voice_enabled is False


class TestCandidateTransaction:
    """AI output is untrusted; parsing must be lenient."""

    def test_lenient_parsing(self):
        candidate = CandidateTransaction.model_validate({
            "amount": "1,250.50",
            "type": "EXPENSE",
            "medium": "bank",
            "date": "2024-06-03",
            "mainCategory": "Vacation",
        })
        assert candidate.amount == Decimal("1250.50")
        assert candidate.type == TransactionType.EXPENSE
        assert candidate.medium is None
        assert candidate.date == datetime(2024, 6, 3, tzinfo=timezone.utc)
        assert candidate.main_category == "Vacation"
        assert candidate.has_required_fields

    def test_unparseable_values_become_none(self):
        candidate = CandidateTransaction.model_validate({
            "amount": "about fifty",
            "type": "refund",
            "date": "last tuesday",
        })
        assert candidate.amount is None
        assert candidate.type is None
        assert candidate.date is None
        assert not candidate.has_required_fields

    def test_zero_amount_is_not_complete(self):
        candidate = CandidateTransaction(
            amount=Decimal("0"),
            type=TransactionType.EXPENSE,
            date=datetime(2024, 6, 3, tzinfo=timezone.utc),
        )
        assert not candidate.has_required_fields

    def test_negative_amount_is_not_complete(self):
        candidate = CandidateTransaction(
            amount="-45",
            type="expense",
            date="2024-06-03",
        )
        assert candidate.amount == Decimal("-45")
        assert not candidate.has_required_fields

    def test_enum_members_kept(self):
        """Candidates built in code pass enum members, not strings."""
        candidate = CandidateTransaction(
            type=TransactionType.EXPENSE,
            medium=TransactionMedium.CASH,
            main_category=MainCategory.GYM,
            amount="5",
        )
        assert candidate.type == TransactionType.EXPENSE
        assert candidate.medium == TransactionMedium.CASH
        assert candidate.main_category == "Gym"

    def test_chat_completion_parses(self):
        completion = AiChatCompletion.model_validate({
            "type": "confirmation",
            "message": "Log 150 for fuel?",
            "transactions": [{"amount": 150, "type": "expense"}],
        })
        assert completion.type == CompletionType.CONFIRMATION
        assert completion.transactions[0].amount == Decimal("150")


class TestHelpers:

    def test_coerce_instant_shapes(self):
        assert coerce_instant(date(2024, 1, 2)) == datetime(2024, 1, 2, tzinfo=timezone.utc)
        assert coerce_instant("2024-01-02T03:04:05Z") == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert coerce_instant("not a date") == "not a date"

    def test_draft_date_becomes_aware(self):
        draft = TransactionDraft(date="2024-06-03")
        assert draft.date == datetime(2024, 6, 3, tzinfo=timezone.utc)

    def test_import_file_mime_types(self):
        assert ImportFile(name="r.JPG", kind=ImportFileKind.IMAGE, content="").mime_type == "image/jpeg"
        assert ImportFile(name="s.pdf", kind=ImportFileKind.PDF, content="").mime_type == "application/pdf"
        assert ImportFile(name="s.csv", kind=ImportFileKind.CSV, content="").mime_type == "text/csv"

    def test_suggested_tags(self):
        assert "Membership Fee" in suggested_tags(TransactionType.INCOME, MainCategory.GYM)
        assert "Groceries" in suggested_tags(TransactionType.EXPENSE, MainCategory.PERSONAL)
        assert suggested_tags(TransactionType.INCOME, MainCategory.OTHER) == []

    def test_medium_values(self):
        values = {m.value for m in TransactionMedium}
        assert {"cash", "card", "mamo", "tabby", "other", "transfer"} == values


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_to_log_dict(self):
        event = AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            description="Transaction deleted",
            entity_id="tx-1",
        )
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == "transaction_deleted"
        assert log_dict["entity_id"] == "tx-1"
        assert log_dict["severity"] == "info"
        assert log_dict["correlation_id"] is None

    def test_builder_transactions_added(self):
        event = AuditEventBuilder.transactions_added(["a", "b"], actor="Ajmal")
        assert event.entity_id is None
        assert event.details["transaction_ids"] == ["a", "b"]
        assert event.description == "2 transaction(s) added"

    def test_builder_batch_reconciled_severity(self):
        clean = AuditEventBuilder.batch_reconciled(3, 0, 0, 0)
        flagged = AuditEventBuilder.batch_reconciled(3, 1, 0, 0)
        assert clean.severity == AuditSeverity.INFO
        assert flagged.severity == AuditSeverity.WARNING

    def test_builder_store_write_failed(self):
        offline = AuditEventBuilder.store_write_failed(["transactions"], "timeout", offline=True)
        rejected = AuditEventBuilder.store_write_failed(["budgets"], "denied", offline=False)
        assert offline.event_type == AuditEventType.STORE_UNAVAILABLE
        assert rejected.event_type == AuditEventType.STORE_WRITE_FAILED

    def test_activity_notice(self):
        assert ActivityNotice(message="Error: x", kind=NoticeKind.ERROR).is_error
        assert not ActivityNotice(message="Transaction Added").is_error
