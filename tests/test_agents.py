"""
Tests for the extraction agent.

The Gemini model is replaced with FakeGenerativeModel; no API calls.
"""

import asyncio
import base64
import json
from datetime import date
from decimal import Decimal

import pytest

from finledger.agents import TransactionExtractionAgent, parse_json_response
from finledger.agents.ai_agents import (
    MISUNDERSTOOD_MESSAGE,
    NOT_ENOUGH_DATA_MESSAGE,
    UNREACHABLE_MESSAGE,
)
from finledger.audit import AuditLogger
from finledger.models.ledger import (
    CompletionType,
    ImportFile,
    ImportFileKind,
    TransactionType,
)


TODAY = date(2024, 6, 10)


def confirmation(*transactions, message="Log this?"):
    return json.dumps({
        "type": "confirmation",
        "message": message,
        "transactions": list(transactions),
    })


class TestParseJsonResponse:

    def test_plain_json(self):
        assert parse_json_response('{"a": 1}') == {"a": 1}

    def test_fenced_json(self):
        assert parse_json_response('```json\n[{"a": 1}]\n```') == [{"a": 1}]
        assert parse_json_response('```\n{"a": 1}\n```') == {"a": 1}

    @pytest.mark.parametrize("text", [None, "", "Sure! Here you go", "```json\n{broken\n```"])
    def test_unparseable(self, text):
        assert parse_json_response(text) is None


class TestChat:

    def test_question_reply(self, fake_model):
        model = fake_model([json.dumps({
            "type": "chat",
            "message": "Was that cash or card?",
            "transactions": None,
        })])
        agent = TransactionExtractionAgent(model=model)

        completion = asyncio.run(agent.chat("spent 50 on fuel", [], today=TODAY))
        assert completion.type == CompletionType.CHAT
        assert completion.transactions is None

        contents, kwargs = model.calls[0]
        assert contents[-1] == "spent 50 on fuel"
        assert "2024-06-10" in contents[0]
        assert kwargs["generation_config"] == {"response_mime_type": "application/json"}

    def test_confirmation_coerces_unknown_category(self, fake_model):
        model = fake_model(["```json\n" + confirmation(
            {"amount": "150", "type": "expense", "mainCategory": "Vacation", "date": "2024-06-10"},
            {"amount": 80, "type": "income", "mainCategory": "Gym", "subCategory": "Daily Sales"},
        ) + "\n```"])
        agent = TransactionExtractionAgent(model=model)

        completion = asyncio.run(agent.chat("fuel and gym sales", [], today=TODAY))
        assert completion.type == CompletionType.CONFIRMATION
        first, second = completion.transactions
        assert first.amount == Decimal("150")
        assert first.main_category == "Personal"
        assert "Original category: Vacation" in first.notes
        assert second.main_category == "Gym"
        assert second.type == TransactionType.INCOME

    def test_context_is_limited(self, fake_model, make_transaction):
        model = fake_model([json.dumps({"type": "chat", "message": "ok"})])
        agent = TransactionExtractionAgent(model=model)
        recent = [make_transaction(payee=f"Payee {i}") for i in range(15)]

        asyncio.run(agent.chat("hi", recent, today=TODAY))
        prompt = model.calls[0][0][0]
        assert "Payee 9" in prompt
        assert "Payee 10" not in prompt

    def test_image_sent_as_part(self, fake_model):
        model = fake_model([json.dumps({"type": "chat", "message": "ok"})])
        agent = TransactionExtractionAgent(model=model)

        asyncio.run(agent.chat("receipt", [], image=b"\x89PNG", mime_type="image/png", today=TODAY))
        contents = model.calls[0][0]
        assert contents[1] == {"mime_type": "image/png", "data": b"\x89PNG"}

    def test_unparseable_reply(self, fake_model):
        agent = TransactionExtractionAgent(model=fake_model(["I think you spent money"]))
        completion = asyncio.run(agent.chat("x", [], today=TODAY))
        assert completion.type == CompletionType.ERROR
        assert completion.message == MISUNDERSTOOD_MESSAGE

    def test_invalid_reply_shape(self, fake_model):
        agent = TransactionExtractionAgent(model=fake_model([json.dumps({"type": "shrug"})]))
        completion = asyncio.run(agent.chat("x", [], today=TODAY))
        assert completion.message == MISUNDERSTOOD_MESSAGE

    def test_model_failure(self, fake_model):
        audit = AuditLogger()
        agent = TransactionExtractionAgent(
            model=fake_model([RuntimeError("quota exceeded")]),
            audit_logger=audit,
        )
        completion = asyncio.run(agent.chat("x", [], today=TODAY))
        assert completion.type == CompletionType.ERROR
        assert completion.message == UNREACHABLE_MESSAGE


class TestFileExtraction:

    def test_csv_content_embedded_in_prompt(self, fake_model):
        model = fake_model([json.dumps([
            {"amount": 42, "type": "expense", "payee": "Market", "date": "2024-06-01"},
        ])])
        agent = TransactionExtractionAgent(model=model)
        csv_file = ImportFile(name="bank.csv", kind=ImportFileKind.CSV, content="Date,Amount\n01/06,-42")

        [candidate] = asyncio.run(agent.extract_file(csv_file, [], today=TODAY))
        assert candidate.source_file == "bank.csv"
        assert candidate.payee == "Market"
        assert len(model.calls[0][0]) == 1
        assert "Date,Amount\n01/06,-42" in model.calls[0][0][0]
        assert "assume 2024" in model.calls[0][0][0]

    def test_image_decoded_to_bytes(self, fake_model):
        model = fake_model(["[]"])
        agent = TransactionExtractionAgent(model=model)
        photo = ImportFile(
            name="receipt.jpg",
            kind=ImportFileKind.IMAGE,
            content=base64.b64encode(b"jpeg-bytes").decode(),
        )

        assert asyncio.run(agent.extract_file(photo, [])) == []
        part = model.calls[0][0][1]
        assert part == {"mime_type": "image/jpeg", "data": b"jpeg-bytes"}

    def test_non_list_reply_gives_nothing(self, fake_model):
        agent = TransactionExtractionAgent(model=fake_model(['{"amount": 5}']))
        csv_file = ImportFile(name="a.csv", kind=ImportFileKind.CSV, content="x")
        assert asyncio.run(agent.extract_file(csv_file, [])) == []

    def test_failing_file_does_not_abort_batch(self, fake_model):
        model = fake_model([
            ConnectionError("timeout"),
            json.dumps([{"amount": 10, "type": "expense", "date": "2024-06-02"}, "junk"]),
        ])
        agent = TransactionExtractionAgent(model=model, audit_logger=AuditLogger())
        files = [
            ImportFile(name="first.csv", kind=ImportFileKind.CSV, content="a"),
            ImportFile(name="second.csv", kind=ImportFileKind.CSV, content="b"),
        ]

        candidates = asyncio.run(agent.extract_from_files(files, []))
        assert [c.source_file for c in candidates] == ["second.csv"]
        assert len(model.calls) == 2


class TestInsights:

    def test_not_enough_data(self, fake_model, make_transaction):
        model = fake_model([])
        agent = TransactionExtractionAgent(model=model)
        result = asyncio.run(agent.generate_insights([make_transaction() for _ in range(4)]))
        assert result == NOT_ENOUGH_DATA_MESSAGE
        assert model.calls == []

    def test_plain_text_reply(self, fake_model, make_transaction):
        model = fake_model(["1. Fuel is up.\n2. Gym income is steady.\n3. Cut dining out.\n"])
        agent = TransactionExtractionAgent(model=model)

        result = asyncio.run(agent.generate_insights([make_transaction() for _ in range(5)]))
        assert result.startswith("1. Fuel is up.")
        assert model.calls[0][1] == {}

    def test_failure(self, fake_model, make_transaction):
        agent = TransactionExtractionAgent(model=fake_model([RuntimeError("down")]))
        result = asyncio.run(agent.generate_insights([make_transaction() for _ in range(5)]))
        assert result == UNREACHABLE_MESSAGE
