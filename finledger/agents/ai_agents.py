"""
AI Agents for the Household Ledger

DESIGN DECISION: The model is a SUGGESTION ENGINE, never a writer.

CRITICAL BOUNDARIES:

1. CHAT:
   - CAN: Ask clarifying questions, propose one or more transactions
   - CANNOT: Save anything; the user confirms every proposal
   - Unknown categories are rewritten to Personal before the UI sees them

2. BULK EXTRACTION:
   - CAN: Read CSV text, receipt photos and PDF statements
   - CANNOT: Decide what is a duplicate; the reconciler does that
   - A file that fails is skipped, the rest of the batch continues

3. INSIGHTS:
   - Only summarises the transactions it is given

Every reply is expected as JSON (optionally inside a ``` fence). Anything
unparseable becomes an error completion, never an exception.
"""

import base64
import json
import re
from datetime import date
from typing import Any, Iterable, Optional
from uuid import UUID

import google.generativeai as genai
import structlog
from pydantic import ValidationError as PydanticValidationError

from finledger.audit import AuditLogger
from finledger.config import get_settings
from finledger.models.audit import AuditEventBuilder
from finledger.models.ledger import (
    MAIN_CATEGORIES,
    SUGGESTED_EXPENSE_TAGS,
    SUGGESTED_INCOME_TAGS,
    AiChatCompletion,
    CandidateTransaction,
    CompletionType,
    ImportFile,
    ImportFileKind,
    Transaction,
)
from finledger.validation.reconciler import TransactionReconciler


_FENCE = re.compile(r"^```(\w*)?\s*\n?(.*?)\n?\s*```$", re.DOTALL)

MISUNDERSTOOD_MESSAGE = "Sorry, I had trouble understanding that. Could you rephrase?"
UNREACHABLE_MESSAGE = (
    "I'm having trouble connecting right now. Please try again in a moment."
)
NOT_ENOUGH_DATA_MESSAGE = "Not enough data for insights. Please add more transactions."


def parse_json_response(text: Optional[str]) -> Any:
    """
    Parse a model reply as JSON, unwrapping a ``` fence if present.

    Returns None if the text is not valid JSON.
    """
    if not text:
        return None
    payload = text.strip()
    match = _FENCE.match(payload)
    if match and match.group(2):
        payload = match.group(2).strip()
    try:
        return json.loads(payload)
    except json.JSONDecodeError:
        return None


def _context_rows(transactions: Iterable[Transaction]) -> str:
    rows = [
        {
            "type": t.type.value,
            "mainCategory": t.main_category.value,
            "subCategory": t.sub_category,
            "amount": float(t.amount),
            "medium": t.medium.value,
            "payee": t.payee,
            "date": t.date.date().isoformat(),
        }
        for t in transactions
    ]
    return json.dumps(rows, ensure_ascii=False)


def _tags_json(table: dict) -> str:
    return json.dumps({k.value: v for k, v in table.items()})


class TransactionExtractionAgent:
    """
    Gemini-backed extractor.

    RESPONSIBILITIES:
    - Conversational entry (text and optional photo)
    - Bulk extraction from uploaded files
    - Short spending insights

    BOUNDARIES:
    - NEVER persists data
    - NEVER raises for model or network failures; they become error replies

    Args:
        model: Anything with an async generate_content_async(contents, ...)
            returning an object with .text. Defaults to a configured
            genai.GenerativeModel.
        audit_logger: Where extractor failures are recorded
    """

    def __init__(
        self,
        model: Optional[Any] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._logger = structlog.get_logger("finledger.agents")
        self._audit = audit_logger
        self._app_settings = get_settings().app
        self._model = model if model is not None else self._configure_genai()

    def _configure_genai(self):
        """Configure Google Generative AI."""
        settings = get_settings().gemini
        genai.configure(api_key=settings.api_key)
        return genai.GenerativeModel(
            model_name=settings.model_name,
            generation_config={
                "temperature": settings.temperature,
                "max_output_tokens": settings.max_tokens,
            },
        )

    async def _generate(self, contents: list, json_mode: bool = True) -> str:
        config = {"response_mime_type": "application/json"} if json_mode else None
        if config:
            response = await self._model.generate_content_async(
                contents,
                generation_config=config,
            )
        else:
            response = await self._model.generate_content_async(contents)
        return response.text

    def _record_failure(
        self,
        source: str,
        error: Exception,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self._logger.error("extractor_failed", source=source, error=str(error))
        if self._audit is not None:
            self._audit.log(AuditEventBuilder.extractor_failed(
                source=source,
                error_message=str(error),
                correlation_id=correlation_id,
            ))

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    def _chat_prompt(
        self,
        recent: list[Transaction],
        budgets: list[dict],
        today: date,
    ) -> str:
        return f"""You are the household ledger assistant: friendly, sharp and quick. Your job is to turn what the user says (or shows in a photo) into complete transactions.

CONTEXT:
- Main Categories: {', '.join(c.value for c in MAIN_CATEGORIES)}
- Suggested tags: Income: {_tags_json(SUGGESTED_INCOME_TAGS)}, Expenses: {_tags_json(SUGGESTED_EXPENSE_TAGS)}
- Recent transactions (for payees and categories): {_context_rows(recent)}
- Budgets this month: {json.dumps(budgets)}
- Today's date: {today.isoformat()}. Use it when no date is given.

RULES:
1. If the amount, type (income/expense) or category is unclear, ASK. Use the recent transactions to make a smart suggestion.
2. Once you have an amount, a type and a category, propose a confirmation that summarises the entry. Default the date to today and the medium to 'card'.
3. If the input clearly describes several transactions (e.g. a sales report with cash and card totals), return all of them.
4. When confirming an expense in a budgeted category, mention how much of the budget is used.
5. Output ONLY one JSON object, nothing else.

OUTPUT FORMAT:
- Asking a question:
  {{"type": "chat", "message": "Your question", "transactions": null}}
- Proposing transactions (always an array):
  {{"type": "confirmation", "message": "Summary for the user", "transactions": [{{"amount": 150, "type": "expense", "mainCategory": "Personal", "subCategory": "Fuel", "payee": "Petrol Station", "date": "YYYY-MM-DD", "medium": "card", "notes": ""}}]}}
- Invalid request:
  {{"type": "error", "message": "What went wrong, as a question", "transactions": null}}"""

    async def chat(
        self,
        user_input: str,
        recent: list[Transaction],
        budgets: Optional[list[dict]] = None,
        image: Optional[bytes] = None,
        mime_type: Optional[str] = None,
        today: Optional[date] = None,
    ) -> AiChatCompletion:
        """
        One conversational turn.

        Always returns a completion; failures come back with type ERROR.
        """
        prompt = self._chat_prompt(
            recent[: self._app_settings.chat_context_size],
            budgets or [],
            today or date.today(),
        )
        contents: list = [prompt]
        if image is not None and mime_type:
            contents.append({"mime_type": mime_type, "data": image})
        contents.append(user_input)

        try:
            text = await self._generate(contents)
        except Exception as e:
            self._record_failure("chat", e)
            return AiChatCompletion(type=CompletionType.ERROR, message=UNREACHABLE_MESSAGE)

        data = parse_json_response(text)
        if not isinstance(data, dict):
            self._logger.warning("chat_reply_unparseable", text=(text or "")[:200])
            return AiChatCompletion(type=CompletionType.ERROR, message=MISUNDERSTOOD_MESSAGE)

        try:
            completion = AiChatCompletion.model_validate(data)
        except PydanticValidationError as e:
            self._logger.warning("chat_reply_invalid", error=str(e))
            return AiChatCompletion(type=CompletionType.ERROR, message=MISUNDERSTOOD_MESSAGE)

        if completion.type == CompletionType.CONFIRMATION and completion.transactions:
            fixed = [
                TransactionReconciler.coerce_category(tx)[0]
                for tx in completion.transactions
            ]
            completion = completion.model_copy(update={"transactions": fixed})
        return completion

    # ------------------------------------------------------------------
    # Bulk extraction
    # ------------------------------------------------------------------

    def _document_prompt(self, recent: list[Transaction]) -> str:
        return f"""You extract financial data from documents. The user uploaded a receipt or statement. Extract every transaction.

CONTEXT:
- Recent transactions (follow how the user categorises things): {_context_rows(recent)}
- Main Categories: {', '.join(c.value for c in MAIN_CATEGORIES)}

RULES:
1. Find each transaction's amount, date, payee/merchant and items.
2. Infer mainCategory and subCategory from the recent transactions. If unsure use 'Personal'.
3. The type is almost always 'expense'. Words like "refund" or "credit" may mean 'income'.
4. Output ONLY a JSON array of transactions, [] if there are none.

OUTPUT FORMAT:
[{{"amount": 25.50, "type": "expense", "mainCategory": "Personal", "subCategory": "Dining Out", "payee": "Cafe", "date": "YYYY-MM-DD", "notes": "From document"}}]"""

    def _csv_prompt(self, recent: list[Transaction], csv_text: str, today: date) -> str:
        return f"""You parse financial data from CSV files. Convert each relevant row into a transaction.

CONTEXT:
- Recent transactions (follow how the user categorises things): {_context_rows(recent)}
- Main Categories: {', '.join(c.value for c in MAIN_CATEGORIES)}

CSV content:
---
{csv_text}
---

RULES:
1. Use the headers to find the date, description/payee and amount columns.
2. Separate credit/debit columns become one 'amount' with type 'income' (credit) or 'expense' (debit). In a single signed column, positive is income and negative is expense; amounts are always positive in the output.
3. Dates become YYYY-MM-DD. If the year is missing assume {today.year}.
4. Infer mainCategory and subCategory from the payee using the recent transactions. If unsure use 'Personal'.
5. Skip summary, empty and header rows.
6. Output ONLY a JSON array of transactions, [] if there are none.

OUTPUT FORMAT:
[{{"amount": 150, "type": "expense", "mainCategory": "Personal", "subCategory": "Groceries", "payee": "Supermarket", "date": "YYYY-MM-DD", "notes": "From CSV import"}}]"""

    async def extract_file(
        self,
        file: ImportFile,
        recent: list[Transaction],
        today: Optional[date] = None,
    ) -> list[CandidateTransaction]:
        """
        Extract candidates from one file.

        Raises whatever the model raises; extract_from_files handles it.
        """
        if file.kind == ImportFileKind.CSV:
            contents: list = [self._csv_prompt(recent, file.content, today or date.today())]
        else:
            contents = [
                self._document_prompt(recent),
                {"mime_type": file.mime_type, "data": base64.b64decode(file.content)},
                "Extract transactions from this document.",
            ]

        text = await self._generate(contents)
        data = parse_json_response(text)
        if not isinstance(data, list):
            self._logger.warning("extraction_not_a_list", file=file.name)
            return []

        candidates = []
        for item in data:
            if not isinstance(item, dict):
                continue
            try:
                candidate = CandidateTransaction.model_validate(item)
            except PydanticValidationError as e:
                self._logger.warning("candidate_rejected", file=file.name, error=str(e))
                continue
            candidates.append(candidate.model_copy(update={"source_file": file.name}))
        return candidates

    async def extract_from_files(
        self,
        files: Iterable[ImportFile],
        recent: list[Transaction],
        correlation_id: Optional[UUID] = None,
    ) -> list[CandidateTransaction]:
        """
        Extract candidates from every file.

        A failing file is logged and skipped; it never aborts the batch.
        """
        recent = recent[: self._app_settings.import_context_size]
        results: list[CandidateTransaction] = []
        for file in files:
            try:
                candidates = await self.extract_file(file, recent)
            except Exception as e:
                self._record_failure(file.name, e, correlation_id)
                continue
            if self._audit is not None:
                self._audit.log(AuditEventBuilder.extraction_completed(
                    source=file.name,
                    candidate_count=len(candidates),
                    correlation_id=correlation_id,
                ))
            results.extend(candidates)
        return results

    # ------------------------------------------------------------------
    # Insights
    # ------------------------------------------------------------------

    async def generate_insights(self, transactions: list[Transaction]) -> str:
        """Three short observations about the given transactions."""
        if len(transactions) < self._app_settings.min_insight_transactions:
            return NOT_ENOUGH_DATA_MESSAGE

        data = [
            {
                "type": t.type.value,
                "mainCategory": t.main_category.value,
                "subCategory": t.sub_category,
                "amount": float(t.amount),
                "date": t.date.date().isoformat(),
            }
            for t in transactions
        ]
        prompt = f"""You are a financial analyst for a small household that also runs a gym and a typing services business. From the transactions below give 3 brief, actionable insights about spending trends, income sources or possible savings.

Transactions:
{json.dumps(data, indent=2)}

Reply with plain numbered sentences, no extra formatting."""

        try:
            text = await self._generate([prompt], json_mode=False)
        except Exception as e:
            self._record_failure("insights", e)
            return UNREACHABLE_MESSAGE
        return (text or "").strip() or MISUNDERSTOOD_MESSAGE
