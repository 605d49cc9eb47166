"""
Main Orchestrator for the Household Ledger

This module ties together all the components and defines the
end-to-end flows for:
1. Manual entry (draft -> normalize -> budget preview -> commit)
2. AI chat (message -> extractor -> reconcile -> confirm -> commit)
3. Bulk import (files -> extractor -> reconcile -> review -> commit)
4. Borrowings (create loan, record repayments)
5. Reports (period windows, rollups, insights, CSV export)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Nothing suggested by the AI is saved without the user confirming it
- Every write goes through the ledger store
- Validation errors surface before any write is attempted
"""

import base64
from datetime import datetime
from decimal import Decimal
from typing import Any, NamedTuple, Optional

import structlog
from pydantic import BaseModel

from finledger.agents import TransactionExtractionAgent
from finledger.audit import AuditLogger, create_correlation_id
from finledger.models.audit import AuditEventBuilder
from finledger.borrowings import BorrowingTracker, BorrowingView
from finledger.config import get_settings
from finledger.models.ledger import (
    AiChatCompletion,
    Borrowing,
    BorrowingDraft,
    CandidateTransaction,
    CompletionType,
    ImportFile,
    ImportFileKind,
    ImportRow,
    MainCategory,
    Transaction,
    TransactionDraft,
    TransactionType,
    utc_now,
)
from finledger.queries import (
    BudgetEvaluator,
    BudgetProjection,
    CategoryFinance,
    CategoryTotals,
    DateWindow,
    LedgerSummary,
    Period,
    ReportingEngine,
    export_csv,
)
from finledger.services import (
    DocumentStoreInterface,
    GoogleSheetsDocumentStore,
    InMemoryDocumentStore,
    LedgerStore,
)
from finledger.validation import (
    NormalizerDefaults,
    TransactionNormalizer,
    TransactionReconciler,
    ValidationError,
)


logger = structlog.get_logger("finledger.orchestrator")

AI_UNAVAILABLE_MESSAGE = "The AI assistant is not configured. Add a Gemini API key to use it."


def _record_rejection(ledger: LedgerStore, entity_type: str, error: ValidationError) -> None:
    user = ledger.current_user
    ledger.audit.log(AuditEventBuilder.validation_failed(
        entity_type,
        error.to_dicts(),
        actor=user.value if user else None,
    ))


class TransactionEntryFlow:
    """
    Orchestrates manual add/edit of transactions.

    Flow:
    1. Form draft (optionally loaded from a template or an AI suggestion)
    2. Live budget preview while typing
    3. Normalize (validation + defaults, transfers split in two)
    4. Commit the transaction(s), with the template if requested, in one write
    """

    def __init__(
        self,
        ledger: LedgerStore,
        normalizer: Optional[TransactionNormalizer] = None,
        budget_evaluator: Optional[BudgetEvaluator] = None,
    ):
        self._ledger = ledger
        self._normalizer = normalizer or TransactionNormalizer()
        self._budgets = budget_evaluator or BudgetEvaluator()

    @property
    def normalizer(self) -> TransactionNormalizer:
        return self._normalizer

    def preview_budget(
        self,
        draft: TransactionDraft,
        editing: Optional[Transaction] = None,
        now: Optional[datetime] = None,
    ) -> Optional[BudgetProjection]:
        """Budget standing if this draft were saved. Expenses only."""
        if draft.type != TransactionType.EXPENSE or draft.main_category is None:
            return None
        return self._budgets.evaluate(
            self._ledger.transactions,
            self._ledger.budgets,
            draft.main_category,
            prospective_amount=draft.amount,
            editing=editing,
            now=now,
        )

    def load_template(self, name: str, when: Optional[datetime] = None) -> TransactionDraft:
        template = self._ledger.find_template(name)
        if template is None:
            raise ValidationError.single(
                field="template",
                issue_type="not_found",
                message=f"Template '{name}' not found.",
            )
        return self._normalizer.draft_from_template(template, when)

    async def submit(
        self,
        draft: TransactionDraft,
        editing: Optional[Transaction] = None,
        active_filter: Optional[MainCategory] = None,
    ) -> bool:
        """
        Validate and save a draft.

        Raises:
            ValidationError: the draft is not valid; nothing was written
        """
        defaults = NormalizerDefaults.for_filter(active_filter)
        try:
            records = self._normalizer.normalize(draft, defaults)
            if editing is not None and len(records) != 1:
                raise ValidationError.single(
                    field="type",
                    issue_type="invalid_value",
                    message="An existing transaction cannot be turned into a transfer.",
                )
        except ValidationError as e:
            _record_rejection(self._ledger, "transaction", e)
            raise

        if editing is not None:
            updated = editing.model_copy(update=records[0].model_dump())
            return await self._ledger.update_transaction(updated)

        template = self._normalizer.template_from(draft, records)
        return bool(await self._ledger.add_transactions(records, template=template))

    async def delete(self, transaction_id: str) -> bool:
        return await self._ledger.delete_transaction(transaction_id)


class ChatFlow:
    """
    Orchestrates the conversational entry flow.

    The agent proposes; the user confirms; only then are records written.
    """

    def __init__(
        self,
        ledger: LedgerStore,
        agent: Optional[TransactionExtractionAgent],
        reconciler: Optional[TransactionReconciler] = None,
        normalizer: Optional[TransactionNormalizer] = None,
        budget_evaluator: Optional[BudgetEvaluator] = None,
    ):
        self._ledger = ledger
        self._agent = agent
        self._reconciler = reconciler or TransactionReconciler()
        self._normalizer = normalizer or TransactionNormalizer()
        self._budgets = budget_evaluator or BudgetEvaluator()
        self._settings = get_settings().app

    async def ask(
        self,
        message: str,
        image: Optional[bytes] = None,
        mime_type: Optional[str] = None,
    ) -> AiChatCompletion:
        if self._agent is None:
            return AiChatCompletion(type=CompletionType.ERROR, message=AI_UNAVAILABLE_MESSAGE)

        transactions = self._ledger.transactions
        completion = await self._agent.chat(
            message,
            recent=self._ledger.recent_transactions(self._settings.chat_context_size),
            budgets=self._budgets.prompt_context(transactions, self._ledger.budgets),
            image=image,
            mime_type=mime_type,
        )
        if completion.transactions:
            annotated = self._reconciler.reconcile(completion.transactions, transactions)
            completion = completion.model_copy(update={"transactions": annotated})
        return completion

    def drafts_for(self, completion: AiChatCompletion) -> list[TransactionDraft]:
        """Form drafts for each proposed transaction, for review or editing."""
        return [
            self._normalizer.draft_from_candidate(candidate)
            for candidate in completion.transactions or []
        ]

    async def confirm(
        self,
        completion: AiChatCompletion,
        active_filter: Optional[MainCategory] = None,
    ) -> bool:
        """
        Save every proposed transaction in one write.

        Raises:
            ValidationError: any proposal is incomplete; nothing was written
        """
        defaults = NormalizerDefaults.for_filter(active_filter)
        records = []
        try:
            for draft in self.drafts_for(completion):
                records.extend(self._normalizer.normalize(draft, defaults))
        except ValidationError as e:
            _record_rejection(self._ledger, "transaction", e)
            raise
        return bool(await self._ledger.add_transactions(records))


class BulkImportFlow:
    """
    Orchestrates bulk import.

    Flow:
    1. Files are checked (type, size) and handed to the extractor
    2. Candidates are reconciled: incomplete ones dropped, duplicates flagged
    3. The user reviews rows (duplicates start unchecked) and may correct them
    4. Checked rows are finalized with import defaults and saved in one write
    """

    def __init__(
        self,
        ledger: LedgerStore,
        agent: Optional[TransactionExtractionAgent],
        reconciler: Optional[TransactionReconciler] = None,
        normalizer: Optional[TransactionNormalizer] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._ledger = ledger
        self._agent = agent
        self._reconciler = reconciler or TransactionReconciler()
        self._normalizer = normalizer or TransactionNormalizer()
        self._audit = audit_logger or ledger.audit
        self._settings = get_settings().app

    def prepare_file(self, name: str, data: bytes) -> ImportFile:
        """
        Wrap an uploaded file for the extractor.

        Raises:
            ValidationError: unsupported extension or too large
        """
        extension = name.rsplit(".", 1)[-1].lower() if "." in name else ""
        if extension not in self._settings.supported_formats_list:
            raise ValidationError.single(
                field="file",
                issue_type="unsupported_format",
                message=f"{name}: unsupported file type.",
                suggested_fix=f"Upload one of: {', '.join(self._settings.supported_formats_list)}",
            )
        if len(data) > self._settings.max_upload_size_bytes:
            raise ValidationError.single(
                field="file",
                issue_type="too_large",
                message=f"{name} is larger than {self._settings.max_upload_size_mb} MB.",
            )

        if extension == "csv":
            return ImportFile(
                name=name,
                kind=ImportFileKind.CSV,
                content=data.decode("utf-8", errors="replace"),
            )
        kind = ImportFileKind.PDF if extension == "pdf" else ImportFileKind.IMAGE
        return ImportFile(
            name=name,
            kind=kind,
            content=base64.b64encode(data).decode("ascii"),
        )

    async def process_files(self, files: list[ImportFile]) -> list[ImportRow]:
        """Extract and reconcile. Nothing is written here."""
        if self._agent is None:
            self._audit.error(f"Error: {AI_UNAVAILABLE_MESSAGE}")
            return []

        correlation_id = create_correlation_id()
        candidates = await self._agent.extract_from_files(
            files,
            recent=self._ledger.recent_transactions(self._settings.import_context_size),
            correlation_id=correlation_id,
        )
        reconciled = self._reconciler.reconcile(
            candidates,
            self._ledger.transactions,
            require_complete=True,
            correlation_id=correlation_id,
        )
        return self._reconciler.build_import_rows(reconciled)

    @staticmethod
    def revise_row(row: ImportRow, is_checked: bool, **changes: Any) -> ImportRow:
        """
        Apply review-table edits to a row.

        Edited values are parsed as leniently as extractor output, so a
        cleared cell becomes a missing field rather than an error.
        """
        values = row.candidate.model_dump()
        values.update(changes)
        return row.model_copy(update={
            "is_checked": is_checked,
            "candidate": CandidateTransaction.model_validate(values),
        })

    async def import_rows(self, rows: list[ImportRow]) -> int:
        """
        Save the checked rows.

        Returns the number of transactions written.

        Raises:
            ValidationError: a checked row cannot be finalized; nothing was written
        """
        selected = [row for row in rows if row.is_checked]
        if not selected:
            self._audit.error("Error: No transactions selected")
            return 0

        now = utc_now()
        try:
            records = [
                self._normalizer.finalize_import_row(row.candidate, now)
                for row in selected
            ]
        except ValidationError as e:
            _record_rejection(self._ledger, "import_row", e)
            raise
        created = await self._ledger.add_transactions(records)
        return len(created)


class BorrowingFlow:
    """Loans: creation, repayments and the active/paid split."""

    def __init__(
        self,
        ledger: LedgerStore,
        tracker: Optional[BorrowingTracker] = None,
    ):
        self._ledger = ledger
        self._tracker = tracker or BorrowingTracker()

    async def add_loan(self, draft: BorrowingDraft) -> Optional[Borrowing]:
        """
        Raises:
            ValidationError: the loan form is not valid; nothing was written
        """
        try:
            borrowing = self._tracker.create(draft)
        except ValidationError as e:
            _record_rejection(self._ledger, "borrowing", e)
            raise
        if await self._ledger.add_borrowing(borrowing):
            return borrowing
        return None

    async def repay(self, borrowing_id: str, amount: Any) -> Optional[Borrowing]:
        """
        Raises:
            ValidationError: amount is not positive or exceeds the balance
        """
        return await self._ledger.add_repayment(borrowing_id, amount)

    def views(self) -> tuple[list[BorrowingView], list[BorrowingView]]:
        """(active, paid)"""
        return self._tracker.split_by_status(self._ledger.borrowings)


class PeriodReport(BaseModel):
    period: Period
    window: DateWindow
    label: str
    rollup: dict[MainCategory, CategoryTotals]
    can_navigate_next: bool
    transaction_count: int


class ReportFlow:
    """Read-only views over the ledger: dashboard, reports, export, insights."""

    def __init__(
        self,
        ledger: LedgerStore,
        agent: Optional[TransactionExtractionAgent] = None,
        engine: Optional[ReportingEngine] = None,
        budget_evaluator: Optional[BudgetEvaluator] = None,
    ):
        self._ledger = ledger
        self._agent = agent
        self._engine = engine or ReportingEngine()
        self._budgets = budget_evaluator or BudgetEvaluator()

    @property
    def engine(self) -> ReportingEngine:
        return self._engine

    def summary(self) -> LedgerSummary:
        return self._engine.summary(self._ledger.transactions)

    def budget_status(self, now: Optional[datetime] = None) -> list[BudgetProjection]:
        return self._budgets.status_all(self._ledger.transactions, self._ledger.budgets, now)

    def category_finance(self, category: MainCategory) -> CategoryFinance:
        return self._engine.category_finance(self._ledger.transactions, category)

    def period_report(
        self,
        period: Period,
        display_date: datetime,
        now: Optional[datetime] = None,
    ) -> PeriodReport:
        window = self._engine.period_window(period, display_date)
        transactions = self._ledger.transactions
        return PeriodReport(
            period=period,
            window=window,
            label=self._engine.window_label(period, window),
            rollup=self._engine.category_rollup(transactions, window),
            can_navigate_next=self._engine.can_navigate_next(period, display_date, now),
            transaction_count=len(self._engine.transactions_in(transactions, window)),
        )

    def export_csv(self) -> str:
        return export_csv(self._ledger.transactions, self._ledger.settings.currency)

    async def insights(self, window: Optional[DateWindow] = None) -> str:
        if self._agent is None:
            return AI_UNAVAILABLE_MESSAGE
        transactions = self._ledger.transactions
        if window is not None:
            transactions = self._engine.transactions_in(transactions, window)
        return await self._agent.generate_insights(transactions)


class AppComponents(NamedTuple):
    ledger: LedgerStore
    entry: TransactionEntryFlow
    chat: ChatFlow
    bulk_import: BulkImportFlow
    borrowings: BorrowingFlow
    reports: ReportFlow


def create_app_components(
    use_remote: bool = True,
    document_store: Optional[DocumentStoreInterface] = None,
    agent: Optional[TransactionExtractionAgent] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        use_remote: Whether to use the shared Google Sheets document.
                    Falls back to a local in-memory document if it is
                    not configured.
        document_store: Explicit backend (overrides use_remote)
        agent: Explicit extractor; by default one is created if a Gemini
               key is configured

    Returns:
        AppComponents with the ledger store and every flow
    """
    settings = get_settings().app
    tz = settings.tz
    audit_logger = AuditLogger()

    if document_store is None:
        if use_remote:
            try:
                document_store = GoogleSheetsDocumentStore()
            except Exception as e:
                # Storage not configured - continue with a local document
                logger.warning("remote_store_not_configured", error=str(e))
                document_store = InMemoryDocumentStore()
        else:
            document_store = InMemoryDocumentStore()

    if agent is None:
        try:
            agent = TransactionExtractionAgent(audit_logger=audit_logger)
        except Exception as e:
            logger.warning("ai_agent_not_configured", error=str(e))
            agent = None

    tracker = BorrowingTracker(tolerance=Decimal(str(settings.repayment_tolerance)))
    ledger = LedgerStore(document_store, audit_logger=audit_logger, tracker=tracker)
    normalizer = TransactionNormalizer()
    reconciler = TransactionReconciler(tz=tz, audit_logger=audit_logger)
    budgets = BudgetEvaluator(tz=tz)

    return AppComponents(
        ledger=ledger,
        entry=TransactionEntryFlow(ledger, normalizer, budgets),
        chat=ChatFlow(ledger, agent, reconciler, normalizer, budgets),
        bulk_import=BulkImportFlow(ledger, agent, reconciler, normalizer, audit_logger),
        borrowings=BorrowingFlow(ledger, tracker),
        reports=ReportFlow(ledger, agent, ReportingEngine(tz=tz), budgets),
    )
