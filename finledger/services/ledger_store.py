"""
Ledger Store

Owns the in-memory snapshot of the shared ledger document and is the ONLY
component that writes to it.

DESIGN DECISION: Local state advances only after the backend accepts a
write. Every mutation:
1. Builds the new collection from the current snapshot
2. Merges just the touched top-level fields into the document
3. On success, swaps in the new snapshot and reports one success notice
4. On failure, keeps the old snapshot and reports one error notice

One write at a time: while a write is in flight further mutations are
refused with a busy error.

Remote changes arrive through the document store subscription and
replace the snapshot wholesale.
"""

import asyncio
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Iterable, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from finledger.audit import AuditLogger
from finledger.borrowings import BorrowingTracker
from finledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from finledger.models.ledger import (
    Borrowing,
    Budget,
    EditLog,
    LedgerSettings,
    LedgerSnapshot,
    MainCategory,
    Template,
    Transaction,
    User,
)
from finledger.services.storage.interface import (
    DocumentStoreInterface,
    RemoteUnavailableError,
    StorageError,
    StoreBusyError,
    Unsubscribe,
    WriteOutcome,
)
from finledger.validation.errors import ValidationError
from finledger.validation.normalizer import NormalizedTransaction


UNIVERSAL_PIN = "0000"

_COLLECTIONS = {
    "transactions": Transaction,
    "borrowings": Borrowing,
    "budgets": Budget,
    "templates": Template,
}


class ConnectionStatus(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    OFFLINE = "offline"


class LedgerStore:
    """
    Single writer for the shared ledger.

    Args:
        document_store: Backend holding the ledger document
        audit_logger: Activity sink; every mutation reports exactly one notice
        tracker: Loan arithmetic used when loading and repaying borrowings
    """

    def __init__(
        self,
        document_store: DocumentStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        tracker: Optional[BorrowingTracker] = None,
    ):
        self._store = document_store
        self._audit = audit_logger or AuditLogger()
        self._tracker = tracker or BorrowingTracker()
        self._logger = structlog.get_logger("finledger.ledger")

        self._snapshot = LedgerSnapshot()
        self._status = ConnectionStatus.CONNECTING
        self._is_saving = False
        self._current_user: Optional[User] = None
        self._last_error: Optional[str] = None
        self._unsubscribe: Optional[Unsubscribe] = None
        self._init_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> LedgerSnapshot:
        return self._snapshot.model_copy(deep=True)

    @property
    def transactions(self) -> list[Transaction]:
        return list(self._snapshot.transactions)

    @property
    def borrowings(self) -> list[Borrowing]:
        return list(self._snapshot.borrowings)

    @property
    def budgets(self) -> list[Budget]:
        return list(self._snapshot.budgets)

    @property
    def templates(self) -> list[Template]:
        return list(self._snapshot.templates)

    @property
    def settings(self) -> LedgerSettings:
        return self._snapshot.settings

    @property
    def connection_status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_online(self) -> bool:
        return self._status != ConnectionStatus.OFFLINE

    @property
    def is_saving(self) -> bool:
        return self._is_saving

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def current_user(self) -> Optional[User]:
        return self._current_user

    @property
    def audit(self) -> AuditLogger:
        return self._audit

    def recent_transactions(self, limit: int) -> list[Transaction]:
        """Newest first."""
        ordered = sorted(self._snapshot.transactions, key=lambda t: t.date, reverse=True)
        return ordered[:limit]

    def find_transaction(self, transaction_id: str) -> Optional[Transaction]:
        return next((t for t in self._snapshot.transactions if t.id == transaction_id), None)

    def find_borrowing(self, borrowing_id: str) -> Optional[Borrowing]:
        return next((b for b in self._snapshot.borrowings if b.id == borrowing_id), None)

    def find_template(self, name: str) -> Optional[Template]:
        return next((t for t in self._snapshot.templates if t.name == name), None)

    # ------------------------------------------------------------------
    # Synchronization
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Subscribe to the backend. Safe to call more than once."""
        if self._unsubscribe is None:
            self._unsubscribe = self._store.subscribe(self._on_document, self._on_error)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def refresh(self) -> LedgerSnapshot:
        """One-shot read; creates the document with defaults if it is missing."""
        try:
            document = await self._store.read()
        except StorageError as e:
            self._on_error(e)
            return self.snapshot

        self._apply_document(document)
        if document is None:
            await self._initialize_document()
        return self.snapshot

    def _on_document(self, document: Optional[dict[str, Any]]) -> None:
        self._apply_document(document)
        if document is None and self._init_task is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                self._logger.info("document_missing_no_loop")
                return
            self._init_task = loop.create_task(self._initialize_document())

    def _on_error(self, error: StorageError) -> None:
        self._last_error = str(error)
        if isinstance(error, RemoteUnavailableError):
            self._status = ConnectionStatus.OFFLINE
            self._audit.log(AuditEvent(
                event_type=AuditEventType.STORE_UNAVAILABLE,
                severity=AuditSeverity.WARNING,
                entity_type="document",
                description="Shared ledger unreachable, working from the local snapshot",
                error_message=str(error),
            ))
        else:
            self._audit.log_error("storage_error", str(error))

    def _apply_document(self, document: Optional[dict[str, Any]]) -> None:
        was_offline = self._status == ConnectionStatus.OFFLINE
        self._snapshot = self.parse_document(document)
        self._status = ConnectionStatus.CONNECTED
        self._last_error = None
        self._audit.log(AuditEventBuilder.collection_changed(
            event_type=AuditEventType.SNAPSHOT_RECEIVED,
            entity_type="document",
            entity_id=None,
            description=(
                f"Snapshot with {len(self._snapshot.transactions)} transactions"
                if document is not None
                else "No ledger document yet, using defaults"
            ),
            actor=None,
        ))
        if was_offline:
            self._audit.success("Back online! All data synced.")

    async def _initialize_document(self) -> None:
        try:
            await self._store.merge(LedgerSnapshot().to_document())
        except StorageError as e:
            self._on_error(e)

    def parse_document(self, document: Optional[dict[str, Any]]) -> LedgerSnapshot:
        """
        Build a snapshot from raw document data.

        Malformed records are skipped (and logged) instead of failing the
        whole load. Loan statuses are recomputed.
        """
        if not document:
            return LedgerSnapshot()

        values: dict[str, list] = {}
        for field, model in _COLLECTIONS.items():
            raw_items = document.get(field) or []
            if not isinstance(raw_items, list):
                self._logger.warning("field_not_a_list", field=field)
                raw_items = []
            items = []
            for raw in raw_items:
                try:
                    items.append(model.model_validate(raw))
                except PydanticValidationError as e:
                    self._logger.warning(
                        "skipped_invalid_record",
                        field=field,
                        error=str(e),
                    )
            values[field] = items

        values["borrowings"] = [self._tracker.refresh(b) for b in values["borrowings"]]

        try:
            settings = LedgerSettings.model_validate(document.get("settings") or {})
        except PydanticValidationError as e:
            self._logger.warning("invalid_settings_replaced", error=str(e))
            settings = LedgerSettings()

        return LedgerSnapshot(settings=settings, **values)

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def _commit(
        self,
        changes: dict[str, Any],
        success_message: str,
        event: Optional[AuditEvent] = None,
        extra_events: Iterable[AuditEvent] = (),
    ) -> bool:
        if self._is_saving:
            busy = StoreBusyError("Another change is still being saved")
            self._audit.error(f"Error: {busy}")
            return False

        self._is_saving = True
        try:
            updated = self._snapshot.model_copy(update=changes)
            partial = {name: updated.field_document(name) for name in changes}
            outcome = await self._store.merge(partial)
        except StorageError as e:
            offline = isinstance(e, RemoteUnavailableError)
            if offline:
                self._status = ConnectionStatus.OFFLINE
            self._last_error = str(e)
            self._audit.log(AuditEventBuilder.store_write_failed(
                fields=list(changes),
                error_message=str(e),
                offline=offline,
            ))
            self._audit.error(f"Error: {e}")
            return False
        finally:
            self._is_saving = False

        self._snapshot = updated
        if outcome == WriteOutcome.QUEUED:
            self._status = ConnectionStatus.OFFLINE
            success_message = f"{success_message} (Saved offline)"
        elif self._status != ConnectionStatus.CONNECTED:
            self._status = ConnectionStatus.CONNECTED

        for logged in ([event] if event is not None else []) + list(extra_events):
            self._audit.log(logged)
        self._audit.success(success_message)
        return True

    def _require_user(self) -> Optional[User]:
        if self._current_user is None:
            self._audit.error("Error: Please log in first")
        return self._current_user

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def add_transactions(
        self,
        records: Iterable[NormalizedTransaction],
        correlation_id=None,
        template: Optional[Template] = None,
    ) -> list[Transaction]:
        """
        Commit normalized records as one write.

        A template, when given, is saved in the same write and reported in
        the same notice. A taken template name does not block the records.

        Returns the stored transactions, or an empty list if nothing was saved.
        """
        records = list(records)
        user = self._require_user()
        if user is None:
            return []
        if not records:
            self._audit.error("Error: Nothing to add")
            return []

        created = [record.commit(recorded_by=user) for record in records]
        combined = sorted(
            [*created, *self._snapshot.transactions],
            key=lambda t: t.date,
            reverse=True,
        )
        message = "Transaction Added" if len(created) == 1 else f"{len(created)} transactions added"
        event = AuditEventBuilder.transactions_added(
            [t.id for t in created],
            actor=user.value,
            correlation_id=correlation_id,
        )
        changes: dict[str, Any] = {"transactions": combined}
        extra: list[AuditEvent] = []
        if template is not None:
            if self.find_template(template.name) is not None:
                message = f"{message}; template name already exists"
            else:
                changes["templates"] = [*self._snapshot.templates, template]
                extra.append(self._template_saved_event(template))
                message = f"{message} and template saved"

        if await self._commit(changes, message, event, extra):
            return created
        return []

    async def update_transaction(self, transaction: Transaction) -> bool:
        """Replace a transaction by id and append an edit-log entry."""
        user = self._require_user()
        if user is None:
            return False
        if self.find_transaction(transaction.id) is None:
            self._audit.error("Error: Transaction not found")
            return False

        edited = transaction.model_copy(update={
            "edits": [*transaction.edits, EditLog(user=user)],
        })
        updated = [
            edited if t.id == transaction.id else t
            for t in self._snapshot.transactions
        ]
        updated.sort(key=lambda t: t.date, reverse=True)
        event = AuditEventBuilder.transaction_changed(
            AuditEventType.TRANSACTION_UPDATED,
            transaction.id,
            actor=user.value,
        )
        return await self._commit({"transactions": updated}, "Transaction Updated", event)

    async def delete_transaction(self, transaction_id: str) -> bool:
        user = self._require_user()
        if user is None:
            return False
        if self.find_transaction(transaction_id) is None:
            self._audit.error("Error: Transaction not found")
            return False

        remaining = [t for t in self._snapshot.transactions if t.id != transaction_id]
        event = AuditEventBuilder.transaction_changed(
            AuditEventType.TRANSACTION_DELETED,
            transaction_id,
            actor=user.value,
        )
        return await self._commit({"transactions": remaining}, "Transaction Deleted", event)

    # ------------------------------------------------------------------
    # Borrowings
    # ------------------------------------------------------------------

    def _actor(self) -> Optional[str]:
        return self._current_user.value if self._current_user else None

    async def add_borrowing(self, borrowing: Borrowing) -> bool:
        borrowing = self._tracker.refresh(borrowing)
        event = AuditEventBuilder.collection_changed(
            AuditEventType.BORROWING_ADDED,
            "borrowing",
            borrowing.id,
            f"Loan from {borrowing.lender_name} recorded",
            actor=self._actor(),
        )
        return await self._commit(
            {"borrowings": [*self._snapshot.borrowings, borrowing]},
            "Borrowing Added",
            event,
        )

    async def update_borrowing(self, borrowing: Borrowing) -> bool:
        if self.find_borrowing(borrowing.id) is None:
            self._audit.error("Error: Borrowing not found")
            return False

        borrowing = self._tracker.refresh(borrowing)
        updated = [
            borrowing if b.id == borrowing.id else b
            for b in self._snapshot.borrowings
        ]
        event = AuditEventBuilder.collection_changed(
            AuditEventType.BORROWING_UPDATED,
            "borrowing",
            borrowing.id,
            f"Loan from {borrowing.lender_name} updated",
            actor=self._actor(),
        )
        return await self._commit({"borrowings": updated}, "Borrowing Updated", event)

    async def add_repayment(self, borrowing_id: str, amount: Any) -> Optional[Borrowing]:
        """
        Record a repayment.

        Raises:
            ValidationError: amount is not positive or exceeds the balance
        """
        borrowing = self.find_borrowing(borrowing_id)
        if borrowing is None:
            self._audit.error("Error: Borrowing not found")
            return None

        repaid = self._tracker.add_repayment(borrowing, amount)
        updated = [
            repaid if b.id == borrowing_id else b
            for b in self._snapshot.borrowings
        ]
        event = AuditEventBuilder.repayment_added(
            borrowing_id=borrowing_id,
            amount=str(repaid.repayments[-1].amount),
            balance=str(self._tracker.outstanding_balance(repaid)),
            status=repaid.status.value,
            actor=self._actor(),
        )
        if await self._commit({"borrowings": updated}, "Repayment Added", event):
            return repaid
        return None

    # ------------------------------------------------------------------
    # Settings, budgets, templates
    # ------------------------------------------------------------------

    async def update_settings(self, **changes: Any) -> bool:
        """
        Merge changes into the settings.

        Raises:
            ValidationError: a value is not valid for its setting
        """
        current = self._snapshot.settings.model_dump()
        try:
            settings = LedgerSettings.model_validate({**current, **changes})
        except PydanticValidationError as e:
            raise ValidationError.single(
                field="settings",
                issue_type="invalid_value",
                message=f"Invalid settings: {e.errors()[0]['msg']}",
            )
        event = AuditEventBuilder.collection_changed(
            AuditEventType.SETTINGS_UPDATED,
            "settings",
            None,
            f"Settings changed: {', '.join(sorted(changes))}",
            actor=self._actor(),
        )
        return await self._commit({"settings": settings}, "Settings Updated", event)

    async def add_budget(self, category: MainCategory, limit: Any) -> Optional[Budget]:
        """
        Add a monthly budget.

        Raises:
            ValidationError: category already budgeted or limit not positive
        """
        if any(b.category == category for b in self._snapshot.budgets):
            raise ValidationError.single(
                field="category",
                issue_type="duplicate",
                message=f"A budget for {category.value} already exists.",
            )
        try:
            value = Decimal(str(limit).replace(",", "").strip())
        except InvalidOperation:
            value = Decimal("0")
        if not value.is_finite() or value <= 0:
            raise ValidationError.single(
                field="limit",
                issue_type="invalid_value",
                message="Budget limit must be greater than zero.",
            )

        budget = Budget(category=category, limit=value)
        event = AuditEventBuilder.collection_changed(
            AuditEventType.BUDGET_ADDED,
            "budget",
            budget.id,
            f"Budget of {value} for {category.value}",
            actor=self._actor(),
        )
        if await self._commit({"budgets": [*self._snapshot.budgets, budget]}, "Budget Added", event):
            return budget
        return None

    async def delete_budget(self, budget_id: str) -> bool:
        remaining = [b for b in self._snapshot.budgets if b.id != budget_id]
        event = AuditEventBuilder.collection_changed(
            AuditEventType.BUDGET_DELETED,
            "budget",
            budget_id,
            "Budget removed",
            actor=self._actor(),
        )
        return await self._commit({"budgets": remaining}, "Budget Deleted", event)

    async def add_template(self, template: Template) -> bool:
        """Returns False (with an error notice) when the name is taken."""
        if self.find_template(template.name) is not None:
            self._audit.error("Template name already exists!")
            return False

        return await self._commit(
            {"templates": [*self._snapshot.templates, template]},
            "Template Saved",
            self._template_saved_event(template),
        )

    def _template_saved_event(self, template: Template) -> AuditEvent:
        return AuditEventBuilder.collection_changed(
            AuditEventType.TEMPLATE_SAVED,
            "template",
            template.name,
            f"Template '{template.name}' saved",
            actor=self._actor(),
        )

    async def delete_template(self, name: str) -> bool:
        remaining = [t for t in self._snapshot.templates if t.name != name]
        event = AuditEventBuilder.collection_changed(
            AuditEventType.TEMPLATE_DELETED,
            "template",
            name,
            f"Template '{name}' deleted",
            actor=self._actor(),
        )
        return await self._commit({"templates": remaining}, "Template Deleted", event)

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def login(self, user: User, pin: str) -> bool:
        """Accepts the universal PIN or the PIN stored in settings."""
        configured = self._snapshot.settings.pin
        if pin != UNIVERSAL_PIN and not (configured and pin == configured):
            self._logger.info("login_rejected", user=user.value)
            return False

        self._current_user = user
        self._audit.log(AuditEventBuilder.collection_changed(
            AuditEventType.USER_LOGGED_IN,
            "session",
            None,
            f"{user.value} logged in",
            actor=user.value,
        ))
        return True

    def logout(self) -> None:
        if self._current_user is not None:
            self._audit.log(AuditEventBuilder.collection_changed(
                AuditEventType.USER_LOGGED_OUT,
                "session",
                None,
                f"{self._current_user.value} logged out",
                actor=self._current_user.value,
            ))
        self._current_user = None
