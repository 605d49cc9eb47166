"""
Transaction Normalizer

Turns a draft (form input, AI candidate, or template) into complete
transaction records ready for the ledger.

DESIGN DECISION: Every default lives in one table (NormalizerDefaults) and
is applied exactly once, here. Callers never patch missing fields
themselves.

Rules:
- amount must parse as a number greater than zero
- a transfer needs two different mediums and becomes exactly two records:
  an expense on the source medium and an income on the target medium,
  both filed under Personal
- id and recorded_by are NOT assigned here; the ledger store does that
  at commit time
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

from finledger.models.ledger import (
    CandidateTransaction,
    EditLog,
    MainCategory,
    Template,
    TemplateBody,
    Transaction,
    TransactionDraft,
    TransactionMedium,
    TransactionType,
    User,
    new_id,
    utc_now,
)
from finledger.validation.errors import ValidationError


TRANSFER_CATEGORY = MainCategory.PERSONAL


class NormalizerDefaults(BaseModel):
    """The single table of defaults applied to every draft."""

    type: TransactionType = TransactionType.EXPENSE
    main_category: MainCategory = MainCategory.PERSONAL
    sub_category: str = ""
    medium: TransactionMedium = TransactionMedium.CARD
    from_medium: TransactionMedium = TransactionMedium.CARD
    to_medium: TransactionMedium = TransactionMedium.CASH
    notes: str = ""
    payee: str = ""
    date: Optional[datetime] = Field(
        default=None,
        description="Fixed date to use; None means 'now' at normalization time",
    )

    @classmethod
    def for_filter(
        cls,
        active_filter: Optional[MainCategory] = None,
        **overrides: Any,
    ) -> "NormalizerDefaults":
        """Defaults for the entry form: the category follows the current filter."""
        if active_filter is not None:
            overrides.setdefault("main_category", active_filter)
        return cls(**overrides)


# Bulk import rows were never typed by a person, so fill them more loudly.
IMPORT_DEFAULTS = NormalizerDefaults(sub_category="Misc", payee="Unknown")


class NormalizedTransaction(BaseModel):
    """A complete transaction still missing only id and recorded_by."""

    type: TransactionType
    main_category: MainCategory
    sub_category: str = ""
    amount: Decimal = Field(..., gt=0)
    medium: TransactionMedium
    date: datetime
    notes: str = ""
    payee: str = ""

    @model_validator(mode="after")
    def validate_type(self) -> "NormalizedTransaction":
        if self.type == TransactionType.TRANSFER:
            raise ValueError("Transfers must be split before commit")
        return self

    def commit(
        self,
        recorded_by: User,
        transaction_id: Optional[str] = None,
        edits: Optional[list[EditLog]] = None,
    ) -> Transaction:
        """Attach the identity fields and produce the stored record."""
        return Transaction(
            id=transaction_id or new_id(),
            recorded_by=recorded_by,
            edits=list(edits or []),
            **self.model_dump(),
        )


class TransactionNormalizer:
    """
    Builds validated transactions from drafts.

    Stateless apart from the default table; safe to share.
    """

    def __init__(self, defaults: Optional[NormalizerDefaults] = None):
        self._defaults = defaults or NormalizerDefaults()

    @property
    def defaults(self) -> NormalizerDefaults:
        return self._defaults

    @staticmethod
    def parse_amount(raw: Any, field: str = "amount") -> Decimal:
        """
        Parse a user or AI supplied amount.

        Raises ValidationError for missing, non-numeric, or non-positive values.
        """
        if raw is None or isinstance(raw, bool) or (isinstance(raw, str) and not raw.strip()):
            raise ValidationError.single(
                field=field,
                issue_type="missing",
                message="Please enter a valid amount.",
            )
        try:
            amount = Decimal(str(raw).replace(",", "").strip())
        except InvalidOperation:
            raise ValidationError.single(
                field=field,
                issue_type="invalid_format",
                message=f"'{raw}' is not a number.",
                suggested_fix="Enter the amount using digits only, e.g. 150.50",
            )
        if not amount.is_finite() or amount <= 0:
            raise ValidationError.single(
                field=field,
                issue_type="invalid_value",
                message="Amount must be greater than zero.",
            )
        return amount

    def normalize(
        self,
        draft: TransactionDraft,
        defaults: Optional[NormalizerDefaults] = None,
    ) -> list[NormalizedTransaction]:
        """
        Validate a draft and apply defaults.

        Returns one record for income/expense and two for a transfer.
        """
        defaults = defaults or self._defaults
        amount = self.parse_amount(draft.amount)
        transaction_type = draft.type or defaults.type
        when = draft.date or defaults.date or utc_now()
        notes = draft.notes if draft.notes is not None else defaults.notes
        payee = draft.payee if draft.payee is not None else defaults.payee

        if transaction_type == TransactionType.TRANSFER:
            source = draft.from_medium or defaults.from_medium
            target = draft.to_medium or defaults.to_medium
            if source == target:
                raise ValidationError.single(
                    field="to_medium",
                    issue_type="invalid_value",
                    message="Cannot transfer to the same medium.",
                    suggested_fix="Pick a different 'to' medium",
                )
            common = {
                "main_category": TRANSFER_CATEGORY,
                "amount": amount,
                "date": when,
                "notes": notes,
                "payee": payee,
            }
            return [
                NormalizedTransaction(
                    type=TransactionType.EXPENSE,
                    medium=source,
                    sub_category=f"Transfer to {target.value}",
                    **common,
                ),
                NormalizedTransaction(
                    type=TransactionType.INCOME,
                    medium=target,
                    sub_category=f"Transfer from {source.value}",
                    **common,
                ),
            ]

        return [
            NormalizedTransaction(
                type=transaction_type,
                main_category=draft.main_category or defaults.main_category,
                sub_category=(
                    draft.sub_category
                    if draft.sub_category is not None
                    else defaults.sub_category
                ),
                amount=amount,
                medium=draft.medium or defaults.medium,
                date=when,
                notes=notes,
                payee=payee,
            )
        ]

    @staticmethod
    def template_from(
        draft: TransactionDraft,
        normalized: list[NormalizedTransaction],
    ) -> Optional[Template]:
        """
        Build the template requested alongside a transaction, if any.

        Only single (non-transfer) entries with a non-blank name qualify.
        """
        name = (draft.template_name or "").strip()
        if not draft.save_as_template or not name or len(normalized) != 1:
            return None
        record = normalized[0]
        return Template(
            name=name,
            transaction=TemplateBody(
                type=record.type,
                main_category=record.main_category,
                sub_category=record.sub_category,
                amount=record.amount,
                medium=record.medium,
                notes=record.notes,
                payee=record.payee,
            ),
        )

    @staticmethod
    def draft_from_candidate(candidate: CandidateTransaction) -> TransactionDraft:
        """Prefill a form from an AI suggestion. Unknown categories are dropped."""
        category = None
        if candidate.main_category in {c.value for c in MainCategory}:
            category = MainCategory(candidate.main_category)
        return TransactionDraft(
            type=candidate.type,
            main_category=category,
            sub_category=candidate.sub_category,
            amount=candidate.amount,
            medium=candidate.medium,
            date=candidate.date,
            notes=candidate.notes,
            payee=candidate.payee,
        )

    @staticmethod
    def draft_from_template(
        template: Template,
        when: Optional[datetime] = None,
    ) -> TransactionDraft:
        """Load a template; the date stays whatever the form already had."""
        body = template.transaction
        return TransactionDraft(
            type=body.type,
            main_category=body.main_category,
            sub_category=body.sub_category,
            amount=body.amount,
            medium=body.medium,
            date=when,
            notes=body.notes,
            payee=body.payee,
        )

    @staticmethod
    def draft_from_transaction(transaction: Transaction) -> TransactionDraft:
        """Prefill the edit form from a stored transaction."""
        return TransactionDraft(
            type=transaction.type,
            main_category=transaction.main_category,
            sub_category=transaction.sub_category,
            amount=transaction.amount,
            medium=transaction.medium,
            date=transaction.date,
            notes=transaction.notes,
            payee=transaction.payee,
        )

    def finalize_import_row(
        self,
        candidate: CandidateTransaction,
        now: Optional[datetime] = None,
    ) -> NormalizedTransaction:
        """
        Turn a reviewed bulk-import row into a record.

        Uses IMPORT_DEFAULTS; notes fall back to the source file name.
        """
        draft = self.draft_from_candidate(candidate)
        if draft.type == TransactionType.TRANSFER:
            draft = draft.model_copy(update={"type": TransactionType.EXPENSE})
        if not draft.notes and candidate.source_file:
            draft = draft.model_copy(update={"notes": f"Imported from {candidate.source_file}"})
        if not draft.sub_category:
            draft = draft.model_copy(update={"sub_category": None})
        if not draft.payee:
            draft = draft.model_copy(update={"payee": None})
        defaults = IMPORT_DEFAULTS.model_copy(update={"date": now})
        return self.normalize(draft, defaults)[0]
