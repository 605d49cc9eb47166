"""
Core Data Models for the Household Ledger

These models define the strict schemas for everything stored in the shared
ledger document, plus the explicitly partial "draft" and "candidate" shapes
that feed the normalizer.

DESIGN DECISION: Committed records (Transaction, Borrowing, Budget, Template)
have every required field present and validated. Anything incomplete lives
in a draft or candidate model and must pass through the normalizer before it
can reach the ledger.

Wire format keeps the original camelCase keys (mainCategory, recordedBy, ...)
via aliases so existing documents load unchanged.
"""

from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Annotated, Any, Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    ValidationInfo,
    field_validator,
    model_validator,
)


# Amounts are Decimals in memory and plain JSON numbers on the wire.
Money = Annotated[
    Decimal,
    PlainSerializer(lambda v: float(v), return_type=float, when_used="json"),
]


def new_id() -> str:
    """Opaque unique identifier for ledger records."""
    return uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def coerce_instant(value: Any) -> Any:
    """
    Normalize the many date shapes we receive into aware datetimes.

    Accepts datetimes, dates, ISO strings and bare YYYY-MM-DD strings.
    Naive values are taken as UTC. Anything else is returned unchanged
    so pydantic can report it.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return value
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return value


def _enum_text(value: Any) -> str:
    # str() of a str-mixin member is "Class.MEMBER", not its value
    if isinstance(value, Enum):
        value = value.value
    return str(value).strip()


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionType(str, Enum):
    """
    Transaction direction.

    TRANSFER only exists on drafts. A committed transfer is always an
    EXPENSE on the source medium plus an INCOME on the target medium.
    """
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class MainCategory(str, Enum):
    """
    The closed set of top-level categories.

    DESIGN DECISION: Anything outside this set coming from the AI is
    rewritten to PERSONAL with the original suggestion kept in notes.
    """
    GYM = "Gym"
    TYPING_SERVICES = "Typing Services"
    BORROWINGS = "Borrowings"
    PERSONAL = "Personal"
    OTHER = "Other"


class TransactionMedium(str, Enum):
    """Payment instrument a transaction moved through."""
    CASH = "cash"
    CARD = "card"
    MAMO = "mamo"
    TABBY = "tabby"
    OTHER = "other"
    TRANSFER = "transfer"


class User(str, Enum):
    """The people who share this ledger."""
    AJMAL = "Ajmal"
    IRFAN = "Irfan"
    SHEREEN = "Shereen"


class BorrowingStatus(str, Enum):
    """Loan status. Always derived from repayments, never set by hand."""
    ACTIVE = "active"
    PAID = "paid"


class Theme(str, Enum):
    LIGHT = "light"
    DARK = "dark"


class Currency(str, Enum):
    AED = "AED"
    INR = "INR"


class CandidateStatus(str, Enum):
    """Review status of an AI-suggested transaction."""
    NEW = "new"              # Looks like a new entry, included by default
    DUPLICATE = "duplicate"  # Likely already recorded, excluded by default
    REVIEW = "review"        # Missing fields, the user must fill them in


class CompletionType(str, Enum):
    CHAT = "chat"
    CONFIRMATION = "confirmation"
    ERROR = "error"


MAIN_CATEGORIES: list[MainCategory] = list(MainCategory)

PERSONAL_INCOME_SUGGESTIONS = [
    "Salary", "Gift", "Bonus", "Freelance", "Sold Item", "Other",
]

PERSONAL_EXPENSE_SUGGESTIONS = [
    "Groceries", "Fuel", "Rent", "Dining Out", "Shopping", "Utilities",
    "Transport", "Entertainment", "Health", "Bills", "Family", "Other",
]

SUGGESTED_INCOME_TAGS: dict[MainCategory, list[str]] = {
    MainCategory.GYM: ["Daily Sales", "Membership Fee", "Personal Training"],
    MainCategory.TYPING_SERVICES: ["Project Payment", "Advance"],
    MainCategory.PERSONAL: PERSONAL_INCOME_SUGGESTIONS,
}

SUGGESTED_EXPENSE_TAGS: dict[MainCategory, list[str]] = {
    MainCategory.GYM: [
        "Salaries", "Cleaning & General", "Electricity", "Wi-Fi", "Gym App",
        "Employee Expenses", "Pool Maintenance", "General Maintenance",
        "Stationary", "Promotion", "Supplies", "Rent",
    ],
    MainCategory.TYPING_SERVICES: [
        "Software", "Freelancer Payment", "Office Supplies",
        "Domain & Hosting", "Marketing", "Utilities",
    ],
    MainCategory.PERSONAL: PERSONAL_EXPENSE_SUGGESTIONS,
    MainCategory.OTHER: [],
}


def suggested_tags(
    transaction_type: TransactionType,
    category: MainCategory,
) -> list[str]:
    """Sub-category suggestions shown next to the tag field."""
    table = (
        SUGGESTED_INCOME_TAGS
        if transaction_type == TransactionType.INCOME
        else SUGGESTED_EXPENSE_TAGS
    )
    return table.get(category, [])


# =============================================================================
# COMMITTED LEDGER RECORDS
# =============================================================================

class LedgerModel(BaseModel):
    """Shared config: camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class EditLog(LedgerModel):
    """One entry in a transaction's edit history."""

    user: User
    date: datetime = Field(default_factory=utc_now)

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, v: Any) -> Any:
        return coerce_instant(v)


class Transaction(LedgerModel):
    """
    A committed ledger transaction.

    CRITICAL: Only the normalizer and the ledger store create these.
    amount is always > 0 and type is always income or expense.
    """

    id: str = Field(default_factory=new_id)
    type: TransactionType
    main_category: MainCategory = Field(..., alias="mainCategory")
    sub_category: str = Field(default="", alias="subCategory")
    amount: Money = Field(..., gt=0)
    medium: TransactionMedium
    date: datetime
    notes: str = ""
    payee: str = ""
    recorded_by: User = Field(..., alias="recordedBy")
    edits: list[EditLog] = Field(default_factory=list)

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, v: Any) -> Any:
        return coerce_instant(v)

    @field_validator("notes", "payee", "sub_category", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @model_validator(mode="after")
    def validate_type(self) -> "Transaction":
        """Transfers are stored as an expense/income pair."""
        if self.type == TransactionType.TRANSFER:
            raise ValueError(
                "Transfer must be stored as an expense and an income record"
            )
        return self

    @property
    def signed_amount(self) -> Decimal:
        """Amount as it affects a balance: income positive, expense negative."""
        if self.type == TransactionType.INCOME:
            return self.amount
        return -self.amount


class AdditionalCost(LedgerModel):
    """A fee or charge added on top of a loan's principal."""

    description: str = Field(..., min_length=1, max_length=200)
    amount: Money = Field(..., gt=0)


class Repayment(LedgerModel):
    """One payment made against a loan. Repayments are append-only."""

    amount: Money = Field(..., gt=0)
    date: datetime = Field(default_factory=utc_now)

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, v: Any) -> Any:
        return coerce_instant(v)


class Borrowing(LedgerModel):
    """
    A loan taken from a lender.

    status is stored for compatibility but the borrowings tracker
    re-derives it on every load and every repayment.
    """

    id: str = Field(default_factory=new_id)
    lender_name: str = Field(..., min_length=1, max_length=200, alias="lenderName")
    principal: Money = Field(..., gt=0)
    interest: Money = Field(default=Decimal("0"), ge=0)
    additional_costs: list[AdditionalCost] = Field(
        default_factory=list,
        alias="additionalCosts",
    )
    loan_date: datetime = Field(default_factory=utc_now, alias="loanDate")
    return_date: datetime = Field(..., alias="returnDate")
    repayments: list[Repayment] = Field(default_factory=list)
    status: BorrowingStatus = BorrowingStatus.ACTIVE

    @field_validator("loan_date", "return_date", mode="before")
    @classmethod
    def parse_dates(cls, v: Any) -> Any:
        return coerce_instant(v)

    @field_validator("interest", mode="before")
    @classmethod
    def none_interest_is_zero(cls, v: Any) -> Any:
        return Decimal("0") if v is None else v

    @field_validator("additional_costs", mode="before")
    @classmethod
    def none_costs_is_empty(cls, v: Any) -> Any:
        return [] if v is None else v


class Budget(LedgerModel):
    """Monthly spending limit for one main category."""

    id: str = Field(default_factory=new_id)
    category: MainCategory
    limit: Money = Field(..., gt=0)


class TemplateBody(LedgerModel):
    """The reusable part of a transaction: no id, date, or recorder."""

    type: TransactionType
    main_category: MainCategory = Field(..., alias="mainCategory")
    sub_category: str = Field(default="", alias="subCategory")
    amount: Money = Field(..., gt=0)
    medium: TransactionMedium = TransactionMedium.CARD
    notes: str = ""
    payee: str = ""


class Template(LedgerModel):
    """A named transaction template. Names are unique within the ledger."""

    name: str = Field(..., min_length=1, max_length=100)
    transaction: TemplateBody


class LedgerSettings(LedgerModel):
    """Process-wide preferences stored alongside the ledger."""

    theme: Theme = Theme.DARK
    currency: Currency = Currency.AED
    pin: Optional[str] = None
    voice_enabled: bool = Field(default=True, alias="voiceEnabled")


class LedgerSnapshot(LedgerModel):
    """
    The whole shared document.

    Writes are merged at top-level field granularity, so each field is
    always replaced as a complete collection.
    """

    transactions: list[Transaction] = Field(default_factory=list)
    borrowings: list[Borrowing] = Field(default_factory=list)
    settings: LedgerSettings = Field(default_factory=LedgerSettings)
    budgets: list[Budget] = Field(default_factory=list)
    templates: list[Template] = Field(default_factory=list)

    @field_validator("settings", mode="before")
    @classmethod
    def none_settings_is_default(cls, v: Any) -> Any:
        return {} if v is None else v

    def field_document(self, field_name: str) -> Any:
        """Serialize a single top-level field for a merge write."""
        return self.model_dump(
            mode="json",
            by_alias=True,
            exclude_none=True,
            include={field_name},
        )[field_name]


# =============================================================================
# DRAFTS AND CANDIDATES (explicitly partial, never stored)
# =============================================================================

class TransactionDraft(BaseModel):
    """
    A transaction as entered in the form, loaded from a template,
    or proposed by the AI.

    CRITICAL: This is PROPOSED data. Every field is optional and amount
    is kept raw so the normalizer can report a clear error for bad input.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    type: Optional[TransactionType] = None
    main_category: Optional[MainCategory] = None
    sub_category: Optional[str] = None
    amount: Any = Field(default=None, description="Raw amount as entered")
    medium: Optional[TransactionMedium] = None
    date: Optional[datetime] = None
    notes: Optional[str] = None
    payee: Optional[str] = None

    # Transfer legs
    from_medium: Optional[TransactionMedium] = None
    to_medium: Optional[TransactionMedium] = None

    # Optional side effect
    save_as_template: bool = False
    template_name: Optional[str] = None

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, v: Any) -> Any:
        return coerce_instant(v)


class CandidateTransaction(BaseModel):
    """
    An AI-suggested transaction.

    CRITICAL: Untrusted. The model may omit fields, invent categories, or
    return amounts as strings. Unparseable values become None instead of
    failing the whole batch; main_category stays a raw string so the
    reconciler can see (and record) what was suggested.
    """
    model_config = ConfigDict(
        str_strip_whitespace=True,
        populate_by_name=True,
        extra="ignore",
    )

    type: Optional[TransactionType] = None
    main_category: Optional[str] = Field(default=None, alias="mainCategory")
    sub_category: Optional[str] = Field(default=None, alias="subCategory")
    amount: Optional[Decimal] = None
    medium: Optional[TransactionMedium] = None
    date: Optional[datetime] = None
    notes: Optional[str] = None
    payee: Optional[str] = None

    # Bulk import review fields
    status: Optional[CandidateStatus] = None
    source_file: Optional[str] = Field(default=None, alias="sourceFile")
    original_data: Optional[Any] = Field(default=None, alias="originalData")

    @field_validator("type", "medium", mode="before")
    @classmethod
    def lenient_enum(cls, v: Any, info: ValidationInfo) -> Any:
        if v is None:
            return None
        enum = TransactionType if info.field_name == "type" else TransactionMedium
        text = _enum_text(v).lower()
        return text if text in {e.value for e in enum} else None

    @field_validator("amount", mode="before")
    @classmethod
    def lenient_amount(cls, v: Any) -> Any:
        if v is None or isinstance(v, bool):
            return None
        try:
            amount = Decimal(str(v).replace(",", "").strip())
        except InvalidOperation:
            return None
        return amount if amount.is_finite() else None

    @field_validator("date", mode="before")
    @classmethod
    def lenient_date(cls, v: Any) -> Any:
        if v is None:
            return None
        coerced = coerce_instant(v)
        return coerced if isinstance(coerced, datetime) else None

    @field_validator("main_category", mode="before")
    @classmethod
    def category_as_text(cls, v: Any) -> Any:
        if v is None:
            return None
        text = _enum_text(v)
        return text or None

    @property
    def has_required_fields(self) -> bool:
        """A positive amount, a type and a date are the minimum for an importable row."""
        return (
            self.amount is not None
            and self.amount > 0
            and self.type is not None
            and self.date is not None
        )


class AiChatCompletion(BaseModel):
    """Structured reply from the conversational extractor."""

    type: CompletionType
    message: str
    transactions: Optional[list[CandidateTransaction]] = None


class ImportFileKind(str, Enum):
    CSV = "csv"
    IMAGE = "image"
    PDF = "pdf"


class ImportFile(BaseModel):
    """
    A file handed to the bulk extractor.

    content is plain text for CSV files and base64 for images and PDFs.
    """

    name: str
    kind: ImportFileKind
    content: str

    @property
    def mime_type(self) -> str:
        if self.kind == ImportFileKind.CSV:
            return "text/csv"
        if self.kind == ImportFileKind.PDF:
            return "application/pdf"
        extension = self.name.rsplit(".", 1)[-1].lower() if "." in self.name else "png"
        if extension == "jpg":
            extension = "jpeg"
        return f"image/{extension}"


class ImportRow(BaseModel):
    """One row of the bulk import review table."""

    row_id: str = Field(default_factory=new_id)
    is_checked: bool
    candidate: CandidateTransaction


class BorrowingDraft(BaseModel):
    """Loan details as entered in the form, before validation."""
    model_config = ConfigDict(str_strip_whitespace=True)

    lender_name: Optional[str] = None
    principal: Any = None
    interest: Any = None
    additional_costs: list[dict[str, Any]] = Field(default_factory=list)
    loan_date: Optional[datetime] = None
    return_date: Optional[datetime] = None

    @field_validator("loan_date", "return_date", mode="before")
    @classmethod
    def parse_dates(cls, v: Any) -> Any:
        return coerce_instant(v)


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation problem, phrased for the user."""

    field: str = Field(..., description="Field with the issue")
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'duplicate')",
    )
    message: str = Field(..., description="Human-readable description")
    suggested_fix: Optional[str] = None
