"""Aggregate roots and their derived summaries.

This module provides the two document types the engine maintains:
- ReconciliationDocument, one per bank account and period
- FilingDocument, one per company, filing type and period

Each document keeps its inputs (records, adjustments, balances entered by the
caller) apart from a single ``derived`` sub-model. The orchestrator replaces
``derived`` wholesale on every recompute; nothing patches it in place.
"""

import re
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field, computed_field, field_validator

from recon_core.models.audit import SideEffectOutcome, WorkflowStamp
from recon_core.models.records import (
    CategoryKey,
    ReconCategory,
    SourceRecord,
    WhtCategory,
)
from recon_core.money import ZERO, to_amount

_PERIOD_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")
_FISCAL_YEAR_RE = re.compile(r"^\d{4}-\d{4}$")


# =============================================================================
# ENUMERATIONS
# =============================================================================


class MatchStatus(str, Enum):
    """Matching state of a bank statement line against the ledger."""

    UNMATCHED = "unmatched"
    MATCHED = "matched"
    PARTIALLY_MATCHED = "partially_matched"
    EXCLUDED = "excluded"


class ErrorSide(str, Enum):
    """Which side of the reconciliation an error entry sits on."""

    BANK_ERROR = "bank_error"
    GL_ERROR = "gl_error"


class ReconciliationStatus(str, Enum):
    """Workflow status of a reconciliation document."""

    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    APPROVED = "approved"


class FilingStatus(str, Enum):
    """Workflow status of a withholding-tax filing."""

    DRAFT = "draft"
    PREPARED = "prepared"
    REVIEWED = "reviewed"
    SUBMITTED = "submitted"
    ACKNOWLEDGED = "acknowledged"
    AMENDED = "amended"


class FilingType(str, Enum):
    """Kinds of withholding filings."""

    WHT_STATEMENT = "wht_statement"
    ANNUAL_STATEMENT = "annual_statement"


# =============================================================================
# SHARED DERIVED TYPES
# =============================================================================


class CategoryBucket(BaseModel):
    """Named accumulator for one category.

    ``secondary_sum`` is schema-specific: tax withheld for WHT buckets, the
    not-yet-posted part of ``gross_sum`` for reconciliation buckets.
    """

    key: CategoryKey
    count: int = Field(default=0, ge=0)
    gross_sum: Decimal = ZERO
    secondary_sum: Decimal = ZERO

    @property
    def withheld_sum(self) -> Decimal:
        """Tax withheld (WHT buckets)."""
        return self.secondary_sum

    @property
    def unposted_sum(self) -> Decimal:
        """Amount not yet reflected in the ledger (reconciliation buckets)."""
        return self.secondary_sum


def _validate_period(v: str) -> str:
    v = v.strip()
    if not _PERIOD_RE.match(v):
        raise ValueError("period must be YYYY-MM format")
    return v


def _validate_fiscal_year(v: str) -> str:
    v = v.strip()
    if not _FISCAL_YEAR_RE.match(v):
        raise ValueError("Fiscal year must be YYYY-YYYY format")
    start, end = (int(part) for part in v.split("-"))
    if end != start + 1:
        raise ValueError("Fiscal year must span consecutive years")
    return v


# =============================================================================
# RECONCILIATION
# =============================================================================


class StatementLine(BaseModel):
    """A bank statement line with its matching state."""

    record: SourceRecord
    status: MatchStatus = MatchStatus.UNMATCHED
    matched_amount: Decimal = Field(
        default=ZERO,
        description="Portion already matched to ledger entries (partially_matched only)",
    )
    matched_entries: list[str] = Field(
        default_factory=list,
        description="Ledger entry references this line was matched against",
    )
    remarks: Optional[str] = None

    @field_validator("matched_amount", mode="before")
    @classmethod
    def coerce_matched_amount(cls, v):
        return to_amount(v)

    @property
    def open_amount(self) -> Decimal:
        """Part of the line still awaiting a ledger counterpart."""
        if self.status == MatchStatus.UNMATCHED:
            return self.record.amount
        if self.status == MatchStatus.PARTIALLY_MATCHED:
            return self.record.amount - self.matched_amount
        return ZERO


class AdjustmentEntry(BaseModel):
    """Manually entered reconciling item placed on a specific adjustment list."""

    record: SourceRecord
    category: ReconCategory = Field(description="Adjustment list the entry belongs to")
    gl_posted: bool = Field(
        default=False,
        description="Already posted to the ledger, so already reflected in its balance",
    )
    journal_reference: Optional[str] = None
    error_side: Optional[ErrorSide] = Field(
        default=None,
        description="For error entries: which side holds the error",
    )
    corrected: bool = False


class ReconciliationDerived(BaseModel):
    """Fields recomputed from scratch on every mutation."""

    buckets: dict[ReconCategory, CategoryBucket] = Field(default_factory=dict)
    reconciling_item_count: int = 0
    reconciling_total: Decimal = ZERO
    adjusted_bank_balance: Optional[Decimal] = None
    adjusted_ledger_balance: Optional[Decimal] = None
    variance: Optional[Decimal] = None
    reconciled: bool = False
    line_counts: dict[MatchStatus, int] = Field(default_factory=dict)


class ReconciliationDocument(BaseModel):
    """Aggregate root for one bank account and period.

    Unique per (account_ref, period). Created in ``draft``; never deleted,
    only superseded by the next period's document.
    """

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "account_ref": "1110-HBL-CURRENT",
                    "period": "2025-01",
                    "fiscal_year": "2024-2025",
                    "reconciliation_date": "2025-01-31",
                    "opening_balance_bank": "4200.00",
                    "opening_balance_ledger": "4200.00",
                    "closing_balance_bank": "5000.00",
                    "closing_balance_ledger": "5285.25",
                }
            ]
        }
    }

    document_id: str = Field(default_factory=lambda: uuid4().hex)
    version: int = Field(default=0, ge=0, description="Incremented on every stored snapshot")
    company_ref: Optional[str] = None
    account_ref: str = Field(description="Ledger account of the bank account")
    period: str = Field(description="Reconciliation period, YYYY-MM")
    fiscal_year: str = Field(description="Fiscal year, YYYY-YYYY")
    reconciliation_date: date

    opening_balance_bank: Decimal = ZERO
    opening_balance_ledger: Decimal = ZERO
    closing_balance_bank: Decimal
    closing_balance_ledger: Optional[Decimal] = Field(
        default=None,
        description="Ledger balance at period end; None until fetched or entered",
    )

    statement_lines: list[StatementLine] = Field(default_factory=list)
    adjustments: list[AdjustmentEntry] = Field(default_factory=list)

    derived: ReconciliationDerived = Field(default_factory=ReconciliationDerived)

    status: ReconciliationStatus = ReconciliationStatus.DRAFT
    history: list[WorkflowStamp] = Field(default_factory=list)
    prepared_by: Optional[str] = None
    prepared_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    notes: Optional[str] = None

    @field_validator(
        "opening_balance_bank",
        "opening_balance_ledger",
        "closing_balance_bank",
        mode="before",
    )
    @classmethod
    def coerce_balance(cls, v):
        return to_amount(v)

    @field_validator("closing_balance_ledger", mode="before")
    @classmethod
    def coerce_optional_balance(cls, v):
        if v is None:
            return v
        return to_amount(v)

    @field_validator("period")
    @classmethod
    def validate_period(cls, v: str) -> str:
        return _validate_period(v)

    @field_validator("fiscal_year")
    @classmethod
    def validate_fiscal_year(cls, v: str) -> str:
        return _validate_fiscal_year(v)

    @property
    def identity(self) -> tuple[str, ...]:
        """Uniqueness key."""
        return (self.account_ref, self.period)

    @property
    def is_editable(self) -> bool:
        """Lines and adjustments may change only before completion."""
        return self.status in (ReconciliationStatus.DRAFT, ReconciliationStatus.IN_PROGRESS)

    @property
    def reconciled(self) -> bool:
        return self.derived.reconciled

    def get_line(self, record_id: str) -> Optional[StatementLine]:
        """Find a statement line by its record id."""
        return next((ln for ln in self.statement_lines if ln.record.record_id == record_id), None)


# =============================================================================
# WITHHOLDING-TAX FILING
# =============================================================================


class PaymentMetadata(BaseModel):
    """Details of the tax deposit made with a submission."""

    amount: Decimal = Field(gt=0, description="Amount deposited with the tax authority")
    payment_date: date
    challan_number: Optional[str] = None
    cpr_number: Optional[str] = Field(default=None, description="Computerized payment receipt")
    psid: Optional[str] = Field(default=None, description="Payment slip id")
    bank_name: Optional[str] = None
    bank_account: Optional[str] = Field(
        default=None,
        description="Ledger account the deposit was paid from",
    )

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, v):
        return to_amount(v)

    @property
    def reference(self) -> Optional[str]:
        """Reference carried onto the ledger posting."""
        return self.challan_number or self.cpr_number


class SubmissionInfo(BaseModel):
    """External-authority submission metadata."""

    submitted_at: datetime
    acknowledgement_number: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    payment: Optional[PaymentMetadata] = None


class FilingTotals(BaseModel):
    """Grand totals of a filing; always the sum of its buckets."""

    record_count: int = 0
    gross: Decimal = ZERO
    withheld: Decimal = ZERO
    net: Decimal = ZERO
    deposited: Decimal = ZERO
    variance: Decimal = ZERO


class FilingDerived(BaseModel):
    """Fields recomputed from scratch on every mutation."""

    buckets: dict[WhtCategory, CategoryBucket] = Field(default_factory=dict)
    totals: FilingTotals = Field(default_factory=FilingTotals)


class FilingDocument(BaseModel):
    """Aggregate root for one company, filing type and period."""

    document_id: str = Field(default_factory=lambda: uuid4().hex)
    version: int = Field(default=0, ge=0)
    company_ref: str
    filing_type: FilingType = FilingType.WHT_STATEMENT
    period: str = Field(description="Filing period, YYYY-MM")
    fiscal_year: str
    period_from: date
    period_to: date
    due_date: date

    records: list[SourceRecord] = Field(default_factory=list)
    derived: FilingDerived = Field(default_factory=FilingDerived)

    status: FilingStatus = FilingStatus.DRAFT
    submission: Optional[SubmissionInfo] = None
    posting: SideEffectOutcome = Field(default_factory=SideEffectOutcome.not_requested)
    history: list[WorkflowStamp] = Field(default_factory=list)
    prepared_by: Optional[str] = None
    prepared_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    submitted_by: Optional[str] = None
    submitted_at: Optional[datetime] = None
    notes: Optional[str] = None

    @field_validator("period")
    @classmethod
    def validate_period(cls, v: str) -> str:
        return _validate_period(v)

    @field_validator("fiscal_year")
    @classmethod
    def validate_fiscal_year(cls, v: str) -> str:
        return _validate_fiscal_year(v)

    @field_validator("period_to")
    @classmethod
    def period_to_after_period_from(cls, v, info):
        """Validate that period_to is not before period_from."""
        if "period_from" in info.data and v < info.data["period_from"]:
            raise ValueError("period_to must be on or after period_from")
        return v

    @computed_field
    @property
    def month(self) -> int:
        """Calendar month of the period."""
        return int(self.period.split("-")[1])

    @property
    def identity(self) -> tuple[str, ...]:
        """Uniqueness key."""
        return (self.company_ref, self.filing_type.value, self.period)

    @property
    def is_editable(self) -> bool:
        """Records may change only until the filing is reviewed."""
        return self.status in (FilingStatus.DRAFT, FilingStatus.PREPARED)

    @property
    def is_submitted(self) -> bool:
        return self.status in (FilingStatus.SUBMITTED, FilingStatus.ACKNOWLEDGED)

    def is_overdue(self, today: date) -> bool:
        """Past due and not yet with the tax authority."""
        return (
            self.due_date < today
            and not self.is_submitted
            and self.status != FilingStatus.AMENDED
        )
