"""Source records and category keys.

This module provides the ingestion-side data structures:
- SourceRecord, the immutable fact every computation starts from
- The closed category enumerations for both document schemas
- ingest_record / ingest_records, which turn untrusted mappings into
  SourceRecords or raise a structured ValidationError

Records are referenced by documents but never mutated by the engine.
"""

from collections.abc import Iterable, Mapping
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Union
from uuid import uuid4

import pydantic
import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator

from recon_core.exceptions import ValidationError
from recon_core.money import ZERO, to_amount, to_decimal

logger = structlog.get_logger(__name__)


class Schema(str, Enum):
    """The two category schemas sharing the engine."""

    RECONCILIATION = "reconciliation"
    WHT = "wht"


class ReconCategory(str, Enum):
    """Reconciling-item buckets for bank-to-ledger reconciliation."""

    DEPOSITS_IN_TRANSIT = "deposits_in_transit"
    OUTSTANDING_CHECKS = "outstanding_checks"
    BANK_CHARGES = "bank_charges"
    INTEREST_EARNED = "interest_earned"
    RETURNED_CHECKS = "returned_checks"
    ERRORS = "errors"


class WhtCategory(str, Enum):
    """Withholding-tax section buckets."""

    SECTION_153_1A = "section_153_1a"
    SECTION_153_1B = "section_153_1b"
    SECTION_153_1C = "section_153_1c"
    SECTION_233 = "section_233"
    SECTION_234 = "section_234"
    SECTION_235 = "section_235"
    SALARY = "salary"
    OTHER = "other"


CategoryKey = Union[ReconCategory, WhtCategory]


class OriginKind(str, Enum):
    """Where a source record came from."""

    BANK_LINE = "bank_line"
    VENDOR_PAYMENT = "vendor_payment"
    PAYROLL_RUN = "payroll_run"
    ADJUSTMENT = "adjustment"
    LEDGER_ENTRY = "ledger_entry"


class RecordOrigin(BaseModel):
    """Reference back to the system that produced a record."""

    model_config = ConfigDict(frozen=True)

    kind: OriginKind = Field(description="Type of originating document")
    reference: Optional[str] = Field(
        default=None,
        description="Identifier in the originating system (line ref, payment id, payroll id)",
    )


class Counterparty(BaseModel):
    """Payee details carried on WHT records for vendor-wise reporting."""

    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    ntn: Optional[str] = Field(default=None, description="National tax number")
    cnic: Optional[str] = Field(default=None, description="National identity number")

    @property
    def key(self) -> Optional[str]:
        """Grouping key: tax number, else identity number, else name."""
        return self.ntn or self.cnic or self.name


class SourceRecord(BaseModel):
    """An immutable-once-ingested financial fact.

    Amounts are signed decimals. For statement lines a credit to the account
    is positive and a debit negative; for WHT records ``amount`` is the gross
    payment and ``withheld_amount`` the tax deducted at source.
    """

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "examples": [
                {
                    "record_id": "bl-2025-01-0007",
                    "amount": "-25.00",
                    "timestamp": "2025-01-31T00:00:00",
                    "descriptor": "SERVICE CHARGE JAN",
                    "category_tag": "bank_charge",
                    "origin": {"kind": "bank_line", "reference": "STMT-01/7"},
                }
            ]
        },
    )

    record_id: str = Field(
        default_factory=lambda: uuid4().hex,
        description="Stable identifier used for removal and edits",
    )
    amount: Decimal = Field(description="Signed amount in cents precision")
    timestamp: datetime = Field(description="When the fact occurred or was posted")
    descriptor: str = Field(default="", description="Free-text description from the source")
    category_tag: Optional[str] = Field(
        default=None,
        description="Explicit category tag supplied by the source; wins over text inference",
    )
    origin: RecordOrigin = Field(
        default_factory=lambda: RecordOrigin(kind=OriginKind.ADJUSTMENT),
        description="Originating document reference",
    )
    withheld_amount: Decimal = Field(
        default=ZERO,
        description="Tax withheld at source (WHT schema only)",
    )
    rate: Optional[Decimal] = Field(default=None, description="WHT rate in percent, if known")
    counterparty: Optional[Counterparty] = None

    @field_validator("amount", "withheld_amount", mode="before")
    @classmethod
    def coerce_amount_to_decimal(cls, v):
        """Coerce raw amounts to Decimal cents."""
        return to_amount(v)

    @field_validator("rate", mode="before")
    @classmethod
    def coerce_rate(cls, v):
        """Coerce rate to Decimal when present."""
        if v is None:
            return v
        return to_decimal(v)

    @field_validator("timestamp", mode="before")
    @classmethod
    def coerce_timestamp(cls, v):
        """Accept plain dates and ISO date strings as midnight timestamps."""
        if isinstance(v, datetime):
            return v
        if isinstance(v, date):
            return datetime.combine(v, time.min)
        if isinstance(v, str) and len(v.strip()) == 10:
            return datetime.combine(date.fromisoformat(v.strip()), time.min)
        return v

    @field_validator("category_tag")
    @classmethod
    def normalize_tag(cls, v: Optional[str]) -> Optional[str]:
        """Blank tags count as no tag."""
        if v is None or not v.strip():
            return None
        return v.strip()

    @property
    def is_credit(self) -> bool:
        """Returns True if the record increases the account."""
        return self.amount > 0

    @property
    def net_amount(self) -> Decimal:
        """Gross amount less tax withheld."""
        return self.amount - self.withheld_amount


def _first_error(exc: pydantic.ValidationError) -> tuple[str, Any, str]:
    err = exc.errors()[0]
    field = ".".join(str(part) for part in err.get("loc", ())) or "record"
    return field, err.get("input"), err.get("msg", "invalid value")


def ingest_record(raw: Mapping[str, Any]) -> SourceRecord:
    """Validate an untrusted mapping into a SourceRecord.

    Accepts either ``amount`` or statement-style ``debit``/``credit`` columns
    (``amount = credit - debit``) and ``date`` as an alias of ``timestamp``.

    Raises:
        ValidationError: If the amount is not numeric, the timestamp is
            missing, or any other field is malformed.
    """
    data = dict(raw)
    if "timestamp" not in data and "date" in data:
        data["timestamp"] = data.pop("date")
    if data.get("timestamp") is None:
        raise ValidationError(
            "Source record is missing its timestamp",
            field="timestamp",
            constraint="Required",
        )

    if "amount" not in data and ("debit" in data or "credit" in data):
        try:
            credit = to_decimal(data.pop("credit", None) or 0)
            debit = to_decimal(data.pop("debit", None) or 0)
        except ValueError as e:
            raise ValidationError(
                str(e),
                field="amount",
                constraint="Debit and credit must be finite decimal numbers",
            ) from e
        data["amount"] = credit - debit

    try:
        return SourceRecord.model_validate(data)
    except pydantic.ValidationError as e:
        field, value, msg = _first_error(e)
        raise ValidationError(
            f"Invalid source record: {field}: {msg}",
            field=field,
            value=value if isinstance(value, (str, int, float, Decimal)) else None,
            constraint=msg,
            details={"error_count": e.error_count()},
        ) from e


def ingest_records(batch: Iterable[Union[Mapping[str, Any], SourceRecord]]) -> list[SourceRecord]:
    """Validate a batch all-or-nothing.

    Already-built SourceRecords pass through unchanged. The first malformed
    entry aborts the whole batch with its index recorded in ``details``.
    """
    records: list[SourceRecord] = []
    for index, item in enumerate(batch):
        if isinstance(item, SourceRecord):
            records.append(item)
            continue
        try:
            records.append(ingest_record(item))
        except ValidationError as e:
            e.details["index"] = index
            logger.warning("ingest_rejected", index=index, field=e.field, reason=e.constraint)
            raise
    return records
