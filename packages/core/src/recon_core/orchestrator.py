"""Recomputation and document mutations.

Every mutation (adding or removing statement lines, adjustments or filing
records, entering balances) goes through this module and ends in
``recompute``, which throws the old ``derived`` sub-model away and rebuilds
it from the full current input set:

    classify -> aggregate -> balance engine -> invariant checks

Derived fields are never patched incrementally. All functions return a new
document; the one passed in is left as it was.
"""

from collections import Counter
from collections.abc import Iterable, Mapping
from datetime import date
from decimal import Decimal
from typing import Any, Optional, Union

import structlog

from recon_core.aggregator import Aggregation, ClassifiedRecord, aggregate
from recon_core.balance import BalanceEngine
from recon_core.classifier import RECONCILIATION_RULES, WHT_RULES, classify
from recon_core.exceptions import DocumentLockedError, RoundingInvariantViolation, ValidationError
from recon_core.ledger import AccountType, LedgerProtocol, fetch_ledger_balance
from recon_core.logging_config import document_context
from recon_core.models.documents import (
    AdjustmentEntry,
    ErrorSide,
    FilingDerived,
    FilingDocument,
    FilingType,
    MatchStatus,
    ReconciliationDerived,
    ReconciliationDocument,
    StatementLine,
)
from recon_core.models.records import ReconCategory, SourceRecord, ingest_record, ingest_records
from recon_core.money import ZERO, round2, to_amount
from recon_core.periods import filing_period, fiscal_year_for, month_end, period_key

logger = structlog.get_logger(__name__)

Document = Union[ReconciliationDocument, FilingDocument]
RawRecord = Union[Mapping[str, Any], SourceRecord]


# =============================================================================
# RECOMPUTE
# =============================================================================


def reconciling_items(document: ReconciliationDocument) -> list[ClassifiedRecord]:
    """The reconciling set of a reconciliation, each item with its category.

    Adjustments keep the category of the list they were entered on. Open
    statement lines are run through the classifier and contribute their open
    amount: the full amount when unmatched, the residual when partially
    matched. Bank lines are by definition not in the ledger yet, so their
    whole contribution is unposted.

    Each contribution is taken as a magnitude, whatever sign it was entered
    or printed with; the category alone sets its direction in the balance
    equations. Errors keep their sign since they never enter them.
    """
    items = []
    for entry in document.adjustments:
        amount = _contribution(entry.category, entry.record.amount)
        items.append(
            ClassifiedRecord(
                record=entry.record,
                category=entry.category,
                amount=amount,
                secondary=ZERO if entry.gl_posted else amount,
            )
        )
    for line in document.statement_lines:
        if line.status not in (MatchStatus.UNMATCHED, MatchStatus.PARTIALLY_MATCHED):
            continue
        category = classify(line.record, RECONCILIATION_RULES)
        amount = _contribution(category, line.open_amount)
        items.append(
            ClassifiedRecord(
                record=line.record,
                category=category,
                amount=amount,
                secondary=amount,
            )
        )
    return items


def _contribution(category: ReconCategory, amount: Decimal) -> Decimal:
    return amount if category == ReconCategory.ERRORS else abs(amount)


def _check_equal(expected: Decimal, actual: Decimal, scope: str, document_id: str) -> None:
    if expected != actual:
        logger.critical(
            "rounding_invariant_violation",
            document_id=document_id,
            scope=scope,
            expected=str(expected),
            actual=str(actual),
        )
        raise RoundingInvariantViolation(
            f"Derived totals drifted from their inputs ({scope})",
            expected=expected,
            actual=actual,
            scope=scope,
            details={"document_id": document_id},
        )


def _check_coverage(aggregation: Aggregation, item_count: int, document_id: str) -> None:
    _check_equal(round2(aggregation.exact_total), aggregation.grand_total, "buckets_vs_records", document_id)
    _check_equal(
        round2(aggregation.exact_secondary),
        aggregation.grand_secondary,
        "secondary_buckets_vs_records",
        document_id,
    )
    bucket_count = sum(b.count for b in aggregation.buckets.values())
    _check_equal(Decimal(item_count), Decimal(bucket_count), "bucket_counts_vs_records", document_id)


def _recompute_reconciliation(
    document: ReconciliationDocument,
    engine: BalanceEngine,
) -> ReconciliationDocument:
    items = reconciling_items(document)
    aggregation = aggregate(items, RECONCILIATION_RULES.categories)
    _check_coverage(aggregation, len(items), document.document_id)

    balances = engine.reconcile(
        document.closing_balance_bank,
        document.closing_balance_ledger,
        aggregation.buckets,
    )
    if balances.variance is not None:
        _check_equal(
            balances.variance,
            balances.adjusted_bank_balance - balances.adjusted_ledger_balance,
            "balance_equation",
            document.document_id,
        )

    line_counts = Counter(line.status for line in document.statement_lines)
    derived = ReconciliationDerived(
        buckets=aggregation.buckets,
        reconciling_item_count=aggregation.record_count,
        reconciling_total=aggregation.grand_total,
        adjusted_bank_balance=balances.adjusted_bank_balance,
        adjusted_ledger_balance=balances.adjusted_ledger_balance,
        variance=balances.variance,
        reconciled=balances.reconciled,
        line_counts={status: line_counts.get(status, 0) for status in MatchStatus},
    )
    logger.info(
        "recompute_complete",
        document_id=document.document_id,
        schema="reconciliation",
        items=aggregation.record_count,
        variance=None if derived.variance is None else str(derived.variance),
        reconciled=derived.reconciled,
    )
    return document.model_copy(update={"derived": derived})


def _recompute_filing(document: FilingDocument, engine: BalanceEngine) -> FilingDocument:
    items = [
        ClassifiedRecord(
            record=record,
            category=classify(record, WHT_RULES),
            secondary=record.withheld_amount,
        )
        for record in document.records
    ]
    aggregation = aggregate(items, WHT_RULES.categories)
    _check_coverage(aggregation, len(items), document.document_id)

    deposited = ZERO
    if document.submission is not None and document.submission.payment is not None:
        deposited = document.submission.payment.amount
    totals = engine.filing_totals(aggregation, deposited).totals

    _check_equal(
        sum((r.amount for r in document.records), ZERO),
        totals.gross,
        "gross_vs_records",
        document.document_id,
    )
    _check_equal(
        sum((r.withheld_amount for r in document.records), ZERO),
        totals.withheld,
        "withheld_vs_records",
        document.document_id,
    )

    derived = FilingDerived(buckets=aggregation.buckets, totals=totals)
    logger.info(
        "recompute_complete",
        document_id=document.document_id,
        schema="wht",
        records=totals.record_count,
        gross=str(totals.gross),
        withheld=str(totals.withheld),
        variance=str(totals.variance),
    )
    return document.model_copy(update={"derived": derived})


def recompute(document: Document, engine: Optional[BalanceEngine] = None) -> Document:
    """
    Rebuild every derived field of a document from its inputs.

    Idempotent: recomputing an unchanged document yields identical
    derived fields.

    Args:
        document: Reconciliation or filing snapshot
        engine: Balance engine (default: one using the configured tolerance)

    Returns:
        A new document with a fresh ``derived`` sub-model

    Raises:
        RoundingInvariantViolation: If totals disagree with the inputs.
            Indicates a bug; never caught inside the engine.
    """
    engine = engine or BalanceEngine()
    if isinstance(document, ReconciliationDocument):
        with document_context(document):
            return _recompute_reconciliation(document, engine)
    if isinstance(document, FilingDocument):
        with document_context(document):
            return _recompute_filing(document, engine)
    raise TypeError(f"Cannot recompute {type(document).__name__}")


# =============================================================================
# CONSTRUCTORS
# =============================================================================


def new_reconciliation(
    account_ref: str,
    year: int,
    month: int,
    closing_balance_bank,
    opening_balance_bank="0",
    opening_balance_ledger="0",
    closing_balance_ledger=None,
    company_ref: Optional[str] = None,
) -> ReconciliationDocument:
    """Open a draft reconciliation for one bank account and month."""
    end = month_end(year, month)
    document = ReconciliationDocument(
        company_ref=company_ref,
        account_ref=account_ref,
        period=period_key(year, month),
        fiscal_year=fiscal_year_for(end),
        reconciliation_date=end,
        opening_balance_bank=opening_balance_bank,
        opening_balance_ledger=opening_balance_ledger,
        closing_balance_bank=closing_balance_bank,
        closing_balance_ledger=closing_balance_ledger,
    )
    logger.info(
        "reconciliation_opened",
        document_id=document.document_id,
        account=account_ref,
        period=document.period,
    )
    return recompute(document)


def new_filing(
    company_ref: str,
    year: int,
    month: int,
    records: Iterable[RawRecord] = (),
    filing_type: FilingType = FilingType.WHT_STATEMENT,
) -> FilingDocument:
    """Open a draft monthly WHT filing, optionally seeded with records."""
    bounds = filing_period(year, month)
    document = FilingDocument(
        company_ref=company_ref,
        filing_type=filing_type,
        period=period_key(year, month),
        fiscal_year=fiscal_year_for(bounds.period_from),
        period_from=bounds.period_from,
        period_to=bounds.period_to,
        due_date=bounds.due_date,
        records=ingest_records(records),
    )
    _check_unique_ids(document.records, document.document_id)
    logger.info("filing_opened", document_id=document.document_id, company=company_ref, period=document.period)
    return recompute(document)


# =============================================================================
# MUTATIONS
# =============================================================================


def _ensure_editable(document: Document) -> None:
    if not document.is_editable:
        logger.warning("document_locked", document_id=document.document_id, status=document.status.value)
        raise DocumentLockedError(
            f"Document is {document.status.value} and can no longer be edited",
            document_id=document.document_id,
            status=document.status.value,
        )


def _check_unique_ids(records: Iterable[SourceRecord], document_id: str) -> None:
    seen: set[str] = set()
    for record in records:
        if record.record_id in seen:
            raise ValidationError(
                f"Duplicate record id {record.record_id}",
                field="record_id",
                value=record.record_id,
                constraint="Record ids must be unique within a document",
                details={"document_id": document_id},
            )
        seen.add(record.record_id)


def _unknown_record(record_id: str, document_id: str) -> ValidationError:
    return ValidationError(
        f"No record {record_id} on document",
        field="record_id",
        value=record_id,
        constraint="Must reference an existing record",
        details={"document_id": document_id},
    )


def add_statement_lines(
    document: ReconciliationDocument,
    batch: Iterable[RawRecord],
) -> ReconciliationDocument:
    """Append bank statement lines (unmatched) and recompute."""
    _ensure_editable(document)
    records = ingest_records(batch)
    lines = [*document.statement_lines, *(StatementLine(record=r) for r in records)]
    _check_unique_ids([ln.record for ln in lines] + [a.record for a in document.adjustments], document.document_id)
    logger.info("statement_lines_added", document_id=document.document_id, count=len(records))
    return recompute(document.model_copy(update={"statement_lines": lines}))


def remove_statement_line(document: ReconciliationDocument, record_id: str) -> ReconciliationDocument:
    _ensure_editable(document)
    lines = [ln for ln in document.statement_lines if ln.record.record_id != record_id]
    if len(lines) == len(document.statement_lines):
        raise _unknown_record(record_id, document.document_id)
    logger.info("statement_line_removed", document_id=document.document_id, record_id=record_id)
    return recompute(document.model_copy(update={"statement_lines": lines}))


def set_line_status(
    document: ReconciliationDocument,
    record_id: str,
    status: MatchStatus,
    matched_amount=None,
    matched_entries: Optional[list[str]] = None,
    remarks: Optional[str] = None,
) -> ReconciliationDocument:
    """
    Change the matching state of a statement line.

    A partially matched line needs ``matched_amount``: same sign as the line
    and strictly smaller in magnitude. The line's remaining open amount then
    stays in the reconciling set.

    Raises:
        ValidationError: If the line does not exist or the matched amount
            does not fit the line.
    """
    _ensure_editable(document)
    line = document.get_line(record_id)
    if line is None:
        raise _unknown_record(record_id, document.document_id)

    matched = ZERO
    if status == MatchStatus.PARTIALLY_MATCHED:
        try:
            matched = to_amount(matched_amount if matched_amount is not None else "0")
        except ValueError as e:
            raise ValidationError(str(e), field="matched_amount", constraint="Must be numeric") from e
        amount = line.record.amount
        if matched == ZERO or (matched > 0) != (amount > 0) or abs(matched) >= abs(amount):
            raise ValidationError(
                "Matched amount must be a non-zero part of the line amount",
                field="matched_amount",
                value=str(matched),
                constraint=f"Same sign as {amount} and smaller in magnitude",
            )

    updated = line.model_copy(
        update={
            "status": status,
            "matched_amount": matched,
            "matched_entries": list(matched_entries) if matched_entries is not None else line.matched_entries,
            "remarks": remarks if remarks is not None else line.remarks,
        }
    )
    lines = [updated if ln.record.record_id == record_id else ln for ln in document.statement_lines]
    logger.info(
        "statement_line_status_changed",
        document_id=document.document_id,
        record_id=record_id,
        from_status=line.status.value,
        to_status=status.value,
    )
    return recompute(document.model_copy(update={"statement_lines": lines}))


def add_adjustment(
    document: ReconciliationDocument,
    category: ReconCategory,
    raw: RawRecord,
    gl_posted: bool = False,
    journal_reference: Optional[str] = None,
    error_side: Optional[ErrorSide] = None,
) -> ReconciliationDocument:
    """Enter a reconciling item on one of the adjustment lists and recompute."""
    _ensure_editable(document)
    record = raw if isinstance(raw, SourceRecord) else ingest_record(raw)
    if error_side is not None and category != ReconCategory.ERRORS:
        raise ValidationError(
            "Only error entries carry an error side",
            field="error_side",
            value=error_side.value,
            constraint="category must be errors",
        )
    entry = AdjustmentEntry(
        record=record,
        category=category,
        gl_posted=gl_posted,
        journal_reference=journal_reference,
        error_side=error_side,
    )
    adjustments = [*document.adjustments, entry]
    _check_unique_ids(
        [ln.record for ln in document.statement_lines] + [a.record for a in adjustments],
        document.document_id,
    )
    logger.info(
        "adjustment_added",
        document_id=document.document_id,
        category=category.value,
        amount=str(record.amount),
        gl_posted=gl_posted,
    )
    return recompute(document.model_copy(update={"adjustments": adjustments}))


def remove_adjustment(document: ReconciliationDocument, record_id: str) -> ReconciliationDocument:
    _ensure_editable(document)
    adjustments = [a for a in document.adjustments if a.record.record_id != record_id]
    if len(adjustments) == len(document.adjustments):
        raise _unknown_record(record_id, document.document_id)
    logger.info("adjustment_removed", document_id=document.document_id, record_id=record_id)
    return recompute(document.model_copy(update={"adjustments": adjustments}))


def _update_adjustment(document: ReconciliationDocument, record_id: str, **changes) -> ReconciliationDocument:
    _ensure_editable(document)
    found = False
    adjustments = []
    for entry in document.adjustments:
        if entry.record.record_id == record_id:
            entry = entry.model_copy(update=changes)
            found = True
        adjustments.append(entry)
    if not found:
        raise _unknown_record(record_id, document.document_id)
    return recompute(document.model_copy(update={"adjustments": adjustments}))


def mark_adjustment_posted(
    document: ReconciliationDocument,
    record_id: str,
    journal_reference: Optional[str] = None,
) -> ReconciliationDocument:
    """Flag an adjustment as posted to the ledger; it leaves the unposted sums."""
    logger.info(
        "adjustment_posted",
        document_id=document.document_id,
        record_id=record_id,
        journal_reference=journal_reference,
    )
    return _update_adjustment(document, record_id, gl_posted=True, journal_reference=journal_reference)


def mark_error_corrected(document: ReconciliationDocument, record_id: str) -> ReconciliationDocument:
    entry = next((a for a in document.adjustments if a.record.record_id == record_id), None)
    if entry is not None and entry.category != ReconCategory.ERRORS:
        raise ValidationError(
            "Only error entries can be marked corrected",
            field="record_id",
            value=record_id,
            constraint="category must be errors",
        )
    return _update_adjustment(document, record_id, corrected=True)


def set_closing_balances(
    document: ReconciliationDocument,
    closing_bank=None,
    closing_ledger=None,
) -> ReconciliationDocument:
    """Enter the bank and/or ledger closing balance and recompute."""
    _ensure_editable(document)
    updates: dict[str, Decimal] = {}
    try:
        if closing_bank is not None:
            updates["closing_balance_bank"] = to_amount(closing_bank)
        if closing_ledger is not None:
            updates["closing_balance_ledger"] = to_amount(closing_ledger)
    except ValueError as e:
        raise ValidationError(str(e), field="closing_balance", constraint="Must be numeric") from e
    return recompute(document.model_copy(update=updates))


async def refresh_ledger_balance(
    document: ReconciliationDocument,
    ledger: LedgerProtocol,
    account_type: AccountType = AccountType.ASSET,
    as_of: Optional[date] = None,
    timeout: Optional[float] = None,
) -> ReconciliationDocument:
    """
    Fetch the closing ledger balance at period end and recompute.

    Raises:
        DependencyUnavailable: If the ledger cannot be reached in time. The
            document keeps its previous balance; nothing is defaulted.
    """
    _ensure_editable(document)
    cutoff = as_of or document.reconciliation_date
    with document_context(document):
        balance = await fetch_ledger_balance(
            ledger,
            document.account_ref,
            cutoff,
            account_type=account_type,
            timeout=timeout,
        )
    return recompute(document.model_copy(update={"closing_balance_ledger": balance}))


def add_filing_records(document: FilingDocument, batch: Iterable[RawRecord]) -> FilingDocument:
    """Append WHT records (vendor payments, payroll deductions) and recompute."""
    _ensure_editable(document)
    records = [*document.records, *ingest_records(batch)]
    _check_unique_ids(records, document.document_id)
    logger.info(
        "filing_records_added",
        document_id=document.document_id,
        count=len(records) - len(document.records),
    )
    return recompute(document.model_copy(update={"records": records}))


def remove_filing_record(document: FilingDocument, record_id: str) -> FilingDocument:
    _ensure_editable(document)
    records = [r for r in document.records if r.record_id != record_id]
    if len(records) == len(document.records):
        raise _unknown_record(record_id, document.document_id)
    logger.info("filing_record_removed", document_id=document.document_id, record_id=record_id)
    return recompute(document.model_copy(update={"records": records}))


def replace_filing_records(document: FilingDocument, batch: Iterable[RawRecord]) -> FilingDocument:
    """Swap the whole record set (regeneration from source data)."""
    _ensure_editable(document)
    records = ingest_records(batch)
    _check_unique_ids(records, document.document_id)
    logger.info("filing_records_replaced", document_id=document.document_id, count=len(records))
    return recompute(document.model_copy(update={"records": records}))
