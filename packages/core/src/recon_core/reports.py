"""Withholding-tax reports built from filing snapshots.

This module provides three read-only views over a set of FilingDocuments:
1. annual_wht_summary - month-by-month withheld/deposited amounts for a fiscal year
2. vendor_wht_report - gross and withheld totals per counterparty
3. compliance_status - months due versus filed, overdue and upcoming filings

None of these mutate the filings or call the ledger.
"""

import calendar
from collections.abc import Iterable
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import structlog
from pydantic import BaseModel, Field

from recon_core.classifier import WHT_RULES, classify
from recon_core.models.documents import FilingDocument, FilingStatus, FilingType
from recon_core.models.records import WhtCategory
from recon_core.money import ZERO, round2
from recon_core.periods import filing_period, fiscal_year_for, fiscal_year_months, period_key

logger = structlog.get_logger(__name__)

FILED_STATUSES = (FilingStatus.SUBMITTED, FilingStatus.ACKNOWLEDGED, FilingStatus.AMENDED)


# =============================================================================
# ANNUAL SUMMARY
# =============================================================================


class MonthlyWhtRow(BaseModel):
    """One month of the annual WHT summary."""

    period: str
    period_name: str = Field(description="e.g. 'January 2025'")
    withheld_by_section: dict[WhtCategory, Decimal]
    withheld: Decimal
    deposited: Decimal
    status: FilingStatus
    submitted: bool


class AnnualWhtSummary(BaseModel):
    """WHT statements of one fiscal year, month by month."""

    fiscal_year: str
    rows: list[MonthlyWhtRow] = Field(default_factory=list)
    totals_by_section: dict[WhtCategory, Decimal] = Field(default_factory=dict)
    total_withheld: Decimal = ZERO
    total_deposited: Decimal = ZERO
    pending_months: int = 0


def _period_name(period: str) -> str:
    year, month = period.split("-")
    return f"{calendar.month_name[int(month)]} {year}"


def annual_wht_summary(filings: Iterable[FilingDocument], fiscal_year: str) -> AnnualWhtSummary:
    """
    Month-by-month summary of the WHT statements of a fiscal year.

    Args:
        filings: Filing snapshots (other years and filing types are ignored)
        fiscal_year: Fiscal year in ``YYYY-YYYY`` form

    Returns:
        AnnualWhtSummary with rows ordered by period
    """
    selected = sorted(
        (
            f for f in filings
            if f.fiscal_year == fiscal_year and f.filing_type == FilingType.WHT_STATEMENT
        ),
        key=lambda f: f.period,
    )

    rows = []
    for filing in selected:
        buckets = filing.derived.buckets
        rows.append(
            MonthlyWhtRow(
                period=filing.period,
                period_name=_period_name(filing.period),
                withheld_by_section={
                    key: (buckets[key].withheld_sum if key in buckets else ZERO) for key in WhtCategory
                },
                withheld=filing.derived.totals.withheld,
                deposited=filing.derived.totals.deposited,
                status=filing.status,
                submitted=filing.is_submitted,
            )
        )

    totals_by_section = {
        key: sum((row.withheld_by_section[key] for row in rows), ZERO) for key in WhtCategory
    }
    summary = AnnualWhtSummary(
        fiscal_year=fiscal_year,
        rows=rows,
        totals_by_section=totals_by_section,
        total_withheld=sum((row.withheld for row in rows), ZERO),
        total_deposited=sum((row.deposited for row in rows), ZERO),
        pending_months=sum(1 for row in rows if not row.submitted),
    )
    logger.info(
        "annual_wht_summary_built",
        fiscal_year=fiscal_year,
        months=len(rows),
        total_withheld=str(summary.total_withheld),
    )
    return summary


# =============================================================================
# VENDOR-WISE REPORT
# =============================================================================


class VendorTransaction(BaseModel):
    """A single payment to a vendor with the tax withheld on it."""

    record_id: str
    payment_date: date
    gross: Decimal
    withheld: Decimal
    section: WhtCategory


class VendorWhtTotals(BaseModel):
    """WHT totals for one counterparty."""

    key: str = Field(description="NTN, else CNIC, else name")
    name: Optional[str] = None
    ntn: Optional[str] = None
    cnic: Optional[str] = None
    total_gross: Decimal = ZERO
    total_withheld: Decimal = ZERO
    transactions: list[VendorTransaction] = Field(default_factory=list)


class VendorWhtReport(BaseModel):
    """Per-vendor WHT totals, largest withholding first."""

    fiscal_year: Optional[str] = None
    vendors: list[VendorWhtTotals] = Field(default_factory=list)
    grand_total_gross: Decimal = ZERO
    grand_total_withheld: Decimal = ZERO

    @property
    def total_vendors(self) -> int:
        return len(self.vendors)


def vendor_wht_report(
    filings: Iterable[FilingDocument],
    fiscal_year: Optional[str] = None,
) -> VendorWhtReport:
    """
    Aggregate WHT records by counterparty.

    Records without any counterparty identification are left out. Vendors
    are sorted by total withheld, descending; ties keep first-seen order.
    """
    vendors: dict[str, VendorWhtTotals] = {}
    for filing in filings:
        if filing.filing_type != FilingType.WHT_STATEMENT:
            continue
        if fiscal_year is not None and filing.fiscal_year != fiscal_year:
            continue
        for record in filing.records:
            party = record.counterparty
            if party is None or not party.key:
                continue
            totals = vendors.get(party.key)
            if totals is None:
                totals = VendorWhtTotals(key=party.key, name=party.name, ntn=party.ntn, cnic=party.cnic)
                vendors[party.key] = totals
            totals.total_gross += record.amount
            totals.total_withheld += record.withheld_amount
            totals.transactions.append(
                VendorTransaction(
                    record_id=record.record_id,
                    payment_date=record.timestamp.date(),
                    gross=record.amount,
                    withheld=record.withheld_amount,
                    section=classify(record, WHT_RULES),
                )
            )

    ordered = sorted(vendors.values(), key=lambda v: v.total_withheld, reverse=True)
    return VendorWhtReport(
        fiscal_year=fiscal_year,
        vendors=ordered,
        grand_total_gross=round2(sum((v.total_gross for v in ordered), ZERO)),
        grand_total_withheld=round2(sum((v.total_withheld for v in ordered), ZERO)),
    )


# =============================================================================
# COMPLIANCE STATUS
# =============================================================================


class PendingMonth(BaseModel):
    period: str
    due_date: date


class DeadlineItem(BaseModel):
    """A filing with its distance from the due date."""

    document_id: str
    filing_type: FilingType
    period: str
    due_date: date
    days: int = Field(description="Days overdue, or days remaining for upcoming filings")


class ComplianceStatus(BaseModel):
    """Filing compliance for one fiscal year as of a given day."""

    fiscal_year: str
    as_of: date
    months_due: int
    months_filed: int
    pending: list[PendingMonth] = Field(default_factory=list)
    compliance_rate: int = Field(description="Whole percent of due months filed")
    overdue: list[DeadlineItem] = Field(default_factory=list)
    upcoming: list[DeadlineItem] = Field(default_factory=list)

    @property
    def months_pending(self) -> int:
        return len(self.pending)


def compliance_status(
    filings: Iterable[FilingDocument],
    today: date,
    fiscal_year: Optional[str] = None,
) -> ComplianceStatus:
    """
    Compare the WHT months already due with those filed.

    A month is due once its filing due date has been reached. A month counts
    as filed when its WHT statement was submitted, acknowledged or amended.

    Args:
        filings: Filing snapshots of the company
        today: Reference date
        fiscal_year: Year to report on (default: the one containing ``today``)
    """
    fiscal_year = fiscal_year or fiscal_year_for(today)
    selected = [f for f in filings if f.fiscal_year == fiscal_year]
    filed_periods = {
        f.period for f in selected
        if f.filing_type == FilingType.WHT_STATEMENT and f.status in FILED_STATUSES
    }

    due_months = []
    for year, month in fiscal_year_months(fiscal_year):
        bounds = filing_period(year, month)
        if bounds.due_date > today:
            break
        due_months.append(PendingMonth(period=period_key(year, month), due_date=bounds.due_date))

    pending = [m for m in due_months if m.period not in filed_periods]
    filed = len(due_months) - len(pending)
    if due_months:
        ratio = Decimal(filed * 100) / Decimal(len(due_months))
        rate = int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    else:
        rate = 100

    overdue = [
        DeadlineItem(
            document_id=f.document_id,
            filing_type=f.filing_type,
            period=f.period,
            due_date=f.due_date,
            days=(today - f.due_date).days,
        )
        for f in selected
        if f.is_overdue(today)
    ]
    upcoming = sorted(
        (
            DeadlineItem(
                document_id=f.document_id,
                filing_type=f.filing_type,
                period=f.period,
                due_date=f.due_date,
                days=(f.due_date - today).days,
            )
            for f in selected
            if f.due_date > today and f.status not in FILED_STATUSES
        ),
        key=lambda item: item.days,
    )

    status = ComplianceStatus(
        fiscal_year=fiscal_year,
        as_of=today,
        months_due=len(due_months),
        months_filed=filed,
        pending=pending,
        compliance_rate=rate,
        overdue=sorted(overdue, key=lambda item: item.days, reverse=True),
        upcoming=upcoming,
    )
    logger.info(
        "compliance_status_built",
        fiscal_year=fiscal_year,
        months_due=status.months_due,
        months_filed=filed,
        compliance_rate=rate,
        overdue=len(overdue),
    )
    return status
