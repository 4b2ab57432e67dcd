"""Tests for fiscal periods and the WHT reports."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from recon_core.models import FilingDocument, FilingStatus, PaymentMetadata, SubmissionInfo, WhtCategory
from recon_core.orchestrator import new_filing, recompute
from recon_core.periods import (
    filing_period,
    fiscal_year_for,
    fiscal_year_months,
    month_end,
    parse_period,
    period_key,
)
from recon_core.reports import annual_wht_summary, compliance_status, vendor_wht_report


def with_status(document: FilingDocument, status: FilingStatus) -> FilingDocument:
    return document.model_copy(update={"status": status})


def submitted(document: FilingDocument, deposited: str) -> FilingDocument:
    """Submitted copy of a filing with a deposit recorded."""
    submission = SubmissionInfo(
        submitted_at=datetime(2024, 8, 10, tzinfo=timezone.utc),
        payment=PaymentMetadata(amount=deposited, payment_date=date(2024, 8, 10)),
    )
    return recompute(document.model_copy(update={"status": FilingStatus.SUBMITTED, "submission": submission}))


class TestPeriods:
    """Tests for fiscal-year and due-date helpers."""

    @pytest.mark.parametrize(
        "day, expected",
        [
            (date(2025, 1, 31), "2024-2025"),
            (date(2025, 6, 30), "2024-2025"),
            (date(2025, 7, 1), "2025-2026"),
            (date(2024, 12, 31), "2024-2025"),
        ],
    )
    def test_fiscal_year_for(self, day, expected):
        assert fiscal_year_for(day) == expected

    def test_calendar_fiscal_year(self):
        assert fiscal_year_for(date(2025, 3, 1), start_month=1) == "2025-2026"

    def test_fiscal_year_months(self):
        months = fiscal_year_months("2024-2025")

        assert len(months) == 12
        assert months[0] == (2024, 7)
        assert months[5] == (2024, 12)
        assert months[6] == (2025, 1)
        assert months[-1] == (2025, 6)

    def test_filing_period_december_rolls_year(self):
        bounds = filing_period(2024, 12)

        assert bounds.period_from == date(2024, 12, 1)
        assert bounds.period_to == date(2024, 12, 31)
        assert bounds.due_date == date(2025, 1, 15)

    def test_due_day_from_config(self, monkeypatch):
        monkeypatch.setenv("RECON_ENGINE_FILING_DUE_DAY", "20")

        assert filing_period(2025, 1).due_date == date(2025, 2, 20)

    def test_period_keys(self):
        assert period_key(2025, 3) == "2025-03"
        assert parse_period("2025-03") == (2025, 3)
        assert month_end(2024, 2) == date(2024, 2, 29)
        with pytest.raises(ValueError):
            period_key(2025, 13)


class TestAnnualSummary:
    """Test suite for annual_wht_summary()."""

    def test_rows_and_totals(self, make_wht_record):
        july = submitted(
            new_filing("ACME", 2024, 7, [make_wht_record("100000", "8000", "IT services", record_id="a")]),
            "8000",
        )
        august = new_filing(
            "ACME",
            2024,
            8,
            [
                make_wht_record("50000", "2000", "Supplies", record_id="b"),
                make_wht_record("40000", "1000", "Electricity", record_id="c"),
            ],
        )
        other_year = new_filing("ACME", 2025, 7, [make_wht_record("1", "1", record_id="z")])

        summary = annual_wht_summary([august, other_year, july], "2024-2025")

        assert [row.period for row in summary.rows] == ["2024-07", "2024-08"]
        assert summary.rows[0].period_name == "July 2024"
        assert summary.rows[0].submitted is True
        assert summary.rows[0].deposited == Decimal("8000.00")
        assert summary.rows[1].withheld_by_section[WhtCategory.SECTION_235] == Decimal("1000.00")
        assert summary.total_withheld == Decimal("11000.00")
        assert summary.total_deposited == Decimal("8000.00")
        assert summary.totals_by_section[WhtCategory.SECTION_153_1A] == Decimal("8000.00")
        assert summary.pending_months == 1

    def test_empty_year(self):
        summary = annual_wht_summary([], "2024-2025")

        assert summary.rows == []
        assert summary.total_withheld == Decimal("0")


class TestVendorReport:
    """Test suite for vendor_wht_report()."""

    def test_groups_by_tax_number(self, make_wht_record, make_record):
        january = new_filing(
            "ACME",
            2025,
            1,
            [
                make_wht_record("100000", "8000", "IT services", vendor="Acme IT", ntn="111", record_id="a"),
                make_wht_record("20000", "500", "Supplies", vendor="Stationers", record_id="b"),
                make_record("300", "Petty cash", record_id="c"),
            ],
        )
        february = new_filing(
            "ACME",
            2025,
            2,
            [make_wht_record("50000", "2000", "IT services", vendor="Acme IT Ltd", ntn="111", record_id="d")],
        )

        report = vendor_wht_report([january, february], fiscal_year="2024-2025")

        assert report.total_vendors == 2
        top = report.vendors[0]
        assert top.key == "111"
        assert top.name == "Acme IT"
        assert top.total_gross == Decimal("150000.00")
        assert top.total_withheld == Decimal("10000.00")
        assert [t.record_id for t in top.transactions] == ["a", "d"]
        assert top.transactions[0].section == WhtCategory.SECTION_153_1A
        assert report.grand_total_withheld == Decimal("10500.00")

    def test_ties_keep_first_seen_order(self, make_wht_record):
        filing = new_filing(
            "ACME",
            2025,
            1,
            [
                make_wht_record("100", "10", vendor="Zeta", record_id="a"),
                make_wht_record("100", "10", vendor="Alpha", record_id="b"),
            ],
        )

        report = vendor_wht_report([filing])

        assert [v.key for v in report.vendors] == ["Zeta", "Alpha"]


class TestComplianceStatus:
    """Test suite for compliance_status()."""

    @pytest.fixture
    def filings(self) -> list[FilingDocument]:
        return [
            with_status(new_filing("ACME", 2024, 7), FilingStatus.SUBMITTED),
            new_filing("ACME", 2024, 8),
            with_status(new_filing("ACME", 2024, 9), FilingStatus.AMENDED),
            new_filing("ACME", 2024, 10),
        ]

    def test_due_and_filed_months(self, filings):
        """July to September are due on 20 October; two of them are filed."""
        status = compliance_status(filings, date(2024, 10, 20))

        assert status.fiscal_year == "2024-2025"
        assert status.months_due == 3
        assert status.months_filed == 2
        assert [m.period for m in status.pending] == ["2024-08"]
        assert status.months_pending == 1
        assert status.compliance_rate == 67

    def test_overdue_and_upcoming(self, filings):
        status = compliance_status(filings, date(2024, 10, 20))

        assert [(i.period, i.days) for i in status.overdue] == [("2024-08", 35)]
        assert [(i.period, i.days) for i in status.upcoming] == [("2024-10", 26)]

    def test_month_due_on_its_due_date(self, filings):
        """A month becomes due on its due date, not the day after."""
        assert compliance_status(filings, date(2024, 8, 15)).months_due == 1
        assert compliance_status(filings, date(2024, 8, 14)).months_due == 0

    def test_nothing_due_is_fully_compliant(self):
        status = compliance_status([], date(2024, 7, 20))

        assert status.months_due == 0
        assert status.compliance_rate == 100
