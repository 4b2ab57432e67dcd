"""Tests for the balance engine."""

from decimal import Decimal

import pytest

from recon_core.aggregator import ClassifiedRecord, aggregate
from recon_core.balance import BalanceEngine
from recon_core.classifier import RECONCILIATION_RULES, WHT_RULES
from recon_core.models import CategoryBucket, ReconCategory, WhtCategory


def buckets(**sums) -> dict:
    """Build reconciliation buckets from keyword (gross, unposted) magnitude pairs."""
    result = {}
    for name, (gross, unposted) in sums.items():
        key = ReconCategory(name)
        result[key] = CategoryBucket(
            key=key,
            count=1,
            gross_sum=Decimal(gross),
            secondary_sum=Decimal(unposted),
        )
    return result


@pytest.fixture
def engine() -> BalanceEngine:
    return BalanceEngine(tolerance=Decimal("0.01"))


class TestReconcile:
    """Test suite for the reconciliation equations."""

    def test_month_end_scenario(self, engine: BalanceEngine):
        """Three deposits in transit and one outstanding check should reconcile."""
        result = engine.reconcile(
            Decimal("5000.00"),
            Decimal("5285.25"),
            buckets(
                deposits_in_transit=("360.50", "360.50"),
                outstanding_checks=("75.25", "75.25"),
            ),
        )

        assert result.adjusted_bank_balance == Decimal("5285.25")
        assert result.adjusted_ledger_balance == Decimal("5285.25")
        assert result.variance == Decimal("0.00")
        assert result.reconciled is True

    def test_ledger_side_items(self, engine: BalanceEngine):
        """Interest is added and charges and returns are subtracted on the ledger side."""
        result = engine.reconcile(
            Decimal("1000.00"),
            Decimal("1000.00"),
            buckets(
                interest_earned=("12.00", "12.00"),
                bank_charges=("5.00", "5.00"),
                returned_checks=("50.00", "50.00"),
            ),
        )

        assert result.adjusted_ledger_balance == Decimal("957.00")
        assert result.variance == Decimal("43.00")
        assert result.reconciled is False

    def test_posted_items_are_not_double_counted(self, engine: BalanceEngine):
        """Charges already posted to the ledger should not adjust it again."""
        result = engine.reconcile(
            Decimal("975.00"),
            Decimal("975.00"),
            buckets(bank_charges=("25.00", "0.00")),
        )

        assert result.adjusted_ledger_balance == Decimal("975.00")
        assert result.reconciled is True

    def test_errors_do_not_enter_equation(self, engine: BalanceEngine):
        """Error entries are tracked but never move the balances."""
        result = engine.reconcile(
            Decimal("100.00"),
            Decimal("100.00"),
            buckets(errors=("9.99", "9.99")),
        )

        assert result.variance == Decimal("0.00")

    def test_balance_equation_holds(self, engine: BalanceEngine):
        """adjusted bank - adjusted ledger should equal variance exactly."""
        result = engine.reconcile(
            Decimal("1234.56"),
            Decimal("1200.01"),
            buckets(
                deposits_in_transit=("10.10", "10.10"),
                outstanding_checks=("3.03", "3.03"),
                interest_earned=("0.07", "0.07"),
            ),
        )

        assert result.adjusted_bank_balance - result.adjusted_ledger_balance == result.variance
        assert result.reconciled == (abs(result.variance) < Decimal("0.01"))

    def test_one_cent_variance_is_not_reconciled(self, engine: BalanceEngine):
        """Tolerance is strict: 0.01 is outside it."""
        result = engine.reconcile(Decimal("100.01"), Decimal("100.00"), {})

        assert result.variance == Decimal("0.01")
        assert result.reconciled is False

    def test_unknown_ledger_balance(self, engine: BalanceEngine):
        """Without a ledger balance nothing is derived and nothing is reconciled."""
        result = engine.reconcile(Decimal("5000.00"), None, {})

        assert result.adjusted_bank_balance is None
        assert result.adjusted_ledger_balance is None
        assert result.variance is None
        assert result.reconciled is False

    def test_records_calculation_steps(self, engine: BalanceEngine):
        """Each equation should leave a step in the trail."""
        result = engine.reconcile(Decimal("1"), Decimal("1"), {})

        assert [s.step for s in result.steps] == [
            "adjusted_bank_balance",
            "adjusted_ledger_balance",
            "variance",
        ]

    def test_accepts_aggregator_output(self, engine: BalanceEngine):
        """Buckets straight from aggregate() should be accepted."""
        aggregation = aggregate([], RECONCILIATION_RULES.categories)
        result = engine.reconcile(Decimal("10"), Decimal("10"), aggregation.buckets)

        assert result.reconciled is True


class TestFilingTotals:
    """Test suite for filing totals."""

    def test_totals(self, engine: BalanceEngine, make_wht_record):
        """Gross, withheld, net, deposited and variance should follow the buckets."""
        items = [
            ClassifiedRecord(
                record=make_wht_record("100000", "8000", "services"),
                category=WhtCategory.SECTION_153_1A,
                secondary=Decimal("8000"),
            ),
            ClassifiedRecord(
                record=make_wht_record("50000", "2000", "supplies"),
                category=WhtCategory.SECTION_153_1B,
                secondary=Decimal("2000"),
            ),
        ]
        result = engine.filing_totals(aggregate(items, WHT_RULES.categories), Decimal("9000"))
        totals = result.totals

        assert totals.record_count == 2
        assert totals.gross == Decimal("150000.00")
        assert totals.withheld == Decimal("10000.00")
        assert totals.net == Decimal("140000.00")
        assert totals.deposited == Decimal("9000.00")
        assert totals.variance == Decimal("1000.00")
        assert [s.step for s in result.steps] == ["filing_net", "filing_variance"]

    def test_shared_engine_keeps_trails_apart(self, engine: BalanceEngine):
        """A later call on the same engine should not touch an earlier trail."""
        first = engine.reconcile(Decimal("1"), Decimal("1"), {})
        second = engine.filing_totals(aggregate([], WHT_RULES.categories))
        third = engine.reconcile(Decimal("1"), None, {})

        assert [s.step for s in first.steps] == ["adjusted_bank_balance", "adjusted_ledger_balance", "variance"]
        assert [s.step for s in second.steps] == ["filing_net", "filing_variance"]
        assert len(third.steps) == 2
        assert not hasattr(engine, "_steps")


class TestEngineDefaults:
    """Tests for configuration-driven defaults."""

    def test_default_tolerance_from_config(self, monkeypatch):
        """The engine should fall back to the configured tolerance."""
        monkeypatch.setenv("RECON_ENGINE_TOLERANCE", "0.5")

        assert BalanceEngine().tolerance == Decimal("0.5")
