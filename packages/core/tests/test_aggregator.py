"""Tests for per-category aggregation."""

import random
from decimal import Decimal

import pytest

from recon_core.aggregator import ClassifiedRecord, aggregate
from recon_core.classifier import WHT_RULES, classify
from recon_core.models import ReconCategory, WhtCategory


@pytest.fixture
def wht_items(make_wht_record) -> list[ClassifiedRecord]:
    """A handful of WHT records across three sections."""
    records = [
        make_wht_record("100000.00", "8000.00", "IT services"),
        make_wht_record("45000.50", "2025.02", "Supplies"),
        make_wht_record("12000.00", "1200.00", "Brokerage"),
        make_wht_record("999.99", "0.00", "Unknown"),
        make_wht_record("0.01", "0.00", "IT services"),
    ]
    return [
        ClassifiedRecord(record=r, category=classify(r, WHT_RULES), secondary=r.withheld_amount)
        for r in records
    ]


class TestAggregate:
    """Test suite for aggregate()."""

    def test_every_category_gets_a_bucket(self, wht_items):
        """Empty categories should still be present with zero sums."""
        result = aggregate(wht_items, WHT_RULES.categories)

        assert list(result.buckets) == list(WhtCategory)
        assert result.bucket(WhtCategory.SECTION_235).count == 0
        assert result.bucket(WhtCategory.SECTION_235).gross_sum == Decimal("0")

    def test_bucket_sums(self, wht_items):
        """Buckets should hold count, gross and withheld per section."""
        result = aggregate(wht_items, WHT_RULES.categories)
        services = result.bucket(WhtCategory.SECTION_153_1A)

        assert services.count == 2
        assert services.gross_sum == Decimal("100000.01")
        assert services.withheld_sum == Decimal("8000.00")
        assert result.bucket(WhtCategory.OTHER).gross_sum == Decimal("999.99")

    def test_total_coverage(self, wht_items):
        """Sum of buckets should equal the sum of records to the cent."""
        result = aggregate(wht_items, WHT_RULES.categories)
        expected = sum(i.record.amount for i in wht_items)

        assert result.grand_total == expected
        assert sum(b.gross_sum for b in result.buckets.values()) == expected
        assert result.record_count == len(wht_items)
        assert result.grand_secondary == Decimal("11225.02")

    def test_order_independent(self, wht_items):
        """Shuffling the input should not change the result."""
        shuffled = list(wht_items)
        random.Random(7).shuffle(shuffled)

        assert aggregate(shuffled, WHT_RULES.categories) == aggregate(wht_items, WHT_RULES.categories)

    def test_amount_override(self, make_record):
        """An explicit amount should replace the record amount."""
        record = make_record("-500.00", "CHQ 1")
        item = ClassifiedRecord(
            record=record,
            category=ReconCategory.OUTSTANDING_CHECKS,
            amount=Decimal("-200.00"),
        )
        result = aggregate([item], list(ReconCategory))

        assert result.bucket(ReconCategory.OUTSTANDING_CHECKS).gross_sum == Decimal("-200.00")

    def test_rejects_category_outside_schema(self, make_record):
        """A record classified into another schema should be refused."""
        item = ClassifiedRecord(record=make_record("1"), category=ReconCategory.ERRORS)
        with pytest.raises(ValueError):
            aggregate([item], WHT_RULES.categories)

    def test_empty_input(self):
        """No records should give zero totals."""
        result = aggregate([], WHT_RULES.categories)

        assert result.record_count == 0
        assert result.grand_total == Decimal("0")
