"""Per-category aggregation.

Sums classified records into one bucket per category of the schema plus
grand totals. Accumulation is exact (Decimal, no intermediate rounding);
values are rounded to cents once, when the buckets are built. The result
does not depend on the order of the input.
"""

from collections import defaultdict
from collections.abc import Iterable
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from recon_core.models.documents import CategoryBucket
from recon_core.models.records import CategoryKey, SourceRecord
from recon_core.money import ZERO, round2


class ClassifiedRecord(BaseModel):
    """A record paired with its category and the amounts it contributes.

    ``amount`` overrides the record amount when only part of it counts (the
    open residual of a partially matched statement line). ``secondary`` is
    the schema-specific second sum: tax withheld, or the unposted amount.
    """

    record: SourceRecord
    category: CategoryKey
    amount: Optional[Decimal] = None
    secondary: Decimal = ZERO

    @property
    def gross(self) -> Decimal:
        return self.record.amount if self.amount is None else self.amount


class Aggregation(BaseModel):
    """Buckets for every category of a schema plus grand totals."""

    buckets: dict[CategoryKey, CategoryBucket] = Field(default_factory=dict)
    record_count: int = 0
    grand_total: Decimal = ZERO
    grand_secondary: Decimal = ZERO
    exact_total: Decimal = Field(
        default=ZERO,
        description="Unrounded sum of the input amounts, kept for invariant checks",
    )
    exact_secondary: Decimal = ZERO

    def bucket(self, key: CategoryKey) -> CategoryBucket:
        """Bucket for a category (empty if the category is not present)."""
        return self.buckets.get(key) or CategoryBucket(key=key)


def aggregate(
    items: Iterable[ClassifiedRecord],
    categories: Iterable[CategoryKey],
) -> Aggregation:
    """Sum classified records per category.

    Args:
        items: Records already assigned to categories.
        categories: Every category of the schema, in display order. Each
            gets a bucket, empty or not.

    Returns:
        Aggregation whose buckets are keyed in ``categories`` order.

    Raises:
        ValueError: If a record carries a category outside ``categories``.
    """
    counts: dict[CategoryKey, int] = defaultdict(int)
    gross: dict[CategoryKey, Decimal] = defaultdict(Decimal)
    secondary: dict[CategoryKey, Decimal] = defaultdict(Decimal)

    record_count = 0
    for item in items:
        counts[item.category] += 1
        gross[item.category] += item.gross
        secondary[item.category] += item.secondary
        record_count += 1

    ordered = list(categories)
    unknown = set(counts) - set(ordered)
    if unknown:
        raise ValueError(f"Records classified outside the schema: {sorted(k.value for k in unknown)}")

    buckets = {
        key: CategoryBucket(
            key=key,
            count=counts[key],
            gross_sum=round2(gross[key]),
            secondary_sum=round2(secondary[key]),
        )
        for key in ordered
    }

    return Aggregation(
        buckets=buckets,
        record_count=record_count,
        grand_total=sum((b.gross_sum for b in buckets.values()), ZERO),
        grand_secondary=sum((b.secondary_sum for b in buckets.values()), ZERO),
        exact_total=sum(gross.values(), ZERO),
        exact_secondary=sum(secondary.values(), ZERO),
    )
