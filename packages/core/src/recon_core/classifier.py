"""Rule-based category classifier.

Maps a SourceRecord to exactly one category of a schema using an ordered
rule set. Matching runs in two passes:

1. Explicit tag: the record's ``category_tag`` is compared (exactly, after
   normalisation) against every rule's tag aliases in priority order.
2. Text inference: the descriptor and origin reference are searched for each
   rule's keywords and section-code patterns, and the origin kind is checked,
   again in priority order.

The first match wins. A record that matches nothing lands in the rule set's
fallback bucket, so classification is a total function and no record is
ever dropped.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import structlog

from recon_core.models.records import (
    CategoryKey,
    OriginKind,
    ReconCategory,
    Schema,
    SourceRecord,
    WhtCategory,
)

logger = structlog.get_logger(__name__)


def normalize_tag(tag: str) -> str:
    """Reduce a tag to lowercase alphanumerics ("153(1)(a)" -> "1531a")."""
    return re.sub(r"[^a-z0-9]", "", tag.lower())


class MatchedBy(str, Enum):
    """How a classification was reached."""

    TAG = "tag"
    TEXT = "text"
    ORIGIN = "origin"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class CategoryRule:
    """One classification rule.

    Attributes:
        key: Category assigned when the rule matches.
        tags: Tag aliases; compared after ``normalize_tag``.
        keywords: Case-insensitive substrings searched in the record text.
        patterns: Regular expressions searched in the lowercased record text.
        origins: Origin kinds that imply this category.
        debits_only: Text and origin inference apply only to debits
            (negative amounts); an explicit tag still matches either sign.
    """

    key: CategoryKey
    tags: tuple[str, ...] = ()
    keywords: tuple[str, ...] = ()
    patterns: tuple[re.Pattern[str], ...] = ()
    origins: tuple[OriginKind, ...] = ()
    debits_only: bool = False
    _normalized_tags: frozenset[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        aliases = {normalize_tag(t) for t in self.tags}
        aliases.add(normalize_tag(self.key.value))
        object.__setattr__(self, "_normalized_tags", frozenset(aliases))

    def matches_tag(self, normalized: str) -> bool:
        return normalized in self._normalized_tags

    def matches_text(self, text: str) -> bool:
        if any(kw in text for kw in self.keywords):
            return True
        return any(p.search(text) for p in self.patterns)


@dataclass(frozen=True)
class RuleSet:
    """Ordered rules for one schema plus the catch-all bucket."""

    schema: Schema
    rules: tuple[CategoryRule, ...]
    fallback: CategoryKey

    def __post_init__(self) -> None:
        enum_type = ReconCategory if self.schema == Schema.RECONCILIATION else WhtCategory
        for key in [r.key for r in self.rules] + [self.fallback]:
            if not isinstance(key, enum_type):
                raise ValueError(f"Category {key!r} does not belong to schema {self.schema.value}")

    @property
    def categories(self) -> tuple[CategoryKey, ...]:
        """All categories of the schema, in enum order."""
        enum_type = ReconCategory if self.schema == Schema.RECONCILIATION else WhtCategory
        return tuple(enum_type)


@dataclass(frozen=True)
class Classification:
    """Category assigned to a record and how it was reached."""

    key: CategoryKey
    matched_by: MatchedBy
    rule_index: Optional[int] = None


def _section(*parts: str) -> re.Pattern[str]:
    """Section code pattern tolerant of brackets, spaces and separators."""
    sep = r"[\s()_\-./]*"
    return re.compile(r"(?<![0-9])" + sep.join(parts) + r"(?![0-9a-z])")


# Order matters: returned checks before outstanding checks ("returned cheque"),
# interest before deposits ("profit on deposit"). Outstanding checks match
# debits only, so a credited "CHEQUE DEPOSIT" falls through to deposits.
RECONCILIATION_RULES = RuleSet(
    schema=Schema.RECONCILIATION,
    rules=(
        CategoryRule(
            key=ReconCategory.RETURNED_CHECKS,
            tags=("returned_check", "nsf", "dishonoured"),
            keywords=("returned", "nsf", "dishonour", "dishonor", "bounced", "insufficient funds"),
        ),
        CategoryRule(
            key=ReconCategory.BANK_CHARGES,
            tags=("bank_charge", "charge", "fee"),
            keywords=(
                "service charge", "bank charge", "bank fee", "sms charge",
                "commission", "excise duty", "maintenance fee", "ledger fee",
            ),
        ),
        CategoryRule(
            key=ReconCategory.INTEREST_EARNED,
            tags=("interest", "profit"),
            keywords=("interest", "profit credit", "profit on", "markup credit"),
        ),
        CategoryRule(
            key=ReconCategory.OUTSTANDING_CHECKS,
            tags=("outstanding_check", "check", "cheque"),
            keywords=("outstanding",),
            patterns=(re.compile(r"\b(chq|cheque|check)\b"),),
            debits_only=True,
        ),
        CategoryRule(
            key=ReconCategory.DEPOSITS_IN_TRANSIT,
            tags=("deposit_in_transit", "deposit"),
            keywords=("in transit", "deposit", "lodgement"),
            patterns=(re.compile(r"\bdep\b"),),
        ),
        CategoryRule(
            key=ReconCategory.ERRORS,
            tags=("error", "bank_error", "gl_error"),
        ),
    ),
    fallback=ReconCategory.ERRORS,
)

WHT_RULES = RuleSet(
    schema=Schema.WHT,
    rules=(
        CategoryRule(
            key=WhtCategory.SECTION_153_1A,
            tags=("153(1)(a)", "153(1a)"),
            keywords=("services",),
            patterns=(_section("153", "1", "a"),),
        ),
        CategoryRule(
            key=WhtCategory.SECTION_153_1B,
            tags=("153(1)(b)", "153(1b)"),
            keywords=("supplies", "supply of goods"),
            patterns=(_section("153", "1", "b"),),
        ),
        CategoryRule(
            key=WhtCategory.SECTION_153_1C,
            tags=("153(1)(c)", "153(1c)"),
            keywords=("contracts", "contract execution"),
            patterns=(_section("153", "1", "c"),),
        ),
        CategoryRule(
            key=WhtCategory.SECTION_233,
            tags=("233",),
            keywords=("commission", "brokerage"),
            patterns=(_section("233"),),
        ),
        CategoryRule(
            key=WhtCategory.SECTION_234,
            tags=("234",),
            keywords=("motor vehicle", "vehicle tax", "token tax"),
            patterns=(_section("234"),),
        ),
        CategoryRule(
            key=WhtCategory.SECTION_235,
            tags=("235",),
            keywords=("electricity",),
            patterns=(_section("235"),),
        ),
        CategoryRule(
            key=WhtCategory.SALARY,
            tags=("salary", "149", "payroll"),
            keywords=("salary", "salaries", "payroll"),
            origins=(OriginKind.PAYROLL_RUN,),
        ),
        CategoryRule(
            key=WhtCategory.OTHER,
            tags=("other",),
        ),
    ),
    fallback=WhtCategory.OTHER,
)

RULE_SETS: dict[Schema, RuleSet] = {
    Schema.RECONCILIATION: RECONCILIATION_RULES,
    Schema.WHT: WHT_RULES,
}


def _record_text(record: SourceRecord) -> str:
    parts = [record.descriptor, record.origin.reference or ""]
    return " ".join(parts).lower()


def explain(record: SourceRecord, rule_set: RuleSet) -> Classification:
    """Classify a record and report which pass decided it."""
    if record.category_tag:
        normalized = normalize_tag(record.category_tag)
        for index, rule in enumerate(rule_set.rules):
            if rule.matches_tag(normalized):
                return Classification(rule.key, MatchedBy.TAG, index)
        logger.debug(
            "unknown_category_tag",
            record_id=record.record_id,
            tag=record.category_tag,
            schema=rule_set.schema.value,
        )

    text = _record_text(record)
    for index, rule in enumerate(rule_set.rules):
        if rule.debits_only and record.amount >= 0:
            continue
        if record.origin.kind in rule.origins:
            return Classification(rule.key, MatchedBy.ORIGIN, index)
        if rule.matches_text(text):
            return Classification(rule.key, MatchedBy.TEXT, index)

    return Classification(rule_set.fallback, MatchedBy.FALLBACK)


def classify(record: SourceRecord, rule_set: RuleSet) -> CategoryKey:
    """Return the single category a record belongs to.

    Args:
        record: The record to classify.
        rule_set: Ordered rules for the target schema.

    Returns:
        A category of ``rule_set.schema``; never None.
    """
    return explain(record, rule_set).key
