"""Pytest configuration and fixtures."""

from datetime import date
from decimal import Decimal

import pytest

from recon_core.config import get_config
from recon_core.ledger import InMemoryLedger
from recon_core.models import (
    Counterparty,
    OriginKind,
    RecordOrigin,
    ReconciliationDocument,
    SourceRecord,
)


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch):
    """Drop the cached configuration so env overrides apply per test."""
    for name in ("RECON_ENV", "RECON_LOG_LEVEL", "RECON_LOG_FORMAT"):
        monkeypatch.delenv(name, raising=False)
    get_config.cache_clear()
    yield
    get_config.cache_clear()


def _make_record(amount, descriptor: str = "", tag=None, **kwargs) -> SourceRecord:
    """Build a SourceRecord dated 2025-01-15 unless told otherwise."""
    return SourceRecord(
        amount=amount,
        timestamp=kwargs.pop("timestamp", date(2025, 1, 15)),
        descriptor=descriptor,
        category_tag=tag,
        **kwargs,
    )


def _make_wht_record(
    gross,
    withheld,
    descriptor: str = "",
    tag=None,
    vendor: str = "Acme Traders",
    ntn=None,
    **kwargs,
) -> SourceRecord:
    return _make_record(
        gross,
        descriptor,
        tag,
        withheld_amount=withheld,
        origin=kwargs.pop("origin", RecordOrigin(kind=OriginKind.VENDOR_PAYMENT)),
        counterparty=Counterparty(name=vendor, ntn=ntn),
        **kwargs,
    )


@pytest.fixture
def reconciliation() -> ReconciliationDocument:
    """Draft January reconciliation with no lines and no ledger balance yet."""
    return ReconciliationDocument(
        account_ref="1110",
        period="2025-01",
        fiscal_year="2024-2025",
        reconciliation_date=date(2025, 1, 31),
        opening_balance_bank=Decimal("4200.00"),
        opening_balance_ledger=Decimal("4200.00"),
        closing_balance_bank=Decimal("5000.00"),
    )


@pytest.fixture
def ledger() -> InMemoryLedger:
    """Ledger whose bank account 1110 holds 5285.25 at the end of January."""
    ledger = InMemoryLedger()
    ledger.add_line("1110", date(2025, 1, 2), debit="6000.00")
    ledger.add_line("1110", date(2025, 1, 20), credit="714.75")
    return ledger


@pytest.fixture
def make_record():
    """Factory for plain source records."""
    return _make_record


@pytest.fixture
def make_wht_record():
    """Factory for vendor-payment records with tax withheld."""
    return _make_wht_record
