#!/usr/bin/env python3
"""
Month-End Close Demonstration

This script walks one month through the engine:
1. Reconcile a bank account against the ledger
2. Prepare, review and submit the monthly WHT statement
3. Report on vendor withholding and filing compliance

Run: python examples/month_end_demo.py
"""

import asyncio
from datetime import date

from recon_core import (
    DocumentRegistry,
    InMemoryLedger,
    PaymentMetadata,
    ReconCategory,
    TransitionRequest,
    apply_transition,
    new_filing,
    new_reconciliation,
)
from recon_core.logging_config import configure_logging
from recon_core.orchestrator import add_adjustment, add_statement_lines, refresh_ledger_balance
from recon_core.reports import compliance_status, vendor_wht_report


def create_ledger() -> InMemoryLedger:
    """Ledger with January activity on bank account 1110."""
    ledger = InMemoryLedger()
    ledger.add_line("1110", date(2025, 1, 2), debit="6000.00")
    ledger.add_line("1110", date(2025, 1, 20), credit="714.75")
    return ledger


def wht_payments() -> list[dict]:
    """January vendor payments with tax withheld at source."""
    return [
        {
            "record_id": "PV-0101",
            "date": "2025-01-08",
            "amount": "250000.00",
            "withheld_amount": "20000.00",
            "descriptor": "IT services - annual support",
            "origin": {"kind": "vendor_payment", "reference": "PV-0101"},
            "counterparty": {"name": "Bytes Ltd", "ntn": "1234567-8"},
        },
        {
            "record_id": "PV-0102",
            "date": "2025-01-14",
            "amount": "84000.00",
            "withheld_amount": "3780.00",
            "descriptor": "Supplies of stationery",
            "origin": {"kind": "vendor_payment", "reference": "PV-0102"},
            "counterparty": {"name": "Paper House", "ntn": "7654321-0"},
        },
        {
            "record_id": "PR-2025-01",
            "date": "2025-01-31",
            "amount": "1200000.00",
            "withheld_amount": "64000.00",
            "descriptor": "January payroll",
            "origin": {"kind": "payroll_run", "reference": "PR-2025-01"},
        },
    ]


async def main():
    """Run the month-end demonstration."""
    configure_logging(level="WARNING")
    registry = DocumentRegistry()
    ledger = create_ledger()

    print("=" * 70)
    print("RECON CORE - Month-End Close Demo")
    print("=" * 70)
    print()

    # Step 1: Bank reconciliation
    print("Step 1: Reconciling bank account 1110 for January 2025...")
    recon = registry.create(new_reconciliation("1110", 2025, 1, closing_balance_bank="5000.00"))
    for record_id, amount in (("DIT-1", "100.00"), ("DIT-2", "250.50"), ("DIT-3", "10.00")):
        recon = add_adjustment(
            recon,
            ReconCategory.DEPOSITS_IN_TRANSIT,
            {"record_id": record_id, "date": "2025-01-31", "amount": amount, "descriptor": "Cash deposit"},
        )
    recon = add_statement_lines(
        recon,
        [{"record_id": "CHQ-1001", "date": "2025-01-29", "amount": "-75.25", "descriptor": "CHQ 1001"}],
    )
    recon = await refresh_ledger_balance(recon, ledger)
    recon = registry.replace(recon)

    derived = recon.derived
    print(f"  - Closing bank balance:   {recon.closing_balance_bank:>12,.2f}")
    print(f"  - Closing ledger balance: {recon.closing_balance_ledger:>12,.2f}")
    print(f"  - Adjusted bank balance:  {derived.adjusted_bank_balance:>12,.2f}")
    print(f"  - Adjusted ledger balance:{derived.adjusted_ledger_balance:>12,.2f}")
    print(f"  - Variance:               {derived.variance:>12,.2f}")
    print(f"  - Reconciled: {derived.reconciled}")

    for status, actor in (("in_progress", "preparer"), ("completed", "reviewer"), ("approved", "controller")):
        recon = (await apply_transition(recon, TransitionRequest(requested_status=status, actor=actor))).document
    recon = registry.replace(recon)
    print(f"  - Status: {recon.status.value} (approved by {recon.approved_by})")
    print()

    # Step 2: WHT statement
    print("Step 2: Preparing the January WHT statement...")
    filing = registry.create(new_filing("ACME", 2025, 1, wht_payments()))
    for key, bucket in filing.derived.buckets.items():
        if bucket.count:
            print(f"  - {key.value:<16} {bucket.count:>3} record(s)  withheld {bucket.withheld_sum:>12,.2f}")

    payment = PaymentMetadata(
        amount=filing.derived.totals.withheld,
        payment_date=date(2025, 2, 12),
        challan_number="CH-2025-0001",
        bank_account="1110",
    )
    for status in ("prepared", "reviewed"):
        filing = (await apply_transition(filing, TransitionRequest(requested_status=status, actor="tax"))).document
    result = await apply_transition(
        filing,
        TransitionRequest(requested_status="submitted", actor="tax", payment=payment),
        ledger=ledger,
    )
    filing = registry.replace(result.document)
    totals = filing.derived.totals
    print(f"  - Gross: {totals.gross:,.2f}  Withheld: {totals.withheld:,.2f}  Deposited: {totals.deposited:,.2f}")
    print(f"  - Deposit posting: {result.side_effect_outcome.status.value} {result.side_effect_outcome.reference or ''}")
    print()

    # Step 3: Reports
    print("Step 3: Reports...")
    for vendor in vendor_wht_report(registry.filings("ACME")).vendors:
        print(f"  - {vendor.name or vendor.key:<12} withheld {vendor.total_withheld:>12,.2f}")
    status = compliance_status(registry.filings("ACME"), date(2025, 2, 20))
    print(f"  - FY {status.fiscal_year}: {status.months_filed}/{status.months_due} months filed")
    print(f"  - Compliance rate: {status.compliance_rate}%")

    print()
    print("=" * 70)
    print("Demo complete!")
    print("=" * 70)


if __name__ == "__main__":
    asyncio.run(main())
