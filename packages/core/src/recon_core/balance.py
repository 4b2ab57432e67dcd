"""Derived balances for reconciliations and filings.

This module provides the BalanceEngine, which turns aggregated buckets into:
1. Adjusted bank / adjusted ledger balances, variance and the reconciled flag
2. Filing totals (gross, withheld, net, deposited, variance)

Reconciliation equations::

    adjusted_bank   = CB + DIT - OC
    adjusted_ledger = CL + INT - BC - RC
    variance        = round2(adjusted_bank - adjusted_ledger)
    reconciled      = |variance| < tolerance

Reconciliation buckets hold magnitudes: the category, not the sign of an
amount, decides which side of an equation it lands on. DIT and OC use the
full bucket amount. INT, BC and RC use only the part not yet posted to the
ledger, since a posted entry is already inside CL. Every step is logged for
the audit trail.
"""

from collections.abc import Mapping
from decimal import Decimal
from typing import Optional

import structlog
from pydantic import BaseModel, Field

from recon_core.aggregator import Aggregation
from recon_core.config import get_config
from recon_core.models.audit import CalculationStep
from recon_core.models.documents import CategoryBucket, FilingTotals
from recon_core.models.records import CategoryKey, ReconCategory
from recon_core.money import ZERO, round2

logger = structlog.get_logger(__name__)


class ReconciliationBalances(BaseModel):
    """Output of the reconciliation equations.

    The three balance fields stay None (and ``reconciled`` False) while the
    closing ledger balance is unknown.
    """

    adjusted_bank_balance: Optional[Decimal] = None
    adjusted_ledger_balance: Optional[Decimal] = None
    variance: Optional[Decimal] = None
    reconciled: bool = False
    steps: list[CalculationStep] = Field(default_factory=list)


class FilingBalances(BaseModel):
    """Output of the filing equations."""

    totals: FilingTotals
    steps: list[CalculationStep] = Field(default_factory=list)


class BalanceEngine:
    """
    Compute derived balances from aggregated buckets.

    Pure apart from logging: the same buckets and balances always give the
    same result. Each call builds its own calculation trail, so one engine
    can serve any number of documents at once.
    """

    def __init__(self, tolerance: Optional[Decimal] = None):
        """
        Initialize the engine.

        Args:
            tolerance: Absolute variance below which a reconciliation counts
                as reconciled (default: configured engine tolerance)
        """
        self.tolerance = tolerance if tolerance is not None else get_config().engine.tolerance

    @staticmethod
    def _log_step(
        steps: list[CalculationStep],
        step: str,
        input_value: str,
        output_value: str,
        source: str,
        notes: Optional[str] = None,
    ) -> None:
        """Add an entry to the calculation trail."""
        steps.append(
            CalculationStep(
                step=step,
                input_value=input_value,
                output_value=output_value,
                source=source,
                notes=notes,
            )
        )
        logger.debug(
            "calculation_step",
            step=step,
            input=input_value,
            output=output_value,
            source=source,
        )

    def reconcile(
        self,
        closing_bank: Decimal,
        closing_ledger: Optional[Decimal],
        buckets: Mapping[CategoryKey, CategoryBucket],
    ) -> ReconciliationBalances:
        """
        Apply the reconciliation equations.

        Args:
            closing_bank: Closing balance reported by the bank
            closing_ledger: Closing balance of the ledger account, or None
                if it has not been fetched or entered yet
            buckets: Reconciliation buckets holding magnitudes

        Returns:
            ReconciliationBalances with the calculation trail
        """
        steps: list[CalculationStep] = []

        def bucket_sum(key: ReconCategory, unposted_only: bool) -> Decimal:
            bucket = buckets.get(key) or CategoryBucket(key=key)
            return bucket.unposted_sum if unposted_only else bucket.gross_sum

        dit = bucket_sum(ReconCategory.DEPOSITS_IN_TRANSIT, unposted_only=False)
        oc = bucket_sum(ReconCategory.OUTSTANDING_CHECKS, unposted_only=False)
        interest = bucket_sum(ReconCategory.INTEREST_EARNED, unposted_only=True)
        charges = bucket_sum(ReconCategory.BANK_CHARGES, unposted_only=True)
        returned = bucket_sum(ReconCategory.RETURNED_CHECKS, unposted_only=True)

        adjusted_bank = round2(closing_bank + dit - oc)
        self._log_step(
            steps,
            step="adjusted_bank_balance",
            input_value=f"{closing_bank} + {dit} - {oc}",
            output_value=str(adjusted_bank),
            source="Closing bank + deposits in transit - outstanding checks",
        )

        if closing_ledger is None:
            self._log_step(
                steps,
                step="adjusted_ledger_balance",
                input_value="closing ledger balance unknown",
                output_value="None",
                source="Ledger balance not fetched",
                notes="Balance fields left empty; never defaulted to zero",
            )
            logger.info("reconciliation_pending_ledger_balance", adjusted_bank=str(adjusted_bank))
            return ReconciliationBalances(steps=steps)

        adjusted_ledger = round2(closing_ledger + interest - charges - returned)
        self._log_step(
            steps,
            step="adjusted_ledger_balance",
            input_value=f"{closing_ledger} + {interest} - {charges} - {returned}",
            output_value=str(adjusted_ledger),
            source="Closing ledger + unposted interest - unposted charges - unposted returns",
        )

        variance = round2(adjusted_bank - adjusted_ledger)
        reconciled = abs(variance) < self.tolerance
        self._log_step(
            steps,
            step="variance",
            input_value=f"{adjusted_bank} - {adjusted_ledger}",
            output_value=str(variance),
            source="Adjusted bank - adjusted ledger",
            notes=f"reconciled={reconciled} (tolerance {self.tolerance})",
        )

        return ReconciliationBalances(
            adjusted_bank_balance=adjusted_bank,
            adjusted_ledger_balance=adjusted_ledger,
            variance=variance,
            reconciled=reconciled,
            steps=steps,
        )

    def filing_totals(self, aggregation: Aggregation, deposited: Decimal = ZERO) -> FilingBalances:
        """
        Grand totals of a filing from its section buckets.

        Args:
            aggregation: WHT aggregation
            deposited: Amount paid to the tax authority (0 until paid)

        Returns:
            FilingBalances whose totals' gross and withheld are the bucket sums
        """
        steps: list[CalculationStep] = []
        gross = aggregation.grand_total
        withheld = aggregation.grand_secondary
        net = round2(gross - withheld)
        deposited = round2(deposited)
        variance = round2(withheld - deposited)

        self._log_step(
            steps,
            step="filing_net",
            input_value=f"{gross} - {withheld}",
            output_value=str(net),
            source="Gross payments - tax withheld",
        )
        self._log_step(
            steps,
            step="filing_variance",
            input_value=f"{withheld} - {deposited}",
            output_value=str(variance),
            source="Tax withheld - tax deposited",
        )

        totals = FilingTotals(
            record_count=aggregation.record_count,
            gross=gross,
            withheld=withheld,
            net=net,
            deposited=deposited,
            variance=variance,
        )
        return FilingBalances(totals=totals, steps=steps)
