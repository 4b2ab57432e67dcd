"""Ledger collaborator contract and balance fetching.

The engine never reaches into a ledger store directly. Callers pass in an
object satisfying ``LedgerProtocol``; any class with matching async methods
qualifies, no inheritance required.

Sign convention (per account type)::

    debit-normal  (asset, expense, contra_liability):   debits - credits
    credit-normal (liability, equity, revenue, contra_asset): credits - debits

An asset account with debits 1000 and credits 400 has balance 600; a
liability account with the same lines has balance -600.
``fetch_ledger_balance`` always applies the rule of the account type it is
given.

Example Usage:
    ```python
    ledger = InMemoryLedger()
    ledger.add_line("1110", date(2025, 1, 5), debit="1000.00")

    balance = await fetch_ledger_balance(
        ledger, "1110", date(2025, 1, 31), account_type=AccountType.ASSET
    )
    ```
"""

import asyncio
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional, Protocol, runtime_checkable
from uuid import uuid4

import structlog
from pydantic import BaseModel, Field, field_validator, model_validator

from recon_core.config import get_config
from recon_core.exceptions import ConfigurationError, DependencyUnavailable
from recon_core.models.documents import FilingDocument, PaymentMetadata
from recon_core.money import ZERO, round2, to_amount

logger = structlog.get_logger(__name__)


# =============================================================================
# ENUMERATIONS
# =============================================================================


class NormalBalance(str, Enum):
    """Side on which an account type normally carries its balance."""

    DEBIT = "debit"
    CREDIT = "credit"


class AccountType(str, Enum):
    """Chart-of-accounts types."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"
    CONTRA_ASSET = "contra_asset"
    CONTRA_LIABILITY = "contra_liability"

    @property
    def normal_balance(self) -> NormalBalance:
        if self in (AccountType.ASSET, AccountType.EXPENSE, AccountType.CONTRA_LIABILITY):
            return NormalBalance.DEBIT
        return NormalBalance.CREDIT


class EntryStatus(str, Enum):
    """Posting state of a ledger entry."""

    DRAFT = "draft"
    POSTED = "posted"
    VOID = "void"


# =============================================================================
# LEDGER DATA
# =============================================================================


class LedgerLine(BaseModel):
    """One debit/credit line of a ledger entry touching an account."""

    entry_id: str
    account: str
    entry_date: date
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    status: EntryStatus = EntryStatus.POSTED

    @field_validator("debit", "credit", mode="before")
    @classmethod
    def coerce_amount(cls, v):
        return to_amount(v)


class PostingLine(BaseModel):
    """Account line of a journal posting request."""

    account: str
    debit: Decimal = Field(default=ZERO, ge=0)
    credit: Decimal = Field(default=ZERO, ge=0)
    description: Optional[str] = None

    @field_validator("debit", "credit", mode="before")
    @classmethod
    def coerce_amount(cls, v):
        return to_amount(v)


class JournalPosting(BaseModel):
    """Request to post a balanced journal entry."""

    entry_number: str
    entry_date: date
    description: str = ""
    reference: Optional[str] = None
    lines: list[PostingLine] = Field(min_length=2)

    @model_validator(mode="after")
    def lines_balance(self) -> "JournalPosting":
        """Validate that total debits equal total credits."""
        debits = sum((ln.debit for ln in self.lines), ZERO)
        credits = sum((ln.credit for ln in self.lines), ZERO)
        if debits != credits:
            raise ValueError(f"Journal entry is not balanced: debits {debits} != credits {credits}")
        if debits == ZERO:
            raise ValueError("Journal entry has no amount")
        return self

    @property
    def total(self) -> Decimal:
        return sum((ln.debit for ln in self.lines), ZERO)


# =============================================================================
# PROTOCOL
# =============================================================================


@runtime_checkable
class LedgerProtocol(Protocol):
    """Contract for the external ledger collaborator.

    Implementations should raise ``OSError`` (or a subclass such as
    ``ConnectionError``) when the store cannot be reached; the engine turns
    those into ``DependencyUnavailable``.
    """

    async def posted_lines(self, account: str, as_of: date) -> list[LedgerLine]:
        """Lines touching ``account`` with entry date on or before ``as_of``."""
        ...

    async def post_entry(self, posting: JournalPosting) -> str:
        """Post a journal entry and return its ledger id."""
        ...


# =============================================================================
# BALANCE FETCHING
# =============================================================================


def signed_balance(debits: Decimal, credits: Decimal, account_type: AccountType) -> Decimal:
    """Reduce debit and credit totals to a balance for the account type."""
    if account_type.normal_balance == NormalBalance.DEBIT:
        return round2(debits - credits)
    return round2(credits - debits)


async def _call_ledger(awaitable, *, operation: str, timeout: float, **context):
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        logger.warning("ledger_timeout", operation=operation, timeout=timeout, **context)
        raise DependencyUnavailable(
            f"Ledger {operation} timed out after {timeout}s",
            dependency="ledger",
            operation=operation,
            details={"timeout": timeout, **context},
        ) from e
    except OSError as e:
        logger.warning("ledger_unreachable", operation=operation, error=str(e), **context)
        raise DependencyUnavailable(
            f"Ledger {operation} failed: {e}",
            dependency="ledger",
            operation=operation,
            details=dict(context),
        ) from e


async def fetch_ledger_balance(
    ledger: LedgerProtocol,
    account_ref: str,
    as_of: date,
    account_type: AccountType = AccountType.ASSET,
    timeout: Optional[float] = None,
) -> Decimal:
    """
    Signed balance of a ledger account at a cutoff date.

    Only posted lines dated on or before ``as_of`` count. Debits and credits
    are summed separately and reduced by the account type's sign rule.

    Args:
        ledger: Ledger collaborator
        account_ref: Account to query
        as_of: Cutoff date (inclusive)
        account_type: Determines the sign rule
        timeout: Seconds to wait (default: configured ledger timeout)

    Returns:
        Balance rounded to cents

    Raises:
        DependencyUnavailable: If the ledger times out or cannot be reached.
            No zero balance is ever substituted.
    """
    timeout = timeout if timeout is not None else get_config().ledger.timeout
    lines = await _call_ledger(
        ledger.posted_lines(account_ref, as_of),
        operation="posted_lines",
        timeout=timeout,
        account=account_ref,
        as_of=as_of.isoformat(),
    )

    debits = ZERO
    credits = ZERO
    counted = 0
    for line in lines:
        if line.status != EntryStatus.POSTED or line.entry_date > as_of:
            continue
        if line.account != account_ref:
            continue
        debits += line.debit
        credits += line.credit
        counted += 1

    balance = signed_balance(debits, credits, account_type)
    logger.info(
        "ledger_balance_fetched",
        account=account_ref,
        as_of=as_of.isoformat(),
        account_type=account_type.value,
        lines=counted,
        debits=str(debits),
        credits=str(credits),
        balance=str(balance),
    )
    return balance


async def post_journal_entry(
    ledger: LedgerProtocol,
    posting: JournalPosting,
    timeout: Optional[float] = None,
) -> str:
    """Send a posting to the ledger under the configured timeout."""
    timeout = timeout if timeout is not None else get_config().ledger.timeout
    return await _call_ledger(
        ledger.post_entry(posting),
        operation="post_entry",
        timeout=timeout,
        entry_number=posting.entry_number,
    )


def build_wht_deposit_posting(
    filing: FilingDocument,
    payment: PaymentMetadata,
    wht_payable_account: Optional[str] = None,
    bank_account: Optional[str] = None,
) -> JournalPosting:
    """
    Journal entry recording a WHT deposit: debit WHT payable, credit bank.

    Raises:
        ConfigurationError: If no bank account is given on the payment,
            as an argument, or in configuration.
    """
    config = get_config().ledger
    payable = wht_payable_account or config.wht_payable_account
    bank = payment.bank_account or bank_account or config.default_bank_account
    if not bank:
        raise ConfigurationError(
            "No bank account available for the WHT deposit posting",
            config_key="RECON_LEDGER_DEFAULT_BANK_ACCOUNT",
            expected="Ledger account reference",
        )

    return JournalPosting(
        entry_number=f"WHT-DEP-{filing.fiscal_year}-{filing.month:02d}",
        entry_date=payment.payment_date,
        description=f"WHT deposit for {filing.period}",
        reference=payment.reference,
        lines=[
            PostingLine(account=payable, debit=payment.amount, description="WHT payable cleared"),
            PostingLine(account=bank, credit=payment.amount, description="Tax deposited"),
        ],
    )


# =============================================================================
# IN-MEMORY COLLABORATOR
# =============================================================================


class InMemoryLedger:
    """Dict-backed ledger for tests and demonstrations.

    Set ``fail_with`` to an exception to make every call raise it, or
    ``delay`` to a number of seconds to make every call sleep first.
    """

    def __init__(self, fail_with: Optional[Exception] = None, delay: float = 0.0):
        self.lines: list[LedgerLine] = []
        self.postings: list[JournalPosting] = []
        self.fail_with = fail_with
        self.delay = delay

    def add_line(
        self,
        account: str,
        entry_date: date,
        debit="0",
        credit="0",
        status: EntryStatus = EntryStatus.POSTED,
        entry_id: Optional[str] = None,
    ) -> LedgerLine:
        line = LedgerLine(
            entry_id=entry_id or uuid4().hex,
            account=account,
            entry_date=entry_date,
            debit=debit,
            credit=credit,
            status=status,
        )
        self.lines.append(line)
        return line

    async def _maybe_fail(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with

    async def posted_lines(self, account: str, as_of: date) -> list[LedgerLine]:
        await self._maybe_fail()
        return [
            ln for ln in self.lines
            if ln.account == account and ln.entry_date <= as_of and ln.status == EntryStatus.POSTED
        ]

    async def post_entry(self, posting: JournalPosting) -> str:
        await self._maybe_fail()
        entry_id = f"JE-{len(self.postings) + 1:05d}"
        for pl in posting.lines:
            self.add_line(
                pl.account,
                posting.entry_date,
                debit=pl.debit,
                credit=pl.credit,
                entry_id=entry_id,
            )
        self.postings.append(posting)
        return entry_id
