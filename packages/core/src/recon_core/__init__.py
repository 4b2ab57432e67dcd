"""Recon Core - Bank reconciliation and withholding-tax aggregation engine."""

__version__ = "0.1.0"

from .aggregator import Aggregation, ClassifiedRecord, aggregate
from .balance import BalanceEngine, FilingBalances, ReconciliationBalances
from .classifier import RECONCILIATION_RULES, RULE_SETS, WHT_RULES, classify, explain
from .exceptions import (
    ConfigurationError,
    DependencyUnavailable,
    DocumentLockedError,
    DuplicateDocumentError,
    InvalidTransition,
    ReconError,
    RoundingInvariantViolation,
    StaleDocumentError,
    ValidationError,
)
from .ledger import AccountType, InMemoryLedger, LedgerProtocol, fetch_ledger_balance
from .models import (
    FilingDocument,
    FilingStatus,
    MatchStatus,
    PaymentMetadata,
    ReconCategory,
    ReconciliationDocument,
    ReconciliationStatus,
    SourceRecord,
    WhtCategory,
    ingest_record,
    ingest_records,
)
from .orchestrator import new_filing, new_reconciliation, recompute
from .registry import DocumentRegistry
from .workflow import TransitionRequest, TransitionResult, apply_transition, evaluate_transition

__all__ = [
    # Engine
    "aggregate",
    "Aggregation",
    "ClassifiedRecord",
    "BalanceEngine",
    "FilingBalances",
    "ReconciliationBalances",
    "classify",
    "explain",
    "RECONCILIATION_RULES",
    "RULE_SETS",
    "WHT_RULES",
    "recompute",
    "new_filing",
    "new_reconciliation",
    # Workflow
    "apply_transition",
    "evaluate_transition",
    "TransitionRequest",
    "TransitionResult",
    # Ledger
    "AccountType",
    "InMemoryLedger",
    "LedgerProtocol",
    "fetch_ledger_balance",
    # Models
    "FilingDocument",
    "FilingStatus",
    "MatchStatus",
    "PaymentMetadata",
    "ReconCategory",
    "ReconciliationDocument",
    "ReconciliationStatus",
    "SourceRecord",
    "WhtCategory",
    "ingest_record",
    "ingest_records",
    "DocumentRegistry",
    # Errors
    "ReconError",
    "ValidationError",
    "InvalidTransition",
    "DocumentLockedError",
    "DuplicateDocumentError",
    "StaleDocumentError",
    "DependencyUnavailable",
    "RoundingInvariantViolation",
    "ConfigurationError",
]
