"""Data models for recon-core.

This package provides:
- Source records and category enumerations (records.py)
- Reconciliation and filing documents with their derived fields (documents.py)
- Workflow stamps and side-effect outcomes (audit.py)
"""

from recon_core.models.audit import (
    CalculationStep,
    SideEffect,
    SideEffectOutcome,
    SideEffectStatus,
    WorkflowStamp,
)
from recon_core.models.documents import (
    AdjustmentEntry,
    CategoryBucket,
    ErrorSide,
    FilingDerived,
    FilingDocument,
    FilingStatus,
    FilingTotals,
    FilingType,
    MatchStatus,
    PaymentMetadata,
    ReconciliationDerived,
    ReconciliationDocument,
    ReconciliationStatus,
    StatementLine,
    SubmissionInfo,
)
from recon_core.models.records import (
    CategoryKey,
    Counterparty,
    OriginKind,
    ReconCategory,
    RecordOrigin,
    Schema,
    SourceRecord,
    WhtCategory,
    ingest_record,
    ingest_records,
)

__all__ = [
    # Records
    "CategoryKey",
    "Counterparty",
    "OriginKind",
    "ReconCategory",
    "RecordOrigin",
    "Schema",
    "SourceRecord",
    "WhtCategory",
    "ingest_record",
    "ingest_records",
    # Documents
    "AdjustmentEntry",
    "CategoryBucket",
    "ErrorSide",
    "FilingDerived",
    "FilingDocument",
    "FilingStatus",
    "FilingTotals",
    "FilingType",
    "MatchStatus",
    "PaymentMetadata",
    "ReconciliationDerived",
    "ReconciliationDocument",
    "ReconciliationStatus",
    "StatementLine",
    "SubmissionInfo",
    # Audit
    "CalculationStep",
    "SideEffect",
    "SideEffectOutcome",
    "SideEffectStatus",
    "WorkflowStamp",
]
