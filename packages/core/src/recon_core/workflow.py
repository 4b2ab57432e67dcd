"""Document lifecycle state machines.

Reconciliation::

    draft -> in_progress -> completed -> approved

Filing::

    draft -> prepared -> reviewed -> submitted -> acknowledged
                                         |             |
                                         +--> amended <+

A request is allowed only when the document's current status is exactly one
of the predecessors required by the requested status; no step is skipped and
terminal statuses never move. Evaluation is pure. ``apply_transition``
returns a new document, stamps the actor, and performs the optional ledger
posting on submission with fire-and-record semantics: the posting outcome is
recorded next to the transition and never rolls it back.
"""

from datetime import datetime, timezone
from typing import Optional, Union

import structlog
from pydantic import BaseModel, Field, field_validator

from recon_core.config import EngineConfig, get_config
from recon_core.exceptions import InvalidTransition
from recon_core.ledger import LedgerProtocol, build_wht_deposit_posting, post_journal_entry
from recon_core.logging_config import document_context
from recon_core.models.audit import SideEffect, SideEffectOutcome, WorkflowStamp
from recon_core.models.documents import (
    FilingDocument,
    FilingStatus,
    PaymentMetadata,
    ReconciliationDocument,
    ReconciliationStatus,
    SubmissionInfo,
)
from recon_core.orchestrator import recompute

logger = structlog.get_logger(__name__)

Document = Union[ReconciliationDocument, FilingDocument]
Status = Union[ReconciliationStatus, FilingStatus]


# Requested status -> statuses it may be reached from.
RECONCILIATION_PREDECESSORS: dict[ReconciliationStatus, tuple[ReconciliationStatus, ...]] = {
    ReconciliationStatus.IN_PROGRESS: (ReconciliationStatus.DRAFT,),
    ReconciliationStatus.COMPLETED: (ReconciliationStatus.IN_PROGRESS,),
    ReconciliationStatus.APPROVED: (ReconciliationStatus.COMPLETED,),
}

FILING_PREDECESSORS: dict[FilingStatus, tuple[FilingStatus, ...]] = {
    FilingStatus.PREPARED: (FilingStatus.DRAFT,),
    FilingStatus.REVIEWED: (FilingStatus.PREPARED,),
    FilingStatus.SUBMITTED: (FilingStatus.REVIEWED,),
    FilingStatus.ACKNOWLEDGED: (FilingStatus.SUBMITTED,),
    FilingStatus.AMENDED: (FilingStatus.SUBMITTED, FilingStatus.ACKNOWLEDGED),
}

TERMINAL_STATUSES: frozenset[Status] = frozenset(
    {ReconciliationStatus.APPROVED, FilingStatus.AMENDED}
)

ACTIONS: dict[Status, str] = {
    ReconciliationStatus.IN_PROGRESS: "prepare",
    ReconciliationStatus.COMPLETED: "review",
    ReconciliationStatus.APPROVED: "approve",
    FilingStatus.PREPARED: "prepare",
    FilingStatus.REVIEWED: "review",
    FilingStatus.SUBMITTED: "submit",
    FilingStatus.ACKNOWLEDGED: "acknowledge",
    FilingStatus.AMENDED: "amend",
}


class TransitionRequest(BaseModel):
    """A caller's request to move a document to another status."""

    requested_status: str = Field(description="Target status value")
    actor: str = Field(min_length=1, description="Identity of the acting user")
    note: Optional[str] = None
    acknowledgement_number: Optional[str] = Field(
        default=None,
        description="Reference issued by the tax authority (acknowledge only)",
    )
    payment: Optional[PaymentMetadata] = Field(
        default=None,
        description="Deposit details supplied with a filing submission",
    )

    @field_validator("requested_status", mode="before")
    @classmethod
    def coerce_status(cls, v):
        """Accept status enums as well as their string values."""
        if isinstance(v, (ReconciliationStatus, FilingStatus)):
            return v.value
        return v

    @field_validator("actor")
    @classmethod
    def actor_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("actor must not be blank")
        return v.strip()


class TransitionDecision(BaseModel):
    """Allow/deny verdict plus the side effect an allowed move requests."""

    allowed: bool
    current_status: str
    requested_status: str
    reason: Optional[str] = None
    message: Optional[str] = None
    side_effect: SideEffect = SideEffect.NONE


class TransitionResult(BaseModel):
    """Outcome of an applied transition."""

    document: Union[ReconciliationDocument, FilingDocument]
    new_status: str
    side_effect_outcome: SideEffectOutcome = Field(default_factory=SideEffectOutcome.not_requested)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _deny(current: Status, requested: str, reason: str, message: str) -> TransitionDecision:
    return TransitionDecision(
        allowed=False,
        current_status=current.value,
        requested_status=requested,
        reason=reason,
        message=message,
    )


def evaluate_transition(
    document: Document,
    request: TransitionRequest,
    config: Optional[EngineConfig] = None,
) -> TransitionDecision:
    """
    Decide whether a transition is legal, without touching the document.

    Args:
        document: Current snapshot
        request: Requested status and actor
        config: Engine settings (default: global configuration)

    Returns:
        TransitionDecision; ``reason`` names the failed guard when denied
    """
    config = config or get_config().engine
    current = document.status

    if isinstance(document, ReconciliationDocument):
        status_type, table = ReconciliationStatus, RECONCILIATION_PREDECESSORS
    else:
        status_type, table = FilingStatus, FILING_PREDECESSORS

    try:
        target = status_type(request.requested_status)
    except ValueError:
        return _deny(
            current,
            request.requested_status,
            "unknown_status",
            f"Unknown status {request.requested_status!r}",
        )

    if current in TERMINAL_STATUSES:
        return _deny(current, target.value, "terminal", f"{current.value} is terminal")

    predecessors = table.get(target, ())
    if current not in predecessors:
        order = list(status_type)
        reason = "skipped_step" if order.index(target) > order.index(current) else "backward"
        if not predecessors:
            reason = "backward"
        return _deny(
            current,
            target.value,
            reason,
            f"Cannot move from {current.value} to {target.value}",
        )

    if (
        target == ReconciliationStatus.COMPLETED
        and config.require_reconciled_to_complete
        and not document.derived.reconciled
    ):
        variance = document.derived.variance
        return _deny(
            current,
            target.value,
            "not_reconciled",
            "Closing ledger balance is unknown"
            if variance is None
            else f"Variance {variance} is outside tolerance",
        )

    if target == FilingStatus.ACKNOWLEDGED and not (request.acknowledgement_number or "").strip():
        return _deny(
            current,
            target.value,
            "missing_acknowledgement",
            "Acknowledgement requires the reference issued by the tax authority",
        )

    side_effect = SideEffect.NONE
    if target == FilingStatus.SUBMITTED and request.payment is not None:
        side_effect = SideEffect.POST_WHT_DEPOSIT

    return TransitionDecision(
        allowed=True,
        current_status=current.value,
        requested_status=target.value,
        side_effect=side_effect,
    )


def _stamp_fields(target: Status, actor: str, at: datetime) -> dict:
    if target in (ReconciliationStatus.IN_PROGRESS, FilingStatus.PREPARED):
        return {"prepared_by": actor, "prepared_at": at}
    if target in (ReconciliationStatus.COMPLETED, FilingStatus.REVIEWED):
        return {"reviewed_by": actor, "reviewed_at": at}
    if target == ReconciliationStatus.APPROVED:
        return {"approved_by": actor, "approved_at": at}
    if target == FilingStatus.SUBMITTED:
        return {"submitted_by": actor, "submitted_at": at}
    return {}


async def _post_deposit(
    filing: FilingDocument,
    payment: PaymentMetadata,
    ledger: Optional[LedgerProtocol],
) -> SideEffectOutcome:
    effect = SideEffect.POST_WHT_DEPOSIT
    if filing.posting.attempted:
        logger.info("wht_deposit_posting_skipped", document_id=filing.document_id, reason="already_attempted")
        return SideEffectOutcome.skipped(effect, "Posting already attempted for this submission")
    if ledger is None:
        logger.info("wht_deposit_posting_skipped", document_id=filing.document_id, reason="no_ledger")
        return SideEffectOutcome.skipped(effect, "No ledger collaborator supplied")

    try:
        posting = build_wht_deposit_posting(filing, payment)
        entry_id = await post_journal_entry(ledger, posting)
    except Exception as e:
        # Recorded on the document; the status change still stands.
        logger.error(
            "wht_deposit_posting_failed",
            document_id=filing.document_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        return SideEffectOutcome.failed(effect, e)

    logger.info(
        "wht_deposit_posted",
        document_id=filing.document_id,
        entry_id=entry_id,
        entry_number=posting.entry_number,
        amount=str(payment.amount),
    )
    return SideEffectOutcome.succeeded(effect, entry_id)


async def apply_transition(
    document: Document,
    request: TransitionRequest,
    ledger: Optional[LedgerProtocol] = None,
    config: Optional[EngineConfig] = None,
) -> TransitionResult:
    """
    Apply a transition and return the new snapshot.

    Args:
        document: Current snapshot (never modified)
        request: Requested status, actor and optional submission data
        ledger: Collaborator used for the WHT deposit posting on submit
        config: Engine settings (default: global configuration)

    Returns:
        TransitionResult with the new document and the side-effect outcome

    Raises:
        InvalidTransition: If any guard rejects the request
    """
    with document_context(document):
        return await _apply_transition(document, request, ledger, config)


async def _apply_transition(
    document: Document,
    request: TransitionRequest,
    ledger: Optional[LedgerProtocol],
    config: Optional[EngineConfig],
) -> TransitionResult:
    decision = evaluate_transition(document, request, config)
    if not decision.allowed:
        logger.warning(
            "transition_rejected",
            document_id=document.document_id,
            current_status=decision.current_status,
            requested_status=decision.requested_status,
            reason=decision.reason,
        )
        raise InvalidTransition(
            decision.message or "Transition not allowed",
            current_status=decision.current_status,
            requested_status=decision.requested_status,
            reason=decision.reason,
            details={"document_id": document.document_id},
        )

    at = _utc_now()
    target = type(document.status)(decision.requested_status)
    stamp = WorkflowStamp(
        action=ACTIONS[target],
        actor=request.actor,
        at=at,
        from_status=decision.current_status,
        to_status=target.value,
        note=request.note,
    )
    updates = {
        "status": target,
        "history": [*document.history, stamp],
        **_stamp_fields(target, request.actor, at),
    }

    outcome = SideEffectOutcome.not_requested()
    if isinstance(document, FilingDocument):
        if target == FilingStatus.SUBMITTED:
            updates["submission"] = SubmissionInfo(submitted_at=at, payment=request.payment)
        elif target == FilingStatus.ACKNOWLEDGED:
            submission = document.submission or SubmissionInfo(submitted_at=at)
            updates["submission"] = submission.model_copy(
                update={
                    "acknowledgement_number": request.acknowledgement_number.strip(),
                    "acknowledged_at": at,
                }
            )

    new_document = document.model_copy(update=updates)

    if isinstance(new_document, FilingDocument) and target == FilingStatus.SUBMITTED:
        # Deposited amount feeds the filing totals.
        new_document = recompute(new_document)
        if decision.side_effect == SideEffect.POST_WHT_DEPOSIT:
            outcome = await _post_deposit(new_document, request.payment, ledger)
            new_document = new_document.model_copy(update={"posting": outcome})

    logger.info(
        "transition_applied",
        document_id=document.document_id,
        action=stamp.action,
        actor=request.actor,
        from_status=stamp.from_status,
        to_status=stamp.to_status,
        side_effect=outcome.status.value,
    )
    return TransitionResult(
        document=new_document,
        new_status=target.value,
        side_effect_outcome=outcome,
    )
