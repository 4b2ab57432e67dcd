"""Audit models for workflow stamps and side-effect outcomes.

This module records who moved a document, when, and what happened to any
external side effect the move triggered.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


def _utc_now() -> datetime:
    """Return current UTC datetime with timezone info."""
    return datetime.now(timezone.utc)


class SideEffect(str, Enum):
    """External side effects a transition may request."""

    NONE = "none"
    POST_WHT_DEPOSIT = "post_wht_deposit"


class SideEffectStatus(str, Enum):
    """Outcome of a side effect attempt."""

    NOT_REQUESTED = "not_requested"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class WorkflowStamp(BaseModel):
    """Single applied transition.

    Attributes:
        action: Verb recorded for the step (e.g. "prepare", "approve")
        actor: Identity supplied by the caller
        at: When the transition was applied (UTC)
        from_status: Status before the transition
        to_status: Status after the transition
        note: Optional free-text comment from the caller
    """

    action: str
    actor: str
    at: datetime = Field(default_factory=_utc_now)
    from_status: str
    to_status: str
    note: Optional[str] = None

    def model_post_init(self, __context) -> None:
        """Ensure timestamp is timezone-aware."""
        if self.at.tzinfo is None:
            object.__setattr__(self, "at", self.at.replace(tzinfo=timezone.utc))


class SideEffectOutcome(BaseModel):
    """Recorded result of a fire-and-record side effect.

    A failed outcome never rolls back the transition that triggered it; the
    failure is surfaced here for the caller to act on.

    Attributes:
        effect: Which side effect this outcome belongs to
        status: What happened
        attempted_at: When the attempt was made (None if never attempted)
        reference: External reference on success (e.g. ledger entry id)
        error: Error message on failure
        error_type: Exception type name on failure
    """

    effect: SideEffect = SideEffect.NONE
    status: SideEffectStatus = SideEffectStatus.NOT_REQUESTED
    attempted_at: Optional[datetime] = None
    reference: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def attempted(self) -> bool:
        """Whether an attempt reached the collaborator."""
        return self.status in (SideEffectStatus.SUCCEEDED, SideEffectStatus.FAILED)

    @classmethod
    def not_requested(cls) -> "SideEffectOutcome":
        return cls()

    @classmethod
    def succeeded(cls, effect: SideEffect, reference: str) -> "SideEffectOutcome":
        return cls(
            effect=effect,
            status=SideEffectStatus.SUCCEEDED,
            attempted_at=_utc_now(),
            reference=reference,
        )

    @classmethod
    def failed(cls, effect: SideEffect, exc: Exception) -> "SideEffectOutcome":
        """Create an outcome from the exception raised by the collaborator."""
        return cls(
            effect=effect,
            status=SideEffectStatus.FAILED,
            attempted_at=_utc_now(),
            error=str(exc),
            error_type=type(exc).__name__,
        )

    @classmethod
    def skipped(cls, effect: SideEffect, reason: str) -> "SideEffectOutcome":
        return cls(effect=effect, status=SideEffectStatus.SKIPPED, error=reason)


class CalculationStep(BaseModel):
    """One step of a balance computation, kept for the audit trail.

    Attributes:
        step: Name of the step (e.g. "adjusted_bank_balance")
        input_value: Operands as they went in
        output_value: Result of the step
        source: Rule or formula applied
        notes: Additional context
    """

    timestamp: datetime = Field(default_factory=_utc_now)
    step: str
    input_value: str
    output_value: str
    source: str
    notes: Optional[str] = None
