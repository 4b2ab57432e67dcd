"""Tests for audit models."""

import json
from datetime import datetime, timezone

from recon_core.exceptions import DependencyUnavailable
from recon_core.models import (
    CalculationStep,
    SideEffect,
    SideEffectOutcome,
    SideEffectStatus,
    WorkflowStamp,
)


class TestWorkflowStamp:
    """Tests for WorkflowStamp model."""

    def test_naive_timestamp_becomes_utc(self):
        """Should attach UTC to a naive timestamp."""
        stamp = WorkflowStamp(
            action="prepare",
            actor="alice",
            at=datetime(2025, 1, 31, 9, 30),
            from_status="draft",
            to_status="in_progress",
        )
        assert stamp.at.tzinfo == timezone.utc

    def test_default_timestamp_is_aware(self):
        """Should default to the current UTC time."""
        stamp = WorkflowStamp(action="approve", actor="bob", from_status="completed", to_status="approved")
        assert stamp.at.tzinfo is not None

    def test_serializes_to_json(self):
        """Should serialize to JSON cleanly."""
        stamp = WorkflowStamp(
            action="submit",
            actor="tax",
            from_status="reviewed",
            to_status="submitted",
            note="Filed via portal",
        )
        data = json.loads(stamp.model_dump_json())
        assert data["action"] == "submit"
        assert data["note"] == "Filed via portal"


class TestSideEffectOutcome:
    """Tests for SideEffectOutcome model."""

    def test_not_requested_default(self):
        outcome = SideEffectOutcome.not_requested()

        assert outcome.status == SideEffectStatus.NOT_REQUESTED
        assert outcome.effect == SideEffect.NONE
        assert outcome.attempted is False

    def test_succeeded(self):
        """Should record the external reference."""
        outcome = SideEffectOutcome.succeeded(SideEffect.POST_WHT_DEPOSIT, "JE-00042")

        assert outcome.reference == "JE-00042"
        assert outcome.attempted_at is not None
        assert outcome.attempted is True

    def test_failed_keeps_error_type(self):
        """Should keep the message and exception type of the failure."""
        error = DependencyUnavailable("Ledger timed out", dependency="ledger", operation="post_entry")
        outcome = SideEffectOutcome.failed(SideEffect.POST_WHT_DEPOSIT, error)

        assert outcome.status == SideEffectStatus.FAILED
        assert outcome.error_type == "DependencyUnavailable"
        assert "Ledger timed out" in outcome.error
        assert outcome.attempted is True

    def test_skipped_is_not_an_attempt(self):
        outcome = SideEffectOutcome.skipped(SideEffect.POST_WHT_DEPOSIT, "No ledger collaborator supplied")

        assert outcome.attempted is False
        assert outcome.attempted_at is None


class TestCalculationStep:
    """Tests for CalculationStep model."""

    def test_create(self):
        step = CalculationStep(
            step="variance",
            input_value="5285.25 - 5285.25",
            output_value="0.00",
            source="Adjusted bank - adjusted ledger",
        )
        assert step.notes is None
        assert step.timestamp.tzinfo is not None
