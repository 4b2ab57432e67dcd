"""Tests for the document lifecycle state machines."""

from datetime import date
from decimal import Decimal

import pydantic
import pytest

from recon_core.config import EngineConfig
from recon_core.exceptions import InvalidTransition
from recon_core.ledger import InMemoryLedger
from recon_core.models import (
    FilingDocument,
    FilingStatus,
    PaymentMetadata,
    ReconciliationDocument,
    ReconciliationStatus,
    SideEffect,
    SideEffectOutcome,
    SideEffectStatus,
)
from recon_core.orchestrator import add_filing_records, new_filing, recompute, set_closing_balances
from recon_core.workflow import TransitionRequest, apply_transition, evaluate_transition


def request(status, actor: str = "alice", **kwargs) -> TransitionRequest:
    return TransitionRequest(requested_status=status, actor=actor, **kwargs)


@pytest.fixture
def reconciled(reconciliation: ReconciliationDocument) -> ReconciliationDocument:
    """Reconciliation whose bank and ledger balances agree."""
    return set_closing_balances(reconciliation, closing_ledger="5000.00")


@pytest.fixture
def filing(make_wht_record) -> FilingDocument:
    """Draft January WHT filing with one services payment."""
    document = new_filing("ACME", 2025, 1)
    return add_filing_records(document, [make_wht_record("100000", "8000", "IT services", record_id="p1")])


async def advance(document, *statuses, **kwargs):
    for status in statuses:
        document = (await apply_transition(document, request(status), **kwargs)).document
    return document


class TestReconciliationWorkflow:
    """Test suite for the reconciliation state machine."""

    @pytest.mark.asyncio
    async def test_happy_path_stamps_actors(self, reconciled: ReconciliationDocument):
        """Each step should record its actor and timestamp."""
        doc = (await apply_transition(reconciled, request("in_progress", "preparer"))).document
        doc = (await apply_transition(doc, request("completed", "reviewer"))).document
        result = await apply_transition(doc, request("approved", "controller", note="ok"))
        doc = result.document

        assert result.new_status == "approved"
        assert doc.status == ReconciliationStatus.APPROVED
        assert doc.prepared_by == "preparer"
        assert doc.reviewed_by == "reviewer"
        assert doc.approved_by == "controller"
        assert doc.approved_at is not None
        assert [s.action for s in doc.history] == ["prepare", "review", "approve"]
        assert doc.history[-1].note == "ok"
        assert result.side_effect_outcome.status == SideEffectStatus.NOT_REQUESTED

    @pytest.mark.asyncio
    async def test_skipping_steps_is_rejected(self, reconciled: ReconciliationDocument):
        """draft -> approved should raise and leave the document as it was."""
        with pytest.raises(InvalidTransition) as exc_info:
            await apply_transition(reconciled, request("approved"))

        assert exc_info.value.reason == "skipped_step"
        assert exc_info.value.current_status == "draft"
        assert reconciled.status == ReconciliationStatus.DRAFT
        assert reconciled.history == []

    @pytest.mark.asyncio
    async def test_backward_move_is_rejected(self, reconciled: ReconciliationDocument):
        doc = await advance(reconciled, "in_progress")

        with pytest.raises(InvalidTransition) as exc_info:
            await apply_transition(doc, request("draft"))

        assert exc_info.value.reason == "backward"

    @pytest.mark.asyncio
    async def test_approved_is_terminal(self, reconciled: ReconciliationDocument):
        doc = await advance(reconciled, "in_progress", "completed", "approved")

        with pytest.raises(InvalidTransition) as exc_info:
            await apply_transition(doc, request("approved"))

        assert exc_info.value.reason == "terminal"

    @pytest.mark.asyncio
    async def test_completion_requires_reconciled(self, reconciliation: ReconciliationDocument):
        """A document with a variance cannot be completed by default."""
        doc = set_closing_balances(reconciliation, closing_ledger="4999.00")
        doc = await advance(doc, "in_progress")

        decision = evaluate_transition(doc, request("completed"))
        assert decision.allowed is False
        assert decision.reason == "not_reconciled"

        relaxed = EngineConfig(require_reconciled_to_complete=False)
        result = await apply_transition(doc, request("completed"), config=relaxed)
        assert result.document.status == ReconciliationStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_unknown_ledger_balance_blocks_completion(self, reconciliation: ReconciliationDocument):
        doc = await advance(recompute(reconciliation), "in_progress")

        with pytest.raises(InvalidTransition) as exc_info:
            await apply_transition(doc, request("completed"))

        assert exc_info.value.reason == "not_reconciled"

    def test_unknown_status(self, reconciled: ReconciliationDocument):
        decision = evaluate_transition(reconciled, request("submitted"))

        assert decision.allowed is False
        assert decision.reason == "unknown_status"

    def test_blank_actor_rejected(self):
        """Every transition needs an actor identity."""
        with pytest.raises(pydantic.ValidationError):
            request("in_progress", actor="   ")

    def test_accepts_enum_status(self, reconciled: ReconciliationDocument):
        decision = evaluate_transition(reconciled, request(ReconciliationStatus.IN_PROGRESS))
        assert decision.allowed is True


class TestFilingWorkflow:
    """Test suite for the filing state machine and the deposit posting."""

    @pytest.mark.asyncio
    async def test_submit_with_payment_posts_once(self, filing: FilingDocument):
        """Submitting with payment should post to the ledger and record deposited tax."""
        ledger = InMemoryLedger()
        doc = await advance(filing, "prepared", "reviewed")
        payment = PaymentMetadata(
            amount="8000",
            payment_date=date(2025, 2, 10),
            challan_number="CH-1",
            bank_account="1110",
        )

        result = await apply_transition(doc, request("submitted", payment=payment), ledger=ledger)
        doc = result.document

        assert doc.status == FilingStatus.SUBMITTED
        assert result.side_effect_outcome.status == SideEffectStatus.SUCCEEDED
        assert doc.posting.reference == "JE-00001"
        assert len(ledger.postings) == 1
        assert ledger.postings[0].reference == "CH-1"
        assert doc.derived.totals.deposited == Decimal("8000.00")
        assert doc.derived.totals.variance == Decimal("0.00")
        assert doc.submitted_by == "alice"

    @pytest.mark.asyncio
    async def test_posting_failure_does_not_block_submission(self, filing: FilingDocument):
        """Fire-and-record: the transition stands and the failure is surfaced."""
        ledger = InMemoryLedger(fail_with=ConnectionError("ledger down"))
        doc = await advance(filing, "prepared", "reviewed")
        payment = PaymentMetadata(amount="8000", payment_date=date(2025, 2, 10), bank_account="1110")

        result = await apply_transition(doc, request("submitted", payment=payment), ledger=ledger)

        assert result.document.status == FilingStatus.SUBMITTED
        assert result.side_effect_outcome.status == SideEffectStatus.FAILED
        assert result.side_effect_outcome.error_type == "DependencyUnavailable"
        assert result.document.posting.status == SideEffectStatus.FAILED

    @pytest.mark.asyncio
    async def test_submit_without_payment_requests_nothing(self, filing: FilingDocument):
        ledger = InMemoryLedger()
        doc = await advance(filing, "prepared", "reviewed", "submitted", ledger=ledger)

        assert doc.posting.status == SideEffectStatus.NOT_REQUESTED
        assert ledger.postings == []
        assert doc.derived.totals.deposited == Decimal("0")

    @pytest.mark.asyncio
    async def test_previous_attempt_is_not_repeated(self, filing: FilingDocument):
        """The posting is attempted at most once per submission."""
        ledger = InMemoryLedger()
        doc = await advance(filing, "prepared", "reviewed")
        doc = doc.model_copy(
            update={"posting": SideEffectOutcome.failed(SideEffect.POST_WHT_DEPOSIT, RuntimeError("earlier"))}
        )
        payment = PaymentMetadata(amount="8000", payment_date=date(2025, 2, 10), bank_account="1110")

        result = await apply_transition(doc, request("submitted", payment=payment), ledger=ledger)

        assert result.side_effect_outcome.status == SideEffectStatus.SKIPPED
        assert ledger.postings == []

    @pytest.mark.asyncio
    async def test_acknowledge_requires_reference(self, filing: FilingDocument):
        doc = await advance(filing, "prepared", "reviewed", "submitted")

        with pytest.raises(InvalidTransition) as exc_info:
            await apply_transition(doc, request("acknowledged"))
        assert exc_info.value.reason == "missing_acknowledgement"

        result = await apply_transition(doc, request("acknowledged", acknowledgement_number="ACK-99"))
        assert result.document.submission.acknowledgement_number == "ACK-99"
        assert result.document.submission.acknowledged_at is not None

    @pytest.mark.asyncio
    async def test_amend_only_after_submission(self, filing: FilingDocument):
        with pytest.raises(InvalidTransition):
            await apply_transition(filing, request("amended"))

        doc = await advance(filing, "prepared", "reviewed", "submitted", "amended")
        assert doc.status == FilingStatus.AMENDED

        with pytest.raises(InvalidTransition) as exc_info:
            await apply_transition(doc, request("acknowledged", acknowledgement_number="A"))
        assert exc_info.value.reason == "terminal"
