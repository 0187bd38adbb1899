"""Tests for the approval gate state machine."""

from datetime import UTC, datetime, timedelta

import pytest

from src.app.core.promotion.approval import ApprovalGate
from src.app.core.promotion.errors import (
    ApprovalRejected,
    ApprovalTimeout,
    AuthorizationError,
    InvalidApprovalTransition,
    PromotionBlocked,
    ScanGateFailure,
)
from src.app.core.promotion.models import (
    ApprovalDecision,
    GateEvaluation,
    GateStatus,
    QualityGateVerdict,
)
from tests.fixtures import APP, FakeClock

START = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
PASSED = QualityGateVerdict(status=GateStatus.PASSED)
FAILED = QualityGateVerdict(
    status=GateStatus.FAILED,
    evaluations=(GateEvaluation(tool_name="checkmarx", status=GateStatus.FAILED),),
)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(START)


@pytest.fixture
def gate(store, authorizer, audit, clock) -> ApprovalGate:
    return ApprovalGate(store, authorizer, audit, clock=clock)


async def _open(gate: ApprovalGate, config, environment: str = "prod", verdict=PASSED):
    return await gate.open(
        application=APP,
        environment=environment,
        env_config=config.environments[environment],
        run_id="run-1",
        ref="refs/tags/v1.0.0",
        verdict=verdict,
    )


class TestOpen:
    @pytest.mark.asyncio
    async def test_unprotected_environment_needs_no_approval(self, gate, config):
        record = await _open(gate, config, environment="ppr")

        assert record.decision is ApprovalDecision.NOT_REQUIRED
        assert record.required_approvals == 0

    @pytest.mark.asyncio
    async def test_protected_environment_starts_pending(self, gate, config):
        record = await _open(gate, config)

        assert record.decision is ApprovalDecision.PENDING
        assert record.required_approvals == 2
        assert record.expires_at == START + timedelta(seconds=600)

    @pytest.mark.asyncio
    async def test_failed_gates_cannot_enter_pending(self, gate, config, store):
        with pytest.raises(ScanGateFailure):
            await _open(gate, config, verdict=FAILED)

        assert await store.get_approval(APP, "prod", "run-1") is None

    @pytest.mark.asyncio
    async def test_failed_gates_do_not_matter_when_unprotected(self, gate, config):
        record = await _open(gate, config, environment="ppr", verdict=FAILED)

        assert record.decision is ApprovalDecision.NOT_REQUIRED


class TestDecisions:
    @pytest.mark.asyncio
    async def test_quorum_approves(self, gate, config):
        await _open(gate, config)

        first = await gate.grant(APP, "prod", "run-1", "alice")
        assert first.decision is ApprovalDecision.PENDING
        assert first.granted_approvers == {"alice"}

        second = await gate.grant(APP, "prod", "run-1", "bob")
        assert second.decision is ApprovalDecision.APPROVED
        assert second.decided_at == START

    @pytest.mark.asyncio
    async def test_same_principal_counts_once(self, gate, config):
        await _open(gate, config)

        await gate.grant(APP, "prod", "run-1", "alice")
        record = await gate.grant(APP, "prod", "run-1", "ALICE")

        assert record.decision is ApprovalDecision.PENDING
        assert len(record.granted_approvers) == 1

    @pytest.mark.asyncio
    async def test_unauthorized_principal_cannot_approve(self, gate, config, store):
        await _open(gate, config)

        with pytest.raises(AuthorizationError):
            await gate.grant(APP, "prod", "run-1", "mallory")

        record = await store.get_approval(APP, "prod", "run-1")
        assert record.granted_approvers == set()

    @pytest.mark.asyncio
    async def test_rejection_is_terminal(self, gate, config):
        await _open(gate, config)
        await gate.grant(APP, "prod", "run-1", "alice")

        record = await gate.reject(APP, "prod", "run-1", "carol", reason="bad timing")

        assert record.decision is ApprovalDecision.REJECTED
        assert record.rejected_by == "carol"
        with pytest.raises(InvalidApprovalTransition, match="already REJECTED"):
            await gate.grant(APP, "prod", "run-1", "bob")

    @pytest.mark.asyncio
    async def test_timeout_expires_record(self, gate, config, clock):
        await _open(gate, config)
        clock.now = START + timedelta(seconds=601)

        record = await gate.get(APP, "prod", "run-1")

        assert record.decision is ApprovalDecision.EXPIRED
        with pytest.raises(InvalidApprovalTransition):
            await gate.grant(APP, "prod", "run-1", "alice")

    @pytest.mark.asyncio
    async def test_missing_record(self, gate):
        with pytest.raises(InvalidApprovalTransition, match="No approval record"):
            await gate.grant(APP, "prod", "missing", "alice")

    @pytest.mark.asyncio
    async def test_transitions_are_audited(self, gate, config, store):
        await _open(gate, config)
        await gate.grant(APP, "prod", "run-1", "alice")

        events = await store.list_audit(APP, "prod")

        assert [e.decision for e in events] == ["approval PENDING", "approval PENDING"]
        assert events[-1].actor == "alice"


class TestWaitForDecision:
    @pytest.mark.asyncio
    async def test_returns_once_approved(self, store, authorizer, audit, clock, config):
        async def approve_while_waiting(_seconds: float) -> None:
            for principal in ("alice", "bob"):
                await gate.grant(APP, "prod", "run-1", principal)

        gate = ApprovalGate(store, authorizer, audit, clock=clock, sleep=approve_while_waiting)
        await _open(gate, config)

        record = await gate.wait_for_decision(APP, "prod", "run-1", poll_interval=1)

        assert record.decision is ApprovalDecision.APPROVED

    @pytest.mark.asyncio
    async def test_wait_is_bounded_by_expiry(self, store, authorizer, audit, clock, config):
        slept: list[float] = []

        async def advance(seconds: float) -> None:
            slept.append(seconds)
            clock.now += timedelta(seconds=seconds)

        gate = ApprovalGate(store, authorizer, audit, clock=clock, sleep=advance)
        await _open(gate, config)

        record = await gate.wait_for_decision(APP, "prod", "run-1", poll_interval=250)

        assert record.decision is ApprovalDecision.EXPIRED
        assert slept == [250, 250, 100]


class TestEnsurePromotable:
    def test_unprotected_never_blocks(self):
        ApprovalGate.ensure_promotable(None, protected=False)

    @pytest.mark.asyncio
    async def test_protected_outcomes(self, gate, config, clock):
        record = await _open(gate, config)

        with pytest.raises(PromotionBlocked, match="awaiting approval"):
            ApprovalGate.ensure_promotable(record, protected=True)

        record.decision = ApprovalDecision.REJECTED
        with pytest.raises(ApprovalRejected):
            ApprovalGate.ensure_promotable(record, protected=True)

        record.decision = ApprovalDecision.EXPIRED
        with pytest.raises(ApprovalTimeout):
            ApprovalGate.ensure_promotable(record, protected=True)

        record.decision = ApprovalDecision.APPROVED
        ApprovalGate.ensure_promotable(record, protected=True)

    def test_protected_without_record(self):
        with pytest.raises(PromotionBlocked):
            ApprovalGate.ensure_promotable(None, protected=True)
