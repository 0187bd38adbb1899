"""Approval gate state machine.

NOT_REQUIRED -> (terminal) for unprotected environments.
PENDING -> APPROVED | REJECTED | EXPIRED for protected ones.

Records are persisted in the state store so that approvals can be granted
from a separate CLI invocation while the pipeline run waits.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta

from loguru import logger

from src.app.core.services.storage.state import PromotionStateStore
from src.app.runtime.config.config_data import EnvironmentConfig

from .audit import AuditTrail
from .errors import (
    ApprovalRejected,
    ApprovalTimeout,
    InvalidApprovalTransition,
    PromotionBlocked,
    ScanGateFailure,
)
from .identity import PrincipalAuthorizer
from .models import ApprovalDecision, ApprovalRecord, QualityGateVerdict, utcnow

COMPONENT = "approval"


class ApprovalGate:
    """Enforce human sign-off before promotion to protected environments."""

    def __init__(
        self,
        store: PromotionStateStore,
        authorizer: PrincipalAuthorizer,
        audit: AuditTrail | None = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._authorizer = authorizer
        self._audit = audit or AuditTrail()
        self._clock = clock
        self._sleep = sleep

    async def open(
        self,
        *,
        application: str,
        environment: str,
        env_config: EnvironmentConfig,
        run_id: str,
        ref: str,
        verdict: QualityGateVerdict,
    ) -> ApprovalRecord:
        """Create the approval record for a promotion attempt.

        Raises:
            ScanGateFailure: A protected environment cannot enter PENDING
                without an aggregate PASSED verdict
        """
        now = self._clock()
        record = ApprovalRecord(
            application=application,
            environment=environment,
            run_id=run_id,
            ref=ref,
            required_approvals=env_config.required_approvals if env_config.protected else 0,
            requested_at=now,
        )

        if not env_config.protected:
            record.decision = ApprovalDecision.NOT_REQUIRED
            record.decided_at = now
        elif not verdict.passed:
            raise ScanGateFailure(list(verdict.evaluations))
        elif env_config.required_approvals == 0:
            record.decision = ApprovalDecision.APPROVED
            record.decided_at = now
        else:
            record.decision = ApprovalDecision.PENDING
            record.expires_at = now + timedelta(seconds=env_config.approval_timeout_seconds)

        await self._store.save_approval(record)
        await self._emit(record, actor="pipeline")
        return record

    async def get(
        self, application: str, environment: str, run_id: str
    ) -> ApprovalRecord | None:
        """Load a record, expiring it first if its timeout has passed."""
        record = await self._store.get_approval(application, environment, run_id)
        if record is None:
            return None
        return await self.refresh(record)

    async def refresh(self, record: ApprovalRecord) -> ApprovalRecord:
        now = self._clock()
        if (
            record.decision is ApprovalDecision.PENDING
            and record.expires_at is not None
            and now >= record.expires_at
        ):
            record.decision = ApprovalDecision.EXPIRED
            record.decided_at = now
            await self._store.save_approval(record)
            await self._emit(record, actor="pipeline")
        return record

    async def grant(
        self, application: str, environment: str, run_id: str, principal: str
    ) -> ApprovalRecord:
        record = await self._pending(application, environment, run_id, "approve")
        self._authorizer.require(principal, f"approve promotion to '{environment}'")

        record.granted_approvers.add(principal.strip().lower())
        logger.info(
            f"Approval {len(record.granted_approvers)}/{record.required_approvals} "
            f"granted by {principal} for {application}/{environment}"
        )
        if len(record.granted_approvers) >= record.required_approvals:
            record.decision = ApprovalDecision.APPROVED
            record.decided_at = self._clock()

        await self._store.save_approval(record)
        await self._emit(record, actor=principal)
        return record

    async def reject(
        self,
        application: str,
        environment: str,
        run_id: str,
        principal: str,
        reason: str = "",
    ) -> ApprovalRecord:
        record = await self._pending(application, environment, run_id, "reject")
        self._authorizer.require(principal, f"reject promotion to '{environment}'")

        record.decision = ApprovalDecision.REJECTED
        record.decided_at = self._clock()
        record.rejected_by = principal
        await self._store.save_approval(record)
        await self._emit(record, actor=principal, reason=reason)
        return record

    async def wait_for_decision(
        self,
        application: str,
        environment: str,
        run_id: str,
        poll_interval: float = 5.0,
    ) -> ApprovalRecord:
        """Block until the record is decided or expires.

        The wait is bounded by the record's own expiry.
        """
        while True:
            record = await self.get(application, environment, run_id)
            if record is None:
                raise InvalidApprovalTransition(
                    f"No approval record for {application}/{environment} run {run_id}"
                )
            if record.decision is not ApprovalDecision.PENDING:
                return record

            remaining = (
                (record.expires_at - self._clock()).total_seconds()
                if record.expires_at
                else poll_interval
            )
            await self._sleep(max(0.0, min(poll_interval, remaining)))

    @staticmethod
    def ensure_promotable(record: ApprovalRecord | None, protected: bool) -> None:
        """Raise unless the record permits promotion.

        Unprotected environments never block.
        """
        if not protected:
            return
        if record is None:
            raise PromotionBlocked("Protected environment has no approval record")
        match record.decision:
            case ApprovalDecision.APPROVED:
                return
            case ApprovalDecision.EXPIRED:
                raise ApprovalTimeout(
                    f"Approval for {record.application}/{record.environment} expired",
                    details="Start a fresh manual run to request approval again.",
                )
            case ApprovalDecision.REJECTED:
                raise ApprovalRejected(
                    f"Promotion to {record.environment} rejected by {record.rejected_by}"
                )
            case _:
                raise PromotionBlocked(
                    f"Promotion to {record.environment} is awaiting approval "
                    f"({len(record.granted_approvers)}/{record.required_approvals})"
                )

    async def _pending(
        self, application: str, environment: str, run_id: str, action: str
    ) -> ApprovalRecord:
        record = await self.get(application, environment, run_id)
        if record is None:
            raise InvalidApprovalTransition(
                f"No approval record for {application}/{environment} run {run_id}"
            )
        if record.decision is not ApprovalDecision.PENDING:
            raise InvalidApprovalTransition(
                f"Cannot {action}: approval is already {record.decision.value}"
            )
        return record

    async def _emit(self, record: ApprovalRecord, actor: str, **details: str) -> None:
        await self._audit.record(
            ref=record.ref,
            actor=actor,
            decision=f"approval {record.decision.value}",
            component=COMPONENT,
            application=record.application,
            environment=record.environment,
            run_id=record.run_id,
            granted=len(record.granted_approvers),
            required=record.required_approvals,
            **details,
        )
