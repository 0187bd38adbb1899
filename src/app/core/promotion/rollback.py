"""Rollback coordination.

Purely compensating: restores routing and the active pointer from the
pre-attempt snapshot, zeroes the canary weight, marks the failed slot and
releases the environment lock. Manual rollbacks additionally support
swapping back to the retained standby slot or rolling a Helm release back to
a previous revision.
"""

from __future__ import annotations

from enum import Enum
from typing import Protocol

from loguru import logger

from src.app.core.services.storage.state import PromotionStateStore
from src.infra.k8s.controller import CommandResult

from .audit import AuditTrail
from .errors import DeploymentError, WorkloadDeployError
from .lock import DeploymentLock, LockLease
from .models import (
    CanaryStatus,
    PromotionSnapshot,
    RollbackResult,
    SlotColor,
    SlotHealth,
    utcnow,
)
from .slots import SlotManager

COMPONENT = "rollback"


class RollbackStrategy(str, Enum):
    PREVIOUS_SLOT = "previous-slot"
    HELM_REVISION = "helm-revision"


class ReleaseRollbacker(Protocol):
    """Rolls a release in a namespace back to a revision (None = previous)."""

    async def rollback(self, namespace: str, revision: int | None = None) -> CommandResult: ...


class RollbackCoordinator:
    """Restore the last known-good state after a failure."""

    def __init__(
        self,
        store: PromotionStateStore,
        slots: SlotManager,
        lock: DeploymentLock,
        audit: AuditTrail | None = None,
        releases: ReleaseRollbacker | None = None,
    ) -> None:
        self._store = store
        self._slots = slots
        self._lock = lock
        self._audit = audit or AuditTrail()
        self._releases = releases

    async def rollback(
        self,
        *,
        snapshot: PromotionSnapshot,
        failed_color: SlotColor | None,
        reason: str,
        lease: LockLease | None = None,
        run_id: str = "",
        ref: str = "",
        actor: str = "",
    ) -> RollbackResult:
        """Restore the snapshot and release the lock, even if restoring fails."""
        application, environment = snapshot.application, snapshot.environment
        logger.warning(f"Rolling back {application}/{environment}: {reason}")
        try:
            await self._slots.restore(snapshot)

            canary = await self._store.get_canary(application, environment)
            if canary is not None and (
                canary.current_weight != 0 or canary.status is CanaryStatus.RAMPING
            ):
                canary.current_weight = 0
                if canary.status is CanaryStatus.RAMPING:
                    canary.status = CanaryStatus.ABORTED
                canary.updated_at = utcnow()
                await self._store.save_canary(canary)

            if failed_color is not None and failed_color is not snapshot.active_color:
                await self._slots.mark_slot(
                    application, environment, failed_color, SlotHealth.FAILED
                )
        finally:
            if lease is not None:
                await self._lock.release(lease)

        result = RollbackResult(
            application=application,
            environment=environment,
            restored_color=snapshot.active_color,
            restored_namespace=snapshot.active_namespace,
            failed_color=failed_color,
            reason=reason,
        )
        await self._audit.record(
            ref=ref,
            actor=actor or "pipeline",
            decision="rollback COMPLETED",
            component=COMPONENT,
            application=application,
            environment=environment,
            run_id=run_id,
            restored=snapshot.active_color.value if snapshot.active_color else "none",
            failed=failed_color.value if failed_color else "none",
            reason=reason,
        )
        return result

    async def manual_rollback(
        self,
        *,
        application: str,
        environment: str,
        strategy: RollbackStrategy,
        blue_green: bool,
        run_id: str,
        actor: str,
        revision: int | None = None,
    ) -> RollbackResult:
        """Operator-initiated rollback, serialized by the environment lock.

        Raises:
            DeploymentLocked: Another promotion or rollback is in flight
            PromotionBlocked: previous-slot requested but no standby is retained
            DeploymentError: The strategy does not apply to the environment
        """
        lease = await self._lock.acquire(application, environment, run_id, actor)
        try:
            if strategy is RollbackStrategy.PREVIOUS_SLOT:
                if not blue_green:
                    raise DeploymentError(
                        f"{environment} is a rolling environment",
                        details="Use --strategy helm-revision for rolling environments.",
                    )
                swapped = await self._slots.swap_to_standby(
                    application, environment, actor=actor
                )
                result = RollbackResult(
                    application=application,
                    environment=environment,
                    restored_color=swapped.active_color,
                    restored_namespace=swapped.active_namespace,
                    failed_color=swapped.previous_color,
                    reason=f"manual {strategy.value} rollback by {actor}",
                )
            else:
                result = await self._helm_rollback(
                    application, environment, blue_green, actor, revision
                )
        finally:
            await self._lock.release(lease)

        await self._audit.record(
            ref="",
            actor=actor,
            decision="manual rollback COMPLETED",
            component=COMPONENT,
            application=application,
            environment=environment,
            run_id=run_id,
            strategy=strategy.value,
            revision=revision if revision is not None else "previous",
        )
        return result

    async def _helm_rollback(
        self,
        application: str,
        environment: str,
        blue_green: bool,
        actor: str,
        revision: int | None,
    ) -> RollbackResult:
        if self._releases is None:
            raise DeploymentError("Helm rollback is not available in this context")

        color: SlotColor | None = None
        if blue_green:
            state = await self._slots.get_state(application, environment)
            if state.active_color is None:
                raise DeploymentError(f"{application}/{environment} has no active slot")
            color = state.active_color
            namespace = self._slots.namespace_for(application, environment, color)
        else:
            namespace = self._slots.route_for(application, environment).namespace

        result = await self._releases.rollback(namespace, revision)
        if not result.success:
            raise WorkloadDeployError(
                f"Helm rollback in {namespace} failed", details=result.stderr
            )

        return RollbackResult(
            application=application,
            environment=environment,
            restored_color=color,
            restored_namespace=namespace,
            failed_color=None,
            reason=(
                f"manual helm rollback to revision {revision if revision is not None else 'previous'} "
                f"by {actor}"
            ),
        )
