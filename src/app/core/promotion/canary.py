"""Canary traffic ramp.

A cooperative polling loop: every ``step_interval_seconds`` the controller
checks the abort flag, evaluates the target slot's health and adjusts the
canary weight. While RAMPING the weight never decreases; an abort sets it to
exactly 0. A tick is never interrupted mid-evaluation.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime

from loguru import logger

from src.app.core.services.storage.state import PromotionStateStore
from src.app.runtime.config.config_data import CanaryConfig

from .audit import AuditTrail
from .errors import WorkloadDeployError
from .health import HealthEvaluator
from .lock import DeploymentLock, LockLease
from .models import CanaryState, CanaryStatus, utcnow
from .slots import SlotManager

COMPONENT = "canary"
MAX_WEIGHT = 100
REQUIRED_CONFIRMATIONS = 1


class CanaryController:
    """Ramp traffic toward a newly deployed slot while it stays healthy."""

    def __init__(
        self,
        store: PromotionStateStore,
        slots: SlotManager,
        evaluator: HealthEvaluator,
        lock: DeploymentLock | None = None,
        audit: AuditTrail | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._slots = slots
        self._evaluator = evaluator
        self._lock = lock
        self._audit = audit or AuditTrail()
        self._sleep = sleep
        self._clock = clock

    async def start(
        self,
        *,
        application: str,
        environment: str,
        target_namespace: str,
        config: CanaryConfig,
        run_id: str,
        ref: str = "",
        actor: str = "",
    ) -> CanaryState:
        """Reset to a fresh ramp at the initial weight."""
        existing = await self._store.get_canary(application, environment)
        if existing and existing.status is CanaryStatus.RAMPING and existing.run_id != run_id:
            logger.warning(
                f"Replacing ramp of run {existing.run_id} on {application}/{environment}"
            )

        now = self._clock()
        state = CanaryState(
            application=application,
            environment=environment,
            target_namespace=target_namespace,
            current_weight=config.initial_weight,
            step_size=config.step_size,
            step_interval_seconds=config.step_interval_seconds,
            status=CanaryStatus.RAMPING,
            run_id=run_id,
            started_at=now,
            updated_at=now,
        )
        await self._apply(state)
        await self._store.save_canary(state)
        await self._emit(state, ref, actor, "canary RAMPING")
        return state

    async def tick(
        self,
        state: CanaryState,
        config: CanaryConfig,
        lease: LockLease | None = None,
        ref: str = "",
        actor: str = "",
    ) -> CanaryState:
        """Advance the ramp by one step."""
        if state.status is not CanaryStatus.RAMPING:
            return state

        if lease is not None and self._lock is not None:
            if await self._lock.abort_requested(lease):
                return await self._abort(state, "abort requested by a newer run", ref, actor)

        verdict = await self._evaluator.evaluate(state.target_namespace)
        previous_weight = state.current_weight

        if verdict.healthy:
            state.consecutive_failures = 0
            if state.current_weight >= MAX_WEIGHT:
                state.confirmations += 1
                if state.confirmations >= REQUIRED_CONFIRMATIONS:
                    state.status = CanaryStatus.COMPLETED
            else:
                state.current_weight = min(state.current_weight + state.step_size, MAX_WEIGHT)
        else:
            state.consecutive_failures += 1
            state.confirmations = 0
            logger.warning(
                f"Canary {state.application}/{state.environment} unhealthy "
                f"({state.consecutive_failures}/{config.failure_threshold}): "
                f"{'; '.join(verdict.reasons)}"
            )
            if state.consecutive_failures >= config.failure_threshold:
                return await self._abort(state, "; ".join(verdict.reasons), ref, actor)

        state.updated_at = self._clock()
        if state.current_weight != previous_weight:
            await self._apply(state)
        await self._store.save_canary(state)
        await self._emit(
            state,
            ref,
            actor,
            f"canary {state.status.value}",
            healthy=verdict.healthy,
        )
        return state

    async def run(
        self,
        *,
        application: str,
        environment: str,
        target_namespace: str,
        config: CanaryConfig,
        run_id: str,
        lease: LockLease | None = None,
        ref: str = "",
        actor: str = "",
    ) -> CanaryState:
        """Ramp until COMPLETED or ABORTED.

        Returns the final state; an ABORTED state means the caller must roll back.
        """
        state = await self.start(
            application=application,
            environment=environment,
            target_namespace=target_namespace,
            config=config,
            run_id=run_id,
            ref=ref,
            actor=actor,
        )
        while state.status is CanaryStatus.RAMPING:
            await self._sleep(state.step_interval_seconds)
            state = await self.tick(state, config, lease, ref, actor)
            if lease is not None and self._lock is not None:
                await self._lock.refresh(lease)

        logger.info(
            f"Canary for {application}/{environment} finished: "
            f"{state.status.value} at {state.current_weight}%"
        )
        return state

    async def _abort(
        self, state: CanaryState, reason: str, ref: str, actor: str
    ) -> CanaryState:
        state.status = CanaryStatus.ABORTED
        state.current_weight = 0
        state.updated_at = self._clock()
        await self._store.save_canary(state)
        try:
            await self._apply(state)
        except WorkloadDeployError as e:
            # Rollback resets the weight again; keep the recorded state authoritative
            logger.error(f"Failed to zero canary weight on abort: {e.message}")
        await self._emit(state, ref, actor, "canary ABORTED", reason=reason)
        return state

    async def _apply(self, state: CanaryState) -> None:
        namespace = state.target_namespace if state.current_weight > 0 else None
        result = await self._slots.apply_canary_weight(
            state.application, state.environment, namespace, state.current_weight
        )
        if not result.success:
            raise WorkloadDeployError(
                f"Failed to set canary weight {state.current_weight}%",
                details=result.stderr,
            )

    async def _emit(
        self, state: CanaryState, ref: str, actor: str, decision: str, **details: object
    ) -> None:
        await self._audit.record(
            ref=ref,
            actor=actor or "pipeline",
            decision=decision,
            component=COMPONENT,
            application=state.application,
            environment=state.environment,
            run_id=state.run_id,
            weight=state.current_weight,
            **details,
        )
