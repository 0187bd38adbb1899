"""Per-(application, environment) deployment lock.

At most one promotion or rollback may be in flight per pair. The lock is a
record written with set-if-absent and a TTL, so a crashed run cannot hold it
forever. What a second request does while the lock is held is decided by
``LockPolicy``:

- reject: fail immediately with DeploymentLocked
- queue: poll until the lock frees up or the wait timeout elapses
- abort_and_restart: raise a cooperative abort flag for the holder (its
  canary checks the flag at the start of every tick), then wait like queue
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta

from loguru import logger
from pydantic import BaseModel, Field

from src.app.core.services.storage.state import PromotionStateStore
from src.app.runtime.config.config_data import LockConfig, LockPolicy

from .errors import DeploymentLocked
from .models import utcnow


class LockLease(BaseModel):
    """Proof of lock ownership."""

    application: str
    environment: str
    holder: str
    actor: str = ""
    acquired_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime | None = None


class AbortRequest(BaseModel):
    """Cooperative request for the current lock holder to stop."""

    target_run_id: str
    requested_by: str
    requested_at: datetime = Field(default_factory=utcnow)


class DeploymentLock:
    """Mutual exclusion for promotions and rollbacks of one environment."""

    def __init__(
        self,
        store: PromotionStateStore,
        config: LockConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._config = config
        self._sleep = sleep

    async def holder(self, application: str, environment: str) -> LockLease | None:
        return await self._store.get(
            self._store.lock_key(application, environment), LockLease
        )

    async def try_acquire(
        self, application: str, environment: str, run_id: str, actor: str = ""
    ) -> LockLease | None:
        lease = LockLease(
            application=application,
            environment=environment,
            holder=run_id,
            actor=actor,
            expires_at=utcnow() + timedelta(seconds=self._config.ttl_seconds),
        )
        acquired = await self._store.set_if_absent(
            self._store.lock_key(application, environment),
            lease,
            self._config.ttl_seconds,
        )
        if not acquired:
            return None

        # An abort flag aimed at a previous holder is stale now
        flag = await self._abort_flag(application, environment)
        if flag is not None and flag.target_run_id != run_id:
            await self._store.delete(self._store.abort_key(application, environment))

        logger.info(f"Acquired deployment lock for {application}/{environment} (run {run_id})")
        return lease

    async def acquire(
        self,
        application: str,
        environment: str,
        run_id: str,
        actor: str = "",
        policy: LockPolicy | None = None,
    ) -> LockLease:
        """Acquire the lock according to the configured policy.

        Raises:
            DeploymentLocked: The lock could not be obtained
        """
        policy = policy or self._config.policy
        lease = await self.try_acquire(application, environment, run_id, actor)
        if lease is not None:
            return lease

        current = await self.holder(application, environment)
        holder_desc = f"run {current.holder} ({current.actor})" if current else "another run"

        if policy is LockPolicy.REJECT:
            raise DeploymentLocked(
                f"{application}/{environment} is locked by {holder_desc}",
                details="Lock policy is 'reject'; retry once the running promotion finishes.",
            )

        if policy is LockPolicy.ABORT_AND_RESTART and current is not None:
            await self.request_abort(application, environment, run_id)

        logger.info(
            f"Waiting up to {self._config.wait_timeout_seconds:.0f}s for "
            f"{application}/{environment} lock held by {holder_desc}"
        )
        waited = 0.0
        while waited < self._config.wait_timeout_seconds:
            await self._sleep(self._config.poll_interval_seconds)
            waited += self._config.poll_interval_seconds
            lease = await self.try_acquire(application, environment, run_id, actor)
            if lease is not None:
                return lease

        raise DeploymentLocked(
            f"Timed out waiting for the {application}/{environment} lock",
            details=f"Held by {holder_desc}; policy '{policy.value}'.",
        )

    async def release(self, lease: LockLease) -> bool:
        """Release the lock if this lease still owns it."""
        key = self._store.lock_key(lease.application, lease.environment)
        current = await self._store.get(key, LockLease)
        if current is None or current.holder != lease.holder:
            logger.warning(
                f"Lock for {lease.application}/{lease.environment} is no longer held by run {lease.holder}"
            )
            return False

        await self._store.delete(key)
        flag = await self._abort_flag(lease.application, lease.environment)
        if flag is not None and flag.target_run_id == lease.holder:
            await self._store.delete(
                self._store.abort_key(lease.application, lease.environment)
            )
        logger.info(f"Released deployment lock for {lease.application}/{lease.environment}")
        return True

    async def refresh(self, lease: LockLease) -> bool:
        """Extend the TTL of a lease that is still held."""
        key = self._store.lock_key(lease.application, lease.environment)
        current = await self._store.get(key, LockLease)
        if current is None or current.holder != lease.holder:
            return False
        lease.expires_at = utcnow() + timedelta(seconds=self._config.ttl_seconds)
        await self._store.set(key, lease, self._config.ttl_seconds)
        return True

    async def request_abort(
        self, application: str, environment: str, requested_by: str
    ) -> AbortRequest | None:
        current = await self.holder(application, environment)
        if current is None:
            return None
        request = AbortRequest(target_run_id=current.holder, requested_by=requested_by)
        await self._store.set(
            self._store.abort_key(application, environment),
            request,
            self._config.ttl_seconds,
        )
        logger.warning(
            f"Requested abort of run {current.holder} on {application}/{environment} "
            f"(by run {requested_by})"
        )
        return request

    async def abort_requested(self, lease: LockLease) -> bool:
        flag = await self._abort_flag(lease.application, lease.environment)
        return flag is not None and flag.target_run_id == lease.holder

    async def _abort_flag(self, application: str, environment: str) -> AbortRequest | None:
        return await self._store.get(
            self._store.abort_key(application, environment), AbortRequest
        )
