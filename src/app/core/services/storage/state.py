"""Typed access to promotion state records.

All pipeline stages persist their records (slot pointers, slots, canary
ramps, approvals, audit events) through this wrapper so the key layout lives
in exactly one place.
"""

from __future__ import annotations

import uuid
from typing import Any, override

from loguru import logger
from pydantic import BaseModel

from src.app.core.promotion.models import (
    ApprovalRecord,
    AuditEvent,
    CanaryState,
    DeploymentSlot,
    SlotColor,
    SlotState,
)
from src.app.core.services.storage.base import ApplicationStorage, T
from src.infra.constants import DEFAULT_CONSTANTS

KEY_PREFIX = "slotpilot"


class PromotionStateStore(ApplicationStorage):
    """Application storage with typed helpers for promotion records."""

    def __init__(
        self,
        storage: ApplicationStorage,
        ttl_seconds: int = DEFAULT_CONSTANTS.STATE_TTL_SECONDS,
    ) -> None:
        self._storage = storage
        self.ttl_seconds = ttl_seconds

    # ------------------------------------------------------------------
    # Key layout
    # ------------------------------------------------------------------

    @staticmethod
    def slot_state_key(application: str, environment: str) -> str:
        return f"{KEY_PREFIX}:slot-state:{application}:{environment}"

    @staticmethod
    def slot_key(application: str, environment: str, color: SlotColor) -> str:
        return f"{KEY_PREFIX}:slot:{application}:{environment}:{color.value}"

    @staticmethod
    def canary_key(application: str, environment: str) -> str:
        return f"{KEY_PREFIX}:canary:{application}:{environment}"

    @staticmethod
    def approval_key(application: str, environment: str, run_id: str) -> str:
        return f"{KEY_PREFIX}:approval:{application}:{environment}:{run_id}"

    @staticmethod
    def lock_key(application: str, environment: str) -> str:
        return f"{KEY_PREFIX}:lock:{application}:{environment}"

    @staticmethod
    def abort_key(application: str, environment: str) -> str:
        return f"{KEY_PREFIX}:abort:{application}:{environment}"

    @staticmethod
    def audit_key(event: AuditEvent) -> str:
        stamp = event.timestamp.strftime("%Y%m%d%H%M%S%f")
        return (
            f"{KEY_PREFIX}:audit:{event.application}:{event.environment}:"
            f"{stamp}:{event.run_id}:{event.component}:{uuid.uuid4().hex[:8]}"
        )

    # ------------------------------------------------------------------
    # Typed records
    # ------------------------------------------------------------------

    async def list_records(self, pattern: str, model_class: type[T]) -> list[T]:
        """List records matching a key pattern.

        Args:
            pattern: Key pattern (e.g., "slotpilot:approval:orders:prod:*")
            model_class: Pydantic model class to deserialize to

        Returns:
            List of valid, non-expired records
        """
        records = []
        for key in await self._storage.list_keys(pattern):
            record = await self._storage.get(key, model_class)
            if record is None:
                logger.debug(f"Skipping unreadable or expired record {key}")
                continue
            records.append(record)
        return records

    async def get_slot_state(self, application: str, environment: str) -> SlotState:
        """Current pointers; a fresh state when the environment was never deployed."""
        state = await self._storage.get(
            self.slot_state_key(application, environment), SlotState
        )
        return state or SlotState(application=application, environment=environment)

    async def save_slot_state(self, state: SlotState) -> None:
        # Slot pointers outlive the record TTL; they are only ever overwritten.
        await self._storage.set(
            self.slot_state_key(state.application, state.environment), state, None
        )

    async def get_slot(
        self, application: str, environment: str, color: SlotColor
    ) -> DeploymentSlot | None:
        return await self._storage.get(
            self.slot_key(application, environment, color), DeploymentSlot
        )

    async def save_slot(self, slot: DeploymentSlot) -> None:
        await self._storage.set(
            self.slot_key(slot.application, slot.environment, slot.color),
            slot,
            None,
        )

    async def list_slots(self, application: str, environment: str) -> list[DeploymentSlot]:
        return await self.list_records(
            f"{KEY_PREFIX}:slot:{application}:{environment}:*", DeploymentSlot
        )

    async def get_canary(self, application: str, environment: str) -> CanaryState | None:
        return await self._storage.get(
            self.canary_key(application, environment), CanaryState
        )

    async def save_canary(self, state: CanaryState) -> None:
        await self._storage.set(
            self.canary_key(state.application, state.environment),
            state,
            self.ttl_seconds,
        )

    async def get_approval(
        self, application: str, environment: str, run_id: str
    ) -> ApprovalRecord | None:
        return await self._storage.get(
            self.approval_key(application, environment, run_id), ApprovalRecord
        )

    async def save_approval(self, record: ApprovalRecord) -> None:
        await self._storage.set(
            self.approval_key(record.application, record.environment, record.run_id),
            record,
            self.ttl_seconds,
        )

    async def list_approvals(
        self, application: str, environment: str = "*"
    ) -> list[ApprovalRecord]:
        """Approval records, oldest request first."""
        records = await self.list_records(
            f"{KEY_PREFIX}:approval:{application}:{environment}:*", ApprovalRecord
        )
        return sorted(records, key=lambda r: (r.requested_at is None, r.requested_at))

    async def append_audit(self, event: AuditEvent) -> None:
        await self._storage.set(self.audit_key(event), event, self.ttl_seconds)

    async def list_audit(
        self, application: str, environment: str = "*"
    ) -> list[AuditEvent]:
        """Audit events in chronological order."""
        events = await self.list_records(
            f"{KEY_PREFIX}:audit:{application}:{environment}:*", AuditEvent
        )
        return sorted(events, key=lambda e: e.timestamp)

    # ------------------------------------------------------------------
    # ApplicationStorage passthrough
    # ------------------------------------------------------------------

    @override
    async def set(self, key: str, value: BaseModel, ttl_seconds: int | None) -> None:
        await self._storage.set(key, value, ttl_seconds)

    @override
    async def set_if_absent(
        self, key: str, value: BaseModel, ttl_seconds: int
    ) -> bool:
        return await self._storage.set_if_absent(key, value, ttl_seconds)

    @override
    async def get(self, key: str, model_class: type[T] | None) -> T | Any | None:
        return await self._storage.get(key, model_class)

    @override
    async def delete(self, key: str) -> None:
        await self._storage.delete(key)

    @override
    async def exists(self, key: str) -> bool:
        return await self._storage.exists(key)

    @override
    async def cleanup_expired(self) -> int:
        return await self._storage.cleanup_expired()

    @override
    async def list_keys(self, pattern: str) -> list[str]:
        return await self._storage.list_keys(pattern)

    @override
    def is_available(self) -> bool:
        return self._storage.is_available()
