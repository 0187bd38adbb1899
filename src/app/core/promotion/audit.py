"""Structured audit trail.

Every resolver decision and every approval, slot and canary transition is
emitted as an AuditEvent. Events go to loguru (bound with ``audit=True`` so
a dedicated sink can pick them up) and, when a state store is attached, are
persisted for the CLI status views.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

from loguru import logger

from .models import AuditEvent

if TYPE_CHECKING:
    from src.app.core.services.storage.state import PromotionStateStore


def configure_audit_sink(path: str | Path) -> int:
    """Write audit events as JSON lines to a file.

    Returns:
        The loguru handler id (pass to ``logger.remove`` to detach)
    """
    return logger.add(
        str(path),
        serialize=True,
        level="INFO",
        filter=lambda record: bool(record["extra"].get("audit")),
    )


class AuditTrail:
    """Emit and persist audit events."""

    def __init__(self, store: PromotionStateStore | None = None) -> None:
        self._store = store

    async def record(
        self,
        *,
        ref: str,
        actor: str,
        decision: str,
        component: str,
        application: str = "",
        environment: str = "",
        run_id: str = "",
        **details: Any,
    ) -> AuditEvent:
        event = AuditEvent(
            ref=ref,
            actor=actor,
            decision=decision,
            application=application,
            environment=environment,
            component=component,
            run_id=run_id,
            details={key: str(value) for key, value in details.items()},
        )
        logger.bind(audit=True, **event.model_dump(mode="json")).info(
            f"[{component}] {decision} ({application}/{environment or '-'}, ref={ref}, actor={actor})"
        )
        if self._store is not None:
            await self._store.append_audit(event)
        return event
