"""Blue/green slot management.

Each environment has two slot namespaces (blue, green). New versions are
only ever deployed into the inactive (target) slot; the active slot keeps
serving until promotion, which is one update of the primary routing rule
followed by flipping the active pointer. The previous active slot stays
around as standby for a grace window to allow fast rollback. The primary
route in the cluster wins over stored pointers whenever the two disagree.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
from typing import Protocol

from loguru import logger

from src.app.core.services.storage.state import PromotionStateStore
from src.infra.constants import DEFAULT_CONSTANTS, DeploymentConstants
from src.infra.k8s.controller import CommandResult, KubernetesController, RouteRef

from .approval import ApprovalGate
from .audit import AuditTrail
from .errors import PromotionBlocked, WorkloadDeployError
from .models import (
    ApprovalRecord,
    CanaryState,
    CanaryStatus,
    DeploymentSlot,
    PromotionResult,
    PromotionSnapshot,
    SlotColor,
    SlotHealth,
    SlotState,
    utcnow,
)

COMPONENT = "slots"


class WorkloadDeployer(Protocol):
    """Applies a workload revision into a slot namespace (e.g. helm upgrade)."""

    async def deploy(
        self, slot: DeploymentSlot, env: Mapping[str, str] | None = None
    ) -> CommandResult: ...


class SlotManager:
    """Track and mutate blue/green slot state for one application."""

    def __init__(
        self,
        store: PromotionStateStore,
        controller: KubernetesController,
        deployer: WorkloadDeployer,
        audit: AuditTrail | None = None,
        constants: DeploymentConstants = DEFAULT_CONSTANTS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._controller = controller
        self._deployer = deployer
        self._audit = audit or AuditTrail()
        self._constants = constants
        self._clock = clock

    # =========================================================================
    # Queries
    # =========================================================================

    def namespace_for(self, application: str, environment: str, color: SlotColor) -> str:
        return self._constants.slot_namespace(environment, application, color.value)

    def _color_of(
        self, application: str, environment: str, namespace: str | None
    ) -> SlotColor | None:
        for color in SlotColor:
            if namespace == self.namespace_for(application, environment, color):
                return color
        return None

    def route_for(self, application: str, environment: str) -> RouteRef:
        return RouteRef(
            namespace=self._constants.routing_namespace(environment, application),
            application=application,
        )

    async def get_state(self, application: str, environment: str) -> SlotState:
        """Slot pointers, reconciled against the cluster's primary route.

        The primary route is authoritative. When it points at a slot the
        stored active pointer does not name (lost, stale or hand-edited
        state), the pointer is corrected and saved before anyone acts on it.
        """
        state = await self._store.get_slot_state(application, environment)
        route = await self._controller.get_route(self.route_for(application, environment))
        serving = self._color_of(application, environment, route.primary_namespace)
        if serving is None or serving is state.active_color:
            return state

        logger.warning(
            f"Stored active slot of {application}/{environment} is "
            f"{state.active_color.value if state.active_color else 'none'} but the "
            f"primary route serves {serving.value}; following the route"
        )
        state.active_color = serving
        if state.standby_color is serving:
            state.standby_color = None
            state.standby_retain_until = None
        state.updated_at = self._clock()
        await self._store.save_slot_state(state)
        return state

    async def snapshot(self, application: str, environment: str) -> PromotionSnapshot:
        """Capture the pre-attempt state a rollback must restore."""
        state = await self.get_state(application, environment)
        route = await self._controller.get_route(self.route_for(application, environment))
        active_namespace = (
            self.namespace_for(application, environment, state.active_color)
            if state.active_color
            else None
        )
        return PromotionSnapshot(
            application=application,
            environment=environment,
            active_color=state.active_color,
            active_namespace=active_namespace,
            canary_weight=route.canary_weight,
        )

    # =========================================================================
    # Deploy
    # =========================================================================

    async def deploy(
        self,
        *,
        application: str,
        environment: str,
        image_ref: str,
        run_id: str,
        ref: str = "",
        actor: str = "",
        credentials: Mapping[str, str] | None = None,
    ) -> DeploymentSlot:
        """Deploy an image into the target (inactive) slot only.

        Raises:
            WorkloadDeployError: Namespace creation, workload apply or rollout failed
        """
        state = await self.get_state(application, environment)
        color = state.target_color
        namespace = self.namespace_for(application, environment, color)
        route = self.route_for(application, environment)
        serving = await self._controller.get_route(route)
        if serving.primary_namespace == namespace:
            raise PromotionBlocked(
                f"Refusing to deploy into {namespace}: it is serving live traffic",
                details="Re-run once the slot pointers match the primary route.",
            )

        for ns, labels in (
            (route.namespace, self._labels(application, environment)),
            (namespace, self._labels(application, environment, color)),
        ):
            result = await self._controller.create_namespace(ns, labels)
            if not result.success:
                raise WorkloadDeployError(
                    f"Failed to create namespace {ns}", details=result.stderr
                )

        if state.standby_color is color:
            logger.info(
                f"Deploying over retained standby slot {color.value}; fast rollback "
                f"to it is no longer possible"
            )
            state.standby_color = None
            state.standby_retain_until = None
            state.updated_at = self._clock()
            await self._store.save_slot_state(state)

        slot = DeploymentSlot(
            application=application,
            environment=environment,
            color=color,
            namespace=namespace,
            image_ref=image_ref,
            health_status=SlotHealth.DEPLOYING,
            run_id=run_id,
            created_at=self._clock(),
        )
        await self._store.save_slot(slot)
        await self._emit(slot, ref, actor, "slot DEPLOYING", image=image_ref)

        result = await self._deployer.deploy(slot, env=credentials)
        if result.success:
            result = await self._controller.rollout_status(
                namespace, timeout=self._constants.ROLLOUT_TIMEOUT
            )
        if not result.success:
            slot.health_status = SlotHealth.FAILED
            await self._store.save_slot(slot)
            await self._emit(slot, ref, actor, "slot FAILED", error=result.stderr)
            raise WorkloadDeployError(
                f"Deploy of {image_ref} into {namespace} failed",
                details=result.stderr or result.stdout,
            )

        slot.health_status = SlotHealth.DEPLOYED
        await self._store.save_slot(slot)
        await self._emit(slot, ref, actor, "slot DEPLOYED", image=image_ref)
        return slot

    # =========================================================================
    # Routing
    # =========================================================================

    async def apply_canary_weight(
        self, application: str, environment: str, namespace: str | None, weight: int
    ) -> CommandResult:
        return await self._controller.set_canary_weight(
            self.route_for(application, environment), namespace, weight
        )

    async def promote(
        self,
        *,
        application: str,
        environment: str,
        protected: bool,
        approval: ApprovalRecord | None,
        canary: CanaryState | None,
        grace_seconds: float,
        ref: str = "",
        actor: str = "",
    ) -> PromotionResult:
        """Make the target slot active.

        Requires an APPROVED record for protected environments and a
        COMPLETED canary whenever a previous version is serving traffic.

        Raises:
            ApprovalRejected/ApprovalTimeout/PromotionBlocked: Preconditions not met
            WorkloadDeployError: The routing update failed
        """
        ApprovalGate.ensure_promotable(approval, protected)

        state = await self.get_state(application, environment)
        color = state.target_color
        slot = await self._store.get_slot(application, environment, color)
        if slot is None or slot.health_status not in (SlotHealth.DEPLOYED, SlotHealth.HEALTHY):
            raise PromotionBlocked(
                f"Target slot {color.value} of {application}/{environment} is not deployed"
            )
        if state.active_color is not None and (
            canary is None or canary.status is not CanaryStatus.COMPLETED
        ):
            raise PromotionBlocked(
                f"Canary for {application}/{environment} has not completed",
                details=f"Canary status: {canary.status.value if canary else 'missing'}",
            )

        route = self.route_for(application, environment)
        result = await self._controller.set_primary_backend(route, slot.namespace)
        if not result.success:
            raise WorkloadDeployError(
                f"Failed to switch primary route to {slot.namespace}",
                details=result.stderr,
            )
        result = await self._controller.set_canary_weight(route, None, 0)
        if not result.success:
            logger.warning(f"Primary switched but canary reset failed: {result.stderr}")

        now = self._clock()
        previous = state.active_color
        state.active_color = color
        state.standby_color = previous
        state.standby_retain_until = (
            now + timedelta(seconds=grace_seconds) if previous else None
        )
        state.updated_at = now
        await self._store.save_slot_state(state)

        slot.health_status = SlotHealth.HEALTHY
        await self._store.save_slot(slot)
        await self._emit(
            slot,
            ref,
            actor,
            "slot PROMOTED",
            previous=previous.value if previous else "none",
        )

        return PromotionResult(
            application=application,
            environment=environment,
            previous_color=previous,
            active_color=color,
            active_namespace=slot.namespace,
            standby_retain_until=state.standby_retain_until,
        )

    async def restore(self, snapshot: PromotionSnapshot) -> SlotState:
        """Put routing and the active pointer back to a snapshot.

        Raises:
            WorkloadDeployError: A routing update failed
        """
        route = self.route_for(snapshot.application, snapshot.environment)
        result = await self._controller.set_canary_weight(route, None, 0)
        if not result.success:
            raise WorkloadDeployError(
                "Failed to reset canary weight during rollback", details=result.stderr
            )

        if snapshot.active_namespace is not None:
            result = await self._controller.set_primary_backend(
                route, snapshot.active_namespace
            )
            if not result.success:
                raise WorkloadDeployError(
                    f"Failed to restore primary route to {snapshot.active_namespace}",
                    details=result.stderr,
                )
        else:
            logger.warning(
                f"No previous active slot for {snapshot.application}/{snapshot.environment}; "
                "primary route left unchanged"
            )

        state = await self._store.get_slot_state(snapshot.application, snapshot.environment)
        if state.active_color != snapshot.active_color:
            # The slot being abandoned is never a rollback target
            state.active_color = snapshot.active_color
            state.standby_color = None
            state.standby_retain_until = None
        state.updated_at = self._clock()
        await self._store.save_slot_state(state)
        return state

    # =========================================================================
    # Slot lifecycle
    # =========================================================================

    async def mark_slot(
        self,
        application: str,
        environment: str,
        color: SlotColor,
        health: SlotHealth,
    ) -> DeploymentSlot | None:
        slot = await self._store.get_slot(application, environment, color)
        if slot is None:
            return None
        slot.health_status = health
        await self._store.save_slot(slot)
        return slot

    async def swap_to_standby(
        self, application: str, environment: str, ref: str = "", actor: str = ""
    ) -> PromotionResult:
        """Route traffic back to the retained standby slot.

        Raises:
            PromotionBlocked: No standby slot is retained, or it failed its health checks
            WorkloadDeployError: The routing update failed
        """
        state = await self.get_state(application, environment)
        if state.standby_color is None or state.active_color is None:
            raise PromotionBlocked(
                f"No standby slot retained for {application}/{environment}",
                details="Use the helm-revision strategy instead.",
            )

        standby = await self._store.get_slot(application, environment, state.standby_color)
        if standby is not None and standby.health_status is SlotHealth.FAILED:
            raise PromotionBlocked(
                f"Standby slot {state.standby_color.value} of {application}/{environment} "
                "is marked FAILED",
                details="Use the helm-revision strategy instead.",
            )

        standby_ns = self.namespace_for(application, environment, state.standby_color)
        route = self.route_for(application, environment)
        await self._controller.set_canary_weight(route, None, 0)
        result = await self._controller.set_primary_backend(route, standby_ns)
        if not result.success:
            raise WorkloadDeployError(
                f"Failed to switch primary route to {standby_ns}", details=result.stderr
            )

        previous = state.active_color
        state.active_color, state.standby_color = state.standby_color, previous
        state.standby_retain_until = None
        state.updated_at = self._clock()
        await self._store.save_slot_state(state)

        failed = await self.mark_slot(application, environment, previous, SlotHealth.ROLLED_BACK)
        restored = await self.mark_slot(
            application, environment, state.active_color, SlotHealth.HEALTHY
        )
        for slot in (failed, restored):
            if slot is not None:
                await self._emit(slot, ref, actor, f"slot {slot.health_status.value}")

        return PromotionResult(
            application=application,
            environment=environment,
            previous_color=previous,
            active_color=state.active_color,
            active_namespace=standby_ns,
        )

    async def retire_standby(
        self, application: str, environment: str, actor: str = ""
    ) -> str | None:
        """Tear down the standby slot once its grace window has elapsed.

        Returns:
            The deleted namespace, or None if there was nothing to retire yet
        """
        state = await self.get_state(application, environment)
        if state.standby_color is None:
            logger.info(f"No standby slot for {application}/{environment}")
            return None

        now = self._clock()
        if state.standby_retain_until is not None and now < state.standby_retain_until:
            logger.info(
                f"Standby {state.standby_color.value} of {application}/{environment} "
                f"is retained until {state.standby_retain_until.isoformat()}"
            )
            return None

        color = state.standby_color
        namespace = self.namespace_for(application, environment, color)
        result = await self._controller.delete_namespace(
            namespace, timeout=self._constants.NAMESPACE_DELETE_TIMEOUT
        )
        if not result.success:
            raise WorkloadDeployError(
                f"Failed to delete standby namespace {namespace}", details=result.stderr
            )

        state.standby_color = None
        state.standby_retain_until = None
        state.updated_at = now
        await self._store.save_slot_state(state)

        slot = await self.mark_slot(application, environment, color, SlotHealth.RETIRED)
        if slot is not None:
            await self._emit(slot, "", actor, "slot RETIRED")
        return namespace

    def _labels(
        self, application: str, environment: str, color: SlotColor | None = None
    ) -> dict[str, str]:
        labels = {
            self._constants.APP_LABEL: application,
            self._constants.ENVIRONMENT_LABEL: environment,
            self._constants.MANAGED_BY_LABEL: self._constants.MANAGED_BY_VALUE,
        }
        if color is not None:
            labels[self._constants.SLOT_LABEL] = color.value
        return labels

    async def _emit(
        self, slot: DeploymentSlot, ref: str, actor: str, decision: str, **details: str
    ) -> None:
        await self._audit.record(
            ref=ref,
            actor=actor or "pipeline",
            decision=decision,
            component=COMPONENT,
            application=slot.application,
            environment=slot.environment,
            run_id=slot.run_id,
            color=slot.color.value,
            namespace=slot.namespace,
            **details,
        )
