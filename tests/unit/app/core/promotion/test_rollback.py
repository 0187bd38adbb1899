"""Tests for rollback coordination."""

import pytest

from src.app.core.promotion.errors import (
    DeploymentError,
    DeploymentLocked,
    WorkloadDeployError,
)
from src.app.core.promotion.lock import DeploymentLock
from src.app.core.promotion.models import (
    CanaryState,
    CanaryStatus,
    SlotColor,
    SlotHealth,
)
from src.app.core.promotion.rollback import RollbackCoordinator, RollbackStrategy
from src.app.core.promotion.slots import SlotManager
from tests.fixtures import APP, no_sleep

ENV = "ppr"


@pytest.fixture
def slots(store, controller, deployer, audit) -> SlotManager:
    return SlotManager(store, controller, deployer, audit)


@pytest.fixture
def lock(store, config) -> DeploymentLock:
    return DeploymentLock(store, config.lock, sleep=no_sleep)


@pytest.fixture
def coordinator(store, slots, lock, audit, deployer) -> RollbackCoordinator:
    return RollbackCoordinator(store, slots, lock, audit, releases=deployer)


async def _release(slots: SlotManager, image: str, environment: str = ENV):
    slot = await slots.deploy(
        application=APP, environment=environment, image_ref=image, run_id="run-0"
    )
    state = await slots.get_state(APP, environment)
    canary = None
    if state.active_color:
        canary = CanaryState(
            application=APP,
            environment=environment,
            target_namespace=slot.namespace,
            current_weight=100,
            status=CanaryStatus.COMPLETED,
        )
    return await slots.promote(
        application=APP,
        environment=environment,
        protected=False,
        approval=None,
        canary=canary,
        grace_seconds=3600,
    )


class TestAutomaticRollback:
    @pytest.mark.asyncio
    async def test_restores_snapshot_after_failed_canary(
        self, coordinator, slots, lock, store, controller
    ):
        await _release(slots, "acr.example.io/orders:v1")
        snapshot = await slots.snapshot(APP, ENV)
        lease = await lock.acquire(APP, ENV, "run-1")
        green = await slots.deploy(
            application=APP, environment=ENV, image_ref="acr.example.io/orders:v2", run_id="run-1"
        )
        await slots.apply_canary_weight(APP, ENV, green.namespace, 40)
        await store.save_canary(
            CanaryState(
                application=APP,
                environment=ENV,
                target_namespace=green.namespace,
                current_weight=40,
                run_id="run-1",
            )
        )

        result = await coordinator.rollback(
            snapshot=snapshot,
            failed_color=SlotColor.GREEN,
            reason="error rate too high",
            lease=lease,
            run_id="run-1",
        )

        assert result.restored_color is SlotColor.BLUE
        assert result.restored_namespace == "ppr-orders-blue"
        route = controller.routes["ppr-orders"]
        assert route.primary_namespace == "ppr-orders-blue"
        assert route.canary_weight == 0
        canary = await store.get_canary(APP, ENV)
        assert canary.status is CanaryStatus.ABORTED
        assert canary.current_weight == 0
        failed = await store.get_slot(APP, ENV, SlotColor.GREEN)
        assert failed.health_status is SlotHealth.FAILED
        assert (await store.get_slot_state(APP, ENV)).active_color is SlotColor.BLUE
        assert await lock.holder(APP, ENV) is None

    @pytest.mark.asyncio
    async def test_ramping_canary_at_zero_weight_is_aborted(self, coordinator, slots, store):
        await _release(slots, "acr.example.io/orders:v1")
        snapshot = await slots.snapshot(APP, ENV)
        await store.save_canary(
            CanaryState(
                application=APP,
                environment=ENV,
                target_namespace="ppr-orders-green",
                current_weight=0,
                status=CanaryStatus.RAMPING,
                run_id="run-1",
            )
        )

        await coordinator.rollback(
            snapshot=snapshot, failed_color=SlotColor.GREEN, reason="deploy hung"
        )

        canary = await store.get_canary(APP, ENV)
        assert canary.status is CanaryStatus.ABORTED
        assert canary.current_weight == 0

    @pytest.mark.asyncio
    async def test_lock_released_when_restore_fails(
        self, coordinator, slots, lock, controller
    ):
        await _release(slots, "acr.example.io/orders:v1")
        snapshot = await slots.snapshot(APP, ENV)
        lease = await lock.acquire(APP, ENV, "run-1")
        controller.fail_primary_switch = True

        with pytest.raises(WorkloadDeployError):
            await coordinator.rollback(
                snapshot=snapshot, failed_color=SlotColor.GREEN, reason="boom", lease=lease
            )

        assert await lock.holder(APP, ENV) is None

    @pytest.mark.asyncio
    async def test_rollback_is_audited(self, coordinator, slots, store):
        await _release(slots, "acr.example.io/orders:v1")
        snapshot = await slots.snapshot(APP, ENV)

        await coordinator.rollback(
            snapshot=snapshot, failed_color=SlotColor.GREEN, reason="health check failed"
        )

        [event] = [e for e in await store.list_audit(APP, ENV) if e.component == "rollback"]
        assert event.decision == "rollback COMPLETED"
        assert event.details["reason"] == "health check failed"


class TestManualRollback:
    @pytest.mark.asyncio
    async def test_previous_slot(self, coordinator, slots, controller, lock):
        await _release(slots, "acr.example.io/orders:v1")
        await _release(slots, "acr.example.io/orders:v2")

        result = await coordinator.manual_rollback(
            application=APP,
            environment=ENV,
            strategy=RollbackStrategy.PREVIOUS_SLOT,
            blue_green=True,
            run_id="run-9",
            actor="alice",
        )

        assert result.restored_color is SlotColor.BLUE
        assert result.failed_color is SlotColor.GREEN
        assert controller.routes["ppr-orders"].primary_namespace == "ppr-orders-blue"
        assert await lock.holder(APP, ENV) is None

    @pytest.mark.asyncio
    async def test_previous_slot_on_rolling_environment(self, coordinator):
        with pytest.raises(DeploymentError, match="rolling environment"):
            await coordinator.manual_rollback(
                application=APP,
                environment="dev",
                strategy=RollbackStrategy.PREVIOUS_SLOT,
                blue_green=False,
                run_id="run-9",
                actor="alice",
            )

    @pytest.mark.asyncio
    async def test_helm_revision_on_active_slot(self, coordinator, slots, deployer):
        await _release(slots, "acr.example.io/orders:v1")
        await _release(slots, "acr.example.io/orders:v2")

        result = await coordinator.manual_rollback(
            application=APP,
            environment=ENV,
            strategy=RollbackStrategy.HELM_REVISION,
            blue_green=True,
            run_id="run-9",
            actor="alice",
            revision=3,
        )

        assert deployer.rollbacks == [("ppr-orders-green", 3)]
        assert result.restored_color is SlotColor.GREEN

    @pytest.mark.asyncio
    async def test_helm_revision_on_rolling_environment(self, coordinator, deployer):
        result = await coordinator.manual_rollback(
            application=APP,
            environment="dev",
            strategy=RollbackStrategy.HELM_REVISION,
            blue_green=False,
            run_id="run-9",
            actor="alice",
        )

        assert deployer.rollbacks == [("dev-orders", None)]
        assert result.restored_namespace == "dev-orders"

    @pytest.mark.asyncio
    async def test_serialized_with_running_promotion(self, coordinator, lock):
        await lock.acquire(APP, ENV, "run-1")

        with pytest.raises(DeploymentLocked):
            await coordinator.manual_rollback(
                application=APP,
                environment=ENV,
                strategy=RollbackStrategy.PREVIOUS_SLOT,
                blue_green=True,
                run_id="run-9",
                actor="alice",
            )

    @pytest.mark.asyncio
    async def test_helm_rollback_unavailable(self, store, slots, lock):
        coordinator = RollbackCoordinator(store, slots, lock)

        with pytest.raises(DeploymentError, match="not available"):
            await coordinator.manual_rollback(
                application=APP,
                environment="dev",
                strategy=RollbackStrategy.HELM_REVISION,
                blue_green=False,
                run_id="run-9",
                actor="alice",
            )
