"""Tests for the canary traffic ramp."""

import pytest

from src.app.core.promotion.canary import CanaryController
from src.app.core.promotion.health import HealthEvaluator
from src.app.core.promotion.lock import DeploymentLock
from src.app.core.promotion.models import CanaryStatus
from src.app.core.promotion.slots import SlotManager
from tests.fixtures import APP, ScriptedHealthSource, no_sleep

ENV = "ppr"
TARGET = "ppr-orders-green"


@pytest.fixture
def canary_config(config):
    # initial 10, step 30, two consecutive failures abort
    return config.environments[ENV].canary


@pytest.fixture
def lock(store, config) -> DeploymentLock:
    return DeploymentLock(store, config.lock, sleep=no_sleep)


def _controller(store, controller, deployer, audit, lock, source) -> CanaryController:
    slots = SlotManager(store, controller, deployer, audit)
    return CanaryController(
        store, slots, HealthEvaluator(source), lock, audit, sleep=no_sleep
    )


async def _run(canary: CanaryController, canary_config, lease=None):
    return await canary.run(
        application=APP,
        environment=ENV,
        target_namespace=TARGET,
        config=canary_config,
        run_id="run-1",
        lease=lease,
    )


class TestCanaryRamp:
    @pytest.mark.asyncio
    async def test_healthy_ramp_completes(
        self, store, controller, deployer, audit, lock, canary_config
    ):
        canary = _controller(store, controller, deployer, audit, lock, ScriptedHealthSource())

        state = await _run(canary, canary_config)

        assert state.status is CanaryStatus.COMPLETED
        assert state.current_weight == 100
        assert controller.weights == [(TARGET, w) for w in (10, 40, 70, 100)]
        stored = await store.get_canary(APP, ENV)
        assert stored.status is CanaryStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_consecutive_failures_abort_to_zero(
        self, store, controller, deployer, audit, lock, canary_config
    ):
        source = ScriptedHealthSource([True, False, False])
        canary = _controller(store, controller, deployer, audit, lock, source)

        state = await _run(canary, canary_config)

        assert state.status is CanaryStatus.ABORTED
        assert state.current_weight == 0
        assert controller.weights == [(TARGET, 10), (TARGET, 40), (None, 0)]

    @pytest.mark.asyncio
    async def test_failures_below_threshold_hold_weight_then_abort(
        self, store, controller, deployer, audit, lock, canary_config
    ):
        config = canary_config.model_copy(update={"failure_threshold": 3})
        source = ScriptedHealthSource([True, False, False, False])
        canary = _controller(store, controller, deployer, audit, lock, source)
        state = await canary.start(
            application=APP,
            environment=ENV,
            target_namespace=TARGET,
            config=config,
            run_id="run-1",
        )

        state = await canary.tick(state, config)
        assert state.current_weight == 40
        for failures in (1, 2):
            state = await canary.tick(state, config)
            assert state.status is CanaryStatus.RAMPING
            assert state.current_weight == 40
            assert state.consecutive_failures == failures

        state = await canary.tick(state, config)

        assert state.status is CanaryStatus.ABORTED
        assert state.current_weight == 0
        assert controller.weights == [(TARGET, 10), (TARGET, 40), (None, 0)]
        assert controller.routes["ppr-orders"].canary_weight == 0

    @pytest.mark.asyncio
    async def test_weight_never_decreases_while_ramping(
        self, store, controller, deployer, audit, lock, canary_config
    ):
        source = ScriptedHealthSource([True, False, True, False, True])
        canary = _controller(store, controller, deployer, audit, lock, source)

        state = await _run(canary, canary_config)

        assert state.status is CanaryStatus.COMPLETED
        weights = [weight for _, weight in controller.weights]
        assert weights == sorted(weights)

    @pytest.mark.asyncio
    async def test_abort_flag_stops_ramp_before_evaluation(
        self, store, controller, deployer, audit, lock, canary_config
    ):
        lease = await lock.try_acquire(APP, ENV, "run-1")
        await lock.request_abort(APP, ENV, "run-2")
        source = ScriptedHealthSource()
        canary = _controller(store, controller, deployer, audit, lock, source)

        state = await _run(canary, canary_config, lease=lease)

        assert state.status is CanaryStatus.ABORTED
        assert state.current_weight == 0
        assert source.calls == []

    @pytest.mark.asyncio
    async def test_tick_ignores_finished_ramp(
        self, store, controller, deployer, audit, lock, canary_config
    ):
        source = ScriptedHealthSource()
        canary = _controller(store, controller, deployer, audit, lock, source)
        state = await _run(canary, canary_config)
        calls = len(source.calls)

        again = await canary.tick(state, canary_config)

        assert again.status is CanaryStatus.COMPLETED
        assert len(source.calls) == calls

    @pytest.mark.asyncio
    async def test_ramp_transitions_are_audited(
        self, store, controller, deployer, audit, lock, canary_config
    ):
        canary = _controller(store, controller, deployer, audit, lock, ScriptedHealthSource())

        await _run(canary, canary_config)

        decisions = [e.decision for e in await store.list_audit(APP, ENV)]
        assert decisions[0] == "canary RAMPING"
        assert decisions[-1] == "canary COMPLETED"
