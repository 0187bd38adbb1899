"""Shared fixtures and in-memory fakes for the promotion pipeline."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

import pytest

from src.app.core.promotion.audit import AuditTrail
from src.app.core.promotion.health import HealthSample
from src.app.core.promotion.identity import PrincipalAuthorizer, StaticIdentityProvider
from src.app.core.promotion.models import DeploymentSlot
from src.app.core.services.storage import InMemoryStorage, PromotionStateStore
from src.app.runtime.config.config_data import ConfigData
from src.infra.k8s.controller import (
    CommandResult,
    KubernetesController,
    PodInfo,
    RouteRef,
    RouteState,
)

APP = "orders"

CONFIG_DATA: dict[str, Any] = {
    "application": {"name": APP, "registry": "acr.example.io"},
    "environments": {
        "dev": {
            "rules": [{"kind": "exact", "pattern": "refs/heads/develop"}],
            "blue_green": False,
            "required_approvals": 0,
            "cluster": {"name": "aks-dev", "resource_group": "rg-dev"},
        },
        "sqe": {
            "rules": [{"kind": "exact", "pattern": "refs/heads/main"}],
            "blue_green": False,
            "required_approvals": 0,
            "cluster": {"name": "aks-sqe", "resource_group": "rg-sqe"},
        },
        "ppr": {
            "rules": [{"kind": "prefix", "pattern": "refs/heads/release/"}],
            "required_approvals": 0,
            "standby_grace_seconds": 600,
            "cluster": {"name": "aks-ppr", "resource_group": "rg-ppr"},
            "canary": {
                "initial_weight": 10,
                "step_size": 30,
                "step_interval_seconds": 1,
                "failure_threshold": 2,
            },
        },
        "prod": {
            "rules": [{"kind": "tag", "pattern": "v*"}],
            "protected": True,
            "required_approvals": 2,
            "approval_timeout_seconds": 600,
            "cluster": {"name": "aks-prod", "resource_group": "rg-prod"},
            "canary": {
                "initial_weight": 10,
                "step_size": 50,
                "step_interval_seconds": 1,
                "failure_threshold": 2,
            },
        },
    },
    "approvals": {
        "allowed_principals": ["alice"],
        "authorized_groups": ["release-managers"],
        "groups": {"release-managers": ["bob", "carol"]},
    },
    "lock": {"policy": "reject", "wait_timeout_seconds": 10, "poll_interval_seconds": 1},
}


def make_config(**overrides: Any) -> ConfigData:
    """Sample config; top-level keys can be replaced via keyword arguments."""
    return ConfigData(**{**CONFIG_DATA, **overrides})


# =============================================================================
# Fakes
# =============================================================================


class FakeClusterController(KubernetesController):
    """Cluster state held in dictionaries."""

    def __init__(self) -> None:
        self.namespaces: dict[str, dict[str, str]] = {}
        self.pods: dict[str, list[PodInfo]] = {}
        self.routes: dict[str, RouteState] = {}
        self.deleted: list[str] = []
        self.weights: list[tuple[str | None, int]] = []
        self.failing_rollouts: set[str] = set()
        self.fail_primary_switch = False

    async def get_current_context(self) -> str:
        return "fake"

    async def namespace_exists(self, namespace: str) -> bool:
        return namespace in self.namespaces

    async def create_namespace(
        self, namespace: str, labels: dict[str, str] | None = None
    ) -> CommandResult:
        self.namespaces.setdefault(namespace, {}).update(labels or {})
        return CommandResult(success=True)

    async def delete_namespace(
        self, namespace: str, *, wait: bool = True, timeout: str = "120s"
    ) -> CommandResult:
        self.namespaces.pop(namespace, None)
        self.deleted.append(namespace)
        return CommandResult(success=True)

    async def get_pods(self, namespace: str) -> list[PodInfo]:
        if namespace not in self.pods:
            return [PodInfo(name=f"{namespace}-pod", status="Running", ready=True)]
        return self.pods[namespace]

    async def rollout_status(
        self, namespace: str, *, timeout: str = "300s"
    ) -> CommandResult:
        if namespace in self.failing_rollouts:
            return CommandResult(success=False, stderr="deadline exceeded", returncode=1)
        return CommandResult(success=True)

    def route(self, route: RouteRef) -> RouteState:
        return self.routes.setdefault(route.namespace, RouteState())

    async def get_route(self, route: RouteRef) -> RouteState:
        state = self.route(route)
        return RouteState(
            primary_namespace=state.primary_namespace,
            canary_namespace=state.canary_namespace,
            canary_weight=state.canary_weight,
        )

    async def set_primary_backend(self, route: RouteRef, namespace: str) -> CommandResult:
        if self.fail_primary_switch:
            return CommandResult(success=False, stderr="ingress update rejected")
        self.route(route).primary_namespace = namespace
        return CommandResult(success=True)

    async def set_canary_weight(
        self, route: RouteRef, namespace: str | None, weight: int
    ) -> CommandResult:
        state = self.route(route)
        state.canary_namespace = namespace
        state.canary_weight = weight
        self.weights.append((namespace, weight))
        return CommandResult(success=True)


class FakeDeployer:
    """Records deploys instead of running helm."""

    def __init__(self) -> None:
        self.deployed: list[DeploymentSlot] = []
        self.rolling: list[tuple[str, str, str]] = []
        self.rollbacks: list[tuple[str, int | None]] = []
        self.credentials: list[Mapping[str, str] | None] = []
        self.fail = False

    async def deploy(
        self, slot: DeploymentSlot, env: Mapping[str, str] | None = None
    ) -> CommandResult:
        self.deployed.append(slot.model_copy())
        self.credentials.append(env)
        if self.fail:
            return CommandResult(success=False, stderr="helm failed", returncode=1)
        return CommandResult(success=True)

    async def deploy_rolling(
        self,
        environment: str,
        namespace: str,
        image_ref: str,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        self.rolling.append((environment, namespace, image_ref))
        self.credentials.append(env)
        if self.fail:
            return CommandResult(success=False, stderr="helm failed", returncode=1)
        return CommandResult(success=True)

    async def rollback(self, namespace: str, revision: int | None = None) -> CommandResult:
        self.rollbacks.append((namespace, revision))
        return CommandResult(success=True)


class FakeChangeSource:
    def __init__(self, base: str | None = None, files: list[str] | None = None) -> None:
        self.base = base
        self.files = files
        self.diffs: list[tuple[str, str]] = []

    def last_successful_deployment(self, application: str, environment: str) -> str | None:
        return self.base

    def changed_files(self, base: str, head: str) -> list[str] | None:
        self.diffs.append((base, head))
        return self.files


class FakeHistory:
    def __init__(self) -> None:
        self.recorded: list[tuple[str, str, str]] = []

    def record_success(
        self,
        application: str,
        environment: str,
        ref: str,
        env: Mapping[str, str] | None = None,
    ) -> str | None:
        self.recorded.append((application, environment, ref))
        return f"deploy/{application}/{environment}/20260101000000"


class ScriptedHealthSource:
    """Returns healthy/unhealthy samples from a script, then repeats the last."""

    def __init__(self, script: list[bool] | None = None) -> None:
        self.script = list(script or [True])
        self.calls: list[str] = []

    async def sample(self, namespace: str) -> HealthSample:
        self.calls.append(namespace)
        healthy = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        return HealthSample(error_rate=0.0 if healthy else 0.5, detail=namespace)


class FakeClock:
    def __init__(self, start: Any) -> None:
        self.now = start

    def __call__(self) -> Any:
        return self.now


async def no_sleep(_seconds: float) -> None:
    return None


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def config() -> ConfigData:
    return make_config()


@pytest.fixture
def store() -> PromotionStateStore:
    return PromotionStateStore(InMemoryStorage())


@pytest.fixture
def audit(store: PromotionStateStore) -> AuditTrail:
    return AuditTrail(store)


@pytest.fixture
def authorizer(config: ConfigData) -> PrincipalAuthorizer:
    return PrincipalAuthorizer(
        config.approvals.allowed_principals,
        config.approvals.authorized_groups,
        StaticIdentityProvider(config.approvals.groups),
    )


@pytest.fixture
def controller() -> FakeClusterController:
    return FakeClusterController()


@pytest.fixture
def deployer() -> FakeDeployer:
    return FakeDeployer()


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    (tmp_path / "helm").mkdir()
    (tmp_path / "helm" / "values.yaml").write_text("replicaCount: 1\n")
    return tmp_path
