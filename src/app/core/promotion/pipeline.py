"""End-to-end promotion pipeline.

Stages run in a fixed order and only exchange the typed records they
return: resolve -> detect changes -> aggregate quality gates -> approval ->
lock -> deploy target slot -> canary -> promote -> post-promotion health check.
Any failure after the target slot is deployed is compensated by the
rollback coordinator before the error propagates.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Mapping
from enum import Enum
from typing import Protocol

from loguru import logger
from pydantic import BaseModel

from src.app.core.services.storage.state import PromotionStateStore
from src.app.runtime.config.config_data import ConfigData, EnvironmentConfig
from src.infra.constants import DEFAULT_CONSTANTS
from src.infra.k8s.controller import CommandResult, KubernetesController

from .approval import ApprovalGate
from .audit import AuditTrail
from .canary import CanaryController
from .changes import ChangeDetector, ChangeSource
from .credentials import STAGE_DEPLOY, STAGE_TAG, CredentialBroker
from .errors import (
    AuthorizationError,
    ConfigurationError,
    DeploymentError,
    HealthCheckFailure,
    ScanGateFailure,
    WorkloadDeployError,
)
from .health import HealthEvaluator, HealthSource, PodHealthSource
from .identity import PrincipalAuthorizer
from .lock import DeploymentLock, LockLease
from .models import (
    ApprovalDecision,
    ApprovalRecord,
    CanaryState,
    CanaryStatus,
    ChangeVerdict,
    ClusterBinding,
    DeploymentRequest,
    DeploymentSlot,
    EnvironmentDecision,
    PromotionResult,
    QualityGateResult,
    QualityGateVerdict,
    RollbackResult,
)
from .quality_gate import QualityGateAggregator
from .resolver import EnvironmentResolver
from .rollback import RollbackCoordinator
from .slots import SlotManager, WorkloadDeployer
from .versioning import VersionInfo, resolve_version

COMPONENT = "pipeline"


class ReleaseDeployer(WorkloadDeployer, Protocol):
    """Workload deployer that can also do rolling releases and rollbacks."""

    async def deploy_rolling(
        self,
        environment: str,
        namespace: str,
        image_ref: str,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult: ...

    async def rollback(self, namespace: str, revision: int | None = None) -> CommandResult: ...


class DeploymentHistory(Protocol):
    def record_success(
        self, application: str, environment: str, ref: str, env: Mapping[str, str] | None = None
    ) -> str | None: ...


class PipelineStatus(str, Enum):
    SKIPPED = "SKIPPED"
    DEPLOYED = "DEPLOYED"
    PROMOTED = "PROMOTED"


class PipelineReport(BaseModel):
    """Everything the stages produced for one run."""

    request: DeploymentRequest
    status: PipelineStatus
    decision: EnvironmentDecision
    changes: ChangeVerdict | None = None
    version: VersionInfo | None = None
    image_ref: str | None = None
    gates: QualityGateVerdict | None = None
    approval: ApprovalRecord | None = None
    slot: DeploymentSlot | None = None
    canary: CanaryState | None = None
    promotion: PromotionResult | None = None
    rollback: RollbackResult | None = None


class PromotionPipeline:
    """Wire the promotion stages together for one application."""

    def __init__(
        self,
        config: ConfigData,
        store: PromotionStateStore,
        changes: ChangeSource,
        controller_factory: Callable[[ClusterBinding], KubernetesController],
        deployer_factory: Callable[[ClusterBinding], ReleaseDeployer],
        authorizer: PrincipalAuthorizer,
        audit: AuditTrail | None = None,
        credentials: CredentialBroker | None = None,
        history: DeploymentHistory | None = None,
        health_factory: Callable[[KubernetesController], HealthSource] = PodHealthSource,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        approval_poll_interval: float = 5.0,
    ) -> None:
        self._config = config
        self._store = store
        self._controller_factory = controller_factory
        self._deployer_factory = deployer_factory
        self._health_factory = health_factory
        self._audit = audit or AuditTrail(store)
        self._credentials = credentials or CredentialBroker(config.credentials)
        self._history = history
        self._sleep = sleep
        self._approval_poll_interval = approval_poll_interval

        self.resolver = EnvironmentResolver(config, authorizer)
        self.detector = ChangeDetector(
            changes, config.application.build_context, config.application.watch_paths
        )
        self.gates = QualityGateAggregator(config.scanners)
        self.approvals = ApprovalGate(store, authorizer, self._audit, sleep=sleep)
        self.lock = DeploymentLock(store, config.lock, sleep=sleep)

    async def run(
        self,
        request: DeploymentRequest,
        scan_results: Iterable[QualityGateResult],
        *,
        short_sha: str,
        image_ref: str | None = None,
        latest_tag: str | None = None,
    ) -> PipelineReport:
        """Execute one pipeline run.

        Raises:
            ConfigurationError, AuthorizationError, ScanGateFailure,
            ApprovalRejected, ApprovalTimeout, DeploymentLocked,
            WorkloadDeployError, HealthCheckFailure
        """
        application = request.application or self._config.application.name
        if request.application != application:
            request = request.model_copy(update={"application": application})

        decision = await self._resolve(request)
        report = PipelineReport(request=request, status=PipelineStatus.SKIPPED, decision=decision)
        if not decision.should_deploy:
            return report

        report.changes = self.detector.detect(request, decision)
        await self._emit(
            request,
            decision.target_environment,
            f"changes {'DEPLOY' if report.changes.should_deploy else 'SKIP'}",
            reason=report.changes.reason,
        )
        if not report.changes.should_deploy:
            return report

        env_name = decision.target_environment
        env = self._config.environments[env_name]
        report.version = resolve_version(
            request.ref,
            env_name,
            short_sha,
            latest_tag=latest_tag,
            protected=env.protected,
        )
        report.image_ref = image_ref or self._image_ref(application, report.version)

        report.gates = self.gates.aggregate(scan_results)
        await self._emit(request, env_name, f"gates {report.gates.status.value}")
        if not report.gates.passed:
            raise ScanGateFailure(list(report.gates.evaluations))

        report.approval = await self._approve(request, env_name, env, report.gates)

        lease = await self.lock.acquire(application, env_name, request.run_id, request.actor)
        try:
            if decision.cluster_binding is None:
                raise ConfigurationError(f"Environment {env_name} has no cluster binding")
            controller = self._controller_factory(decision.cluster_binding)
            deployer = self._deployer_factory(decision.cluster_binding)
            if env.blue_green:
                report = await self._blue_green(
                    report, env, controller, deployer, lease
                )
            else:
                report = await self._rolling(report, controller, deployer)
        finally:
            # Rollback releases the lease itself
            holder = await self.lock.holder(application, env_name)
            if holder is not None and holder.holder == lease.holder:
                await self.lock.release(lease)

        if self._history is not None:
            tag = self._history.record_success(
                application, env_name, request.ref, env=self._credentials.for_stage(STAGE_TAG)
            )
            if tag:
                logger.info(f"Recorded deployment history tag {tag}")
        return report

    # =========================================================================
    # Stages
    # =========================================================================

    async def _resolve(self, request: DeploymentRequest) -> EnvironmentDecision:
        try:
            decision = self.resolver.resolve(request)
        except AuthorizationError as e:
            await self._emit(
                request, request.requested_environment, "resolve DENIED", reason=e.message
            )
            raise
        await self._emit(
            request,
            decision.target_environment,
            f"resolve {'DEPLOY' if decision.should_deploy else 'SKIP'}",
            reason=decision.reason,
        )
        return decision

    async def _approve(
        self,
        request: DeploymentRequest,
        env_name: str,
        env: EnvironmentConfig,
        verdict: QualityGateVerdict,
    ) -> ApprovalRecord:
        record = await self.approvals.open(
            application=request.application,
            environment=env_name,
            env_config=env,
            run_id=request.run_id,
            ref=request.ref,
            verdict=verdict,
        )
        if record.decision is ApprovalDecision.PENDING:
            logger.info(
                f"Waiting for {record.required_approvals} approval(s) for "
                f"{request.application}/{env_name} (run {request.run_id})"
            )
            record = await self.approvals.wait_for_decision(
                request.application,
                env_name,
                request.run_id,
                poll_interval=self._approval_poll_interval,
            )
        ApprovalGate.ensure_promotable(record, env.protected)
        return record

    async def _rolling(
        self,
        report: PipelineReport,
        controller: KubernetesController,
        deployer: ReleaseDeployer,
    ) -> PipelineReport:
        request = report.request
        env_name = report.decision.target_environment
        namespace = DEFAULT_CONSTANTS.routing_namespace(env_name, request.application)
        if report.image_ref is None:
            raise ConfigurationError(f"No image reference resolved for {env_name}")

        result = await deployer.deploy_rolling(
            env_name,
            namespace,
            report.image_ref,
            env=self._credentials.for_stage(STAGE_DEPLOY),
        )
        if result.success:
            result = await controller.rollout_status(namespace)
        if not result.success:
            logger.error(f"Rolling deploy to {namespace} failed; rolling the release back")
            rollback = await deployer.rollback(namespace)
            await self._emit(
                request,
                env_name,
                "rolling deploy FAILED",
                rollback="ok" if rollback.success else rollback.stderr,
            )
            raise WorkloadDeployError(
                f"Rolling deploy of {report.image_ref} to {namespace} failed",
                details=result.stderr or result.stdout,
            )

        await self._emit(request, env_name, "rolling deploy COMPLETED", image=report.image_ref)
        report.status = PipelineStatus.DEPLOYED
        return report

    async def _blue_green(
        self,
        report: PipelineReport,
        env: EnvironmentConfig,
        controller: KubernetesController,
        deployer: ReleaseDeployer,
        lease: LockLease,
    ) -> PipelineReport:
        request = report.request
        application = request.application
        env_name = report.decision.target_environment
        if report.image_ref is None:
            raise ConfigurationError(f"No image reference resolved for {env_name}")

        slots = SlotManager(self._store, controller, deployer, self._audit)
        evaluator = HealthEvaluator.from_config(self._health_factory(controller), env.canary)
        canary = CanaryController(
            self._store, slots, evaluator, self.lock, self._audit, sleep=self._sleep
        )
        coordinator = RollbackCoordinator(
            self._store, slots, self.lock, self._audit, releases=deployer
        )

        snapshot = await slots.snapshot(application, env_name)
        # A failed deploy leaves the active slot untouched; nothing to compensate
        report.slot = await slots.deploy(
            application=application,
            environment=env_name,
            image_ref=report.image_ref,
            run_id=request.run_id,
            ref=request.ref,
            actor=request.actor,
            credentials=self._credentials.for_stage(STAGE_DEPLOY),
        )

        try:
            if snapshot.active_color is not None:
                report.canary = await canary.run(
                    application=application,
                    environment=env_name,
                    target_namespace=report.slot.namespace,
                    config=env.canary,
                    run_id=request.run_id,
                    lease=lease,
                    ref=request.ref,
                    actor=request.actor,
                )
                if report.canary.status is CanaryStatus.ABORTED:
                    raise HealthCheckFailure(
                        f"Canary for {application}/{env_name} aborted",
                        details=f"Weight reset to 0; {snapshot.active_color.value} keeps serving.",
                    )

            report.promotion = await slots.promote(
                application=application,
                environment=env_name,
                protected=env.protected,
                approval=report.approval,
                canary=report.canary,
                grace_seconds=env.standby_grace_seconds,
                ref=request.ref,
                actor=request.actor,
            )

            verdict = await evaluator.evaluate(report.slot.namespace)
            if not verdict.healthy:
                raise HealthCheckFailure(
                    f"Post-promotion health check failed for {application}/{env_name}",
                    details="\n".join(verdict.reasons),
                )
        except Exception as e:
            reason = e.message if isinstance(e, DeploymentError) else f"{type(e).__name__}: {e}"
            report.rollback = await coordinator.rollback(
                snapshot=snapshot,
                failed_color=report.slot.color,
                reason=reason,
                lease=lease,
                run_id=request.run_id,
                ref=request.ref,
                actor=request.actor,
            )
            raise

        report.status = PipelineStatus.PROMOTED
        return report

    # =========================================================================
    # Helpers
    # =========================================================================

    def _image_ref(self, application: str, version: VersionInfo) -> str:
        registry = self._config.application.registry.rstrip("/")
        repository = f"{registry}/{application}" if registry else application
        return f"{repository}:{version.image_tag}"

    async def _emit(
        self, request: DeploymentRequest, environment: str, decision: str, **details: str
    ) -> None:
        await self._audit.record(
            ref=request.ref,
            actor=request.actor,
            decision=decision,
            component=COMPONENT,
            application=request.application,
            environment=environment,
            run_id=request.run_id,
            **details,
        )
