"""CLI context and dependency container."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import click
import typer
from loguru import logger

from src.app.core.promotion.approval import ApprovalGate
from src.app.core.promotion.audit import AuditTrail, configure_audit_sink
from src.app.core.promotion.credentials import STAGE_ROLLBACK, CredentialBroker
from src.app.core.promotion.errors import ConfigurationError
from src.app.core.promotion.identity import PrincipalAuthorizer, StaticIdentityProvider
from src.app.core.promotion.lock import DeploymentLock
from src.app.core.promotion.models import ClusterBinding
from src.app.core.promotion.pipeline import PromotionPipeline
from src.app.core.promotion.rollback import RollbackCoordinator
from src.app.core.promotion.slots import SlotManager
from src.app.core.services.storage import PromotionStateStore, get_state_store
from src.app.runtime.config.config_data import ConfigData, EnvironmentConfig
from src.app.runtime.config.config_loader import load_config
from src.cli.deployment.history import GitDeploymentHistory
from src.cli.deployment.shell_commands import ShellCommands
from src.cli.deployment.workload import HelmWorkloadDeployer
from src.cli.shared.console import CLIConsole, console
from src.infra.constants import DeploymentConstants, DeploymentPaths
from src.infra.k8s import KubernetesController, get_k8s_controller
from src.utils.paths import get_project_root


def _controller_for_binding(binding: ClusterBinding) -> KubernetesController:
    return get_k8s_controller(binding.context)


@dataclass(frozen=True)
class CLIContext:
    """Runtime dependencies for CLI commands."""

    console: CLIConsole
    project_root: Path
    config: ConfigData
    store: PromotionStateStore
    audit: AuditTrail
    commands: ShellCommands
    authorizer: PrincipalAuthorizer
    credentials: CredentialBroker
    constants: DeploymentConstants
    paths: DeploymentPaths
    controller_factory: Callable[[ClusterBinding], KubernetesController] = (
        _controller_for_binding
    )

    @property
    def application(self) -> str:
        return self.config.application.name

    def environment(self, name: str) -> EnvironmentConfig:
        env = self.config.environment(name)
        if env is None:
            raise ConfigurationError(
                f"Unknown environment '{name}'",
                details=f"Configured environments: {', '.join(self.config.environments)}",
            )
        return env

    def binding(self, name: str) -> ClusterBinding:
        env = self.environment(name)
        if not env.cluster.is_configured:
            raise ConfigurationError(f"Environment '{name}' has no cluster binding")
        return env.cluster.to_binding()

    def deployer(self, binding: ClusterBinding) -> HelmWorkloadDeployer:
        return HelmWorkloadDeployer(
            self.commands,
            self.config.application,
            binding,
            paths=self.paths,
            constants=self.constants,
            rollback_env=self.credentials.for_stage(STAGE_ROLLBACK),
        )

    def lock(self) -> DeploymentLock:
        return DeploymentLock(self.store, self.config.lock)

    def approval_gate(self) -> ApprovalGate:
        return ApprovalGate(self.store, self.authorizer, self.audit)

    def slot_manager(self, environment: str) -> SlotManager:
        binding = self.binding(environment)
        return SlotManager(
            self.store,
            self.controller_factory(binding),
            self.deployer(binding),
            self.audit,
            self.constants,
        )

    def rollback_coordinator(self, environment: str) -> RollbackCoordinator:
        binding = self.binding(environment)
        return RollbackCoordinator(
            self.store,
            self.slot_manager(environment),
            self.lock(),
            self.audit,
            releases=self.deployer(binding),
        )

    def history(self) -> GitDeploymentHistory:
        return GitDeploymentHistory(self.commands.git, self.constants)

    def pipeline(self) -> PromotionPipeline:
        history = self.history()
        return PromotionPipeline(
            self.config,
            self.store,
            history,
            controller_factory=self.controller_factory,
            deployer_factory=self.deployer,
            authorizer=self.authorizer,
            audit=self.audit,
            credentials=self.credentials,
            history=history,
        )


def build_cli_context(config_path: Path | None = None) -> CLIContext:
    """Build a fresh CLIContext from the promotion config."""
    project_root = get_project_root()
    try:
        config = load_config(config_path)
    except (ValueError, FileNotFoundError) as e:
        console.handle_error("Failed to load promotion configuration", str(e))
        raise  # handle_error always exits

    store = get_state_store(config.storage.redis_url, config.audit.retention_seconds)
    if config.audit.log_path:
        configure_audit_sink(config.audit.log_path)
        logger.debug(f"Audit events are written to {config.audit.log_path}")

    identity = StaticIdentityProvider(config.approvals.groups)
    return CLIContext(
        console=console,
        project_root=project_root,
        config=config,
        store=store,
        audit=AuditTrail(store),
        commands=ShellCommands(project_root),
        authorizer=PrincipalAuthorizer(
            config.approvals.allowed_principals,
            config.approvals.authorized_groups,
            identity,
        ),
        credentials=CredentialBroker(config.credentials),
        constants=DeploymentConstants(),
        paths=DeploymentPaths(project_root, config.application.helm_chart_path),
    )


CONFIG_META_KEY = "slotpilot.config_path"


def get_cli_context(ctx: typer.Context | None = None) -> CLIContext:
    """Return the CLIContext from Typer, building and caching it on first use."""
    context = ctx or click.get_current_context(silent=True)
    if context is None:
        return build_cli_context()

    root = context.find_root()
    if isinstance(root.obj, CLIContext):
        return root.obj
    cli_context = build_cli_context(root.meta.get(CONFIG_META_KEY))
    root.obj = cli_context
    return cli_context
