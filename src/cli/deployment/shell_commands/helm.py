"""Helm command abstractions.

This module provides commands for Helm release management of slot
workloads: installs/upgrades into a slot namespace, rollbacks to a
previous revision, and revision history queries.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING

from .types import CommandResult

if TYPE_CHECKING:
    from .runner import CommandRunner


class HelmCommands:
    """Helm-related shell commands.

    Provides operations for:
    - Release management (install, upgrade, rollback)
    - Revision history queries
    """

    def __init__(self, runner: CommandRunner) -> None:
        """Initialize Helm commands.

        Args:
            runner: Command runner for executing shell commands
        """
        self._runner = runner

    # =========================================================================
    # Release Management
    # =========================================================================

    def upgrade_install(
        self,
        release_name: str,
        chart_path: Path,
        namespace: str,
        *,
        value_files: list[Path] | None = None,
        timeout: str = "10m",
        wait: bool = True,
        create_namespace: bool = False,
        kube_context: str | None = None,
        on_output: Callable[[str], None] | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Deploy or upgrade a Helm release.

        Uses `helm upgrade --install` to idempotently deploy a chart into a
        slot namespace.

        Args:
            release_name: Name for the Helm release (e.g., "orders")
            chart_path: Path to the Helm chart directory
            namespace: Slot namespace (e.g., "prod-orders-green")
            value_files: Optional list of values.yaml override files
            timeout: Maximum time to wait for deployment
            wait: Whether to wait for resources to be ready
            create_namespace: Whether to create namespace if it doesn't exist
            kube_context: Kube context of the target cluster
            on_output: Optional callback for real-time output streaming.
                      If provided, each line of output is passed to this function.
            env: Explicit credentials for the helm process

        Returns:
            CommandResult with deployment status

        Example:
            >>> helm.upgrade_install(
            ...     "orders",
            ...     Path("./helm"),
            ...     "prod-orders-green",
            ...     value_files=[Path("./helm/values-prod.yaml")],
            ... )
        """
        cmd = [
            "helm",
            "upgrade",
            "--install",
            release_name,
            str(chart_path),
            "--namespace",
            namespace,
        ]

        if create_namespace:
            cmd.append("--create-namespace")
        if kube_context:
            cmd.extend(["--kube-context", kube_context])
        if wait:
            cmd.append("--wait")
        cmd.extend(["--timeout", timeout])

        for vf in value_files or []:
            cmd.extend(["-f", str(vf)])

        if on_output:
            return self._runner.run_streaming(cmd, on_output=on_output, env=env)
        return self._runner.run(cmd, capture_output=True, env=env)

    def rollback(
        self,
        release_name: str,
        namespace: str,
        revision: int | None = None,
        *,
        wait: bool = True,
        timeout: str = "5m",
        kube_context: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Rollback a Helm release to a previous revision.

        Used by manual rollback of rolling (non blue/green) environments.

        Args:
            release_name: Name of the release to rollback
            namespace: Kubernetes namespace
            revision: Specific revision to rollback to (default: previous revision)
            wait: Whether to wait for rollback to complete
            timeout: Maximum time to wait for rollback
            kube_context: Kube context of the target cluster
            env: Explicit credentials for the helm process

        Returns:
            CommandResult with rollback status
        """
        cmd = ["helm", "rollback", release_name, "-n", namespace]
        if revision is not None:
            cmd.append(str(revision))
        if kube_context:
            cmd.extend(["--kube-context", kube_context])
        if wait:
            cmd.append("--wait")
        cmd.extend(["--timeout", timeout])
        return self._runner.run(cmd, env=env)

    def history(
        self,
        release_name: str,
        namespace: str,
        max_revisions: int = 10,
        *,
        kube_context: str | None = None,
    ) -> list[dict[str, str]]:
        """Get release history.

        Used to pick a target revision for a helm-revision rollback.

        Args:
            release_name: Name of the release
            namespace: Kubernetes namespace
            max_revisions: Maximum number of revisions to return
            kube_context: Kube context of the target cluster

        Returns:
            List of revision dictionaries with keys: revision, updated, status, description
        """
        cmd = [
            "helm",
            "history",
            release_name,
            "-n",
            namespace,
            "-o",
            "json",
            "--max",
            str(max_revisions),
        ]
        if kube_context:
            cmd.extend(["--kube-context", kube_context])

        result = self._runner.run(cmd)
        if not result.success or not result.stdout:
            return []

        try:
            history_data: list[dict[str, str]] = json.loads(result.stdout)
            return history_data
        except json.JSONDecodeError:
            return []
