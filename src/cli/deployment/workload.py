"""Helm-backed workload deployment.

Applies the application chart into a slot namespace (blue/green
environments) or the shared environment namespace (rolling environments),
with an image override values file generated per deploy.
"""

from __future__ import annotations

import asyncio
import tempfile
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from loguru import logger

from src.app.core.promotion.models import ClusterBinding, DeploymentSlot
from src.app.runtime.config.config_data import ApplicationConfig
from src.infra.constants import DEFAULT_CONSTANTS, DeploymentConstants, DeploymentPaths

from .shell_commands import CommandResult, ShellCommands


def split_image_ref(image_ref: str) -> tuple[str, dict[str, str]]:
    """Split an image reference into repository and tag/digest values.

    Examples:
        "acr.io/orders:v1.2.0" -> ("acr.io/orders", {"tag": "v1.2.0"})
        "acr.io/orders@sha256:ab" -> ("acr.io/orders", {"digest": "sha256:ab"})
    """
    if "@" in image_ref:
        repository, digest = image_ref.split("@", 1)
        return repository, {"digest": digest}

    name_start = image_ref.rfind("/") + 1
    colon = image_ref.rfind(":")
    if colon > name_start:
        return image_ref[:colon], {"tag": image_ref[colon + 1 :]}
    return image_ref, {"tag": "latest"}


class HelmWorkloadDeployer:
    """Deploy and roll back the application chart on one cluster."""

    def __init__(
        self,
        commands: ShellCommands,
        application: ApplicationConfig,
        binding: ClusterBinding,
        paths: DeploymentPaths | None = None,
        constants: DeploymentConstants = DEFAULT_CONSTANTS,
        rollback_env: Mapping[str, str] | None = None,
    ) -> None:
        self.commands = commands
        self.application = application
        self.binding = binding
        self.paths = paths or DeploymentPaths(
            commands.project_root, application.helm_chart_path
        )
        self.constants = constants
        self.rollback_env = rollback_env

    def create_image_override_file(
        self,
        image_ref: str,
        environment: str,
        slot: str | None = None,
    ) -> Path:
        """Create a temporary values file that pins the image.

        Args:
            image_ref: Immutable image reference produced by the build
            environment: Target environment name
            slot: Slot colour, None for rolling environments

        Returns:
            Path to the temporary override file
        """
        repository, pin = split_image_ref(image_ref)
        override_values: dict[str, Any] = {
            "image": {"repository": repository, **pin},
            "deployment": {"environment": environment},
        }
        if slot is not None:
            override_values["deployment"]["slot"] = slot

        with tempfile.NamedTemporaryFile(
            "w", suffix=".yaml", prefix="helm-image-override-", delete=False
        ) as f:
            yaml.dump(override_values, f, default_flow_style=False)

        logger.debug(f"Created image override file: {f.name}")
        return Path(f.name)

    def _value_files(self, environment: str, override_file: Path) -> list[Path]:
        files = [
            path
            for path in (self.paths.values_yaml, self.paths.environment_values(environment))
            if path.exists()
        ]
        files.append(override_file)
        return files

    def _print_helm_output(self, line: str) -> None:
        line = line.strip()
        if not line:
            return
        # Skip noisy warning lines about table values
        if "warning:" in line.lower() and "table" in line.lower():
            return
        logger.debug(f"helm: {line}")

    async def _upgrade(
        self,
        environment: str,
        namespace: str,
        image_ref: str,
        slot: str | None,
        env: Mapping[str, str] | None,
    ) -> CommandResult:
        override_file = self.create_image_override_file(image_ref, environment, slot)
        try:
            logger.info(
                f"Deploying {image_ref} to {namespace} "
                f"(release {self.application.helm_release}, cluster {self.binding.name})"
            )
            return await asyncio.to_thread(
                self.commands.helm.upgrade_install,
                self.application.helm_release,
                self.paths.helm_chart,
                namespace,
                value_files=self._value_files(environment, override_file),
                timeout=self.constants.HELM_TIMEOUT,
                wait=True,
                create_namespace=slot is None,
                kube_context=self.binding.context,
                on_output=self._print_helm_output,
                env=env,
            )
        finally:
            override_file.unlink(missing_ok=True)

    async def deploy(
        self, slot: DeploymentSlot, env: Mapping[str, str] | None = None
    ) -> CommandResult:
        """Install the chart into a slot namespace."""
        return await self._upgrade(
            slot.environment, slot.namespace, slot.image_ref, slot.color.value, env
        )

    async def deploy_rolling(
        self,
        environment: str,
        namespace: str,
        image_ref: str,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Upgrade the release in place (rolling environments)."""
        return await self._upgrade(environment, namespace, image_ref, None, env)

    async def rollback(
        self,
        namespace: str,
        revision: int | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Roll the release back (to the previous revision by default)."""
        logger.warning(
            f"Rolling back release {self.application.helm_release} in {namespace} "
            f"to {'revision ' + str(revision) if revision is not None else 'the previous revision'}"
        )
        return await asyncio.to_thread(
            self.commands.helm.rollback,
            self.application.helm_release,
            namespace,
            revision,
            timeout=self.constants.HELM_TIMEOUT,
            kube_context=self.binding.context,
            env=env if env is not None else self.rollback_env,
        )
