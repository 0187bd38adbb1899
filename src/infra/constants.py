"""Deployment constants and configuration.

This module centralizes all magic strings, naming templates and timeout
values used by the promotion pipeline when it talks to the cluster.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from src.utils.paths import get_project_root


@dataclass(frozen=True)
class DeploymentConstants:
    """Constants for blue/green Kubernetes deployment.

    This class provides a centralized location for all deployment-related
    constants, making them easy to find, update, and test.

    All attributes are class-level and immutable.
    """

    # Namespace naming: <env>-<app>-<color> for slots, <env>-<app> for routing
    SLOT_NAMESPACE_TEMPLATE: str = "{environment}-{application}-{color}"
    ROUTING_NAMESPACE_TEMPLATE: str = "{environment}-{application}"

    # Routing objects living in the routing namespace
    ACTIVE_SERVICE_SUFFIX: str = "-active"
    CANARY_SERVICE_SUFFIX: str = "-canary"
    PRIMARY_INGRESS_SUFFIX: str = "-ingress"
    CANARY_INGRESS_SUFFIX: str = "-canary"

    # Ingress-nginx canary annotations
    CANARY_ANNOTATION: str = "nginx.ingress.kubernetes.io/canary"
    CANARY_WEIGHT_ANNOTATION: str = "nginx.ingress.kubernetes.io/canary-weight"

    # Labels stamped on slot namespaces
    APP_LABEL: str = "app.kubernetes.io/name"
    ENVIRONMENT_LABEL: str = "slotpilot.io/environment"
    SLOT_LABEL: str = "slotpilot.io/slot"
    MANAGED_BY_LABEL: str = "app.kubernetes.io/managed-by"
    MANAGED_BY_VALUE: str = "slotpilot"

    # Timeouts
    HELM_TIMEOUT: str = "10m"
    ROLLOUT_TIMEOUT: str = "300s"
    NAMESPACE_DELETE_TIMEOUT: str = "120s"

    # State store retention (seconds)
    STATE_TTL_SECONDS: int = 90 * 24 * 3600

    # Deployment history tags: deploy/<app>/<env>/<timestamp>
    HISTORY_TAG_PREFIX: str = "deploy"
    HISTORY_TAG_TIME_FORMAT: str = "%Y%m%d%H%M%S"

    # Kubernetes DNS-1123 label used to validate generated namespace names
    NAMESPACE_PATTERN: re.Pattern[str] = re.compile(
        r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$"
    )

    def slot_namespace(self, environment: str, application: str, color: str) -> str:
        """Namespace that hosts one colour of an environment."""
        return self.SLOT_NAMESPACE_TEMPLATE.format(
            environment=environment, application=application, color=color
        )

    def routing_namespace(self, environment: str, application: str) -> str:
        """Namespace holding the primary/canary routing objects."""
        return self.ROUTING_NAMESPACE_TEMPLATE.format(
            environment=environment, application=application
        )

    def history_tag_pattern(self, application: str, environment: str) -> str:
        """Glob matching all deployment history tags for an app/env pair."""
        return f"{self.HISTORY_TAG_PREFIX}/{application}/{environment}/*"


DEFAULT_CONSTANTS = DeploymentConstants()


class DeploymentPaths:
    """Path resolver for deployment-related directories and files."""

    def __init__(self, project_root: Path, helm_chart_path: str = "helm") -> None:
        """Initialize deployment paths.

        Args:
            project_root: Path to the project root directory
            helm_chart_path: Chart directory relative to the project root
        """
        self._project_root = project_root
        self.helm_chart = project_root / helm_chart_path
        self.secrets = project_root / "secrets"

    @property
    def project_root(self) -> Path:
        """Get path to project root."""
        return self._project_root

    @property
    def values_yaml(self) -> Path:
        """Get path to Helm values.yaml."""
        return self.helm_chart / "values.yaml"

    def environment_values(self, environment: str) -> Path:
        """Get the per-environment values file (values-<env>.yaml)."""
        return self.helm_chart / f"values-{environment}.yaml"


def default_paths() -> DeploymentPaths:
    """Paths rooted at the detected project root."""
    return DeploymentPaths(get_project_root())
