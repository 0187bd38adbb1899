"""Cluster-facing adapters used by the promotion pipeline.

- workload: Helm-backed deploys into slot or environment namespaces
- history: Deployment history recorded as git tags
- shell_commands: Abstractions for shell command execution
"""

from .history import GitDeploymentHistory
from .workload import HelmWorkloadDeployer, split_image_ref

__all__ = ["GitDeploymentHistory", "HelmWorkloadDeployer", "split_image_ref"]
