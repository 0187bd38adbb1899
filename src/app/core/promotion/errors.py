"""Errors raised by the promotion pipeline.

Every error carries a short ``message`` and an optional multi-line
``details`` block that the CLI renders in a panel.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import GateEvaluation


class DeploymentError(Exception):
    """Raised when a deployment operation fails."""

    def __init__(self, message: str, details: str | None = None):
        self.message = message
        self.details = details
        super().__init__(message)


class ConfigurationError(DeploymentError):
    """Configuration is missing or inconsistent. Fatal, never retried."""


class AuthorizationError(DeploymentError):
    """A principal is neither allow-listed nor in an authorized group."""

    def __init__(self, principal: str, action: str, details: str | None = None):
        self.principal = principal
        self.action = action
        super().__init__(
            f"'{principal}' is not authorized to {action}",
            details=details,
        )


class ScanGateFailure(DeploymentError):
    """One or more quality gates failed."""

    def __init__(self, evaluations: list[GateEvaluation]):
        self.evaluations = evaluations
        failed = [e for e in evaluations if e.blocking]
        lines = []
        for evaluation in failed:
            lines.append(f"• {evaluation.tool_name}: {evaluation.status.value}")
            lines.extend(f"    - {reason}" for reason in evaluation.reasons)
        lines.append("")
        lines.append("Re-run the affected scan stage once the findings are fixed.")
        super().__init__(
            f"{len(failed)} quality gate(s) failed",
            details="\n".join(lines),
        )


class InvalidApprovalTransition(DeploymentError):
    """An approval action was applied to a record in the wrong state."""


class ApprovalRejected(DeploymentError):
    """A protected promotion was vetoed by an authorized principal."""


class ApprovalTimeout(ApprovalRejected):
    """No approval decision arrived before the timeout (treated as rejection)."""


class PromotionBlocked(DeploymentError):
    """Promotion preconditions (approval, completed canary) are not met."""


class DeploymentLocked(DeploymentError):
    """Another promotion or rollback holds the environment lock."""


class WorkloadDeployError(DeploymentError):
    """Applying the workload into the target slot failed."""


class HealthCheckFailure(DeploymentError):
    """The target slot failed its health evaluation."""
