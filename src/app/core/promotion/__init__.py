"""Promotion core: environment resolution, gates, slots, canary and rollback.

Only the records, errors and matchers are re-exported here; the stage
modules depend on the runtime config and are imported directly
(e.g. ``from src.app.core.promotion.pipeline import PromotionPipeline``).
"""

from .errors import (
    ApprovalRejected,
    ApprovalTimeout,
    AuthorizationError,
    ConfigurationError,
    DeploymentError,
    DeploymentLocked,
    HealthCheckFailure,
    InvalidApprovalTransition,
    PromotionBlocked,
    ScanGateFailure,
    WorkloadDeployError,
)
from .matchers import MatchKind, RefRule, first_match, is_release_ref
from .models import (
    AUTO_ENVIRONMENT,
    UNKNOWN_ENVIRONMENT,
    ApprovalDecision,
    ApprovalRecord,
    AuditEvent,
    CanaryState,
    CanaryStatus,
    ChangeVerdict,
    ClusterBinding,
    DeploymentRequest,
    DeploymentSlot,
    EnvironmentDecision,
    GateStatus,
    PromotionResult,
    PromotionSnapshot,
    QualityGateResult,
    QualityGateVerdict,
    RollbackResult,
    SlotColor,
    SlotHealth,
    SlotState,
    TriggerType,
)

__all__ = [
    "AUTO_ENVIRONMENT",
    "UNKNOWN_ENVIRONMENT",
    "ApprovalDecision",
    "ApprovalRecord",
    "ApprovalRejected",
    "ApprovalTimeout",
    "AuditEvent",
    "AuthorizationError",
    "CanaryState",
    "CanaryStatus",
    "ChangeVerdict",
    "ClusterBinding",
    "ConfigurationError",
    "DeploymentError",
    "DeploymentLocked",
    "DeploymentRequest",
    "DeploymentSlot",
    "EnvironmentDecision",
    "GateStatus",
    "HealthCheckFailure",
    "InvalidApprovalTransition",
    "MatchKind",
    "PromotionBlocked",
    "PromotionResult",
    "PromotionSnapshot",
    "QualityGateResult",
    "QualityGateVerdict",
    "RefRule",
    "RollbackResult",
    "ScanGateFailure",
    "SlotColor",
    "SlotHealth",
    "SlotState",
    "TriggerType",
    "WorkloadDeployError",
    "first_match",
    "is_release_ref",
]
