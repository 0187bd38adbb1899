"""Typed records passed between pipeline stages.

Stages never share process state; each one receives the records produced by
the previous stages and returns a new record. Records that are persisted in
the state store (approvals, slots, canary state, audit events) are pydantic
models so they serialize cleanly to Redis.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

UNKNOWN_ENVIRONMENT = "unknown"
AUTO_ENVIRONMENT = "auto"


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(UTC)


def new_run_id() -> str:
    return uuid.uuid4().hex[:12]


# =============================================================================
# Enumerations
# =============================================================================


class TriggerType(str, Enum):
    """How a pipeline run was started."""

    PUSH = "push"
    PULL_REQUEST = "pull_request"
    MANUAL = "manual"


class GateStatus(str, Enum):
    """Verdict of one quality gate, or of the aggregate."""

    PASSED = "PASSED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class ApprovalDecision(str, Enum):
    """Approval gate states."""

    NOT_REQUIRED = "NOT_REQUIRED"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ApprovalDecision.APPROVED,
            ApprovalDecision.REJECTED,
            ApprovalDecision.EXPIRED,
        )

    @property
    def permits_promotion(self) -> bool:
        return self in (ApprovalDecision.NOT_REQUIRED, ApprovalDecision.APPROVED)


class SlotColor(str, Enum):
    """The two parallel deployment targets of an environment."""

    BLUE = "blue"
    GREEN = "green"

    @property
    def opposite(self) -> SlotColor:
        return SlotColor.GREEN if self is SlotColor.BLUE else SlotColor.BLUE


class SlotHealth(str, Enum):
    """Lifecycle/health of a deployed slot."""

    DEPLOYING = "DEPLOYING"
    DEPLOYED = "DEPLOYED"
    HEALTHY = "HEALTHY"
    FAILED = "FAILED"
    ROLLED_BACK = "ROLLED_BACK"
    RETIRED = "RETIRED"


class CanaryStatus(str, Enum):
    """Canary ramp states."""

    RAMPING = "RAMPING"
    PAUSED = "PAUSED"
    ABORTED = "ABORTED"
    COMPLETED = "COMPLETED"


# =============================================================================
# Resolver
# =============================================================================


class DeploymentRequest(BaseModel):
    """One pipeline invocation. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    ref: str
    trigger_type: TriggerType
    actor: str
    requested_environment: str = AUTO_ENVIRONMENT
    override_validation: bool = False
    force_deploy: bool = False
    application: str = ""
    run_id: str = Field(default_factory=new_run_id)


class ClusterBinding(BaseModel):
    """Cluster identifier plus resource scope for an environment."""

    model_config = ConfigDict(frozen=True)

    name: str
    resource_group: str = ""
    context: str | None = None


class EnvironmentDecision(BaseModel):
    """Deterministic output of the environment resolver."""

    model_config = ConfigDict(frozen=True)

    target_environment: str
    should_deploy: bool
    cluster_binding: ClusterBinding | None = None
    protected: bool = False
    reason: str = ""
    matched_rule: str | None = None


class ChangeVerdict(BaseModel):
    """Output of the change detector."""

    model_config = ConfigDict(frozen=True)

    should_deploy: bool
    reason: str
    base_ref: str | None = None
    changed_files: tuple[str, ...] = ()


# =============================================================================
# Quality gates
# =============================================================================


class QualityGateResult(BaseModel):
    """Verdict reported by one external scanner for one run."""

    model_config = ConfigDict(frozen=True)

    tool_name: str
    status: GateStatus
    findings_by_severity: dict[str, int] = Field(default_factory=dict)


class GateEvaluation(BaseModel):
    """How the aggregator judged one scanner's result."""

    model_config = ConfigDict(frozen=True)

    tool_name: str
    status: GateStatus
    reasons: tuple[str, ...] = ()

    @property
    def blocking(self) -> bool:
        return self.status is GateStatus.FAILED


class QualityGateVerdict(BaseModel):
    """Aggregate verdict over all configured scanners."""

    model_config = ConfigDict(frozen=True)

    status: GateStatus
    evaluations: tuple[GateEvaluation, ...] = ()

    @property
    def passed(self) -> bool:
        return self.status is GateStatus.PASSED

    @property
    def failures(self) -> list[GateEvaluation]:
        return [e for e in self.evaluations if e.blocking]


# =============================================================================
# Approval
# =============================================================================


class ApprovalRecord(BaseModel):
    """Human sign-off state for one promotion attempt."""

    application: str
    environment: str
    run_id: str
    ref: str = ""
    required_approvals: int = Field(default=0, ge=0)
    granted_approvers: set[str] = Field(default_factory=set)
    decision: ApprovalDecision = ApprovalDecision.NOT_REQUIRED
    requested_at: datetime | None = None
    expires_at: datetime | None = None
    decided_at: datetime | None = None
    rejected_by: str | None = None


# =============================================================================
# Slots and canary
# =============================================================================


class DeploymentSlot(BaseModel):
    """One colour of an environment and the image deployed into it."""

    application: str
    environment: str
    color: SlotColor
    namespace: str
    image_ref: str
    health_status: SlotHealth = SlotHealth.DEPLOYING
    run_id: str = ""
    created_at: datetime = Field(default_factory=utcnow)


class SlotState(BaseModel):
    """Active/standby pointers for one environment."""

    application: str
    environment: str
    active_color: SlotColor | None = None
    standby_color: SlotColor | None = None
    standby_retain_until: datetime | None = None
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def target_color(self) -> SlotColor:
        """Colour a new deploy goes into (the inactive one)."""
        if self.active_color is None:
            return SlotColor.BLUE
        return self.active_color.opposite


class PromotionSnapshot(BaseModel):
    """Pre-attempt state captured so a rollback can restore it exactly."""

    model_config = ConfigDict(frozen=True)

    application: str
    environment: str
    active_color: SlotColor | None
    active_namespace: str | None
    canary_weight: int = 0
    taken_at: datetime = Field(default_factory=utcnow)


class PromotionResult(BaseModel):
    """Outcome of an atomic slot promotion."""

    model_config = ConfigDict(frozen=True)

    application: str
    environment: str
    previous_color: SlotColor | None
    active_color: SlotColor
    active_namespace: str
    standby_retain_until: datetime | None = None


class CanaryState(BaseModel):
    """Live traffic ramp towards a newly deployed slot."""

    application: str
    environment: str
    target_namespace: str
    current_weight: int = Field(default=0, ge=0, le=100)
    step_size: int = Field(default=10, ge=1, le=100)
    step_interval_seconds: float = 30.0
    status: CanaryStatus = CanaryStatus.RAMPING
    consecutive_failures: int = 0
    confirmations: int = 0
    run_id: str = ""
    started_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class RollbackResult(BaseModel):
    """What the rollback coordinator restored."""

    model_config = ConfigDict(frozen=True)

    application: str
    environment: str
    restored_color: SlotColor | None
    restored_namespace: str | None
    failed_color: SlotColor | None
    reason: str


# =============================================================================
# Audit
# =============================================================================


class AuditEvent(BaseModel):
    """Structured audit event for resolver decisions and slot/canary transitions."""

    model_config = ConfigDict(frozen=True)

    ref: str
    actor: str
    decision: str
    timestamp: datetime = Field(default_factory=utcnow)
    application: str = ""
    environment: str = ""
    component: str = ""
    run_id: str = ""
    details: dict[str, str] = Field(default_factory=dict)
