"""Pydantic models for the promotion configuration file.

The YAML file has a top-level ``config:`` key whose content validates into
``ConfigData``. Environment order in the file is significant: ref-matching
rules are evaluated environment by environment, rule by rule.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator

from src.app.core.promotion.matchers import MatchKind, RefRule
from src.app.core.promotion.models import ClusterBinding, TriggerType


class RefRuleConfig(BaseModel):
    """One ref-matching rule."""

    kind: MatchKind
    pattern: str
    triggers: list[TriggerType] = Field(
        default_factory=lambda: [TriggerType.PUSH, TriggerType.MANUAL]
    )


class ClusterConfig(BaseModel):
    """Cluster binding. An empty name means the binding is missing."""

    name: str = ""
    resource_group: str = ""
    context: str | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self.name.strip())

    def to_binding(self) -> ClusterBinding:
        return ClusterBinding(
            name=self.name,
            resource_group=self.resource_group,
            context=self.context or None,
        )


class CanaryConfig(BaseModel):
    """Canary ramp parameters for one environment."""

    initial_weight: int = Field(default=10, ge=0, le=100)
    step_size: int = Field(default=10, ge=1, le=100)
    step_interval_seconds: float = Field(default=30.0, ge=0)
    failure_threshold: int = Field(default=3, ge=1)
    max_error_rate: float = Field(default=0.05, ge=0, le=1)
    max_latency_ms: float | None = None


class EnvironmentConfig(BaseModel):
    """A named deployment target."""

    rules: list[RefRuleConfig] = Field(default_factory=list)
    canonical_triggers: list[TriggerType] = Field(
        default_factory=lambda: [TriggerType.PUSH]
    )
    protected: bool = False
    required_approvals: int = Field(default=1, ge=0)
    approval_timeout_seconds: float = Field(default=3600.0, gt=0)
    blue_green: bool = True
    cluster: ClusterConfig = Field(default_factory=ClusterConfig)
    canary: CanaryConfig = Field(default_factory=CanaryConfig)
    standby_grace_seconds: float = Field(default=3600.0, ge=0)


class ApprovalsConfig(BaseModel):
    """Who may approve protected promotions and override validation."""

    allowed_principals: list[str] = Field(default_factory=list)
    authorized_groups: list[str] = Field(default_factory=list)
    groups: dict[str, list[str]] = Field(default_factory=dict)


class ScannerConfig(BaseModel):
    """Per-scanner switch and severity thresholds (max allowed count)."""

    enabled: bool = True
    thresholds: dict[str, int] = Field(default_factory=dict)

    @field_validator("thresholds")
    @classmethod
    def _lowercase_severities(cls, value: dict[str, int]) -> dict[str, int]:
        return {severity.lower(): limit for severity, limit in value.items()}


def _default_scanners() -> dict[str, ScannerConfig]:
    return {
        "sonarqube": ScannerConfig(thresholds={"blocker": 0, "critical": 0}),
        "checkmarx": ScannerConfig(thresholds={"high": 0, "medium": 5, "low": 10}),
    }


class LockPolicy(str, Enum):
    """What a second request does while an environment is locked."""

    REJECT = "reject"
    QUEUE = "queue"
    ABORT_AND_RESTART = "abort_and_restart"


class LockConfig(BaseModel):
    policy: LockPolicy = LockPolicy.ABORT_AND_RESTART
    ttl_seconds: int = Field(default=1800, gt=0)
    wait_timeout_seconds: float = Field(default=600.0, ge=0)
    poll_interval_seconds: float = Field(default=5.0, gt=0)


class StorageConfig(BaseModel):
    redis_url: str = ""


class AuditConfig(BaseModel):
    log_path: str | None = None
    retention_seconds: int = Field(default=90 * 24 * 3600, gt=0)


class ApplicationConfig(BaseModel):
    """The application being promoted."""

    name: str
    build_context: str = "."
    helm_chart_path: str = "helm"
    release_name: str | None = None
    registry: str = ""
    watch_paths: list[str] = Field(
        default_factory=lambda: ["Dockerfile", "helm/", ".github/"]
    )

    @property
    def helm_release(self) -> str:
        return self.release_name or self.name


class ConfigData(BaseModel):
    """Root of the promotion configuration."""

    application: ApplicationConfig
    environments: dict[str, EnvironmentConfig]
    approvals: ApprovalsConfig = Field(default_factory=ApprovalsConfig)
    scanners: dict[str, ScannerConfig] = Field(default_factory=_default_scanners)
    lock: LockConfig = Field(default_factory=LockConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    credentials: dict[str, list[str]] = Field(default_factory=dict)
    audit: AuditConfig = Field(default_factory=AuditConfig)

    def environment(self, name: str) -> EnvironmentConfig | None:
        return self.environments.get(name)

    def ordered_rules(self) -> list[RefRule]:
        """Flatten rules in declaration order (environment, then rule)."""
        rules: list[RefRule] = []
        for env_name, env in self.environments.items():
            for rule in env.rules:
                rules.append(
                    RefRule(
                        environment=env_name,
                        kind=rule.kind,
                        pattern=rule.pattern,
                        triggers=frozenset(rule.triggers),
                    )
                )
        return rules

    def rules_for(self, environment: str) -> list[RefRule]:
        return [rule for rule in self.ordered_rules() if rule.environment == environment]
