"""Health evaluation of a deployed slot.

The default source samples pods in the slot namespace: pods that are not
running/ready, or that restarted since the previous sample, count as
errors. Latency comes from an optional metrics source.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from loguru import logger

from src.app.runtime.config.config_data import CanaryConfig
from src.infra.k8s.controller import KubernetesController


@dataclass(frozen=True)
class HealthSample:
    """One observation of a slot."""

    error_rate: float
    latency_ms: float | None = None
    detail: str = ""


@dataclass(frozen=True)
class HealthVerdict:
    healthy: bool
    sample: HealthSample
    reasons: tuple[str, ...] = field(default_factory=tuple)


class HealthSource(Protocol):
    async def sample(self, namespace: str) -> HealthSample: ...


class MetricsSource(Protocol):
    """Supplies request latency for a namespace (e.g. from Prometheus)."""

    async def latency_ms(self, namespace: str) -> float | None: ...


class PodHealthSource:
    """Derive an error rate from pod status through the cluster controller."""

    def __init__(
        self,
        controller: KubernetesController,
        metrics: MetricsSource | None = None,
    ) -> None:
        self._controller = controller
        self._metrics = metrics
        self._restarts: dict[str, int] = {}

    async def sample(self, namespace: str) -> HealthSample:
        pods = await self._controller.get_pods(namespace)
        if not pods:
            return HealthSample(error_rate=1.0, detail=f"no pods in {namespace}")

        unhealthy: list[str] = []
        for pod in pods:
            previous = self._restarts.get(pod.name, pod.restarts)
            self._restarts[pod.name] = pod.restarts
            if pod.status != "Running" or not pod.ready:
                unhealthy.append(f"{pod.name} ({pod.status})")
            elif pod.restarts > previous:
                unhealthy.append(f"{pod.name} (restarted)")

        latency = await self._metrics.latency_ms(namespace) if self._metrics else None
        return HealthSample(
            error_rate=len(unhealthy) / len(pods),
            latency_ms=latency,
            detail=", ".join(unhealthy) or f"{len(pods)} pod(s) healthy",
        )


class HealthEvaluator:
    """Judge samples against error-rate and latency limits."""

    def __init__(
        self,
        source: HealthSource,
        max_error_rate: float = 0.05,
        max_latency_ms: float | None = None,
    ) -> None:
        self._source = source
        self.max_error_rate = max_error_rate
        self.max_latency_ms = max_latency_ms

    @classmethod
    def from_config(cls, source: HealthSource, canary: CanaryConfig) -> HealthEvaluator:
        return cls(source, canary.max_error_rate, canary.max_latency_ms)

    async def evaluate(self, namespace: str) -> HealthVerdict:
        try:
            sample = await self._source.sample(namespace)
        except Exception as e:
            # A sample that cannot be taken counts as an unhealthy tick
            logger.warning(f"Health sampling for {namespace} failed: {e}")
            sample = HealthSample(error_rate=1.0, detail=f"sampling failed: {e}")

        reasons: list[str] = []
        if sample.error_rate > self.max_error_rate:
            reasons.append(
                f"error rate {sample.error_rate:.2%} exceeds {self.max_error_rate:.2%}"
            )
        if (
            self.max_latency_ms is not None
            and sample.latency_ms is not None
            and sample.latency_ms > self.max_latency_ms
        ):
            reasons.append(
                f"latency {sample.latency_ms:.0f}ms exceeds {self.max_latency_ms:.0f}ms"
            )
        if reasons and sample.detail:
            reasons.append(sample.detail)

        return HealthVerdict(healthy=not reasons, sample=sample, reasons=tuple(reasons))
