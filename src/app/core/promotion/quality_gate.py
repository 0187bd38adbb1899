"""Quality gate aggregation.

Combines the verdicts reported by the external scanners into a single
pass/fail signal. Aggregation is total and side-effect free: every
configured scanner ends up with an evaluation, and a missing report counts
as a failure rather than something to wait for.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from pathlib import Path

import yaml
from loguru import logger
from pydantic import ValidationError

from src.app.runtime.config.config_data import ScannerConfig

from .errors import ScanGateFailure
from .models import GateEvaluation, GateStatus, QualityGateResult, QualityGateVerdict


class QualityGateAggregator:
    """Aggregate scanner results against per-scanner thresholds."""

    def __init__(self, scanners: Mapping[str, ScannerConfig]) -> None:
        self._scanners = dict(scanners)

    def aggregate(self, results: Iterable[QualityGateResult]) -> QualityGateVerdict:
        by_tool: dict[str, QualityGateResult] = {}
        for result in results:
            if result.tool_name in by_tool:
                logger.warning(
                    f"Duplicate result for scanner '{result.tool_name}'; keeping the last one"
                )
            by_tool[result.tool_name] = result

        evaluations: list[GateEvaluation] = []
        for name, scanner in self._scanners.items():
            evaluations.append(self._evaluate(name, scanner, by_tool.pop(name, None)))

        # Results from scanners that are not configured are judged on status alone
        for name, result in by_tool.items():
            evaluations.append(self._evaluate(name, ScannerConfig(), result))

        failed = any(e.blocking for e in evaluations)
        status = GateStatus.FAILED if failed else GateStatus.PASSED
        logger.info(
            f"Quality gate verdict: {status.value} "
            f"({', '.join(f'{e.tool_name}={e.status.value}' for e in evaluations) or 'no scanners'})"
        )
        return QualityGateVerdict(status=status, evaluations=tuple(evaluations))

    def require_passed(self, results: Iterable[QualityGateResult]) -> QualityGateVerdict:
        """Aggregate and raise ScanGateFailure if the verdict is FAILED."""
        verdict = self.aggregate(results)
        if not verdict.passed:
            raise ScanGateFailure(list(verdict.evaluations))
        return verdict

    def _evaluate(
        self, name: str, scanner: ScannerConfig, result: QualityGateResult | None
    ) -> GateEvaluation:
        if not scanner.enabled:
            return GateEvaluation(
                tool_name=name, status=GateStatus.SKIPPED, reasons=("disabled by configuration",)
            )

        if result is None:
            return GateEvaluation(
                tool_name=name, status=GateStatus.FAILED, reasons=("no result reported",)
            )

        if result.status is GateStatus.SKIPPED:
            return GateEvaluation(
                tool_name=name, status=GateStatus.SKIPPED, reasons=("scanner reported SKIPPED",)
            )

        reasons: list[str] = []
        if result.status is GateStatus.FAILED:
            reasons.append("scanner reported FAILED")

        findings = {sev.lower(): count for sev, count in result.findings_by_severity.items()}
        for severity, limit in scanner.thresholds.items():
            count = findings.get(severity, 0)
            if count > limit:
                reasons.append(f"{count} {severity} finding(s) exceed threshold {limit}")

        status = GateStatus.FAILED if reasons else GateStatus.PASSED
        return GateEvaluation(tool_name=name, status=status, reasons=tuple(reasons))


def load_report(path: Path) -> list[QualityGateResult]:
    """Load scanner results from a JSON or YAML report.

    The report is either a list of results or a mapping with a ``results``
    key. Each entry has ``tool_name``, ``status`` and optionally
    ``findings_by_severity``.

    Raises:
        ValueError: If the file cannot be parsed or an entry is invalid
    """
    try:
        loaded = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise ValueError(f"Error parsing scan report {path}: {e}") from e

    entries = loaded.get("results", []) if isinstance(loaded, dict) else loaded
    if not isinstance(entries, list):
        raise ValueError(f"Scan report {path} must contain a list of results")

    results: list[QualityGateResult] = []
    for entry in entries:
        if isinstance(entry, dict) and isinstance(entry.get("status"), str):
            entry = {**entry, "status": entry["status"].upper()}
        try:
            results.append(QualityGateResult.model_validate(entry))
        except ValidationError as e:
            raise ValueError(f"Invalid scan result in {path}: {e}") from e
    return results
