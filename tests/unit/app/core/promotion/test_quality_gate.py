"""Tests for quality gate aggregation and scan report loading."""

import json
import random
from pathlib import Path

import pytest

from src.app.core.promotion.errors import ScanGateFailure
from src.app.core.promotion.models import GateStatus, QualityGateResult
from src.app.core.promotion.quality_gate import QualityGateAggregator, load_report
from src.app.runtime.config.config_data import ScannerConfig


def _result(tool: str, status: GateStatus = GateStatus.PASSED, **findings: int):
    return QualityGateResult(tool_name=tool, status=status, findings_by_severity=findings)


@pytest.fixture
def aggregator(config) -> QualityGateAggregator:
    return QualityGateAggregator(config.scanners)


class TestQualityGateAggregator:
    def test_all_scanners_pass(self, aggregator):
        verdict = aggregator.aggregate(
            [_result("sonarqube"), _result("checkmarx", medium=5, low=10)]
        )

        assert verdict.status is GateStatus.PASSED
        assert verdict.failures == []

    def test_missing_result_fails(self, aggregator):
        verdict = aggregator.aggregate([_result("sonarqube")])

        assert verdict.status is GateStatus.FAILED
        [failure] = verdict.failures
        assert failure.tool_name == "checkmarx"
        assert failure.reasons == ("no result reported",)

    def test_threshold_exceeded(self, aggregator):
        verdict = aggregator.aggregate(
            [_result("sonarqube"), _result("checkmarx", medium=6)]
        )

        [failure] = verdict.failures
        assert "6 medium finding(s) exceed threshold 5" in failure.reasons

    def test_severities_are_case_insensitive(self, aggregator):
        verdict = aggregator.aggregate(
            [_result("sonarqube", BLOCKER=1), _result("checkmarx")]
        )

        assert verdict.status is GateStatus.FAILED

    def test_reported_failure_blocks(self, aggregator):
        verdict = aggregator.aggregate(
            [_result("sonarqube", GateStatus.FAILED), _result("checkmarx")]
        )

        assert verdict.failures[0].reasons == ("scanner reported FAILED",)

    def test_skipped_scanner_does_not_block(self, aggregator):
        verdict = aggregator.aggregate(
            [_result("sonarqube", GateStatus.SKIPPED), _result("checkmarx")]
        )

        assert verdict.status is GateStatus.PASSED
        assert verdict.evaluations[0].status is GateStatus.SKIPPED

    def test_disabled_scanner_is_skipped_without_result(self):
        aggregator = QualityGateAggregator(
            {"sonarqube": ScannerConfig(enabled=False), "checkmarx": ScannerConfig()}
        )

        verdict = aggregator.aggregate([_result("checkmarx")])

        assert verdict.status is GateStatus.PASSED
        assert [e.status for e in verdict.evaluations] == [
            GateStatus.SKIPPED,
            GateStatus.PASSED,
        ]

    def test_unconfigured_scanner_is_judged_on_status(self, aggregator):
        verdict = aggregator.aggregate(
            [_result("sonarqube"), _result("checkmarx"), _result("trivy", GateStatus.FAILED)]
        )

        assert [f.tool_name for f in verdict.failures] == ["trivy"]

    def test_duplicate_result_keeps_last(self, aggregator):
        verdict = aggregator.aggregate(
            [
                _result("sonarqube", GateStatus.FAILED),
                _result("sonarqube"),
                _result("checkmarx"),
            ]
        )

        assert verdict.passed

    def test_require_passed_raises(self, aggregator):
        with pytest.raises(ScanGateFailure) as exc_info:
            aggregator.require_passed([_result("sonarqube")])

        assert "checkmarx" in exc_info.value.details
        assert exc_info.value.message == "1 quality gate(s) failed"


class TestVerdictProperty:
    @pytest.mark.parametrize("seed", range(25))
    def test_passes_iff_no_reported_failure(self, seed):
        rng = random.Random(seed)
        results = [
            _result(f"scanner-{i}", rng.choice(list(GateStatus)))
            for i in range(rng.randint(0, 6))
        ]

        verdict = QualityGateAggregator({}).aggregate(results)

        expected = not any(r.status is GateStatus.FAILED for r in results)
        assert verdict.passed is expected


class TestLoadReport:
    def test_json_list(self, tmp_path: Path):
        report = tmp_path / "scans.json"
        report.write_text(
            json.dumps(
                [
                    {"tool_name": "sonarqube", "status": "passed"},
                    {
                        "tool_name": "checkmarx",
                        "status": "FAILED",
                        "findings_by_severity": {"high": 2},
                    },
                ]
            )
        )

        results = load_report(report)

        assert [r.status for r in results] == [GateStatus.PASSED, GateStatus.FAILED]
        assert results[1].findings_by_severity == {"high": 2}

    def test_yaml_mapping_with_results_key(self, tmp_path: Path):
        report = tmp_path / "scans.yaml"
        report.write_text("results:\n  - tool_name: sonarqube\n    status: skipped\n")

        [result] = load_report(report)

        assert result.status is GateStatus.SKIPPED

    def test_invalid_entry(self, tmp_path: Path):
        report = tmp_path / "scans.json"
        report.write_text(json.dumps([{"tool_name": "sonarqube", "status": "GREAT"}]))

        with pytest.raises(ValueError, match="Invalid scan result"):
            load_report(report)

    def test_not_a_list(self, tmp_path: Path):
        report = tmp_path / "scans.yaml"
        report.write_text("results: nope\n")

        with pytest.raises(ValueError, match="must contain a list"):
            load_report(report)
