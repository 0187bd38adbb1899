"""Tests for change detection."""

import pytest

from src.app.core.promotion.changes import ChangeDetector, is_relevant_path
from src.app.core.promotion.models import (
    DeploymentRequest,
    EnvironmentDecision,
    TriggerType,
)
from tests.fixtures import APP, FakeChangeSource

BASE = "deploy/orders/dev/20260101000000"
DEPLOY = EnvironmentDecision(target_environment="dev", should_deploy=True)


def _request(
    ref: str = "refs/heads/develop",
    trigger: TriggerType = TriggerType.PUSH,
    force: bool = False,
) -> DeploymentRequest:
    return DeploymentRequest(
        ref=ref, trigger_type=trigger, actor="ci", force_deploy=force, application=APP
    )


def _detector(source: FakeChangeSource) -> ChangeDetector:
    return ChangeDetector(source, build_context="services/orders", watch_paths=["Dockerfile", "helm/"])


class TestChangeDetector:
    def test_skipped_decision_stays_skipped(self):
        source = FakeChangeSource(base=BASE, files=["services/orders/app.py"])
        decision = EnvironmentDecision(
            target_environment="unknown", should_deploy=False, reason="no rule matches"
        )

        verdict = _detector(source).detect(_request(), decision)

        assert verdict.should_deploy is False
        assert verdict.reason == "no rule matches"
        assert source.diffs == []

    def test_force_deploy_bypasses_history(self):
        source = FakeChangeSource(base=BASE, files=["docs/readme.md"])

        verdict = _detector(source).detect(_request(force=True), DEPLOY)

        assert verdict.should_deploy is True
        assert source.diffs == []

    def test_first_deployment(self):
        verdict = _detector(FakeChangeSource(base=None)).detect(_request(), DEPLOY)

        assert verdict.should_deploy is True
        assert verdict.reason == "first deployment"

    @pytest.mark.parametrize("ref", ["refs/tags/v1.2.0", "refs/heads/release/1.2.0"])
    def test_release_refs_always_deploy(self, ref):
        source = FakeChangeSource(base=BASE, files=["docs/readme.md"])

        verdict = _detector(source).detect(_request(ref=ref), DEPLOY)

        assert verdict.should_deploy is True
        assert verdict.base_ref == BASE
        assert source.diffs == []

    def test_manual_trigger_always_deploys(self):
        source = FakeChangeSource(base=BASE, files=["docs/readme.md"])

        verdict = _detector(source).detect(_request(trigger=TriggerType.MANUAL), DEPLOY)

        assert verdict.should_deploy is True
        assert verdict.reason == "manual trigger"

    @pytest.mark.parametrize("files", [None, []])
    def test_unreadable_diff_assumes_changes(self, files):
        verdict = _detector(FakeChangeSource(base=BASE, files=files)).detect(
            _request(), DEPLOY
        )

        assert verdict.should_deploy is True
        assert verdict.reason == "diff unavailable"

    def test_relevant_changes_deploy(self):
        source = FakeChangeSource(
            base=BASE,
            files=["services/orders/app.py", "docs/readme.md", "deploy/helm/values.yaml"],
        )

        verdict = _detector(source).detect(_request(), DEPLOY)

        assert verdict.should_deploy is True
        assert verdict.changed_files == ("services/orders/app.py", "deploy/helm/values.yaml")
        assert source.diffs == [(BASE, "refs/heads/develop")]

    def test_irrelevant_changes_skip(self):
        source = FakeChangeSource(base=BASE, files=["docs/readme.md", "services/billing/app.py"])

        verdict = _detector(source).detect(_request(), DEPLOY)

        assert verdict.should_deploy is False
        assert BASE in verdict.reason


class TestIsRelevantPath:
    @pytest.mark.parametrize(
        ("path", "expected"),
        [
            ("services/orders/main.py", True),
            ("./services/orders/main.py", True),
            ("services/orders-legacy/main.py", False),
            ("Dockerfile", True),
            ("README.md", False),
        ],
    )
    def test_build_context_and_watch_paths(self, path, expected):
        assert is_relevant_path(path, "services/orders/", ["Dockerfile"]) is expected

    def test_repository_root_context_matches_everything(self):
        assert is_relevant_path("docs/readme.md", ".", []) is True
