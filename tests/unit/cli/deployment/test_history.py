"""Tests for git-tag backed deployment history."""

from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest

from src.cli.deployment.history import GitDeploymentHistory
from src.cli.deployment.shell_commands import CommandResult


@pytest.fixture
def git() -> MagicMock:
    git = MagicMock()
    git.create_tag.return_value = CommandResult(success=True)
    git.push_tag.return_value = CommandResult(success=True)
    return git


class TestGitDeploymentHistory:
    def test_last_successful_deployment_is_newest_tag(self, git):
        git.list_tags.return_value = [
            "deploy/orders/prod/20260102000000",
            "deploy/orders/prod/20260101000000",
        ]

        base = GitDeploymentHistory(git).last_successful_deployment("orders", "prod")

        assert base == "deploy/orders/prod/20260102000000"
        git.list_tags.assert_called_once_with("deploy/orders/prod/*")

    def test_no_previous_deployment(self, git):
        git.list_tags.return_value = []

        assert GitDeploymentHistory(git).last_successful_deployment("orders", "prod") is None

    def test_changed_files_delegates_to_diff(self, git):
        git.diff_names.return_value = ["Dockerfile"]

        assert GitDeploymentHistory(git).changed_files("base", "HEAD") == ["Dockerfile"]

    def test_tag_name(self, git):
        when = datetime(2026, 3, 4, 5, 6, 7, tzinfo=UTC)

        name = GitDeploymentHistory(git).tag_name("orders", "ppr", when)

        assert name == "deploy/orders/ppr/20260304050607"

    def test_record_success_tags_and_pushes(self, git):
        history = GitDeploymentHistory(git)

        tag = history.record_success("orders", "ppr", "refs/heads/release/1.2.0", env={"GIT_TOKEN": "t"})

        assert tag.startswith("deploy/orders/ppr/")
        git.create_tag.assert_called_once_with(
            tag, "refs/heads/release/1.2.0", message="Deployed orders to ppr"
        )
        git.push_tag.assert_called_once_with(tag, "origin", env={"GIT_TOKEN": "t"})

    def test_failed_tag_is_not_fatal(self, git):
        git.create_tag.return_value = CommandResult(success=False, stderr="tag exists")

        assert GitDeploymentHistory(git).record_success("orders", "ppr", "HEAD") is None
        git.push_tag.assert_not_called()

    def test_failed_push_keeps_local_tag(self, git):
        git.push_tag.return_value = CommandResult(success=False, stderr="denied")

        tag = GitDeploymentHistory(git).record_success("orders", "ppr", "HEAD")

        assert tag is not None

    def test_without_remote(self, git):
        GitDeploymentHistory(git, remote=None).record_success("orders", "ppr", "HEAD")

        git.push_tag.assert_not_called()
