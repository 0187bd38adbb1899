"""Deployment history backed by git tags.

Successful promotions are recorded as ``deploy/<app>/<env>/<timestamp>``
tags on the deployed commit; the newest tag for an app/env pair is the base
the change detector diffs against.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime

from loguru import logger

from src.app.core.promotion.models import utcnow
from src.infra.constants import DEFAULT_CONSTANTS, DeploymentConstants

from .shell_commands import GitCommands


class GitDeploymentHistory:
    """Change source and history recorder for one repository."""

    def __init__(
        self,
        git: GitCommands,
        constants: DeploymentConstants = DEFAULT_CONSTANTS,
        remote: str | None = "origin",
    ) -> None:
        self._git = git
        self._constants = constants
        self._remote = remote

    def last_successful_deployment(
        self, application: str, environment: str
    ) -> str | None:
        tags = self._git.list_tags(
            self._constants.history_tag_pattern(application, environment)
        )
        return tags[0] if tags else None

    def changed_files(self, base: str, head: str) -> list[str] | None:
        return self._git.diff_names(base, head)

    def tag_name(self, application: str, environment: str, when: datetime | None = None) -> str:
        stamp = (when or utcnow()).strftime(self._constants.HISTORY_TAG_TIME_FORMAT)
        return f"{self._constants.HISTORY_TAG_PREFIX}/{application}/{environment}/{stamp}"

    def record_success(
        self,
        application: str,
        environment: str,
        ref: str,
        env: Mapping[str, str] | None = None,
    ) -> str | None:
        """Tag the deployed ref; returns the tag, or None if tagging failed.

        A failed tag only degrades change detection for the next run, so it is
        logged rather than raised.
        """
        name = self.tag_name(application, environment)
        result = self._git.create_tag(
            name, ref, message=f"Deployed {application} to {environment}"
        )
        if not result.success:
            logger.warning(f"Could not create history tag {name}: {result.stderr.strip()}")
            return None

        if self._remote:
            pushed = self._git.push_tag(name, self._remote, env=env)
            if not pushed.success:
                logger.warning(
                    f"Created {name} locally but pushing to {self._remote} failed: "
                    f"{pushed.stderr.strip()}"
                )
        return name
