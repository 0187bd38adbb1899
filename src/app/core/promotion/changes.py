"""Change detection: is a build/deploy actually required?"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

from loguru import logger

from .matchers import is_release_ref
from .models import (
    ChangeVerdict,
    DeploymentRequest,
    EnvironmentDecision,
    TriggerType,
)


class ChangeSource(Protocol):
    """Repository view used by the change detector."""

    def last_successful_deployment(
        self, application: str, environment: str
    ) -> str | None:
        """Ref of the last successful deployment, None on the first run."""
        ...

    def changed_files(self, base: str, head: str) -> list[str] | None:
        """Paths changed between two refs, None when the diff cannot be read."""
        ...


def is_relevant_path(path: str, build_context: str, watch_paths: Iterable[str]) -> bool:
    """A path matters if it lives under the build context or contains a watched path."""
    if path.startswith("./"):
        path = path[2:]
    context = build_context.strip().rstrip("/")
    if context in ("", "."):
        return True
    if path.startswith(f"{context}/"):
        return True
    return any(watched in path for watched in watch_paths)


class ChangeDetector:
    """Refine an environment decision against repository changes."""

    def __init__(
        self,
        source: ChangeSource,
        build_context: str = ".",
        watch_paths: Iterable[str] = (),
    ) -> None:
        self._source = source
        self._build_context = build_context
        self._watch_paths = tuple(watch_paths)

    def detect(
        self, request: DeploymentRequest, decision: EnvironmentDecision
    ) -> ChangeVerdict:
        if not decision.should_deploy:
            return ChangeVerdict(should_deploy=False, reason=decision.reason or "no deploy")

        if request.force_deploy:
            return ChangeVerdict(should_deploy=True, reason="force deploy requested")

        base = self._source.last_successful_deployment(
            request.application, decision.target_environment
        )
        if base is None:
            logger.info(
                f"No previous deployment of {request.application} to "
                f"{decision.target_environment}; deploying unconditionally"
            )
            return ChangeVerdict(should_deploy=True, reason="first deployment")

        if is_release_ref(request.ref):
            return ChangeVerdict(
                should_deploy=True, reason="release branch or tag", base_ref=base
            )

        if request.trigger_type is TriggerType.MANUAL:
            return ChangeVerdict(
                should_deploy=True, reason="manual trigger", base_ref=base
            )

        changed = self._source.changed_files(base, request.ref)
        if not changed:
            logger.warning(
                f"Diff {base}..{request.ref} is empty or unreadable; assuming changes exist"
            )
            return ChangeVerdict(
                should_deploy=True, reason="diff unavailable", base_ref=base
            )

        relevant = tuple(
            path
            for path in changed
            if is_relevant_path(path, self._build_context, self._watch_paths)
        )
        if relevant:
            return ChangeVerdict(
                should_deploy=True,
                reason=f"{len(relevant)} relevant file(s) changed",
                base_ref=base,
                changed_files=relevant,
            )

        return ChangeVerdict(
            should_deploy=False,
            reason=f"no relevant changes since {base}",
            base_ref=base,
        )
