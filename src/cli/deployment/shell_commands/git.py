"""Git command abstractions.

This module provides commands for Git repository operations used by the
change detector and the version strategy: commit SHAs, diffs since the
last successful deployment, and deployment history tags.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING

from .types import CommandResult

if TYPE_CHECKING:
    from .runner import CommandRunner


class GitCommands:
    """Git-related shell commands.

    Provides operations for:
    - Commit SHA and version tag lookup
    - Changed-file listing between two refs
    - Deployment history tag listing and creation
    """

    def __init__(self, runner: CommandRunner) -> None:
        """Initialize Git commands.

        Args:
            runner: Command runner for executing shell commands
        """
        self._runner = runner

    def rev_parse(self, ref: str = "HEAD", *, short: bool = False) -> str | None:
        """Resolve a ref to a commit SHA.

        Args:
            ref: Any git revision
            short: Return the 7-character abbreviation

        Returns:
            The SHA, or None if the ref cannot be resolved
        """
        cmd = ["git", "rev-parse"]
        if short:
            cmd.append("--short=7")
        cmd.append(ref)
        result = self._runner.run(cmd)
        return result.stdout.strip() if result.success else None

    def diff_names(self, base: str, head: str = "HEAD") -> list[str] | None:
        """List files changed between two revisions.

        Args:
            base: Base revision (e.g. the last deployment tag)
            head: Head revision

        Returns:
            Changed paths, or None if the diff could not be computed
            (unknown base, shallow clone, not a repository)
        """
        result = self._runner.run(["git", "diff", "--name-only", base, head])
        if not result.success:
            return None
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def list_tags(self, pattern: str) -> list[str]:
        """List tags matching a glob, newest first.

        Args:
            pattern: Tag glob (e.g. "deploy/orders/prod/*")

        Returns:
            Tag names sorted by creation date, most recent first
        """
        result = self._runner.run(
            ["git", "tag", "--list", pattern, "--sort=-creatordate"]
        )
        if not result.success:
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def latest_version_tag(self) -> str | None:
        """Get the most recent reachable tag (``git describe --tags``)."""
        result = self._runner.run(["git", "describe", "--tags", "--abbrev=0"])
        if not result.success:
            return None
        return result.stdout.strip() or None

    def create_tag(
        self, name: str, ref: str = "HEAD", *, message: str | None = None
    ) -> CommandResult:
        """Create a tag (annotated when a message is given).

        Args:
            name: Tag name
            ref: Revision to tag
            message: Annotation message

        Returns:
            CommandResult with tag status
        """
        cmd = ["git", "tag"]
        if message:
            cmd.extend(["-a", name, ref, "-m", message])
        else:
            cmd.extend([name, ref])
        return self._runner.run(cmd)

    def push_tag(
        self,
        name: str,
        remote: str = "origin",
        *,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Push a single tag to a remote using explicit credentials."""
        return self._runner.run(["git", "push", remote, f"refs/tags/{name}"], env=env)
