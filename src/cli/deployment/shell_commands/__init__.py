"""Shell command abstractions for promotion pipeline operations.

This package provides a clean, well-documented interface for the shell
commands the pipeline drives. It is organized into specialized modules for
each tool:

- helm: Helm release management for slot workloads
- git: Git repository operations (diffs, deployment history tags)

Usage:
    from src.cli.deployment.shell_commands import ShellCommands

    commands = ShellCommands(project_root=Path("."))
    changed = commands.git.diff_names("deploy/orders/prod/20260101120000", "HEAD")
"""

from pathlib import Path

from .git import GitCommands
from .helm import HelmCommands
from .runner import CommandRunner
from .types import CommandResult


class ShellCommands:
    """Unified interface for all shell command operations.

    Attributes:
        helm: Helm-related commands
        git: Git repository commands

    Example:
        >>> commands = ShellCommands(Path("."))
        >>> commands.helm.upgrade_install("orders", chart_path, "prod-orders-green")
    """

    def __init__(self, project_root: Path) -> None:
        """Initialize the shell commands executor.

        Args:
            project_root: Path to the project root directory.
                         Commands will be executed from this directory by default.
        """
        self._project_root = Path(project_root)
        self._runner = CommandRunner(self._project_root)

        # Initialize specialized command modules
        self.helm = HelmCommands(self._runner)
        self.git = GitCommands(self._runner)

    @property
    def project_root(self) -> Path:
        """Get the project root path."""
        return self._project_root


__all__ = [
    "ShellCommands",
    "CommandRunner",
    "GitCommands",
    "HelmCommands",
    "CommandResult",
]
