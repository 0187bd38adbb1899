"""Command runner for executing shell commands.

This module provides the base command execution functionality used by
all specialized command modules.
"""

from __future__ import annotations

import os
import subprocess
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path

from .types import CommandResult

# Variables a child process always needs to locate binaries and kubeconfig.
# Anything else (cloud credentials, tokens) must be passed explicitly.
BASE_ENV_KEYS: tuple[str, ...] = ("PATH", "HOME", "KUBECONFIG", "LANG", "TMPDIR")


class CommandRunner:
    """Low-level command executor with consistent result handling.

    This class provides the foundation for executing shell commands with
    proper output capture, error handling, and streaming support.

    The Helm and Git command modules use this runner for actual command
    execution. When a command is given an explicit ``env`` mapping, the child
    process receives only the base variables plus that mapping instead of
    inheriting the caller's whole environment.
    """

    def __init__(self, project_root: Path) -> None:
        """Initialize the command runner.

        Args:
            project_root: Path to the project root directory.
                         Commands will be executed from this directory by default.
        """
        self.project_root = project_root

    def _build_env(self, env: Mapping[str, str] | None) -> dict[str, str] | None:
        if env is None:
            return None
        scoped = {key: os.environ[key] for key in BASE_ENV_KEYS if key in os.environ}
        scoped.update(env)
        return scoped

    def run(
        self,
        cmd: Sequence[str],
        *,
        cwd: Path | None = None,
        capture_output: bool = True,
        check: bool = False,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Execute a shell command and return structured result.

        Args:
            cmd: Command and arguments as a sequence
            cwd: Working directory (defaults to project_root)
            capture_output: Whether to capture stdout/stderr
            check: Whether to raise exception on non-zero exit code
            env: Explicit credentials/variables for the child process

        Returns:
            CommandResult with success status, output, and return code

        Raises:
            subprocess.CalledProcessError: If check=True and command fails
        """
        result = subprocess.run(
            list(cmd),
            cwd=cwd or self.project_root,
            capture_output=capture_output,
            text=True,
            check=check,
            env=self._build_env(env),
        )
        return CommandResult(
            success=result.returncode == 0,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
            returncode=result.returncode,
        )

    def run_streaming(
        self,
        cmd: Sequence[str],
        *,
        cwd: Path | None = None,
        on_output: Callable[[str], None] | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Execute a shell command with real-time output streaming.

        Args:
            cmd: Command and arguments as a sequence
            cwd: Working directory (defaults to project_root)
            on_output: Callback function called with each line of output.
                      If None, output is collected but not streamed.
            env: Explicit credentials/variables for the child process

        Returns:
            CommandResult with success status, collected output, and return code
        """
        child_env = self._build_env(env) or os.environ.copy()
        child_env["PYTHONUNBUFFERED"] = "1"

        process = subprocess.Popen(
            list(cmd),
            cwd=cwd or self.project_root,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,  # Merge stderr into stdout
            text=True,
            bufsize=0,  # Unbuffered
            env=child_env,
        )

        stdout_lines: list[str] = []

        if process.stdout:
            for line in iter(process.stdout.readline, ""):
                line = line.rstrip("\n")
                if line:
                    stdout_lines.append(line)
                    if on_output:
                        on_output(line)

        process.wait()

        return CommandResult(
            success=process.returncode == 0,
            stdout="\n".join(stdout_lines),
            stderr="",  # stderr is merged into stdout
            returncode=process.returncode or 0,
        )

