"""Data types for shell command results.

CommandResult is re-exported from src.infra.k8s.controller so that shell
commands and cluster primitives share one result type.
"""

from __future__ import annotations

from src.infra.k8s.controller import CommandResult

__all__ = ["CommandResult"]
