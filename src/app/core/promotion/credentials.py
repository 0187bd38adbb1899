"""Explicit credential passing.

Each stage declares the environment variables it needs under
``credentials.<stage>`` in the promotion config and receives exactly those.
Nothing else from the process environment is forwarded.
"""

from __future__ import annotations

import os
from collections.abc import Mapping

from loguru import logger

from .errors import ConfigurationError

# Stages that receive credentials
STAGE_DEPLOY = "deploy"
STAGE_ROLLBACK = "rollback"
STAGE_TAG = "tag"


class CredentialBroker:
    """Hand each stage only the credentials it declares."""

    def __init__(
        self,
        declarations: Mapping[str, list[str]],
        source: Mapping[str, str] | None = None,
    ) -> None:
        self._declarations = {stage: list(names) for stage, names in declarations.items()}
        self._source = source if source is not None else os.environ

    def declared(self, stage: str) -> list[str]:
        return list(self._declarations.get(stage, []))

    def for_stage(self, stage: str, *, required: bool = False) -> dict[str, str]:
        """Return the declared credentials that are present.

        Raises:
            ConfigurationError: required=True and a declared variable is missing
        """
        names = self._declarations.get(stage, [])
        granted = {name: self._source[name] for name in names if name in self._source}
        missing = [name for name in names if name not in granted]
        if missing:
            if required:
                raise ConfigurationError(
                    f"Stage '{stage}' is missing credentials",
                    details="Missing: " + ", ".join(missing),
                )
            logger.warning(f"Stage '{stage}' declared but did not receive: {', '.join(missing)}")
        logger.debug(f"Stage '{stage}' receives {sorted(granted)}")
        return granted
