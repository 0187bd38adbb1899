"""Promotion configuration loading with environment variable substitution."""

import os
from pathlib import Path
from typing import Any, Literal, overload

import yaml
from loguru import logger
from pydantic_core import ValidationError

from src.app.runtime.config.config_data import ConfigData
from src.app.runtime.config.config_utils import substitute_env_vars
from src.utils.paths import get_config_path

MODE_VARIABLE = "SLOTPILOT_MODE"
DEFAULT_MODE = "ci"


@overload
def load_config(
    file_path: Path | None = ..., processed: Literal[True] = ...
) -> ConfigData: ...


@overload
def load_config(
    file_path: Path | None = ..., *, processed: Literal[False]
) -> dict[str, Any]: ...


def load_config(
    file_path: Path | None = None, processed: bool = True
) -> ConfigData | dict[str, Any]:
    """
    Load the promotion YAML file with environment variable substitution.

    Args:
        file_path: Path to the YAML file (default: SLOTPILOT_CONFIG or
                   promotion.yaml in the project root)
        processed: Whether to substitute environment variables and validate.
                  - True (default): substitute env vars and validate as ConfigData
                  - False: return raw dict without validation or substitution

    Returns:
        ConfigData if processed is True, raw dict otherwise

    Raises:
        ValueError: If required environment variables are missing, validation fails,
                   or YAML structure is invalid (missing 'config' key)
        FileNotFoundError: If the YAML file doesn't exist

    Side Effects (when processed=True):
        - Mutates os.environ by setting environment variables derived from
          {MODE}_* prefixed variables (e.g., CI_AKS_CLUSTER_NAME_PROD -> AKS_CLUSTER_NAME_PROD)
        - Logs configuration loading details at info/debug level
    """
    file_path = file_path or get_config_path()
    with open(file_path) as f:
        content = f.read()

    mode = os.getenv(MODE_VARIABLE, DEFAULT_MODE)

    if processed:
        logger.info(f"Loading promotion configuration from {file_path} (mode: {mode})")

        prefix = f"{mode.upper()}_"
        env_variables = [
            (var, value) for var, value in os.environ.items() if var.startswith(prefix)
        ]
        logger.info(f"Applying {len(env_variables)} mode-specific overrides")
        logger.debug(f"Override keys: {[var for var, _ in env_variables]}")

        for var_name, var_value in env_variables:
            new_var_name = var_name[len(prefix) :]
            os.environ[new_var_name] = var_value
            logger.debug(f"Set environment variable {new_var_name} from {var_name}")

        content = substitute_env_vars(content)

    try:
        loaded: dict[str, Any] = yaml.safe_load(content)
        if not processed:
            return loaded
        if not loaded:
            raise ValueError("Failed to parse YAML")
    except yaml.YAMLError as e:
        raise ValueError(f"Error parsing YAML: {e}") from e

    if "config" not in loaded:
        raise ValueError("Invalid YAML structure: missing 'config' key")

    try:
        config = ConfigData(**loaded["config"])
    except ValidationError as e:
        raise ValueError(f"Invalid configuration: {e}") from e

    _warn_on_suspicious_environments(config)
    return config


def _warn_on_suspicious_environments(config: ConfigData) -> None:
    for name, env in config.environments.items():
        if not env.cluster.is_configured:
            logger.warning(
                f"Environment '{name}' has no cluster binding; deployments to it will fail"
            )
        if env.protected and env.required_approvals == 0:
            logger.warning(
                f"Protected environment '{name}' requires zero approvals; "
                "promotions will be approved automatically"
            )
        if env.protected and not (
            config.approvals.allowed_principals or config.approvals.authorized_groups
        ):
            logger.warning(
                f"Protected environment '{name}' has no authorized approvers configured"
            )
