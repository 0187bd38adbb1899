import os
import re
from collections.abc import Iterable
from pathlib import Path

from loguru import logger

_SECRETS_LOADED = False

# Max size for environment variable values (most systems limit to ~128KB, but be conservative)
MAX_ENV_VAR_SIZE = 32768  # 32KB

_PLACEHOLDER = re.compile(r"\$\{([^}]+)\}")


def _get_project_root() -> Path:
    return Path(__file__).resolve().parents[4]


def _candidate_secret_dirs() -> Iterable[Path]:
    custom_dir = os.getenv("SLOTPILOT_SECRETS_DIR")
    if custom_dir:
        yield Path(custom_dir)
    yield _get_project_root() / "secrets" / "keys"


def _env_name_for(file_path: Path) -> str:
    # Replace any non-alphanumeric/underscore characters with underscores
    env_name = file_path.stem.upper()
    return "".join(c if c.isalnum() or c == "_" else "_" for c in env_name)


def _read_secret(file_path: Path) -> str | None:
    try:
        file_size = file_path.stat().st_size
        if file_size > MAX_ENV_VAR_SIZE:
            logger.warning(
                f"Secret file {file_path.name} is too large ({file_size} bytes) to load as environment variable (max {MAX_ENV_VAR_SIZE} bytes)"
            )
            return None
        value = file_path.read_text(encoding="utf-8").strip()
    except OSError as exc:
        logger.warning(f"Unable to read secret file {file_path}: {exc}")
        return None
    return value or None


def load_secret_files_into_env(force: bool = False) -> None:
    """Export mounted secret files (one value per file) as environment variables.

    Only the first existing secrets directory is used. Variables already
    present in the environment win over files.
    """
    global _SECRETS_LOADED
    if _SECRETS_LOADED and not force:
        return

    for directory in _candidate_secret_dirs():
        if not directory.is_dir():
            continue

        for file_path in sorted(directory.iterdir()):
            if not file_path.is_file():
                continue

            env_name = _env_name_for(file_path)
            if not env_name or env_name in os.environ:
                continue

            value = _read_secret(file_path)
            if value is None:
                continue

            os.environ[env_name] = value
            logger.debug(
                f"Loaded secret {env_name} from {file_path.name} ({len(value)} bytes)"
            )

        break

    _SECRETS_LOADED = True


def substitute_env_vars(text: str) -> str:
    """
    Substitute environment variable placeholders in text.

    Supports formats:
    - ${VAR_NAME} - required variable (raises error if missing)
    - ${VAR_NAME:-default} - optional with default value
    - ${VAR_NAME:?error_message} - required with custom error message

    Full-line `#` comments are left untouched.
    """

    load_secret_files_into_env()

    def replacer(match: re.Match[str]) -> str:
        var_expr = match.group(1)

        if ":-" in var_expr:
            var_name, default = var_expr.split(":-", 1)
            return os.getenv(var_name, default)

        if ":?" in var_expr:
            var_name, error_msg = var_expr.split(":?", 1)
            value = os.getenv(var_name)
            if value is None:
                raise ValueError(f"Required environment variable {var_name}: {error_msg}")
            return value

        value = os.getenv(var_expr)
        if value is None:
            raise ValueError(f"Required environment variable {var_expr} not set")
        return value

    return "".join(
        line if line.lstrip().startswith("#") else _PLACEHOLDER.sub(replacer, line)
        for line in text.splitlines(keepends=True)
    )
