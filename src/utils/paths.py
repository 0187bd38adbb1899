from pathlib import Path


def get_project_root() -> Path:
    """Get the project root directory.

    Walks up from the module location to find the project root,
    identified by the presence of pyproject.toml.

    Returns:
        Path to the project root directory
    """
    current = Path(__file__).resolve()

    # Walk up the directory tree looking for pyproject.toml
    for parent in [current, *current.parents]:
        if (parent / "pyproject.toml").exists():
            return parent

    # Fallback to three levels up (src/utils/paths.py -> project root)
    return Path(__file__).parent.parent.parent


def get_config_path(project_root: Path | None = None) -> Path:
    """Resolve the promotion config file path.

    Honours SLOTPILOT_CONFIG when set, otherwise falls back to
    promotion.yaml in the project root.
    """
    import os

    if custom := os.environ.get("SLOTPILOT_CONFIG"):
        return Path(custom)
    return (project_root or get_project_root()) / "promotion.yaml"
