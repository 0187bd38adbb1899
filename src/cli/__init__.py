"""Main CLI application module.

This module provides the main entry point for the slotpilot CLI.

Command Groups:
- pipeline: Resolve, gate and run a promotion
- approvals: Inspect and decide pending approvals
- slots: Inspect slots, roll back and retire standby slots
"""

import sys
from pathlib import Path
from typing import Annotated

import typer
from loguru import logger

from .commands import approvals_app, pipeline_app, slots_app
from .context import CONFIG_META_KEY

# Create the main CLI application
app = typer.Typer(
    help="🚦 slotpilot - Blue/green promotion pipeline for Kubernetes",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


@app.callback()
def configure(
    ctx: typer.Context,
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            envvar="SLOTPILOT_CONFIG",
            help="Path to the promotion configuration file",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging"),
    ] = False,
) -> None:
    """Global options shared by all command groups."""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "WARNING")
    ctx.meta[CONFIG_META_KEY] = config


# Register command groups
app.add_typer(pipeline_app, name="pipeline")
app.add_typer(approvals_app, name="approvals")
app.add_typer(slots_app, name="slots")


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
