"""Approval gate commands.

Protected environments wait for human sign-off before promotion. These
commands let authorized approvers inspect and decide pending requests.
"""

from typing import Annotated

import typer
from rich.table import Table

from src.app.core.promotion.models import ApprovalRecord
from src.cli.context import get_cli_context
from src.cli.shared.console import styled, with_error_handling
from src.infra.k8s import run_sync

approvals_app = typer.Typer(
    name="approvals",
    help="Inspect and decide pending approvals.",
    no_args_is_help=True,
)

EnvironmentOption = Annotated[
    str, typer.Option("--environment", "-e", help="Target environment")
]
RunIdOption = Annotated[
    str, typer.Option("--run-id", envvar="SLOTPILOT_RUN_ID", help="Pipeline run identifier")
]
PrincipalOption = Annotated[
    str,
    typer.Option("--principal", "-p", envvar="SLOTPILOT_ACTOR", help="Who is deciding"),
]


def _format_time(record: ApprovalRecord) -> str:
    if record.expires_at is None:
        return "-"
    return record.expires_at.strftime("%Y-%m-%d %H:%M:%S UTC")


@approvals_app.command()
@with_error_handling
def status(
    ctx: typer.Context,
    environment: Annotated[
        str,
        typer.Option("--environment", "-e", help="Limit to one environment"),
    ] = "*",
) -> None:
    """List approval requests and their state."""
    cli = get_cli_context(ctx)
    gate = cli.approval_gate()

    async def _load() -> list[ApprovalRecord]:
        records = await cli.store.list_approvals(cli.application, environment)
        return [await gate.refresh(record) for record in records]

    records = run_sync(_load())
    if not records:
        cli.console.info("No approval requests found")
        return

    table = Table(title=f"Approvals for {cli.application}", title_justify="left")
    table.add_column("Environment", style="bold")
    table.add_column("Run")
    table.add_column("Ref")
    table.add_column("Decision")
    table.add_column("Approvers")
    table.add_column("Expires")
    for record in records:
        table.add_row(
            record.environment,
            record.run_id,
            record.ref or "-",
            styled(record.decision),
            f"{len(record.granted_approvers)}/{record.required_approvals} "
            f"{', '.join(sorted(record.granted_approvers))}".strip(),
            _format_time(record),
        )
    cli.console.print(table)


@approvals_app.command()
@with_error_handling
def approve(
    ctx: typer.Context,
    environment: EnvironmentOption,
    run_id: RunIdOption,
    principal: PrincipalOption,
) -> None:
    """Grant an approval for a pending promotion."""
    cli = get_cli_context(ctx)
    cli.environment(environment)
    record = run_sync(
        cli.approval_gate().grant(cli.application, environment, run_id, principal)
    )
    cli.console.ok(
        f"Approval recorded ({len(record.granted_approvers)}/"
        f"{record.required_approvals}); decision is {styled(record.decision)}"
    )


@approvals_app.command()
@with_error_handling
def reject(
    ctx: typer.Context,
    environment: EnvironmentOption,
    run_id: RunIdOption,
    principal: PrincipalOption,
    reason: Annotated[str, typer.Option("--reason", help="Why it was rejected")] = "",
) -> None:
    """Reject a pending promotion."""
    cli = get_cli_context(ctx)
    cli.environment(environment)
    record = run_sync(
        cli.approval_gate().reject(
            cli.application, environment, run_id, principal, reason=reason
        )
    )
    cli.console.warn(f"Run {run_id} rejected by {record.rejected_by}")
