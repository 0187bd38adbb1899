"""Slot management commands.

Inspect blue/green slot pointers, roll an environment back and retire the
standby slot once its grace window has passed.
"""

from typing import Annotated

import typer
from rich.table import Table

from src.app.core.promotion.lock import LockLease
from src.app.core.promotion.models import (
    AuditEvent,
    CanaryState,
    DeploymentSlot,
    SlotState,
    new_run_id,
)
from src.app.core.promotion.rollback import RollbackStrategy
from src.cli.context import get_cli_context
from src.cli.shared.console import styled, with_error_handling
from src.infra.k8s import run_sync

slots_app = typer.Typer(
    name="slots",
    help="Inspect slots, roll back and retire standby slots.",
    no_args_is_help=True,
)

EnvironmentOption = Annotated[
    str, typer.Option("--environment", "-e", help="Target environment")
]
ActorOption = Annotated[
    str,
    typer.Option("--actor", "-a", envvar="SLOTPILOT_ACTOR", help="Who is acting"),
]


@slots_app.command()
@with_error_handling
def status(ctx: typer.Context, environment: EnvironmentOption) -> None:
    """Show slot pointers, slots, canary and lock state."""
    cli = get_cli_context(ctx)
    cli.environment(environment)
    app_name = cli.application

    async def _load() -> tuple[
        SlotState, list[DeploymentSlot], CanaryState | None, LockLease | None
    ]:
        return (
            await cli.store.get_slot_state(app_name, environment),
            await cli.store.list_slots(app_name, environment),
            await cli.store.get_canary(app_name, environment),
            await cli.lock().holder(app_name, environment),
        )

    state, slots, canary, lease = run_sync(_load())

    cli.console.print_fields(
        f"{app_name}/{environment}",
        {
            "Active": state.active_color.value if state.active_color else None,
            "Standby": state.standby_color.value if state.standby_color else None,
            "Standby retained until": (
                state.standby_retain_until.isoformat() if state.standby_retain_until else None
            ),
            "Canary": (
                f"{canary.status.value} at {canary.current_weight}% (run {canary.run_id})"
                if canary
                else None
            ),
            "Lock": f"{lease.holder} ({lease.actor})" if lease else "free",
        },
    )

    if not slots:
        return
    table = Table(title="Slots", title_justify="left")
    table.add_column("Colour", style="bold")
    table.add_column("Namespace")
    table.add_column("Image")
    table.add_column("Health")
    table.add_column("Run")
    for slot in slots:
        table.add_row(
            slot.color.value,
            slot.namespace,
            slot.image_ref,
            styled(slot.health_status),
            slot.run_id or "-",
        )
    cli.console.print(table)


@slots_app.command()
@with_error_handling
def rollback(
    ctx: typer.Context,
    environment: EnvironmentOption,
    actor: ActorOption,
    strategy: Annotated[
        RollbackStrategy,
        typer.Option("--strategy", "-s", help="How to roll back"),
    ] = RollbackStrategy.PREVIOUS_SLOT,
    revision: Annotated[
        int | None,
        typer.Option("--revision", help="Helm revision (helm-revision strategy only)"),
    ] = None,
    yes: Annotated[
        bool, typer.Option("--yes", "-y", help="Skip the confirmation prompt")
    ] = False,
) -> None:
    """Roll an environment back to its previous slot or Helm revision."""
    cli = get_cli_context(ctx)
    env = cli.environment(environment)

    if revision is not None and strategy is not RollbackStrategy.HELM_REVISION:
        raise typer.BadParameter(
            "--revision requires --strategy helm-revision", param_hint="--revision"
        )

    if not cli.console.confirm_action(
        f"Roll back {cli.application} in {environment}",
        details=f"Strategy: {strategy.value}",
        force=yes,
    ):
        raise typer.Exit(1)

    coordinator = cli.rollback_coordinator(environment)
    result = run_sync(
        coordinator.manual_rollback(
            application=cli.application,
            environment=environment,
            strategy=strategy,
            blue_green=env.blue_green,
            run_id=new_run_id(),
            actor=actor,
            revision=revision,
        )
    )
    cli.console.ok(
        f"Rolled back {cli.application}/{environment}: now serving "
        f"{result.restored_namespace or 'previous release'}"
    )


@slots_app.command()
@with_error_handling
def revisions(
    ctx: typer.Context,
    environment: EnvironmentOption,
    max_revisions: Annotated[
        int, typer.Option("--max", help="Number of revisions to show")
    ] = 10,
) -> None:
    """List Helm revisions of the serving release (for helm-revision rollback)."""
    cli = get_cli_context(ctx)
    env = cli.environment(environment)
    binding = cli.binding(environment)

    namespace = cli.constants.routing_namespace(environment, cli.application)
    if env.blue_green:
        state = run_sync(cli.store.get_slot_state(cli.application, environment))
        if state.active_color is None:
            cli.console.info(f"{cli.application}/{environment} has no active slot")
            return
        namespace = cli.constants.slot_namespace(
            environment, cli.application, state.active_color.value
        )

    release = cli.config.application.helm_release
    history = cli.commands.helm.history(
        release, namespace, max_revisions, kube_context=binding.context
    )
    if not history:
        cli.console.warn(f"No history for release {release} in {namespace}")
        return

    table = Table(title=f"{release} in {namespace}", title_justify="left")
    table.add_column("Revision", style="bold")
    table.add_column("Updated")
    table.add_column("Status")
    table.add_column("Description")
    for entry in history:
        table.add_row(
            str(entry.get("revision", "")),
            entry.get("updated", ""),
            entry.get("status", ""),
            entry.get("description", ""),
        )
    cli.console.print(table)


@slots_app.command()
@with_error_handling
def retire(
    ctx: typer.Context,
    environment: EnvironmentOption,
    actor: ActorOption,
) -> None:
    """Delete the standby slot once its grace window has elapsed."""
    cli = get_cli_context(ctx)
    if not cli.environment(environment).blue_green:
        cli.console.info(f"{environment} is a rolling environment; nothing to retire")
        return

    namespace = run_sync(
        cli.slot_manager(environment).retire_standby(cli.application, environment, actor)
    )
    if namespace is None:
        cli.console.info("No standby slot is due for retirement")
    else:
        cli.console.ok(f"Retired standby namespace {namespace}")


@slots_app.command()
@with_error_handling
def audit(
    ctx: typer.Context,
    environment: Annotated[
        str, typer.Option("--environment", "-e", help="Limit to one environment")
    ] = "*",
    limit: Annotated[int, typer.Option("--limit", "-n", help="Most recent events")] = 50,
) -> None:
    """Show the audit trail for the application."""
    cli = get_cli_context(ctx)
    events: list[AuditEvent] = run_sync(cli.store.list_audit(cli.application, environment))
    if not events:
        cli.console.info("No audit events recorded")
        return

    table = Table(title=f"Audit trail for {cli.application}", title_justify="left")
    table.add_column("Time")
    table.add_column("Env")
    table.add_column("Component")
    table.add_column("Decision")
    table.add_column("Actor")
    table.add_column("Run")
    for event in events[-limit:]:
        table.add_row(
            event.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            event.environment or "-",
            event.component or "-",
            event.decision,
            event.actor or "-",
            event.run_id or "-",
        )
    cli.console.print(table)
