"""Promotion pipeline commands.

Each stage can be run on its own (useful as individual CI steps) or the
whole pipeline can be driven end to end with ``slotpilot pipeline run``.
"""

from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from src.app.core.promotion.changes import ChangeDetector
from src.app.core.promotion.models import (
    AUTO_ENVIRONMENT,
    DeploymentRequest,
    QualityGateResult,
    QualityGateVerdict,
    TriggerType,
)
from src.app.core.promotion.pipeline import PipelineReport, PipelineStatus
from src.app.core.promotion.quality_gate import QualityGateAggregator, load_report
from src.app.core.promotion.resolver import EnvironmentResolver
from src.app.core.promotion.versioning import resolve_version
from src.cli.context import CLIContext, get_cli_context
from src.cli.shared.console import styled, with_error_handling
from src.infra.k8s import run_sync

# ---------------------------------------------------------------------------
# Typer App
# ---------------------------------------------------------------------------

pipeline_app = typer.Typer(
    name="pipeline",
    help="Resolve, gate and run a promotion.",
    no_args_is_help=True,
)

# ---------------------------------------------------------------------------
# Shared options
# ---------------------------------------------------------------------------

RefOption = Annotated[
    str,
    typer.Option("--ref", "-r", help="Git ref, e.g. refs/heads/main or refs/tags/v1.2.0"),
]
TriggerOption = Annotated[
    TriggerType,
    typer.Option("--trigger", "-t", help="How the run was started"),
]
ActorOption = Annotated[
    str,
    typer.Option("--actor", "-a", envvar="SLOTPILOT_ACTOR", help="Who started the run"),
]
EnvironmentOption = Annotated[
    str,
    typer.Option(
        "--environment",
        "-e",
        help="Target environment, or 'auto' to resolve it from the ref",
    ),
]
OverrideOption = Annotated[
    bool,
    typer.Option(
        "--override-validation",
        help="Deploy a non-canonical ref to the requested environment",
    ),
]


def _request(
    cli: CLIContext,
    ref: str,
    trigger: TriggerType,
    actor: str,
    environment: str,
    override_validation: bool = False,
    force: bool = False,
    run_id: str | None = None,
) -> DeploymentRequest:
    fields: dict[str, object] = {
        "ref": ref,
        "trigger_type": trigger,
        "actor": actor,
        "requested_environment": environment,
        "override_validation": override_validation,
        "force_deploy": force,
        "application": cli.application,
    }
    if run_id:
        fields["run_id"] = run_id
    return DeploymentRequest.model_validate(fields)


def _load_results(report: Path | None) -> list[QualityGateResult]:
    if report is None:
        return []
    try:
        return load_report(report)
    except (OSError, ValueError) as e:
        raise typer.BadParameter(str(e), param_hint="--report") from e


def _print_gates(cli: CLIContext, verdict: QualityGateVerdict) -> None:
    table = Table(title="Quality gates", title_justify="left")
    table.add_column("Scanner", style="bold")
    table.add_column("Status")
    table.add_column("Reasons")
    for evaluation in verdict.evaluations:
        table.add_row(
            evaluation.tool_name,
            styled(evaluation.status),
            "\n".join(evaluation.reasons) or "[dim]-[/dim]",
        )
    cli.console.print(table)
    cli.console.print(f"Overall: {styled(verdict.status)}")


def _print_report(cli: CLIContext, report: PipelineReport) -> None:
    rows: dict[str, object] = {
        "Application": report.request.application,
        "Ref": report.request.ref,
        "Run": report.request.run_id,
        "Environment": report.decision.target_environment,
        "Resolver": report.decision.reason,
    }
    if report.changes is not None:
        rows["Changes"] = report.changes.reason
    if report.version is not None:
        rows["Version"] = report.version.version
    if report.image_ref is not None:
        rows["Image"] = report.image_ref
    if report.approval is not None:
        rows["Approval"] = report.approval.decision
    if report.slot is not None:
        rows["Slot"] = f"{report.slot.color.value} ({report.slot.namespace})"
    if report.canary is not None:
        rows["Canary"] = f"{report.canary.status.value} at {report.canary.current_weight}%"
    if report.promotion is not None:
        rows["Active"] = report.promotion.active_namespace
    rows["Status"] = report.status
    cli.console.print_fields("Promotion", rows)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@pipeline_app.command()
@with_error_handling
def resolve(
    ctx: typer.Context,
    ref: RefOption,
    trigger: TriggerOption = TriggerType.PUSH,
    actor: ActorOption = "ci",
    environment: EnvironmentOption = AUTO_ENVIRONMENT,
    override_validation: OverrideOption = False,
) -> None:
    """Resolve which environment a ref deploys to."""
    cli = get_cli_context(ctx)
    request = _request(cli, ref, trigger, actor, environment, override_validation)
    decision = EnvironmentResolver(cli.config, cli.authorizer).resolve(request)

    cli.console.print_fields(
        "Environment decision",
        {
            "Environment": decision.target_environment,
            "Deploy": "yes" if decision.should_deploy else "no",
            "Protected": "yes" if decision.protected else "no",
            "Cluster": decision.cluster_binding.name if decision.cluster_binding else None,
            "Rule": decision.matched_rule,
            "Reason": decision.reason,
        },
    )


@pipeline_app.command()
@with_error_handling
def changes(
    ctx: typer.Context,
    ref: RefOption,
    trigger: TriggerOption = TriggerType.PUSH,
    actor: ActorOption = "ci",
    environment: EnvironmentOption = AUTO_ENVIRONMENT,
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Deploy even without relevant changes")
    ] = False,
) -> None:
    """Check whether the ref changed anything that needs a deploy."""
    cli = get_cli_context(ctx)
    request = _request(cli, ref, trigger, actor, environment, force=force)
    decision = EnvironmentResolver(cli.config, cli.authorizer).resolve(request)
    detector = ChangeDetector(
        cli.history(),
        cli.config.application.build_context,
        cli.config.application.watch_paths,
    )
    verdict = detector.detect(request, decision)

    cli.console.print_fields(
        "Change detection",
        {
            "Environment": decision.target_environment,
            "Deploy": "yes" if verdict.should_deploy else "no",
            "Base": verdict.base_ref,
            "Reason": verdict.reason,
            "Relevant files": len(verdict.changed_files),
        },
    )
    for path in verdict.changed_files:
        cli.console.print(f"  [dim]•[/dim] {path}")


@pipeline_app.command()
@with_error_handling
def gate(
    ctx: typer.Context,
    report: Annotated[
        Path,
        typer.Option(
            "--report",
            help="JSON/YAML file with scanner results",
            exists=True,
            dir_okay=False,
        ),
    ],
) -> None:
    """Aggregate scanner results into a pass/fail verdict."""
    cli = get_cli_context(ctx)
    aggregator = QualityGateAggregator(cli.config.scanners)
    verdict = aggregator.aggregate(_load_results(report))
    _print_gates(cli, verdict)
    if not verdict.passed:
        raise typer.Exit(1)


@pipeline_app.command()
@with_error_handling
def version(
    ctx: typer.Context,
    ref: RefOption,
    environment: Annotated[str, typer.Option("--environment", "-e", help="Target environment")],
    sha: Annotated[str, typer.Option("--sha", help="Short commit SHA")],
    latest_tag: Annotated[
        str | None,
        typer.Option("--latest-tag", help="Latest release tag, used to bump release branches"),
    ] = None,
) -> None:
    """Compute the version, image tag and chart version for a build."""
    cli = get_cli_context(ctx)
    env = cli.environment(environment)
    info = resolve_version(
        ref, environment, sha, latest_tag=latest_tag, protected=env.protected
    )
    cli.console.print_fields(
        "Version",
        {
            "Version": info.version,
            "Image tag": info.image_tag,
            "Chart version": info.helm_version,
        },
    )


@pipeline_app.command()
@with_error_handling
def run(
    ctx: typer.Context,
    ref: RefOption,
    trigger: TriggerOption = TriggerType.PUSH,
    actor: ActorOption = "ci",
    environment: EnvironmentOption = AUTO_ENVIRONMENT,
    override_validation: OverrideOption = False,
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Deploy even without relevant changes")
    ] = False,
    report: Annotated[
        Path | None,
        typer.Option(
            "--report",
            help="JSON/YAML file with scanner results",
            exists=True,
            dir_okay=False,
        ),
    ] = None,
    image: Annotated[
        str | None,
        typer.Option("--image", help="Image reference (default: <registry>/<app>:<tag>)"),
    ] = None,
    latest_tag: Annotated[
        str | None,
        typer.Option("--latest-tag", help="Latest release tag, used to bump release branches"),
    ] = None,
    run_id: Annotated[
        str | None,
        typer.Option("--run-id", envvar="SLOTPILOT_RUN_ID", help="Pipeline run identifier"),
    ] = None,
    sha: Annotated[
        str | None, typer.Option("--sha", help="Short commit SHA (default: HEAD)")
    ] = None,
    json_output: Annotated[
        bool, typer.Option("--json", help="Print the full report as JSON")
    ] = False,
) -> None:
    """Run the full promotion pipeline for one ref."""
    cli = get_cli_context(ctx)
    request = _request(
        cli, ref, trigger, actor, environment, override_validation, force, run_id
    )
    results = _load_results(report)
    git = cli.commands.git
    sha = sha or git.rev_parse(short=True)
    if not sha:
        raise typer.BadParameter("Could not resolve HEAD; pass --sha", param_hint="--sha")
    latest_tag = latest_tag or git.latest_version_tag()

    cli.console.print_header(f"Promoting {cli.application} ({ref})")
    with cli.console.status("Running promotion pipeline..."):
        outcome = run_sync(
            cli.pipeline().run(
                request, results, short_sha=sha, image_ref=image, latest_tag=latest_tag
            )
        )

    if json_output:
        cli.console.console.print_json(outcome.model_dump_json())
        return

    _print_report(cli, outcome)
    if outcome.status is PipelineStatus.SKIPPED:
        cli.console.warn("Nothing was deployed")
    else:
        cli.console.ok(
            f"{cli.application} {outcome.status.value.lower()} to "
            f"{outcome.decision.target_environment}"
        )
