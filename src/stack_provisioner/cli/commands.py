"""CLI command implementations."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Literal

import typer

from stack_provisioner.cli import app
from stack_provisioner.cli.errors import handle_error

if TYPE_CHECKING:
    from stack_provisioner.config.schema import Config
    from stack_provisioner.engine.types import ApplyResult, Plan

ConfigPath = Annotated[
    Path,
    typer.Option("--config", "-c", help="Path to the stack configuration file."),
]

NoColor = Annotated[
    bool,
    typer.Option("--no-color", help="Disable colored output."),
]

AutoApprove = Annotated[
    bool,
    typer.Option("--auto-approve", help="Skip interactive approval."),
]

NoRefresh = Annotated[
    bool,
    typer.Option("--no-refresh", help="Skip refreshing state from the provider."),
]

DEFAULT_CONFIG = Path("stack.yaml")


def _use_color(no_color: bool) -> bool:
    return not (no_color or os.environ.get("NO_COLOR"))


def _apply_with_progress(plan_obj: Plan, cfg: Config, *, color: bool) -> ApplyResult:
    """Apply a plan with a Rich progress bar and per-resource status lines."""
    from rich.console import Console
    from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

    from stack_provisioner.cli.formatting import _ACTION_STYLES
    from stack_provisioner.config import apply
    from stack_provisioner.engine.types import ResourceChange

    console = Console(no_color=not color)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Applying", total=len(plan_obj.operations()))

        def on_progress(change: ResourceChange, event: Literal["start", "done"]) -> None:
            s = _ACTION_STYLES[change.action.value]
            if event == "start":
                progress.update(task, description=f"{change.address}: {s.progress_verb}...")
            else:
                progress.console.print(f"  {change.address}: {s.done_verb}")
                progress.advance(task)

        return apply(plan_obj, cfg, progress=on_progress)


def _confirm_and_apply(
    plan_obj: Plan,
    cfg: Config,
    *,
    color: bool,
    auto_approve: bool,
    confirm_msg: str,
    empty_msg: str,
) -> None:
    """Show the plan, ask for confirmation, apply with progress, print the summary.

    Exits with code 0 when the plan has nothing to do.
    """
    from stack_provisioner.cli.formatting import (
        format_apply_summary,
        format_plan,
        format_plan_summary,
        has_actionable_changes,
    )

    if not has_actionable_changes(plan_obj):
        typer.echo(empty_msg)
        raise typer.Exit(0)

    typer.echo(format_plan(plan_obj, color=color))
    typer.echo()
    typer.echo(format_plan_summary(plan_obj.summary(), color=color))
    typer.echo()

    if not auto_approve:
        try:
            typer.confirm(confirm_msg, abort=True)
        except typer.Abort as e:
            typer.echo("Apply canceled.", err=True)
            raise typer.Exit(1) from e

    try:
        result = _apply_with_progress(plan_obj, cfg, color=color)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo()
    typer.echo(format_apply_summary(result.summary(), color=color))


@app.command()
def plan(
    config: ConfigPath = DEFAULT_CONFIG,
    out: Annotated[
        Path | None,
        typer.Option("--out", "-o", help="Save plan to file."),
    ] = None,
    no_color: NoColor = False,
    no_refresh: NoRefresh = False,
) -> None:
    """Show changes required by the current configuration.

    Exits with code 2 when the plan contains changes.
    """
    from stack_provisioner.cli.formatting import (
        format_plan,
        format_plan_summary,
        has_actionable_changes,
    )
    from stack_provisioner.config import load
    from stack_provisioner.config import plan as plan_fn

    color = _use_color(no_color)
    try:
        cfg = load(config)
        plan_obj = plan_fn(cfg, refresh=not no_refresh)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(format_plan(plan_obj, color=color))
    typer.echo()
    typer.echo(format_plan_summary(plan_obj.summary(), color=color))

    if out is not None:
        plan_obj.save(out)
        typer.echo(f"\nPlan saved to {out}")

    if has_actionable_changes(plan_obj):
        raise typer.Exit(2)


@app.command(name="apply")
def apply_cmd(
    plan_file: Annotated[
        Path | None,
        typer.Argument(help="Saved plan file to apply."),
    ] = None,
    config: ConfigPath = DEFAULT_CONFIG,
    auto_approve: AutoApprove = False,
    no_color: NoColor = False,
    no_refresh: NoRefresh = False,
) -> None:
    """Apply the changes required by the current configuration."""
    from stack_provisioner.config import load
    from stack_provisioner.config import plan as plan_fn
    from stack_provisioner.engine.types import Plan

    color = _use_color(no_color)
    try:
        cfg = load(config)
        plan_obj = (
            Plan.load(plan_file) if plan_file is not None else plan_fn(cfg, refresh=not no_refresh)
        )
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    _confirm_and_apply(
        plan_obj,
        cfg,
        color=color,
        auto_approve=auto_approve,
        confirm_msg="Do you want to apply these changes?",
        empty_msg="No changes. Resources are up-to-date.",
    )


@app.command()
def destroy(
    config: ConfigPath = DEFAULT_CONFIG,
    auto_approve: AutoApprove = False,
    no_color: NoColor = False,
) -> None:
    """Destroy every resource recorded in state, dependents first."""
    from stack_provisioner.config import load
    from stack_provisioner.config import plan as plan_fn

    color = _use_color(no_color)
    try:
        cfg = load(config)
        plan_obj = plan_fn(cfg, destroy=True)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    _confirm_and_apply(
        plan_obj,
        cfg,
        color=color,
        auto_approve=auto_approve,
        confirm_msg="Do you really want to destroy all resources?",
        empty_msg="No resources to destroy.",
    )


@app.command(name="refresh")
def refresh_cmd(
    config: ConfigPath = DEFAULT_CONFIG,
    auto_approve: AutoApprove = False,
    no_color: NoColor = False,
) -> None:
    """Update the state file from what the provider reports."""
    from stack_provisioner.cli.formatting import format_drift
    from stack_provisioner.config import load, save_state
    from stack_provisioner.config import refresh as refresh_fn

    color = _use_color(no_color)
    try:
        cfg = load(config)
        entries, state = refresh_fn(cfg)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if not entries:
        typer.echo("No changes. State is up-to-date with the provider.")
        raise typer.Exit(0)

    typer.echo(format_drift(entries, color=color))
    typer.echo()
    count = len(entries)
    typer.echo(f"Refresh: {count} resource{'s' if count != 1 else ''} changed.")
    typer.echo()

    if not auto_approve:
        try:
            typer.confirm("Do you want to update the state file?", abort=True)
        except typer.Abort as e:
            typer.echo("Refresh canceled.", err=True)
            raise typer.Exit(1) from e

    try:
        save_state(cfg, state)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc
    tracked = len(state.resources)
    typer.echo(f"State refreshed. {tracked} resource{'s' if tracked != 1 else ''} tracked.")


@app.command()
def drift(
    config: ConfigPath = DEFAULT_CONFIG,
    no_color: NoColor = False,
) -> None:
    """Show drift between state and the provider without changing anything.

    Exits with code 2 when drift is found.
    """
    from stack_provisioner.cli.formatting import format_drift
    from stack_provisioner.config import drift as drift_fn
    from stack_provisioner.config import load

    color = _use_color(no_color)
    try:
        cfg = load(config)
        entries = drift_fn(cfg)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if not entries:
        typer.echo(format_drift(entries, color=color))
        raise typer.Exit(0)

    typer.echo("Drift detected:\n")
    typer.echo(format_drift(entries, color=color))
    raise typer.Exit(2)


@app.command()
def validate(
    config: ConfigPath = DEFAULT_CONFIG,
    no_color: NoColor = False,
) -> None:
    """Validate the configuration without contacting the provider."""
    from stack_provisioner.cli.formatting import styler
    from stack_provisioner.config import load
    from stack_provisioner.config import plan as plan_fn

    color = _use_color(no_color)
    try:
        cfg = load(config)
        plan_fn(cfg, refresh=False)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(styler(color)("Configuration is valid.", fg="green"))


@app.command()
def outputs(
    config: ConfigPath = DEFAULT_CONFIG,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print outputs as a JSON object."),
    ] = False,
    no_color: NoColor = False,
) -> None:
    """Print the stack outputs (``<id>.<attribute> = value``)."""
    from stack_provisioner.cli.formatting import format_outputs
    from stack_provisioner.config import load
    from stack_provisioner.config import outputs as outputs_fn

    color = _use_color(no_color)
    try:
        cfg = load(config)
        values = outputs_fn(cfg)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if as_json:
        typer.echo(json.dumps(values, indent=2, sort_keys=True))
    else:
        typer.echo(format_outputs(values))


@app.command()
def graph(
    config: ConfigPath = DEFAULT_CONFIG,
    no_color: NoColor = False,
) -> None:
    """Print the dependency edges and the order resources are created in."""
    from stack_provisioner.config import load
    from stack_provisioner.engine.graph import build_dependency_graph

    color = _use_color(no_color)
    try:
        cfg = load(config)
        dep_graph = build_dependency_graph(cfg.resources)
        order = dep_graph.topological_order()
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo("Creation order:")
    for i, name in enumerate(order, start=1):
        typer.echo(f"  {i}. {name}")

    edges = dep_graph.edges()
    if edges:
        typer.echo()
        typer.echo("Dependencies:")
        for dep, node in edges:
            typer.echo(f"  {node} -> {dep}")
