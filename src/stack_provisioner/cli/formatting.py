"""Plan, apply and drift output rendering."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, NamedTuple

import typer

from stack_provisioner.engine.types import Action, OutcomeStatus
from stack_provisioner.resources.references import has_references

if TYPE_CHECKING:
    from collections.abc import Callable

    from stack_provisioner.engine.types import (
        ApplyResult,
        DriftEntry,
        OperationOutcome,
        Plan,
        ResourceChange,
    )


class _ActionStyle(NamedTuple):
    color: str
    symbol: str
    progress_verb: str
    done_verb: str


_ACTION_STYLES: dict[str, _ActionStyle] = {
    "create": _ActionStyle("green", "+", "Creating", "Creation complete"),
    "update": _ActionStyle("yellow", "~", "Modifying", "Modifications complete"),
    "delete": _ActionStyle("red", "-", "Destroying", "Destruction complete"),
    "no-op": _ActionStyle("bright_black", " ", "", ""),
}

_ACTION_DESC: dict[str, str] = {
    "create": "will be created",
    "update": "will be updated in-place",
    "delete": "will be destroyed",
    "no-op": "is up-to-date",
}

_OUTCOME_COLORS: dict[OutcomeStatus, str] = {
    OutcomeStatus.APPLIED: "green",
    OutcomeStatus.UNCHANGED: "bright_black",
    OutcomeStatus.FAILED: "red",
    OutcomeStatus.TIMED_OUT: "red",
    OutcomeStatus.BLOCKED: "yellow",
    OutcomeStatus.CANCELED: "yellow",
}

KNOWN_AFTER_APPLY = "(known after apply)"


def styler(color: bool) -> Callable[..., str]:
    """Return ``typer.style`` when *color* is True, otherwise a passthrough."""
    if color:
        return typer.style
    return lambda text, **_kw: text


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def has_actionable_changes(plan: Plan) -> bool:
    """Return True if the plan contains any non-NOOP changes."""
    return plan.has_changes()


def _align_values(items: dict[str, str]) -> list[tuple[str, str]]:
    """Right-pad keys so ``=`` signs align."""
    if not items:
        return []
    width = max(len(k) for k in items)
    return [(k.ljust(width), v) for k, v in items.items()]


def _format_value(value: Any) -> str:
    """Format a value for display in a plan diff block.

    Values still carrying reference tokens are only known once their
    producers have been applied.
    """
    if has_references(value):
        return KNOWN_AFTER_APPLY
    if isinstance(value, str):
        return f'"{value}"'
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


# ---------------------------------------------------------------------------
# Plan rendering
# ---------------------------------------------------------------------------


def _change_attrs(change: ResourceChange) -> dict[str, str]:
    if change.action == Action.CREATE and change.planned:
        return {k: _format_value(v) for k, v in change.planned.items() if v is not None}
    if change.action == Action.UPDATE and change.diff:
        return {
            k: f"{_format_value(d['from'])} -> {_format_value(d['to'])}"
            for k, d in change.diff.items()
        }
    if change.action == Action.DELETE and change.prior:
        return {k: _format_value(v) for k, v in change.prior.items() if v is not None}
    return {}


def format_change(change: ResourceChange, *, color: bool = True) -> str:
    """Render a single ResourceChange as a diff block."""
    style = styler(color)
    action_val = change.action.value
    sc = {"fg": _ACTION_STYLES[action_val].color}
    symbol = _ACTION_STYLES[action_val].symbol

    title = f"  # {change.address} {_ACTION_DESC[action_val]}"
    if change.reason:
        title += f" ({change.reason})"
    lines = [
        style(title, bold=True, **sc),
        style(f'  {symbol} resource "{change.resource_type}" "{change.name}" {{', **sc),
        *[
            style(f"      {symbol} {k} = {v}", **sc)
            for k, v in _align_values(_change_attrs(change))
        ],
        style("    }", **sc),
    ]
    return "\n".join(lines)


def format_changes(changes: list[ResourceChange], *, color: bool = True) -> str:
    """Render a list of changes as diff blocks."""
    blocks = [format_change(c, color=color) for c in changes if c.action != Action.NOOP]
    if not blocks:
        return "No changes. Resources are up-to-date."
    return "\n\n".join(blocks)


def format_plan(plan: Plan, *, color: bool = True) -> str:
    """Render the full plan output with per-change diff blocks."""
    return format_changes(plan.changes, color=color)


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------

_PLAN_VERBS = ("to add", "to change", "to destroy")
_APPLY_VERBS = ("added", "changed", "destroyed")
_SUMMARY_COLORS = ("green", "yellow", "red")


def _format_summary(summary: dict[str, int], verbs: tuple[str, ...], *, color: bool) -> str:
    style = styler(color)
    counts = (summary.get("create", 0), summary.get("update", 0), summary.get("delete", 0))
    parts = [
        style(f"{n} {verb}", fg=fg) if n else f"{n} {verb}"
        for n, verb, fg in zip(counts, verbs, _SUMMARY_COLORS, strict=True)
    ]
    return ", ".join(parts)


def changes_summary(changes: list[ResourceChange]) -> dict[str, int]:
    """Count changes by action type (create/update/delete)."""
    summary: dict[str, int] = {"create": 0, "update": 0, "delete": 0}
    for c in changes:
        if c.action != Action.NOOP:
            summary[c.action.value] += 1
    return summary


def format_plan_summary(
    summary: dict[str, int], *, color: bool = True, header: str = "Plan"
) -> str:
    """Render ``Plan: 2 to add, 1 to change, 0 to destroy.``"""
    return f"{header}: {_format_summary(summary, _PLAN_VERBS, color=color)}."


def format_apply_summary(summary: dict[str, int], *, color: bool = True) -> str:
    """Render ``Apply complete! Resources: 2 added, 0 changed, 0 destroyed.``"""
    style = styler(color)
    header = style("Apply complete!", fg="green", bold=True)
    return f"{header} Resources: {_format_summary(summary, _APPLY_VERBS, color=color)}."


# ---------------------------------------------------------------------------
# Apply outcomes
# ---------------------------------------------------------------------------


def format_outcome(outcome: OperationOutcome, *, color: bool = True) -> str:
    """One line per operation: ``  create db: failed - boom``."""
    style = styler(color)
    line = f"  {outcome.action.value} {outcome.name}: {outcome.status.value}"
    if outcome.blocked_by:
        line += f" (blocked by {', '.join(outcome.blocked_by)})"
    if outcome.error:
        line += f" - {outcome.error}"
    return style(line, fg=_OUTCOME_COLORS[outcome.status])


def format_outcomes(result: ApplyResult, *, color: bool = True) -> str:
    """Render the outcomes that did not succeed; empty when all did."""
    lines = [
        format_outcome(o, color=color)
        for o in result.outcomes
        if o.status not in (OutcomeStatus.APPLIED, OutcomeStatus.UNCHANGED)
    ]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Drift and outputs
# ---------------------------------------------------------------------------


def format_drift(entries: list[DriftEntry], *, color: bool = True) -> str:
    """Render drift entries as diff blocks against recorded state."""
    if not entries:
        return "No drift detected. State matches the provider."
    style = styler(color)
    blocks: list[str] = []
    for entry in entries:
        address = f"{entry.resource_type}.{entry.name}"
        if entry.missing:
            blocks.append(style(f"  # {address} no longer exists", bold=True, fg="red"))
            continue
        attrs = {
            k: f"{_format_value(d['from'])} -> {_format_value(d['to'])}"
            for k, d in entry.diff.items()
        }
        lines = [
            style(f"  # {address} has changed outside of this stack", bold=True, fg="yellow"),
            *[style(f"      ~ {k} = {v}", fg="yellow") for k, v in _align_values(attrs)],
        ]
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def format_outputs(outputs: dict[str, Any]) -> str:
    """Render the flat output table, one ``key = value`` line each."""
    if not outputs:
        return "No outputs."
    items = {k: _format_value(outputs[k]) for k in sorted(outputs)}
    return "\n".join(f"{k} = {v}" for k, v in _align_values(items))
