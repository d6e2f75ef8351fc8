"""Map exceptions to clean stderr messages and exit codes."""

from __future__ import annotations

from typing import TYPE_CHECKING

import typer

if TYPE_CHECKING:
    from stack_provisioner.engine.types import ApplyResult


def _err(msg: str, *, fg: str | None) -> None:
    typer.echo(typer.style(msg, fg=fg), err=True)


def _partial_result(result: ApplyResult, *, fg: str | None) -> None:
    from stack_provisioner.cli.formatting import format_outcomes

    s = result.summary()
    parts = [
        f"{n} {verb}"
        for n, verb in (
            (s["create"], "added"),
            (s["update"], "changed"),
            (s["delete"], "destroyed"),
        )
        if n
    ]
    if parts:
        _err(f"  Partial result: {', '.join(parts)}.", fg=fg)
    details = format_outcomes(result, color=False)
    if details:
        _err(details, fg=fg)


def handle_error(exc: Exception, *, color: bool = True) -> int:
    """Print a clean error message to stderr and return an exit code.

    All errors map to exit code 1. No tracebacks are printed.
    """
    from stack_provisioner.config.loader import ConfigError
    from stack_provisioner.engine.errors import (
        AddressSpaceExhausted,
        ApplyCanceled,
        ApplyError,
        DependencyCycleError,
        DependencyViolation,
        StalePlanError,
        StateLockError,
        StateStackMismatchError,
        UnresolvedReferenceError,
        ValidationError,
    )

    fg = typer.colors.RED if color else None

    if isinstance(exc, ConfigError):
        _err(f"Configuration error: {exc}", fg=fg)
    elif isinstance(exc, ValidationError):
        _err("Validation failed:", fg=fg)
        for e in exc.errors:
            _err(f"  - {e}", fg=fg)
    elif isinstance(exc, DependencyCycleError):
        _err(f"Dependency cycle: {' -> '.join(exc.cycle)}", fg=fg)
    elif isinstance(exc, DependencyViolation):
        _err("Plan violates resource dependencies:", fg=fg)
        for v in exc.violations:
            _err(f"  - {v}", fg=fg)
    elif isinstance(exc, AddressSpaceExhausted):
        _err(f"Network error: {exc}", fg=fg)
    elif isinstance(exc, UnresolvedReferenceError):
        _err(f"Reference error: {exc}", fg=fg)
    elif isinstance(exc, StalePlanError):
        _err(f"Plan is stale: {exc}", fg=fg)
    elif isinstance(exc, StateStackMismatchError):
        _err(f"State mismatch: {exc}", fg=fg)
    elif isinstance(exc, StateLockError):
        _err(f"State is locked: {exc}", fg=fg)
    elif isinstance(exc, ApplyError):
        _err(f"Apply failed: {exc}", fg=fg)
        _partial_result(exc.result, fg=fg)
    elif isinstance(exc, ApplyCanceled):
        _err("Apply canceled.", fg=fg)
        _partial_result(exc.result, fg=fg)
    else:
        _err(f"Error: {exc}", fg=fg)

    return 1
