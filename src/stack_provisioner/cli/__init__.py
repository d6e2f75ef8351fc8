"""CLI application for stack-provisioner."""

from __future__ import annotations

import logging
import os
import sys

import typer

from stack_provisioner import __version__

app = typer.Typer(
    name="stack-provisioner",
    no_args_is_help=True,
    add_completion=False,
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"stack-provisioner {__version__}")
        raise typer.Exit


_LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"
_VALID_LEVELS = ("CRITICAL", "DEBUG", "ERROR", "INFO", "WARNING")


def _configure_logging(verbose: int) -> None:
    """Configure the package logger from ``-v`` flags or ``STACK_LOG``.

    Without either, logging stays unconfigured and the CLI is silent.
    """
    env_level = os.environ.get("STACK_LOG", "").upper()
    if env_level:
        if env_level not in _VALID_LEVELS:
            print(
                f"WARNING: invalid STACK_LOG level '{env_level}', "
                f"expected one of {', '.join(_VALID_LEVELS)}; using INFO",
                file=sys.stderr,
            )
            env_level = "INFO"
        level = getattr(logging, env_level)
    elif verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        return
    logging.basicConfig(level=logging.WARNING, format=_LOG_FORMAT, stream=sys.stderr, force=True)
    logging.getLogger("stack_provisioner").setLevel(level)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase log verbosity (-v info, -vv debug).",
    ),
) -> None:
    """Plan and apply declarative cloud stacks in dependency order."""
    _ = version
    _configure_logging(verbose)


# Commands register themselves on ``app``.
from stack_provisioner.cli import commands as _commands  # noqa: E402, F401
