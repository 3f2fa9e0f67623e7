#!/usr/bin/env python3
"""
Typer application and console entry point.

``resolve`` and ``render`` work offline on a Playbook file; ``run`` starts
the controller against a cluster. Errors that escape a command are mapped
to the exit code of their category.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

import sys
from typing import Annotated, Optional

import typer

from amphitheatre import __version__
from amphitheatre.core.errors import (
    AmphitheatreError,
    ClusterRequestError,
    ClusterUnavailableError,
    ConfigurationError,
    ResolutionError,
    ValidationError,
    handle_error,
)

from .commands import render, resolve, run
from .constants import ExitCode
from .utils import console

app = typer.Typer(
    name="amphitheatre",
    help="🎭 Resolve, build and sync multi-actor Playbooks on Kubernetes",
    rich_markup_mode="rich",
    add_completion=False,
    no_args_is_help=True,
)

app.command()(resolve)
app.command()(render)
app.command()(run)


def _print_version(value: bool) -> None:
    if value:
        console.print(f"amphitheatre [green]{__version__}[/green]")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option("--version", callback=_print_version, is_eager=True, help="Show version and exit"),
    ] = None,
) -> None:
    """
    🎭 Amphitheatre controller
    """


def exit_code_for(error: BaseException) -> int:
    if isinstance(error, ResolutionError):
        return ExitCode.RESOLUTION_FAILURE
    if isinstance(error, (ClusterUnavailableError, ClusterRequestError)):
        return ExitCode.CLUSTER_FAILURE
    if isinstance(error, (ValidationError, ConfigurationError)):
        return ExitCode.INVALID_ARGS
    return ExitCode.FAILURE


def cli_main() -> None:
    """Console script entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n🛑 [yellow]Interrupted[/yellow]")
        sys.exit(ExitCode.FAILURE)
    except AmphitheatreError as e:
        handle_error(e)
        sys.exit(exit_code_for(e))
