#!/usr/bin/env python3
"""
Resolve command for the amphitheatre CLI

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

from pathlib import Path
from typing import Annotated, Optional

import typer

from amphitheatre.core.errors import ResolutionError, ValidationError, handle_error
from amphitheatre.resolver.graph import resolve as resolve_layers

from ..constants import ExitCode
from ..utils import console, display_layers_table, load_application_or_exit, setup_logging


def resolve(
    file: Annotated[Path, typer.Argument(help="Playbook file (YAML or JSON)")],
    namespace: Annotated[
        Optional[str], typer.Option("--namespace", "-n", help="Override the Playbook namespace")
    ] = None,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Enable verbose logging")
    ] = False,
) -> None:
    """
    🔗 Print the dependency layers of a Playbook.

    Actors in the same layer are deployed concurrently; each layer only
    starts once the previous one is synced.
    """
    setup_logging(verbose)
    app = load_application_or_exit(file, namespace)

    try:
        layers = resolve_layers(app.actors)
    except ResolutionError as e:
        handle_error(e)
        raise typer.Exit(ExitCode.RESOLUTION_FAILURE)
    except ValidationError as e:
        handle_error(e)
        raise typer.Exit(ExitCode.INVALID_ARGS)

    display_layers_table(app, layers)
    console.print(
        f"✅ [bold green]{len(app.actors)} actor(s) in {len(layers)} layer(s)[/bold green]"
    )
