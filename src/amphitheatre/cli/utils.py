#!/usr/bin/env python3
"""
Utility functions for the amphitheatre CLI

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

import logging
from pathlib import Path
from typing import List, Optional

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from amphitheatre.core.constants import APPLICATION_KIND
from amphitheatre.core.errors import (
    ErrorHandler,
    ValidationError,
    create_error_context,
    handle_error,
    set_error_handler,
)
from amphitheatre.resources.types import Application
from .constants import ExitCode


# Initialize Rich console
console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Setup Rich logging configuration and unified error handler."""
    log_level = logging.DEBUG if verbose else logging.INFO

    rich_handler = RichHandler(
        console=console,
        show_time=True,
        show_path=verbose,
        markup=False,
        rich_tracebacks=True,
    )

    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[rich_handler],
        force=True,
    )
    # the kubernetes client logs every request at DEBUG
    logging.getLogger("kubernetes").setLevel(logging.INFO if verbose else logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    error_handler = ErrorHandler(console=console, verbose=verbose)
    set_error_handler(error_handler)


def load_application_file(path: Path, namespace: Optional[str] = None) -> Application:
    """
    Load a Playbook from a YAML or JSON file.

    The file may hold several documents; the first Playbook is used.

    Raises:
        ValidationError: If the file holds no usable Playbook
    """
    context = create_error_context(operation="load_playbook", file_path=str(path))
    try:
        with open(path, "r") as f:
            documents = [d for d in yaml.safe_load_all(f) if d]
    except (OSError, yaml.YAMLError) as e:
        raise ValidationError(f"Cannot read {path}: {e}", context=context, cause=e)

    for document in documents:
        if isinstance(document, dict) and document.get("kind", APPLICATION_KIND) == APPLICATION_KIND:
            if namespace:
                document.setdefault("metadata", {})["namespace"] = namespace
            return Application.from_object(document)

    raise ValidationError(
        f"No {APPLICATION_KIND} found in {path}",
        context=context,
        suggestions=[f"The file needs a document with kind: {APPLICATION_KIND}"],
    )


def load_application_or_exit(path: Path, namespace: Optional[str] = None) -> Application:
    """Load a Playbook and exit with INVALID_ARGS if it is unusable."""
    try:
        app = load_application_file(path, namespace)
    except ValidationError as e:
        handle_error(e)
        raise typer.Exit(ExitCode.INVALID_ARGS)
    if app.spec_error is not None:
        handle_error(app.spec_error)
        raise typer.Exit(ExitCode.INVALID_ARGS)
    return app


def display_layers_table(app: Application, layers: List[List[str]]) -> None:
    """Display dependency layers with one row per actor."""
    table = Table(
        title=f"Dependency layers of {app.key}", show_header=True, header_style="bold magenta"
    )
    table.add_column("Layer", justify="right", style="dim")
    table.add_column("Actor", style="cyan")
    table.add_column("Depends on", style="yellow")
    table.add_column("Image")
    table.add_column("Build", justify="center")

    for number, layer in enumerate(layers, start=1):
        for name in layer:
            actor = app.actor(name)
            table.add_row(
                str(number),
                name,
                ", ".join(sorted(actor.dependencies)) or "-",
                actor.image,
                "🔨" if actor.needs_build else "-",
            )

    console.print(table)
