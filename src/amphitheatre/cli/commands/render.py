#!/usr/bin/env python3
"""
Render command for the amphitheatre CLI

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

from pathlib import Path
from typing import Annotated, List, Optional

import typer
import yaml

from amphitheatre.builder.kpack import image_tag
from amphitheatre.config import load_config
from amphitheatre.core.errors import (
    ConfigurationError,
    ResolutionError,
    ValidationError,
    handle_error,
)
from amphitheatre.resolver.graph import resolve as resolve_layers
from amphitheatre.sync.render import ManifestRenderer

from ..constants import ExitCode
from ..utils import load_application_or_exit, setup_logging


def render(
    file: Annotated[Path, typer.Argument(help="Playbook file (YAML or JSON)")],
    actor: Annotated[
        List[str], typer.Option("--actor", "-a", help="Only render these actors (repeatable)")
    ] = [],
    namespace: Annotated[
        Optional[str], typer.Option("--namespace", "-n", help="Override the Playbook namespace")
    ] = None,
    config_file: Annotated[
        Optional[Path], typer.Option("--config", help="Controller configuration file")
    ] = None,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Enable verbose logging")
    ] = False,
) -> None:
    """
    📄 Print the manifests the controller would apply for a Playbook.

    Actors built from source are rendered with the registry tag their
    build would produce.
    """
    setup_logging(verbose)
    app = load_application_or_exit(file, namespace)

    try:
        config = load_config(config_file)
        layers = resolve_layers(app.actors)
    except ResolutionError as e:
        handle_error(e)
        raise typer.Exit(ExitCode.RESOLUTION_FAILURE)
    except (ConfigurationError, ValidationError) as e:
        handle_error(e)
        raise typer.Exit(ExitCode.INVALID_ARGS)

    unknown = sorted(set(actor) - {a.name for a in app.actors})
    if unknown:
        typer.echo(f"Unknown actor(s): {', '.join(unknown)}", err=True)
        raise typer.Exit(ExitCode.INVALID_ARGS)

    renderer = ManifestRenderer()
    manifests = []
    for name in (n for layer in layers for n in layer):
        if actor and name not in actor:
            continue
        spec = app.actor(name)
        image = image_tag(config.registry, spec) if spec.needs_build else spec.image
        digest = spec.source.digest if spec.needs_build else None
        manifests.extend(t.manifest for t in renderer.render(app, spec, image, digest))

    typer.echo(yaml.safe_dump_all(manifests, sort_keys=False), nl=False)
