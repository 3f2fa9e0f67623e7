#!/usr/bin/env python3
"""
Run command for the amphitheatre CLI

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

import asyncio
from pathlib import Path
from typing import Annotated, Any, Dict, List, Optional

import typer
from rich.panel import Panel

from amphitheatre.builder.kpack import KpackBuilder
from amphitheatre.cluster.kubernetes import KubernetesCluster, load_api_client
from amphitheatre.config import ConfigLoader, ControllerConfig, load_config
from amphitheatre.controller.manager import Controller
from amphitheatre.controller.reconciler import Reconciler
from amphitheatre.core.errors import (
    AmphitheatreError,
    ClusterUnavailableError,
    ConfigurationError,
    handle_error,
)
from amphitheatre.publisher.base import CompositePublisher, EventPublisher, LoggingEventPublisher
from amphitheatre.publisher.kubernetes import KubernetesEventPublisher

from ..constants import ExitCode
from ..utils import console, setup_logging


def cli_overrides(
    assignments: List[str],
    namespace: Optional[str],
    workers: Optional[int],
    kubeconfig: Optional[str],
    context: Optional[str],
    in_cluster: bool,
) -> Dict[str, Any]:
    """Collect CLI values into the highest configuration layer."""
    overrides = ConfigLoader.parse_overrides(assignments)
    dedicated = {
        ("controller", "namespace"): namespace,
        ("controller", "workers"): workers,
        ("cluster", "kubeconfig"): kubeconfig,
        ("cluster", "context"): context,
        ("cluster", "in_cluster"): True if in_cluster else None,
    }
    for (section, key), value in dedicated.items():
        if value is not None:
            overrides.setdefault(section, {})[key] = value
    return overrides


def build_controller(config: ControllerConfig) -> Controller:
    """Wire the Kubernetes-backed collaborators into a Controller."""
    api_client = load_api_client(config.kubeconfig, config.context, config.in_cluster)
    cluster = KubernetesCluster(
        api_client,
        request_timeout=config.request_timeout,
        watch_timeout=config.watch_timeout,
    )
    builder = KpackBuilder(
        cluster,
        registry=config.registry,
        cluster_builder=config.cluster_builder,
        service_account=config.service_account,
        poll_interval=config.build_poll_interval,
    )
    publisher: EventPublisher = LoggingEventPublisher()
    if config.publish_events:
        publisher = CompositePublisher([publisher, KubernetesEventPublisher(cluster)])
    reconciler = Reconciler(cluster, builder, config, publisher=publisher)
    return Controller(cluster, reconciler, config)


def run(
    config_file: Annotated[
        Optional[Path], typer.Option("--config", "-c", help="Configuration file (YAML or JSON)")
    ] = None,
    namespace: Annotated[
        Optional[str], typer.Option("--namespace", "-n", help="Only watch this namespace")
    ] = None,
    workers: Annotated[
        Optional[int], typer.Option("--workers", "-w", help="Concurrent reconcile workers")
    ] = None,
    kubeconfig: Annotated[
        Optional[str], typer.Option("--kubeconfig", help="Path to a kubeconfig file")
    ] = None,
    context: Annotated[
        Optional[str], typer.Option("--context", help="kubeconfig context to use")
    ] = None,
    in_cluster: Annotated[
        bool, typer.Option("--in-cluster", help="Use the pod service account")
    ] = False,
    assignments: Annotated[
        List[str],
        typer.Option("--set", "-s", help="Override a setting, e.g. controller.resync_interval=60"),
    ] = [],
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Enable verbose logging")
    ] = False,
) -> None:
    """
    🎭 Start the controller and reconcile Playbooks until interrupted.
    """
    setup_logging(verbose)

    try:
        overrides = cli_overrides(assignments, namespace, workers, kubeconfig, context, in_cluster)
        config = load_config(config_file, overrides)
    except ConfigurationError as e:
        handle_error(e)
        raise typer.Exit(ExitCode.INVALID_ARGS)

    console.print(
        Panel(
            f"🎭 [bold cyan]Amphitheatre controller[/bold cyan]\n"
            f"Scope: [yellow]{config.namespace or 'all namespaces'}[/yellow]\n"
            f"Workers: [yellow]{config.workers}[/yellow], "
            f"concurrent workflows: [yellow]{config.max_concurrent_workflows}[/yellow]\n"
            f"Resync: [yellow]{config.resync_interval:.0f}s[/yellow]",
            title="Controller",
            border_style="blue",
        )
    )

    try:
        controller = build_controller(config)
        asyncio.run(controller.run())
    except ConfigurationError as e:
        handle_error(e)
        raise typer.Exit(ExitCode.INVALID_ARGS)
    except ClusterUnavailableError as e:
        handle_error(e, show_traceback=True)
        raise typer.Exit(ExitCode.CLUSTER_FAILURE)
    except AmphitheatreError as e:
        handle_error(e, show_traceback=True)
        raise typer.Exit(ExitCode.FAILURE)
