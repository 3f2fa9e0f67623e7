#!/usr/bin/env python3
"""
kpack builder.

Builds an actor by declaring a kpack ``Image`` resource in the Playbook's
namespace and waiting for kpack to report the resulting image. The Image
keeps a stable name per actor, so a new source revision updates the
existing resource and kpack schedules a rebuild. Images are pushed with the
configured ServiceAccount, which the controller provisions with the
registry credential when one is configured.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from amphitheatre.cluster.base import ClusterClient, ClusterObject
from amphitheatre.core.errors import BuildError, create_error_context
from amphitheatre.resources.types import ActorSpec, Application
from amphitheatre.sync.targets import Owner
from amphitheatre.workflow.cancellation import CancellationToken
from amphitheatre.builder.base import Builder

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY = "harbor.amp-system.svc.cluster.local/library"
DEFAULT_CLUSTER_BUILDER = "amp-default-cluster-builder"


def image_tag(registry: str, actor: ActorSpec) -> str:
    """Registry tag an actor's source is built into."""
    revision = actor.source.revision or actor.source.digest
    return f"{registry.rstrip('/')}/{actor.image}:{revision}"


def build_state(observed: ClusterObject) -> Tuple[Optional[bool], str]:
    """
    Interpret a kpack Image status.

    Returns:
        (True, image) when the current generation is built,
        (False, message) when the build failed,
        (None, message) while still building.
    """
    status = observed.manifest.get("status") or {}
    if int(status.get("observedGeneration", 0) or 0) < observed.generation:
        return None, "waiting for kpack to observe the latest spec"
    ready = next(
        (c for c in status.get("conditions") or [] if c.get("type") == "Ready"),
        None,
    )
    if ready is None:
        return None, "build scheduled"
    if ready.get("status") == "True" and status.get("latestImage"):
        return True, status["latestImage"]
    if ready.get("status") == "False":
        return False, ready.get("message") or ready.get("reason") or "build failed"
    return None, ready.get("message") or "building"


class KpackBuilder(Builder):
    """Builds images with kpack through the cluster API."""

    owned_kinds = ["Image"]

    def __init__(
        self,
        cluster: ClusterClient,
        registry: str = DEFAULT_REGISTRY,
        cluster_builder: str = DEFAULT_CLUSTER_BUILDER,
        service_account: str = "default",
        poll_interval: float = 5.0,
    ):
        self.cluster = cluster
        self.registry = registry.rstrip("/")
        self.cluster_builder = cluster_builder
        self.service_account = service_account
        self.poll_interval = poll_interval

    def manifest(self, app: Application, actor: ActorSpec) -> Dict[str, Any]:
        source: Dict[str, Any] = {
            "git": {
                "url": actor.source.repository,
                "revision": actor.source.revision or actor.source.reference or "HEAD",
            }
        }
        if actor.source.path:
            source["subPath"] = actor.source.path
        owner = Owner(namespace=app.namespace, application=app.name, actor=actor.name)
        return {
            "apiVersion": "kpack.io/v1alpha2",
            "kind": "Image",
            "metadata": {
                "name": actor.name,
                "namespace": app.namespace,
                "labels": dict(owner.labels),
                "ownerReferences": [app.owner_reference()],
            },
            "spec": {
                "tag": image_tag(self.registry, actor),
                "serviceAccountName": self.service_account,
                "builder": {"name": self.cluster_builder, "kind": "ClusterBuilder"},
                "source": source,
            },
        }

    async def _declare(self, manifest: Dict[str, Any]) -> None:
        metadata = manifest["metadata"]
        observed = await self.cluster.get("Image", metadata["namespace"], metadata["name"])
        if observed is None:
            logger.info("Creating kpack Image %s/%s", metadata["namespace"], metadata["name"])
            await self.cluster.create(manifest)
        elif observed.manifest.get("spec") != manifest["spec"]:
            logger.info("Updating kpack Image %s/%s", metadata["namespace"], metadata["name"])
            update = dict(observed.manifest)
            update["spec"] = manifest["spec"]
            await self.cluster.update(update, observed.version)

    async def build(self, actor: ActorSpec, token: CancellationToken, app: Application) -> str:
        if not actor.needs_build:
            return actor.image

        manifest = self.manifest(app, actor)
        await self._declare(manifest)

        name = manifest["metadata"]["name"]
        while True:
            token.raise_if_cancelled()
            observed = await self.cluster.get("Image", app.namespace, name)
            if observed is None:
                raise BuildError(
                    f"kpack Image {app.namespace}/{name} disappeared while building",
                    context=create_error_context(
                        operation="build", application=app.key, actor=actor.name
                    ),
                )
            state, detail = build_state(observed)
            if state is True:
                logger.info("Built %s: %s", actor.name, detail)
                return detail
            if state is False:
                raise BuildError(
                    f"Build of {actor.name} failed: {detail}",
                    context=create_error_context(
                        operation="build",
                        application=app.key,
                        actor=actor.name,
                        resource=f"Image/{name}",
                    ),
                    suggestions=[f"Inspect the build logs of kpack Image {app.namespace}/{name}"],
                )
            logger.debug("Waiting for build of %s: %s", actor.name, detail)
            await token.sleep(self.poll_interval)
