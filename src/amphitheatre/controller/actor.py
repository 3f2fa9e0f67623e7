#!/usr/bin/env python3
"""
Step functions of an actor's Workflow Run.

Every step is idempotent: it recomputes what it needs from the current
ActorSpec and the actor's persisted status rather than trusting work done
by an earlier, possibly interrupted, pass.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

import logging
from dataclasses import dataclass
from typing import List

from amphitheatre.builder.base import Builder
from amphitheatre.core.errors import NotReadyError, WorkflowError, create_error_context
from amphitheatre.resources.hashing import content_hash
from amphitheatre.resources.types import ActorSpec, Application, Phase
from amphitheatre.sync.engine import SyncEngine
from amphitheatre.sync.readiness import ReadinessProbe
from amphitheatre.sync.render import ManifestRenderer
from amphitheatre.sync.targets import Owner
from amphitheatre.config.settings import ControllerConfig
from amphitheatre.workflow.engine import WorkflowRun
from amphitheatre.workflow.steps import STEP_ORDER, Step, StepName

logger = logging.getLogger(__name__)


@dataclass
class Collaborators:
    """External collaborators shared by every Workflow Run."""

    builder: Builder
    sync: SyncEngine
    renderer: ManifestRenderer
    probe: ReadinessProbe


class ActorWorkflow:
    """Binds the four steps to one actor of one Application."""

    def __init__(self, app: Application, actor: ActorSpec, collaborators: Collaborators):
        self.app = app
        self.actor = actor
        self.collaborators = collaborators

    @property
    def owner(self) -> Owner:
        return Owner(namespace=self.app.namespace, application=self.app.name, actor=self.actor.name)

    def steps(self, config: ControllerConfig) -> List[Step]:
        funcs = {
            StepName.RESOLVE_INPUTS: self.resolve_inputs,
            StepName.BUILD: self.build,
            StepName.SYNC: self.sync,
            StepName.VERIFY_READY: self.verify_ready,
        }
        return [
            Step(name=name, func=funcs[name], timeout=config.step(name).timeout,
                 policy=config.step(name).policy)
            for name in STEP_ORDER
        ]

    async def resolve_inputs(self, run: WorkflowRun) -> None:
        """Check dependencies and decide whether a build is needed."""
        for dep in self.actor.dependencies:
            dep_status = self.app.status.actors.get(dep)
            if dep_status is None or not dep_status.phase.at_least(Phase.SYNCING):
                phase = dep_status.phase.value if dep_status else "unknown"
                raise WorkflowError(
                    f"Dependency {dep} of {self.actor.name} is not synced (phase {phase})",
                    step=StepName.RESOLVE_INPUTS.value,
                    context=create_error_context(application=self.app.key, actor=self.actor.name),
                )

        status = self.app.actor_status(self.actor.name)
        if not self.actor.needs_build:
            run.data.update(image=self.actor.image, source_digest=None, build=False)
            return

        digest = self.actor.source.digest
        rebuild = self.actor.live or not status.image_ref or status.source_digest != digest
        run.data.update(image=status.image_ref, source_digest=digest, build=rebuild)
        if not rebuild:
            logger.debug("Image of %s is current (%s)", self.actor.name, status.image_ref)

    async def build(self, run: WorkflowRun) -> None:
        if not run.data.get("build"):
            return
        image = await self.collaborators.builder.build(self.actor, run.token, self.app)
        status = self.app.actor_status(self.actor.name)
        status.image_ref = image
        status.source_digest = run.data["source_digest"]
        run.data["image"] = image

    async def sync(self, run: WorkflowRun) -> None:
        targets = self.collaborators.renderer.render(
            self.app, self.actor, run.data["image"], run.data.get("source_digest")
        )
        result = await self.collaborators.sync.reconcile(targets, self.owner)
        result.raise_for_failures()
        if result.writes:
            logger.info("Synced %s: %s", self.owner, result.summary())
        self.app.actor_status(self.actor.name).last_applied_hash = content_hash(
            [t.content_hash for t in targets]
        )
        run.data["targets"] = targets

    async def verify_ready(self, run: WorkflowRun) -> None:
        probe = await self.collaborators.probe.check(run.data.get("targets") or [])
        run.data["readiness"] = probe.message
        if not probe.ready:
            raise NotReadyError(
                f"{self.actor.name} not ready: {probe.message}",
                context=create_error_context(application=self.app.key, actor=self.actor.name),
            )
