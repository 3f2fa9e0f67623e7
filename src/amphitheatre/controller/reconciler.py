#!/usr/bin/env python3
"""
Reconciler - the per-Application state machine.

    Pending -> Resolving -> Building (layer by layer) -> Syncing -> Running -> Succeeded
                   \\______________________________________________/
                                          -> Failed

A pass recomputes the desired state from the current specs, so it is safe to
re-run from any phase. Layers run in resolver order; the actors of a layer
run concurrently and the next layer only starts once every actor of the
current layer got at least to Syncing. A failing actor stops the remaining
layers.

Failures with a retryable cause are retried with exponential backoff up to
``max_failure_retries`` passes; resolution and validation failures are
terminal for the generation and wait for a spec change.

Every Playbook carries a cleanup finalizer. Once it is marked for deletion
the pass deletes what its actors own instead and then releases the
finalizer.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from amphitheatre.builder.base import Builder
from amphitheatre.cluster.base import ClusterClient
from amphitheatre.config.settings import ControllerConfig
from amphitheatre.controller.actor import ActorWorkflow, Collaborators
from amphitheatre.controller.credentials import CredentialProvisioner
from amphitheatre.controller.status import StatusWriter, clear_actor
from amphitheatre.core import constants as C
from amphitheatre.core.errors import (
    AmphitheatreError,
    NotReadyError,
    ResolutionError,
    ResourceNotFoundError,
    SyncConflictError,
    ValidationError,
    is_recoverable,
)
from amphitheatre.publisher.base import EventPublisher, LoggingEventPublisher
from amphitheatre.resolver.graph import resolve
from amphitheatre.resources.types import Application, Phase
from amphitheatre.sync.engine import SyncEngine
from amphitheatre.sync.readiness import ReadinessProbe
from amphitheatre.sync.render import ManifestRenderer
from amphitheatre.sync.targets import TARGET_KINDS, Owner
from amphitheatre.workflow.cancellation import CancellationToken
from amphitheatre.workflow.engine import WorkflowEngine, WorkflowResult, WorkflowRun
from amphitheatre.workflow.steps import Step, StepName

logger = logging.getLogger(__name__)

# Phase entered when a step starts
STEP_PHASES = {
    StepName.RESOLVE_INPUTS: (Phase.RESOLVING, C.REASON_RESOLVING),
    StepName.BUILD: (Phase.BUILDING, C.REASON_BUILDING),
    StepName.SYNC: (Phase.SYNCING, C.REASON_SYNCING),
    StepName.VERIFY_READY: (Phase.RUNNING, C.REASON_RUNNING),
}

TERMINAL_REASONS = {C.REASON_RESOLUTION_FAILED, C.REASON_STEP_FAILED, C.REASON_RETRIES_EXHAUSTED}


@dataclass(frozen=True)
class ReconcileAction:
    """What the controller should do with the key after a pass."""

    requeue_after: Optional[float] = None
    reason: str = ""

    @classmethod
    def requeue(cls, after: float, reason: str = "") -> "ReconcileAction":
        return cls(requeue_after=max(0.0, after), reason=reason)

    @classmethod
    def await_change(cls, reason: str = "") -> "ReconcileAction":
        return cls(requeue_after=None, reason=reason)


class Reconciler:
    """Drives Applications toward their declared state."""

    def __init__(
        self,
        cluster: ClusterClient,
        builder: Builder,
        config: ControllerConfig,
        publisher: Optional[EventPublisher] = None,
        engine: Optional[WorkflowEngine] = None,
        renderer: Optional[ManifestRenderer] = None,
        probe: Optional[ReadinessProbe] = None,
    ):
        self.cluster = cluster
        self.config = config
        self.engine = engine or WorkflowEngine(config.max_concurrent_workflows)
        self.status = StatusWriter(cluster, publisher or LoggingEventPublisher())
        self.collaborators = Collaborators(
            builder=builder,
            sync=SyncEngine(cluster),
            renderer=renderer or ManifestRenderer(),
            probe=probe or ReadinessProbe(cluster),
        )
        # kinds to sweep when an actor disappears from the spec
        self.gc = SyncEngine(cluster, kinds=list(TARGET_KINDS) + list(builder.owned_kinds))
        self.credentials = CredentialProvisioner(cluster, config)

    async def reconcile(self, app: Application, token: CancellationToken) -> ReconcileAction:
        """
        Run one pass for an Application.

        Returns:
            ReconcileAction telling the controller when to come back
        """
        if app.deleting:
            return await self.finalize(app, token)
        if C.FINALIZER not in app.finalizers:
            await self._update_finalizers(app, token, add=True)
            if token.cancelled:
                return ReconcileAction.requeue(0, token.reason or "cancelled")

        status = app.status
        steady = False

        if app.spec_changed:
            logger.info("Reconciling %s generation %d", app.key, app.generation)
            status.observed_generation = app.generation
            status.retry_count = 0
            for actor_status in status.actors.values():
                actor_status.retry_count = 0
            await self.status.transition(
                app, Phase.PENDING, C.REASON_SPEC_CHANGED, f"Generation {app.generation} observed"
            )
            await self.status.flush(app, token)
        elif status.phase is Phase.FAILED:
            last = status.conditions[-1] if status.conditions else None
            if last is not None and last.reason in TERMINAL_REASONS:
                return ReconcileAction.await_change(f"{app.key} failed: {last.reason}")
            await self.status.transition(
                app, Phase.PENDING, C.REASON_RETRYING,
                f"Retry {status.retry_count}/{self.config.max_failure_retries}",
            )
        elif status.phase in (Phase.RUNNING, Phase.SUCCEEDED):
            steady = True

        if token.cancelled:
            return ReconcileAction.requeue(0, token.reason or "cancelled")

        if app.spec_error is not None:
            return await self._fail_terminal(app, token, C.REASON_RESOLUTION_FAILED, app.spec_error)

        if not steady and self.credentials.enabled:
            await self.credentials.ensure(app.namespace)

        if not steady:
            await self.status.transition(
                app, Phase.RESOLVING, C.REASON_RESOLVING, f"Resolving {len(app.actors)} actor(s)"
            )
        try:
            layers = resolve(app.actors)
        except (ResolutionError, ValidationError) as e:
            return await self._fail_terminal(app, token, C.REASON_RESOLUTION_FAILED, e)

        await self._collect_orphaned_actors(app)

        results: Dict[str, WorkflowResult] = {}
        for index, layer in enumerate(layers, start=1):
            if token.cancelled:
                break
            if not steady:
                await self.status.transition(
                    app, Phase.BUILDING, C.REASON_BUILDING,
                    f"Layer {index}/{len(layers)}: {', '.join(layer)}",
                )
            layer_results = await self._run_layer(app, layer, token, steady)
            results.update(layer_results)
            await self.status.flush(app, token)

            if any(r.cancelled for r in layer_results.values()) or token.cancelled:
                break
            failures = [r for r in layer_results.values() if r.failed and not _not_ready(r)]
            if failures:
                blocked = [name for later in layers[index:] for name in later]
                await self._block(app, blocked, failures)
                return await self._fail(app, token, failures)

        if token.cancelled or any(r.cancelled for r in results.values()):
            await self.status.transition(
                app, status.phase, C.REASON_CANCELLED, token.reason or "Workflow run cancelled"
            )
            await self.status.flush(app, token)
            return ReconcileAction.requeue(0, "cancelled")

        not_ready = sorted(name for name, r in results.items() if _not_ready(r))
        if not steady:
            await self.status.transition(
                app, Phase.SYNCING, C.REASON_SYNCED, f"All {len(results)} actor(s) synced"
            )
            await self.status.transition(
                app, Phase.RUNNING, C.REASON_RUNNING, f"All {len(results)} actor(s) verified"
            )

        if not_ready:
            await self.status.transition(
                app, Phase.RUNNING, C.REASON_NOT_READY, f"Waiting for {', '.join(not_ready)}"
            )
            await self.status.flush(app, token)
            return ReconcileAction.requeue(self.config.ready_requeue, "not ready")

        status.retry_count = 0
        await self.status.transition(
            app, Phase.SUCCEEDED, C.REASON_READY, f"All {len(results)} actor(s) ready"
        )
        await self.status.flush(app, token)
        return ReconcileAction.await_change("ready")

    async def finalize(self, app: Application, token: CancellationToken) -> ReconcileAction:
        """
        Tear down a Playbook marked for deletion.

        The Sync Targets and built Images of every actor (declared, recorded
        in status or found by label) are deleted before the finalizer is
        released. An incomplete cleanup keeps the finalizer and retries.
        """
        if C.FINALIZER not in app.finalizers:
            return ReconcileAction.await_change("deleted")

        owned = await self.gc.owned_actors(app.namespace, app.name)
        names = owned | set(app.status.actors) | {actor.name for actor in app.actors}
        incomplete = []
        for name in sorted(names):
            owner = Owner(namespace=app.namespace, application=app.name, actor=name)
            result = await self.gc.reconcile([], owner)
            if not result.ok:
                incomplete.append(f"{name} ({result.summary()})")
            elif result.writes:
                logger.info("Cleaned up actor %s: %s", owner, result.summary())
        if incomplete:
            logger.warning("Cleanup of %s incomplete: %s", app.key, ", ".join(incomplete))
            return ReconcileAction.requeue(self.config.error_requeue, "cleanup incomplete")

        await self._update_finalizers(app, token, add=False)
        logger.info("Finalized %s", app.key)
        return ReconcileAction.await_change("finalized")

    async def _update_finalizers(self, app: Application, token: CancellationToken, add: bool) -> bool:
        """
        Add or release the cleanup finalizer on the Playbook.

        A version conflict reloads the object and retries once. While adding,
        a reload that shows a deletion or a newer generation cancels the pass
        instead.

        Returns:
            False if the object is gone or the pass was cancelled.
        """
        manifest, version = app.raw, app.resource_version
        for attempt in (1, 2):
            metadata = dict(manifest.get("metadata") or {})
            finalizers = [f for f in metadata.get("finalizers") or [] if f != C.FINALIZER]
            if add:
                finalizers.append(C.FINALIZER)
            metadata["finalizers"] = finalizers
            body = {k: v for k, v in manifest.items() if k != "status"}
            body["metadata"] = metadata
            try:
                updated = await self.cluster.update(body, version)
            except ResourceNotFoundError:
                if add:
                    token.cancel(f"{app.key} was deleted")
                return False
            except SyncConflictError:
                if attempt == 2:
                    raise
                current = await self.cluster.get(C.APPLICATION_KIND, app.namespace, app.name)
                if add and (current is None or current.deleting):
                    token.cancel(f"{app.key} was deleted")
                    return False
                if current is None:
                    return False
                if add and current.generation != app.generation:
                    token.cancel(f"{app.key} superseded by generation {current.generation}")
                    return False
                manifest, version = current.manifest, current.version
                continue
            app.resource_version = updated.version
            app.raw = updated.manifest
            return True
        return False

    async def _run_layer(
        self, app: Application, layer: List[str], token: CancellationToken, steady: bool
    ) -> Dict[str, WorkflowResult]:
        runs = {
            name: ActorWorkflow(app, app.actor(name), self.collaborators).steps(self.config)
            for name in layer
        }

        async def on_step(run: WorkflowRun, step: Step) -> None:
            if steady:
                return
            phase, reason = STEP_PHASES[step.name]
            await self.status.transition_actor(
                app, run.actor, phase, reason, f"Step {step.name.value} started"
            )

        results = await self.engine.run_layer(runs, token, on_step=on_step)
        for name, result in sorted(results.items()):
            await self._record_result(app, name, result)
        return results

    async def _record_result(self, app: Application, actor: str, result: WorkflowResult) -> None:
        actor_status = app.actor_status(actor)
        if result.succeeded:
            actor_status.retry_count = 0
            await self.status.transition_actor(
                app, actor, Phase.SUCCEEDED, C.REASON_READY, result.data.get("readiness", "ready")
            )
        elif _not_ready(result):
            await self.status.transition_actor(
                app, actor, Phase.RUNNING, C.REASON_NOT_READY, str(result.cause)
            )
        elif result.failed:
            actor_status.retry_count += 1
            await self.status.transition_actor(
                app, actor, Phase.FAILED, C.REASON_STEP_FAILED,
                f"Step {result.failed_step.value} failed after "
                f"{result.attempts.get(result.failed_step, 0)} attempt(s): {result.cause}",
            )

    async def _block(self, app: Application, blocked: List[str],
                     failures: List[WorkflowResult]) -> None:
        culprits = ", ".join(sorted(r.actor for r in failures))
        for name in blocked:
            await self.status.transition_actor(
                app, name, Phase.PENDING, C.REASON_BLOCKED, f"Waiting for {culprits}"
            )

    async def _fail(self, app: Application, token: CancellationToken,
                    failures: List[WorkflowResult]) -> ReconcileAction:
        status = app.status
        message = "; ".join(str(r) for r in sorted(failures, key=lambda r: r.actor))
        retryable = all(r.cause is not None and is_recoverable(r.cause) for r in failures)

        if not retryable:
            await self.status.transition(app, Phase.FAILED, C.REASON_STEP_FAILED, message)
            await self.status.flush(app, token)
            return ReconcileAction.await_change("unrecoverable failure")

        if status.retry_count >= self.config.max_failure_retries:
            await self.status.transition(
                app, Phase.FAILED, C.REASON_RETRIES_EXHAUSTED,
                f"Gave up after {status.retry_count} retries: {message}",
            )
            await self.status.flush(app, token)
            return ReconcileAction.await_change("retries exhausted")

        status.retry_count += 1
        delay = self.config.failure_backoff.delay(status.retry_count)
        await self.status.transition(
            app, Phase.FAILED, C.REASON_RETRYING,
            f"{message} (retry {status.retry_count}/{self.config.max_failure_retries} "
            f"in {delay:.0f}s)",
        )
        await self.status.flush(app, token)
        return ReconcileAction.requeue(delay, "retrying")

    async def _fail_terminal(self, app: Application, token: CancellationToken,
                             reason: str, error: AmphitheatreError) -> ReconcileAction:
        logger.warning("%s cannot be reconciled: %s", app.key, error)
        await self.status.transition(app, Phase.FAILED, reason, str(error))
        await self.status.flush(app, token)
        return ReconcileAction.await_change(reason)

    async def _collect_orphaned_actors(self, app: Application) -> None:
        """Remove targets and status of actors no longer in the spec."""
        declared = {actor.name for actor in app.actors}
        owned = await self.gc.owned_actors(app.namespace, app.name)
        for name in sorted((owned | set(app.status.actors)) - declared):
            owner = Owner(namespace=app.namespace, application=app.name, actor=name)
            result = await self.gc.reconcile([], owner)
            if not result.ok:
                logger.warning("Cleanup of removed actor %s incomplete: %s", owner, result.summary())
                continue
            if result.writes:
                logger.info("Removed actor %s: %s", owner, result.summary())
            clear_actor(app, name)


def _not_ready(result: WorkflowResult) -> bool:
    return (
        result.failed
        and result.failed_step is StepName.VERIFY_READY
        and isinstance(result.cause, NotReadyError)
    )
