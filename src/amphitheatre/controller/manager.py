#!/usr/bin/env python3
"""
Controller - schedules reconcile passes for Playbooks.

The controller owns a watch task feeding its ResourceIndex, a resync task
re-queueing every known key periodically and ``workers`` tasks consuming
the WorkQueue. The queue guarantees a single in-flight pass per key; a
newer generation or a deletion observed while a pass is in flight sets
that pass's cancellation token. A Playbook marked for deletion is queued
once more so the reconciler can clean up and release its finalizer.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from amphitheatre.cluster.base import ClusterClient, WatchEvent
from amphitheatre.cluster.index import ResourceIndex
from amphitheatre.config.settings import ControllerConfig
from amphitheatre.controller.queue import WorkQueue
from amphitheatre.controller.reconciler import ReconcileAction, Reconciler
from amphitheatre.core.constants import APPLICATION_KIND
from amphitheatre.core.errors import (
    AmphitheatreError,
    ValidationError,
    create_error_context,
    handle_error,
)
from amphitheatre.resources.types import Application
from amphitheatre.workflow.cancellation import CancellationToken

logger = logging.getLogger(__name__)

WATCH_RETRY_DELAY = 5.0


class Controller:
    """Runs the Reconciler for every Playbook in scope."""

    def __init__(self, cluster: ClusterClient, reconciler: Reconciler, config: ControllerConfig):
        self.cluster = cluster
        self.reconciler = reconciler
        self.config = config
        self.index = ResourceIndex()
        self.queue = WorkQueue()
        self.tokens: Dict[str, CancellationToken] = {}
        self._tasks: List[asyncio.Task] = []

    @property
    def scope(self) -> str:
        return f"namespace {self.config.namespace}" if self.config.namespace else "all namespaces"

    async def sync_index(self) -> None:
        """List all Playbooks, reset the index and queue every key."""
        objects = await self.cluster.list(APPLICATION_KIND, self.config.namespace)
        self.index.replace(objects)
        for key in self.index.keys():
            self.queue.add(key)
        logger.info("Indexed %d playbook(s) in %s", len(objects), self.scope)

    def handle_event(self, event: WatchEvent) -> None:
        key = event.object.key
        previous = self.index.ingest(event)

        if event.type == "DELETED":
            self.cancel(key, f"{key} was deleted")
            self.queue.forget(key)
            return
        if event.object.deleting:
            # the finalizer keeps the object until the cleanup pass releases it
            if previous is None or not previous.deleting:
                self.cancel(key, f"{key} was deleted")
            self.queue.add(key)
            return
        if previous is None:
            self.queue.add(key)
        elif event.object.generation != previous.generation:
            self.cancel(key, f"{key} superseded by generation {event.object.generation}")
            self.queue.add(key)
        # status-only updates (our own writes included) need no pass

    def cancel(self, key: str, reason: str) -> None:
        token = self.tokens.get(key)
        if token is not None and not token.cancelled:
            logger.info("Cancelling in-flight pass: %s", reason)
            token.cancel(reason)

    async def process(self, key: str) -> Optional[ReconcileAction]:
        """Run one reconcile pass for a key and schedule the follow-up."""
        indexed = self.index.get(key)
        if indexed is None:
            return None

        token = CancellationToken()
        self.tokens[key] = token
        try:
            current = await self.cluster.get(APPLICATION_KIND, indexed.namespace, indexed.name)
            if current is None:
                return None
            try:
                app = Application.from_object(current.manifest)
            except ValidationError as e:
                handle_error(e, context=create_error_context(operation="parse_playbook", resource=key))
                return None
            action = await self.reconciler.reconcile(app, token)
        except AmphitheatreError as e:
            logger.warning("Reconcile of %s failed: %s", key, e)
            action = ReconcileAction.requeue(self.config.error_requeue, str(e))
        except Exception as e:
            logger.exception("Unexpected error reconciling %s: %s", key, e)
            action = ReconcileAction.requeue(self.config.error_requeue, type(e).__name__)
        finally:
            self.tokens.pop(key, None)

        if action.requeue_after is not None:
            logger.debug("Requeue %s in %.1fs (%s)", key, action.requeue_after, action.reason)
            self.queue.add_after(key, action.requeue_after)
        return action

    async def _worker(self, number: int) -> None:
        while True:
            key = await self.queue.get()
            try:
                await self.process(key)
            finally:
                self.queue.done(key)

    async def _watch(self) -> None:
        while True:
            try:
                async for event in self.cluster.watch(APPLICATION_KIND, self.config.namespace):
                    self.handle_event(event)
                # server closed the stream; relist so nothing is missed
                await self.sync_index()
            except AmphitheatreError as e:
                logger.warning("Watch of playbooks interrupted: %s", e)
                await asyncio.sleep(WATCH_RETRY_DELAY)
                try:
                    await self.sync_index()
                except AmphitheatreError as relist_error:
                    logger.warning("Relisting playbooks failed: %s", relist_error)

    async def _resync(self) -> None:
        while True:
            await asyncio.sleep(self.config.resync_interval)
            for key in self.index.keys():
                # keys waiting out a backoff keep their schedule
                if not self.queue.scheduled(key):
                    self.queue.add(key)

    async def run(self, stop: Optional[asyncio.Event] = None) -> None:
        """
        Run until ``stop`` is set (or forever).

        Raises:
            ClusterUnavailableError: The initial listing failed.
        """
        await self.sync_index()
        self._tasks = [
            asyncio.create_task(self._watch(), name="amp-watch"),
            asyncio.create_task(self._resync(), name="amp-resync"),
        ] + [
            asyncio.create_task(self._worker(i), name=f"amp-worker-{i}")
            for i in range(self.config.workers)
        ]
        logger.info("Controller started with %d worker(s) for %s", self.config.workers, self.scope)
        try:
            if stop is None:
                await asyncio.gather(*self._tasks)
            else:
                await stop.wait()
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        self.queue.shutdown()
        for key in list(self.tokens):
            self.cancel(key, "controller shutting down")
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Controller stopped")
