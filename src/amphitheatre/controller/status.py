#!/usr/bin/env python3
"""
Status transitions and flushing for one Application.

The reconciler is the single writer of an Application's status. Phase
changes append a condition (deduplicated against the log) and are
published; the accumulated status is written back with the object's
version token.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

import logging
from typing import Optional

from amphitheatre.cluster.base import ClusterClient
from amphitheatre.core.constants import APPLICATION_KIND
from amphitheatre.core.errors import ClusterUnavailableError, SyncConflictError
from amphitheatre.publisher.base import EventPublisher, safe_publish
from amphitheatre.resources.conditions import append_condition
from amphitheatre.resources.types import ActorStatus, Application, ApplicationStatus, Phase
from amphitheatre.workflow.cancellation import CancellationToken
from amphitheatre.workflow.retry import RetryPolicy, RetryStrategy, retry_async

logger = logging.getLogger(__name__)

_UNAVAILABLE_RETRY = RetryPolicy(
    max_attempts=3, strategy=RetryStrategy.EXPONENTIAL_BACKOFF, base_delay=0.5, max_delay=5.0
)


class StatusWriter:
    """Records transitions of one Application and its actors."""

    def __init__(self, cluster: ClusterClient, publisher: EventPublisher):
        self.cluster = cluster
        self.publisher = publisher

    async def transition(
        self, app: Application, phase: Phase, reason: str, message: str
    ) -> bool:
        """Move the Application to ``phase``. Returns True if a condition was appended."""
        return await self._record(app.key, app.status, app.generation, phase, reason, message)

    async def transition_actor(
        self, app: Application, actor: str, phase: Phase, reason: str, message: str
    ) -> bool:
        status = app.actor_status(actor)
        return await self._record(f"{app.key}/{actor}", status, app.generation, phase, reason, message)

    async def _record(self, resource_id: str, status, generation: int,
                      phase: Phase, reason: str, message: str) -> bool:
        status.phase = phase
        condition = append_condition(status.conditions, phase, reason, message, generation)
        if condition is None:
            return False
        logger.debug("%s -> %s (%s)", resource_id, phase.value, reason)
        await safe_publish(self.publisher, resource_id, phase, condition)
        return True

    @staticmethod
    def dirty(app: Application) -> bool:
        return app.status.to_dict() != ApplicationStatus.from_dict(app.raw.get("status")).to_dict()

    async def flush(self, app: Application, token: Optional[CancellationToken] = None) -> bool:
        """
        Write the status if it changed since the last write.

        On a version conflict the object is reloaded. If its generation moved
        on, the pass is superseded: the token is cancelled and nothing is
        written. Otherwise the status is re-applied once on the fresh version.

        Returns:
            True if the status is persisted (or nothing needed writing).

        Raises:
            SyncConflictError: The re-applied write conflicted again.
            ClusterUnavailableError: The cluster stayed unreachable.
        """
        if not self.dirty(app):
            return True
        try:
            await self._write(app)
            return True
        except SyncConflictError:
            logger.info("Status of %s conflicted, reloading", app.key)

        current = await self.cluster.get(APPLICATION_KIND, app.namespace, app.name)
        if current is None or current.deleting:
            if token is not None:
                token.cancel(f"{app.key} was deleted")
            return False
        if current.generation != app.generation:
            if token is not None:
                token.cancel(f"{app.key} superseded by generation {current.generation}")
            return False
        app.resource_version = current.version
        await self._write(app)
        return True

    @retry_async(_UNAVAILABLE_RETRY, exceptions=(ClusterUnavailableError,))
    async def _write(self, app: Application) -> None:
        updated = await self.cluster.update_status(app.to_object(), app.resource_version)
        app.resource_version = updated.version
        app.raw = updated.manifest


def clear_actor(app: Application, actor: str) -> Optional[ActorStatus]:
    return app.status.actors.pop(actor, None)
