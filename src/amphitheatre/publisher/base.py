#!/usr/bin/env python3
"""
Event publisher interface.

Publishing is a side channel: a failing publisher must never fail or block
reconciliation, so the reconciler always goes through ``safe_publish``.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

import logging
from abc import ABC, abstractmethod
from typing import List

from amphitheatre.resources.types import Phase, StatusCondition

logger = logging.getLogger(__name__)


class EventPublisher(ABC):
    """Receives every new status condition of an Application or Actor."""

    @abstractmethod
    async def publish(self, resource_id: str, phase: Phase, condition: StatusCondition) -> None:
        """
        Publish one transition.

        Args:
            resource_id: ``namespace/playbook`` or ``namespace/playbook/actor``
            phase: Phase entered
            condition: The appended condition
        """


class LoggingEventPublisher(EventPublisher):
    """Writes transitions to the log."""

    def __init__(self, level: int = logging.INFO):
        self.level = level

    async def publish(self, resource_id: str, phase: Phase, condition: StatusCondition) -> None:
        logger.log(
            self.level,
            "%s -> %s (%s): %s",
            resource_id, phase.value, condition.reason, condition.message,
        )


class CompositePublisher(EventPublisher):
    """Fans a transition out to several publishers."""

    def __init__(self, publishers: List[EventPublisher]):
        self.publishers = list(publishers)

    async def publish(self, resource_id: str, phase: Phase, condition: StatusCondition) -> None:
        for publisher in self.publishers:
            await safe_publish(publisher, resource_id, phase, condition)


async def safe_publish(
    publisher: EventPublisher, resource_id: str, phase: Phase, condition: StatusCondition
) -> bool:
    """Publish and log any failure. Returns False if publishing failed."""
    try:
        await publisher.publish(resource_id, phase, condition)
        return True
    except Exception as e:
        logger.warning(
            "Publishing %s %s via %s failed: %s",
            resource_id, phase.value, type(publisher).__name__, e,
        )
        return False
