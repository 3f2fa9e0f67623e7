#!/usr/bin/env python3
"""
Publish transitions as core/v1 Events attached to the Playbook.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

from typing import Any, Dict

from amphitheatre.cluster.base import ClusterClient
from amphitheatre.core.constants import API_GROUP_VERSION, APPLICATION_KIND, FIELD_MANAGER
from amphitheatre.resources.hashing import content_hash
from amphitheatre.resources.types import Phase, StatusCondition
from amphitheatre.publisher.base import EventPublisher


class KubernetesEventPublisher(EventPublisher):
    """Creates one Event per transition, visible with ``kubectl describe``."""

    def __init__(self, cluster: ClusterClient, component: str = FIELD_MANAGER):
        self.cluster = cluster
        self.component = component

    def event(self, resource_id: str, phase: Phase, condition: StatusCondition) -> Dict[str, Any]:
        parts = resource_id.split("/")
        if len(parts) not in (2, 3):
            raise ValueError(f"Malformed resource id: {resource_id}")
        namespace, playbook = parts[0], parts[1]
        subject = f"actor {parts[2]}" if len(parts) == 3 else "playbook"
        # deterministic name so a replayed transition collides instead of duplicating
        suffix = content_hash([resource_id, condition.to_dict()])[:10]
        return {
            "apiVersion": "v1",
            "kind": "Event",
            "metadata": {"name": f"{playbook}.{suffix}", "namespace": namespace},
            "involvedObject": {
                "apiVersion": API_GROUP_VERSION,
                "kind": APPLICATION_KIND,
                "name": playbook,
                "namespace": namespace,
                "fieldPath": f"status.actors.{parts[2]}" if len(parts) == 3 else "",
            },
            "reason": condition.reason,
            "message": f"{subject} {phase.value}: {condition.message}",
            "type": "Warning" if phase is Phase.FAILED else "Normal",
            "source": {"component": self.component},
            "firstTimestamp": condition.timestamp,
            "lastTimestamp": condition.timestamp,
            "count": 1,
        }

    async def publish(self, resource_id: str, phase: Phase, condition: StatusCondition) -> None:
        await self.cluster.create(self.event(resource_id, phase, condition))
