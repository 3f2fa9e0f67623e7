#!/usr/bin/env python3
"""
Readiness probe over an actor's Sync Targets.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

from dataclasses import dataclass, field
from typing import List

from amphitheatre.cluster.base import ClusterClient
from amphitheatre.sync.targets import SyncTarget


@dataclass
class ProbeResult:
    ready: bool
    messages: List[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        return "; ".join(self.messages)


class ReadinessProbe:
    """Asks every target variant whether its observed object is healthy."""

    def __init__(self, cluster: ClusterClient):
        self.cluster = cluster

    async def check(self, targets: List[SyncTarget]) -> ProbeResult:
        result = ProbeResult(ready=True)
        for target in targets:
            observed = await self.cluster.get(target.kind, target.namespace, target.name)
            ready, message = target.is_ready(observed)
            if not ready:
                result.ready = False
                result.messages.append(message)
        if result.ready:
            result.messages.append(f"{len(targets)} target(s) ready")
        return result
