#!/usr/bin/env python3
"""
Local view of watched resources.

Each controller owns one ``ResourceIndex`` fed by its watch stream. There
is no process-wide cache: the index only answers "which keys exist" and
"what generation did we last see" for scheduling decisions. Reconcilers
always load the authoritative object from the cluster.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

import threading
from typing import Dict, List, Optional

from amphitheatre.cluster.base import ClusterObject, WatchEvent


class ResourceIndex:
    """In-process index keyed by ``namespace/name``."""

    def __init__(self):
        self._objects: Dict[str, ClusterObject] = {}
        self._lock = threading.RLock()

    def ingest(self, event: WatchEvent) -> Optional[ClusterObject]:
        """
        Apply a watch event.

        Returns:
            The previously indexed object for the key, if any.
        """
        key = event.object.key
        with self._lock:
            previous = self._objects.get(key)
            if event.type == "DELETED":
                self._objects.pop(key, None)
            else:
                self._objects[key] = event.object
            return previous

    def replace(self, objects: List[ClusterObject]) -> None:
        """Reset the index from a full list (initial sync)."""
        with self._lock:
            self._objects = {obj.key: obj for obj in objects}

    def get(self, key: str) -> Optional[ClusterObject]:
        with self._lock:
            return self._objects.get(key)

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._objects)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._objects

    def __len__(self) -> int:
        with self._lock:
            return len(self._objects)
