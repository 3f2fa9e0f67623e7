"""
Cluster API collaborator: interface, Kubernetes adapter and local index.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

from .base import KINDS, ClusterClient, ClusterObject, KindInfo, WatchEvent, kind_info
from .index import ResourceIndex

__all__ = [
    "KINDS",
    "ClusterClient",
    "ClusterObject",
    "KindInfo",
    "WatchEvent",
    "kind_info",
    "ResourceIndex",
]
