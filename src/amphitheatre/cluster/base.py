#!/usr/bin/env python3
"""
Cluster API collaborator interface.

The controller talks to the cluster through ``ClusterClient`` only. Objects
travel as plain manifest dictionaries wrapped in ``ClusterObject``; the
version token is ``metadata.resourceVersion``. Writes that carry a stale
version token fail with ``SyncConflictError`` which callers treat as
retryable.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

from amphitheatre.core.constants import API_GROUP_VERSION, APPLICATION_KIND, APPLICATION_PLURAL


@dataclass(frozen=True)
class KindInfo:
    """How to address one resource kind on the cluster API."""

    kind: str
    api_version: str
    plural: str
    namespaced: bool = True


KINDS: Dict[str, KindInfo] = {
    APPLICATION_KIND: KindInfo(APPLICATION_KIND, API_GROUP_VERSION, APPLICATION_PLURAL),
    "Deployment": KindInfo("Deployment", "apps/v1", "deployments"),
    "Service": KindInfo("Service", "v1", "services"),
    "Image": KindInfo("Image", "kpack.io/v1alpha2", "images"),
    "Event": KindInfo("Event", "v1", "events"),
    "Secret": KindInfo("Secret", "v1", "secrets"),
    "ServiceAccount": KindInfo("ServiceAccount", "v1", "serviceaccounts"),
}


def kind_info(kind: str) -> KindInfo:
    try:
        return KINDS[kind]
    except KeyError:
        raise ValueError(f"Unsupported resource kind: {kind}. Known: {', '.join(sorted(KINDS))}")


@dataclass
class ClusterObject:
    """A cluster resource as last observed."""

    manifest: Dict[str, Any] = field(default_factory=dict)

    @property
    def metadata(self) -> Dict[str, Any]:
        return self.manifest.get("metadata") or {}

    @property
    def kind(self) -> str:
        return self.manifest.get("kind", "")

    @property
    def name(self) -> str:
        return self.metadata.get("name", "")

    @property
    def namespace(self) -> str:
        return self.metadata.get("namespace", "")

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def version(self) -> Optional[str]:
        return self.metadata.get("resourceVersion")

    @property
    def generation(self) -> int:
        return int(self.metadata.get("generation", 0) or 0)

    @property
    def labels(self) -> Dict[str, str]:
        return self.metadata.get("labels") or {}

    @property
    def annotations(self) -> Dict[str, str]:
        return self.metadata.get("annotations") or {}

    @property
    def deleting(self) -> bool:
        return bool(self.metadata.get("deletionTimestamp"))


@dataclass(frozen=True)
class WatchEvent:
    """One change notification: ADDED, MODIFIED or DELETED."""

    type: str
    object: ClusterObject


class ClusterClient(ABC):
    """Asynchronous access to the cluster resource store."""

    @abstractmethod
    async def get(self, kind: str, namespace: str, name: str) -> Optional[ClusterObject]:
        """Fetch one object, or None when it does not exist."""

    @abstractmethod
    async def create(self, manifest: Dict[str, Any]) -> ClusterObject:
        """
        Create an object.

        Raises:
            SyncConflictError: The object already exists.
        """

    @abstractmethod
    async def update(self, manifest: Dict[str, Any], expected_version: Optional[str]) -> ClusterObject:
        """
        Replace an object guarded by its version token.

        Raises:
            SyncConflictError: The stored version differs from ``expected_version``.
        """

    @abstractmethod
    async def update_status(
        self, manifest: Dict[str, Any], expected_version: Optional[str]
    ) -> ClusterObject:
        """Replace the status subresource, guarded by the version token."""

    @abstractmethod
    async def delete(self, kind: str, namespace: str, name: str) -> bool:
        """Delete an object. Returns False if it was already gone."""

    @abstractmethod
    async def list(
        self,
        kind: str,
        namespace: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
    ) -> List[ClusterObject]:
        """List objects of a kind, optionally filtered by an equality label selector."""

    @abstractmethod
    def watch(self, kind: str, namespace: Optional[str] = None) -> AsyncIterator[WatchEvent]:
        """Stream change events for a kind until the server closes the watch."""


def label_selector(labels: Optional[Dict[str, str]]) -> Optional[str]:
    if not labels:
        return None
    return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
