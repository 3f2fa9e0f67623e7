#!/usr/bin/env python3
"""
Sync Targets: the cluster manifests derived from one actor.

The set of kinds the controller manages is closed. Each kind is a variant
of ``SyncTarget`` registered in ``TARGET_KINDS`` and selected by its kind
tag. Every variant implements the same capabilities: diff against an
observed object, apply (create or version-guarded replace), delete, and
report readiness.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Tuple, Type

from amphitheatre.cluster.base import ClusterClient, ClusterObject
from amphitheatre.core.constants import (
    ANNOTATION_CONTENT_HASH,
    LABEL_ACTOR,
    LABEL_APPLICATION,
    LABEL_MANAGED_BY,
    FIELD_MANAGER,
)
from amphitheatre.resources.hashing import content_hash


class TargetAction(Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    DELETED = "deleted"
    FAILED = "failed"


@dataclass(frozen=True)
class Owner:
    """Back-reference from a Sync Target to the actor that declares it."""

    namespace: str
    application: str
    actor: str

    @property
    def labels(self) -> Dict[str, str]:
        return {
            LABEL_MANAGED_BY: FIELD_MANAGER,
            LABEL_APPLICATION: self.application,
            LABEL_ACTOR: self.actor,
        }

    @property
    def application_labels(self) -> Dict[str, str]:
        return {LABEL_MANAGED_BY: FIELD_MANAGER, LABEL_APPLICATION: self.application}

    def __str__(self) -> str:
        return f"{self.namespace}/{self.application}/{self.actor}"


@dataclass
class SyncTarget:
    """Desired state of one cluster resource."""

    KIND: ClassVar[str] = ""

    manifest: Dict[str, Any]
    owner: Owner
    content_hash: str = field(init=False)

    def __post_init__(self):
        if self.manifest.get("kind") != self.KIND:
            raise ValueError(f"{type(self).__name__} expects kind {self.KIND}, got {self.manifest.get('kind')}")
        metadata = self.manifest.setdefault("metadata", {})
        metadata.setdefault("namespace", self.owner.namespace)
        labels = metadata.setdefault("labels", {})
        labels.update(self.owner.labels)
        annotations = metadata.setdefault("annotations", {})
        annotations.pop(ANNOTATION_CONTENT_HASH, None)
        self.content_hash = content_hash(self.manifest)
        annotations[ANNOTATION_CONTENT_HASH] = self.content_hash

    @property
    def kind(self) -> str:
        return self.KIND

    @property
    def name(self) -> str:
        return self.manifest["metadata"]["name"]

    @property
    def namespace(self) -> str:
        return self.manifest["metadata"]["namespace"]

    @property
    def identity(self) -> Tuple[str, str, str]:
        return (self.kind, self.namespace, self.name)

    def differs(self, observed: ClusterObject) -> bool:
        return observed.annotations.get(ANNOTATION_CONTENT_HASH) != self.content_hash

    def prepare_update(self, observed: ClusterObject) -> Dict[str, Any]:
        """Desired manifest merged with fields the cluster owns."""
        return copy.deepcopy(self.manifest)

    async def apply(self, cluster: ClusterClient, observed: Optional[ClusterObject]) -> TargetAction:
        if observed is None:
            await cluster.create(copy.deepcopy(self.manifest))
            return TargetAction.CREATED
        if not self.differs(observed):
            return TargetAction.UNCHANGED
        await cluster.update(self.prepare_update(observed), expected_version=observed.version)
        return TargetAction.UPDATED

    @classmethod
    async def delete(cls, cluster: ClusterClient, observed: ClusterObject) -> TargetAction:
        """Remove an observed object of this kind. Already-gone objects count as deleted."""
        await cluster.delete(cls.KIND or observed.kind, observed.namespace, observed.name)
        return TargetAction.DELETED

    def is_ready(self, observed: Optional[ClusterObject]) -> Tuple[bool, str]:
        if observed is None:
            return False, f"{self.kind} {self.name} not found"
        return True, f"{self.kind} {self.name} present"


class WorkloadTarget(SyncTarget):
    """The Deployment running an actor's containers."""

    KIND = "Deployment"

    def is_ready(self, observed: Optional[ClusterObject]) -> Tuple[bool, str]:
        if observed is None:
            return False, f"Deployment {self.name} not found"
        spec = observed.manifest.get("spec") or {}
        status = observed.manifest.get("status") or {}
        wanted = spec.get("replicas", 1)
        if int(status.get("observedGeneration", 0) or 0) < observed.generation:
            return False, f"Deployment {self.name} rollout not observed yet"
        updated = status.get("updatedReplicas", 0) or 0
        available = status.get("availableReplicas", 0) or 0
        if updated < wanted or available < wanted:
            return False, f"Deployment {self.name} has {available}/{wanted} available replicas"
        return True, f"Deployment {self.name} has {available}/{wanted} available replicas"


class ExposureTarget(SyncTarget):
    """The Service exposing an actor's ports inside the cluster."""

    KIND = "Service"

    def prepare_update(self, observed: ClusterObject) -> Dict[str, Any]:
        manifest = super().prepare_update(observed)
        observed_spec = observed.manifest.get("spec") or {}
        # clusterIP is immutable once allocated
        for key in ("clusterIP", "clusterIPs"):
            if key in observed_spec:
                manifest.setdefault("spec", {})[key] = observed_spec[key]
        return manifest


TARGET_KINDS: Dict[str, Type[SyncTarget]] = {}


def register_target_kind(target_class: Type[SyncTarget]) -> None:
    TARGET_KINDS[target_class.KIND] = target_class


def target_from_manifest(manifest: Dict[str, Any], owner: Owner) -> SyncTarget:
    """
    Wrap a rendered manifest in the variant matching its kind.

    Raises:
        ValueError: If the kind is not managed by the sync engine.
    """
    kind = manifest.get("kind")
    target_class = TARGET_KINDS.get(kind)
    if target_class is None:
        available = ", ".join(sorted(TARGET_KINDS))
        raise ValueError(f"Unmanaged manifest kind: {kind}. Available: {available}")
    return target_class(manifest=manifest, owner=owner)


register_target_kind(WorkloadTarget)
register_target_kind(ExposureTarget)
