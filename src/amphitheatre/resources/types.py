#!/usr/bin/env python3
"""
Data model for Playbook (Application) and Actor resources.

A Playbook custom resource declares a list of actors. Actor statuses are
kept inside the Playbook status, so the reconciler writes a single object
per pass. Parsing never raises for malformed actors: the error is kept on
the Application and reported by the reconciler as a status condition.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from amphitheatre.core.constants import API_GROUP_VERSION, APPLICATION_KIND
from amphitheatre.core.errors import ValidationError, create_error_context
from amphitheatre.resources.hashing import content_hash

_DNS_LABEL = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")


class Phase(str, Enum):
    """Lifecycle phase shared by Applications and Actors."""

    PENDING = "Pending"
    RESOLVING = "Resolving"
    BUILDING = "Building"
    SYNCING = "Syncing"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"

    def at_least(self, other: "Phase") -> bool:
        """Progress comparison. Failed never counts as progress."""
        if self is Phase.FAILED or other is Phase.FAILED:
            return self is other
        return _PROGRESS.index(self) >= _PROGRESS.index(other)


_PROGRESS = [
    Phase.PENDING,
    Phase.RESOLVING,
    Phase.BUILDING,
    Phase.SYNCING,
    Phase.RUNNING,
    Phase.SUCCEEDED,
]


def _parse_phase(value: Any) -> Phase:
    try:
        return Phase(value)
    except (TypeError, ValueError):
        return Phase.PENDING


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _mapping(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


@dataclass(frozen=True)
class StatusCondition:
    """One append-only status history entry."""

    phase: Phase
    reason: str
    message: str
    timestamp: str
    observed_generation: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "reason": self.reason,
            "message": self.message,
            "lastTransitionTime": self.timestamp,
            "observedGeneration": self.observed_generation,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StatusCondition":
        return cls(
            phase=_parse_phase(data.get("phase")),
            reason=str(data.get("reason", "")),
            message=str(data.get("message", "")),
            timestamp=str(data.get("lastTransitionTime", "")),
            observed_generation=_as_int(data.get("observedGeneration")),
        )


@dataclass(frozen=True)
class SourceRef:
    """Where an actor's image is built from."""

    repository: str
    reference: Optional[str] = None
    revision: Optional[str] = None
    path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"repository": self.repository}
        for key in ("reference", "revision", "path"):
            value = getattr(self, key)
            if value:
                data[key] = value
        return data

    @property
    def digest(self) -> str:
        return content_hash(self.to_dict())[:16]


@dataclass(frozen=True)
class PortSpec:
    name: str
    port: int
    protocol: str = "TCP"


@dataclass
class ActorSpec:
    """Declared state of one deployable service."""

    name: str
    image: str
    dependencies: List[str] = field(default_factory=list)
    source: Optional[SourceRef] = None
    ports: List[PortSpec] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    replicas: int = 1
    live: bool = False

    @property
    def needs_build(self) -> bool:
        return self.source is not None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "image": self.image,
            "dependencies": list(self.dependencies),
            "ports": [
                {"name": p.name, "port": p.port, "protocol": p.protocol} for p in self.ports
            ],
            "env": dict(self.env),
            "replicas": self.replicas,
            "live": self.live,
        }
        if self.source is not None:
            data["source"] = self.source.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "ActorSpec":
        """
        Parse and validate one actor entry.

        Raises:
            ValidationError: If the entry is malformed.
        """
        if not isinstance(data, dict):
            raise ValidationError(f"Actor entry must be a mapping, got {type(data).__name__}")

        name = data.get("name")
        if not isinstance(name, str) or not _DNS_LABEL.match(name) or len(name) > 63:
            raise ValidationError(
                f"Invalid actor name: {name!r}",
                suggestions=["Actor names must be lowercase DNS-1123 labels"],
            )
        context = create_error_context(operation="parse_actor", actor=name)

        image = data.get("image")
        if not isinstance(image, str) or not image:
            raise ValidationError(f"Actor '{name}' has no image", context=context)

        dependencies = data.get("dependencies") or data.get("partners") or []
        if not isinstance(dependencies, list) or not all(isinstance(d, str) for d in dependencies):
            raise ValidationError(
                f"Actor '{name}' dependencies must be a list of actor names", context=context
            )

        source = None
        raw_source = data.get("source")
        if raw_source is not None:
            if not isinstance(raw_source, dict) or not raw_source.get("repository"):
                raise ValidationError(
                    f"Actor '{name}' source must declare a repository", context=context
                )
            source = SourceRef(
                repository=str(raw_source["repository"]),
                reference=_optional_str(raw_source.get("reference")),
                revision=_optional_str(raw_source.get("revision")),
                path=_optional_str(raw_source.get("path")),
            )

        raw_ports = data.get("ports") or []
        if not isinstance(raw_ports, list):
            raise ValidationError(f"Actor '{name}' ports must be a list", context=context)
        ports = []
        for raw_port in raw_ports:
            if not isinstance(raw_port, dict):
                raise ValidationError(f"Actor '{name}' has an invalid port entry", context=context)
            try:
                port = int(raw_port["port"])
            except (KeyError, TypeError, ValueError):
                raise ValidationError(f"Actor '{name}' has an invalid port entry", context=context)
            if not 0 < port < 65536:
                raise ValidationError(f"Actor '{name}' port {port} out of range", context=context)
            ports.append(
                PortSpec(
                    name=str(raw_port.get("name") or f"port-{port}"),
                    port=port,
                    protocol=str(raw_port.get("protocol", "TCP")).upper(),
                )
            )

        env = data.get("env") or {}
        if not isinstance(env, dict):
            raise ValidationError(f"Actor '{name}' env must be a mapping", context=context)

        replicas = data.get("replicas", 1)
        if not isinstance(replicas, int) or isinstance(replicas, bool) or replicas < 0:
            raise ValidationError(f"Actor '{name}' replicas must be >= 0", context=context)

        return cls(
            name=name,
            image=image,
            dependencies=list(dependencies),
            source=source,
            ports=ports,
            env={str(k): str(v) for k, v in env.items()},
            replicas=replicas,
            live=bool(data.get("live", False)),
        )


@dataclass
class ActorStatus:
    """Observed, durable state of one actor."""

    phase: Phase = Phase.PENDING
    last_applied_hash: Optional[str] = None
    image_ref: Optional[str] = None
    source_digest: Optional[str] = None
    retry_count: int = 0
    conditions: List[StatusCondition] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "lastAppliedHash": self.last_applied_hash,
            "imageRef": self.image_ref,
            "sourceDigest": self.source_digest,
            "retryCount": self.retry_count,
            "conditions": [c.to_dict() for c in self.conditions],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActorStatus":
        data = _mapping(data)
        return cls(
            phase=_parse_phase(data.get("phase")),
            last_applied_hash=data.get("lastAppliedHash"),
            image_ref=data.get("imageRef"),
            source_digest=data.get("sourceDigest"),
            retry_count=_as_int(data.get("retryCount")),
            conditions=[
                StatusCondition.from_dict(c)
                for c in _list(data.get("conditions"))
                if isinstance(c, dict)
            ],
        )


@dataclass
class ApplicationStatus:
    phase: Phase = Phase.PENDING
    observed_generation: int = 0
    retry_count: int = 0
    conditions: List[StatusCondition] = field(default_factory=list)
    actors: Dict[str, ActorStatus] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "observedGeneration": self.observed_generation,
            "retryCount": self.retry_count,
            "conditions": [c.to_dict() for c in self.conditions],
            "actors": {name: s.to_dict() for name, s in sorted(self.actors.items())},
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ApplicationStatus":
        data = _mapping(data)
        actors = _mapping(data.get("actors"))
        return cls(
            phase=_parse_phase(data.get("phase")),
            observed_generation=_as_int(data.get("observedGeneration")),
            retry_count=_as_int(data.get("retryCount")),
            conditions=[
                StatusCondition.from_dict(c)
                for c in _list(data.get("conditions"))
                if isinstance(c, dict)
            ],
            actors={
                str(name): ActorStatus.from_dict(s)
                for name, s in actors.items()
                if isinstance(s, dict)
            },
        )


@dataclass
class Application:
    """A Playbook resource: the root aggregate owning its actors."""

    name: str
    namespace: str
    uid: str = ""
    generation: int = 1
    resource_version: Optional[str] = None
    actors: List[ActorSpec] = field(default_factory=list)
    status: ApplicationStatus = field(default_factory=ApplicationStatus)
    spec_error: Optional[ValidationError] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    def actor(self, name: str) -> Optional[ActorSpec]:
        for spec in self.actors:
            if spec.name == name:
                return spec
        return None

    def actor_status(self, name: str) -> ActorStatus:
        """Status entry for an actor, created on first access."""
        return self.status.actors.setdefault(name, ActorStatus())

    @property
    def spec_changed(self) -> bool:
        return self.generation != self.status.observed_generation

    @property
    def finalizers(self) -> List[str]:
        metadata = _mapping(self.raw.get("metadata"))
        return [str(f) for f in _list(metadata.get("finalizers"))]

    @property
    def deleting(self) -> bool:
        return bool(_mapping(self.raw.get("metadata")).get("deletionTimestamp"))

    def owner_reference(self) -> Dict[str, Any]:
        return {
            "apiVersion": API_GROUP_VERSION,
            "kind": APPLICATION_KIND,
            "name": self.name,
            "uid": self.uid,
            "controller": True,
            "blockOwnerDeletion": True,
        }

    @classmethod
    def from_object(cls, obj: Dict[str, Any]) -> "Application":
        """
        Build an Application from a raw custom resource object.

        Raises:
            ValidationError: Only if the object has no usable metadata.
        """
        metadata = obj.get("metadata") or {}
        name = metadata.get("name") if isinstance(metadata, dict) else None
        if not isinstance(name, str) or not name:
            raise ValidationError("Playbook object has no metadata.name")
        app = cls(
            name=name,
            namespace=metadata.get("namespace") or "default",
            uid=metadata.get("uid", ""),
            generation=_as_int(metadata.get("generation"), 1) or 1,
            resource_version=metadata.get("resourceVersion"),
            status=ApplicationStatus.from_dict(obj.get("status")),
            raw=obj,
        )

        spec = obj.get("spec") or {}
        try:
            if not isinstance(spec, dict):
                raise ValidationError(f"Playbook '{name}' spec must be a mapping")
            raw_actors = spec.get("actors")
            if not isinstance(raw_actors, list) or not raw_actors:
                raise ValidationError(
                    f"Playbook '{name}' declares no actors",
                    suggestions=["Add at least one entry under spec.actors"],
                )
            app.actors = [ActorSpec.from_dict(entry) for entry in raw_actors]
        except ValidationError as e:
            app.spec_error = e
            app.actors = []
        return app

    def to_object(self) -> Dict[str, Any]:
        """Raw object with the current status folded in."""
        obj = dict(self.raw)
        metadata = dict(obj.get("metadata") or {})
        if self.resource_version is not None:
            metadata["resourceVersion"] = self.resource_version
        obj["metadata"] = metadata
        obj["status"] = self.status.to_dict()
        return obj
