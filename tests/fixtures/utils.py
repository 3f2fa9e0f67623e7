"""Utility functions and in-memory collaborators for tests.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

# built-in modules
import asyncio
import copy
import itertools
from collections import defaultdict
from typing import Any, Dict, List, Optional, Tuple

# project modules
from amphitheatre.builder.base import Builder
from amphitheatre.cluster.base import ClusterClient, ClusterObject, WatchEvent
from amphitheatre.config.settings import ControllerConfig, StepSettings
from amphitheatre.core.constants import API_GROUP_VERSION, APPLICATION_KIND
from amphitheatre.core.errors import BuildError, ResourceNotFoundError, SyncConflictError
from amphitheatre.publisher.base import EventPublisher
from amphitheatre.resources.types import ActorSpec, Application, Phase, StatusCondition
from amphitheatre.workflow.cancellation import CancellationToken
from amphitheatre.workflow.retry import RetryPolicy, RetryStrategy
from amphitheatre.workflow.steps import STEP_ORDER

NAMESPACE = "default"

Key = Tuple[str, str, str]


class InMemoryCluster(ClusterClient):
    """Cluster store with version tokens, call recording and error injection.

    Deployments become ready as soon as they are written unless
    ``auto_ready`` is False.
    """

    def __init__(self, auto_ready: bool = True):
        self.objects: Dict[Key, Dict[str, Any]] = {}
        self.calls: List[Tuple[str, str, str, str]] = []
        self.auto_ready = auto_ready
        self._errors: Dict[str, List[Exception]] = defaultdict(list)
        self._versions = itertools.count(1)
        self._uids = itertools.count(1)
        self._watchers: List[Tuple[str, Optional[str], asyncio.Queue]] = []

    # -- test helpers -------------------------------------------------------

    def inject(self, operation: str, error: Exception, times: int = 1) -> None:
        """Make the next ``times`` calls of ``operation`` raise ``error``."""
        self._errors[operation].extend([error] * times)

    def _maybe_fail(self, operation: str) -> None:
        if self._errors[operation]:
            raise self._errors[operation].pop(0)

    def writes(self, kind: Optional[str] = None) -> List[Tuple[str, str, str, str]]:
        return [
            c for c in self.calls
            if c[0] in ("create", "update", "delete") and (kind is None or c[1] == kind)
        ]

    def calls_of(self, operation: str, kind: Optional[str] = None) -> List[Tuple[str, str, str, str]]:
        return [c for c in self.calls if c[0] == operation and (kind is None or c[1] == kind)]

    def stored(self, kind: str, name: str, namespace: str = NAMESPACE) -> Optional[Dict[str, Any]]:
        return self.objects.get((kind, namespace, name))

    def names(self, kind: str, namespace: str = NAMESPACE) -> List[str]:
        return sorted(n for (k, ns, n) in self.objects if k == kind and ns == namespace)

    def set_status(self, kind: str, name: str, status: Dict[str, Any], namespace: str = NAMESPACE) -> None:
        self.objects[(kind, namespace, name)]["status"] = copy.deepcopy(status)

    def seed(self, manifest: Dict[str, Any]) -> Dict[str, Any]:
        """Store an object directly, bypassing call recording."""
        manifest = copy.deepcopy(manifest)
        metadata = manifest.setdefault("metadata", {})
        metadata.setdefault("namespace", NAMESPACE)
        metadata.setdefault("generation", 1)
        metadata.setdefault("uid", f"uid-{next(self._uids)}")
        metadata["resourceVersion"] = str(next(self._versions))
        self.objects[self._key(manifest)] = manifest
        return manifest

    def bump_spec(self, kind: str, name: str, spec: Dict[str, Any], namespace: str = NAMESPACE) -> None:
        """Simulate a user edit: replace spec, bump generation and version."""
        stored = self.objects[(kind, namespace, name)]
        stored["spec"] = copy.deepcopy(spec)
        stored["metadata"]["generation"] += 1
        stored["metadata"]["resourceVersion"] = str(next(self._versions))
        self._emit("MODIFIED", stored)

    def mark_deleted(self, kind: str, name: str, namespace: str = NAMESPACE) -> None:
        """Simulate a user delete: objects holding finalizers only get a deletionTimestamp."""
        stored = self.objects[(kind, namespace, name)]
        if not stored["metadata"].get("finalizers"):
            del self.objects[(kind, namespace, name)]
            self._emit("DELETED", stored)
            return
        stored["metadata"]["deletionTimestamp"] = "2026-01-01T00:00:00Z"
        stored["metadata"]["resourceVersion"] = str(next(self._versions))
        self._emit("MODIFIED", stored)

    def close_watches(self) -> None:
        for _, _, queue in self._watchers:
            queue.put_nowait(None)

    # -- ClusterClient ------------------------------------------------------

    @staticmethod
    def _key(manifest: Dict[str, Any]) -> Key:
        metadata = manifest["metadata"]
        return (manifest["kind"], metadata.get("namespace") or NAMESPACE, metadata["name"])

    def _ready_status(self, manifest: Dict[str, Any]) -> None:
        if self.auto_ready and manifest["kind"] == "Deployment":
            replicas = (manifest.get("spec") or {}).get("replicas", 1)
            manifest["status"] = {
                "observedGeneration": manifest["metadata"]["generation"],
                "replicas": replicas,
                "updatedReplicas": replicas,
                "availableReplicas": replicas,
            }

    def _emit(self, event_type: str, manifest: Dict[str, Any]) -> None:
        for kind, namespace, queue in self._watchers:
            if manifest["kind"] == kind and namespace in (None, manifest["metadata"]["namespace"]):
                queue.put_nowait(WatchEvent(event_type, ClusterObject(copy.deepcopy(manifest))))

    async def get(self, kind: str, namespace: str, name: str) -> Optional[ClusterObject]:
        self.calls.append(("get", kind, namespace, name))
        self._maybe_fail("get")
        stored = self.objects.get((kind, namespace, name))
        return ClusterObject(copy.deepcopy(stored)) if stored is not None else None

    async def create(self, manifest: Dict[str, Any]) -> ClusterObject:
        key = self._key(manifest)
        self.calls.append(("create",) + key)
        self._maybe_fail("create")
        if key in self.objects:
            raise SyncConflictError(f"{key[0]} {key[1]}/{key[2]} already exists")
        manifest = copy.deepcopy(manifest)
        metadata = manifest["metadata"]
        metadata.setdefault("namespace", NAMESPACE)
        metadata["generation"] = 1
        metadata["uid"] = f"uid-{next(self._uids)}"
        metadata["resourceVersion"] = str(next(self._versions))
        self._ready_status(manifest)
        self.objects[key] = manifest
        self._emit("ADDED", manifest)
        return ClusterObject(copy.deepcopy(manifest))

    async def update(self, manifest: Dict[str, Any], expected_version: Optional[str]) -> ClusterObject:
        key = self._key(manifest)
        self.calls.append(("update",) + key)
        self._maybe_fail("update")
        stored = self.objects.get(key)
        if stored is None:
            raise ResourceNotFoundError(f"{key[0]} {key[1]}/{key[2]} not found")
        if expected_version is not None and expected_version != stored["metadata"]["resourceVersion"]:
            raise SyncConflictError(f"{key[0]} {key[1]}/{key[2]} was modified")
        manifest = copy.deepcopy(manifest)
        metadata = manifest["metadata"]
        metadata["uid"] = stored["metadata"]["uid"]
        metadata["generation"] = stored["metadata"]["generation"]
        if manifest.get("spec") != stored.get("spec"):
            metadata["generation"] += 1
        metadata["resourceVersion"] = str(next(self._versions))
        manifest["status"] = copy.deepcopy(stored.get("status"))
        if manifest["status"] is None:
            manifest.pop("status")
        self._ready_status(manifest)
        if stored["metadata"].get("deletionTimestamp"):
            metadata["deletionTimestamp"] = stored["metadata"]["deletionTimestamp"]
            if not metadata.get("finalizers"):
                del self.objects[key]
                self._emit("DELETED", manifest)
                return ClusterObject(copy.deepcopy(manifest))
        self.objects[key] = manifest
        self._emit("MODIFIED", manifest)
        return ClusterObject(copy.deepcopy(manifest))

    async def update_status(self, manifest: Dict[str, Any], expected_version: Optional[str]) -> ClusterObject:
        key = self._key(manifest)
        self.calls.append(("update_status",) + key)
        self._maybe_fail("update_status")
        stored = self.objects.get(key)
        if stored is None:
            raise ResourceNotFoundError(f"{key[0]} {key[1]}/{key[2]} not found")
        if expected_version is not None and expected_version != stored["metadata"]["resourceVersion"]:
            raise SyncConflictError(f"{key[0]} {key[1]}/{key[2]} was modified")
        stored["status"] = copy.deepcopy(manifest.get("status"))
        stored["metadata"]["resourceVersion"] = str(next(self._versions))
        self._emit("MODIFIED", stored)
        return ClusterObject(copy.deepcopy(stored))

    async def delete(self, kind: str, namespace: str, name: str) -> bool:
        self.calls.append(("delete", kind, namespace, name))
        self._maybe_fail("delete")
        stored = self.objects.pop((kind, namespace, name), None)
        if stored is None:
            return False
        self._emit("DELETED", stored)
        return True

    async def list(self, kind: str, namespace: Optional[str] = None,
                   labels: Optional[Dict[str, str]] = None) -> List[ClusterObject]:
        self.calls.append(("list", kind, namespace or "", ""))
        self._maybe_fail("list")
        found = []
        for (k, ns, _), manifest in sorted(self.objects.items()):
            if k != kind or (namespace is not None and ns != namespace):
                continue
            object_labels = manifest["metadata"].get("labels") or {}
            if all(object_labels.get(key) == value for key, value in (labels or {}).items()):
                found.append(ClusterObject(copy.deepcopy(manifest)))
        return found

    async def watch(self, kind: str, namespace: Optional[str] = None):
        queue: asyncio.Queue = asyncio.Queue()
        entry = (kind, namespace, queue)
        self._watchers.append(entry)
        try:
            while True:
                event = await queue.get()
                if event is None:
                    return
                yield event
        finally:
            self._watchers.remove(entry)


class FakeBuilder(Builder):
    """Builder that fails a configurable number of times per actor."""

    def __init__(self, failures: Optional[Dict[str, int]] = None, registry: str = "registry.test"):
        self.failures = dict(failures or {})
        self.registry = registry
        self.calls: List[str] = []

    async def build(self, actor: ActorSpec, token: CancellationToken, app: Application) -> str:
        self.calls.append(actor.name)
        token.raise_if_cancelled()
        if self.failures.get(actor.name, 0) != 0:
            self.failures[actor.name] -= 1
            raise BuildError(f"build of {actor.name} failed")
        return f"{self.registry}/{actor.image}:{actor.source.digest}"


class RecordingPublisher(EventPublisher):
    """Keeps every published transition."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.events: List[Tuple[str, Phase, StatusCondition]] = []

    async def publish(self, resource_id: str, phase: Phase, condition: StatusCondition) -> None:
        if self.fail:
            raise RuntimeError("publisher down")
        self.events.append((resource_id, phase, condition))

    def phases(self, resource_id: str) -> List[Phase]:
        return [phase for rid, phase, _ in self.events if rid == resource_id]

    def reasons(self, resource_id: str) -> List[str]:
        return [c.reason for rid, _, c in self.events if rid == resource_id]


def fast_policy(max_attempts: int = 3) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=max_attempts,
        strategy=RetryStrategy.IMMEDIATE,
        base_delay=0.0,
        max_delay=0.0,
        jitter=0.0,
    )


def fast_config(max_attempts: int = 3, **overrides) -> ControllerConfig:
    """Controller configuration without delays between attempts."""
    settings = dict(
        steps={name: StepSettings(timeout=5.0, policy=fast_policy(max_attempts)) for name in STEP_ORDER},
        failure_backoff=RetryPolicy(base_delay=1.0, max_delay=4.0, jitter=0.0),
        max_failure_retries=2,
        ready_requeue=5.0,
        max_concurrent_workflows=4,
    )
    settings.update(overrides)
    return ControllerConfig(**settings)


def actor_entry(name: str, dependencies=(), source: bool = True, revision: str = "v1",
                ports=(8080,), **extra) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "name": name,
        "image": f"amp/{name}",
        "dependencies": list(dependencies),
        "ports": [{"port": port} for port in ports],
    }
    if source:
        entry["source"] = {"repository": f"https://git.example.com/{name}.git", "revision": revision}
    entry.update(extra)
    return entry


def playbook(name: str, actors: List[Dict[str, Any]], namespace: str = NAMESPACE,
             generation: int = 1) -> Dict[str, Any]:
    return {
        "apiVersion": API_GROUP_VERSION,
        "kind": APPLICATION_KIND,
        "metadata": {"name": name, "namespace": namespace, "generation": generation},
        "spec": {"actors": actors},
    }


def run(coro):
    """Drive a coroutine to completion."""
    return asyncio.run(coro)
