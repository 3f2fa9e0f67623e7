#!/usr/bin/env python3
"""
Sync Engine - converges the cluster toward an actor's desired targets.

For each desired target the observed object is fetched and the target is
created, replaced (guarded by the observed version token) or left alone
when its content hash matches. Afterwards every object still labelled as
owned by the actor but no longer desired is deleted.

Targets are processed independently. A failure on one target does not
stop the others; the result reports every target and the caller decides
whether the outcome is good enough to advance.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set, Tuple

from amphitheatre.cluster.base import ClusterClient
from amphitheatre.core.constants import LABEL_ACTOR
from amphitheatre.core.errors import AmphitheatreError, SyncConflictError, is_recoverable
from amphitheatre.sync.targets import TARGET_KINDS, Owner, SyncTarget, TargetAction

logger = logging.getLogger(__name__)


@dataclass
class TargetOutcome:
    kind: str
    name: str
    action: TargetAction
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.action is not TargetAction.FAILED


@dataclass
class SyncResult:
    """Per-target outcome of one reconcile call."""

    owner: Owner
    outcomes: List[TargetOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(o.ok for o in self.outcomes)

    @property
    def failures(self) -> List[TargetOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def writes(self) -> int:
        return sum(
            1 for o in self.outcomes
            if o.action in (TargetAction.CREATED, TargetAction.UPDATED, TargetAction.DELETED)
        )

    def actions(self, action: TargetAction) -> List[Tuple[str, str]]:
        return [(o.kind, o.name) for o in self.outcomes if o.action is action]

    def summary(self) -> str:
        counts = {}
        for outcome in self.outcomes:
            counts[outcome.action.value] = counts.get(outcome.action.value, 0) + 1
        return ", ".join(f"{n} {a}" for a, n in sorted(counts.items())) or "nothing to do"

    def raise_for_failures(self) -> None:
        """
        Raise when any target failed.

        A retryable failure is preferred so the workflow engine can retry the
        whole sync step; otherwise the first failure is raised.
        """
        failures = self.failures
        if not failures:
            return
        detail = "; ".join(f"{f.kind}/{f.name}: {f.error}" for f in failures)
        errors = [f.error for f in failures if f.error is not None]
        if errors and all(is_recoverable(e) for e in errors):
            raise SyncConflictError(
                f"Sync of {self.owner} incomplete ({len(failures)} failed): {detail}",
                cause=errors[0],
            )
        first = next((e for e in errors if not is_recoverable(e)), None)
        if isinstance(first, AmphitheatreError):
            raise first
        raise AmphitheatreError(f"Sync of {self.owner} failed: {detail}", cause=first)


class SyncEngine:
    """Applies desired Sync Targets and garbage-collects orphans."""

    def __init__(self, cluster: ClusterClient, kinds: Optional[Iterable[str]] = None):
        self.cluster = cluster
        self.kinds = sorted(kinds) if kinds is not None else sorted(TARGET_KINDS)

    async def reconcile(self, desired: List[SyncTarget], owner: Owner) -> SyncResult:
        """
        Converge one actor's targets.

        Args:
            desired: Targets the actor declares now (may be empty)
            owner: The owning actor; used to find previously owned objects

        Returns:
            SyncResult with one outcome per desired target and per orphan
        """
        result = SyncResult(owner=owner)
        wanted: Set[Tuple[str, str, str]] = set()

        for target in desired:
            wanted.add(target.identity)
            try:
                observed = await self.cluster.get(target.kind, target.namespace, target.name)
                action = await target.apply(self.cluster, observed)
                if action is not TargetAction.UNCHANGED:
                    logger.info("%s %s/%s for %s", action.value.capitalize(), target.kind, target.name, owner)
                result.outcomes.append(TargetOutcome(target.kind, target.name, action))
            except Exception as e:
                logger.warning("Sync of %s/%s for %s failed: %s", target.kind, target.name, owner, e)
                result.outcomes.append(TargetOutcome(target.kind, target.name, TargetAction.FAILED, e))

        result.outcomes.extend(await self._collect_orphans(owner, wanted))
        return result

    async def _collect_orphans(
        self, owner: Owner, wanted: Set[Tuple[str, str, str]]
    ) -> List[TargetOutcome]:
        outcomes: List[TargetOutcome] = []
        for kind in self.kinds:
            try:
                owned = await self.cluster.list(kind, owner.namespace, owner.labels)
            except Exception as e:
                logger.warning("Listing owned %s of %s failed: %s", kind, owner, e)
                outcomes.append(TargetOutcome(kind, "*", TargetAction.FAILED, e))
                continue
            for obj in sorted(owned, key=lambda o: o.name):
                # list items come back without apiVersion/kind
                obj.manifest.setdefault("kind", kind)
                if (kind, obj.namespace, obj.name) in wanted or obj.deleting:
                    continue
                try:
                    variant = TARGET_KINDS.get(kind, SyncTarget)
                    action = await variant.delete(self.cluster, obj)
                    logger.info("Deleted orphaned %s/%s of %s", kind, obj.name, owner)
                    outcomes.append(TargetOutcome(kind, obj.name, action))
                except Exception as e:
                    logger.warning("Deleting orphan %s/%s failed: %s", kind, obj.name, e)
                    outcomes.append(TargetOutcome(kind, obj.name, TargetAction.FAILED, e))
        return outcomes

    async def owned_actors(self, namespace: str, application: str) -> Set[str]:
        """Names of actors that still own objects for an application."""
        actors: Set[str] = set()
        probe = Owner(namespace=namespace, application=application, actor="")
        for kind in self.kinds:
            for obj in await self.cluster.list(kind, namespace, probe.application_labels):
                actor = obj.labels.get(LABEL_ACTOR)
                if actor:
                    actors.add(actor)
        return actors
