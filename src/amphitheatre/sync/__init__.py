"""
Sync engine: desired manifests, diff/apply and orphan collection.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

from .engine import SyncEngine, SyncResult, TargetOutcome
from .readiness import ProbeResult, ReadinessProbe
from .render import ManifestRenderer
from .targets import (
    TARGET_KINDS,
    ExposureTarget,
    Owner,
    SyncTarget,
    TargetAction,
    WorkloadTarget,
    target_from_manifest,
)

__all__ = [
    "SyncEngine",
    "SyncResult",
    "TargetOutcome",
    "ManifestRenderer",
    "ProbeResult",
    "ReadinessProbe",
    "TARGET_KINDS",
    "ExposureTarget",
    "Owner",
    "SyncTarget",
    "TargetAction",
    "WorkloadTarget",
    "target_from_manifest",
]
