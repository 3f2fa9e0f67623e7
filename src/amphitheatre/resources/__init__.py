"""
Playbook and Actor resource model.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

from .types import (
    ActorSpec,
    ActorStatus,
    Application,
    ApplicationStatus,
    Phase,
    PortSpec,
    SourceRef,
    StatusCondition,
)
from .conditions import append_condition, already_reported

__all__ = [
    "ActorSpec",
    "ActorStatus",
    "Application",
    "ApplicationStatus",
    "Phase",
    "PortSpec",
    "SourceRef",
    "StatusCondition",
    "append_condition",
    "already_reported",
]
