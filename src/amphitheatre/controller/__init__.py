"""
Reconciliation: the per-Playbook state machine and its scheduling.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

from .actor import ActorWorkflow, Collaborators
from .credentials import CredentialProvisioner
from .manager import Controller
from .queue import WorkQueue
from .reconciler import ReconcileAction, Reconciler
from .status import StatusWriter

__all__ = [
    "ActorWorkflow",
    "Collaborators",
    "Controller",
    "CredentialProvisioner",
    "ReconcileAction",
    "Reconciler",
    "StatusWriter",
    "WorkQueue",
]
