#!/usr/bin/env python3
"""
Workflow step definitions.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from amphitheatre.workflow.retry import RetryPolicy

if TYPE_CHECKING:
    from amphitheatre.workflow.engine import WorkflowRun


class StepName(str, Enum):
    """Fixed step sequence of an actor's Workflow Run."""

    RESOLVE_INPUTS = "resolve-inputs"
    BUILD = "build"
    SYNC = "sync"
    VERIFY_READY = "verify-ready"


STEP_ORDER = [StepName.RESOLVE_INPUTS, StepName.BUILD, StepName.SYNC, StepName.VERIFY_READY]


StepFunc = Callable[["WorkflowRun"], Awaitable[None]]


@dataclass
class Step:
    """
    One idempotent unit of work.

    Attributes:
        name: Position in the step sequence
        func: Coroutine function receiving the WorkflowRun
        timeout: Seconds allowed per attempt (None disables the bound)
        policy: Retry policy applied between failed attempts
    """

    name: StepName
    func: StepFunc
    timeout: Optional[float] = 60.0
    policy: RetryPolicy = field(default_factory=RetryPolicy)
