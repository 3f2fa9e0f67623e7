"""
Workflow Engine: ordered, retried, cancellable step execution per actor.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

from .cancellation import CancellationToken, OperationCancelled
from .engine import WorkflowEngine, WorkflowOutcome, WorkflowResult, WorkflowRun
from .retry import RetryPolicy, RetryStrategy, retry_async
from .steps import STEP_ORDER, Step, StepName

__all__ = [
    "CancellationToken",
    "OperationCancelled",
    "RetryPolicy",
    "RetryStrategy",
    "STEP_ORDER",
    "Step",
    "StepName",
    "WorkflowEngine",
    "WorkflowOutcome",
    "WorkflowResult",
    "WorkflowRun",
    "retry_async",
]
