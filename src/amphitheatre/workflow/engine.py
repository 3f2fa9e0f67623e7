#!/usr/bin/env python3
"""
Workflow Engine - runs an actor's steps in strict sequence.

Each step is attempted until it succeeds, fails with a non-recoverable
error or exhausts its retry policy. Every attempt is bounded by the step
timeout; a timed-out attempt cancels the in-flight awaitable and counts as
a failed, retryable attempt. The cancellation token is observed before each
step and while waiting between attempts.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from amphitheatre.core.errors import StepTimeoutError, WorkflowError, is_recoverable
from amphitheatre.workflow.cancellation import CancellationToken, OperationCancelled
from amphitheatre.workflow.steps import STEP_ORDER, Step, StepName

logger = logging.getLogger(__name__)


class WorkflowOutcome(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class WorkflowRun:
    """Mutable state of one execution of an actor's steps."""

    actor: str
    token: CancellationToken
    started_at: float = field(default_factory=time.time)
    current_step: Optional[StepName] = None
    attempts: Dict[StepName, int] = field(default_factory=dict)
    # values handed from one step to the next (image ref, rendered targets)
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class WorkflowResult:
    actor: str
    outcome: WorkflowOutcome
    failed_step: Optional[StepName] = None
    cause: Optional[BaseException] = None
    attempts: Dict[StepName, int] = field(default_factory=dict)
    duration: float = 0.0
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.outcome is WorkflowOutcome.SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.outcome is WorkflowOutcome.FAILED

    @property
    def cancelled(self) -> bool:
        return self.outcome is WorkflowOutcome.CANCELLED

    def __str__(self) -> str:
        if self.failed:
            return f"{self.actor}: failed at {self.failed_step.value}: {self.cause}"
        return f"{self.actor}: {self.outcome.value}"


StepHook = Callable[[WorkflowRun, Step], Awaitable[None]]


def validate_steps(steps: List[Step]) -> None:
    """Steps must follow the fixed sequence, each at most once."""
    names = [s.name for s in steps]
    positions = [STEP_ORDER.index(n) for n in names]
    if len(set(names)) != len(names) or positions != sorted(positions):
        order = " -> ".join(n.value for n in names)
        raise WorkflowError(f"Steps out of sequence: {order}")


class WorkflowEngine:
    """Executes Workflow Runs, at most ``max_concurrency`` at a time."""

    def __init__(self, max_concurrency: int = 4):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.max_concurrency = max_concurrency
        self._slots = asyncio.Semaphore(max_concurrency)

    async def run(
        self,
        actor: str,
        steps: List[Step],
        token: CancellationToken,
        on_step: Optional[StepHook] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> WorkflowResult:
        """
        Run one actor's steps.

        Args:
            actor: Actor name, used for logging and the result
            steps: Ordered steps
            token: Cancellation token of the reconcile pass
            on_step: Hook awaited before each step starts
            data: Initial values shared between the steps

        Returns:
            WorkflowResult; never raises for step failures
        """
        validate_steps(steps)
        run = WorkflowRun(actor=actor, token=token, data=dict(data or {}))

        for step in steps:
            if token.cancelled:
                return self._finish(run, WorkflowOutcome.CANCELLED)
            run.current_step = step.name
            if on_step is not None:
                await on_step(run, step)

            attempt = 0
            while True:
                attempt += 1
                run.attempts[step.name] = attempt
                try:
                    await self._attempt(run, step)
                    break
                except OperationCancelled:
                    return self._finish(run, WorkflowOutcome.CANCELLED)
                except Exception as e:
                    error = e

                if not is_recoverable(error) or not step.policy.allows_retry(attempt):
                    logger.warning(
                        "Workflow %s failed at %s after %d attempt(s): %s",
                        actor, step.name.value, attempt, error,
                    )
                    return self._finish(run, WorkflowOutcome.FAILED, step.name, error)

                delay = step.policy.delay(attempt)
                logger.info(
                    "Workflow %s step %s attempt %d/%d failed: %s; retrying in %.1fs",
                    actor, step.name.value, attempt, step.policy.max_attempts, error, delay,
                )
                if await token.sleep(delay):
                    return self._finish(run, WorkflowOutcome.CANCELLED)

        return self._finish(run, WorkflowOutcome.SUCCEEDED)

    async def _attempt(self, run: WorkflowRun, step: Step) -> None:
        if step.timeout is None:
            await step.func(run)
            return
        try:
            await asyncio.wait_for(step.func(run), timeout=step.timeout)
        except asyncio.TimeoutError as e:
            raise StepTimeoutError(
                f"Step {step.name.value} of {run.actor} timed out after {step.timeout}s",
                cause=e,
            )

    def _finish(
        self,
        run: WorkflowRun,
        outcome: WorkflowOutcome,
        step: Optional[StepName] = None,
        cause: Optional[BaseException] = None,
    ) -> WorkflowResult:
        if outcome is WorkflowOutcome.CANCELLED:
            logger.info("Workflow %s cancelled: %s", run.actor, run.token.reason)
        return WorkflowResult(
            actor=run.actor,
            outcome=outcome,
            failed_step=step,
            cause=cause,
            attempts=dict(run.attempts),
            duration=time.time() - run.started_at,
            data=run.data,
        )

    async def run_bounded(self, actor: str, steps: List[Step], token: CancellationToken,
                          on_step: Optional[StepHook] = None,
                          data: Optional[Dict[str, Any]] = None) -> WorkflowResult:
        async with self._slots:
            return await self.run(actor, steps, token, on_step=on_step, data=data)

    async def run_layer(
        self,
        runs: Dict[str, List[Step]],
        token: CancellationToken,
        on_step: Optional[StepHook] = None,
    ) -> Dict[str, WorkflowResult]:
        """
        Run one Workflow Run per actor of a layer concurrently.

        Returns when every run has finished, keyed by actor name.
        """
        names = sorted(runs)
        results = await asyncio.gather(
            *(self.run_bounded(name, runs[name], token, on_step=on_step) for name in names)
        )
        return dict(zip(names, results))
