#!/usr/bin/env python3
"""
Append-only status condition log.

Conditions are never edited. A transition identical to the most recent
entry is not appended again, so replaying a pass (at-least-once delivery,
periodic resync) neither grows the log nor re-publishes the transition.
Repeating an earlier transition after something else happened, such as
a retry pass failing the same step again, is a new entry.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

from datetime import datetime, timezone
from typing import List, Optional

from amphitheatre.resources.types import Phase, StatusCondition


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def already_reported(
    conditions: List[StatusCondition],
    phase: Phase,
    reason: str,
    message: str,
    generation: int,
) -> bool:
    """True if this exact transition is the most recent entry."""
    if not conditions:
        return False
    previous = conditions[-1]
    return (
        previous.phase is phase
        and previous.reason == reason
        and previous.message == message
        and previous.observed_generation == generation
    )


def append_condition(
    conditions: List[StatusCondition],
    phase: Phase,
    reason: str,
    message: str,
    generation: int,
    timestamp: Optional[str] = None,
) -> Optional[StatusCondition]:
    """
    Append a condition unless it repeats the most recent one.

    Returns:
        The appended condition, or None when it was a duplicate.
    """
    if already_reported(conditions, phase, reason, message, generation):
        return None
    condition = StatusCondition(
        phase=phase,
        reason=reason,
        message=message,
        timestamp=timestamp or utc_now(),
        observed_generation=generation,
    )
    conditions.append(condition)
    return condition
