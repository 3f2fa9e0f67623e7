#!/usr/bin/env python3
"""
Explicit cancellation tokens.

A token is created per reconcile pass and threaded through every external
call boundary. Setting it never interrupts a running step: the workflow
engine observes it at the next step boundary (or during a retry backoff),
and long polling loops such as image builds check it between polls.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

import asyncio
from typing import Optional


class OperationCancelled(Exception):
    """Raised by cooperative code that observed a cancelled token."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class CancellationToken:
    """One-shot cancellation flag with an awaitable signal."""

    def __init__(self):
        self._reason: Optional[str] = None
        self._event: Optional[asyncio.Event] = None

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        if self._reason is None:
            self._reason = reason
            if self._event is not None:
                self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._reason is not None:
            raise OperationCancelled(self._reason)

    async def sleep(self, delay: float) -> bool:
        """
        Sleep for ``delay`` seconds unless cancelled first.

        Returns:
            True if the token was cancelled before or during the sleep.
        """
        if self.cancelled:
            return True
        if delay <= 0:
            return False
        if self._event is None:
            self._event = asyncio.Event()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True
