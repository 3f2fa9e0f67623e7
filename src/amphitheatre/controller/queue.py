#!/usr/bin/env python3
"""
Coalescing work queue keyed by ``namespace/name``.

* a key is queued at most once, however often it is added;
* a key handed to a worker is not handed out again until ``done``;
  adds that arrive meanwhile mark it dirty and it is re-queued on ``done``;
* ``add_after`` schedules a delayed add, keeping the earliest deadline.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

import asyncio
from typing import Dict, Set


class WorkQueue:
    def __init__(self):
        self._queue: "asyncio.Queue[str]" = asyncio.Queue()
        self._queued: Set[str] = set()
        self._processing: Set[str] = set()
        self._dirty: Set[str] = set()
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._shutdown = False

    def __len__(self) -> int:
        return self._queue.qsize()

    @property
    def shutting_down(self) -> bool:
        return self._shutdown

    def processing(self, key: str) -> bool:
        return key in self._processing

    def scheduled(self, key: str) -> bool:
        """True while a delayed add is pending for ``key``."""
        return key in self._timers

    def add(self, key: str) -> None:
        if self._shutdown:
            return
        if key in self._processing:
            self._dirty.add(key)
            return
        if key in self._queued:
            return
        self._queued.add(key)
        self._queue.put_nowait(key)

    def add_after(self, key: str, delay: float) -> None:
        if self._shutdown:
            return
        if delay <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        deadline = loop.time() + delay
        pending = self._timers.get(key)
        if pending is not None:
            if pending.when() <= deadline:
                return
            pending.cancel()
        self._timers[key] = loop.call_at(deadline, self._fire, key)

    def _fire(self, key: str) -> None:
        self._timers.pop(key, None)
        self.add(key)

    async def get(self) -> str:
        """Wait for the next key and mark it as processing."""
        key = await self._queue.get()
        self._queued.discard(key)
        self._processing.add(key)
        return key

    def done(self, key: str) -> None:
        self._processing.discard(key)
        if key in self._dirty:
            self._dirty.discard(key)
            self.add(key)

    def forget(self, key: str) -> None:
        """Drop a pending delayed add, e.g. once the object is deleted."""
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        self._dirty.discard(key)

    def shutdown(self) -> None:
        self._shutdown = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
