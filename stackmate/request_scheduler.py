# request_scheduler.py
"""
Stackmate – RequestScheduler
============================

Admission control for one remote service: at most ``max_concurrent``
requests in flight, dispatched in FIFO order, with starts spaced at least
``min_gap_ms`` apart.

All state is mutated from within the event loop only (``schedule`` and
``_release``); a threaded port would need a mutex around it.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Tuple, TypeVar
from urllib.parse import urlsplit

from .loggingconfig import setup_logging

logger = setup_logging("RequestScheduler")

T = TypeVar("T")


class RequestScheduler:
    """FIFO concurrency gate with a minimum gap between dispatch starts."""

    def __init__(
        self,
        max_concurrent: int = 4,
        min_gap_ms: int = 120,
        name: str = "default",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        if min_gap_ms < 0:
            raise ValueError("min_gap_ms must be >= 0")
        self.name = name
        self.max_concurrent = max_concurrent
        self.min_gap = min_gap_ms / 1000.0
        self._sleep = sleep
        self._active = 0
        self._queue: Deque[asyncio.Future] = deque()
        self._last_start: Optional[float] = None

    # ------------------------------------------------------------------ #
    # public API                                                         #
    # ------------------------------------------------------------------ #

    async def schedule(self, task: Callable[[], Awaitable[T]]) -> T:
        """Run ``task()`` once a slot is free; its result or error is passed through."""
        await self._acquire()
        try:
            await self._wait_for_gap()
            return await task()
        finally:
            self._release()

    @property
    def active(self) -> int:
        return self._active

    @property
    def queued(self) -> int:
        return sum(1 for fut in self._queue if not fut.done())

    def snapshot(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "active": self._active,
            "queued": self.queued,
            "max_concurrent": self.max_concurrent,
            "min_gap_ms": int(self.min_gap * 1000),
        }

    # ------------------------------------------------------------------ #
    # internals                                                          #
    # ------------------------------------------------------------------ #

    async def _acquire(self) -> None:
        if self._active < self.max_concurrent and not self.queued:
            self._active += 1
            return

        waiter = asyncio.get_running_loop().create_future()
        self._queue.append(waiter)
        logger.debug("%s saturated, queued request (%d waiting)", self.name, self.queued)
        try:
            await waiter
        except asyncio.CancelledError:
            # slot was already handed over before the cancel landed
            if waiter.done() and not waiter.cancelled():
                self._release()
            raise

    def _release(self) -> None:
        # hand the slot straight to the oldest live waiter
        while self._queue:
            waiter = self._queue.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self._active -= 1

    async def _wait_for_gap(self) -> None:
        loop = asyncio.get_running_loop()
        now = loop.time()
        previous = self._last_start
        start_at = now if previous is None else max(now, previous + self.min_gap)
        # reserve the start slot before sleeping so concurrent dispatches stagger
        self._last_start = start_at
        delay = start_at - now
        if delay <= 0:
            return
        try:
            await self._sleep(delay)
        except asyncio.CancelledError:
            # give the slot back unless a later dispatch already queued behind it
            if self._last_start == start_at:
                self._last_start = previous
            raise


class SchedulerRegistry:
    """
    One scheduler per remote host and limit pair; instances never share state.

    A caller asking for the registry defaults gets the host's shared
    scheduler. A caller with its own ``max_concurrent``/``min_gap_ms`` gets a
    separate scheduler for that host, named ``host[<n>/<gap>ms]``.
    """

    def __init__(self, max_concurrent: int = 4, min_gap_ms: int = 120) -> None:
        self.max_concurrent = max_concurrent
        self.min_gap_ms = min_gap_ms
        self._schedulers: Dict[Tuple[str, int, int], RequestScheduler] = {}

    @staticmethod
    def service_name(url: str) -> str:
        parts = urlsplit(url)
        return parts.netloc or "local"

    def for_url(
        self,
        url: str,
        max_concurrent: Optional[int] = None,
        min_gap_ms: Optional[int] = None,
    ) -> RequestScheduler:
        return self.get(self.service_name(url), max_concurrent, min_gap_ms)

    def get(
        self,
        service: str,
        max_concurrent: Optional[int] = None,
        min_gap_ms: Optional[int] = None,
    ) -> RequestScheduler:
        limit = self.max_concurrent if max_concurrent is None else int(max_concurrent)
        gap = self.min_gap_ms if min_gap_ms is None else int(min_gap_ms)
        key = (service, limit, gap)
        scheduler = self._schedulers.get(key)
        if scheduler is None:
            if (limit, gap) == (self.max_concurrent, self.min_gap_ms):
                name = service
            else:
                name = f"{service}[{limit}/{gap}ms]"
            scheduler = RequestScheduler(limit, gap, name=name)
            self._schedulers[key] = scheduler
        return scheduler

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {s.name: s.snapshot() for s in self._schedulers.values()}
