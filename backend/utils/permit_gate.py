"""
Single-flight permit gate for the shared generation backend.

Round comments, chronicles, short-form notifications and marketing posts all
call the same rate-limited model. Running two of them at once wastes quota and
lets the narrator voice interleave, so every call site queues here.

The gate lives on the asyncio loop: acquire/release never block a thread and
hand-off to the next waiter happens synchronously inside release().
"""
import asyncio
import logging
import time
from collections import deque
from contextlib import asynccontextmanager
from typing import AsyncIterator, Deque, Dict, Optional

from utils.errors import PermitTimeoutError

logger = logging.getLogger(__name__)


class Permit:
    """Release capability for one slot. release() is idempotent."""

    def __init__(self, gate: "PermitGate"):
        self._gate = gate
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._gate._hand_off()


class PermitGate:
    """FIFO semaphore; capacity 1 gives strict single-flight."""

    def __init__(self, capacity: int = 1):
        if capacity <= 0:
            raise ValueError(f"Invalid permit capacity: {capacity!r}")
        self._capacity = capacity
        self._available = capacity
        self._waiters: Deque[asyncio.Future] = deque()

    def stats(self) -> Dict[str, int]:
        return {
            "capacity": self._capacity,
            "available": self._available,
            "queued": sum(1 for w in self._waiters if not w.done()),
        }

    async def acquire(self, timeout: Optional[float] = None) -> Permit:
        """
        Wait for a slot. With a positive ``timeout`` (seconds) an expired wait
        raises PermitTimeoutError and the caller leaves the queue.
        """
        if self._available > 0 and not self._waiters:
            self._available -= 1
            return Permit(self)

        loop = asyncio.get_running_loop()
        waiter: asyncio.Future = loop.create_future()
        self._waiters.append(waiter)

        timer = None
        if timeout is not None and timeout > 0:
            timer = loop.call_later(timeout, self._expire, waiter, timeout)

        try:
            return await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled() and waiter.exception() is None:
                # Handed a permit right before cancellation: pass it on.
                waiter.result().release()
            else:
                self._discard(waiter)
            raise
        finally:
            if timer is not None:
                timer.cancel()

    def _expire(self, waiter: asyncio.Future, timeout: float) -> None:
        if waiter.done():
            return
        self._discard(waiter)
        waiter.set_exception(PermitTimeoutError(f"Permit queue timeout after {timeout:.3f}s"))

    def _discard(self, waiter: asyncio.Future) -> None:
        try:
            self._waiters.remove(waiter)
        except ValueError:
            pass

    def _hand_off(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            # Slot moves straight to the longest waiter; ``available`` never rises.
            waiter.set_result(Permit(self))
            return
        self._available += 1

    @asynccontextmanager
    async def permit(self, label: str, timeout: Optional[float] = None) -> AsyncIterator[Permit]:
        """Hold one permit for the body of an ``async with`` block."""
        queued_before = self.stats()["queued"]
        wait_start = time.monotonic()
        if queued_before > 0 or self._available == 0:
            logger.info("[permit] %s waiting (queued=%d)", label, queued_before)

        held = await self.acquire(timeout)
        waited = time.monotonic() - wait_start
        s = self.stats()
        logger.info(
            "[permit] %s acquired after %.3fs (queued=%d, available=%d/%d)",
            label, waited, s["queued"], s["available"], s["capacity"],
        )
        acquired_at = time.monotonic()
        try:
            yield held
        finally:
            held.release()
            after = self.stats()
            logger.info(
                "[permit] %s released after %.3fs (queued=%d, available=%d/%d)",
                label, time.monotonic() - acquired_at,
                after["queued"], after["available"], after["capacity"],
            )
