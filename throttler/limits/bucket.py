"""Token bucket with a FIFO admission queue."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass

from throttler.errors import InvalidConfigurationError, PolicyRemovedError, UnsatisfiableRequestError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Waiter:
    cost: float
    future: asyncio.Future[None]


class TokenBucket:
    """Token bucket that admits requests strictly in arrival order.

    Tokens are replenished by ``refill_amount`` every ``interval_ms`` while the
    bucket is below capacity or has waiters. The replenishment timer is started
    lazily and cancelled once the bucket is full and idle again.
    """

    def __init__(
        self,
        capacity: float | None = None,
        *,
        interval_ms: int = 1000,
        refill_amount: float = 1,
        initial_level: float | None = None,
    ) -> None:
        if capacity is None:
            capacity = initial_level or 1
        if capacity <= 0:
            raise InvalidConfigurationError(f"capacity must be positive, got {capacity}")
        if interval_ms <= 0:
            raise InvalidConfigurationError(f"interval_ms must be positive, got {interval_ms}")
        if refill_amount < 0:
            raise InvalidConfigurationError(f"refill_amount must not be negative, got {refill_amount}")
        if initial_level is None:
            initial_level = capacity
        self.capacity = capacity
        self.interval_ms = interval_ms
        self.refill_amount = refill_amount
        self._level = min(max(initial_level, 0), capacity)
        self._queue: deque[_Waiter] = deque()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._timer_started_at = 0.0
        self._ticks = 0
        self._closed = False

    @property
    def level(self) -> float:
        return self._level

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def timer_active(self) -> bool:
        return self._timer is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def request(self, cost: float = 1) -> asyncio.Future[None]:
        """Queue a debit of ``cost`` tokens and return a future for its admission.

        The queue is drained before returning, so the future may already be
        done. Must be called with a running event loop.
        """
        if cost < 0:
            raise ValueError(f"cost must not be negative, got {cost}")
        if cost > self.capacity:
            raise UnsatisfiableRequestError(cost, self.capacity)
        if self._closed:
            raise PolicyRemovedError("Bucket has been closed")
        loop = asyncio.get_running_loop()
        future: asyncio.Future[None] = loop.create_future()
        if cost == 0:
            future.set_result(None)
            return future
        if self._loop is not loop:
            self._move_to_loop(loop)
        self._queue.append(_Waiter(cost, future))
        self._drain()
        if self._timer is None and (self._level < self.capacity or self._queue):
            self._start_timer()
        return future

    async def acquire(self, cost: float = 1) -> None:
        await self.request(cost)

    def refill(self) -> None:
        """Apply a single replenishment step and admit whoever now fits."""
        self._level = min(self._level + self.refill_amount, self.capacity)
        self._drain()

    def close(self) -> None:
        """Stop the timer and fail every pending waiter with ``PolicyRemovedError``."""
        self._closed = True
        self._stop_timer()
        if self._queue:
            logger.warning("Closing bucket with %s pending request(s)", len(self._queue))
        while self._queue:
            waiter = self._queue.popleft()
            if not waiter.future.done():
                waiter.future.set_exception(PolicyRemovedError("Policy removed while request was pending"))

    def _move_to_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        # Timer and waiters of a previous loop can never fire or be awaited again
        if self._loop is not None:
            logger.debug("Bucket moved to a new event loop; restarting refill timer")
        self._stop_timer()
        if self._queue:
            logger.warning("Dropping %s request(s) queued on a previous event loop", len(self._queue))
            self._queue.clear()
        self._loop = loop

    def _drain(self) -> None:
        while self._queue:
            head = self._queue[0]
            if head.future.done():
                # Cancelled by its awaiting task
                self._queue.popleft()
                continue
            if self._level < head.cost:
                break
            self._level -= head.cost
            self._queue.popleft()
            head.future.set_result(None)

    def _start_timer(self) -> None:
        assert self._loop is not None
        self._timer_started_at = self._loop.time()
        self._ticks = 0
        logger.debug("Starting refill timer every %sms", self.interval_ms)
        self._schedule_tick()

    def _schedule_tick(self) -> None:
        assert self._loop is not None
        self._ticks += 1
        when = self._timer_started_at + self._ticks * self.interval_ms / 1000
        self._timer = self._loop.call_at(when, self._on_tick)

    def _on_tick(self) -> None:
        self._timer = None
        self.refill()
        logger.debug("Refilled to %s tokens, %s pending", self._level, len(self._queue))
        if self._level >= self.capacity and not self._queue:
            logger.debug("Bucket full and idle; refill timer stopped")
            return
        self._schedule_tick()

    def _stop_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            logger.debug("Refill timer cancelled")

    def __repr__(self) -> str:
        return (
            f"TokenBucket(capacity={self.capacity}, level={self._level}, "
            f"interval_ms={self.interval_ms}, refill_amount={self.refill_amount}, pending={len(self._queue)})"
        )
