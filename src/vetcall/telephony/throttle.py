"""
In-process throttle for outbound voice provider requests.

A FIFO queue with a concurrency cap and a fixed pause after each request
settles. One instance per process; it does not coordinate across replicas.
"""

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from vetcall.shared.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_CONCURRENT = 2
DEFAULT_DELAY_SECONDS = 0.5


class RequestThrottle:
    """Run async tasks with at most ``max_concurrent`` in flight.

    After each task finishes (either way) its slot is held for another
    ``delay_seconds`` before being released to the next queued task, so a
    task enqueued during that pause waits for it as well. A task's exception
    is delivered to its own caller only.
    """

    def __init__(
        self,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        delay_seconds: float = DEFAULT_DELAY_SECONDS,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._max_concurrent = max_concurrent
        self._delay_seconds = delay_seconds
        self._queue: deque[tuple[Callable[[], Awaitable[Any]], asyncio.Future[Any]]] = deque()
        self._active = 0
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def active(self) -> int:
        return self._active

    @property
    def pending(self) -> int:
        return len(self._queue)

    async def enqueue(self, task: Callable[[], Awaitable[T]]) -> T:
        """Queue ``task`` and wait for its result."""
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._queue.append((task, future))
        self._process_queue()
        return await future

    def _process_queue(self) -> None:
        while self._active < self._max_concurrent and self._queue:
            task, future = self._queue.popleft()
            if future.cancelled():
                continue
            self._active += 1
            runner = asyncio.create_task(self._run(task, future))
            self._tasks.add(runner)
            runner.add_done_callback(self._tasks.discard)

    async def _run(self, task: Callable[[], Awaitable[Any]], future: asyncio.Future[Any]) -> None:
        try:
            result = await task()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            if not future.done():
                future.set_exception(exc)
        else:
            if not future.done():
                future.set_result(result)
        finally:
            # The slot stays taken through the pause so late arrivals wait too.
            try:
                if self._delay_seconds > 0:
                    await asyncio.sleep(self._delay_seconds)
            finally:
                self._active -= 1
                logger.debug(
                    "Throttle slot released",
                    extra={"active": self._active, "pending": len(self._queue)},
                )
                self._process_queue()
