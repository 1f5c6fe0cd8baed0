"""
Request orchestration for the remote endpoint.

Each dedup key moves through IDLE -> QUEUED -> EXECUTING -> SETTLED, with a
RETRYING detour back to QUEUED after a retryable failure. Callers that ask for
a key which is already queued, executing or waiting for a retry share the
same future, so one logical request costs one execution sequence.

The backend tolerates few requests per second, so dispatch is bounded by
``max_concurrent`` and spaced by ``request_delay``.
"""

import asyncio
import itertools
import logging
import random
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .errors import QueueClearedError, SheetgateError, is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RequestState(str, Enum):
    QUEUED = "queued"
    EXECUTING = "executing"
    RETRYING = "retrying"
    SETTLED = "settled"


@dataclass(frozen=True)
class RetryPolicy:
    """Capped exponential backoff.

    With jitter enabled the n-th delay is drawn from
    ``[base_delay(n), base_delay(n + 1)]``, so successive delays never
    decrease and never exceed ``max_delay``.
    """

    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 5.0
    jitter: bool = True

    def base_delay(self, retry: int) -> float:
        return min(self.max_delay, self.initial_delay * self.multiplier ** (retry - 1))

    def delay_for(self, retry: int, rand: Callable[[], float] = random.random) -> float:
        low = self.base_delay(retry)
        if not self.jitter:
            return low
        high = self.base_delay(retry + 1)
        return low + (high - low) * rand()


@dataclass(frozen=True)
class QueueConfig:
    max_concurrent: int = 3
    request_delay: float = 0.1
    max_retries: int = 2
    retry_delay: float = 1.0
    backoff_multiplier: float = 2.0
    max_retry_delay: float = 5.0
    jitter: bool = True
    deduping_interval: float = 5.0

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            initial_delay=self.retry_delay,
            multiplier=self.backoff_multiplier,
            max_delay=self.max_retry_delay,
            jitter=self.jitter,
        )


@dataclass(eq=False)
class QueuedRequest:
    id: str
    key: str
    request: Callable[[], Awaitable[Any]]
    future: asyncio.Future
    priority: int
    timestamp: float
    max_retries: int
    sequence: int
    retries: int = 0
    state: RequestState = RequestState.QUEUED
    started_at: Optional[float] = None
    retry_handle: Optional[asyncio.Task] = field(default=None, repr=False)


class RequestQueue:
    """Deduplicating, priority-ordered, retrying request queue."""

    def __init__(
        self,
        config: Optional[QueueConfig] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rand: Callable[[], float] = random.random,
    ):
        self.config = config or QueueConfig()
        self._clock = clock
        self._sleep = sleep
        self._rand = rand
        self._queue: list[QueuedRequest] = []
        # Requests out of the queue but not settled: executing or backing off
        self._in_flight: dict[str, QueuedRequest] = {}
        self._processing = False
        self._sequence = itertools.count()
        self._tasks: set[asyncio.Task] = set()
        self._idle = asyncio.Event()

    async def enqueue(
        self,
        key: str,
        request: Callable[[], Awaitable[T]],
        priority: int = 0,
        max_retries: Optional[int] = None,
    ) -> T:
        """Run ``request`` under ``key``, sharing the result with duplicates."""
        existing = self._in_flight.get(key)
        if existing is not None:
            logger.debug(f"Deduplicating request: {key} ({existing.state.value})")
            return await asyncio.shield(existing.future)

        now = self._clock()
        queued = next(
            (
                entry
                for entry in self._queue
                if entry.key == key
                and (
                    entry.retries > 0
                    or now - entry.timestamp < self.config.deduping_interval
                )
            ),
            None,
        )
        if queued is not None:
            logger.debug(f"Joining queued request: {key}")
            return await asyncio.shield(queued.future)

        sequence = next(self._sequence)
        entry = QueuedRequest(
            id=f"{key}-{sequence}",
            key=key,
            request=request,
            future=asyncio.get_running_loop().create_future(),
            priority=priority,
            timestamp=now,
            max_retries=self.config.max_retries if max_retries is None else max_retries,
            sequence=sequence,
        )
        self._insert(entry)
        self._schedule_processing()
        return await asyncio.shield(entry.future)

    def get_stats(self) -> dict[str, Any]:
        executing = [
            entry
            for entry in self._in_flight.values()
            if entry.state == RequestState.EXECUTING
        ]
        return {
            "queue_size": len(self._queue),
            "active_requests": len(executing),
            "pending_requests": len(self._in_flight),
            "is_processing": self._processing,
        }

    def clear(self) -> int:
        """Reject every request that has not started executing."""
        dropped = list(self._queue)
        self._queue.clear()
        for key, entry in list(self._in_flight.items()):
            if entry.state == RequestState.RETRYING:
                if entry.retry_handle is not None:
                    entry.retry_handle.cancel()
                del self._in_flight[key]
                dropped.append(entry)

        for entry in dropped:
            entry.state = RequestState.SETTLED
            if not entry.future.done():
                entry.future.set_exception(
                    QueueClearedError(f"Request queue cleared: {entry.key}")
                )
                # Nobody may be awaiting a cleared entry any more
                entry.future.exception()
        if dropped:
            logger.info(f"Request queue cleared, {len(dropped)} request(s) rejected")
        self._notify_if_idle()
        return len(dropped)

    def update_config(self, **changes: Any) -> None:
        self.config = replace(self.config, **changes)

    async def join(self) -> None:
        """Wait until the queue is drained and nothing is in flight."""
        while self._busy():
            self._idle.clear()
            await self._idle.wait()

    def _busy(self) -> bool:
        return bool(self._queue or self._in_flight or self._tasks)

    def _notify_if_idle(self) -> None:
        if not self._busy():
            self._idle.set()

    def _insert(self, entry: QueuedRequest) -> None:
        self._queue.append(entry)
        # Retries first, then by descending priority, ties in insertion order
        self._queue.sort(
            key=lambda item: (item.retries == 0, -item.priority, item.sequence)
        )

    def _schedule_processing(self) -> None:
        if not self._processing:
            self._processing = True
            self._spawn(self._process_queue())

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        self._notify_if_idle()

    def _executing_count(self) -> int:
        return sum(
            1
            for entry in self._in_flight.values()
            if entry.state == RequestState.EXECUTING
        )

    def _next_ready(self) -> Optional[QueuedRequest]:
        for index, entry in enumerate(self._queue):
            if entry.key not in self._in_flight:
                return self._queue.pop(index)
        return None

    async def _process_queue(self) -> None:
        try:
            while self._queue and self._executing_count() < self.config.max_concurrent:
                entry = self._next_ready()
                if entry is None:
                    break
                entry.state = RequestState.EXECUTING
                self._in_flight[entry.key] = entry
                self._spawn(self._execute(entry))

                if self.config.request_delay > 0:
                    await self._sleep(self.config.request_delay)
        finally:
            self._processing = False

    async def _execute(self, entry: QueuedRequest) -> None:
        if entry.started_at is None:
            entry.started_at = self._clock()
        attempt = entry.retries + 1

        try:
            result = await entry.request()
        except asyncio.CancelledError:
            self._settle(entry)
            if not entry.future.done():
                entry.future.cancel()
            raise
        except Exception as e:
            if is_retryable(e) and entry.retries < entry.max_retries:
                entry.retries += 1
                delay = self._retry_delay(entry, e)
                logger.warning(
                    f"Request failed: {entry.key} (attempt {attempt}), "
                    f"retrying {entry.retries}/{entry.max_retries} in {delay:.2f}s: {e}"
                )
                entry.state = RequestState.RETRYING
                entry.retry_handle = self._spawn(self._requeue_after(entry, delay))
            else:
                self._fail(entry, e, attempt)
        else:
            self._settle(entry)
            if not entry.future.done():
                entry.future.set_result(result)
            logger.debug(f"Request completed: {entry.key} (attempt {attempt})")
        finally:
            if self._queue:
                self._schedule_processing()

    def _retry_delay(self, entry: QueuedRequest, error: Exception) -> float:
        delay = self.config.retry_policy.delay_for(entry.retries, self._rand)
        retry_after = getattr(error, "retry_after", None)
        if retry_after:
            delay = min(self.config.max_retry_delay, max(delay, retry_after))
        return delay

    async def _requeue_after(self, entry: QueuedRequest, delay: float) -> None:
        await self._sleep(delay)
        if entry.state != RequestState.RETRYING:
            return
        entry.retry_handle = None
        entry.state = RequestState.QUEUED
        self._in_flight.pop(entry.key, None)
        self._insert(entry)
        self._schedule_processing()

    def _fail(self, entry: QueuedRequest, error: Exception, attempts: int) -> None:
        elapsed = self._clock() - (entry.started_at or entry.timestamp)
        self._settle(entry)
        if isinstance(error, SheetgateError):
            error.attempts = attempts
            error.elapsed = elapsed
        else:
            error.add_note(f"{entry.key} failed after {attempts} attempt(s) in {elapsed:.3f}s")
        logger.error(
            f"Request failed after {attempts} attempt(s) in {elapsed:.3f}s: {entry.key}: {error}"
        )
        if not entry.future.done():
            entry.future.set_exception(error)

    def _settle(self, entry: QueuedRequest) -> None:
        entry.state = RequestState.SETTLED
        if self._in_flight.get(entry.key) is entry:
            del self._in_flight[entry.key]
