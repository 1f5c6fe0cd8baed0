"""Tests for the request queue."""

import asyncio
import random

import pytest

from sheetgate.errors import (
    AuthenticationError,
    QueueClearedError,
    RateLimitError,
    ServerError,
)
from sheetgate.orchestrator import QueueConfig, RequestQueue, RetryPolicy


async def settle(rounds: int = 20):
    """Let every ready task run a few steps."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class TestDeduplication:
    """Tests for sharing one execution between callers."""

    @pytest.fixture
    def queue(self, fake_sleep):
        return RequestQueue(QueueConfig(request_delay=0), sleep=fake_sleep)

    @pytest.mark.asyncio
    async def test_same_key_runs_once(self, queue):
        calls = 0
        gate = asyncio.Event()

        async def request():
            nonlocal calls
            calls += 1
            await gate.wait()
            return "value"

        first = asyncio.create_task(queue.enqueue("Usuarios:list", request))
        second = asyncio.create_task(queue.enqueue("Usuarios:list", request))
        await settle()
        gate.set()

        assert await first == "value"
        assert await second == "value"
        assert calls == 1

    @pytest.mark.asyncio
    async def test_joins_executing_request(self, queue):
        calls = 0
        gate = asyncio.Event()

        async def request():
            nonlocal calls
            calls += 1
            await gate.wait()
            return calls

        first = asyncio.create_task(queue.enqueue("Usuarios:list", request))
        await settle()
        assert queue.get_stats()["active_requests"] == 1

        second = asyncio.create_task(queue.enqueue("Usuarios:list", request))
        await settle()
        gate.set()

        assert await first == await second == 1

    @pytest.mark.asyncio
    async def test_distinct_keys_run_separately(self, queue):
        calls = []

        async def request(name):
            calls.append(name)
            return name

        results = await asyncio.gather(
            queue.enqueue("a", lambda: request("a")),
            queue.enqueue("b", lambda: request("b")),
        )

        assert results == ["a", "b"]
        assert sorted(calls) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_settled_key_runs_again(self, queue):
        calls = 0

        async def request():
            nonlocal calls
            calls += 1
            return calls

        assert await queue.enqueue("k", request) == 1
        assert await queue.enqueue("k", request) == 2


class TestRetries:
    """Tests for retry and backoff behaviour."""

    @pytest.fixture
    def queue(self, fake_sleep):
        config = QueueConfig(request_delay=0, max_retries=2, jitter=False)
        return RequestQueue(config, sleep=fake_sleep)

    @pytest.mark.asyncio
    async def test_attempts_bounded_by_max_retries(self, queue, fake_sleep):
        attempts = 0

        async def request():
            nonlocal attempts
            attempts += 1
            raise ServerError("boom", status=500)

        with pytest.raises(ServerError) as exc_info:
            await queue.enqueue("k", request)

        assert attempts == 3
        assert exc_info.value.attempts == 3
        assert exc_info.value.elapsed is not None
        assert fake_sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_per_request_max_retries(self, queue):
        attempts = 0

        async def request():
            nonlocal attempts
            attempts += 1
            raise ServerError("boom", status=503)

        with pytest.raises(ServerError):
            await queue.enqueue("k", request, max_retries=0)

        assert attempts == 1

    @pytest.mark.asyncio
    async def test_terminal_error_not_retried(self, queue, fake_sleep):
        attempts = 0

        async def request():
            nonlocal attempts
            attempts += 1
            raise AuthenticationError("expired", status=401)

        with pytest.raises(AuthenticationError) as exc_info:
            await queue.enqueue("k", request)

        assert attempts == 1
        assert exc_info.value.attempts == 1
        assert fake_sleep.delays == []

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self, queue):
        attempts = 0

        async def request():
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise ServerError("flaky", status=502)
            return "ok"

        assert await queue.enqueue("k", request) == "ok"
        assert attempts == 2

    @pytest.mark.asyncio
    async def test_unknown_errors_are_retried_and_annotated(self, queue):
        attempts = 0

        async def request():
            nonlocal attempts
            attempts += 1
            raise RuntimeError("socket closed")

        with pytest.raises(RuntimeError) as exc_info:
            await queue.enqueue("k", request)

        assert attempts == 3
        assert any("3 attempt(s)" in note for note in exc_info.value.__notes__)

    @pytest.mark.asyncio
    async def test_retry_after_is_honoured(self, queue, fake_sleep):
        attempts = 0

        async def request():
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise RateLimitError("slow down", retry_after=3, status=429)
            return "ok"

        assert await queue.enqueue("k", request) == "ok"
        assert fake_sleep.delays == [3]


class TestRetryPolicy:
    """Tests for the backoff schedule."""

    def test_base_delay_is_capped(self):
        policy = RetryPolicy(initial_delay=1.0, multiplier=2.0, max_delay=5.0)

        assert [policy.base_delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_jittered_delays_never_decrease(self):
        policy = RetryPolicy(jitter=True)
        rand = random.Random(42).random

        for _ in range(50):
            delays = [policy.delay_for(n, rand) for n in range(1, 8)]
            assert delays == sorted(delays)
            assert max(delays) <= policy.max_delay

    def test_without_jitter(self):
        policy = RetryPolicy(initial_delay=0.5, jitter=False)

        assert policy.delay_for(2) == 1.0


class TestOrdering:
    """Tests for priority ordering and the concurrency ceiling."""

    @pytest.fixture
    def queue(self, fake_sleep):
        return RequestQueue(
            QueueConfig(request_delay=0, max_concurrent=1), sleep=fake_sleep
        )

    @pytest.mark.asyncio
    async def test_priority_then_insertion_order(self, queue):
        order = []
        gate = asyncio.Event()

        async def blocker():
            order.append("blocker")
            await gate.wait()

        async def request(name):
            order.append(name)

        tasks = [asyncio.create_task(queue.enqueue("blocker", blocker))]
        await settle()
        tasks.append(asyncio.create_task(queue.enqueue("low", lambda: request("low"))))
        tasks.append(
            asyncio.create_task(queue.enqueue("low2", lambda: request("low2")))
        )
        tasks.append(
            asyncio.create_task(
                queue.enqueue("high", lambda: request("high"), priority=5)
            )
        )
        await settle()
        assert order == ["blocker"]

        gate.set()
        await asyncio.gather(*tasks)

        assert order == ["blocker", "high", "low", "low2"]

    @pytest.mark.asyncio
    async def test_concurrency_ceiling(self, fake_sleep):
        queue = RequestQueue(
            QueueConfig(request_delay=0, max_concurrent=2), sleep=fake_sleep
        )
        running = 0
        peak = 0

        async def request():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        await asyncio.gather(
            *(queue.enqueue(f"k{i}", request) for i in range(6))
        )

        assert peak == 2

    @pytest.mark.asyncio
    async def test_request_delay_between_dispatches(self, fake_sleep):
        queue = RequestQueue(QueueConfig(request_delay=0.1), sleep=fake_sleep)

        async def request():
            return 1

        await asyncio.gather(queue.enqueue("a", request), queue.enqueue("b", request))

        assert 0.1 in fake_sleep.delays


class TestClearAndStats:
    """Tests for clear(), get_stats() and update_config()."""

    @pytest.fixture
    def queue(self, fake_sleep):
        return RequestQueue(
            QueueConfig(request_delay=0, max_concurrent=1), sleep=fake_sleep
        )

    @pytest.mark.asyncio
    async def test_clear_rejects_queued_requests(self, queue):
        gate = asyncio.Event()

        async def blocker():
            await gate.wait()
            return "done"

        async def request():
            return "never"

        running = asyncio.create_task(queue.enqueue("blocker", blocker))
        await settle()
        waiting = asyncio.create_task(queue.enqueue("other", request))
        await settle()

        stats = queue.get_stats()
        assert stats["queue_size"] == 1
        assert stats["active_requests"] == 1
        assert stats["pending_requests"] == 1

        assert queue.clear() == 1
        with pytest.raises(QueueClearedError):
            await waiting

        gate.set()
        assert await running == "done"

    @pytest.mark.asyncio
    async def test_clear_rejects_request_waiting_to_retry(self):
        backoff = asyncio.Event()
        delays = []

        async def held_sleep(delay):
            delays.append(delay)
            await backoff.wait()

        queue = RequestQueue(
            QueueConfig(request_delay=0, max_retries=2, jitter=False), sleep=held_sleep
        )
        calls = 0

        async def request():
            nonlocal calls
            calls += 1
            raise ServerError("unavailable", status=503)

        first = asyncio.create_task(queue.enqueue("Usuarios:list", request))
        await settle()
        assert delays == [1.0]
        assert queue.get_stats()["pending_requests"] == 1

        second = asyncio.create_task(queue.enqueue("Usuarios:list", request))
        await settle()

        assert queue.clear() == 1
        for waiter in (first, second):
            with pytest.raises(QueueClearedError):
                await waiter

        backoff.set()
        await queue.join()
        assert calls == 1
        assert queue.get_stats()["pending_requests"] == 0

    @pytest.mark.asyncio
    async def test_join_returns_at_once_when_idle(self, queue):
        await asyncio.wait_for(queue.join(), timeout=1)

    @pytest.mark.asyncio
    async def test_join_waits_until_idle(self, queue):
        async def request():
            await asyncio.sleep(0.01)

        tasks = [asyncio.create_task(queue.enqueue(f"k{i}", request)) for i in range(3)]
        await settle()
        await queue.join()

        stats = queue.get_stats()
        assert stats["queue_size"] == 0
        assert stats["pending_requests"] == 0
        await asyncio.gather(*tasks)

    def test_update_config(self, queue):
        queue.update_config(max_concurrent=5)

        assert queue.config.max_concurrent == 5
        assert queue.config.request_delay == 0
