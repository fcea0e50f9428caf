"""Tests for the per-email login attempt throttle."""

import asyncio
import threading

import pytest

from adoptly.service.errors import ErrorCode, ServerError
from adoptly.service.throttle import LoginAttemptThrottle
from adoptly.storage.memory_cache import MemoryCache


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend(clock):
    return MemoryCache(clock=clock)


@pytest.fixture
def throttle(backend):
    return LoginAttemptThrottle(backend, max_attempts=5, lockout_seconds=1800, captcha_after=3)


class TestCounting:
    async def test_blocks_at_fifth_failure(self, throttle):
        for expected in range(1, 5):
            assert await throttle.record_failed_attempt("bob@example.com") == expected
            assert not await throttle.is_blocked("bob@example.com")
        assert await throttle.record_failed_attempt("bob@example.com") == 5
        assert await throttle.is_blocked("bob@example.com")
        assert await throttle.get_remaining_attempts("bob@example.com") == 0

    async def test_remaining_attempts_never_negative(self, throttle):
        for _ in range(7):
            await throttle.record_failed_attempt("bob@example.com")
        assert await throttle.get_remaining_attempts("bob@example.com") == 0

    async def test_success_resets(self, throttle):
        for _ in range(4):
            await throttle.record_failed_attempt("bob@example.com")
        await throttle.record_successful_login("bob@example.com")
        assert await throttle.attempts("bob@example.com") == 0
        assert await throttle.get_remaining_attempts("bob@example.com") == 5

    async def test_keys_are_case_insensitive(self, throttle):
        await throttle.record_failed_attempt("Bob@Example.com")
        assert await throttle.attempts("bob@example.com") == 1

    async def test_captcha_after_three_failures(self, throttle):
        for _ in range(2):
            await throttle.record_failed_attempt("bob@example.com")
        assert not await throttle.requires_captcha("bob@example.com")
        await throttle.record_failed_attempt("bob@example.com")
        assert await throttle.requires_captcha("bob@example.com")


class TestExpiry:
    async def test_lockout_ends_after_window(self, throttle, clock):
        for _ in range(5):
            await throttle.record_failed_attempt("bob@example.com")
        clock.advance(1799)
        assert await throttle.is_blocked("bob@example.com")
        clock.advance(1)
        assert not await throttle.is_blocked("bob@example.com")
        assert await throttle.get_remaining_attempts("bob@example.com") == 5

    async def test_window_runs_from_last_failure(self, throttle, clock):
        await throttle.record_failed_attempt("bob@example.com")
        clock.advance(1000)
        await throttle.record_failed_attempt("bob@example.com")
        clock.advance(1000)
        assert await throttle.attempts("bob@example.com") == 2

    async def test_purge_removes_only_expired_counters(self, throttle, backend, clock):
        await throttle.record_failed_attempt("old@example.com")
        clock.advance(1800)
        await throttle.record_failed_attempt("new@example.com")
        assert backend.purge_expired() == 1
        assert await throttle.attempts("new@example.com") == 1


class TestSharedBackend:
    async def test_failures_are_shared_between_workers(self, backend):
        # two workers, one cache backend
        worker_a = LoginAttemptThrottle(backend)
        worker_b = LoginAttemptThrottle(backend)
        for _ in range(3):
            await worker_a.record_failed_attempt("bob@example.com")
        for _ in range(2):
            await worker_b.record_failed_attempt("bob@example.com")
        assert await worker_a.is_blocked("bob@example.com")
        assert await worker_b.is_blocked("bob@example.com")

        await worker_b.record_successful_login("bob@example.com")
        assert await worker_a.attempts("bob@example.com") == 0

    async def test_unreachable_backend_is_an_external_service_error(self):
        class BrokenBackend(MemoryCache):
            async def login_failure_count(self, email):
                raise ConnectionError("redis down")

        throttle = LoginAttemptThrottle(BrokenBackend())
        with pytest.raises(ServerError) as excinfo:
            await throttle.is_blocked("bob@example.com")
        assert excinfo.value.error_code == ErrorCode.SYSTEM_EXTERNAL_SERVICE_ERROR
        assert excinfo.value.status_code == 503

    async def test_slow_backend_times_out(self):
        class SlowBackend(MemoryCache):
            async def record_login_failure(self, email, window_seconds):
                await asyncio.sleep(1)
                return 1

        throttle = LoginAttemptThrottle(SlowBackend(), operation_timeout=0.05)
        with pytest.raises(ServerError):
            await throttle.record_failed_attempt("bob@example.com")


class TestConcurrency:
    def test_concurrent_failures_all_counted(self):
        throttle = LoginAttemptThrottle(MemoryCache(), max_attempts=1000)
        barrier = threading.Barrier(8)

        def hammer():
            barrier.wait()
            for _ in range(50):
                asyncio.run(throttle.record_failed_attempt("race@example.com"))

        threads = [threading.Thread(target=hammer) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert asyncio.run(throttle.attempts("race@example.com")) == 400

    def test_distinct_emails_do_not_interfere(self):
        throttle = LoginAttemptThrottle(MemoryCache())
        emails = [f"user{n}@example.com" for n in range(20)]

        def fail(email):
            for _ in range(3):
                asyncio.run(throttle.record_failed_attempt(email))

        threads = [threading.Thread(target=fail, args=(e,)) for e in emails]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert all(asyncio.run(throttle.attempts(e)) == 3 for e in emails)
