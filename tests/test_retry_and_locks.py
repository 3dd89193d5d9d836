"""Unit tests for the bounded retry loop and the keyed lock."""

import asyncio

import pytest

from polychat.errors import (
    ConversationBusyError,
    ProviderContentError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    UpstreamUnavailableError,
)
from polychat.utils.locks import KeyedLock
from polychat.utils.retry import RetryPolicy


class Flaky:
    def __init__(self, failures: list[Exception], result: str = "ok") -> None:
        self.failures = list(failures)
        self.result = result
        self.attempts = 0

    async def __call__(self) -> str:
        self.attempts += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


class TestRetryPolicy:
    """Test retry classification and bounds."""

    @pytest.mark.asyncio
    async def test_exhaustion_after_exact_attempts(self):
        """An always rate-limited operation runs exactly max_attempts times."""
        sleeps: list[float] = []

        async def record(delay: float) -> None:
            sleeps.append(delay)

        operation = Flaky([ProviderRateLimitError("429")] * 10)
        policy = RetryPolicy(max_attempts=4, backoff_seconds=0.5)

        with pytest.raises(UpstreamUnavailableError) as excinfo:
            await policy.run(operation, sleep=record)

        assert operation.attempts == 4
        assert excinfo.value.attempts == 4
        assert isinstance(excinfo.value.__cause__, ProviderRateLimitError)
        assert sleeps == [0.5, 1.0, 2.0]

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(self):
        """Retryable failures followed by success return the result."""
        operation = Flaky([ProviderRateLimitError("429"), ProviderTimeoutError("slow")])

        async def no_sleep(delay: float) -> None:
            pass

        assert await RetryPolicy(max_attempts=3).run(operation, sleep=no_sleep) == "ok"
        assert operation.attempts == 3

    @pytest.mark.asyncio
    async def test_non_retryable_propagates_immediately(self):
        """Content errors are not retried."""
        operation = Flaky([ProviderContentError("unsafe")])
        with pytest.raises(ProviderContentError):
            await RetryPolicy(max_attempts=3).run(operation)
        assert operation.attempts == 1

    @pytest.mark.asyncio
    async def test_single_attempt_never_sleeps(self):
        """With one attempt allowed the first retryable failure is final."""
        sleeps: list[float] = []

        async def record(delay: float) -> None:
            sleeps.append(delay)

        operation = Flaky([ProviderTimeoutError("slow")])
        with pytest.raises(UpstreamUnavailableError) as excinfo:
            await RetryPolicy(max_attempts=1).run(operation, sleep=record)

        assert operation.attempts == 1
        assert excinfo.value.attempts == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_unclassified_errors_are_not_retried(self):
        """Exceptions without a retry classification pass through untouched."""
        operation = Flaky([KeyError("choices")])
        with pytest.raises(KeyError):
            await RetryPolicy(max_attempts=3).run(operation)
        assert operation.attempts == 1

    def test_backoff_is_exponential(self):
        """Delays double per attempt."""
        policy = RetryPolicy(backoff_seconds=1.0)
        assert [policy.delay_for(n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]


class TestKeyedLock:
    """Test per-key mutual exclusion."""

    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self):
        """Holders of one key never overlap."""
        locks = KeyedLock()
        active = 0
        peak = 0
        order: list[int] = []

        async def worker(n: int) -> None:
            nonlocal active, peak
            async with locks.hold("conv"):
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                order.append(n)
                active -= 1

        await asyncio.gather(*(worker(n) for n in range(5)))
        assert peak == 1
        assert order == [0, 1, 2, 3, 4]
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_different_keys_run_concurrently(self):
        """Distinct keys do not block each other."""
        locks = KeyedLock()
        both_inside = asyncio.Event()
        inside = 0

        async def worker(key: str) -> None:
            nonlocal inside
            async with locks.hold(key):
                inside += 1
                if inside == 2:
                    both_inside.set()
                await asyncio.wait_for(both_inside.wait(), timeout=1)

        await asyncio.gather(worker("a"), worker("b"))

    @pytest.mark.asyncio
    async def test_fail_fast_when_busy(self):
        """Without waiting, a held key raises ConversationBusyError."""
        locks = KeyedLock()
        async with locks.hold("conv"):
            with pytest.raises(ConversationBusyError):
                async with locks.hold("conv", wait=False):
                    pass
        async with locks.hold("conv", wait=False):
            assert locks.locked("conv")
        assert not locks.locked("conv")
