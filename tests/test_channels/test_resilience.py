"""
Tests for backoff and the circuit breaker.

Covers:
- Exponential backoff with cap and jitter
- CLOSED → OPEN → HALF_OPEN → CLOSED transitions
"""

import pytest

from carewatch.services.resilience import (
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
    backoff_delay,
)


class TestBackoff:
    @pytest.mark.parametrize("attempt, expected", [(1, 1.0), (2, 2.0), (3, 4.0), (5, 16.0), (8, 16.0)])
    def test_exponential_with_cap(self, attempt, expected):
        assert backoff_delay(attempt) == expected

    def test_jitter_bounds(self):
        for _ in range(20):
            assert 2.0 <= backoff_delay(2, jitter=0.5) <= 2.5

    def test_zero_base(self):
        assert backoff_delay(3, base_delay=0.0) == 0.0


async def _ok():
    return "ok"


async def _fail():
    raise ConnectionError("down")


class TestCircuitBreaker:
    @pytest.mark.asyncio
    async def test_opens_after_threshold(self):
        breaker = CircuitBreaker("test", failure_threshold=2, recovery_timeout=60)
        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.call(_fail)
        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitOpenError):
            await breaker.call(_ok)

    @pytest.mark.asyncio
    async def test_half_open_success_closes(self):
        breaker = CircuitBreaker("test", failure_threshold=1, recovery_timeout=0)
        with pytest.raises(ConnectionError):
            await breaker.call(_fail)
        assert breaker.state == CircuitState.HALF_OPEN
        assert await breaker.call(_ok) == "ok"
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self):
        breaker = CircuitBreaker("test", failure_threshold=1, recovery_timeout=0)
        with pytest.raises(ConnectionError):
            await breaker.call(_fail)
        with pytest.raises(ConnectionError):
            await breaker.call(_fail)
        breaker.recovery_timeout = 60
        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_success_resets_failures(self):
        breaker = CircuitBreaker("test", failure_threshold=2, recovery_timeout=60)
        with pytest.raises(ConnectionError):
            await breaker.call(_fail)
        await breaker.call(_ok)
        with pytest.raises(ConnectionError):
            await breaker.call(_fail)
        assert breaker.state == CircuitState.CLOSED

    def test_reset(self):
        breaker = CircuitBreaker("test", failure_threshold=1)
        breaker.record_failure()
        breaker.reset()
        assert breaker.state == CircuitState.CLOSED
