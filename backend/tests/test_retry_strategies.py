"""Tests for workflow retry strategies."""

import pytest

from app.config import get_settings
from workflow.retry_strategies import DEFAULT_DELAYS, RetryPolicy, RetryStrategy


# ─── RetryStrategy creation ───

@pytest.mark.unit
class TestRetryStrategyCreation:
    def test_default_schedule(self):
        s = RetryStrategy()
        assert s.policy == RetryPolicy.SCHEDULE
        assert s.max_attempts == 3
        assert s.delays == DEFAULT_DELAYS

    def test_none_strategy(self):
        s = RetryStrategy.none()
        assert s.policy == RetryPolicy.NONE
        assert s.max_attempts == 1

    def test_from_settings(self):
        s = RetryStrategy.from_settings(get_settings())
        assert s.delays == [1.0, 5.0, 15.0]
        assert s.max_attempts == 3

    def test_from_dict_overrides_default(self):
        s = RetryStrategy.from_dict({"max_attempts": 5, "delays": [2, 4]}, default=RetryStrategy())
        assert s.policy == RetryPolicy.SCHEDULE
        assert s.max_attempts == 5
        assert s.delays == [2.0, 4.0]

    def test_from_dict_empty_returns_default(self):
        default = RetryStrategy.schedule(delays=[3.0], max_attempts=2)
        assert RetryStrategy.from_dict(None, default=default) is default

    def test_from_dict_none_policy(self):
        assert RetryStrategy.from_dict({"policy": "none"}).policy == RetryPolicy.NONE

    def test_to_dict_roundtrip(self):
        original = RetryStrategy.exponential(max_attempts=4, base_delay=0.5)
        restored = RetryStrategy.from_dict(original.to_dict())
        assert restored.policy == original.policy
        assert restored.max_attempts == 4
        assert restored.base_delay == 0.5


# ─── Delay calculation ───

@pytest.mark.unit
class TestComputeDelay:
    def test_schedule_delays(self):
        s = RetryStrategy()
        assert [s.compute_delay(n) for n in (1, 2, 3)] == [1.0, 5.0, 15.0]

    def test_schedule_repeats_last_delay(self):
        s = RetryStrategy.schedule(delays=[1.0, 5.0], max_attempts=5)
        assert s.compute_delay(4) == 5.0

    def test_exponential(self):
        s = RetryStrategy.exponential(base_delay=1.0, max_delay=10.0)
        assert [s.compute_delay(n) for n in (1, 2, 3, 4, 5)] == [1.0, 2.0, 4.0, 8.0, 10.0]

    def test_none_has_no_delay(self):
        assert RetryStrategy.none().compute_delay(1) == 0.0

    def test_total_delay_of_default(self):
        # two retries after three attempts: 1s + 5s
        assert RetryStrategy().total_delay() == 6.0


# ─── Retry decision ───

@pytest.mark.unit
class TestShouldRetry:
    def test_attempts_are_capped(self):
        s = RetryStrategy()
        assert s.should_retry(1) is True
        assert s.should_retry(2) is True
        assert s.should_retry(3) is False

    def test_non_retryable_failure(self):
        assert RetryStrategy().should_retry(1, retryable=False) is False

    def test_none_never_retries(self):
        assert RetryStrategy.none().should_retry(1) is False
