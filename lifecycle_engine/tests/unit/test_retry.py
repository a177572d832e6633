"""Unit tests for lifecycle_engine.provisioner.retry."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from lifecycle_engine.provisioner.retry import RetryConfig, compute_delay, retry_with_backoff


class _Transient(Exception):
    pass


def _transient(exc: Exception) -> bool:
    return isinstance(exc, _Transient)


# ---------------------------------------------------------------------------
# RetryConfig
# ---------------------------------------------------------------------------


class TestRetryConfig:
    def test_default_values(self):
        config = RetryConfig()
        assert config.max_retries == 3
        assert config.base_delay == 2.0
        assert config.max_delay == 60.0
        assert config.jitter is True

    def test_zero_retries_allowed(self):
        assert RetryConfig(max_retries=0).max_retries == 0

    def test_negative_retries_rejected(self):
        with pytest.raises(ValueError):
            RetryConfig(max_retries=-1)


# ---------------------------------------------------------------------------
# compute_delay
# ---------------------------------------------------------------------------


class TestComputeDelay:
    def test_exponential_growth_no_jitter(self):
        config = RetryConfig(base_delay=1.0, max_delay=100.0, jitter=False)
        assert [compute_delay(n, config) for n in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_max_delay_cap(self):
        config = RetryConfig(base_delay=1.0, max_delay=5.0, jitter=False)
        assert compute_delay(10, config) == 5.0

    def test_jitter_stays_within_bounds(self):
        config = RetryConfig(base_delay=10.0, max_delay=100.0, jitter=True)
        for _ in range(100):
            assert 5.0 <= compute_delay(0, config) <= 15.0


# ---------------------------------------------------------------------------
# retry_with_backoff
# ---------------------------------------------------------------------------


class TestRetryWithBackoff:
    def test_succeeds_first_try(self):
        fn = MagicMock(return_value=42)
        sleep = MagicMock()
        assert retry_with_backoff(fn, RetryConfig(), _transient, sleep=sleep) == 42
        assert fn.call_count == 1
        sleep.assert_not_called()

    def test_succeeds_after_transient_failures(self):
        fn = MagicMock(side_effect=[_Transient("locked"), _Transient("locked"), "ok"])
        sleep = MagicMock()
        config = RetryConfig(max_retries=3, base_delay=1.0, jitter=False)

        assert retry_with_backoff(fn, config, _transient, sleep=sleep) == "ok"
        assert fn.call_count == 3
        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0]

    def test_exhausts_retries(self):
        fn = MagicMock(side_effect=_Transient("locked"))
        config = RetryConfig(max_retries=2, base_delay=1.0, jitter=False)

        with pytest.raises(_Transient):
            retry_with_backoff(fn, config, _transient, sleep=MagicMock())
        assert fn.call_count == 3

    def test_permanent_error_not_retried(self):
        fn = MagicMock(side_effect=TypeError("bad"))
        sleep = MagicMock()
        with pytest.raises(TypeError, match="bad"):
            retry_with_backoff(fn, RetryConfig(), _transient, sleep=sleep)
        assert fn.call_count == 1
        sleep.assert_not_called()
