"""
Tests for retry policy and transient error helpers.
"""

import pytest
from addrmigrate.retry import (
    RetryPolicy,
    RetryError,
    exponential_backoff,
    linear_backoff,
    retry_call,
    is_transient_error,
    should_retry_http_status,
)


class TestRetryPolicy:
    """Test the retry policy value."""

    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.backoff is linear_backoff

    def test_linear_delays(self):
        """Delay is base interval times attempt number."""
        policy = RetryPolicy(max_attempts=4, base_delay=0.1)
        assert [policy.delay_for(a) for a in (1, 2, 3)] == pytest.approx([0.1, 0.2, 0.3])

    def test_exponential_delays(self):
        policy = RetryPolicy(max_attempts=4, base_delay=0.01, backoff=exponential_backoff)
        assert [policy.delay_for(a) for a in (1, 2, 3)] == pytest.approx([0.01, 0.02, 0.04])

    def test_max_delay_cap(self):
        """Delay should not exceed max_delay."""
        policy = RetryPolicy(max_attempts=10, base_delay=1.0, max_delay=2.0)
        assert all(policy.delay_for(a) <= 2.0 for a in range(1, 10))

    def test_max_total_delay(self):
        """Worst case sleeps only between attempts."""
        policy = RetryPolicy(max_attempts=3, base_delay=0.1)
        assert policy.max_total_delay == pytest.approx(0.3)

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    def test_rejects_negative_delay(self):
        with pytest.raises(ValueError):
            RetryPolicy(base_delay=-1)


class TestRetryCall:
    """Test retry_call."""

    def test_success_on_first_try(self):
        """Function that succeeds immediately should not retry."""
        call_count = [0]
        sleeps = []

        def succeeds():
            call_count[0] += 1
            return "success"

        result = retry_call(succeeds, RetryPolicy(), sleep=sleeps.append)
        assert result == "success"
        assert call_count[0] == 1
        assert sleeps == []

    def test_retry_then_succeed(self):
        """Function that fails then succeeds should retry."""
        call_count = [0]
        sleeps = []

        def fails_twice():
            call_count[0] += 1
            if call_count[0] < 3:
                raise ConnectionError("Temporary failure")
            return "success"

        result = retry_call(fails_twice, RetryPolicy(base_delay=0.5), sleep=sleeps.append)
        assert result == "success"
        assert call_count[0] == 3
        assert sleeps == [0.5, 1.0]

    def test_all_attempts_exhausted(self):
        """Should raise RetryError after max_attempts, without a final sleep."""
        call_count = [0]
        sleeps = []

        def always_fails():
            call_count[0] += 1
            raise ValueError("Always fails")

        with pytest.raises(RetryError) as excinfo:
            retry_call(always_fails, RetryPolicy(max_attempts=3), sleep=sleeps.append)

        assert call_count[0] == 3
        assert len(sleeps) == 2
        assert excinfo.value.attempts == 3
        assert isinstance(excinfo.value.last_exception, ValueError)

    def test_single_attempt_never_sleeps(self):
        sleeps = []

        def always_fails():
            raise ConnectionError("down")

        with pytest.raises(RetryError):
            retry_call(always_fails, RetryPolicy(max_attempts=1), sleep=sleeps.append)

        assert sleeps == []

    def test_only_catches_specified_exceptions(self):
        """Should only retry on specified exception types."""
        call_count = [0]

        def raises_value_error():
            call_count[0] += 1
            raise ValueError("Not retryable")

        with pytest.raises(ValueError):
            retry_call(
                raises_value_error,
                RetryPolicy(),
                exceptions=(ConnectionError,),
                sleep=lambda d: None,
            )

        assert call_count[0] == 1

    def test_on_retry_callback(self):
        calls = []

        def always_fails():
            raise ConnectionError("Test")

        with pytest.raises(RetryError):
            retry_call(
                always_fails,
                RetryPolicy(max_attempts=3, base_delay=0.01),
                on_retry=lambda attempt, exc, delay: calls.append((attempt, delay)),
                sleep=lambda d: None,
            )

        assert calls == [(1, 0.01), (2, 0.02)]


class TestTransientErrorDetection:
    """Test transient error detection utilities."""

    def test_detects_timeout_errors(self):
        """Should detect timeout errors as transient."""
        error = ConnectionError("Connection timeout")
        assert is_transient_error(error)

    def test_detects_connection_errors(self):
        """Should detect connection errors as transient."""
        error = Exception("Connection reset by peer")
        assert is_transient_error(error)

    def test_detects_server_errors(self):
        """Should detect 5xx errors as transient."""
        errors = [
            Exception("503 Service Unavailable"),
            Exception("502 Bad Gateway"),
            Exception("500 Internal Server Error"),
        ]
        for error in errors:
            assert is_transient_error(error)

    def test_non_transient_errors(self):
        """Should not detect permanent errors as transient."""
        errors = [
            Exception("404 Not Found"),
            ValueError("Invalid data"),
            Exception("401 Unauthorized"),
        ]
        for error in errors:
            assert not is_transient_error(error)

    def test_http_status_retry_logic(self):
        """Should correctly identify retryable HTTP status codes."""
        assert should_retry_http_status(408)
        assert should_retry_http_status(429)
        assert should_retry_http_status(500)
        assert should_retry_http_status(502)
        assert should_retry_http_status(503)

        assert not should_retry_http_status(200)
        assert not should_retry_http_status(404)
        assert not should_retry_http_status(403)
        assert not should_retry_http_status(401)
