"""Tests for the retry engine."""

import logging

import pytest

from opskit.errors import (
    ConfigurationError,
    ErrorKind,
    FatalError,
    OperationCancelled,
    RetryError,
)
from opskit.retry import (
    RetryPolicy,
    execute_with_retry,
    exponential_backoff,
    retry,
    retry_call,
)


class Flaky:
    """Callable failing ``failures`` times before returning ``value``."""

    def __init__(self, failures: int, value="ok", error=OSError("boom")):
        self.failures = failures
        self.value = value
        self.error = error
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.value


def test_success_first_attempt_does_not_wait(token):
    """Test that a successful operation returns immediately."""
    op = Flaky(0)

    result = execute_with_retry(op, RetryPolicy(max_attempts=3), token)

    assert result.ok
    assert result.value == "ok"
    assert result.attempts == 1
    assert op.calls == 1
    assert token.waits == []


@pytest.mark.parametrize("max_attempts", [-5, -1, 0])
def test_non_positive_attempts_run_exactly_once(token, max_attempts):
    """Test that negative or zero counts clamp to a single execution."""
    op = Flaky(10)

    with pytest.raises(RetryError):
        execute_with_retry(op, RetryPolicy(max_attempts=max_attempts), token)

    assert op.calls == 1
    assert token.waits == []


@pytest.mark.parametrize("failures", [1, 2, 3])
def test_fail_then_succeed_with_doubling_delay(token, failures):
    """Test n failures followed by success take n+1 attempts with doubling waits."""
    op = Flaky(failures)

    result = execute_with_retry(
        op, RetryPolicy(max_attempts=5, initial_delay=1.5), token
    )

    assert result.value == "ok"
    assert result.attempts == failures + 1
    assert op.calls == failures + 1
    assert token.waits == [1.5 * 2**i for i in range(failures)]


def test_exhausted_retries_raise_retry_error(token):
    """Test that exhausting retries raises a fatal RetryError wrapping the cause."""
    error = OSError("disk on fire")
    op = Flaky(10, error=error)

    with pytest.raises(RetryError) as exc_info:
        execute_with_retry(op, RetryPolicy(max_attempts=3, initial_delay=1), token)

    assert op.calls == 3
    assert token.waits == [1, 2]
    assert exc_info.value.last_error is error
    assert exc_info.value.__cause__ is error
    assert exc_info.value.kind is ErrorKind.FATAL


def test_exhausted_inner_loop_stops_outer_loop(token):
    """Test that a nested retry loop does not multiply attempts."""
    inner = Flaky(100)

    def outer_op():
        return retry_call(inner, RetryPolicy(max_attempts=2, initial_delay=0), token)

    with pytest.raises(RetryError):
        retry_call(outer_op, RetryPolicy(max_attempts=3, initial_delay=0), token)

    assert inner.calls == 2


@pytest.mark.parametrize(
    "error", [FatalError("stop"), ConfigurationError("missing tool")]
)
def test_non_retriable_errors_abort_immediately(token, error):
    """Test that fatal and configuration errors are re-raised without retrying."""
    op = Flaky(10, error=error)

    with pytest.raises(type(error)):
        execute_with_retry(op, RetryPolicy(max_attempts=5), token)

    assert op.calls == 1
    assert token.waits == []


def test_cancellation_during_wait_stops_without_operation_error(cancelling_token):
    """Test that cancelling mid-backoff raises OperationCancelled, not the cause."""
    op = Flaky(10, error=ValueError("should not surface"))

    with pytest.raises(OperationCancelled):
        execute_with_retry(op, RetryPolicy(max_attempts=5), cancelling_token)

    assert op.calls == 1
    assert len(cancelling_token.waits) == 1


def test_already_cancelled_token_skips_operation(token):
    """Test that a cancelled token prevents the first attempt."""
    token.cancel()
    op = Flaky(0)

    with pytest.raises(OperationCancelled):
        execute_with_retry(op, RetryPolicy(), token)

    assert op.calls == 0


def test_abort_predicate_returns_failure_without_raising(token):
    """Test that abort_if short-circuits the remaining retries."""
    error = PermissionError("forbidden")
    op = Flaky(10, error=error)
    policy = RetryPolicy(
        max_attempts=5, abort_if=lambda e: isinstance(e, PermissionError)
    )

    result = execute_with_retry(op, policy, token)

    assert not result.ok
    assert result.aborted
    assert result.error is error
    assert result.attempts == 1
    assert token.waits == []
    with pytest.raises(PermissionError):
        result.unwrap()


def test_intro_message_logged_each_attempt(token, caplog):
    """Test that the intro message is logged before every attempt."""
    op = Flaky(2)

    with caplog.at_level(logging.INFO, logger="opskit.retry"):
        execute_with_retry(
            op, RetryPolicy(max_attempts=3, intro_message="Fetching"), token
        )

    intros = [r for r in caplog.records if r.getMessage() == "Fetching"]
    assert len(intros) == 3
    assert any("Retries remaining: 2" in r.getMessage() for r in caplog.records)


def test_no_intro_message_when_empty(token, caplog):
    """Test that an empty intro message is never logged."""
    with caplog.at_level(logging.INFO, logger="opskit.retry"):
        execute_with_retry(Flaky(0), RetryPolicy(intro_message=""), token)

    assert caplog.records == []


def test_final_failure_is_logged(token, caplog):
    """Test that the triggering error and 'No more retries' are logged."""
    with caplog.at_level(logging.INFO, logger="opskit.retry"):
        with pytest.raises(RetryError):
            execute_with_retry(
                Flaky(5, error=OSError("locked file")),
                RetryPolicy(max_attempts=2, initial_delay=0),
                token,
            )

    messages = [r.getMessage() for r in caplog.records]
    assert any("locked file" in m for m in messages)
    assert "No more retries left" in messages


def test_retry_decorator():
    """Test the decorator form."""
    calls = []

    @retry(max_attempts=3, initial_delay=0)
    def sometimes(x):
        calls.append(x)
        if len(calls) < 2:
            raise OSError("again")
        return x * 2

    assert sometimes(21) == 42
    assert calls == [21, 21]


def test_exponential_backoff_caps_at_max_delay():
    """Test delay growth and the optional cap."""
    assert exponential_backoff(0, 1.0) == 1.0
    assert exponential_backoff(3, 1.0) == 8.0
    assert exponential_backoff(10, 1.0, max_delay=30.0) == 30.0


def test_policy_delay_for_uses_multiplier():
    policy = RetryPolicy(initial_delay=2.0, multiplier=3.0)

    assert [policy.delay_for(i) for i in range(3)] == [2.0, 6.0, 18.0]
