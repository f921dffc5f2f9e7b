"""
Retry logic with exponential backoff.

Runs an operation until it succeeds, the attempt budget is spent, the
error is classified as non-retriable, or the caller cancels.
"""

import functools
import logging
import random
from dataclasses import dataclass, field
from typing import Callable, Generic, Optional, TypeVar

from opskit.cancellation import CancellationToken
from opskit.errors import ErrorKind, OperationCancelled, RetryError, classify

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for retry behavior.

    ``max_attempts`` counts executions, not extra retries. Values below one
    are clamped so the operation still runs exactly once.
    """

    max_attempts: int = 3
    initial_delay: float = 3.0
    multiplier: float = 2.0
    max_delay: Optional[float] = None
    jitter: bool = False
    abort_if: Optional[Callable[[BaseException], bool]] = field(default=None, compare=False)
    intro_message: Optional[str] = None

    @property
    def attempts(self) -> int:
        return max(self.max_attempts, 1)

    def delay_for(self, retry_number: int) -> float:
        """Delay before the given retry (0-indexed)."""
        return exponential_backoff(
            retry_number,
            self.initial_delay,
            self.multiplier,
            self.max_delay,
            self.jitter,
        )


NO_RETRY = RetryPolicy(max_attempts=1, initial_delay=0.0)


def exponential_backoff(
    attempt: int,
    initial_delay: float = 3.0,
    exponential_base: float = 2.0,
    max_delay: Optional[float] = None,
    jitter: bool = False,
) -> float:
    """
    Calculate exponential backoff delay.

    Args:
        attempt: Current retry number (0-indexed)
        initial_delay: Initial delay in seconds
        exponential_base: Base for exponential calculation
        max_delay: Maximum delay in seconds (None = unbounded)
        jitter: Whether to add random jitter

    Returns:
        Delay in seconds
    """
    delay = initial_delay * (exponential_base**attempt)
    if max_delay is not None:
        delay = min(delay, max_delay)

    if jitter:
        # Add jitter (0-25% of delay)
        delay += random.uniform(0, delay * 0.25)

    return delay


@dataclass
class RetryResult(Generic[T]):
    """Outcome of ``execute_with_retry``.

    ``aborted`` is set when the policy's ``abort_if`` predicate stopped the
    loop; ``error`` then holds the error that triggered it.
    """

    value: Optional[T] = None
    error: Optional[BaseException] = None
    attempts: int = 0
    aborted: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


def execute_with_retry(
    operation: Callable[[], T],
    policy: Optional[RetryPolicy] = None,
    cancellation: Optional[CancellationToken] = None,
) -> RetryResult[T]:
    """
    Run ``operation`` under ``policy``.

    Args:
        operation: Zero-argument callable to run
        policy: Retry configuration (defaults to RetryPolicy())
        cancellation: Token checked before every attempt and during waits

    Returns:
        RetryResult holding the value, or the error if ``abort_if`` fired

    Raises:
        OperationCancelled: The token fired before or between attempts
        RetryError: Every attempt failed with a transient error
        OpsError: A non-retriable error was raised by the operation
    """
    policy = policy or RetryPolicy()
    token = cancellation or CancellationToken.none()
    total = policy.attempts

    for attempt in range(1, total + 1):
        token.raise_if_cancelled()

        if policy.intro_message:
            logger.info(policy.intro_message)

        try:
            return RetryResult(value=operation(), attempts=attempt)
        except Exception as e:
            kind = classify(e)

            if kind is ErrorKind.CANCELLED or token.is_cancelled:
                logger.info("Cancelling retry-able operation")
                if isinstance(e, OperationCancelled):
                    raise
                raise OperationCancelled() from e

            if not kind.retriable:
                logger.error(f"Aborting due to {kind.value} error: {e}")
                raise

            logger.warning(f"Caught exception during retry-able operation: {e}")

            if policy.abort_if is not None and policy.abort_if(e):
                logger.warning("Not retrying: error matched abort condition")
                return RetryResult(error=e, attempts=attempt, aborted=True)

            remaining = total - attempt
            if remaining == 0:
                logger.error("No more retries left")
                raise RetryError(
                    f"Failed after {attempt} attempts: {e}", attempt, e
                ) from e

            logger.info(f"Retries remaining: {remaining}")
            if token.wait(policy.delay_for(attempt - 1)):
                logger.info("Cancelling retry-able operation")
                raise OperationCancelled() from e

    # Unreachable: the loop either returns or raises on the last attempt
    raise RetryError(f"Failed after {total} attempts", total, None)


def retry_call(
    operation: Callable[[], T],
    policy: Optional[RetryPolicy] = None,
    cancellation: Optional[CancellationToken] = None,
) -> T:
    """Like ``execute_with_retry`` but returns the value or raises."""
    return execute_with_retry(operation, policy, cancellation).unwrap()


def retry(
    policy: Optional[RetryPolicy] = None,
    max_attempts: Optional[int] = None,
    initial_delay: Optional[float] = None,
):
    """
    Decorator for retrying failed operations with exponential backoff.

    Args:
        policy: RetryPolicy object (overrides other args)
        max_attempts: Maximum attempts
        initial_delay: Initial delay in seconds

    Usage:
        @retry(max_attempts=3, initial_delay=1.0)
        def my_function():
            # May fail and be retried
            pass
    """
    if policy is None:
        policy = RetryPolicy(
            max_attempts=max_attempts if max_attempts is not None else 3,
            initial_delay=initial_delay if initial_delay is not None else 3.0,
        )

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            return retry_call(lambda: func(*args, **kwargs), policy)

        return wrapper

    return decorator
