"""Pytest configuration for opskit tests."""

import logging

import pytest

from opskit.cancellation import CancellationToken


class RecordingToken(CancellationToken):
    """Token that records waits instead of sleeping.

    With ``cancel_on_wait`` it cancels itself the first time it is asked
    to wait, simulating a user cancelling during a backoff.
    """

    def __init__(self, cancel_on_wait: bool = False):
        super().__init__()
        self.waits: list[float] = []
        self.cancel_on_wait = cancel_on_wait

    def wait(self, seconds: float) -> bool:
        self.waits.append(seconds)
        if self.cancel_on_wait:
            self.cancel()
        return self.is_cancelled


@pytest.fixture
def token():
    return RecordingToken()


@pytest.fixture
def cancelling_token():
    return RecordingToken(cancel_on_wait=True)


@pytest.fixture(autouse=True)
def reset_opskit_logger():
    """configure_logging() detaches the opskit logger; restore it for caplog."""
    yield
    logger = logging.getLogger("opskit")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
