"""Cooperative cancellation shared by long-running operations."""

import threading

from opskit.errors import OperationCancelled


class CancellationToken:
    """Thread-safe cancellation flag.

    ``wait()`` is the suspension point used by backoff and throttling:
    it returns as soon as the token is cancelled instead of sleeping out
    the full delay.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    @classmethod
    def none(cls) -> "CancellationToken":
        """Token that is never cancelled by anyone but its owner."""
        return cls()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled()

    def wait(self, seconds: float) -> bool:
        """Sleep for up to ``seconds``.

        Returns:
            True if the token was cancelled before or during the wait
        """
        if seconds <= 0:
            return self._event.is_set()
        return self._event.wait(seconds)

    def sleep(self, seconds: float) -> None:
        """Like ``wait()`` but raises OperationCancelled when interrupted."""
        if self.wait(seconds):
            raise OperationCancelled()
