"""Fire-and-forget background work with explicit handles and error callbacks."""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional, TypeVar

from opskit.cancellation import CancellationToken
from opskit.errors import OperationCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TaskHandle:
    """Handle to a dispatched operation."""

    def __init__(self, future: Future, cancellation: CancellationToken):
        self.future = future
        self.cancellation = cancellation

    @property
    def done(self) -> bool:
        return self.future.done()

    def cancel(self) -> None:
        self.cancellation.cancel()

    def result(self, timeout: Optional[float] = None):
        return self.future.result(timeout)


class Dispatcher:
    """Runs operations on a worker pool.

    Failures go to the ``on_error`` callback given at dispatch time (or the
    dispatcher's default); they are never routed to a global handler.
    """

    def __init__(
        self,
        max_workers: int = 4,
        on_error: Optional[Callable[[BaseException], None]] = None,
    ):
        self._executor = ThreadPoolExecutor(max_workers=max_workers)
        self._default_on_error = on_error

    def dispatch(
        self,
        operation: Callable[[CancellationToken], T],
        on_error: Optional[Callable[[BaseException], None]] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> TaskHandle:
        token = cancellation or CancellationToken()
        handler = on_error or self._default_on_error
        future = self._executor.submit(operation, token)

        def completed(f: Future) -> None:
            error = f.exception()
            if error is None:
                return
            if isinstance(error, OperationCancelled):
                logger.info("Background operation cancelled")
                return
            if handler is None:
                logger.error(f"Background operation failed: {error}")
                return
            handler(error)

        future.add_done_callback(completed)
        return TaskHandle(future, token)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "Dispatcher":
        return self

    def __exit__(self, *args) -> None:
        self.shutdown()
