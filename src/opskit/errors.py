"""
Error types shared by the process, network and file-system helpers.

Every error raised by opskit is an ``OpsError`` tagged with an ``ErrorKind``.
The retry engine decides whether to retry by looking at the kind, so callers
can mark any failure as fatal without defining a new exception class.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Failure classes understood by the retry engine."""

    TRANSIENT = "transient"
    FATAL = "fatal"
    CANCELLED = "cancelled"
    INVALID_INPUT = "invalid_input"
    CONFIGURATION = "configuration"

    @property
    def retriable(self) -> bool:
        return self is ErrorKind.TRANSIENT


class OpsError(Exception):
    """Base error carrying an explicit failure kind."""

    kind: ErrorKind = ErrorKind.TRANSIENT

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class ConfigurationError(OpsError):
    """A required tool, file or setting is missing or malformed."""

    kind = ErrorKind.CONFIGURATION


class FatalError(OpsError):
    """Aborts any enclosing retry loop immediately."""

    kind = ErrorKind.FATAL


class InvalidInputError(OpsError):
    """Bad argument detected before any I/O took place."""

    kind = ErrorKind.INVALID_INPUT


class OperationCancelled(OpsError):
    """Raised when a cancellation token fired during an operation."""

    kind = ErrorKind.CANCELLED

    def __init__(self, message: str = "Operation cancelled"):
        super().__init__(message)


class ProcessError(OpsError):
    """An external program exited with a non-zero code."""

    kind = ErrorKind.TRANSIENT

    def __init__(self, message: str, result=None):
        """
        Initialize process error.

        Args:
            message: Error message
            result: The InvocationResult of the failed command, if any
        """
        super().__init__(message)
        self.result = result

    @property
    def exit_code(self) -> Optional[int]:
        return self.result.exit_code if self.result is not None else None


class HttpStatusError(OpsError):
    """A request completed with a non-success HTTP status."""

    kind = ErrorKind.TRANSIENT

    def __init__(self, message: str, status_code: int, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RedirectError(OpsError):
    """Server answered with a malformed or endless redirect chain."""

    kind = ErrorKind.FATAL


class RetryError(OpsError):
    """Raised when all retry attempts fail."""

    kind = ErrorKind.FATAL

    def __init__(self, message: str, attempts: int, last_error: Optional[BaseException]):
        """
        Initialize retry error.

        Args:
            message: Error message
            attempts: Number of attempts made
            last_error: The last exception that occurred
        """
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


def classify(error: BaseException) -> ErrorKind:
    """Return the failure kind of any exception.

    Exceptions that are not ``OpsError`` (OSError, httpx transport errors,
    ...) are treated as transient.
    """
    if isinstance(error, OpsError):
        return error.kind
    return ErrorKind.TRANSIENT
