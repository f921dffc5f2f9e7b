"""Retry-aware process, network and file-system helpers."""

from opskit.cancellation import CancellationToken
from opskit.errors import (
    ConfigurationError,
    ErrorKind,
    FatalError,
    HttpStatusError,
    InvalidInputError,
    OperationCancelled,
    OpsError,
    ProcessError,
    RedirectError,
    RetryError,
    classify,
)
from opskit.fs import OverwritePolicy, move_file_into_directory, unique_path_in
from opskit.net import ThrottledClient, is_forbidden
from opskit.retry import RetryPolicy, RetryResult, execute_with_retry, retry, retry_call
from opskit.shell import Invocation, InvocationResult, find_executable, run, run_and_fail_if_nonzero

__all__ = [
    "CancellationToken",
    "ConfigurationError",
    "ErrorKind",
    "FatalError",
    "HttpStatusError",
    "InvalidInputError",
    "Invocation",
    "InvocationResult",
    "OperationCancelled",
    "OpsError",
    "OverwritePolicy",
    "ProcessError",
    "RedirectError",
    "RetryError",
    "RetryPolicy",
    "RetryResult",
    "ThrottledClient",
    "classify",
    "execute_with_retry",
    "find_executable",
    "is_forbidden",
    "move_file_into_directory",
    "retry",
    "retry_call",
    "run",
    "run_and_fail_if_nonzero",
    "unique_path_in",
]
