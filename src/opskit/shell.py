"""
Process execution helpers.

Runs external programs with captured output and an explicit working
directory. The exit code is the only success signal.
"""

import logging
import os
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Sequence, Union

from opskit.cancellation import CancellationToken
from opskit.errors import ConfigurationError, OperationCancelled, ProcessError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# How often a running child is checked for cancellation
POLL_INTERVAL = 0.1


@dataclass
class Invocation:
    """One request to run an external program."""

    program: PathLike
    args: Sequence[object] = ()
    cwd: Optional[PathLike] = None
    env: Optional[Mapping[str, str]] = None
    timeout: Optional[float] = None
    cancellation: CancellationToken = field(default_factory=CancellationToken.none)

    @property
    def argv(self) -> list[str]:
        return [str(self.program), *(str(a) for a in self.args)]

    def for_printing(self) -> str:
        return " ".join(self.argv)

    def build_env(self) -> Optional[dict[str, str]]:
        if not self.env:
            return None
        run_env = os.environ.copy()
        run_env.update(self.env)
        return run_env


@dataclass(frozen=True)
class InvocationResult:
    """Exit code and captured output of a finished process."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    def combined_output(self) -> str:
        result = ""
        if self.stdout.strip():
            result += f"{self.stdout}\n"
        if self.stderr.strip():
            result += self.stderr
        return result


def get_script_dir() -> Path:
    """Directory of the running script (or CWD when started interactively)."""
    if sys.argv and sys.argv[0]:
        return Path(sys.argv[0]).resolve().parent
    return Path.cwd()


def get_file_in_script_dir(filename: str) -> Path:
    path = get_script_dir() / filename
    if not path.is_file():
        raise ConfigurationError(f"File not found {path}")
    return path


def _is_executable(path: Path) -> bool:
    if not path.is_file():
        return False
    return os.name == "nt" or os.access(path, os.X_OK)


def find_executable(name: str, script_dir: Optional[Path] = None) -> Optional[Path]:
    """
    Locate an executable by name.

    Searches the current directory, then the script directory, then every
    entry of PATH. On Windows an extension-less name gets ``.exe``.

    Args:
        name: Bare program name, or a path to an existing program
        script_dir: Override for the script directory

    Returns:
        Absolute path to the program, or None if it was not found

    Raises:
        ConfigurationError: If name has a directory component but does not exist
    """
    if os.path.dirname(name):
        if Path(name).is_file():
            return Path(name)
        raise ConfigurationError(
            f"Argument to find_executable should be a filename. '{name}' does not exist."
        )

    if os.name == "nt" and not Path(name).suffix:
        name += ".exe"

    logger.info(f"Looking for command {name}")

    candidates = [Path.cwd() / name, (script_dir or get_script_dir()) / name]

    path_var = os.environ.get("PATH", "")
    if not path_var.strip():
        logger.warning("PATH environment variable is empty")
    else:
        candidates.extend(
            Path(d) / name for d in path_var.split(os.pathsep) if d.strip()
        )

    for candidate in candidates:
        if _is_executable(candidate):
            logger.info(f"Found at {candidate}")
            return candidate

    return None


def require_executable(name: str, script_dir: Optional[Path] = None) -> Path:
    """Like ``find_executable`` but a missing program is a configuration error."""
    path = find_executable(name, script_dir)
    if path is None:
        raise ConfigurationError(f"Executable not found: {name}")
    return path


def _log_output(result: InvocationResult) -> None:
    if result.stdout.strip():
        logger.debug("=" * 37 + "stdout" + "=" * 37)
        logger.debug(result.stdout)
    else:
        logger.debug("<no stdout>")

    if result.stderr.strip():
        logger.debug("=" * 37 + "stderr" + "=" * 37)
        logger.debug(result.stderr)

    logger.debug("=" * 80)


def _communicate(proc: subprocess.Popen, invocation: Invocation) -> tuple[str, str]:
    """Wait for ``proc``, killing it if the token fires or the timeout expires."""
    token = invocation.cancellation
    waited = 0.0
    while True:
        try:
            stdout, stderr = proc.communicate(timeout=POLL_INTERVAL)
            return stdout or "", stderr or ""
        except subprocess.TimeoutExpired:
            waited += POLL_INTERVAL
            if token.is_cancelled:
                proc.kill()
                proc.communicate()
                logger.info(f"Cancelled: {invocation.for_printing()}")
                raise OperationCancelled(f"Cancelled: {invocation.for_printing()}")
            if invocation.timeout is not None and waited >= invocation.timeout:
                proc.kill()
                proc.communicate()
                raise ProcessError(
                    f"Timed out after {invocation.timeout}s: {invocation.for_printing()}"
                )


def execute(invocation: Invocation) -> InvocationResult:
    """Run an invocation to completion and capture both output streams."""
    invocation.cancellation.raise_if_cancelled()
    logger.debug(invocation.for_printing())

    try:
        proc = subprocess.Popen(
            invocation.argv,
            cwd=invocation.cwd,
            env=invocation.build_env(),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
        )
    except FileNotFoundError as e:
        raise ConfigurationError(f"Cannot start {invocation.program}: {e}") from e

    stdout, stderr = _communicate(proc, invocation)
    return InvocationResult(proc.returncode, stdout, stderr)


def run_silent(
    program: PathLike,
    *args: object,
    cwd: Optional[PathLike] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = None,
    cancellation: Optional[CancellationToken] = None,
) -> InvocationResult:
    """Run a program and capture its output without logging the output."""
    return execute(
        Invocation(
            program,
            args,
            cwd=cwd,
            env=env,
            timeout=timeout,
            cancellation=cancellation or CancellationToken.none(),
        )
    )


def run(
    program: PathLike,
    *args: object,
    cwd: Optional[PathLike] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = None,
    cancellation: Optional[CancellationToken] = None,
) -> InvocationResult:
    """
    Run a program and capture its output.

    Args:
        program: Executable path or name
        *args: Arguments, converted with str()
        cwd: Working directory for the child (process CWD is never changed)
        env: Extra environment variables layered over os.environ
        timeout: Kill the child after this many seconds
        cancellation: Token that kills the child when cancelled

    Returns:
        InvocationResult with exit code, stdout and stderr
    """
    result = run_silent(
        program, *args, cwd=cwd, env=env, timeout=timeout, cancellation=cancellation
    )
    _log_output(result)
    return result


def run_and_fail_if_nonzero(
    program: PathLike,
    *args: object,
    cwd: Optional[PathLike] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = None,
    cancellation: Optional[CancellationToken] = None,
) -> str:
    """Run a program and return its stdout, raising ProcessError on a non-zero exit."""
    result = run_silent(
        program, *args, cwd=cwd, env=env, timeout=timeout, cancellation=cancellation
    )
    if result.exit_code != 0:
        command = Invocation(program, args).for_printing()
        if result.stdout.strip():
            logger.info(result.stdout)
        if result.stderr.strip():
            logger.error(result.stderr)
        logger.error(f"Command failed: {command}")
        raise ProcessError(f"Exit code was {result.exit_code}", result)

    _log_output(result)
    return result.stdout


def run_live(
    program: PathLike,
    *args: object,
    cwd: Optional[PathLike] = None,
    env: Optional[Mapping[str, str]] = None,
    cancellation: Optional[CancellationToken] = None,
) -> int:
    """Run a program with its output going straight to the console.

    The child is killed and OperationCancelled raised if the token fires.
    """
    token = cancellation or CancellationToken.none()
    invocation = Invocation(program, args, cwd=cwd, env=env, cancellation=token)
    token.raise_if_cancelled()
    logger.debug(invocation.for_printing())
    try:
        proc = subprocess.Popen(invocation.argv, cwd=cwd, env=invocation.build_env())
    except FileNotFoundError as e:
        raise ConfigurationError(f"Cannot start {program}: {e}") from e

    while True:
        try:
            return proc.wait(timeout=POLL_INTERVAL)
        except subprocess.TimeoutExpired:
            if token.is_cancelled:
                proc.kill()
                proc.wait()
                logger.info(f"Cancelled: {invocation.for_printing()}")
                raise OperationCancelled(f"Cancelled: {invocation.for_printing()}")


def run_detached(program: PathLike, *args: object, cwd: Optional[PathLike] = None) -> subprocess.Popen:
    """Start a program and return without waiting for it."""
    invocation = Invocation(program, args, cwd=cwd)
    logger.debug(f"Detaching: {invocation.for_printing()}")

    kwargs: dict = {}
    if os.name == "nt":
        kwargs["creationflags"] = subprocess.DETACHED_PROCESS | subprocess.CREATE_NEW_PROCESS_GROUP
    else:
        kwargs["start_new_session"] = True

    try:
        return subprocess.Popen(
            invocation.argv,
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            **kwargs,
        )
    except FileNotFoundError as e:
        raise ConfigurationError(f"Cannot start {program}: {e}") from e


def run_powershell_script(
    script: str, *args: object, cancellation: Optional[CancellationToken] = None
) -> int:
    """Run a PowerShell script found on the search path and return its exit code."""
    script_path = find_executable(script)
    if script_path is None:
        raise ConfigurationError(f"Script not found {script}")

    return run_live(
        "powershell.exe",
        "-NoProfile",
        "-ExecutionPolicy",
        "Bypass",
        script_path,
        *args,
        cancellation=cancellation,
    )


def run_powershell_script_and_fail_if_nonzero(
    script: str, *args: object, cancellation: Optional[CancellationToken] = None
) -> None:
    exit_code = run_powershell_script(script, *args, cancellation=cancellation)
    if exit_code != 0:
        raise ProcessError(f"Command failed: {script} (exit code {exit_code})")


def is_env_true(name: str) -> bool:
    """True if the environment variable is set to a generic "not false" value.

    Unset, blank, "false" (any case) and integer zero all count as false.
    """
    value = os.environ.get(name)
    logger.debug(f"Env: {name} => {value}")
    if value is None or not value.strip():
        return False

    if value.strip().lower() == "false":
        return False

    try:
        return int(value) != 0
    except ValueError:
        return True
