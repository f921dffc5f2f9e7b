"""
File-system helpers that cope with locked and read-only files.

Deletion retries on transient I/O errors and clears read-only bits on
access-denied errors. Writes and moves never leave a half-written target.
"""

import errno
import hashlib
import logging
import os
import shutil
import stat
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional, Union

from send2trash import send2trash

from opskit import shell
from opskit.cancellation import CancellationToken
from opskit.errors import ConfigurationError, InvalidInputError, ProcessError
from opskit.retry import RetryPolicy, retry_call

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# Robocopy exit codes above this value mean at least one copy failed
ROBOCOPY_MAX_SUCCESS_CODE = 3

# Windows reports sharing violations (file open elsewhere) as PermissionError
LOCKED_WINERRORS = {32, 33}

INVALID_FILENAME_CHARS = '<>:"/\\|?*' + "".join(chr(i) for i in range(32))


class OverwritePolicy(Enum):
    """What ``move_file_into_directory`` does when the target exists."""

    REJECT = "reject"
    REPLACE = "replace"
    REPLACE_IF_DIFFERENT = "replace_if_different"
    MAKE_UNIQUE = "make_unique"


def exists(path: PathLike) -> bool:
    return Path(path).exists()


def create_directory(path: PathLike) -> Path:
    path = Path(path)
    if path.is_dir():
        return path

    logger.info(f"Creating directory {path}")
    path.mkdir(parents=True, exist_ok=True)
    return path


def remove_read_only_attributes(path: PathLike) -> None:
    """Recursively make everything under ``path`` writable by the owner."""
    for root, dirs, files in os.walk(path):
        for name in dirs + files:
            _make_writable(Path(root) / name)
    _make_writable(Path(path))


def _make_writable(path: Path) -> None:
    try:
        mode = path.lstat().st_mode
        if stat.S_ISLNK(mode):
            return
        if not mode & stat.S_IWRITE:
            path.chmod(mode | stat.S_IWRITE)
    except OSError as e:
        logger.debug(f"Unable to clear read-only flag on {path}: {e}")


def is_access_denied(error: OSError) -> bool:
    """True for read-only/permission failures, False for locked files and other I/O errors."""
    if getattr(error, "winerror", None) in LOCKED_WINERRORS:
        return False
    return isinstance(error, PermissionError) or error.errno in (errno.EACCES, errno.EPERM)


def delete_directory(
    path: Optional[PathLike],
    retries: int = 10,
    delay: float = 5.0,
    cancellation: Optional[CancellationToken] = None,
) -> None:
    """
    Delete a directory tree.

    Access-denied errors first strip read-only bits and retry at once; locked
    files and other I/O errors are retried after ``delay`` seconds.

    Args:
        path: Directory to delete; blank or missing paths are ignored
        retries: Number of failed attempts tolerated
        delay: Seconds to wait after a transient I/O error
        cancellation: Token interrupting the wait between attempts
    """
    if path is None or not str(path).strip():
        return

    path = Path(path)
    token = cancellation or CancellationToken.none()
    remaining = retries

    while path.exists():
        try:
            logger.info(f"Deleting directory: {path}...")
            shutil.rmtree(path)
        except OSError as e:
            if remaining <= 0:
                raise
            remaining -= 1
            if is_access_denied(e):
                logger.warning(
                    "Unable to delete directory. Will attempt to remove read-only files..."
                )
                remove_read_only_attributes(path)
            else:
                logger.warning("Unable to delete directory. Will retry...")
                logger.warning(str(e))
                token.sleep(delay)


def initialise_directory(
    path: PathLike, cancellation: Optional[CancellationToken] = None
) -> Path:
    """Create or clean out the given directory."""
    delete_directory(path, cancellation=cancellation)
    return create_directory(path)


def delete(path: PathLike, cancellation: Optional[CancellationToken] = None) -> None:
    """Delete a file or a directory tree; missing paths are ignored."""
    path = Path(path)
    if path.is_dir():
        delete_directory(path, cancellation=cancellation)
        return

    if not path.exists():
        return

    logger.info(f"Deleting {path}")
    path.unlink()


def copy_file(src: PathLike, dst: PathLike, force: bool = False) -> Path:
    """Copy a file; ``dst`` may be a directory. Refuses to overwrite unless forced."""
    src, dst = Path(src), Path(dst)
    logger.info(f"Copying {src} to {dst}")
    if not src.is_file():
        raise FileNotFoundError(str(src))

    if dst.is_dir():
        dst = dst / src.name

    if dst.exists() and not force:
        raise FileExistsError(str(dst))

    shutil.copy2(src, dst)
    return dst


def _temp_sibling(path: Path) -> Path:
    return path.with_name(f"{path.name}_temp")


def write_file_safely(
    path: PathLike,
    content: Union[str, bytes, Iterable[str]],
    attempts: int = 5,
    delay: float = 3.0,
) -> Path:
    """
    Atomically write ``content`` to ``path``, retrying on I/O errors.

    Lists of lines are joined with newlines. The data lands in a sibling
    temp file first and is renamed over the target when complete.
    """
    path = Path(path)
    if isinstance(content, bytes):
        data = content
    elif isinstance(content, str):
        data = content.encode()
    else:
        data = "".join(f"{line}\n" for line in content).encode()

    def write() -> None:
        temp = _temp_sibling(path)
        try:
            temp.write_bytes(data)
            os.replace(temp, path)
        finally:
            if temp.exists():
                temp.unlink()

    retry_call(
        write,
        RetryPolicy(
            max_attempts=attempts,
            initial_delay=delay,
            intro_message=f"Writing to {path}",
        ),
    )
    return path


def unique_path_in(directory: PathLike, filename: str) -> Path:
    """
    Return a path in ``directory`` that does not exist yet.

    ``report.txt`` becomes ``report 1.txt``, ``report 2.txt`` ... until
    an unused name is found.
    """
    directory = Path(directory)
    base = Path(filename)
    stem, suffix = base.stem, base.suffix

    index = 0
    while True:
        counter = "" if index == 0 else f" {index}"
        candidate = directory / f"{stem}{counter}{suffix}"
        if not candidate.exists():
            return candidate
        index += 1


def file_digest(path: PathLike) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


def files_identical(a: PathLike, b: PathLike) -> bool:
    """Compare two files by size, then by SHA-256."""
    a, b = Path(a), Path(b)
    if a.stat().st_size != b.stat().st_size:
        return False
    return file_digest(a) == file_digest(b)


def move_file_into_directory(
    file: PathLike,
    directory: PathLike,
    policy: OverwritePolicy = OverwritePolicy.REJECT,
) -> Path:
    """
    Move a file into a directory, creating the directory if needed.

    Args:
        file: File to move
        directory: Destination directory
        policy: Behavior when a file with the same name already exists

    Returns:
        Final path of the file (for REPLACE_IF_DIFFERENT with identical
        content, the existing target; the source is discarded)

    Raises:
        InvalidInputError: Source missing, or target exists under REJECT
    """
    file = Path(file)
    if not file.is_file():
        raise InvalidInputError(f"Cannot move '{file}': not a file")

    create_directory(directory)
    dest = Path(directory) / file.name

    if dest.exists():
        if policy is OverwritePolicy.REJECT:
            raise InvalidInputError(
                f"Cannot move '{file}' to '{dest}'. Target already exists."
            )
        if policy is OverwritePolicy.MAKE_UNIQUE:
            dest = unique_path_in(directory, file.name)
        elif policy is OverwritePolicy.REPLACE_IF_DIFFERENT and files_identical(file, dest):
            logger.info(f"'{dest}' already has the same content, discarding '{file}'")
            file.unlink()
            return dest

    logger.info(f"Moving '{file}' to '{dest}'")
    if dest.exists():
        # Stage next to the target so the final swap never crosses filesystems
        staged = _temp_sibling(dest)
        shutil.move(str(file), str(staged))
        try:
            os.replace(staged, dest)
        except OSError:
            shutil.move(str(staged), str(file))
            raise
    else:
        shutil.move(str(file), str(dest))
    return dest


def clean_filename(name: str) -> str:
    """Replace characters that are illegal in filenames with underscores."""
    for char in INVALID_FILENAME_CHARS:
        name = name.replace(char, "_")
    return name.strip(" ").rstrip(". ")


def delete_file_to_recycle_bin(
    path: Optional[PathLike], cancellation: Optional[CancellationToken] = None
) -> None:
    if path is None or not str(path).strip():
        return
    path = Path(path)
    if path.is_dir():
        raise InvalidInputError(f"Asked to delete file, but is a directory: {path}")
    delete_to_recycle_bin(path, cancellation)


def delete_dir_to_recycle_bin(
    path: Optional[PathLike], cancellation: Optional[CancellationToken] = None
) -> None:
    if path is None or not str(path).strip():
        return
    path = Path(path)
    if path.is_file():
        raise InvalidInputError(f"Asked to delete directory, but is a file: {path}")
    delete_to_recycle_bin(path, cancellation)


def delete_to_recycle_bin(
    path: Optional[PathLike], cancellation: Optional[CancellationToken] = None
) -> None:
    """Send a file or directory to the recycle bin / trash, retrying on failure."""
    if path is None or not str(path).strip():
        return

    path = Path(path)
    if not path.exists():
        return

    retry_call(
        lambda: send2trash(str(path)),
        RetryPolicy(intro_message=f"Deleting to recycle bin: {path}"),
        cancellation,
    )


def _robocopy(
    source: PathLike,
    destination: PathLike,
    mode: str,
    cancellation: Optional[CancellationToken] = None,
) -> int:
    logger.info(f"Robocopy ({mode}) '{source}' --> '{destination}'")

    if not Path(source).is_dir():
        raise InvalidInputError(f"{source} not found")

    create_directory(destination)

    exit_code = shell.run_live(
        "robocopy", source, destination, mode, "/MT", "/R:3", cancellation=cancellation
    )
    if exit_code > ROBOCOPY_MAX_SUCCESS_CODE:
        raise ProcessError(f"Robocopy returned code {exit_code}")
    return exit_code


def copy_without_mirror(
    source: PathLike,
    destination: PathLike,
    cancellation: Optional[CancellationToken] = None,
) -> int:
    return _robocopy(source, destination, "/E", cancellation)


def copy_with_mirror(
    source: PathLike,
    destination: PathLike,
    cancellation: Optional[CancellationToken] = None,
) -> int:
    """Mirror ``source`` into ``destination``, deleting extra files there."""
    return _robocopy(source, destination, "/MIR", cancellation)


def try_search_up_for(
    filename: str, start: PathLike, under_subdir: Optional[str] = None
) -> Optional[Path]:
    """Walk up from ``start`` looking for ``filename`` (optionally inside a subdir)."""
    logger.info(f"Searching for {filename} starting from {start}")
    directory: Optional[Path] = Path(start).resolve()

    while directory is not None:
        candidate = directory / under_subdir / filename if under_subdir else directory / filename
        if candidate.exists():
            logger.info(f"Found at {candidate}")
            return candidate
        directory = directory.parent if directory.parent != directory else None

    return None


def search_up_for(
    filename: str, start: PathLike, under_subdir: Optional[str] = None
) -> Path:
    found = try_search_up_for(filename, start, under_subdir)
    if found is None:
        raise ConfigurationError(
            f"Data file {filename} not found searching up from {start}"
        )
    return found


def ensure_file_exists(path: PathLike) -> Path:
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Expected file not found: {path}")
    return path

