"""Git operations with retry logic.

Every command receives the repository root as an explicit working
directory; the process-wide current directory is never changed.
"""

import logging
import os
import re
from dataclasses import replace
from pathlib import Path
from typing import Optional, Union

from opskit import fs, shell
from opskit.cancellation import CancellationToken
from opskit.errors import ConfigurationError, InvalidInputError, ProcessError
from opskit.retry import RetryPolicy, retry_call
from opskit.shell import InvocationResult

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _well_known_git_paths() -> list[Path]:
    if os.name == "nt":
        roots = [os.environ.get("ProgramFiles"), os.environ.get("ProgramFiles(x86)")]
        return [Path(r) / "git" / "bin" / "git.exe" for r in roots if r]
    return [Path("/usr/bin/git"), Path("/usr/local/bin/git"), Path("/opt/homebrew/bin/git")]


class GitClient:
    """Locates the git executable and runs it."""

    def __init__(self, executable: Optional[PathLike] = None):
        self._executable: Optional[Path] = Path(executable) if executable else None

    def find(self) -> Optional[Path]:
        """Return the git executable, or None if it is not installed."""
        if self._executable is not None:
            return self._executable

        found = shell.find_executable("git")
        if found is None:
            found = next((p for p in _well_known_git_paths() if p.is_file()), None)

        if found is None:
            logger.error("git not found in any standard location")
            return None

        self._executable = found
        return found

    @property
    def executable(self) -> Path:
        found = self.find()
        if found is None:
            raise ConfigurationError("git not found in any standard location")
        return found

    def run(
        self,
        *args: str,
        cwd: Optional[PathLike] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> InvocationResult:
        return shell.run(self.executable, *args, cwd=cwd, cancellation=cancellation)

    def run_and_fail_if_nonzero(
        self,
        *args: str,
        cwd: Optional[PathLike] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> InvocationResult:
        result = self.run(*args, cwd=cwd, cancellation=cancellation)
        if result.exit_code != 0:
            raise ProcessError(f"Git command failed with code {result.exit_code}", result)
        return result


class RepoDefinition:
    """A remote repository, identified by its clone URL."""

    def __init__(
        self,
        url: str,
        client: Optional[GitClient] = None,
        retry_policy: Optional[RetryPolicy] = None,
        cancellation: Optional[CancellationToken] = None,
    ):
        """
        Args:
            url: Clone URL (http(s) or git@ form)
            client: Git client used for every command
            retry_policy: Policy for clone, fetch and push
            cancellation: Token passed to every git command and backoff wait
        """
        if not url:
            raise ConfigurationError("URL must be set")

        self.url = url
        self.client = client or GitClient()
        self.retry_policy = retry_policy or RetryPolicy()
        self.cancellation = cancellation or CancellationToken.none()

    @property
    def name(self) -> str:
        return self.name_from_url(self.url)

    @staticmethod
    def name_from_url(url: str) -> str:
        lowered = url.lower()
        if lowered.startswith("http"):
            name = re.sub(r".+?/", "", url).replace("/_git", "")
        elif lowered.startswith("git@"):
            name = url.split(":")[-1].split("/")[-1]
        else:
            raise ConfigurationError(f"Unrecognised protocol: {url}")

        return re.sub(r"\.git$", "", name)

    def root_under(self, directory: PathLike) -> Path:
        return Path(directory) / self.name

    def clone_under(self, directory: PathLike, *extra_args: str) -> "Repo":
        """Clone into ``directory/<name>``, wiping any partial clone before each attempt."""
        root = self.root_under(directory)
        args = ["clone", "-c", "core.longpaths=true", *extra_args, self.url, str(root)]

        def clone_safely() -> None:
            fs.initialise_directory(root, self.cancellation)
            result = self.client.run(*args, cancellation=self.cancellation)
            if result.exit_code != 0:
                raise ProcessError("Cloning failed", result)

        retry_call(
            clone_safely,
            replace(self.retry_policy, intro_message=f"Cloning {self.url} to {directory}"),
            self.cancellation,
        )
        return Repo(root, self)

    def clone_if_not_exist_under(self, directory: PathLike, *extra_args: str) -> "Repo":
        root = self.root_under(directory)
        logger.info(f"Checking for existing clone at: {root}")

        if not (root / ".git" / "config").is_file() and not (root / "config").is_file():
            return self.clone_under(directory, *extra_args)

        logger.info("Clone found, not doing a new clone")
        repo = Repo(root, self)
        repo.fetch()
        return repo


class Repo:
    """A local clone of a RepoDefinition."""

    def __init__(self, root: PathLike, definition: RepoDefinition, default_remote: str = "origin"):
        if not str(root).strip():
            raise ConfigurationError("Cloned repo must have a root")

        self.root = Path(root)
        self.definition = definition
        self.default_remote = default_remote

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def client(self) -> GitClient:
        return self.definition.client

    def _check_root(self) -> None:
        if not self.root.is_dir():
            raise ConfigurationError(
                f"Cannot run git in repo root {self.root}; directory not found"
            )

    def run(self, *args: str) -> InvocationResult:
        self._check_root()
        return self.client.run(*args, cwd=self.root, cancellation=self.definition.cancellation)

    def run_and_fail_if_nonzero(self, *args: str) -> InvocationResult:
        self._check_root()
        return self.client.run_and_fail_if_nonzero(
            *args, cwd=self.root, cancellation=self.definition.cancellation
        )

    def _retried(self, intro: str, *args: str) -> InvocationResult:
        return retry_call(
            lambda: self.run_and_fail_if_nonzero(*args),
            replace(self.definition.retry_policy, intro_message=intro),
            self.definition.cancellation,
        )

    def delete_clone(self) -> None:
        fs.delete(self.root, self.definition.cancellation)

    def is_clean(self) -> bool:
        result = self.run_and_fail_if_nonzero("status", "--porcelain", "--untracked-files=no")
        return not result.combined_output().strip()

    def stage_modified(self) -> None:
        logger.info("Staging modified files")
        self.run_and_fail_if_nonzero("add", "-u")
        self.run_and_fail_if_nonzero("status")

    def commit(self, message: str) -> None:
        logger.info("Committing staged files")
        if "\n" in message:
            raise InvalidInputError("Multi-line messages are not supported by this method")

        self.run_and_fail_if_nonzero("commit", "-m", message)

    def fetch(self) -> None:
        self._retried("Fetching", "fetch")

    def push_with_rebase(self) -> None:
        self._retried("Pulling before push...", "pull", "--rebase")
        self._retried("Pushing...", "push")

    def remote_branches(self) -> list[str]:
        result = self.run_and_fail_if_nonzero(
            "for-each-ref", "--format=%(refname:short)", f"refs/remotes/{self.default_remote}"
        )
        return [
            b
            for b in result.combined_output().splitlines()
            if b.strip() and not b.endswith("/HEAD")
        ]

    def logical_branches(self) -> list[str]:
        """Remote branch names without the remote prefix."""
        prefix = f"{self.default_remote}/"
        return [b[len(prefix):] if b.startswith(prefix) else b for b in self.remote_branches()]

    def is_local_branch(self, name: str) -> bool:
        result = self.run_and_fail_if_nonzero(
            "for-each-ref", "--format=%(refname:short)", f"refs/heads/{name}"
        )
        return bool(result.combined_output().strip())

    def checkout(self, branch: str, update_submodules: bool = False) -> None:
        if self.is_local_branch(branch):
            logger.info(f"Checking out local branch {branch}")
            self.run_and_fail_if_nonzero("checkout", branch)
        else:
            self.fetch()
            remote_branch = f"{self.default_remote}/{branch}"
            logger.info(f"Checking out remote branch {remote_branch} into local")
            self.run_and_fail_if_nonzero("checkout", "-t", remote_branch)

        if update_submodules:
            self.run_and_fail_if_nonzero("submodule", "update", "--recursive", "--init")
