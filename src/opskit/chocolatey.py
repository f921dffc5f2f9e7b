"""Chocolatey package installation.

The parent process must be elevated for installs to succeed.
"""

import logging
import os
import tempfile
from enum import Enum
from pathlib import Path
from typing import Optional

from opskit import shell
from opskit.cancellation import CancellationToken
from opskit.errors import ConfigurationError, ProcessError
from opskit.interaction import ConsoleInteraction
from opskit.net import ThrottledClient

logger = logging.getLogger(__name__)

INSTALL_SCRIPT_URL = "https://chocolatey.org/install.ps1"

EXIT_REBOOT_INITIATED = 1641
EXIT_REBOOT_REQUIRED = 3010


class ChocoOutcome(Enum):
    SUCCESS = 0
    REBOOT_INITIATED = EXIT_REBOOT_INITIATED
    REBOOT_REQUIRED = EXIT_REBOOT_REQUIRED


def outcome_for_exit_code(exit_code: int) -> ChocoOutcome:
    """Map a choco exit code to an outcome; anything unknown is a failure."""
    try:
        return ChocoOutcome(exit_code)
    except ValueError:
        raise ProcessError(f"Chocolatey failed with exit code {exit_code}") from None


def restart_host(delay_seconds: int = 5) -> None:
    if os.name == "nt":
        shell.run_detached("shutdown", "/r", "/t", delay_seconds)
    else:
        shell.run_detached("shutdown", "-r", f"+{max(delay_seconds // 60, 1)}")


class ChocolateyClient:
    """Installs packages with choco, installing chocolatey itself if needed."""

    def __init__(
        self,
        interaction: Optional[ConsoleInteraction] = None,
        web_client: Optional[ThrottledClient] = None,
        executable: Optional[Path] = None,
        cancellation: Optional[CancellationToken] = None,
    ):
        self.interaction = interaction
        self.cancellation = cancellation or CancellationToken.none()
        self._web_client = web_client
        self._choco = executable
        self._upgraded = executable is not None

    def install(self, *packages_and_arguments: str) -> ChocoOutcome:
        return self._run("install", *packages_and_arguments)

    def install_or_upgrade(self, *packages_and_arguments: str) -> ChocoOutcome:
        return self._run("upgrade", *packages_and_arguments)

    def _run(self, command: str, *packages_and_arguments: str) -> ChocoOutcome:
        exit_code = shell.run_live(
            self.executable, command, "-y", *packages_and_arguments, cancellation=self.cancellation
        )
        logger.info("Chocolatey command done")

        outcome = outcome_for_exit_code(exit_code)
        if outcome is ChocoOutcome.REBOOT_REQUIRED:
            return self._ask_for_restart()
        if outcome is ChocoOutcome.REBOOT_INITIATED:
            logger.info("Chocolatey initiated a reboot")
        return outcome

    def _ask_for_restart(self) -> ChocoOutcome:
        if self.interaction is None:
            logger.warning("A restart is required to complete the installation")
            return ChocoOutcome.REBOOT_REQUIRED

        query = (
            "A restart is required. Restart now? You may need to re-run the current "
            "script after the restart to complete your installation."
        )
        if not self.interaction.get_yes_no(query):
            return ChocoOutcome.REBOOT_REQUIRED

        restart_host(5)
        return ChocoOutcome.REBOOT_INITIATED

    @property
    def executable(self) -> Path:
        if self._choco is None:
            self._choco = self._find_or_install()
            if not self._upgraded:
                self._upgraded = True
                logger.info("Upgrading Chocolatey")
                self.install_or_upgrade("chocolatey")
        return self._choco

    def _find_or_install(self) -> Path:
        logger.info("Looking for chocolatey")

        choco = shell.find_executable("choco")
        if choco is not None:
            return choco

        all_users_profile = os.environ.get("ALLUSERSPROFILE")
        if not all_users_profile:
            raise ConfigurationError("Cannot determine All Users profile directory")

        choco = Path(all_users_profile) / "chocolatey" / "bin" / "choco.exe"
        if choco.is_file():
            return choco

        logger.info("Installing Chocolatey")
        with tempfile.TemporaryDirectory() as tmpdir:
            script = Path(tmpdir) / "choco-install.ps1"
            if self._web_client is not None:
                self._web_client.download(INSTALL_SCRIPT_URL, script, self.cancellation)
            else:
                with ThrottledClient() as client:
                    client.download(INSTALL_SCRIPT_URL, script, self.cancellation)
            shell.run_powershell_script_and_fail_if_nonzero(
                str(script), cancellation=self.cancellation
            )

        if not choco.is_file():
            raise ConfigurationError(f"Chocolatey not found in {choco}, please install manually")

        self._upgraded = True
        return choco
