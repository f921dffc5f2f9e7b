"""Console prompting that respects passive (non-interactive) mode."""

import logging
import sys
from typing import NoReturn, Optional

from rich.console import Console
from rich.prompt import Confirm, IntPrompt, Prompt

from opskit.config import InteractivityOptions
from opskit.errors import ConfigurationError

logger = logging.getLogger(__name__)


class ConsoleInteraction:
    """Asks the user questions, or answers them with defaults in passive mode."""

    def __init__(self, options: InteractivityOptions, console: Optional[Console] = None):
        self.options = options
        self.console = console or Console()

    @property
    def passive(self) -> bool:
        return self.options.passive

    def get_yes_no(self, prompt: str) -> bool:
        if self.passive:
            logger.info(f"Non-interactive mode, using defaults '{prompt}' => 'yes'")
            return True
        return Confirm.ask(prompt, console=self.console)

    def get_text(self, prompt: str, default: Optional[str] = None) -> str:
        """Ask for text. Without a default, passive mode is a configuration error."""
        if self.passive:
            if default is None:
                raise ConfigurationError(
                    f"Cannot request info without defaults in passive mode: '{prompt}'"
                )
            logger.info(f"Non-interactive mode, using defaults '{prompt}' => '{default}'")
            return default

        while True:
            result = Prompt.ask(prompt, default=default, console=self.console)
            if result and result.strip():
                return result
            logger.error("Value cannot be empty")

    def get_integer(
        self,
        prompt: str,
        default: int,
        minimum: Optional[int] = None,
        maximum: Optional[int] = None,
    ) -> int:
        if self.passive:
            logger.info(f"Non-interactive mode, using defaults '{prompt}' => '{default}'")
            return default

        while True:
            value = IntPrompt.ask(prompt, default=default, console=self.console)
            if (minimum is None or value >= minimum) and (maximum is None or value <= maximum):
                return value
            self.console.print(f"[red]Input must be an integer between {minimum} and {maximum}[/red]")

    def _pause(self) -> None:
        if self.options.pause and not self.passive:
            Prompt.ask("Press Enter to exit", default="", show_default=False, console=self.console)

    def exit_with_success(self, message: str) -> NoReturn:
        logger.info(message)
        self._pause()
        sys.exit(0)

    def exit_with_error(self, message: str, exit_code: int = 1) -> NoReturn:
        logger.error(message)
        self._pause()
        sys.exit(exit_code)
