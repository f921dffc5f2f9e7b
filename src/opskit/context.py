"""Per-host dependency container.

Created once at host startup and passed to whatever needs shared settings,
logging or prompting, instead of reaching for module-level singletons.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from opskit.cancellation import CancellationToken
from opskit.chocolatey import ChocolateyClient
from opskit.config import Settings
from opskit.git import GitClient, RepoDefinition
from opskit.interaction import ConsoleInteraction
from opskit.net import ThrottledClient
from opskit.utils.logging import configure_logging


@dataclass
class OpsContext:
    settings: Settings
    logger: logging.Logger
    interaction: ConsoleInteraction
    cancellation: CancellationToken = field(default_factory=CancellationToken)
    _web_client: Optional[ThrottledClient] = field(default=None, repr=False)
    _git: Optional[GitClient] = field(default=None, repr=False)

    @classmethod
    def create(cls, settings: Optional[Settings] = None) -> "OpsContext":
        """Configure logging and build a context from ``settings``."""
        settings = settings or Settings()
        logger = configure_logging(debug=settings.debug, log_file=settings.log_file)
        interaction = ConsoleInteraction(settings.interactivity())
        return cls(settings=settings, logger=logger, interaction=interaction)

    @property
    def web_client(self) -> ThrottledClient:
        if self._web_client is None:
            self._web_client = ThrottledClient(
                min_delay=self.settings.throttle_delay,
                user_agent=self.settings.user_agent,
                retry_policy=self.settings.retry_policy(),
            )
        return self._web_client

    @property
    def git(self) -> GitClient:
        if self._git is None:
            self._git = GitClient()
        return self._git

    def repo(self, url: str) -> RepoDefinition:
        return RepoDefinition(
            url,
            client=self.git,
            retry_policy=self.settings.retry_policy(),
            cancellation=self.cancellation,
        )

    def chocolatey(self) -> ChocolateyClient:
        return ChocolateyClient(
            interaction=self.interaction,
            web_client=self.web_client,
            cancellation=self.cancellation,
        )

    def close(self) -> None:
        """Release resources; call on host shutdown."""
        self.cancellation.cancel()
        if self._web_client is not None:
            self._web_client.close()
            self._web_client = None

    def __enter__(self) -> "OpsContext":
        return self

    def __exit__(self, *args) -> None:
        self.close()
