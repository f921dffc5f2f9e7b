"""Settings for opskit hosts, loaded from YAML and/or the environment."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from opskit.errors import ConfigurationError
from opskit.retry import RetryPolicy


@dataclass(frozen=True)
class InteractivityOptions:
    """Host CLI flags that shape logging and prompting.

    Attributes:
        debug: Enable DEBUG logging
        log: Optional log file path
        passive: Never prompt; answer every question with its default
        pause: Wait for a key press before the host exits
    """

    debug: bool = False
    log: Optional[Path] = None
    passive: bool = False
    pause: bool = False


class Settings(BaseModel):
    """Tunables shared by the process, network and file-system helpers.

    Attributes:
        retry_attempts: Attempts per retried operation
        retry_delay: Initial backoff delay in seconds (doubles per retry)
        throttle_delay: Minimum seconds between HTTP requests on one client
        user_agent: User-Agent header for HTTP requests
        log_file: Optional log file path
        debug: Enable DEBUG logging
        passive: Never prompt the user
        pause: Wait for a key press before exiting
    """

    retry_attempts: int = Field(default=3)
    retry_delay: float = Field(default=3.0, ge=0)
    throttle_delay: float = Field(default=0.05, ge=0)
    user_agent: Optional[str] = None
    log_file: Optional[Path] = None
    debug: bool = False
    passive: bool = False
    pause: bool = False

    @field_validator("log_file", mode="before")
    @classmethod
    def parse_path(cls, v):
        """Convert string to Path if needed."""
        if isinstance(v, str):
            return Path(v) if v.strip() else None
        return v

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "Settings":
        try:
            return cls(**config_dict)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid settings: {e}") from e

    @classmethod
    def from_yaml(cls, config_path: Path) -> "Settings":
        """Load settings from a YAML file.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            Validated Settings instance
        """
        if not config_path.is_file():
            raise ConfigurationError(f"Settings file not found: {config_path}")

        with open(config_path) as f:
            try:
                config_dict = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Malformed settings file {config_path}: {e}") from e

        if config_dict is not None and not isinstance(config_dict, dict):
            raise ConfigurationError(f"Settings file {config_path} must contain a mapping")

        return cls.from_dict(config_dict or {})

    @classmethod
    def from_env(
        cls,
        prefix: str = "OPSKIT_",
        env_file: Optional[Path] = None,
        base: Optional["Settings"] = None,
    ) -> "Settings":
        """Overlay ``<prefix><FIELD>`` environment variables onto ``base``.

        Values from ``env_file`` (default: ``.env`` in the current directory)
        are loaded first without overriding variables already set.
        """
        load_dotenv(env_file or Path.cwd() / ".env", override=False)

        values = (base or cls()).model_dump()
        for name in cls.model_fields:
            raw = os.environ.get(f"{prefix}{name.upper()}")
            if raw is not None:
                values[name] = raw

        return cls.from_dict(values)

    def retry_policy(self, intro_message: Optional[str] = None) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry_attempts,
            initial_delay=self.retry_delay,
            intro_message=intro_message,
        )

    def interactivity(self) -> InteractivityOptions:
        return InteractivityOptions(
            debug=self.debug, log=self.log_file, passive=self.passive, pause=self.pause
        )
