"""Utility modules for opskit."""

from opskit.utils.logging import configure_logging, write_progress

__all__ = ["configure_logging", "write_progress"]
