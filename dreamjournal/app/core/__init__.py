"""Core utilities for the dream journal application."""

from dreamjournal.app.core.config import SecurityConfig, build_security_config, settings
from dreamjournal.app.core.logging import get_logger, setup_logging

__all__ = [
    "SecurityConfig",
    "build_security_config",
    "get_logger",
    "settings",
    "setup_logging",
]
