"""Configuration package for the mock server supervisor."""

from .logging import configure_logging, get_logger
from .settings import ApiConfig, LoggingConfig, Settings, SupervisorConfig

__all__ = [
    "ApiConfig",
    "LoggingConfig",
    "Settings",
    "SupervisorConfig",
    "configure_logging",
    "get_logger",
]
