"""Supervisor for ephemeral Prism mock servers backed by OpenAPI specifications."""

from .__version__ import __version__
from .management import (
    MockServerError,
    MockServerManager,
    ServerRecord,
    ServerStatus,
    StartConfig,
)

__all__ = [
    "__version__",
    "MockServerManager",
    "MockServerError",
    "ServerRecord",
    "ServerStatus",
    "StartConfig",
]
