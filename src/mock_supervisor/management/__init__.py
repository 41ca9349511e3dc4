"""Mock server management package for Prism process lifecycle control."""

from .crash_monitor import CrashMonitor, classify_exit
from .error_translator import translate_error
from .errors import (
    MockServerError,
    PortConflictError,
    PortExhaustionError,
    ProcessSpawnError,
    ServerNotFoundError,
    SpecInvalidError,
    StartupTimeoutError,
    StopTimeoutError,
    ToolNotInstalledError,
    UnknownCrashError,
)
from .port_allocator import PortAllocator
from .process import ProcessHandle
from .server_manager import MockServerManager
from .server_registry import ServerRecord, ServerRegistry, ServerStatus, StartConfig
from .startup_detector import StartupDetector, StartupOutcome
from .toolchain import ToolChecker

__all__ = [
    "MockServerManager",
    "ServerRegistry",
    "ServerRecord",
    "ServerStatus",
    "StartConfig",
    "PortAllocator",
    "StartupDetector",
    "StartupOutcome",
    "CrashMonitor",
    "ProcessHandle",
    "ToolChecker",
    "classify_exit",
    "translate_error",
    "MockServerError",
    "ToolNotInstalledError",
    "PortExhaustionError",
    "PortConflictError",
    "SpecInvalidError",
    "StartupTimeoutError",
    "ProcessSpawnError",
    "StopTimeoutError",
    "UnknownCrashError",
    "ServerNotFoundError",
]
