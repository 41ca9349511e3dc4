"""Application configuration settings."""

from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class LoggingConfig(BaseSettings):
    """Logging configuration settings."""

    level: str = Field(default="INFO", description="Log level")
    file_path: Optional[str] = Field(default=None, description="Log file path")
    json_format: bool = Field(default=False, description="Use JSON log format")

    class Config:
        env_prefix = "LOG_"


class SupervisorConfig(BaseSettings):
    """Mock server supervision settings.

    The defaults are the stable contract the rest of the system relies on:
    the port range, retry bound and the startup/stop/crash timings.
    """

    command: List[str] = Field(
        default_factory=lambda: ["prism"],
        description="Command used to invoke the Prism CLI",
    )
    default_host: str = Field(
        default="localhost", description="Host mock servers bind to"
    )
    port_range_start: int = Field(
        default=4010, description="First port the allocator may assign"
    )
    port_range_end: int = Field(
        default=4099, description="Last port the allocator may assign"
    )
    max_port_retries: int = Field(
        default=10, description="Probe and port-conflict retry bound"
    )
    startup_timeout: float = Field(
        default=10.0, description="Seconds to wait for a ready marker"
    )
    stop_grace_period: float = Field(
        default=2.0, description="Seconds to wait after SIGTERM before SIGKILL"
    )
    immediate_crash_threshold: float = Field(
        default=5.0,
        description="Uptime in seconds under which a crash counts as immediate",
    )
    disconnect_grace: float = Field(
        default=1.0,
        description="Seconds a process may outlive its closed output streams",
    )
    tool_check_timeout: float = Field(
        default=5.0, description="Timeout for the 'prism --version' check"
    )

    class Config:
        env_prefix = "MOCK_"


class ApiConfig(BaseSettings):
    """HTTP control API settings."""

    host: str = Field(default="127.0.0.1", description="API bind host")
    port: int = Field(default=8787, description="API bind port")

    class Config:
        env_prefix = "MOCK_API_"


class Settings(BaseSettings):
    """Main application settings."""

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    supervisor: SupervisorConfig = Field(default_factory=SupervisorConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    def get_log_file_path(self) -> Optional[Path]:
        """Get the log file path if configured."""
        if self.logging.file_path:
            return Path(self.logging.file_path)
        return None

