"""Sequential TCP port allocation within the mock server port range."""

import asyncio
import socket
from typing import Optional

import structlog

from ..config.settings import SupervisorConfig
from .errors import PortExhaustionError

logger = structlog.get_logger(__name__)


class PortAllocator:
    """Finds free TCP ports by transiently binding candidates.

    Probes run one after another so the allocator never races with itself.
    A free port is not reserved: the process spawned on it may still lose
    the port to another binder, which the manager handles by retrying.
    """

    def __init__(self, config: Optional[SupervisorConfig] = None):
        self.config = config or SupervisorConfig()

    async def find_available_port(
        self, start_port: int, host: Optional[str] = None
    ) -> int:
        """Find the first free port at or above ``start_port``.

        Args:
            start_port: First candidate port
            host: Interface to probe (default: configured mock host)

        Returns:
            int: A port that accepted a bind at probe time

        Raises:
            PortExhaustionError: Range end passed or probe budget spent
        """
        range_start = self.config.port_range_start
        range_end = self.config.port_range_end
        current_port = start_port

        for _ in range(self.config.max_port_retries):
            if current_port > range_end:
                raise PortExhaustionError(
                    f"No available ports in range {range_start}-{range_end}"
                )

            if await self.is_port_available(current_port, host):
                return current_port

            logger.debug("Port unavailable", port=current_port)
            current_port += 1

        raise PortExhaustionError(
            f"Could not find available port after "
            f"{self.config.max_port_retries} attempts"
        )

    async def is_port_available(self, port: int, host: Optional[str] = None) -> bool:
        """Check whether ``port`` can be bound right now.

        Args:
            port: Port number to probe
            host: Interface to probe (default: configured mock host)

        Returns:
            bool: True if a listener could bind and was released
        """
        available = _try_bind(host or self.config.default_host, port)
        # Yield so a long scan never starves other tasks on the loop
        await asyncio.sleep(0)
        return available


def _try_bind(host: str, port: int) -> bool:
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
            sock.listen(1)
            return True
    except OSError:
        return False
