"""Mock server manager coordinating all Prism lifecycle operations."""

import asyncio
import time
from dataclasses import replace
from typing import Dict, Optional

import structlog

from ..config.settings import SupervisorConfig
from .crash_monitor import CrashMonitor
from .errors import (
    MockServerError,
    PortConflictError,
    ServerNotFoundError,
    StopTimeoutError,
    ToolNotInstalledError,
    UnknownCrashError,
)
from .port_allocator import PortAllocator
from .process import ProcessHandle, stop_process
from .server_registry import ServerRecord, ServerRegistry, ServerStatus, StartConfig
from .startup_detector import StartupDetector
from .toolchain import ToolChecker

logger = structlog.get_logger(__name__)


class MockServerManager:
    """Public surface for starting, stopping and inspecting mock servers.

    One manager owns one registry; create a separate manager for isolated
    supervision (tests, multiple apps in one process).
    """

    def __init__(
        self,
        config: Optional[SupervisorConfig] = None,
        registry: Optional[ServerRegistry] = None,
        port_allocator: Optional[PortAllocator] = None,
        startup_detector: Optional[StartupDetector] = None,
        crash_monitor: Optional[CrashMonitor] = None,
        tool_checker: Optional[ToolChecker] = None,
    ):
        """Initialize mock server manager.

        Args:
            config: Supervision settings (default: from environment)
            registry: Record store (default: a fresh in-memory registry)
            port_allocator: Port allocator (default: sequential bind probe)
            startup_detector: Prism launcher (default: real subprocesses)
            crash_monitor: Crash monitor bound to ``registry``
            tool_checker: Prism presence check
        """
        self.config = config or SupervisorConfig()
        self.registry = registry or ServerRegistry()
        self.port_allocator = port_allocator or PortAllocator(self.config)
        self.startup_detector = startup_detector or StartupDetector(self.config)
        self.crash_monitor = crash_monitor or CrashMonitor(self.registry, self.config)
        self.tool_checker = tool_checker or ToolChecker(self.config)

        self._processes: Dict[str, ProcessHandle] = {}
        self._monitors: Dict[str, asyncio.Task] = {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.cleanup()

    async def start_server(self, server_id: str, config: StartConfig) -> ServerRecord:
        """Start a mock server for ``server_id`` unless one is already running.

        Args:
            server_id: Spec identifier
            config: Spec path and optional port/host

        Returns:
            ServerRecord: The running record

        Raises:
            ToolNotInstalledError: Prism is not installed
            MockServerError: Startup failed; the record is left in ``error``
        """
        if not await self.tool_checker.is_installed():
            raise ToolNotInstalledError(
                self.tool_checker.installation_instructions(),
                "npm install -g @stoplight/prism-cli",
            )

        existing = self.registry.get(server_id)
        if existing is not None and existing.is_running:
            logger.debug(
                "Mock server already running", server_id=server_id, port=existing.port
            )
            return existing

        await self._discard_stale_process(server_id)
        self.registry.put(ServerRecord.starting(server_id))

        try:
            return await self._launch(server_id, config)
        except asyncio.CancelledError:
            self._put_error(server_id, "Mock server startup cancelled")
            logger.warning("Mock server startup cancelled", server_id=server_id)
            raise
        except Exception as e:
            error = (
                e
                if isinstance(e, MockServerError)
                else UnknownCrashError(f"Failed to start mock server: {e}")
            )
            self._put_error(server_id, error.message)
            logger.error(
                "Failed to start mock server",
                server_id=server_id,
                spec_path=config.spec_path,
                error=error.message,
                error_type=error.error_type,
            )
            if error is e:
                raise
            raise error from e

    async def stop_server(self, server_id: str) -> None:
        """Stop a running mock server: SIGTERM, then SIGKILL after the grace period.

        Args:
            server_id: Spec identifier

        Raises:
            ServerNotFoundError: No record exists for ``server_id``
            StopTimeoutError: The process survived SIGKILL
        """
        record = self.registry.get(server_id)
        if record is None:
            raise ServerNotFoundError(f"No server found for id: {server_id}")

        handle = self._processes.get(server_id)
        if handle is None or handle.returncode is not None:
            logger.info(
                "Mock server not running, nothing to stop",
                server_id=server_id,
                status=record.status.value,
            )
            return

        logger.info("Stopping mock server", server_id=server_id, pid=handle.pid)
        await self._terminate(server_id, handle)

        if self._processes.get(server_id) is handle:
            del self._processes[server_id]
        self.registry.put(replace(record, status=ServerStatus.STOPPED, error=None))

    async def restart_server(self, server_id: str, config: StartConfig) -> ServerRecord:
        """Stop ``server_id`` if it is running, then start it again."""
        if server_id in self.registry:
            await self.stop_server(server_id)
        return await self.start_server(server_id, config)

    def get_server_info(self, server_id: str) -> Optional[ServerRecord]:
        return self.registry.get(server_id)

    def get_all_servers(self) -> Dict[str, ServerRecord]:
        return self.registry.all()

    @property
    def running_count(self) -> int:
        return sum(1 for record in self.registry.all().values() if record.is_running)

    async def cleanup(self) -> None:
        """Stop every live mock server; individual failures are only logged."""
        server_ids = [
            server_id
            for server_id, handle in self._processes.items()
            if handle.returncode is None
        ]
        if not server_ids:
            return

        logger.info("Stopping all mock servers", count=len(server_ids))
        await asyncio.gather(*(self._stop_quietly(sid) for sid in server_ids))

    async def _stop_quietly(self, server_id: str) -> None:
        try:
            await self.stop_server(server_id)
        except Exception as e:
            logger.error(
                "Failed to stop mock server during cleanup",
                server_id=server_id,
                error=str(e),
            )

    def _put_error(self, server_id: str, message: str) -> None:
        self.registry.put(
            ServerRecord(
                id=server_id,
                status=ServerStatus.ERROR,
                started_at=time.time(),
                error=message,
            )
        )

    async def _launch(self, server_id: str, config: StartConfig) -> ServerRecord:
        host = config.host or self.config.default_host
        port = await self._resolve_port(config.port, host)
        max_attempts = self.config.max_port_retries
        last_error: Optional[PortConflictError] = None

        for attempt in range(1, max_attempts + 1):
            try:
                handle = await self.startup_detector.spawn_process(
                    server_id, config.spec_path, port, host
                )
            except PortConflictError as e:
                last_error = e
                logger.warning(
                    "Port conflict detected",
                    server_id=server_id,
                    port=port,
                    attempt=attempt,
                    max_attempts=max_attempts,
                )
                if attempt == max_attempts:
                    break
                port = await self.port_allocator.find_available_port(port + 1, host)
                continue

            return self._register_running(server_id, handle, host, port)

        raise PortConflictError(
            f"Failed to start mock server after {max_attempts} port conflict retries. "
            f"Last error: {last_error.message if last_error else 'Unknown error'}",
            port=port,
        )

    async def _resolve_port(self, requested: Optional[int], host: str) -> int:
        if requested is not None:
            if await self.port_allocator.is_port_available(requested, host):
                return requested
            logger.warning(
                "Requested port is not available, finding alternative",
                port=requested,
            )
        return await self.port_allocator.find_available_port(
            self.config.port_range_start, host
        )

    def _register_running(
        self, server_id: str, handle: ProcessHandle, host: str, port: int
    ) -> ServerRecord:
        self._processes[server_id] = handle
        record = self.registry.put(
            ServerRecord(
                id=server_id,
                status=ServerStatus.RUNNING,
                started_at=time.time(),
                url=f"http://{host}:{port}",
                port=port,
                pid=handle.pid,
            )
        )

        monitor = self.crash_monitor.watch(server_id, handle)
        self._monitors[server_id] = monitor
        monitor.add_done_callback(
            lambda task: self._forget_process(server_id, handle, task)
        )

        logger.info(
            "Mock server started",
            server_id=server_id,
            url=record.url,
            pid=record.pid,
        )
        return record

    def _forget_process(
        self, server_id: str, handle: ProcessHandle, task: asyncio.Task
    ) -> None:
        # A failed wait says nothing about the process itself; keep the handle
        # so a later stop, restart or cleanup can still terminate it
        if self._processes.get(server_id) is handle and handle.returncode is not None:
            del self._processes[server_id]
        if self._monitors.get(server_id) is task:
            del self._monitors[server_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Crash monitor failed",
                server_id=server_id,
                error=str(task.exception()),
            )

    async def _discard_stale_process(self, server_id: str) -> None:
        # A record can leave ``running`` (process error, disconnect) while its
        # process is still alive and holding a port
        handle = self._processes.pop(server_id, None)
        if handle is not None and handle.returncode is None:
            logger.warning(
                "Terminating stale mock server process",
                server_id=server_id,
                pid=handle.pid,
            )
            await self._terminate(server_id, handle)

    async def _terminate(self, server_id: str, handle: ProcessHandle) -> None:
        start_time = time.monotonic()
        method = await stop_process(handle, self.config.stop_grace_period)
        if method is None:
            raise StopTimeoutError(
                f"Mock server '{server_id}' did not exit after a forced kill",
                details={"pid": handle.pid},
            )

        logger.info(
            "Mock server stopped",
            server_id=server_id,
            pid=handle.pid,
            method=method,
            shutdown_time=round(time.monotonic() - start_time, 3),
        )
