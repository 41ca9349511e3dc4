"""Crash detection and classification for running mock servers."""

import asyncio
import time
from typing import Dict, Optional

import structlog

from ..config.settings import SupervisorConfig
from .process import ProcessHandle, exit_signal_name
from .server_registry import ServerRegistry, ServerStatus

logger = structlog.get_logger(__name__)

EXPECTED_SIGNALS = ("SIGTERM", "SIGKILL")


def classify_exit(
    returncode: Optional[int], uptime: float, immediate_threshold: float = 5.0
) -> str:
    """Explain why a running process went away.

    Precedence: expected termination signal, non-zero exit code, immediate
    crash, late crash.

    Args:
        returncode: Process return code (negative means killed by signal)
        uptime: Seconds the process ran after becoming ready
        immediate_threshold: Uptime under which a crash is "immediate"

    Returns:
        str: Crash reason for the server record
    """
    uptime_text = f"{uptime:.2f}s"
    signal_name = exit_signal_name(returncode)

    if signal_name in EXPECTED_SIGNALS:
        return f"Process terminated by signal {signal_name}"

    if returncode is not None and returncode > 0:
        reason = f"Process exited with error code {returncode}"
        if uptime < immediate_threshold:
            reason += f" immediately after startup ({uptime_text} uptime)"
        return reason

    if uptime < immediate_threshold:
        return f"Process crashed immediately after startup ({uptime_text} uptime)"

    return f"Process crashed unexpectedly after {uptime_text} uptime"


class _OutputLogger:
    """Logs process output line by line at debug level."""

    def __init__(self, log):
        self._log = log
        self._partial: Dict[str, str] = {}

    def __call__(self, stream_name: str, text: str) -> None:
        buffered = self._partial.get(stream_name, "") + text
        *lines, self._partial[stream_name] = buffered.split("\n")
        for line in lines:
            if line.strip():
                self._log.debug("Prism output", stream=stream_name, line=line.rstrip())


class CrashMonitor:
    """Watches ready processes and records unexpected terminations.

    The monitor only ever moves a record out of ``running`` and only for the
    pid it is watching, so it cannot overwrite a stop the manager already
    completed or touch a newer attempt for the same identifier.
    """

    def __init__(
        self, registry: ServerRegistry, config: Optional[SupervisorConfig] = None
    ):
        self.registry = registry
        self.config = config or SupervisorConfig()

    def watch(self, server_id: str, handle: ProcessHandle) -> asyncio.Task:
        """Attach to a running process; returns the watching task."""
        return asyncio.create_task(self._watch(server_id, handle))

    async def _watch(self, server_id: str, handle: ProcessHandle) -> None:
        log = logger.bind(server_id=server_id, pid=handle.pid)
        started = time.monotonic()
        output_logger = _OutputLogger(log)
        handle.add_output_listener(output_logger)
        disconnect_watch = asyncio.create_task(
            self._watch_disconnect(server_id, handle)
        )

        try:
            returncode = await handle.wait()
        except Exception as e:
            self.handle_error(server_id, handle.pid, e)
            return
        finally:
            disconnect_watch.cancel()
            handle.remove_output_listener(output_logger)

        self.handle_exit(
            server_id, handle.pid, returncode, time.monotonic() - started
        )

    async def _watch_disconnect(self, server_id: str, handle: ProcessHandle) -> None:
        await handle.wait_output_closed()
        await asyncio.sleep(self.config.disconnect_grace)
        if handle.returncode is None:
            self.handle_disconnect(server_id, handle.pid)

    def handle_exit(
        self, server_id: str, pid: int, returncode: Optional[int], uptime: float
    ) -> Optional[str]:
        """Record an exit of a running process.

        Returns:
            Optional[str]: The stored crash reason, or None if the record had
            already left ``running`` for this pid
        """
        reason = classify_exit(
            returncode, uptime, self.config.immediate_crash_threshold
        )
        applied = self.registry.transition(
            server_id,
            ServerStatus.STOPPED,
            error=reason,
            expected_status=ServerStatus.RUNNING,
            expected_pid=pid,
        )

        log = logger.bind(
            server_id=server_id,
            pid=pid,
            returncode=returncode,
            uptime=round(uptime, 2),
        )
        if not applied:
            log.debug("Process exited after status change", reason=reason)
            return None

        if exit_signal_name(returncode) in EXPECTED_SIGNALS:
            log.info("Mock server process terminated", reason=reason)
        else:
            log.error("Mock server crash detected", reason=reason)
        return reason

    def handle_error(self, server_id: str, pid: int, error: BaseException) -> bool:
        """Record an infrastructure failure of a running process."""
        logger.error(
            "Mock server process error",
            server_id=server_id,
            pid=pid,
            error=str(error),
            error_type=type(error).__name__,
        )
        return self.registry.transition(
            server_id,
            ServerStatus.ERROR,
            error=f"Process error: {error}",
            expected_status=ServerStatus.RUNNING,
            expected_pid=pid,
        )

    def handle_disconnect(self, server_id: str, pid: int) -> bool:
        """Record that a running process closed its output unexpectedly."""
        logger.warning("Mock server process disconnected", server_id=server_id, pid=pid)
        return self.registry.transition(
            server_id,
            ServerStatus.STOPPED,
            error="Process disconnected unexpectedly",
            expected_status=ServerStatus.RUNNING,
            expected_pid=pid,
        )
