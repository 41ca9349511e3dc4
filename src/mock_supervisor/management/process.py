"""Small capability interface over a spawned OS process.

The supervisor state machine only needs to terminate, force-kill, await
exit and observe output. Keeping those behind ``ProcessHandle`` means the
manager and monitors never touch ``asyncio.subprocess`` directly and tests
can substitute an in-memory handle.
"""

import asyncio
import codecs
import signal
from typing import Callable, List, Optional, Sequence

import psutil
import structlog

logger = structlog.get_logger(__name__)

CHUNK_SIZE = 64 * 1024
STREAM_NAMES = ("stdout", "stderr")

# (stream name, decoded text chunk)
OutputListener = Callable[[str, str], None]


class ProcessHandle:
    """Running child process with fan-out of its stdout/stderr chunks."""

    def __init__(self, process: asyncio.subprocess.Process, name: Optional[str] = None):
        self._process = process
        self.name = name or str(process.pid)
        self._listeners: List[OutputListener] = []
        self._pumps: List[asyncio.Task] = []

    @classmethod
    async def spawn(
        cls, command: Sequence[str], name: Optional[str] = None
    ) -> "ProcessHandle":
        """Launch ``command`` with both output streams piped.

        Raises:
            OSError: The executable is missing or not runnable
        """
        process = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,  # Ctrl+C in a terminal must not reach Prism
        )
        handle = cls(process, name)
        handle._start_pumps()
        return handle

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    @property
    def output_closed(self) -> bool:
        """True once both output streams reached EOF."""
        return bool(self._pumps) and all(pump.done() for pump in self._pumps)

    def add_output_listener(self, listener: OutputListener) -> None:
        self._listeners.append(listener)

    def remove_output_listener(self, listener: OutputListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def terminate(self) -> None:
        """Send SIGTERM if the process is still alive."""
        if self.returncode is not None:
            return
        try:
            self._process.send_signal(signal.SIGTERM)
        except ProcessLookupError:
            pass

    def force_kill(self) -> None:
        """SIGKILL the process and any children it spawned."""
        if self.returncode is not None:
            return
        try:
            children = psutil.Process(self.pid).children(recursive=True)
        except psutil.Error:
            children = []
        for child in children:
            try:
                child.kill()
            except psutil.Error:
                pass
        try:
            self._process.kill()
        except ProcessLookupError:
            pass

    async def wait(self) -> int:
        """Wait for exit and return the return code.

        A negative value means the process was killed by that signal.
        """
        return await self._process.wait()

    async def wait_output_closed(self) -> None:
        """Wait until both output streams are fully drained."""
        if self._pumps:
            await asyncio.wait(self._pumps)

    def _start_pumps(self) -> None:
        streams = (self._process.stdout, self._process.stderr)
        for stream_name, stream in zip(STREAM_NAMES, streams):
            if stream is not None:
                self._pumps.append(
                    asyncio.create_task(self._pump(stream_name, stream))
                )

    async def _pump(self, stream_name: str, stream: asyncio.StreamReader) -> None:
        # Incremental decoding keeps multi-byte characters split across reads intact
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(CHUNK_SIZE)
            text = decoder.decode(chunk, final=not chunk)
            if text:
                self._dispatch(stream_name, text)
            if not chunk:
                break

    def _dispatch(self, stream_name: str, text: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(stream_name, text)
            except Exception:
                logger.exception(
                    "Output listener failed", process=self.name, stream=stream_name
                )


def exit_signal_name(returncode: Optional[int]) -> Optional[str]:
    """Name of the signal that killed a process, e.g. ``"SIGTERM"``."""
    if returncode is None or returncode >= 0:
        return None
    try:
        return signal.Signals(-returncode).name
    except ValueError:
        return f"SIG{-returncode}"


def describe_exit(returncode: Optional[int]) -> str:
    """Human-readable exit status: ``code 1`` or ``signal SIGKILL``."""
    name = exit_signal_name(returncode)
    if name:
        return f"signal {name}"
    return f"code {returncode}"


async def wait_for_exit(handle: "ProcessHandle", timeout: float) -> bool:
    """Wait up to ``timeout`` seconds for exit; False if still alive."""
    try:
        await asyncio.wait_for(asyncio.shield(handle.wait()), timeout)
    except asyncio.TimeoutError:
        return False
    return True


async def stop_process(handle: "ProcessHandle", grace_period: float) -> Optional[str]:
    """SIGTERM ``handle``, escalating to a tree kill after ``grace_period``.

    Returns:
        Optional[str]: ``"graceful"`` or ``"forced"``, or None if the process
        outlived the forced kill as well
    """
    if handle.returncode is not None:
        return "graceful"

    handle.terminate()
    if await wait_for_exit(handle, grace_period):
        return "graceful"

    logger.warning(
        "Process ignored SIGTERM, forcing kill",
        process=handle.name,
        pid=handle.pid,
        grace_period=grace_period,
    )
    handle.force_kill()
    if await wait_for_exit(handle, grace_period):
        return "forced"
    return None
