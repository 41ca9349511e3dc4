"""Prism process launch with startup-success detection.

Prism has no structured startup protocol, so readiness and failure are
inferred from text markers on its output streams. Whichever of ready,
failure, early exit or timeout happens first decides the outcome.
"""

import asyncio
from typing import Awaitable, Callable, Dict, List, Optional

import structlog

from ..config.settings import SupervisorConfig
from .error_translator import translate_error
from .errors import (
    MockServerError,
    PortConflictError,
    ProcessSpawnError,
    SpecInvalidError,
    StartupTimeoutError,
)
from .process import ProcessHandle, describe_exit, stop_process

logger = structlog.get_logger(__name__)

READY_MARKERS = ("Prism is listening", "started")
PORT_CONFLICT_MARKERS = ("EADDRINUSE", "address already in use")
SPEC_ERROR_MARKERS = (
    "ResolverError",
    "MissingPointerError",
    "EMISSINGPOINTER",
    "Error opening file",
)
HELP_BANNER_MARKER = "Options:"

MAX_TRANSCRIPT_CHARS = 4000

Spawner = Callable[..., Awaitable[ProcessHandle]]


class StartupOutcome:
    """One-shot result slot; the first ready or failure event wins.

    Every later ``resolve``/``reject`` is ignored, so two streams reporting
    in quick succession can never settle the startup twice.
    """

    def __init__(self):
        self._future: asyncio.Future = asyncio.get_running_loop().create_future()
        self.transcript: List[str] = []
        self._recent: Dict[str, str] = {}

    def record(self, stream_name: str, text: str) -> str:
        """Append a chunk and return the latest output of its stream.

        Markers can be split across reads, so callers match against the
        returned text rather than the chunk alone.
        """
        self.transcript.append(text)
        recent = (self._recent.get(stream_name, "") + text)[-MAX_TRANSCRIPT_CHARS:]
        self._recent[stream_name] = recent
        return recent

    @property
    def settled(self) -> bool:
        return self._future.done()

    def resolve(self) -> bool:
        if self.settled:
            return False
        self._future.set_result(True)
        return True

    def reject(self, error: MockServerError) -> bool:
        if self.settled:
            return False
        self._future.set_exception(error)
        return True

    async def wait(self) -> None:
        await self._future

    @property
    def output(self) -> str:
        return "".join(self.transcript)[-MAX_TRANSCRIPT_CHARS:]


def is_ready_output(text: str) -> bool:
    return any(marker in text for marker in READY_MARKERS)


def detect_failure(text: str, port: int) -> Optional[MockServerError]:
    """Classify pre-ready stderr output, or return None if it is benign."""
    if any(marker in text for marker in PORT_CONFLICT_MARKERS):
        return PortConflictError(
            f"Port {port} is already in use (EADDRINUSE). "
            "Will retry with next available port.",
            port=port,
        )

    if any(marker in text for marker in SPEC_ERROR_MARKERS) or (
        "Error:" in text and HELP_BANNER_MARKER not in text
    ):
        return SpecInvalidError(translate_error(text), details={"raw": text[-2000:]})

    return None


class StartupDetector:
    """Spawns Prism and waits until it is listening or has clearly failed."""

    def __init__(
        self,
        config: Optional[SupervisorConfig] = None,
        spawner: Optional[Spawner] = None,
    ):
        self.config = config or SupervisorConfig()
        self._spawner = spawner or ProcessHandle.spawn

    def build_command(self, spec_path: str, port: int, host: str) -> List[str]:
        return [
            *self.config.command,
            "mock",
            str(spec_path),
            "--host",
            host,
            "--port",
            str(port),
            "--dynamic",
            # Serve dynamic responses even where response definitions are missing
            "--errors=false",
        ]

    async def spawn_process(
        self, server_id: str, spec_path: str, port: int, host: str
    ) -> ProcessHandle:
        """Launch Prism for ``spec_path`` and wait for the startup outcome.

        Args:
            server_id: Spec identifier, used for logging
            spec_path: Path to the validated specification
            port: Port Prism should listen on
            host: Host Prism should bind

        Returns:
            ProcessHandle: Handle of the process, already listening

        Raises:
            ProcessSpawnError: Launch failed or Prism exited before ready
            PortConflictError: Prism reported the port as in use
            SpecInvalidError: Prism rejected the specification
            StartupTimeoutError: No outcome within the startup deadline
        """
        log = logger.bind(server_id=server_id, port=port)
        command = self.build_command(spec_path, port, host)

        try:
            handle = await self._spawner(command, name=server_id)
        except OSError as e:
            raise ProcessSpawnError(
                f"Failed to spawn Prism process: {e}",
                "Check that the Prism CLI is installed and on PATH",
                details={"command": command},
            ) from e

        log.debug("Prism process spawned", pid=handle.pid, command=command)
        outcome = StartupOutcome()

        def on_output(stream_name: str, text: str) -> None:
            if outcome.settled:
                return
            recent = outcome.record(stream_name, text)

            if is_ready_output(recent):
                outcome.resolve()
                return

            if stream_name == "stderr":
                failure = detect_failure(recent, port)
                if failure is not None:
                    log.warning(
                        "Prism reported a startup error",
                        error=failure.message,
                        raw=recent.strip()[-2000:],
                    )
                    outcome.reject(failure)

        handle.add_output_listener(on_output)
        exit_watch = asyncio.create_task(self._watch_early_exit(handle, outcome))

        try:
            await asyncio.wait_for(
                outcome.wait(), timeout=self.config.startup_timeout
            )
        except asyncio.TimeoutError:
            exit_watch.cancel()
            await self._abort(handle, log)
            raise StartupTimeoutError(
                f"Prism startup timeout after {self.config.startup_timeout:g} seconds",
                details={"output": outcome.output},
            ) from None
        except BaseException:
            # Startup failures and cancellation alike: nothing else tracks
            # this process yet, so it must not outlive the attempt
            exit_watch.cancel()
            await self._abort(handle, log)
            raise
        finally:
            handle.remove_output_listener(on_output)
            exit_watch.cancel()

        log.info("Prism process ready", pid=handle.pid)
        return handle

    async def _abort(self, handle: ProcessHandle, log) -> None:
        try:
            method = await stop_process(handle, self.config.stop_grace_period)
        except asyncio.CancelledError:
            handle.force_kill()
            raise
        if method is None:
            log.error("Prism process survived a forced kill", pid=handle.pid)
        else:
            log.debug("Prism process stopped after failed startup", method=method)

    async def _watch_early_exit(
        self, handle: ProcessHandle, outcome: StartupOutcome
    ) -> None:
        returncode = await handle.wait()
        # Markers still buffered in the pipes must be seen before exit is judged
        await handle.wait_output_closed()
        if outcome.settled:
            return

        message = f"Prism exited before it was ready ({describe_exit(returncode)})"
        output = outcome.output.strip()
        if output:
            message = f"{message}: {translate_error(output)}"

        outcome.reject(
            ProcessSpawnError(
                message,
                "Is Prism installed? Run: npm install -g @stoplight/prism-cli",
                details={"returncode": returncode, "output": output},
            )
        )