"""Pytest configuration and shared fixtures."""

import asyncio
import itertools
import json
import sys
import textwrap
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, Mock

import pytest

from mock_supervisor.config.settings import SupervisorConfig
from mock_supervisor.management import PortConflictError, ToolChecker

# Stand-in for the Prism CLI. Behaviour is selected by the "x-fake-prism"
# key of the spec file it is asked to mock.
FAKE_PRISM_SOURCE = textwrap.dedent(
    '''
    import json
    import signal
    import socket
    import sys
    import time

    def main(argv):
        if argv[:1] == ["--version"]:
            print("5.8.1")
            return 0

        spec_path = argv[1]
        host = argv[argv.index("--host") + 1]
        port = int(argv[argv.index("--port") + 1])
        with open(spec_path) as f:
            behaviour = json.load(f).get("x-fake-prism", {})
        mode = behaviour.get("mode", "ready")

        if mode == "exit":
            sys.stderr.write(behaviour.get("stderr", ""))
            return behaviour.get("code", 2)
        if mode == "spec_error":
            sys.stderr.write(behaviour["stderr"])
            sys.stderr.flush()
            return 1
        if mode == "silent":
            if behaviour.get("ignore_term"):
                signal.signal(signal.SIGTERM, signal.SIG_IGN)
            while True:
                time.sleep(1)

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.bind((host, port))
        except OSError:
            sys.stderr.write(
                "Error: listen EADDRINUSE: address already in use %s:%d\\n" % (host, port)
            )
            return 1
        sock.listen(5)

        if mode == "ignore_term":
            signal.signal(signal.SIGTERM, signal.SIG_IGN)

        sys.stdout.write("[CLI] ...  awaiting  Starting Prism...\\n")
        sys.stdout.flush()
        sys.stderr.write("[CLI] >  start  Prism is listening on http://%s:%d\\n" % (host, port))
        sys.stderr.flush()

        if mode == "crash":
            time.sleep(behaviour.get("after", 0.2))
            return behaviour.get("code", 3)

        while True:
            time.sleep(1)

    sys.exit(main(sys.argv[1:]))
    '''
)


@pytest.fixture
def fake_prism(tmp_path) -> List[str]:
    """Command that runs the fake Prism CLI."""
    script = tmp_path / "fake_prism.py"
    script.write_text(FAKE_PRISM_SOURCE)
    return [sys.executable, str(script)]


@pytest.fixture
def supervisor_config(fake_prism) -> SupervisorConfig:
    """Supervisor settings wired to the fake Prism CLI."""
    return SupervisorConfig(
        command=fake_prism,
        startup_timeout=5.0,
        stop_grace_period=1.0,
        disconnect_grace=0.2,
    )


@pytest.fixture
def write_spec(tmp_path):
    """Factory writing an OpenAPI document with a fake Prism behaviour."""
    counter = itertools.count()

    def _write(mode: str = "ready", **behaviour: Any) -> str:
        spec: Dict[str, Any] = {
            "openapi": "3.0.0",
            "info": {"title": "Test API", "version": "1.0.0"},
            "paths": {},
            "x-fake-prism": {"mode": mode, **behaviour},
        }
        path = tmp_path / f"spec_{next(counter)}.json"
        path.write_text(json.dumps(spec))
        return str(path)

    return _write


class FakeProcessHandle:
    """In-memory stand-in for ``ProcessHandle``."""

    _pids = itertools.count(50000)

    def __init__(self, name: Optional[str] = None, exits_on_terminate: bool = True):
        self.pid = next(self._pids)
        self.name = name or str(self.pid)
        self.returncode: Optional[int] = None
        self.exits_on_terminate = exits_on_terminate
        self.exits_on_kill = True
        self.signals: List[str] = []
        self._listeners = []
        self._exited = asyncio.Event()
        self._closed = asyncio.Event()
        self._wait_error: Optional[BaseException] = None

    @property
    def output_closed(self) -> bool:
        return self._closed.is_set()

    def add_output_listener(self, listener) -> None:
        self._listeners.append(listener)

    def remove_output_listener(self, listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, stream_name: str, text: str) -> None:
        for listener in list(self._listeners):
            listener(stream_name, text)

    def exit(self, returncode: int) -> None:
        self.returncode = returncode
        self._closed.set()
        self._exited.set()

    def close_output(self) -> None:
        self._closed.set()

    def fail_wait(self, error: BaseException) -> None:
        self._wait_error = error
        self._exited.set()

    def terminate(self) -> None:
        self.signals.append("SIGTERM")
        if self.exits_on_terminate and self.returncode is None:
            asyncio.get_running_loop().call_soon(self.exit, -15)

    def force_kill(self) -> None:
        self.signals.append("SIGKILL")
        if self.exits_on_kill and self.returncode is None:
            asyncio.get_running_loop().call_soon(self.exit, -9)

    async def wait(self) -> int:
        await self._exited.wait()
        if self._wait_error is not None:
            # Fails once; the process itself may still be alive
            error, self._wait_error = self._wait_error, None
            if self.returncode is None:
                self._exited.clear()
            raise error
        return self.returncode

    async def wait_output_closed(self) -> None:
        await self._closed.wait()


class ScriptedDetector:
    """Startup detector double that plays back a list of outcomes.

    Each outcome is either an exception to raise or ``None`` for a ready
    process. The last outcome repeats once the script runs out.
    """

    def __init__(self, outcomes=None):
        self.outcomes = list(outcomes or [None])
        self.calls: List[Dict[str, Any]] = []
        self.handles: List[FakeProcessHandle] = []

    async def spawn_process(self, server_id, spec_path, port, host):
        self.calls.append(
            {"server_id": server_id, "spec_path": spec_path, "port": port, "host": host}
        )
        index = min(len(self.calls), len(self.outcomes)) - 1
        outcome = self.outcomes[index]
        if outcome is not None:
            raise outcome
        handle = FakeProcessHandle(name=server_id)
        self.handles.append(handle)
        return handle


class RecordingAllocator:
    """Port allocator double returning predictable ports."""

    def __init__(self, busy=()):
        self.busy = set(busy)
        self.find_calls: List[int] = []
        self.probe_calls: List[int] = []

    async def find_available_port(self, start_port, host=None):
        self.find_calls.append(start_port)
        port = start_port
        while port in self.busy:
            port += 1
        return port

    async def is_port_available(self, port, host=None):
        self.probe_calls.append(port)
        return port not in self.busy


def port_conflict(port: int = 4010) -> PortConflictError:
    return PortConflictError(
        f"Port {port} is already in use (EADDRINUSE). "
        "Will retry with next available port.",
        port=port,
    )


def tool_checker_stub(installed: bool = True) -> Mock:
    checker = Mock(spec=ToolChecker)
    checker.is_installed = AsyncMock(return_value=installed)
    checker.installation_instructions.return_value = (
        ToolChecker.installation_instructions()
    )
    return checker

