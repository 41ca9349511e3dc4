"""Tests for the HTTP control API."""

from datetime import datetime

import pytest
from aiohttp import test_utils

from conftest import RecordingAllocator, ScriptedDetector, tool_checker_stub
from mock_supervisor.api.server import create_app, serialize_record
from mock_supervisor.config.settings import SupervisorConfig
from mock_supervisor.management import (
    MockServerManager,
    ServerRecord,
    ServerStatus,
    SpecInvalidError,
)


class TestControlApi:
    """Test the control API endpoints."""

    @pytest.fixture(autouse=True)
    def setup_manager(self, tmp_path):
        """Set up a manager backed by in-memory processes."""
        self.spec_path = tmp_path / "petstore.yaml"
        self.spec_path.write_text("openapi: 3.0.0\n")
        self.detector = ScriptedDetector()
        self.tool_checker = tool_checker_stub(installed=True)
        self.manager = MockServerManager(
            SupervisorConfig(stop_grace_period=0.1),
            port_allocator=RecordingAllocator(),
            startup_detector=self.detector,
            tool_checker=self.tool_checker,
        )

    def _client(self) -> test_utils.TestClient:
        return test_utils.TestClient(test_utils.TestServer(create_app(self.manager)))

    @pytest.mark.asyncio
    async def test_start_server(self):
        """Test starting a mock server."""
        async with self._client() as client:
            resp = await client.post(
                "/mock/start",
                json={"specId": "petstore", "specPath": str(self.spec_path)},
            )
            data = await resp.json()

        assert resp.status == 200
        assert data["success"] is True
        info = data["serverInfo"]
        assert info["id"] == "petstore"
        assert info["port"] == 4010
        assert info["url"] == "http://localhost:4010"
        assert info["status"] == "running"
        assert info["error"] is None
        datetime.fromisoformat(info["startedAt"])

    @pytest.mark.asyncio
    async def test_start_with_port_and_host(self):
        """Test that optional port and host are forwarded."""
        async with self._client() as client:
            resp = await client.post(
                "/mock/start",
                json={
                    "specId": "petstore",
                    "specPath": str(self.spec_path),
                    "port": 4055,
                    "host": "127.0.0.1",
                },
            )
            data = await resp.json()

        assert resp.status == 200
        assert data["serverInfo"]["url"] == "http://127.0.0.1:4055"
        assert self.detector.calls[0]["host"] == "127.0.0.1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body,message",
        [
            ({"specPath": "x.yaml"}, "specId is required"),
            ({"specId": "petstore"}, "specPath is required"),
        ],
    )
    async def test_start_validation(self, body, message):
        """Test request validation errors."""
        async with self._client() as client:
            resp = await client.post("/mock/start", json=body)
            data = await resp.json()

        assert resp.status == 400
        assert data == {"success": False, "error": message}

    @pytest.mark.asyncio
    async def test_start_rejects_non_integer_port(self):
        """Test port type validation."""
        async with self._client() as client:
            resp = await client.post(
                "/mock/start",
                json={
                    "specId": "petstore",
                    "specPath": str(self.spec_path),
                    "port": "4010",
                },
            )

        assert resp.status == 400
        assert self.detector.calls == []

    @pytest.mark.asyncio
    async def test_start_rejects_invalid_json(self):
        """Test that a non-JSON body is rejected."""
        async with self._client() as client:
            resp = await client.post("/mock/start", data="not json")
            data = await resp.json()

        assert resp.status == 400
        assert data["error"] == "Request body must be a JSON object"

    @pytest.mark.asyncio
    async def test_start_missing_spec_file(self, tmp_path):
        """Test that a missing spec file is a 404."""
        async with self._client() as client:
            resp = await client.post(
                "/mock/start",
                json={"specId": "petstore", "specPath": str(tmp_path / "nope.yaml")},
            )
            data = await resp.json()

        assert resp.status == 404
        assert data["error"].startswith("Spec file not found")

    @pytest.mark.asyncio
    async def test_start_prism_not_installed(self):
        """Test the error payload when Prism is missing."""
        self.tool_checker.is_installed.return_value = False

        async with self._client() as client:
            resp = await client.post(
                "/mock/start",
                json={"specId": "petstore", "specPath": str(self.spec_path)},
            )
            data = await resp.json()

        assert resp.status == 503
        assert data["success"] is False
        assert data["errorType"] == "PRISM_NOT_INSTALLED"
        assert "npm install -g @stoplight/prism-cli" in data["suggestions"]

    @pytest.mark.asyncio
    async def test_start_invalid_spec(self):
        """Test the error payload for a rejected specification."""
        self.detector.outcomes = [
            SpecInvalidError("Invalid OpenAPI specification: YAML parsing error.")
        ]

        async with self._client() as client:
            resp = await client.post(
                "/mock/start",
                json={"specId": "petstore", "specPath": str(self.spec_path)},
            )
            data = await resp.json()
            status_resp = await client.get("/mock/status", params={"specId": "petstore"})
            status = await status_resp.json()

        assert resp.status == 400
        assert data["errorType"] == "INVALID_SPEC"
        assert data["error"] == "Invalid OpenAPI specification: YAML parsing error."
        assert status["serverInfo"]["status"] == "error"
        assert status["serverInfo"]["error"] == data["error"]

    @pytest.mark.asyncio
    async def test_status_requires_spec_id(self):
        """Test status query validation."""
        async with self._client() as client:
            resp = await client.get("/mock/status")

        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_status_unknown_server(self):
        """Test that unknown identifiers report no server info."""
        async with self._client() as client:
            resp = await client.get("/mock/status", params={"specId": "ghost"})
            data = await resp.json()

        assert resp.status == 200
        assert data == {"success": True, "serverInfo": None}

    @pytest.mark.asyncio
    async def test_list_servers(self):
        """Test listing every server."""
        async with self._client() as client:
            await client.post(
                "/mock/start",
                json={"specId": "petstore", "specPath": str(self.spec_path)},
            )
            resp = await client.get("/mock/servers")
            data = await resp.json()

        assert resp.status == 200
        assert list(data["servers"]) == ["petstore"]
        assert data["servers"]["petstore"]["status"] == "running"

    @pytest.mark.asyncio
    async def test_stop_server(self):
        """Test stopping a running server."""
        async with self._client() as client:
            await client.post(
                "/mock/start",
                json={"specId": "petstore", "specPath": str(self.spec_path)},
            )
            resp = await client.post("/mock/stop", json={"specId": "petstore"})
            data = await resp.json()
            status_resp = await client.get("/mock/status", params={"specId": "petstore"})
            status = await status_resp.json()

        assert resp.status == 200
        assert data == {"success": True}
        assert status["serverInfo"]["status"] == "stopped"
        assert self.detector.handles[0].signals == ["SIGTERM"]

    @pytest.mark.asyncio
    async def test_stop_unknown_server(self):
        """Test that stopping an unknown server is a 404."""
        async with self._client() as client:
            resp = await client.post("/mock/stop", json={"specId": "ghost"})
            data = await resp.json()

        assert resp.status == 404
        assert data["errorType"] == "NOT_FOUND"
        assert data["error"] == "No server found for id: ghost"

    @pytest.mark.asyncio
    async def test_shutdown_stops_servers(self):
        """Test that application cleanup stops running servers."""
        async with self._client() as client:
            await client.post(
                "/mock/start",
                json={"specId": "petstore", "specPath": str(self.spec_path)},
            )

        assert self.detector.handles[0].signals == ["SIGTERM"]
        assert self.manager.get_server_info("petstore").status is ServerStatus.STOPPED


def test_serialize_record():
    """Test the camelCase record rendering."""
    record = ServerRecord(
        id="petstore",
        status=ServerStatus.STOPPED,
        started_at=0.0,
        url="http://localhost:4010",
        port=4010,
        pid=99,
        error="Process terminated by signal SIGTERM",
    )

    assert serialize_record(record) == {
        "id": "petstore",
        "url": "http://localhost:4010",
        "port": 4010,
        "pid": 99,
        "status": "stopped",
        "startedAt": "1970-01-01T00:00:00+00:00",
        "error": "Process terminated by signal SIGTERM",
    }
    assert serialize_record(None) is None
