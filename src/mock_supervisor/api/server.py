"""HTTP control API exposing mock server start, stop and status."""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
from aiohttp import web

from ..management import MockServerError, MockServerManager, ServerRecord, StartConfig

logger = structlog.get_logger(__name__)

MANAGER_KEY = web.AppKey("manager", MockServerManager)


def serialize_record(record: Optional[ServerRecord]) -> Optional[Dict[str, Any]]:
    """Render a record in the camelCase shape web clients expect."""
    if record is None:
        return None
    data = record.to_dict()
    started_at = data.pop("started_at")
    data["startedAt"] = datetime.fromtimestamp(started_at, timezone.utc).isoformat()
    return data


def _error_response(
    message: str, status: int, error_type: Optional[str] = None
) -> web.Response:
    payload: Dict[str, Any] = {"success": False, "error": message}
    if error_type:
        payload["errorType"] = error_type
    return web.json_response(payload, status=status)


async def _read_body(request: web.Request) -> Optional[Dict[str, Any]]:
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


async def start_mock_server(request: web.Request) -> web.Response:
    body = await _read_body(request)
    if body is None:
        return _error_response("Request body must be a JSON object", 400)

    spec_id = body.get("specId")
    spec_path = body.get("specPath")
    port = body.get("port")

    if not spec_id:
        return _error_response("specId is required", 400)
    if not spec_path:
        return _error_response("specPath is required", 400)
    if port is not None and (isinstance(port, bool) or not isinstance(port, int)):
        return _error_response("port must be an integer", 400)
    if not Path(spec_path).is_file():
        return _error_response(f"Spec file not found: {spec_path}", 404)

    manager = request.app[MANAGER_KEY]
    try:
        record = await manager.start_server(
            spec_id,
            StartConfig(spec_path=spec_path, port=port, host=body.get("host")),
        )
    except MockServerError as e:
        logger.warning(
            "Mock server start request failed",
            spec_id=spec_id,
            error_type=e.error_type,
            error=e.message,
        )
        return web.json_response(e.to_dict(), status=e.status_code)

    return web.json_response({"success": True, "serverInfo": serialize_record(record)})


async def mock_server_status(request: web.Request) -> web.Response:
    spec_id = request.query.get("specId")
    if not spec_id:
        return _error_response("specId query parameter is required", 400)

    record = request.app[MANAGER_KEY].get_server_info(spec_id)
    return web.json_response({"success": True, "serverInfo": serialize_record(record)})


async def list_mock_servers(request: web.Request) -> web.Response:
    servers = request.app[MANAGER_KEY].get_all_servers()
    return web.json_response(
        {
            "success": True,
            "servers": {
                spec_id: serialize_record(record) for spec_id, record in servers.items()
            },
        }
    )


async def stop_mock_server(request: web.Request) -> web.Response:
    body = await _read_body(request)
    if body is None:
        return _error_response("Request body must be a JSON object", 400)

    spec_id = body.get("specId")
    if not spec_id:
        return _error_response("specId is required", 400)

    try:
        await request.app[MANAGER_KEY].stop_server(spec_id)
    except MockServerError as e:
        return web.json_response(e.to_dict(), status=e.status_code)

    return web.json_response({"success": True})


async def _cleanup_servers(app: web.Application) -> None:
    await app[MANAGER_KEY].cleanup()


def create_app(manager: MockServerManager) -> web.Application:
    """Build the control API application around ``manager``.

    Every mock server still running is stopped when the application shuts
    down.
    """
    app = web.Application()
    app[MANAGER_KEY] = manager

    app.router.add_post("/mock/start", start_mock_server)
    app.router.add_get("/mock/status", mock_server_status)
    app.router.add_get("/mock/servers", list_mock_servers)
    app.router.add_post("/mock/stop", stop_mock_server)

    app.on_cleanup.append(_cleanup_servers)
    return app


def run_api(manager: MockServerManager, host: str, port: int, print_fn=print) -> None:
    """Serve the control API until interrupted."""
    logger.info("Starting mock server control API", host=host, port=port)
    web.run_app(create_app(manager), host=host, port=port, print=print_fn)
