"""Main CLI entry point for the mock server supervisor.

This module provides the command-line interface for running Prism mock
servers for OpenAPI specifications and for serving the HTTP control API.
"""

import asyncio
import sys
import traceback
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import click
import yaml

from .__version__ import __version__
from .config.logging import configure_logging, get_logger
from .config.settings import Settings
from .management import (
    MockServerError,
    MockServerManager,
    ServerStatus,
    StartConfig,
    ToolChecker,
)

logger = get_logger(__name__)

STATUS_ICONS = {
    ServerStatus.STARTING: "⏳",
    ServerStatus.RUNNING: "✅",
    ServerStatus.STOPPED: "🛑",
    ServerStatus.ERROR: "❌",
}


class CLIError(Exception):
    """Base CLI error with user-friendly messages."""

    def __init__(self, message: str, suggestion: Optional[str] = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)


class CLIContext:
    """Global CLI context management."""

    def __init__(self, verbose: bool = False, quiet: bool = False):
        self.verbose = verbose
        self.quiet = quiet
        self.settings = Settings()


def handle_cli_error(error: Exception, ctx: Optional[click.Context] = None):
    """Global CLI error handler."""
    logger.debug("CLI command failed", error=str(error), error_type=type(error).__name__)
    if isinstance(error, (CLIError, MockServerError)):
        click.echo(f"Error: {error.message}", err=True)
        if error.suggestion:
            click.echo(f"Suggestion: {error.suggestion}", err=True)
    elif isinstance(error, click.ClickException):
        error.show()
    else:
        verbose = bool(ctx and ctx.obj and ctx.obj.get("verbose"))
        click.echo(f"Unexpected error: {error}", err=True)
        if verbose:
            click.echo(traceback.format_exc(), err=True)
        else:
            click.echo("Run with --verbose for detailed error information", err=True)

    sys.exit(1)


def load_manifest(manifest_path: str) -> List[Tuple[str, StartConfig]]:
    """Load mock server definitions from a YAML manifest.

    \b
    servers:
      petstore:
        spec: ./specs/petstore.yaml
        port: 4010
    """
    try:
        with open(manifest_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise CLIError(
            f"Invalid manifest file: {e}", "Check YAML syntax and file format"
        )

    servers = data.get("servers") if isinstance(data, dict) else None
    if not isinstance(servers, dict) or not servers:
        raise CLIError(
            "Manifest must define a non-empty 'servers' mapping",
            "See 'mock-supervisor serve --help' for the manifest format",
        )

    base_dir = Path(manifest_path).parent
    entries = []
    for server_id, entry in servers.items():
        if not isinstance(entry, dict) or not entry.get("spec"):
            raise CLIError(f"Manifest entry '{server_id}' needs a 'spec' path")
        spec_path = Path(entry["spec"])
        if not spec_path.is_absolute():
            spec_path = base_dir / spec_path
        entries.append(
            (
                str(server_id),
                StartConfig(
                    spec_path=str(spec_path),
                    port=entry.get("port"),
                    host=entry.get("host"),
                ),
            )
        )
    return entries


@click.group()
@click.version_option(version=__version__, prog_name="mock-supervisor")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose output with detailed logging",
)
@click.option(
    "--quiet", "-q", is_flag=True, help="Enable quiet mode with minimal output"
)
@click.option("--log-file", type=click.Path(), help="Also write logs to this file")
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON lines")
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    log_file: Optional[str],
    json_logs: bool,
):
    """Prism mock server supervisor

    Launch and supervise Prism mock servers that serve synthetic responses
    for OpenAPI specifications, one server per specification.

    \b
    Examples:
      mock-supervisor check
      mock-supervisor serve petstore.yaml --port 4010
      mock-supervisor serve --manifest mocks.yaml
      mock-supervisor api --port 8787
    """
    if verbose and quiet:
        raise click.BadParameter("Cannot use both --verbose and --quiet options")

    ctx.ensure_object(dict)
    cli_context = CLIContext(verbose=verbose, quiet=quiet)
    ctx.obj["cli_context"] = cli_context
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet

    logging_config = cli_context.settings.logging
    if verbose:
        level = "DEBUG"
    elif quiet:
        level = "ERROR"
    else:
        level = logging_config.level
    configure_logging(
        level=level,
        log_file=log_file or cli_context.settings.get_log_file_path(),
        json_logs=json_logs or logging_config.json_format,
    )


@cli.command()
@click.pass_context
def check(ctx: click.Context):
    """Check that the Prism CLI is installed."""
    cli_context: CLIContext = ctx.obj["cli_context"]
    checker = ToolChecker(cli_context.settings.supervisor)

    if asyncio.run(checker.is_installed()):
        click.echo("✅ Prism CLI is installed")
        return

    click.echo(f"❌ {checker.installation_instructions()}", err=True)
    sys.exit(1)


@cli.command()
@click.argument("spec_files", nargs=-1, type=click.Path(exists=True, dir_okay=False))
@click.option("--manifest", "-m", type=click.Path(exists=True), help="YAML manifest of mock servers")
@click.option("--port", "-p", type=int, help="Preferred port (single spec only)")
@click.option("--host", "-h", type=str, help="Host to bind mock servers to")
@click.option("--id", "server_id", type=str, help="Server identifier (single spec only)")
@click.option(
    "--poll-interval",
    type=float,
    default=1.0,
    show_default=True,
    help="Seconds between status checks",
)
@click.pass_context
def serve(
    ctx: click.Context,
    spec_files: Tuple[str, ...],
    manifest: Optional[str],
    port: Optional[int],
    host: Optional[str],
    server_id: Optional[str],
    poll_interval: float,
):
    """Start mock servers and supervise them until Ctrl+C.

    One mock server is started per SPEC_FILE, identified by the file name
    without extension unless --id is given. Crashes are reported as they
    happen.

    \b
    Examples:
      # Single spec on a preferred port
      mock-supervisor serve petstore.yaml --port 4010

      # Several specs, ports allocated from 4010-4099
      mock-supervisor serve petstore.yaml users.json

      # Servers listed in a manifest
      mock-supervisor serve --manifest mocks.yaml
    """
    try:
        cli_context: CLIContext = ctx.obj["cli_context"]
        entries = _collect_entries(spec_files, manifest, port, host, server_id)
        asyncio.run(_serve_command(entries, poll_interval, cli_context))
    except KeyboardInterrupt:
        click.echo("\n🛑 Mock servers stopped")
    except Exception as error:
        handle_cli_error(error, ctx)


@cli.command()
@click.option("--host", "-h", type=str, help="Host to bind the API to")
@click.option("--port", "-p", type=int, help="Port to bind the API to")
@click.pass_context
def api(ctx: click.Context, host: Optional[str], port: Optional[int]):
    """Serve the HTTP control API.

    \b
    Endpoints:
      POST /mock/start    {"specId", "specPath", "port"?, "host"?}
      GET  /mock/status   ?specId=...
      GET  /mock/servers
      POST /mock/stop     {"specId"}
    """
    from .api import run_api

    cli_context: CLIContext = ctx.obj["cli_context"]
    api_config = cli_context.settings.api
    manager = MockServerManager(cli_context.settings.supervisor)

    try:
        run_api(
            manager,
            host=host or api_config.host,
            port=port or api_config.port,
            print_fn=None if cli_context.quiet else click.echo,
        )
    except Exception as error:
        handle_cli_error(error, ctx)


def _collect_entries(
    spec_files: Tuple[str, ...],
    manifest: Optional[str],
    port: Optional[int],
    host: Optional[str],
    server_id: Optional[str],
) -> List[Tuple[str, StartConfig]]:
    if manifest and spec_files:
        raise CLIError("Use either SPEC_FILES or --manifest, not both")
    if manifest:
        return load_manifest(manifest)
    if not spec_files:
        raise CLIError(
            "No specification given",
            "Pass one or more spec files or --manifest FILE",
        )
    if len(spec_files) > 1 and (port is not None or server_id):
        raise CLIError("--port and --id can only be used with a single spec file")

    return [
        (
            server_id or Path(spec_file).stem,
            StartConfig(spec_path=spec_file, port=port, host=host),
        )
        for spec_file in spec_files
    ]


async def _serve_command(
    entries: List[Tuple[str, StartConfig]],
    poll_interval: float,
    cli_context: CLIContext,
):
    """Execute serve command asynchronously."""
    async with MockServerManager(cli_context.settings.supervisor) as manager:
        for server_id, start_config in entries:
            if not cli_context.quiet:
                click.echo(f"🚀 Starting mock server '{server_id}' for {start_config.spec_path}")
            try:
                record = await manager.start_server(server_id, start_config)
            except MockServerError as e:
                click.echo(f"❌ {server_id}: {e.message}", err=True)
                if e.suggestion:
                    click.echo(f"💡 {e.suggestion}", err=True)
                continue
            click.echo(f"✅ {server_id}: {record.url} (pid {record.pid})")

        if manager.running_count == 0:
            raise CLIError("No mock server could be started")

        if not cli_context.quiet:
            click.echo("   Press Ctrl+C to stop all mock servers")
        await _watch_status_changes(manager, poll_interval)


async def _watch_status_changes(manager: MockServerManager, poll_interval: float):
    """Report status transitions until no mock server is running."""
    last_seen: Dict[str, Any] = {
        server_id: record.status for server_id, record in manager.get_all_servers().items()
    }

    while manager.running_count > 0:
        await asyncio.sleep(poll_interval)
        for server_id, record in manager.get_all_servers().items():
            if last_seen.get(server_id) is record.status:
                continue
            last_seen[server_id] = record.status
            icon = STATUS_ICONS.get(record.status, "ℹ️")
            message = f"{icon} {server_id}: {record.status.value}"
            if record.error:
                message = f"{message} ({record.error})"
            click.echo(message, err=record.status is not ServerStatus.RUNNING)

    click.echo("ℹ️  No mock servers are running anymore")


if __name__ == "__main__":
    cli()
