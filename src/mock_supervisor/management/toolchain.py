"""Presence check for the Prism CLI."""

import asyncio
from typing import Optional

import structlog

from ..config.settings import SupervisorConfig
from .errors import PRISM_DOCS_URL

logger = structlog.get_logger(__name__)


class ToolChecker:
    """Checks once whether ``prism --version`` runs, then caches the answer."""

    def __init__(self, config: Optional[SupervisorConfig] = None):
        self.config = config or SupervisorConfig()
        self._installed: Optional[bool] = None

    async def is_installed(self) -> bool:
        """Return True if the Prism CLI runs and exits cleanly."""
        if self._installed is not None:
            return self._installed

        command = [*self.config.command, "--version"]
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.info("Prism CLI not found", command=command, error=str(e))
            self._installed = False
            return False

        try:
            stdout, _ = await asyncio.wait_for(
                process.communicate(), timeout=self.config.tool_check_timeout
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning("Prism version check timed out", command=command)
            self._installed = False
            return False

        self._installed = process.returncode == 0
        logger.debug(
            "Prism version check finished",
            installed=self._installed,
            version=stdout.decode("utf-8", errors="replace").strip(),
        )
        return self._installed

    def reset(self) -> None:
        """Forget the cached answer, e.g. after installing Prism."""
        self._installed = None

    @staticmethod
    def installation_instructions() -> str:
        return (
            "Prism CLI is not installed. Please install it using one of the following methods:\n\n"
            "npm: npm install -g @stoplight/prism-cli\n"
            "yarn: yarn global add @stoplight/prism-cli\n"
            "pnpm: pnpm add -g @stoplight/prism-cli\n\n"
            f"For more information, visit: {PRISM_DOCS_URL}"
        )
