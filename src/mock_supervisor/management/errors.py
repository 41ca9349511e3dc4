"""Mock server supervision errors with user-friendly messages."""

from typing import Any, Dict, List, Optional

PRISM_DOCS_URL = (
    "https://docs.stoplight.io/docs/prism/674b27b261c3c-prism-overview"
)


class MockServerError(Exception):
    """Base mock server error.

    Every subclass carries an ``error_type`` tag and an HTTP status code so
    outer surfaces (API, CLI) can categorize failures without inspecting
    message text.
    """

    error_type = "UNKNOWN_ERROR"
    status_code = 500
    suggestions: List[str] = []

    def __init__(
        self,
        message: str,
        suggestion: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.suggestion = suggestion
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to an API error payload."""
        suggestions = list(self.suggestions)
        if self.suggestion and self.suggestion not in suggestions:
            suggestions.insert(0, self.suggestion)
        return {
            "success": False,
            "error": self.message,
            "errorType": self.error_type,
            "suggestions": suggestions,
        }


class ToolNotInstalledError(MockServerError):
    """The Prism CLI is not available on this host."""

    error_type = "PRISM_NOT_INSTALLED"
    status_code = 503
    suggestions = [
        "Install Prism CLI globally using npm, yarn, or pnpm",
        "npm install -g @stoplight/prism-cli",
        "yarn global add @stoplight/prism-cli",
        "pnpm add -g @stoplight/prism-cli",
    ]


class PortExhaustionError(MockServerError):
    """No free port could be found in the configured range."""

    error_type = "NO_PORTS_AVAILABLE"
    status_code = 503
    suggestions = [
        "Stop other mock servers or services using ports 4010-4099",
        "Check for other applications using these ports",
    ]


class PortConflictError(MockServerError):
    """The spawned process could not bind its port (EADDRINUSE).

    Retried by the manager; surfaced only once retries are exhausted.
    """

    error_type = "PORT_CONFLICT"
    status_code = 503
    suggestions = [
        "The system automatically tries alternative ports",
        "If the issue persists, stop other services using the port range",
    ]

    def __init__(self, message: str, port: Optional[int] = None, **kwargs):
        self.port = port
        super().__init__(message, **kwargs)


class SpecInvalidError(MockServerError):
    """Prism rejected the specification; message is already translated."""

    error_type = "INVALID_SPEC"
    status_code = 400
    suggestions = [
        "Check that all $ref pointers point to valid schema definitions",
        "Ensure all referenced schemas exist in the components/schemas section",
        "Validate your spec using an online validator",
    ]


class StartupTimeoutError(MockServerError):
    """Prism did not report readiness before the startup deadline."""

    error_type = "STARTUP_TIMEOUT"
    status_code = 504
    suggestions = [
        "This may be due to a large or complex spec",
        "Try simplifying your spec or check system resources",
    ]


class ProcessSpawnError(MockServerError):
    """The Prism process could not be launched or died before startup."""

    error_type = "SPAWN_FAILED"
    status_code = 500
    suggestions = [
        "Check that the Prism CLI runs from this shell: prism --version",
    ]


class StopTimeoutError(MockServerError):
    """A process survived both the graceful and the forced stop."""

    error_type = "STOP_TIMEOUT"
    status_code = 500


class UnknownCrashError(MockServerError):
    """Unclassified failure while starting a mock server."""

    error_type = "UNKNOWN_ERROR"
    status_code = 500


class ServerNotFoundError(MockServerError):
    """No mock server is tracked under the requested identifier."""

    error_type = "NOT_FOUND"
    status_code = 404
