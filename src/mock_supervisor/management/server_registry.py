"""In-memory registry of mock server lifecycle records."""

import time
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Any, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


class ServerStatus(str, Enum):
    """Lifecycle states of a mock server attempt."""

    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"


@dataclass
class StartConfig:
    """Caller input for starting a mock server."""

    spec_path: str
    port: Optional[int] = None
    host: Optional[str] = None


@dataclass(frozen=True)
class ServerRecord:
    """Snapshot of one spec identifier's current mock server attempt."""

    id: str
    status: ServerStatus
    started_at: float
    url: str = ""
    port: int = 0
    pid: int = 0
    error: Optional[str] = None

    @classmethod
    def starting(cls, server_id: str) -> "ServerRecord":
        return cls(id=server_id, status=ServerStatus.STARTING, started_at=time.time())

    @property
    def is_running(self) -> bool:
        return self.status is ServerStatus.RUNNING

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        data = asdict(self)
        data["status"] = self.status.value
        return data


class ServerRegistry:
    """Map from spec identifier to its latest ``ServerRecord``.

    All mutation happens on the event loop thread, so no lock is needed.
    Competing writers (the manager and crash monitors) are ordered by
    ``transition``, which only applies a change when the record is still in
    the state the writer observed.
    """

    def __init__(self):
        self._records: Dict[str, ServerRecord] = {}

    def get(self, server_id: str) -> Optional[ServerRecord]:
        return self._records.get(server_id)

    def all(self) -> Dict[str, ServerRecord]:
        """Copy of every record keyed by identifier."""
        return dict(self._records)

    def put(self, record: ServerRecord) -> ServerRecord:
        """Store ``record``, replacing any previous one for its id."""
        self._records[record.id] = record
        logger.debug(
            "Server record updated",
            server_id=record.id,
            status=record.status.value,
            port=record.port,
            pid=record.pid,
        )
        return record

    def transition(
        self,
        server_id: str,
        status: ServerStatus,
        *,
        error: Optional[str] = None,
        expected_status: ServerStatus,
        expected_pid: Optional[int] = None,
    ) -> bool:
        """Compare-and-set a record's status.

        Args:
            server_id: Server identifier
            status: New status
            error: Failure or crash explanation to store
            expected_status: Status the record must currently have
            expected_pid: If given, pid the record must currently have

        Returns:
            bool: True if the record was updated
        """
        current = self._records.get(server_id)
        if current is None or current.status is not expected_status:
            return False
        if expected_pid is not None and current.pid != expected_pid:
            return False

        self.put(replace(current, status=status, error=error))
        return True

    def __contains__(self, server_id: str) -> bool:
        return server_id in self._records
