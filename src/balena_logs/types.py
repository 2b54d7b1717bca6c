"""Type definitions for the log extraction workflow."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from balena_logs.errors import RemoteCommandFailure


class ReadinessState(str, Enum):
    """Readiness of the tunnel's local port."""

    WAITING = "waiting"
    READY = "ready"
    TIMED_OUT = "timed_out"


@dataclass(slots=True)
class TunnelHandle:
    """Running tunnel subprocess and the files capturing its output."""

    pid: int
    pgid: int
    stdout_path: Path
    stderr_path: Path
    started: bool = True


@dataclass(slots=True)
class RemoteCommandResult:
    """Structured result for a command run by the executor."""

    exit_code: Optional[int]
    stdout: str
    stderr: str
    timed_out: bool = False
    error: Optional[RemoteCommandFailure] = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and self.error is None

    @property
    def output(self) -> str:
        """Standard output when there is any, standard error otherwise."""
        return self.stdout if self.stdout else self.stderr


@dataclass(slots=True)
class ExtractionResult:
    """Outcome of a completed log extraction."""

    device_uuid: str
    url: Optional[str]
    remote_output: str = field(repr=False, default="")


class SessionState(str, Enum):
    """Lifecycle of a tunnel session."""

    CREATED = "created"
    STARTED = "started"
    READY = "ready"
    READY_TIMEOUT = "ready_timeout"
    TERMINATED = "terminated"
