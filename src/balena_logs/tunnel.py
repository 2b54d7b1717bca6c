"""Lifecycle of the `balena device tunnel` subprocess."""
from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from pathlib import Path
from typing import IO, Callable, List, Optional

from balena_logs.errors import CleanupError, TunnelStartError
from balena_logs.polling import poll_until
from balena_logs.types import ReadinessState, SessionState, TunnelHandle

logger = logging.getLogger(__name__)

READY_MARKER = "Waiting for connections"
DEFAULT_LOCAL_PORT = 4321
DEFAULT_REMOTE_PORT = 22222
DEFAULT_STDOUT_LOG = "tunnel-stdout.log"
DEFAULT_STDERR_LOG = "tunnel-stderr.log"


class TunnelSession:
    """Owns one tunnel subprocess from start to teardown.

    The tunnel runs in its own session and process group so that a single
    group signal reaches the balena CLI and every child it spawned. Use it as
    a context manager to guarantee teardown:

        with TunnelSession(uuid) as tunnel:
            tunnel.start()
            tunnel.wait_until_ready()
    """

    def __init__(
        self,
        device_uuid: str,
        local_port: int = DEFAULT_LOCAL_PORT,
        remote_port: int = DEFAULT_REMOTE_PORT,
        stdout_path: Path = Path(DEFAULT_STDOUT_LOG),
        stderr_path: Path = Path(DEFAULT_STDERR_LOG),
        balena_bin: str = "balena",
        terminate_timeout: float = 5.0,
    ):
        """
        Initialize tunnel parameters. Nothing is started here.

        Args:
            device_uuid: balena device UUID. Required.
            local_port: Local TCP port the tunnel binds. Default: 4321.
            remote_port: Device port exposed through the tunnel. Default: 22222.
            stdout_path: File capturing the tunnel's standard output.
            stderr_path: File capturing the tunnel's standard error.
            balena_bin: balena CLI executable.
            terminate_timeout: Seconds to wait for the group to exit after SIGTERM.

        Raises:
            ValueError: If the UUID is empty or a port is out of range.
        """
        if not device_uuid or not isinstance(device_uuid, str):
            raise ValueError("device_uuid must be a non-empty string")
        for name, port in (("local_port", local_port), ("remote_port", remote_port)):
            if not isinstance(port, int) or port <= 0 or port > 65535:
                raise ValueError(f"{name} must be an integer between 1 and 65535")

        self.device_uuid = device_uuid
        self.local_port = local_port
        self.remote_port = remote_port
        self.stdout_path = Path(stdout_path)
        self.stderr_path = Path(stderr_path)
        self.balena_bin = balena_bin
        self.terminate_timeout = terminate_timeout

        self.state = SessionState.CREATED
        self.handle: Optional[TunnelHandle] = None
        self.cleanup_errors: List[CleanupError] = []
        self._process: Optional[subprocess.Popen] = None
        self._capture_files: List[IO[str]] = []

    def __enter__(self) -> "TunnelSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.terminate()

    @property
    def command(self) -> List[str]:
        return [
            self.balena_bin,
            "device",
            "tunnel",
            self.device_uuid,
            "-p",
            f"{self.remote_port}:{self.local_port}",
        ]

    def start(self) -> TunnelHandle:
        """
        Launch the tunnel in the background with its output redirected to the capture files.

        Returns:
            TunnelHandle for the running process.

        Raises:
            RuntimeError: If the session was already started.
            TunnelStartError: If the subprocess could not be launched. The
                session is torn down before this is raised.
        """
        if self.state is not SessionState.CREATED:
            raise RuntimeError(f"Tunnel session cannot start from state '{self.state.value}'")

        try:
            out = open(self.stdout_path, "w", encoding="utf-8")
            self._capture_files.append(out)
            err = open(self.stderr_path, "w", encoding="utf-8")
            self._capture_files.append(err)
            self._process = subprocess.Popen(
                self.command,
                stdin=None,
                stdout=out,
                stderr=err,
                start_new_session=True,
            )
        except OSError as exc:
            logger.error("Tunnel process error: %s", exc)
            self.terminate()
            raise TunnelStartError(f"Failed to start tunnel to device {self.device_uuid}: {exc}") from exc

        # start_new_session makes the child a session and group leader.
        pid = self._process.pid
        self.handle = TunnelHandle(
            pid=pid,
            pgid=pid,
            stdout_path=self.stdout_path,
            stderr_path=self.stderr_path,
        )
        self.state = SessionState.STARTED
        logger.info(
            "Tunnel started for %s (pid %s): localhost:%s -> device:%s",
            self.device_uuid,
            pid,
            self.local_port,
            self.remote_port,
        )
        return self.handle

    def read_output(self) -> str:
        """Snapshot of everything the tunnel has written to stdout so far."""
        try:
            return self.stdout_path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return ""

    def read_errors(self) -> str:
        try:
            return self.stderr_path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return ""

    def wait_until_ready(
        self,
        marker: str = READY_MARKER,
        max_attempts: int = 30,
        interval: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> ReadinessState:
        """
        Poll the captured stdout until ``marker`` shows up.

        Returns:
            ReadinessState.READY if the marker appeared within the budget,
            ReadinessState.TIMED_OUT after ``max_attempts`` polls without it.

        Raises:
            RuntimeError: If the tunnel was not started.
        """
        if self.state is not SessionState.STARTED:
            raise RuntimeError(f"Cannot wait for readiness in state '{self.state.value}'")

        logger.info("Waiting up to %ss for the tunnel to accept connections...", max_attempts * interval)
        attempt = poll_until(lambda: marker in self.read_output(), max_attempts, interval, sleep=sleep)
        if attempt is None:
            self.state = SessionState.READY_TIMEOUT
            logger.debug("Tunnel stderr so far: %s", self.read_errors().strip())
            return ReadinessState.TIMED_OUT

        self.state = SessionState.READY
        logger.info("Tunnel ready after %d attempt(s)", attempt)
        return ReadinessState.READY

    def terminate(self) -> None:
        """
        Signal the tunnel's process group and remove the capture files.

        Safe to call at any point and any number of times. Problems are
        logged and kept in ``cleanup_errors``; nothing is raised.
        """
        if self.state is SessionState.TERMINATED:
            return
        if self._process is None and not self._capture_files:
            return

        if self._process is not None and self.handle is not None:
            self._signal_group(self.handle.pgid)

        for fh in self._capture_files:
            try:
                fh.close()
            except OSError as exc:
                self._record(CleanupError(f"Failed to close {fh.name}: {exc}"))
        self._capture_files = []

        for path in (self.stdout_path, self.stderr_path):
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                self._record(CleanupError(f"Failed to remove {path}: {exc}"))

        self.state = SessionState.TERMINATED
        logger.debug("Tunnel session for %s terminated", self.device_uuid)

    def _signal_group(self, pgid: int) -> None:
        try:
            os.killpg(pgid, signal.SIGTERM)
            logger.debug("Sent SIGTERM to process group %s", pgid)
        except ProcessLookupError:
            logger.debug("Tunnel process group %s already gone", pgid)
        except OSError as exc:
            self._record(CleanupError(f"Failed to kill tunnel processes: {exc}"))

        try:
            self._process.wait(timeout=self.terminate_timeout)
        except subprocess.TimeoutExpired:
            logger.warning("Tunnel did not exit after SIGTERM, sending SIGKILL to group %s", pgid)
            try:
                os.killpg(pgid, signal.SIGKILL)
                self._process.wait(timeout=self.terminate_timeout)
            except ProcessLookupError:
                pass
            except (OSError, subprocess.TimeoutExpired) as exc:
                self._record(CleanupError(f"Tunnel process group {pgid} may still be running: {exc}"))

    def _record(self, error: CleanupError) -> None:
        logger.warning("%s", error)
        self.cleanup_errors.append(error)
