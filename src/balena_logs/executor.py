"""Local command execution with soft-fail semantics."""
from __future__ import annotations

import logging
import subprocess
from typing import Optional, Sequence, Union

from balena_logs.errors import RemoteCommandFailure
from balena_logs.types import RemoteCommandResult

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60  # seconds


def _to_text(data: Optional[Union[str, bytes]]) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


class RemoteCommandExecutor:
    """Run a command to completion and capture its output.

    Failures never propagate to the caller: a non-zero exit, a timeout or a
    command that cannot be started is logged as a warning and returned as a
    result whose ``error`` is set. Callers decide whether that matters.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        if timeout <= 0:
            raise ValueError("timeout must be a positive number")
        self.timeout = timeout

    def run(self, args: Sequence[str], timeout: Optional[float] = None, display: Optional[str] = None) -> RemoteCommandResult:
        """
        Execute a command and wait for it to finish.

        Args:
            args: Argument vector. Required.
            timeout: Seconds before the command is killed. Defaults to the executor timeout.
            display: Text used for the command in log messages (e.g. with secrets masked).

        Returns:
            RemoteCommandResult with whatever output was captured.

        Raises:
            ValueError: If args is empty.
        """
        if not args:
            raise ValueError("args must be a non-empty sequence")

        timeout = timeout if timeout is not None else self.timeout
        shown = display or " ".join(args)
        logger.debug("Running: %s (timeout %ss)", shown, timeout)

        try:
            completed = subprocess.run(
                list(args),
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exc:
            failure = RemoteCommandFailure(f"Command timed out after {timeout}s: {shown}")
            logger.warning("%s", failure)
            return RemoteCommandResult(
                exit_code=None,
                stdout=_to_text(exc.stdout),
                stderr=_to_text(exc.stderr),
                timed_out=True,
                error=failure,
            )
        except OSError as exc:
            failure = RemoteCommandFailure(f"Command could not be run: {shown}: {exc}")
            logger.warning("%s", failure)
            return RemoteCommandResult(exit_code=None, stdout="", stderr=str(exc), error=failure)

        result = RemoteCommandResult(
            exit_code=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
        if completed.returncode != 0:
            result.error = RemoteCommandFailure(
                f"Command exited with code {completed.returncode}: {shown}"
            )
            logger.warning("%s", result.error)
            if result.stderr.strip():
                logger.warning("stderr: %s", result.stderr.strip())
        return result
