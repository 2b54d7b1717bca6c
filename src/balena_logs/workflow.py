"""End-to-end log extraction: login, tunnel, collect over SSH, report, tear down."""
from __future__ import annotations

import logging
import re
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from balena_logs.auth import authenticate
from balena_logs.config import ExtractorConfig, load_settings
from balena_logs.errors import LogExtractionError, MissingInputError, TunnelTimeoutError
from balena_logs.executor import RemoteCommandExecutor
from balena_logs.ssh_keys import build_ssh_command, clear_known_host, install_private_key
from balena_logs.tunnel import TunnelSession
from balena_logs.types import ExtractionResult, ReadinessState

logger = logging.getLogger(__name__)

NO_URL_MESSAGE = "No URL found"
WGET_URL_PATTERN = re.compile(r"wget (https?://\S+)")


def extract_artifact_url(text: Optional[str]) -> Optional[str]:
    """Return the URL from the first ``wget <url>`` in ``text``, or None."""
    if not text:
        return None
    match = WGET_URL_PATTERN.search(text)
    return match.group(1) if match else None


class LogExtractionWorkflow:
    """Drive a single log extraction against one device."""

    def __init__(
        self,
        config: ExtractorConfig,
        settings: Optional[Dict[str, Any]] = None,
        executor: Optional[RemoteCommandExecutor] = None,
        session_factory: Callable[..., TunnelSession] = TunnelSession,
        sleep: Callable[[float], None] = time.sleep,
        install_key: bool = False,
    ):
        self.config = config
        self.settings = settings if settings is not None else load_settings()
        self.executor = executor or RemoteCommandExecutor(
            timeout=self.settings["commands"]["timeout_seconds"]
        )
        self.session_factory = session_factory
        self.sleep = sleep
        self.install_key = install_key

    def _new_session(self, device_uuid: str) -> TunnelSession:
        tunnel = self.settings["tunnel"]
        return self.session_factory(
            device_uuid,
            local_port=int(tunnel["local_port"]),
            remote_port=int(tunnel["remote_port"]),
            stdout_path=Path(tunnel["stdout_log"]),
            stderr_path=Path(tunnel["stderr_log"]),
            terminate_timeout=float(tunnel["terminate_timeout_seconds"]),
        )

    def extract(self, device_uuid: Optional[str]) -> ExtractionResult:
        """
        Collect the device logs and return the upload URL.

        The tunnel is torn down before this returns or raises.

        Raises:
            MissingInputError: If no device UUID was given.
            AuthFailureError: If the balena login fails.
            TunnelStartError: If the tunnel process cannot be launched.
            TunnelTimeoutError: If the tunnel never becomes ready.
            ConfigurationError: If the SSH key cannot be installed.
        """
        if not device_uuid:
            raise MissingInputError("UUID is required. Usage: balena-logs <uuid>")

        tunnel_cfg = self.settings["tunnel"]
        ssh_cfg = self.settings["ssh"]
        local_port = int(tunnel_cfg["local_port"])

        authenticate(self.executor, self.config.login_token)

        if self.install_key:
            install_private_key(self.config.ssh_private_key, Path(ssh_cfg["key_path"]))

        with self._new_session(device_uuid) as session:
            session.start()
            max_attempts = int(tunnel_cfg["max_attempts"])
            state = session.wait_until_ready(
                marker=tunnel_cfg["ready_marker"],
                max_attempts=max_attempts,
                interval=float(tunnel_cfg["poll_interval_seconds"]),
                sleep=self.sleep,
            )
            if state is not ReadinessState.READY:
                raise TunnelTimeoutError(
                    f"Impossible to establish a tunnel! No '{tunnel_cfg['ready_marker']}' "
                    f"after {max_attempts} attempts"
                )

            clear_known_host(self.executor, local_port, Path(ssh_cfg["known_hosts"]), host=ssh_cfg["host"])

            logger.info("Collecting logs from %s over the tunnel...", device_uuid)
            result = self.executor.run(
                build_ssh_command(
                    self.config.username,
                    local_port,
                    Path(ssh_cfg["key_path"]),
                    host=ssh_cfg["host"],
                )
            )
            if result.error is not None:
                logger.warning("Log collection reported a failure, checking partial output")

        url = extract_artifact_url(result.output)
        return ExtractionResult(device_uuid=device_uuid, url=url, remote_output=result.output)

    def run(self, device_uuid: Optional[str]) -> int:
        """Run the extraction, print the URL (or "No URL found") and return the exit code."""
        try:
            outcome = self.extract(device_uuid)
        except LogExtractionError as exc:
            logger.error("%s", exc)
            return 1
        except Exception as exc:
            logger.exception("Log extraction failed: %s", exc)
            return 1

        print(outcome.url or NO_URL_MESSAGE)
        return 0
