"""Pull journal logs from balena devices through a `balena device tunnel`."""

from balena_logs.errors import (
    AuthFailureError,
    CleanupError,
    ConfigurationError,
    LogExtractionError,
    MissingInputError,
    RemoteCommandFailure,
    TunnelStartError,
    TunnelTimeoutError,
)
from balena_logs.executor import RemoteCommandExecutor
from balena_logs.polling import poll_until
from balena_logs.tunnel import TunnelSession
from balena_logs.types import ExtractionResult, ReadinessState, RemoteCommandResult, TunnelHandle
from balena_logs.workflow import LogExtractionWorkflow, extract_artifact_url

__all__ = [
    "LogExtractionWorkflow",
    "TunnelSession",
    "RemoteCommandExecutor",
    "poll_until",
    "extract_artifact_url",
    "TunnelHandle",
    "ReadinessState",
    "RemoteCommandResult",
    "ExtractionResult",
    "LogExtractionError",
    "MissingInputError",
    "ConfigurationError",
    "AuthFailureError",
    "TunnelStartError",
    "TunnelTimeoutError",
    "RemoteCommandFailure",
    "CleanupError",
]
