"""Exceptions raised by the log extraction workflow."""


class LogExtractionError(RuntimeError):
    """Base class for failures that abort a log extraction run."""


class MissingInputError(LogExtractionError):
    """Raised when no device identifier was supplied."""


class ConfigurationError(LogExtractionError):
    """Raised when required credentials or settings are missing or invalid."""


class AuthFailureError(LogExtractionError):
    """Raised when the balena login does not report success."""


class TunnelStartError(LogExtractionError):
    """Raised when the tunnel subprocess cannot be launched."""


class TunnelTimeoutError(LogExtractionError):
    """Raised when the tunnel never reports it is waiting for connections."""


class RemoteCommandFailure(LogExtractionError):
    """A command exited non-zero, timed out or could not be run.

    Soft failure: the executor attaches it to the result instead of raising.
    """


class CleanupError(LogExtractionError):
    """Tunnel teardown problem. Logged and recorded, never raised by terminate()."""
