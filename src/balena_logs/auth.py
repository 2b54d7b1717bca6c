"""Authentication against balena cloud through the balena CLI."""
import logging

from balena_logs.errors import AuthFailureError
from balena_logs.executor import RemoteCommandExecutor

logger = logging.getLogger(__name__)

LOGIN_SUCCESS_MARKER = "Successfully logged in"


def _mask(token: str) -> str:
    return f"{token[:4]}..." if len(token) > 8 else "***"


def authenticate(executor: RemoteCommandExecutor, token: str, balena_bin: str = "balena") -> None:
    """
    Log the balena CLI in with an API token.

    Raises:
        ValueError: If token is empty.
        AuthFailureError: If the CLI output does not confirm the login.
    """
    if not token:
        raise ValueError("token must be a non-empty string")

    logger.info("Logging in to balena...")
    result = executor.run(
        [balena_bin, "login", "--token", token],
        display=f"{balena_bin} login --token {_mask(token)}",
    )
    if LOGIN_SUCCESS_MARKER not in result.output:
        logger.debug("balena login output: %s", result.output.strip())
        raise AuthFailureError("Failed to login to balena")
    logger.info("Logged in to balena")
