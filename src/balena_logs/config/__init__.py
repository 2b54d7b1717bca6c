"""
Configuration for balena log extraction.
Credentials are read from the environment (optionally seeded from a .env file),
tunables from the packaged settings.yaml.
"""
import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import find_dotenv, load_dotenv

from balena_logs.errors import ConfigurationError

logger = logging.getLogger(__name__)

SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

DEFAULT_SETTINGS: Dict[str, Any] = {
    "tunnel": {
        "remote_port": 22222,
        "local_port": 4321,
        "ready_marker": "Waiting for connections",
        "poll_interval_seconds": 1,
        "max_attempts": 30,
        "stdout_log": "tunnel-stdout.log",
        "stderr_log": "tunnel-stderr.log",
        "terminate_timeout_seconds": 5,
    },
    "commands": {
        "timeout_seconds": 60,
    },
    "ssh": {
        "host": "localhost",
        "key_path": "~/.ssh/balena-logs",
        "known_hosts": "~/.ssh/known_hosts",
    },
}

REQUIRED_ENV = ("LOGIN_TOKEN_BALENA", "SSH_PRIVATE_KEY", "BALENA_USERNAME")


def load_settings(path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load tunables from YAML, filling anything missing from the defaults.
    """
    settings = copy.deepcopy(DEFAULT_SETTINGS)
    config_path = path or SETTINGS_PATH
    if not config_path.exists():
        logger.debug("Settings file %s not found, using defaults", config_path)
        return settings

    with open(config_path, "r", encoding="utf-8") as f:
        loaded = yaml.safe_load(f) or {}

    for section, values in loaded.items():
        if isinstance(values, dict) and isinstance(settings.get(section), dict):
            settings[section].update(values)
        else:
            settings[section] = values
    return settings


def is_production() -> bool:
    env = os.getenv("NODE_ENV") or os.getenv("APP_ENV") or ""
    return env.strip().lower() == "production"


class ExtractorConfig:
    """Load and validate the credentials needed for a run."""

    def __init__(self, env_file: Optional[Path] = None):
        """
        Initialize configuration.

        Args:
            env_file: Path to a .env file. If None, the nearest .env above the working directory is used.
                Ignored in production.

        Raises:
            ConfigurationError: If any required variable is missing.
        """
        if not is_production():
            self._load_env_file(env_file)

        missing = [key for key in REQUIRED_ENV if not (os.getenv(key) or "").strip()]
        if missing:
            raise ConfigurationError(
                f"Missing tokens: {', '.join(missing)}. "
                "Set them in the environment or in a .env file."
            )

        self.login_token = self._get_required_env("LOGIN_TOKEN_BALENA")
        self.ssh_private_key = self._get_required_env("SSH_PRIVATE_KEY")
        self.username = self._get_required_env("BALENA_USERNAME")

    @staticmethod
    def _load_env_file(env_file: Optional[Path]) -> None:
        if env_file is not None:
            if not env_file.exists():
                raise ConfigurationError(f".env file not found at: {env_file}")
            load_dotenv(env_file, override=False)
            logger.debug("Loaded environment from %s", env_file)
        else:
            load_dotenv(find_dotenv(usecwd=True), override=False)

    @staticmethod
    def _get_required_env(key: str) -> str:
        """
        Get required environment variable.

        Raises:
            ConfigurationError: If variable is not set or empty.
        """
        value = os.getenv(key)
        if not value or not value.strip():
            raise ConfigurationError(f"Required environment variable '{key}' is not set.")
        return value.strip()


def get_extractor_config(env_file: Optional[Path] = None) -> ExtractorConfig:
    return ExtractorConfig(env_file)
