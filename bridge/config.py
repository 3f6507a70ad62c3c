"""
Configuration management for the bridge server.

Reads configuration from an optional .env file and environment variables with
sensible defaults.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_ENV_FILE = Path(".env")
DEFAULT_PORT = 9485

logger = logging.getLogger(__name__)


def _load_env_file():
    """Load environment variables from .env file if it exists."""
    env_file = os.getenv("BRIDGE_ENV_FILE", str(DEFAULT_ENV_FILE))
    env_path = Path(env_file)

    if env_path.exists():
        load_dotenv(env_path, override=False)  # Don't override existing env vars


def _int_env(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Invalid {name}: {raw} (must be an integer)")


def _float_env(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"Invalid {name}: {raw} (must be a number)")


@dataclass
class BridgeConfig:
    """Bridge configuration loaded from .env file and environment variables."""

    # Listener
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT

    # Output history
    output_capacity: int = 1000
    default_output_lines: int = 100

    # Connection handling
    read_timeout: float = 10.0  # seconds to wait for a complete request
    max_request_bytes: int = 1024 * 1024

    # Webhook delivery
    broadcast_timeout: float = 5.0

    # Default collaborators used by `python -m bridge`
    config_registry_path: str = ".bridge-configs.json"
    workspace: Optional[str] = None

    # Logging
    log_level: str = "INFO"

    @classmethod
    def load_config(cls) -> "BridgeConfig":
        """
        Load configuration from environment variables.

        Returns:
            BridgeConfig instance with loaded values

        Raises:
            ValueError: If configuration is invalid
        """
        _load_env_file()

        workspace = os.getenv("BRIDGE_WORKSPACE")
        if workspace == "":
            workspace = None

        config = cls(
            host=os.getenv("BRIDGE_HOST", "127.0.0.1"),
            port=_int_env("BRIDGE_PORT", str(DEFAULT_PORT)),
            output_capacity=_int_env("BRIDGE_OUTPUT_CAPACITY", "1000"),
            default_output_lines=_int_env("BRIDGE_OUTPUT_LINES", "100"),
            read_timeout=_float_env("BRIDGE_READ_TIMEOUT", "10"),
            max_request_bytes=_int_env("BRIDGE_MAX_REQUEST_BYTES", str(1024 * 1024)),
            broadcast_timeout=_float_env("BRIDGE_BROADCAST_TIMEOUT", "5"),
            config_registry_path=os.getenv("BRIDGE_CONFIG_REGISTRY", ".bridge-configs.json"),
            workspace=workspace,
            log_level=os.getenv("BRIDGE_LOG_LEVEL", "INFO"),
        )

        config.validate()

        return config

    def validate(self) -> None:
        """
        Validate configuration values.

        Port 0 is accepted and binds an ephemeral port.

        Raises:
            ValueError: If configuration is invalid
        """
        if self.port < 0 or self.port > 65535:
            raise ValueError(f"Invalid port: {self.port} (must be 0-65535)")

        if not self.host:
            raise ValueError("Host cannot be empty")

        if self.output_capacity <= 0:
            raise ValueError(f"Invalid output capacity: {self.output_capacity} (must be > 0)")

        if self.default_output_lines <= 0:
            raise ValueError(f"Invalid default output lines: {self.default_output_lines} (must be > 0)")

        if self.read_timeout <= 0:
            raise ValueError(f"Invalid read timeout: {self.read_timeout} (must be > 0)")

        if self.max_request_bytes <= 0:
            raise ValueError(f"Invalid max request size: {self.max_request_bytes} (must be > 0)")

        if self.broadcast_timeout <= 0:
            raise ValueError(f"Invalid broadcast timeout: {self.broadcast_timeout} (must be > 0)")

        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_log_levels:
            raise ValueError(
                f"Invalid log level: {self.log_level} "
                f"(must be one of: {', '.join(valid_log_levels)})"
            )


def load_config() -> BridgeConfig:
    """
    Load and validate bridge configuration from environment variables.

    Raises:
        ValueError: If configuration is invalid
    """
    try:
        return BridgeConfig.load_config()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        raise
