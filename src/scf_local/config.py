"""
Configuration Management for Local Function Invocation

This module handles environment-based configuration using .env files
and provides centralized access to all configurable parameters.
"""

import os
import sys
from typing import Any
from dataclasses import dataclass, field

from dotenv import load_dotenv


DEFAULT_LOG_MAX_BYTES = 6 * 1024 * 1024


@dataclass
class InvocationConfig:
    """Invocation supervision configuration."""
    timeout_seconds: float = 3.0
    log_max_bytes: int = DEFAULT_LOG_MAX_BYTES
    poll_interval_ms: int = 100
    python_executable: str = field(default_factory=lambda: sys.executable)

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000.0


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class Config:
    """
    Centralized configuration management.

    Loads configuration from environment variables and .env files.
    """

    def __init__(self, env_file: str = ".env"):
        """
        Initialize configuration.

        Args:
            env_file: Path to .env file (optional)
        """
        self.env_file = env_file
        self._load_env_file()
        self._initialize_configs()

    def _load_env_file(self):
        """Load environment variables from .env file if available."""
        if os.path.exists(self.env_file):
            load_dotenv(self.env_file)

    def _get_env(self, key: str, default: Any, type_cast: type = str) -> Any:
        """Get environment variable with type casting and default."""
        value = os.environ.get(key, default)

        try:
            return type_cast(value)
        except (ValueError, TypeError):
            return default

    def _initialize_configs(self):
        """Initialize all configuration sections."""
        self.invocation = InvocationConfig(
            timeout_seconds=self._get_env("SCF_INVOKE_TIMEOUT", 3.0, float),
            log_max_bytes=self._get_env("SCF_LOG_MAX_BYTES", DEFAULT_LOG_MAX_BYTES, int),
            poll_interval_ms=self._get_env("SCF_POLL_INTERVAL_MS", 100, int),
            python_executable=self._get_env("SCF_PYTHON_EXECUTABLE", sys.executable)
        )

        self.logging = LoggingConfig(
            level=self._get_env("LOG_LEVEL", "INFO"),
            format=self._get_env("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )

    def to_dict(self) -> dict:
        """Convert configuration to dictionary for debugging."""
        return {
            "invocation": self.invocation.__dict__,
            "logging": self.logging.__dict__
        }


# Global configuration instance
config = Config()
