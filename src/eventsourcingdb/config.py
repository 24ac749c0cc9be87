"""Client configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass

from .errors import ConfigurationError

ENV_BASE_URL = "EVENTSOURCINGDB_BASE_URL"
ENV_API_TOKEN = "EVENTSOURCINGDB_API_TOKEN"
ENV_TIMEOUT = "EVENTSOURCINGDB_TIMEOUT"


@dataclass(frozen=True)
class ClientConfig:
    """Connection settings for an EventSourcingDB client."""

    base_url: str
    api_token: str

    # Transport settings
    timeout: float = 30.0
    # Longest silence tolerated on observe streams; None waits forever
    heartbeat_timeout: float | None = None
    keepalive_expiry: float = 120.0

    # Reject responses that do not come from EventSourcingDB
    verify_server_header: bool = True

    def __post_init__(self) -> None:
        if not self.base_url:
            raise ConfigurationError("base_url must not be empty.")
        if not self.api_token:
            raise ConfigurationError("api_token must not be empty.")
        if self.timeout <= 0:
            raise ConfigurationError(f"timeout must be positive, got {self.timeout}.")
        if self.heartbeat_timeout is not None and self.heartbeat_timeout <= 0:
            raise ConfigurationError(
                f"heartbeat_timeout must be positive, got {self.heartbeat_timeout}."
            )

    @classmethod
    def from_env(cls) -> ClientConfig:
        """Build a config from EVENTSOURCINGDB_* environment variables.

        Raises:
            ConfigurationError: If a required variable is missing or invalid.
        """
        base_url = os.environ.get(ENV_BASE_URL, "")
        api_token = os.environ.get(ENV_API_TOKEN, "")
        if not base_url:
            raise ConfigurationError(f"{ENV_BASE_URL} is not set.")
        if not api_token:
            raise ConfigurationError(f"{ENV_API_TOKEN} is not set.")

        timeout_value = os.environ.get(ENV_TIMEOUT)
        if timeout_value is None:
            return cls(base_url=base_url, api_token=api_token)

        try:
            timeout = float(timeout_value)
        except ValueError:
            raise ConfigurationError(
                f"{ENV_TIMEOUT} must be a number, got '{timeout_value}'."
            ) from None
        return cls(base_url=base_url, api_token=api_token, timeout=timeout)
