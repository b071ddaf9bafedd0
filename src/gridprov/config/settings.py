"""Runtime settings for the provisioning engine."""

from __future__ import annotations

import logging
import os
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from gridprov.config.defaults import (
    DEFAULT_TIMEOUTS,
    PORT_MAX_ATTEMPTS,
    PORT_RANGE_HIGH,
    PORT_RANGE_LOW,
)

logger = logging.getLogger(__name__)

# Environment variable to field name mapping
ENV_VAR_MAP = {
    "deployment_timeout": "GRIDPROV_DEPLOYMENT_TIMEOUT",
    "network_timeout": "GRIDPROV_NETWORK_TIMEOUT",
    "poll_timeout": "GRIDPROV_POLL_TIMEOUT",
    "poll_interval": "GRIDPROV_POLL_INTERVAL",
    "port_max_attempts": "GRIDPROV_PORT_MAX_ATTEMPTS",
}


class ProvisionerSettings(BaseModel):
    """Timeouts and allocation limits used by one reconciliation run.

    Attributes:
        deployment_timeout: Budget for single VM deployment remote calls
        network_timeout: Budget for per-node network remote calls
        poll_timeout: Wall-clock budget for wait-for-completion polling
        poll_interval: Fixed delay between two agent fetches while polling
        port_low: Lowest listen port that may be sampled
        port_high: Upper bound (exclusive) of the listen port range
        port_max_attempts: Samples drawn before port allocation gives up
    """

    model_config = ConfigDict(extra="forbid")

    deployment_timeout: float = Field(
        default=DEFAULT_TIMEOUTS["deployment_timeout"], gt=0
    )
    network_timeout: float = Field(default=DEFAULT_TIMEOUTS["network_timeout"], gt=0)
    poll_timeout: float = Field(default=DEFAULT_TIMEOUTS["poll_timeout"], gt=0)
    poll_interval: float = Field(default=DEFAULT_TIMEOUTS["poll_interval"], gt=0)
    port_low: int = Field(default=PORT_RANGE_LOW, ge=1, le=65535)
    port_high: int = Field(default=PORT_RANGE_HIGH, ge=2, le=65536)
    port_max_attempts: int = Field(default=PORT_MAX_ATTEMPTS, ge=1)

    @model_validator(mode="after")
    def validate_port_range(self) -> ProvisionerSettings:
        """Validate that the port range is not empty."""
        if self.port_low >= self.port_high:
            raise ValueError(
                f"port_low ({self.port_low}) must be < port_high ({self.port_high})"
            )
        return self

    @classmethod
    def from_env(
        cls, env_vars: os._Environ[str] | dict[str, str] | None = None, **overrides: Any
    ) -> ProvisionerSettings:
        """Build settings from environment variables.

        Unparseable values are ignored with a warning; explicit overrides win
        over the environment.
        """
        env = os.environ if env_vars is None else env_vars
        values: dict[str, Any] = {}
        for field_name, env_name in ENV_VAR_MAP.items():
            if env_name not in env:
                continue
            raw = env[env_name]
            try:
                values[field_name] = (
                    int(raw) if field_name == "port_max_attempts" else float(raw)
                )
            except ValueError:
                logger.warning(f"Ignoring invalid value for {env_name}: {raw!r}")
        values.update(overrides)
        return cls(**values)
