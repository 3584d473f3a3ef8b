"""Settings for the orchestrator and the management-plane connection."""

from typing import Optional
from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class OrchestratorConfig(BaseSettings):
    """Timing and concurrency settings. Immutable for a run."""

    model_config = SettingsConfigDict(env_prefix="SNAPCTL_", frozen=True, extra="ignore")

    max_concurrent_jobs: int = Field(default=10, ge=1)
    power_poll_interval: float = Field(default=5.0, gt=0)
    power_timeout: float = Field(default=600.0, gt=0)  # seconds before a shutdown is given up
    create_poll_interval: float = Field(default=10.0, gt=0)
    remove_poll_interval: float = Field(default=30.0, gt=0)
    job_timeout: float = Field(default=3600.0, gt=0)
    settle_delay: float = Field(default=15.0, ge=0)
    verify_removals: bool = False


class ConnectionSettings(BaseSettings):
    """Proxmox VE API endpoint and pre-issued API token."""

    model_config = SettingsConfigDict(env_prefix="PVE_", extra="ignore")

    host: Optional[str] = None
    user: Optional[str] = None
    token_name: Optional[str] = None
    token_value: Optional[SecretStr] = None
    port: int = 8006
    verify_ssl: bool = False
    timeout: float = 30.0

    @property
    def is_complete(self) -> bool:
        return bool(self.host and self.user and self.token_name and self.token_value)


# CLI key -> OrchestratorConfig field
CONFIG_KEYS = {
    "max-concurrent-jobs": "max_concurrent_jobs",
    "power-poll-interval": "power_poll_interval",
    "power-timeout": "power_timeout",
    "create-poll-interval": "create_poll_interval",
    "remove-poll-interval": "remove_poll_interval",
    "job-timeout": "job_timeout",
    "settle-delay": "settle_delay",
    "verify-removals": "verify_removals",
}
