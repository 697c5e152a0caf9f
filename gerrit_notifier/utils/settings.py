"""Service settings loaded from environment variables."""

import os
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from gerrit_notifier.utils.errors import ConfigurationError


_REQUIRED = (
    "GERRIT_HTTP_URL",
    "GERRIT_USERNAME",
    "GERRIT_PASSWORD",
    "GERRIT_SSH_HOST",
    "GERRIT_SSH_PRIVATE_KEY_PATH",
)


class Settings(BaseModel):
    """Process-wide settings. Credentials are opaque strings."""
    model_config = ConfigDict(frozen=True)

    gerrit_http_url: str = Field(..., description="Gerrit REST base URL")
    gerrit_username: str = Field(..., description="Gerrit user for REST and SSH")
    gerrit_password: str = Field(..., description="Gerrit HTTP password")
    gerrit_ssh_host: str = Field(..., description="Gerrit SSH host")
    gerrit_ssh_port: int = Field(29418, description="Gerrit SSH port")
    gerrit_ssh_private_key_path: str = Field(..., description="SSH identity file")
    gerrit_ssh_known_hosts: Optional[str] = Field(None, description="Pinned known_hosts file")
    slack_token: Optional[str] = Field(None, description="Slack token for user directory lookups")
    debug_events_path: Optional[str] = Field(None, description="File to tee raw stream events into")
    stream_retry_delay_seconds: float = Field(3.0, ge=0)
    webhook_retry_interval_seconds: float = Field(60.0, gt=0)
    directory_max_age_seconds: float = Field(3600.0, gt=0)
    event_queue_size: int = Field(10, ge=1)
    patch_set_settle_seconds: float = Field(5.0, ge=0)
    http_timeout_seconds: float = Field(10.0, gt=0)

    def __repr__(self) -> str:
        return f"<Settings gerrit={self.gerrit_http_url} ssh={self.gerrit_ssh_host}:{self.gerrit_ssh_port}>"

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "Settings":
        """
        Build settings from the environment.

        Raises ConfigurationError when a required variable is missing or a
        value cannot be parsed.
        """
        env = os.environ if environ is None else environ

        missing = [name for name in _REQUIRED if not env.get(name, "").strip()]
        if missing:
            raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")

        values = {}
        for name in cls.model_fields:
            raw = env.get(name.upper())
            if raw is not None and raw.strip() != "":
                values[name] = raw.strip()

        try:
            settings = cls(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid settings: {e}") from e

        if not os.path.isfile(settings.gerrit_ssh_private_key_path):
            raise ConfigurationError(
                f"SSH private key not found: {settings.gerrit_ssh_private_key_path}"
            )
        return settings
