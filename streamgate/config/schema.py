"""Pydantic models for streamgate configuration validation."""

import secrets
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class GatewayConfig(BaseModel):
    """Configuration for the streaming gateway.

    Example in .streamgate/config.json:
        {
            "port": 3001,
            "allowed_user_ids": ["user-a", "user-b"],
            "public_url": "https://gateway.example.com"
        }

    The API token is normally supplied through STREAMGATE_TOKEN rather than
    the config file.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    host: str = "127.0.0.1"
    """Host address to bind to (use 0.0.0.0 for all interfaces)."""

    port: int = Field(default=3001, ge=1, le=65535)
    """Port number for the HTTP server."""

    api_token: str = Field(min_length=1)
    """Credential handed to the metering collaborator. Required."""

    allowed_user_ids: frozenset[str] = frozenset()
    """Owner identities allowed to run the gateway. Empty means unrestricted."""

    user_id: str | None = None
    """Identity of the process owner, checked against allowed_user_ids."""

    public_url: str | None = None
    """Externally reachable base URL shown in the help message."""

    run_id: str = Field(default_factory=lambda: secrets.token_hex(8))
    """Opaque identifier for this server run."""

    memory_mbytes: int = Field(default=0, ge=0)
    """Memory allotted to the process, used for the startup charge."""

    metering_url: str | None = None
    """Endpoint for usage charges. When unset, charges are only logged."""

    audit_path: str = ".streamgate/audit/messages.jsonl"
    """JSONL file every outbound stream message is appended to."""

    grace_period: float = Field(default=15.0, gt=0)
    """Seconds allowed for draining sessions before a forced exit."""

    heartbeat_interval: float = Field(default=15.0, gt=0)
    """Seconds between keep-alive comments on idle streams."""

    stop_on_stdin_close: bool = False
    """Shut down when the host closes standard input."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    """Logging level for server operations."""

    @field_validator("allowed_user_ids", mode="before")
    @classmethod
    def split_allowed_user_ids(cls, value: object) -> object:
        """Accept a comma-separated string as well as a list."""
        if isinstance(value, str):
            value = value.split(",")
        if isinstance(value, (list, tuple, set, frozenset)):
            return frozenset(str(v).strip() for v in value if str(v).strip())
        return value

    @property
    def base_url(self) -> str:
        """Base URL clients should connect to."""
        return (self.public_url or f"http://localhost:{self.port}").rstrip("/")
