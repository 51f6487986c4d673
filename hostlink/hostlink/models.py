"""Configuration models for hostdeck.

This module defines Pydantic models for the hosts file: the agent hosts to
attach to, live-state polling settings and terminal renderer metrics.
"""

from __future__ import annotations

from enum import Enum
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, field_validator

DEFAULT_AGENT_PORT = 4020
DEFAULT_TIMEOUT_SECONDS = 6.0


class LiveTransport(str, Enum):
    """How live state is obtained from an agent."""

    POLL = "poll"
    STREAM = "stream"


class HostConfig(BaseModel):
    """Connection settings for a single agent host."""

    id: str = Field(..., description="Unique host identifier")
    name: str = Field(default="", description="Display name")
    base_url: str = Field(..., description="Agent base URL, e.g. http://10.0.0.5:4020")
    auth_token: str | None = Field(
        default=None, repr=False, description="Bearer token sent in the Authorization header"
    )
    timeout: float = Field(
        default=DEFAULT_TIMEOUT_SECONDS, description="Default request timeout in seconds"
    )

    @field_validator("base_url")
    @classmethod
    def _validate_base_url(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        parts = urlsplit(value)
        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise ValueError(f"base_url must be an http(s) URL, got {value!r}")
        try:
            port = parts.port
        except ValueError as e:
            raise ValueError(f"base_url has an invalid port: {value!r}") from e
        if port == 0:
            raise ValueError(f"base_url has an invalid port: {value!r}")
        return value

    @property
    def label(self) -> str:
        """Name to show for this host."""
        return self.name or self.id

    @property
    def address(self) -> str:
        """``hostname:port`` pair, with the scheme default port filled in."""
        parts = urlsplit(self.base_url)
        port = parts.port or (443 if parts.scheme == "https" else 80)
        return f"{parts.hostname}:{port}"


class LiveConfig(BaseModel):
    """Settings for the live-state aggregator."""

    interval: float = Field(default=5.0, gt=0, description="Base poll interval in seconds")
    max_backoff: float = Field(
        default=60.0, gt=0, description="Upper bound for the offline retry delay in seconds"
    )
    probe_timeout: float = Field(
        default=2.5, gt=0, description="Timeout of the diagnostic probe run for offline hosts"
    )
    transport: LiveTransport = Field(default=LiveTransport.POLL, description="poll or stream")
    cache_size: int = Field(default=100, ge=0, description="Hosts kept in the live-state cache")


class TerminalConfig(BaseModel):
    """Font metrics and tolerances for the terminal renderer."""

    cell_width: float = Field(default=7.2, gt=0, description="Character cell width in px")
    cell_height: float = Field(default=15.0, gt=0, description="Character cell height in px")
    layout_tolerance: float = Field(
        default=2.0, ge=0, description="Layout delta in px that triggers a new negotiation"
    )
    match_tolerance: float = Field(
        default=8.0, ge=0, description="Allowed px skew between host and renderer measurements"
    )
    scrollback_lines: int = Field(default=10000, ge=0, description="Scrollback buffer size")


class AppConfig(BaseModel):
    """Complete hostdeck configuration."""

    hosts: list[HostConfig] = Field(default_factory=list)
    live: LiveConfig = Field(default_factory=LiveConfig)
    terminal: TerminalConfig = Field(default_factory=TerminalConfig)

    def get_host(self, host_id: str) -> HostConfig | None:
        """Look up a host by id or display name."""
        for host in self.hosts:
            if host.id == host_id:
                return host
        for host in self.hosts:
            if host.name and host.name == host_id:
                return host
        return None
