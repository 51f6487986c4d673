"""Pydantic models for JSON payloads returned by the agent.

The agent speaks camelCase; models accept both the camelCase wire names and
the snake_case attribute names, and ignore fields they do not know about so
that newer agents keep working.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class AgentPayload(BaseModel):
    """Base model for agent JSON."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


class HealthPayload(AgentPayload):
    """Body of ``GET /health``."""

    ok: bool
    host: str
    tmux_version: str | None = None


class PingPayload(AgentPayload):
    """Body of ``GET /ping``."""

    ok: bool
    ts: float
    lag: dict[str, Any] | None = None


class Session(AgentPayload):
    """A tmux session on the agent host."""

    name: str
    windows: int = 0
    attached: bool = False
    created_at: float | None = None
    last_attached: float | None = None
    preview: list[str] | None = None
    title: str | None = None
    insights: dict[str, Any] | None = None


class CpuInfo(AgentPayload):
    model: str | None = None
    cores: int = 0
    usage: float | None = None


class MemoryInfo(AgentPayload):
    total: int = 0
    free: int = 0
    used: int = 0
    used_percent: float = 0.0


class HostInfo(AgentPayload):
    """Host metrics from ``GET /host``."""

    hostname: str = ""
    platform: str = ""
    release: str = ""
    arch: str = ""
    uptime: float = 0.0
    load: list[float] = Field(default_factory=list)
    cpu: CpuInfo = Field(default_factory=CpuInfo)
    memory: MemoryInfo = Field(default_factory=MemoryInfo)


class DockerContainer(AgentPayload):
    """A container entry of the Docker inventory."""

    id: str
    name: str = ""
    image: str = ""
    status: str | None = None
    state: str | None = None
    ports: str | None = None
    created_at: str | None = None
    running_for: str | None = None
    cpu_percent: float | None = None
    memory_percent: float | None = None
    memory_usage: str | None = None
    pids: int | None = None
    labels: dict[str, str] | None = None
    compose_project: str | None = None
    compose_service: str | None = None

    @property
    def is_running(self) -> bool:
        """Whether the container is running.

        ``state`` wins when present; otherwise a ``status`` of ``Up ...`` counts.
        """
        if self.state:
            return self.state.lower() == "running"
        if self.status:
            return self.status.lower().startswith("up")
        return False


class DockerImage(AgentPayload):
    id: str
    repository: str = ""
    tag: str = ""
    size: str | None = None


class DockerVolume(AgentPayload):
    name: str
    driver: str | None = None


class DockerNetwork(AgentPayload):
    id: str
    name: str = ""
    driver: str | None = None


class DockerSnapshot(AgentPayload):
    """Docker inventory from ``GET /docker``."""

    available: bool = False
    error: str | None = None
    containers: list[DockerContainer] = Field(default_factory=list)
    images: list[DockerImage] = Field(default_factory=list)
    volumes: list[DockerVolume] = Field(default_factory=list)
    networks: list[DockerNetwork] = Field(default_factory=list)

    @property
    def running(self) -> list[DockerContainer]:
        return [container for container in self.containers if container.is_running]


class PortInfo(AgentPayload):
    """A listening port from ``GET /ports``."""

    port: int
    pid: int | None = None
    process: str | None = None
    command: str | None = None
    address: str | None = None
    protocol: str | None = None


class FailedKill(AgentPayload):
    pid: int
    error: str = ""


class KillPortsResult(AgentPayload):
    """Body of ``POST /ports/kill``."""

    killed: list[int] = Field(default_factory=list)
    failed: list[FailedKill] = Field(default_factory=list)


class CursorInfo(AgentPayload):
    x: int
    y: int
    width: int = 0
    height: int = 0


class CaptureResult(AgentPayload):
    """Body of ``GET /sessions/{name}/capture``."""

    lines: list[str] = Field(default_factory=list)
    cursor: CursorInfo | None = None
