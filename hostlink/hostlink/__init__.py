"""Hostdeck agent link library.

Talks to remote host agents over HTTP and keeps a live, reconciled view of
many hosts at once.

Module Overview:
    cache: Bounded last-known state per host
    client: HTTP client for one agent, with non-throwing health probes
    config: YAML configuration of hosts and settings (XDG Base Directory layout)
    discovery: Local network scan for agents
    errors: Exception hierarchy
    events: ``/events`` WebSocket stream with reconnect backoff
    live: Multi-host live-state aggregator
    models: Pydantic configuration models
    payloads: Pydantic models for agent JSON bodies
    probes: Probe outcomes and user-facing failure descriptions
"""

from hostlink.cache import LiveStateCache, NullLiveStateCache, StateCache
from hostlink.client import RemoteAgentClient
from hostlink.config import ConfigManager, YamlConfigLoader, get_config_dir, get_default_config_path
from hostlink.discovery import (
    DiscoveredAgent,
    DiscoveryResult,
    DiscoveryStatus,
    derive_targets,
    detect_local_address,
    scan_for_agents,
)
from hostlink.errors import (
    AgentConnectionError,
    AgentError,
    AgentRequestError,
    AgentResponseError,
    ConfigError,
)
from hostlink.events import LiveEventStream, LiveSnapshot, LiveStreamError, parse_live_message
from hostlink.live import (
    HostLiveState,
    HostStatus,
    LiveFeature,
    LiveOptions,
    LiveStateAggregator,
)
from hostlink.models import AppConfig, HostConfig, LiveConfig, LiveTransport, TerminalConfig
from hostlink.payloads import (
    CaptureResult,
    DockerContainer,
    DockerSnapshot,
    HealthPayload,
    HostInfo,
    KillPortsResult,
    PingPayload,
    PortInfo,
    Session,
)
from hostlink.probes import ProbeOutcome, ProbeStatus, describe_probe_failure

__all__ = [
    "AgentConnectionError",
    "AgentError",
    "AgentRequestError",
    "AgentResponseError",
    "AppConfig",
    "CaptureResult",
    "ConfigError",
    "ConfigManager",
    "DiscoveredAgent",
    "DiscoveryResult",
    "DiscoveryStatus",
    "DockerContainer",
    "DockerSnapshot",
    "HealthPayload",
    "HostConfig",
    "HostInfo",
    "HostLiveState",
    "HostStatus",
    "KillPortsResult",
    "LiveConfig",
    "LiveEventStream",
    "LiveFeature",
    "LiveOptions",
    "LiveSnapshot",
    "LiveStateAggregator",
    "LiveStateCache",
    "LiveStreamError",
    "LiveTransport",
    "NullLiveStateCache",
    "PingPayload",
    "PortInfo",
    "ProbeOutcome",
    "ProbeStatus",
    "RemoteAgentClient",
    "Session",
    "StateCache",
    "TerminalConfig",
    "YamlConfigLoader",
    "derive_targets",
    "describe_probe_failure",
    "detect_local_address",
    "get_config_dir",
    "get_default_config_path",
    "parse_live_message",
    "scan_for_agents",
]
