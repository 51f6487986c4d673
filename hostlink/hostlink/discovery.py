"""Find agents on the local IPv4 network.

The scan derives the host range of the local subnet, skips the local address
and any ``host:port`` already configured, and health-probes the rest with a
bounded number of concurrent probes.
"""

from __future__ import annotations

import asyncio
import ipaddress
import socket
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

import aiohttp
import structlog

from .client import RemoteAgentClient
from .models import DEFAULT_AGENT_PORT
from .probes import ProbeStatus

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .models import HostConfig

logger = structlog.get_logger(__name__)

DEFAULT_SCAN_TIMEOUT_SECONDS = 1.2
DEFAULT_SCAN_CONCURRENCY = 30
MAX_DERIVED_HOSTS = 512
FALLBACK_PREFIX = 24


class DiscoveryStatus(str, Enum):
    OK = "ok"
    AUTH_REQUIRED = "auth_required"


@dataclass(frozen=True, slots=True)
class DiscoveredAgent:
    """An agent that answered the health probe (or asked for a token)."""

    ip: str
    base_url: str
    label: str
    status: DiscoveryStatus
    tmux_version: str | None = None


@dataclass
class DiscoveryResult:
    results: list[DiscoveredAgent] = field(default_factory=list)
    error: str | None = None


def detect_local_address() -> str | None:
    """Best-effort primary IPv4 address of this machine.

    Connecting a UDP socket sends nothing; it only selects the outgoing
    interface.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        try:
            sock.connect(("192.0.2.1", 9))
        except OSError:
            return None
        address = sock.getsockname()[0]
    return None if address.startswith("0.") else address


def derive_targets(address: str, netmask: str | None = None) -> list[str]:
    """List the host addresses of ``address``'s subnet, excluding ``address``.

    A missing, invalid, empty or too large subnet (more than
    ``MAX_DERIVED_HOSTS`` hosts) falls back to the surrounding /24.
    """
    try:
        ip = ipaddress.IPv4Address(address.strip())
    except ValueError:
        return []

    network = None
    if netmask:
        try:
            network = ipaddress.IPv4Network(f"{ip}/{netmask.strip()}", strict=False)
        except ValueError:
            network = None
    if network is None or not 0 < network.num_addresses - 2 <= MAX_DERIVED_HOSTS:
        network = ipaddress.IPv4Network(f"{ip}/{FALLBACK_PREFIX}", strict=False)

    return [str(host) for host in network.hosts() if host != ip]


def known_addresses(hosts: Iterable[HostConfig]) -> set[str]:
    return {host.address for host in hosts}


async def scan_for_agents(
    address: str,
    netmask: str | None = None,
    *,
    port: int = DEFAULT_AGENT_PORT,
    timeout: float = DEFAULT_SCAN_TIMEOUT_SECONDS,
    concurrency: int = DEFAULT_SCAN_CONCURRENCY,
    known: Iterable[HostConfig] = (),
    session: aiohttp.ClientSession | None = None,
) -> DiscoveryResult:
    """Probe every address of the local subnet for an agent.

    Args:
        address: Local IPv4 address.
        netmask: Dotted netmask or prefix length of the local subnet.
        port: Agent port to probe.
        timeout: Per-probe timeout in seconds.
        concurrency: Maximum probes in flight.
        known: Configured hosts; their ``host:port`` pairs are skipped.
        session: Optional aiohttp session shared by all probes.

    Returns:
        Found agents sorted by address, or an ``error`` explaining why nothing
        was scanned.
    """
    targets = derive_targets(address, netmask)
    if not targets:
        return DiscoveryResult(error="Unable to derive local network range.")

    existing = known_addresses(known)
    queue = [ip for ip in targets if f"{ip}:{port}" not in existing]
    if not queue:
        return DiscoveryResult(error="All local agents are already added.")

    logger.info("discovery_started", targets=len(queue), port=port, concurrency=concurrency)
    semaphore = asyncio.Semaphore(max(1, concurrency))
    owns_session = session is None
    shared = session or aiohttp.ClientSession()

    async def probe(ip: str) -> DiscoveredAgent | None:
        base_url = f"http://{ip}:{port}"
        async with semaphore:
            outcome = await RemoteAgentClient.for_url(base_url, session=shared).probe_health(
                timeout=timeout
            )
        if outcome.status is ProbeStatus.OK:
            return DiscoveredAgent(
                ip=ip,
                base_url=base_url,
                label=outcome.payload.host or ip,
                status=DiscoveryStatus.OK,
                tmux_version=outcome.payload.tmux_version,
            )
        if outcome.status is ProbeStatus.UNAUTHORIZED:
            return DiscoveredAgent(
                ip=ip, base_url=base_url, label=ip, status=DiscoveryStatus.AUTH_REQUIRED
            )
        return None

    try:
        found = await asyncio.gather(*(probe(ip) for ip in queue))
    finally:
        if owns_session:
            await shared.close()

    results = sorted(
        (agent for agent in found if agent is not None),
        key=lambda agent: ipaddress.IPv4Address(agent.ip),
    )
    logger.info("discovery_finished", found=len(results))
    return DiscoveryResult(results=results)
