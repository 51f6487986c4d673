"""Live event stream from an agent's ``/events`` WebSocket.

The agent pushes whole snapshots of the requested features instead of being
polled. :class:`LiveEventStream` keeps the socket open and reconnects with
exponential backoff, handing parsed messages to callbacks owned by the
aggregator.

Wire messages:
    {"type": "snapshot", "ts": 1700000000000, "sessions": [...], "host": {...}, "docker": {...}}
    {"type": "error", "message": "docker unavailable"}
    {"type": "refresh"}   (client to agent)
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import aiohttp
import structlog
from pydantic import ValidationError

from .payloads import DockerSnapshot, HostInfo, Session

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from .client import RemoteAgentClient

logger = structlog.get_logger(__name__)

RECONNECT_BASE_DELAY = 1.0
RECONNECT_MAX_DELAY = 10.0


@dataclass(frozen=True, slots=True)
class LiveSnapshot:
    """A snapshot pushed by the agent. Absent features are ``None``."""

    timestamp: datetime
    sessions: tuple[Session, ...] | None = None
    host_info: HostInfo | None = None
    docker: DockerSnapshot | None = None


@dataclass(frozen=True, slots=True)
class LiveStreamError:
    """An error message pushed by the agent."""

    message: str


def _timestamp(value: Any) -> datetime:
    # Agents send milliseconds since the epoch
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
        return datetime.fromtimestamp(value / 1000, tz=UTC)
    return datetime.now(tz=UTC)


def parse_live_message(raw: str) -> LiveSnapshot | LiveStreamError | None:
    """Parse one text frame; unknown or malformed frames yield ``None``."""
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None

    message_type = payload.get("type")
    if message_type == "error":
        return LiveStreamError(str(payload.get("message") or "Live feed error"))
    if message_type != "snapshot":
        return None

    try:
        sessions = payload.get("sessions")
        host = payload.get("host")
        docker = payload.get("docker")
        return LiveSnapshot(
            timestamp=_timestamp(payload.get("ts")),
            sessions=(
                tuple(Session.model_validate(item) for item in sessions)
                if sessions is not None
                else None
            ),
            host_info=HostInfo.model_validate(host) if host is not None else None,
            docker=DockerSnapshot.model_validate(docker) if docker is not None else None,
        )
    except (ValidationError, TypeError):
        logger.debug("live_snapshot_rejected")
        return None


def reconnect_delay(attempt: int) -> float:
    """Delay before reconnect number ``attempt`` (0-based)."""
    return min(RECONNECT_MAX_DELAY, RECONNECT_BASE_DELAY * (2**attempt))


class LiveEventStream:
    """Keeps the ``/events`` socket of one host open.

    The stream never raises out of :meth:`run`; connection problems are
    reported through ``on_disconnect`` and followed by a reconnect.
    """

    def __init__(
        self,
        client: RemoteAgentClient,
        params: dict[str, str],
        *,
        on_snapshot: Callable[[LiveSnapshot], None],
        on_error: Callable[[LiveStreamError], None],
        on_disconnect: Callable[[str], None],
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the stream.

        Args:
            client: Client of the host to stream from.
            params: Feature selection query parameters.
            on_snapshot: Called for every snapshot frame.
            on_error: Called for every error frame.
            on_disconnect: Called with a reason when the socket fails or closes.
            sleep: Awaitable used to wait between reconnects.
        """
        self.client = client
        self.params = params
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        self._on_disconnect = on_disconnect
        self._sleep = sleep
        self._socket: aiohttp.ClientWebSocketResponse | None = None
        self.reconnects = 0

    @property
    def connected(self) -> bool:
        return self._socket is not None and not self._socket.closed

    async def run(self) -> None:
        """Connect and reconnect until cancelled."""
        while True:
            reason = await self._run_once()
            self._on_disconnect(reason)
            delay = reconnect_delay(self.reconnects)
            self.reconnects += 1
            logger.info(
                "live_stream_reconnect",
                host=self.client.host.id,
                reason=reason,
                delay=delay,
                attempt=self.reconnects,
            )
            await self._sleep(delay)

    async def _run_once(self) -> str:
        try:
            async with self.client.connect_events(self.params) as socket:
                self._socket = socket
                async for frame in socket:
                    if frame.type is aiohttp.WSMsgType.TEXT:
                        self._dispatch(frame.data)
                    elif frame.type is aiohttp.WSMsgType.ERROR:
                        return str(socket.exception() or "socket error")
                return "closed"
        except (aiohttp.ClientError, TimeoutError, OSError) as e:
            return str(e) or type(e).__name__
        finally:
            self._socket = None

    def _dispatch(self, raw: str) -> None:
        message = parse_live_message(raw)
        if isinstance(message, LiveSnapshot):
            self.reconnects = 0
            self._on_snapshot(message)
        elif isinstance(message, LiveStreamError):
            self._on_error(message)

    async def request_refresh(self) -> bool:
        """Ask the agent to push a fresh snapshot now.

        Returns:
            False when the socket is not open.
        """
        if not self.connected or self._socket is None:
            return False
        await self._socket.send_str(json.dumps({"type": "refresh"}))
        return True
