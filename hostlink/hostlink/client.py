"""HTTP client for a single remote agent host.

This module provides :class:`RemoteAgentClient`, the request/response and
health-probe layer in front of an agent. It uses aiohttp for asynchronous
HTTP, bounds every call by a per-call-site timeout and classifies failures:

- ``request`` raises :class:`~hostlink.errors.AgentError` subclasses and never
  retries; the caller closest to the user action handles them.
- ``probe_health`` / ``probe_ping`` never raise; every branch is a
  :class:`~hostlink.probes.ProbeOutcome`.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any
from urllib.parse import quote, urlencode

import aiohttp
import structlog

from .errors import AgentConnectionError, AgentRequestError, AgentResponseError
from .models import DEFAULT_TIMEOUT_SECONDS, HostConfig
from .payloads import (
    CaptureResult,
    DockerSnapshot,
    HealthPayload,
    HostInfo,
    KillPortsResult,
    PingPayload,
    PortInfo,
    Session,
)
from .probes import ProbeOutcome, classify_status, validate_health, validate_ping

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

logger = structlog.get_logger(__name__)

# Insights and usage analytics walk agent transcripts on the host
EXTENDED_TIMEOUT_SECONDS = 12.0
UPLOAD_TIMEOUT_SECONDS = 30.0

DOCKER_ACTIONS = frozenset({"start", "stop", "restart", "pause", "unpause", "kill"})

_TRANSPORT_ERRORS = (aiohttp.ClientError, TimeoutError, OSError)


def _quote(segment: str) -> str:
    return quote(segment, safe="")


class RemoteAgentClient:
    """Talks to one agent over HTTP.

    The client owns an aiohttp session unless one is passed in, in which case
    the caller keeps ownership (useful to share a connection pool across
    many short-lived clients, e.g. during discovery).

    Example:
        async with RemoteAgentClient(host) as client:
            outcome = await client.probe_health()
            if outcome.ok:
                sessions = await client.get_sessions(preview=True)
    """

    def __init__(
        self,
        host: HostConfig,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            host: Connection settings of the agent host.
            session: Optional shared aiohttp session.
        """
        self.host = host
        self._session = session
        self._owns_session = session is None

    @classmethod
    def for_url(
        cls,
        base_url: str,
        auth_token: str | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> RemoteAgentClient:
        """Create a client for an ad-hoc URL that is not in the configuration."""
        host = HostConfig(id=base_url, base_url=base_url, auth_token=auth_token)
        return cls(host, session=session)

    async def __aenter__(self) -> RemoteAgentClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the owned aiohttp session, if any."""
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        # Never send an empty bearer
        if self.host.auth_token:
            headers["Authorization"] = f"Bearer {self.host.auth_token}"
        return headers

    def _url(self, path: str) -> str:
        return f"{self.host.base_url}{path}"

    async def _send(
        self,
        path: str,
        method: str,
        body: Any,
        timeout: float | None,
    ) -> tuple[int, bytes]:
        """Perform one HTTP exchange and return ``(status, raw_body)``.

        The body is returned undecoded; agents and other devices on the port
        may answer with anything.

        Raises:
            aiohttp.ClientError, TimeoutError, OSError: On transport failure.
        """
        client_timeout = aiohttp.ClientTimeout(total=timeout or self.host.timeout)
        data = json.dumps(body) if body is not None else None
        session = self._get_session()
        async with session.request(
            method,
            self._url(path),
            data=data,
            headers=self._headers(),
            timeout=client_timeout,
        ) as response:
            payload = await response.read()
            return response.status, payload

    async def request(
        self,
        path: str,
        method: str = "GET",
        body: Any = None,
        timeout: float | None = None,
    ) -> Any:
        """Call the agent and return the decoded JSON body.

        Args:
            path: Path below the base URL, including any query string.
            method: HTTP method.
            body: JSON-serializable request body.
            timeout: Timeout in seconds; defaults to the host's timeout.

        Returns:
            Decoded JSON, or ``None`` for an empty 2xx body.

        Raises:
            AgentConnectionError: The host could not be reached in time.
            AgentRequestError: Non-2xx response; carries the server text.
            AgentResponseError: 2xx response whose body is not UTF-8 JSON.
        """
        logger.debug("agent_request", host=self.host.id, method=method, path=path)
        try:
            status, payload = await self._send(path, method, body, timeout)
        except _TRANSPORT_ERRORS as e:
            reason = str(e) or "timed out"
            logger.warning("agent_request_unreachable", host=self.host.id, path=path, error=reason)
            raise AgentConnectionError(f"Failed to reach {self.host.base_url}: {reason}") from e

        if not 200 <= status < 300:
            logger.info("agent_request_failed", host=self.host.id, path=path, status=status)
            text = payload.decode("utf-8", errors="replace")
            raise AgentRequestError(text or f"Request failed ({status})", status=status)

        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise AgentResponseError(f"Undecodable body from {path}: {e}") from e
        if not text.strip():
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise AgentResponseError(f"Invalid JSON from {path}: {e}") from e

    async def _probe(
        self,
        path: str,
        validator: Callable[[Any], ProbeOutcome],
        timeout: float | None,
    ) -> ProbeOutcome:
        try:
            status, payload = await self._send(path, "GET", None, timeout)
        except _TRANSPORT_ERRORS as e:
            message = str(e) or type(e).__name__
            logger.debug("probe_unreachable", host=self.host.id, path=path, error=message)
            return ProbeOutcome.unreachable(message)

        classified = classify_status(status, payload.decode("utf-8", errors="replace"))
        if classified is not None:
            logger.debug("probe_rejected", host=self.host.id, path=path, status=status)
            return classified

        try:
            data = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.debug("probe_invalid_body", host=self.host.id, path=path)
            return ProbeOutcome.invalid_response()
        return validator(data)

    async def probe_health(self, timeout: float | None = None) -> ProbeOutcome:
        """Authoritative liveness probe against ``GET /health``. Never raises."""
        return await self._probe("/health", validate_health, timeout)

    async def probe_ping(self, timeout: float | None = None) -> ProbeOutcome:
        """Secondary liveness probe against ``GET /ping``. Never raises."""
        return await self._probe("/ping", validate_ping, timeout)

    def connect_events(self, params: dict[str, str]) -> Any:
        """Open the ``/events`` WebSocket.

        The token travels in the Authorization header of the upgrade request,
        never in the query string.

        Returns:
            An aiohttp WebSocket context manager.
        """
        path = "/events"
        if params:
            path = f"{path}?{urlencode(params)}"
        headers = self._headers()
        headers.pop("Content-Type")
        return self._get_session().ws_connect(self._url(path), headers=headers, heartbeat=30.0)

    # Typed endpoints

    async def get_health(self) -> HealthPayload:
        return HealthPayload.model_validate(await self.request("/health"))

    async def get_ping(self) -> PingPayload:
        return PingPayload.model_validate(await self.request("/ping"))

    async def get_host_info(self) -> HostInfo:
        return HostInfo.model_validate(await self.request("/host"))

    async def get_docker(self) -> DockerSnapshot:
        return DockerSnapshot.model_validate(await self.request("/docker"))

    async def get_sessions(
        self,
        preview: bool = False,
        lines: int | None = None,
        insights: bool = False,
    ) -> list[Session]:
        """List tmux sessions.

        Args:
            preview: Include the last lines of each pane.
            lines: Number of preview lines.
            insights: Include agent insights (uses the extended timeout).
        """
        params: dict[str, str] = {}
        if preview:
            params["preview"] = "1"
        if lines:
            params["lines"] = str(lines)
        if insights:
            params["insights"] = "1"
        path = "/sessions"
        if params:
            path = f"{path}?{urlencode(params)}"
        timeout = EXTENDED_TIMEOUT_SECONDS if insights else None
        data = await self.request(path, timeout=timeout)
        return [Session.model_validate(item) for item in data or []]

    async def create_session(self, name: str) -> None:
        await self.request("/sessions", "POST", {"name": name})

    async def rename_session(self, name: str, new_name: str) -> None:
        await self.request(f"/sessions/{_quote(name)}/rename", "POST", {"name": new_name})

    async def kill_session(self, name: str) -> None:
        await self.request(f"/sessions/{_quote(name)}/kill", "POST")

    async def send_keys(self, name: str, keys: list[str]) -> None:
        await self.request(f"/sessions/{_quote(name)}/keys", "POST", {"keys": keys})

    async def send_text(self, name: str, text: str) -> None:
        await self.request(f"/sessions/{_quote(name)}/keys", "POST", {"text": text})

    async def capture_session(self, name: str, lines: int, cursor: bool = False) -> CaptureResult:
        params = {"lines": str(lines)}
        if cursor:
            params["cursor"] = "1"
        data = await self.request(f"/sessions/{_quote(name)}/capture?{urlencode(params)}")
        return CaptureResult.model_validate(data or {})

    async def resize_session(self, name: str, cols: int, rows: int) -> None:
        """Commit a negotiated terminal grid to the tmux session."""
        await self.request(f"/sessions/{_quote(name)}/resize", "POST", {"cols": cols, "rows": rows})

    async def get_session_insights(self, name: str) -> dict[str, Any]:
        return await self.request(
            f"/sessions/{_quote(name)}/insights", timeout=EXTENDED_TIMEOUT_SECONDS
        )

    async def get_usage(self) -> dict[str, Any]:
        return await self.request("/usage", timeout=EXTENDED_TIMEOUT_SECONDS)

    async def upload_image(self, data_base64: str, mime_type: str) -> str:
        result = await self.request(
            "/upload",
            "POST",
            {"data": data_base64, "mimeType": mime_type},
            timeout=UPLOAD_TIMEOUT_SECONDS,
        )
        return result["path"]

    async def docker_container_action(self, container_id: str, action: str) -> bool:
        """Run ``start``/``stop``/``restart``/``pause``/``unpause``/``kill`` on a container.

        Raises:
            ValueError: If ``action`` is not one of the supported actions.
        """
        if action not in DOCKER_ACTIONS:
            raise ValueError(
                f"Unsupported docker action {action!r}; expected one of {sorted(DOCKER_ACTIONS)}"
            )
        result = await self.request(f"/docker/containers/{_quote(container_id)}/{action}", "POST")
        return bool(result and result.get("ok"))

    async def get_ports(self) -> list[PortInfo]:
        data = await self.request("/ports")
        return [PortInfo.model_validate(item) for item in (data or {}).get("ports", [])]

    async def kill_ports(self, pids: list[int]) -> KillPortsResult:
        data = await self.request("/ports/kill", "POST", {"pids": pids})
        return KillPortsResult.model_validate(data or {})
