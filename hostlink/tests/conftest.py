"""Shared fixtures for hostlink tests."""

from __future__ import annotations

import asyncio
import json
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import pytest
import pytest_asyncio
from aiohttp import WSMsgType, web
from aiohttp.test_utils import TestServer

from hostlink.models import HostConfig
from hostlink.payloads import HealthPayload
from hostlink.probes import ProbeOutcome

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Generator
    from pathlib import Path


@pytest.fixture(autouse=True)
def isolated_config_dir(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Generator[Path, None, None]:
    """Point XDG_CONFIG_HOME at a temporary directory."""
    config_home = tmp_path / "xdg_config"
    config_home.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(config_home))
    yield config_home


# Scheduler


class FakeTimer:
    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Records ``call_later`` requests; timers only fire when told to."""

    def __init__(self) -> None:
        self.timers: list[FakeTimer] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def active(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def fire_next(self) -> FakeTimer:
        timer = self.active[0]
        timer.fired = True
        timer.callback()
        return timer


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


# Agent client double


class FakeAgentClient:
    """Stands in for RemoteAgentClient inside the aggregator.

    Each feature answers with its configured value, or raises it when it is an
    exception. A feature with a gate blocks until the gate is set.
    """

    def __init__(self, host: HostConfig) -> None:
        self.host = host
        self.calls: Counter[str] = Counter()
        self.results: dict[str, Any] = {
            "sessions": [],
            "host": None,
            "docker": None,
        }
        self.gates: dict[str, asyncio.Event] = {}
        self.probe_outcome = ProbeOutcome.success(HealthPayload(ok=True, host=host.id))
        self.probe_timeouts: list[float | None] = []
        self.closed = False

    async def _answer(self, feature: str) -> Any:
        self.calls[feature] += 1
        gate = self.gates.get(feature)
        if gate is not None:
            await gate.wait()
        value = self.results[feature]
        if isinstance(value, Exception):
            raise value
        return value

    async def get_sessions(
        self,
        preview: bool = False,  # noqa: ARG002
        lines: int | None = None,  # noqa: ARG002
        insights: bool = False,  # noqa: ARG002
    ) -> Any:
        return await self._answer("sessions")

    async def get_host_info(self) -> Any:
        return await self._answer("host")

    async def get_docker(self) -> Any:
        return await self._answer("docker")

    async def probe_health(self, timeout: float | None = None) -> ProbeOutcome:
        self.calls["probe"] += 1
        self.probe_timeouts.append(timeout)
        return self.probe_outcome

    async def close(self) -> None:
        self.closed = True


class FakeClientFactory:
    """Builds one FakeAgentClient per host config and remembers them."""

    def __init__(self) -> None:
        self.clients: dict[str, FakeAgentClient] = {}
        self.created: list[FakeAgentClient] = []

    def __call__(self, host: HostConfig) -> FakeAgentClient:
        client = FakeAgentClient(host)
        self.clients[host.id] = client
        self.created.append(client)
        return client


@pytest.fixture
def client_factory() -> FakeClientFactory:
    return FakeClientFactory()


@pytest.fixture
def make_host() -> Callable[..., HostConfig]:
    """Build a HostConfig whose base URL is derived from its id."""

    def build(host_id: str, port: int = 4020, **kwargs: Any) -> HostConfig:
        return HostConfig(id=host_id, base_url=f"http://{host_id}.lan:{port}", **kwargs)

    return build


# Agent HTTP server


@dataclass
class RecordedRequest:
    method: str
    path: str
    query: dict[str, str]
    headers: dict[str, str]
    body: str

    def json(self) -> Any:
        return json.loads(self.body)


@dataclass
class FakeAgent:
    """aiohttp application that answers like an agent.

    ``routes`` maps ``(method, raw_path)`` to ``(status, body)``; a ``str`` body
    is sent as text, ``bytes`` as they are, anything else as JSON. ``delays``
    holds per-route sleeps.
    ``frames`` are sent to every ``/events`` WebSocket client before closing.
    """

    routes: dict[tuple[str, str], tuple[int, Any]] = field(default_factory=dict)
    delays: dict[tuple[str, str], float] = field(default_factory=dict)
    requests: list[RecordedRequest] = field(default_factory=list)
    frames: list[str] = field(default_factory=list)
    received: list[str] = field(default_factory=list)
    base_url: str = ""

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_route("*", "/{tail:.*}", self.handle)
        return app

    async def handle(self, request: web.Request) -> web.StreamResponse:
        path = request.rel_url.raw_path
        self.requests.append(
            RecordedRequest(
                method=request.method,
                path=path,
                query=dict(request.query),
                headers=dict(request.headers),
                body=await request.text(),
            )
        )
        if path == "/events":
            return await self._events(request)

        key = (request.method, path)
        delay = self.delays.get(key)
        if delay:
            await asyncio.sleep(delay)
        status, payload = self.routes.get(key, (404, "Not found"))
        if isinstance(payload, str):
            return web.Response(status=status, text=payload)
        if isinstance(payload, bytes):
            return web.Response(status=status, body=payload)
        return web.json_response(payload, status=status)

    async def _events(self, request: web.Request) -> web.WebSocketResponse:
        socket = web.WebSocketResponse()
        await socket.prepare(request)
        for frame in self.frames:
            await socket.send_str(frame)
        # Give the client a moment to send before closing
        try:
            message = await socket.receive(timeout=0.2)
            if message.type == WSMsgType.TEXT:
                self.received.append(message.data)
        except TimeoutError:
            pass
        await socket.close()
        return socket

    @property
    def last(self) -> RecordedRequest:
        return self.requests[-1]


@pytest_asyncio.fixture
async def agent() -> AsyncIterator[FakeAgent]:
    fake = FakeAgent()
    server = TestServer(fake.build_app())
    await server.start_server()
    fake.base_url = str(server.make_url("")).rstrip("/")
    yield fake
    await server.close()
