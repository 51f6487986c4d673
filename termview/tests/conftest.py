"""Shared fixtures for termview tests."""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, MagicMock

import pytest

from hostlink.models import HostConfig
from hostlink.payloads import CaptureResult

if TYPE_CHECKING:
    from collections.abc import Callable


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

    def fire_all(self) -> None:
        """Fire active timers, including ones scheduled while firing."""
        while self.active:
            self.fire_next()


class RecordingBridge:
    """Renderer stand-in that records every host call."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[object, ...]]] = []

    def request_fit(self) -> None:
        self.calls.append(("request_fit", ()))

    def fit(self) -> None:
        self.calls.append(("fit", ()))

    def confirm_dimensions(self, cols: int, rows: int) -> None:
        self.calls.append(("confirm_dimensions", (cols, rows)))

    def push_input(self, data: str) -> None:
        self.calls.append(("push_input", (data,)))

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def bridge() -> RecordingBridge:
    return RecordingBridge()


@pytest.fixture
def agent_client() -> MagicMock:
    """RemoteAgentClient double with async endpoint methods."""
    client = MagicMock()
    client.host = HostConfig(id="lab", base_url="http://lab.lan:4020")
    client.capture_session = AsyncMock(
        return_value=CaptureResult(lines=["$ uptime", "\x1b[32mup 3 days\x1b[0m"])
    )
    client.resize_session = AsyncMock(return_value=None)
    client.send_text = AsyncMock(return_value=None)
    return client
