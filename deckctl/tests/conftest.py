"""Shared test fixtures for CLI tests."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import structlog
from rich.console import Console

from deckctl import main
from hostlink.payloads import CaptureResult, HealthPayload, HostInfo, PingPayload, Session
from hostlink.probes import ProbeOutcome

if TYPE_CHECKING:
    from collections.abc import Generator
    from pathlib import Path


@pytest.fixture(autouse=True)
def isolated_config_dir(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Generator[Path, None, None]:
    """Isolate tests from the real user configuration.

    Sets XDG_CONFIG_HOME to a temporary directory so that tests never read
    or modify ~/.config/hostdeck/.
    """
    config_home = tmp_path / "xdg_config"
    config_home.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(config_home))
    yield config_home


@pytest.fixture(autouse=True)
def restore_logging() -> Generator[None, None, None]:
    """Undo the logging setup each command invocation installs.

    The CLI points structlog and the root logger at the runner's captured
    stderr, which is closed once the invocation returns.
    """
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    structlog.reset_defaults()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture(autouse=True)
def wide_console(monkeypatch: pytest.MonkeyPatch) -> Console:
    """Keep table cells from being truncated in captured output."""
    console = Console(width=200)
    monkeypatch.setattr(main, "console", console)
    return console


@pytest.fixture
def agent_client() -> Generator[MagicMock, None, None]:
    """Replace RemoteAgentClient in the CLI with a mock.

    Every client the CLI builds is the same mock; ``async with`` yields it.
    """
    with patch("deckctl.main.RemoteAgentClient") as client_cls:
        client = client_cls.return_value
        client.__aenter__.return_value = client
        client.close = AsyncMock(return_value=None)
        client.probe_health = AsyncMock(
            return_value=ProbeOutcome.success(
                HealthPayload(ok=True, host="lab", tmux_version="3.4")
            )
        )
        client.probe_ping = AsyncMock(
            return_value=ProbeOutcome.success(PingPayload(ok=True, ts=1700000000000))
        )
        client.get_sessions = AsyncMock(
            return_value=[
                Session(name="main", windows=2, attached=True, preview=["\x1b[32mok\x1b[0m"])
            ]
        )
        client.get_host_info = AsyncMock(return_value=HostInfo(hostname="lab", load=[0.42]))
        client.capture_session = AsyncMock(
            return_value=CaptureResult(lines=["$ uptime", "\x1b[32mup 3 days\x1b[0m"])
        )
        client.resize_session = AsyncMock(return_value=None)
        client.docker_container_action = AsyncMock(return_value=True)
        yield client
