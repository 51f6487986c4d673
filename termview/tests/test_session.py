"""Tests for SessionTerminal."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from hostlink.errors import AgentRequestError
from hostlink.models import TerminalConfig
from hostlink.payloads import CaptureResult
from termview.negotiation import ConnectionEvent, CopyRequest, NegotiationState
from termview.session import SessionTerminal

if TYPE_CHECKING:
    from unittest.mock import MagicMock

    from conftest import FakeScheduler


@pytest.fixture
def terminal(agent_client: MagicMock, scheduler: FakeScheduler) -> SessionTerminal:
    return SessionTerminal(
        agent_client,
        "main",
        config=TerminalConfig(cell_width=8, cell_height=16),
        call_later=scheduler.call_later,
    )


class TestSessionTerminal:
    """Tests for the session glue."""

    @pytest.mark.asyncio
    async def test_load_seeds_grid_from_capture(
        self, terminal: SessionTerminal, agent_client: MagicMock
    ) -> None:
        await terminal.load()

        agent_client.capture_session.assert_awaited_once_with("main", lines=24)
        assert terminal.grid.display[0].startswith("$ uptime")
        assert terminal.grid.display[1].startswith("up 3 days")
        assert terminal.grid.line_segments(1)[0].style.foreground == "#008000"
        assert terminal.negotiator.loaded

    @pytest.mark.asyncio
    async def test_reconciled_grid_is_committed(
        self, terminal: SessionTerminal, agent_client: MagicMock, scheduler: FakeScheduler
    ) -> None:
        terminal.layout(800, 480)
        await terminal.load()
        scheduler.fire_all()
        await terminal.drain()

        agent_client.resize_session.assert_awaited_once_with("main", 100, 30)
        assert terminal.negotiator.state is NegotiationState.RECONCILED
        assert terminal.grid.size == (100, 30)
        assert terminal.last_error is None

    @pytest.mark.asyncio
    async def test_mismatch_does_not_resize(
        self, terminal: SessionTerminal, agent_client: MagicMock, scheduler: FakeScheduler
    ) -> None:
        terminal.layout(800, 480, renderer_size=(900, 480))
        await terminal.load()
        scheduler.fire_next()
        await terminal.drain()

        agent_client.resize_session.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_resize_failure_is_recorded(
        self, terminal: SessionTerminal, agent_client: MagicMock, scheduler: FakeScheduler
    ) -> None:
        agent_client.resize_session.side_effect = AgentRequestError("no such session", 404)
        terminal.layout(800, 480)
        await terminal.load()
        scheduler.fire_all()
        await terminal.drain()

        assert terminal.last_error == "no such session"

    @pytest.mark.asyncio
    async def test_input_is_sent_to_session(
        self, terminal: SessionTerminal, agent_client: MagicMock
    ) -> None:
        terminal.send_input("ls\r")
        await terminal.drain()

        agent_client.send_text.assert_awaited_once_with("main", "ls\r")

    @pytest.mark.asyncio
    async def test_switch_renegotiates(
        self, terminal: SessionTerminal, agent_client: MagicMock, scheduler: FakeScheduler
    ) -> None:
        """Test switching sessions commits the grid again for the new session."""
        terminal.layout(800, 480)
        await terminal.load()
        scheduler.fire_all()
        await terminal.drain()

        await terminal.switch("logs")
        assert terminal.negotiator.state is NegotiationState.AWAITING_PROPOSAL
        assert terminal.grid.history() == []

        scheduler.fire_all()
        await terminal.drain()

        assert agent_client.resize_session.await_args_list[-1].args == ("logs", 100, 30)
        assert agent_client.capture_session.await_args_list[-1].args == ("logs",)

    @pytest.mark.asyncio
    async def test_switch_drops_request_for_old_content(
        self, terminal: SessionTerminal, agent_client: MagicMock, scheduler: FakeScheduler
    ) -> None:
        """Test the unconfirmed request of the old session stops retrying on switch."""
        seen: list[tuple[object, int]] = []

        async def capture(name: str, lines: int) -> CaptureResult:
            seen.append((terminal.renderer.pending, len(scheduler.active)))
            return CaptureResult(lines=[f"{name}$"])

        terminal.layout(800, 480, renderer_size=(400, 200))
        await terminal.load()
        scheduler.fire_next()
        scheduler.fire_next()
        assert terminal.renderer.pending is not None

        agent_client.capture_session.side_effect = capture
        await terminal.switch("other")

        assert seen == [(None, 0)]
        # Only the debounced request of the new cycle is left
        assert [t.delay for t in scheduler.active] == [0.05]
        assert terminal.negotiator.state is NegotiationState.AWAITING_PROPOSAL
        assert terminal.grid.display[0].startswith("other$")

    @pytest.mark.asyncio
    async def test_switch_cancels_resize_of_old_session(
        self, terminal: SessionTerminal, agent_client: MagicMock, scheduler: FakeScheduler
    ) -> None:
        terminal.layout(800, 480)
        await terminal.load()
        scheduler.fire_all()

        await terminal.switch("logs")
        scheduler.fire_all()
        await terminal.drain()

        assert [c.args for c in agent_client.resize_session.await_args_list] == [
            ("logs", 100, 30)
        ]

    @pytest.mark.asyncio
    async def test_renderer_events_reach_host(
        self, agent_client: MagicMock, scheduler: FakeScheduler
    ) -> None:
        events: list[ConnectionEvent | CopyRequest] = []
        terminal = SessionTerminal(
            agent_client, "main", on_event=events.append, call_later=scheduler.call_later
        )
        terminal.renderer.notify_disconnected("agent restarted")
        terminal.renderer.copy("uptime")

        assert events == [ConnectionEvent("disconnected", "agent restarted"), CopyRequest("uptime")]

    @pytest.mark.asyncio
    async def test_aclose_stops_negotiation(
        self, terminal: SessionTerminal, scheduler: FakeScheduler
    ) -> None:
        terminal.layout(800, 480)
        await terminal.aclose()

        assert scheduler.active == []
        assert terminal.negotiator.state is NegotiationState.IDLE
