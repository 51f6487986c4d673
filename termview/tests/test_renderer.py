"""Tests for the renderer side of the handshake and its wiring to the host."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import pytest

from termview.negotiation import DimensionNegotiator, Grid, NegotiationState, Size
from termview.renderer import TerminalRenderer

if TYPE_CHECKING:
    from conftest import FakeScheduler


@pytest.fixture
def posted() -> list[dict[str, Any]]:
    return []


@pytest.fixture
def renderer(posted: list[dict[str, Any]], scheduler: FakeScheduler) -> TerminalRenderer:
    return TerminalRenderer(
        lambda message: posted.append(json.loads(message)),
        cell_width=8,
        cell_height=16,
        call_later=scheduler.call_later,
    )


class TestTerminalRenderer:
    """Tests for TerminalRenderer."""

    def test_proposes_floor_of_cell_metrics(self, renderer: TerminalRenderer) -> None:
        assert renderer.propose() is None
        renderer.measure(645.7, 390)
        assert renderer.propose() == Grid(80, 24)

    def test_tiny_container_proposes_one_cell(self, renderer: TerminalRenderer) -> None:
        renderer.measure(3, 3)
        assert renderer.propose() == Grid(1, 1)

    def test_request_is_debounced(
        self,
        renderer: TerminalRenderer,
        posted: list[dict[str, Any]],
        scheduler: FakeScheduler,
    ) -> None:
        renderer.measure(600, 300)
        renderer.measure(640.4, 383.6)

        assert posted == []
        assert [t.delay for t in scheduler.active] == [0.05]

        scheduler.fire_next()
        assert posted == [
            {
                "type": "dimensionRequest",
                "container": {"width": 640, "height": 384},
                "proposed": {"cols": 80, "rows": 23},
            }
        ]
        assert renderer.pending == Grid(80, 23)

    def test_unconfirmed_request_is_retried(
        self,
        renderer: TerminalRenderer,
        posted: list[dict[str, Any]],
        scheduler: FakeScheduler,
    ) -> None:
        renderer.measure(640, 384)
        scheduler.fire_next()

        assert [t.delay for t in scheduler.active] == [0.2]
        scheduler.fire_next()
        scheduler.fire_next()
        assert len(posted) == 3

    def test_confirm_applies_and_stops_retrying(
        self, renderer: TerminalRenderer, scheduler: FakeScheduler
    ) -> None:
        renderer.measure(640, 384)
        scheduler.fire_next()
        renderer.confirm_dimensions(80, 24)

        assert scheduler.active == []
        assert renderer.pending is None
        assert renderer.dimensions == Grid(80, 24)
        assert renderer.grid.size == (80, 24)

    def test_fit_applies_without_asking(
        self, renderer: TerminalRenderer, posted: list[dict[str, Any]]
    ) -> None:
        renderer.container = None
        renderer.fit()
        assert renderer.dimensions == Grid(80, 24)

        renderer.measure(800, 160)
        renderer.fit()
        assert renderer.dimensions == Grid(100, 10)
        assert posted == []

    def test_request_without_measurement_sends_nothing(
        self,
        renderer: TerminalRenderer,
        posted: list[dict[str, Any]],
        scheduler: FakeScheduler,
    ) -> None:
        renderer.request_fit()
        scheduler.fire_next()
        assert posted == []

    def test_connection_and_copy_messages(
        self, renderer: TerminalRenderer, posted: list[dict[str, Any]]
    ) -> None:
        renderer.notify_connected()
        renderer.notify_reconnecting()
        renderer.notify_disconnected("eof")
        renderer.notify_disconnected()
        renderer.copy("uptime")

        assert posted == [
            {"type": "connected"},
            {"type": "reconnecting"},
            {"type": "disconnected", "reason": "eof"},
            {"type": "disconnected"},
            {"type": "copy", "text": "uptime"},
        ]

    def test_input_queue(self, scheduler: FakeScheduler) -> None:
        forwarded: list[str] = []
        renderer = TerminalRenderer(
            lambda _: None,
            cell_width=8,
            cell_height=16,
            on_input=forwarded.append,
            call_later=scheduler.call_later,
        )
        renderer.push_input("ls\r")
        renderer.push_input("\x03")

        assert forwarded == ["ls\r", "\x03"]
        assert renderer.drain_input() == ["ls\r", "\x03"]
        assert renderer.drain_input() == []

    def test_write_feeds_grid(self, renderer: TerminalRenderer) -> None:
        renderer.write(b"prompt$ ")
        assert renderer.grid.display[0].startswith("prompt$")

    def test_cancel_request_stops_retrying(
        self,
        renderer: TerminalRenderer,
        posted: list[dict[str, Any]],
        scheduler: FakeScheduler,
    ) -> None:
        renderer.measure(640, 384)
        scheduler.fire_next()
        renderer.cancel_request()

        assert scheduler.active == []
        assert renderer.pending is None

        renderer.measure(320, 192)
        scheduler.fire_next()
        assert posted[-1]["proposed"] == {"cols": 40, "rows": 12}

    def test_close_stops_everything(
        self,
        renderer: TerminalRenderer,
        posted: list[dict[str, Any]],
        scheduler: FakeScheduler,
    ) -> None:
        renderer.measure(640, 384)
        scheduler.fire_next()
        renderer.close()
        renderer.request_fit()
        renderer.notify_connected()

        assert scheduler.active == []
        assert len(posted) == 1


class TestHandshake:
    """Tests for a renderer wired to a strict negotiator."""

    @pytest.fixture
    def pair(
        self, scheduler: FakeScheduler
    ) -> tuple[DimensionNegotiator, TerminalRenderer, list[Grid]]:
        commits: list[Grid] = []
        negotiator: DimensionNegotiator
        renderer = TerminalRenderer(
            lambda message: negotiator.handle_message(message),
            cell_width=8,
            cell_height=16,
            call_later=scheduler.call_later,
        )
        negotiator = DimensionNegotiator(
            renderer, on_commit=commits.append, call_later=scheduler.call_later
        )
        return negotiator, renderer, commits

    def test_agreeing_measurements_commit(
        self,
        pair: tuple[DimensionNegotiator, TerminalRenderer, list[Grid]],
        scheduler: FakeScheduler,
    ) -> None:
        negotiator, renderer, commits = pair
        negotiator.on_layout(640, 384)
        renderer.measure(644, 380)
        negotiator.on_load_complete()
        scheduler.fire_all()

        assert negotiator.state is NegotiationState.RECONCILED
        assert commits == [Grid(80, 23)]
        assert renderer.dimensions == Grid(80, 23)

    def test_renderer_retries_until_layout_settles(
        self,
        pair: tuple[DimensionNegotiator, TerminalRenderer, list[Grid]],
        scheduler: FakeScheduler,
    ) -> None:
        """Test a mismatch is resolved by the renderer's retry, not by the host."""
        negotiator, renderer, commits = pair
        negotiator.on_layout(640, 384)
        renderer.measure(720, 384)
        negotiator.on_load_complete()
        scheduler.fire_next()
        scheduler.fire_next()

        assert commits == []
        assert renderer.pending == Grid(90, 24)
        assert [t.delay for t in scheduler.active] == [0.2]

        renderer.container = Size(641, 384)
        scheduler.fire_all()

        assert commits == [Grid(80, 24)]
        assert renderer.pending is None
        assert scheduler.active == []
