"""Renderer side of the dimension handshake.

:class:`TerminalRenderer` plays the embedded terminal view: it measures its
own box, proposes a grid from the font metrics and posts JSON messages to the
host. It implements :class:`~termview.negotiation.RendererBridge`, so a
:class:`~termview.negotiation.DimensionNegotiator` can drive it directly.

Requests are debounced, and a request the host has not confirmed is sent
again after a retry delay until the host confirms or the renderer closes.
"""

from __future__ import annotations

import json
import math
from collections import deque
from typing import TYPE_CHECKING, Any

import structlog

from .grid import TerminalGrid
from .negotiation import Grid, Size, default_call_later

if TYPE_CHECKING:
    from collections.abc import Callable

    from .negotiation import TimerHandle

logger = structlog.get_logger(__name__)

DEBOUNCE_SECONDS = 0.05
RETRY_SECONDS = 0.2


class TerminalRenderer:
    """Terminal view that negotiates its grid with the host.

    Example:
        renderer = TerminalRenderer(negotiator.handle_message, cell_width=8, cell_height=16)
        renderer.measure(640, 384)     # proposes 80x24 after the debounce
    """

    def __init__(
        self,
        post_message: Callable[[str], Any],
        *,
        cell_width: float,
        cell_height: float,
        grid: TerminalGrid | None = None,
        on_input: Callable[[str], None] | None = None,
        call_later: Callable[[float, Callable[[], None]], TimerHandle] | None = None,
        debounce: float = DEBOUNCE_SECONDS,
        retry: float = RETRY_SECONDS,
    ) -> None:
        self.post_message = post_message
        self.cell_width = cell_width
        self.cell_height = cell_height
        self.grid = grid or TerminalGrid()
        self.debounce = debounce
        self.retry = retry
        self._on_input = on_input
        self._call_later = call_later or default_call_later

        self.container: Size | None = None
        self.pending: Grid | None = None
        self.input_queue: deque[str] = deque()
        self._debounce_timer: TimerHandle | None = None
        self._retry_timer: TimerHandle | None = None
        self._closed = False

    @property
    def dimensions(self) -> Grid:
        """Grid currently applied to the terminal."""
        return Grid(self.grid.columns, self.grid.lines)

    def propose(self) -> Grid | None:
        """Grid that fits the measured container, or None before a measurement."""
        if self.container is None:
            return None
        cols = max(1, math.floor(self.container.width / self.cell_width))
        rows = max(1, math.floor(self.container.height / self.cell_height))
        return Grid(cols, rows)

    def measure(self, width: float, height: float) -> None:
        """The renderer's own view of its box changed."""
        self.container = Size(width, height)
        self.request_fit()

    # RendererBridge

    def request_fit(self) -> None:
        """Send a dimension request once the debounce window is quiet."""
        if self._closed:
            return
        if self._debounce_timer is not None:
            self._debounce_timer.cancel()
        self._debounce_timer = self._call_later(self.debounce, self._send_request)

    def fit(self) -> None:
        """Apply the proposed grid without asking the host."""
        grid = self.propose()
        if grid is not None:
            self._apply(grid)

    def confirm_dimensions(self, cols: int, rows: int) -> None:
        """The host accepted a grid; stop retrying and apply it."""
        self._cancel_retry()
        self.pending = None
        self._apply(Grid(cols, rows))

    def push_input(self, data: str) -> None:
        """Queue input typed on the host side for the remote session."""
        self.input_queue.append(data)
        if self._on_input is not None:
            self._on_input(data)

    # Messages to the host

    def notify_connected(self) -> None:
        self._post({"type": "connected"})

    def notify_disconnected(self, reason: str | None = None) -> None:
        message: dict[str, Any] = {"type": "disconnected"}
        if reason:
            message["reason"] = reason
        self._post(message)

    def notify_reconnecting(self) -> None:
        self._post({"type": "reconnecting"})

    def copy(self, text: str) -> None:
        self._post({"type": "copy", "text": text})

    def write(self, data: bytes | str) -> None:
        """Feed pane output into the terminal grid."""
        self.grid.feed(data)

    def drain_input(self) -> list[str]:
        items = list(self.input_queue)
        self.input_queue.clear()
        return items

    def cancel_request(self) -> None:
        """Drop the pending request and its debounce and retry timers."""
        if self._debounce_timer is not None:
            self._debounce_timer.cancel()
            self._debounce_timer = None
        self._cancel_retry()
        self.pending = None

    def close(self) -> None:
        self._closed = True
        self.cancel_request()

    def _post(self, message: dict[str, Any]) -> None:
        if not self._closed:
            self.post_message(json.dumps(message))

    def _send_request(self) -> None:
        self._debounce_timer = None
        grid = self.propose()
        if grid is None or self.container is None or self._closed:
            return
        self.pending = grid
        self._cancel_retry()
        self._retry_timer = self._call_later(self.retry, self._retry)
        self._post(
            {
                "type": "dimensionRequest",
                "container": {
                    "width": round(self.container.width),
                    "height": round(self.container.height),
                },
                "proposed": {"cols": grid.cols, "rows": grid.rows},
            }
        )

    def _retry(self) -> None:
        self._retry_timer = None
        if self.pending is not None:
            logger.debug("dimension_request_retry", cols=self.pending.cols, rows=self.pending.rows)
            self._send_request()

    def _cancel_retry(self) -> None:
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None

    def _apply(self, grid: Grid) -> None:
        if grid != self.dimensions:
            self.grid.resize(grid.cols, grid.rows)
            logger.debug("terminal_resized", cols=grid.cols, rows=grid.rows)
