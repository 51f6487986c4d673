"""Terminal dimension negotiation between the host layout and the renderer.

The host lays out a container and the embedded renderer draws a terminal grid
inside it. Both measure the container, and the two measurements can briefly
disagree while a layout settles. A grid is committed (and pushed to the remote
tmux pane) only once both sides agree.

Strict mode::

    IDLE --load complete / layout change--> AWAITING_PROPOSAL
    AWAITING_PROPOSAL --dimensionRequest within tolerance--> RECONCILED
    AWAITING_PROPOSAL --dimensionRequest out of tolerance--> AWAITING_PROPOSAL
    any --reset()--> IDLE

On a mismatch the host stays silent; the renderer retries on its own timer.

Fire-and-forget mode is for read-only log viewers: the host tells the renderer
to fit itself after load and again on a short delay ladder, and never
confirms anything.

Messages from the renderer are JSON objects::

    {"type": "dimensionRequest", "container": {"width": 640, "height": 360},
     "proposed": {"cols": 88, "rows": 24}}
    {"type": "connected"} / {"type": "disconnected", "reason": "..."}
    {"type": "reconnecting"} / {"type": "copy", "text": "..."}
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

import structlog

if TYPE_CHECKING:
    from collections.abc import Callable

logger = structlog.get_logger(__name__)

DEFAULT_LAYOUT_TOLERANCE = 2.0
DEFAULT_MATCH_TOLERANCE = 8.0
FIT_DELAYS: tuple[float, ...] = (0.0, 0.05, 0.15)


class NegotiationMode(str, Enum):
    STRICT = "strict"
    FIRE_AND_FORGET = "fire_and_forget"


class NegotiationState(str, Enum):
    IDLE = "idle"
    AWAITING_PROPOSAL = "awaiting_proposal"
    RECONCILED = "reconciled"


@dataclass(frozen=True)
class Size:
    width: float
    height: float

    def within(self, other: Size, tolerance: float) -> bool:
        """True when both axes differ by at most ``tolerance`` px."""
        return (
            abs(self.width - other.width) <= tolerance
            and abs(self.height - other.height) <= tolerance
        )


@dataclass(frozen=True)
class Grid:
    cols: int
    rows: int


@dataclass(frozen=True)
class DimensionProposal:
    """The renderer's measured container and the grid it wants to use."""

    container_size: Size
    proposed_grid: Grid


@dataclass(frozen=True)
class ConnectionEvent:
    """Renderer transport change: ``connected``, ``disconnected`` or ``reconnecting``."""

    kind: str
    reason: str | None = None


@dataclass(frozen=True)
class CopyRequest:
    text: str


RendererMessage = DimensionProposal | ConnectionEvent | CopyRequest

CONNECTION_EVENTS = frozenset({"connected", "disconnected", "reconnecting"})


class RendererBridge(Protocol):
    """Calls the host makes into the renderer."""

    def request_fit(self) -> None: ...

    def fit(self) -> None: ...

    def confirm_dimensions(self, cols: int, rows: int) -> None: ...

    def push_input(self, data: str) -> None: ...


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


def default_call_later(delay: float, callback: Callable[[], None]) -> TimerHandle:
    return asyncio.get_running_loop().call_later(delay, callback)


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def parse_renderer_message(raw: str | Mapping[str, Any]) -> RendererMessage | None:
    """Parse a renderer message; unknown or malformed messages yield ``None``."""
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return None
    if not isinstance(raw, Mapping):
        return None

    kind = raw.get("type")
    if kind == "dimensionRequest":
        container = raw.get("container")
        proposed = raw.get("proposed")
        if not isinstance(container, Mapping) or not isinstance(proposed, Mapping):
            return None
        width = _number(container.get("width"))
        height = _number(container.get("height"))
        cols = _number(proposed.get("cols"))
        rows = _number(proposed.get("rows"))
        if width is None or height is None or cols is None or rows is None:
            return None
        if cols < 1 or rows < 1:
            return None
        return DimensionProposal(Size(width, height), Grid(int(cols), int(rows)))
    if kind in CONNECTION_EVENTS:
        reason = raw.get("reason")
        return ConnectionEvent(kind, reason if isinstance(reason, str) else None)
    if kind == "copy":
        text = raw.get("text")
        return CopyRequest(text) if isinstance(text, str) else None
    return None


class DimensionNegotiator:
    """Host side of the renderer size handshake.

    The host feeds in its own container measurements (:meth:`on_layout`), the
    renderer's load signal (:meth:`on_load_complete`) and every renderer
    message (:meth:`handle_message`). Confirmed grids are reported through
    ``on_commit``; the other renderer messages go to ``on_event``.
    """

    def __init__(
        self,
        bridge: RendererBridge,
        *,
        mode: NegotiationMode = NegotiationMode.STRICT,
        on_commit: Callable[[Grid], None] | None = None,
        on_event: Callable[[ConnectionEvent | CopyRequest], None] | None = None,
        layout_tolerance: float = DEFAULT_LAYOUT_TOLERANCE,
        match_tolerance: float = DEFAULT_MATCH_TOLERANCE,
        call_later: Callable[[float, Callable[[], None]], TimerHandle] | None = None,
        fit_delays: tuple[float, ...] = FIT_DELAYS,
    ) -> None:
        self.bridge = bridge
        self.mode = mode
        self.layout_tolerance = layout_tolerance
        self.match_tolerance = match_tolerance
        self.fit_delays = fit_delays
        self._on_commit = on_commit
        self._on_event = on_event
        self._call_later = call_later or default_call_later

        self.state = NegotiationState.IDLE
        self.layout: Size | None = None
        self.pending: DimensionProposal | None = None
        self.committed: Grid | None = None
        self._loaded = False
        self._fit_timers: list[TimerHandle] = []

    @property
    def loaded(self) -> bool:
        return self._loaded

    def on_load_complete(self) -> None:
        """The renderer finished loading new content."""
        self._loaded = True
        if self.mode is NegotiationMode.FIRE_AND_FORGET:
            self._schedule_fits()
        else:
            self._request_proposal("load")

    def on_layout(self, width: float, height: float) -> bool:
        """Record the host's measurement of the renderer container.

        Returns:
            True if the change exceeded the layout tolerance and was recorded.
        """
        size = Size(width, height)
        if self.layout is not None and size.within(self.layout, self.layout_tolerance):
            return False
        self.layout = size
        if not self._loaded:
            return True
        if self.mode is NegotiationMode.FIRE_AND_FORGET:
            self._schedule_fits()
        else:
            self._request_proposal("layout")
        return True

    def handle_message(self, raw: str | Mapping[str, Any]) -> RendererMessage | None:
        """Process one message posted by the renderer."""
        message = parse_renderer_message(raw)
        if message is None:
            logger.debug("renderer_message_ignored")
        elif isinstance(message, DimensionProposal):
            self._on_proposal(message)
        elif self._on_event is not None:
            self._on_event(message)
        return message

    def reset(self) -> None:
        """Content source changed: forget pending proposals and the committed grid."""
        for timer in self._fit_timers:
            timer.cancel()
        self._fit_timers.clear()
        self.state = NegotiationState.IDLE
        self.pending = None
        self.committed = None
        self._loaded = False

    def _request_proposal(self, reason: str) -> None:
        self.state = NegotiationState.AWAITING_PROPOSAL
        self.pending = None
        logger.debug("dimension_proposal_requested", reason=reason)
        self.bridge.request_fit()

    def _schedule_fits(self) -> None:
        for timer in self._fit_timers:
            timer.cancel()
        self._fit_timers = [self._call_later(delay, self._fit) for delay in self.fit_delays]

    def _fit(self) -> None:
        self.bridge.fit()

    def _on_proposal(self, proposal: DimensionProposal) -> None:
        if self.mode is NegotiationMode.FIRE_AND_FORGET:
            return
        if self.state is NegotiationState.IDLE:
            logger.debug("dimension_proposal_while_idle")
            return
        self.pending = proposal
        if self.layout is None or not proposal.container_size.within(
            self.layout, self.match_tolerance
        ):
            logger.debug(
                "dimension_proposal_mismatch",
                container=(proposal.container_size.width, proposal.container_size.height),
                layout=(self.layout.width, self.layout.height) if self.layout else None,
            )
            self.state = NegotiationState.AWAITING_PROPOSAL
            return

        grid = proposal.proposed_grid
        self.pending = None
        self.state = NegotiationState.RECONCILED
        self.bridge.confirm_dimensions(grid.cols, grid.rows)
        if grid == self.committed:
            return
        self.committed = grid
        logger.debug("dimensions_committed", cols=grid.cols, rows=grid.rows)
        if self._on_commit is not None:
            self._on_commit(grid)
