"""A remote tmux session shown in a negotiated terminal grid.

:class:`SessionTerminal` wires a :class:`~termview.renderer.TerminalRenderer`
to a :class:`~termview.negotiation.DimensionNegotiator` and commits every
reconciled grid to the agent with ``resize_session``.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import structlog

from hostlink.errors import AgentError
from hostlink.models import TerminalConfig

from .grid import TerminalGrid
from .negotiation import DimensionNegotiator, NegotiationMode
from .renderer import TerminalRenderer

if TYPE_CHECKING:
    from collections.abc import Callable

    from hostlink.client import RemoteAgentClient

    from .negotiation import ConnectionEvent, CopyRequest, Grid, TimerHandle

logger = structlog.get_logger(__name__)


class SessionTerminal:
    """Terminal view of one tmux session on one agent.

    Example:
        terminal = SessionTerminal(client, "main")
        await terminal.load()
        terminal.layout(640, 360)
        await terminal.drain()       # resize committed to the agent
    """

    def __init__(
        self,
        client: RemoteAgentClient,
        session_name: str,
        *,
        config: TerminalConfig | None = None,
        mode: NegotiationMode = NegotiationMode.STRICT,
        on_event: Callable[[ConnectionEvent | CopyRequest], None] | None = None,
        call_later: Callable[[float, Callable[[], None]], TimerHandle] | None = None,
    ) -> None:
        self.client = client
        self.session_name = session_name
        self.config = config or TerminalConfig()
        self.last_error: str | None = None
        self._commit_task: asyncio.Task[None] | None = None
        self._input_tasks: set[asyncio.Task[None]] = set()

        self.grid = TerminalGrid(scrollback_lines=self.config.scrollback_lines)
        self.renderer = TerminalRenderer(
            self._deliver,
            cell_width=self.config.cell_width,
            cell_height=self.config.cell_height,
            grid=self.grid,
            on_input=self._forward_input,
            call_later=call_later,
        )
        self.negotiator = DimensionNegotiator(
            self.renderer,
            mode=mode,
            on_commit=self._commit,
            on_event=on_event,
            layout_tolerance=self.config.layout_tolerance,
            match_tolerance=self.config.match_tolerance,
            call_later=call_later,
        )

    def _deliver(self, message: str) -> None:
        self.negotiator.handle_message(message)

    async def load(self, lines: int | None = None) -> None:
        """Seed the grid from a capture of the pane, then start negotiating."""
        capture = await self.client.capture_session(
            self.session_name, lines=lines or self.grid.lines
        )
        self.grid.feed("\r\n".join(capture.lines))
        self.negotiator.on_load_complete()

    def layout(
        self, width: float, height: float, renderer_size: tuple[float, float] | None = None
    ) -> None:
        """Report a host layout pass.

        Args:
            width: Container width measured by the host, in px.
            height: Container height measured by the host, in px.
            renderer_size: The renderer's own measurement when it differs.
        """
        self.negotiator.on_layout(width, height)
        self.renderer.measure(*(renderer_size or (width, height)))

    def send_input(self, text: str) -> None:
        self.renderer.push_input(text)

    async def switch(self, session_name: str, lines: int | None = None) -> None:
        """Show another session and negotiate its grid from scratch.

        The request measured for the old content and a resize still on its
        way to the old session are dropped before the new pane is loaded.
        """
        self.renderer.cancel_request()
        self.negotiator.reset()
        await self._cancel_commit()
        self.session_name = session_name
        self.grid.reset()
        await self.load(lines)

    async def drain(self) -> None:
        """Wait for the pending resize and input to reach the agent."""
        tasks: list[asyncio.Task[Any]] = list(self._input_tasks)
        if self._commit_task is not None:
            tasks.append(self._commit_task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def aclose(self) -> None:
        self.renderer.close()
        self.negotiator.reset()
        tasks = list(self._input_tasks)
        if self._commit_task is not None:
            tasks.append(self._commit_task)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _cancel_commit(self) -> None:
        task, self._commit_task = self._commit_task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    def _commit(self, grid: Grid) -> None:
        # The newest reconciled grid supersedes one still being sent
        if self._commit_task is not None and not self._commit_task.done():
            self._commit_task.cancel()
        self._commit_task = asyncio.get_running_loop().create_task(
            self._resize(self.session_name, grid)
        )

    async def _resize(self, session_name: str, grid: Grid) -> None:
        try:
            await self.client.resize_session(session_name, grid.cols, grid.rows)
        except AgentError as e:
            self.last_error = str(e)
            logger.warning(
                "session_resize_failed",
                session=session_name,
                error=str(e),
                host=self.client.host.id,
            )
            return
        self.last_error = None
        logger.debug("session_resized", session=session_name, cols=grid.cols, rows=grid.rows)

    def _forward_input(self, text: str) -> None:
        task = asyncio.get_running_loop().create_task(self._send(self.session_name, text))
        self._input_tasks.add(task)
        task.add_done_callback(self._input_tasks.discard)

    async def _send(self, session_name: str, text: str) -> None:
        try:
            await self.client.send_text(session_name, text)
        except AgentError as e:
            self.last_error = str(e)
            logger.warning("session_input_failed", session=session_name, error=str(e))
