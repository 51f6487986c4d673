"""Terminal grid backed by pyte.

:class:`TerminalGrid` wraps pyte's ``HistoryScreen`` to emulate the remote
tmux pane at the negotiated size, with a scrollback buffer. Lines are read
back as :class:`~termview.ansi.TextSegment` runs resolved through the same
palette as the ANSI decoder.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pyte

from .ansi import TextSegment, TextStyle
from .palette import pyte_color

if TYPE_CHECKING:
    from collections.abc import Mapping

DEFAULT_COLUMNS = 80
DEFAULT_LINES = 24
DEFAULT_SCROLLBACK_LINES = 10000


def _char_style(char: pyte.screens.Char) -> TextStyle:
    foreground = pyte_color(char.fg)
    background = pyte_color(char.bg)
    if char.reverse:
        foreground, background = background, foreground
    return TextStyle(
        foreground=foreground,
        background=background,
        bold=char.bold,
        italic=char.italics,
        underline=char.underscore,
        strikethrough=char.strikethrough,
    )


class TerminalGrid:
    """Emulated terminal screen with scrollback.

    Example:
        grid = TerminalGrid(columns=80, lines=24)
        grid.feed(b"\\x1b[31mHello\\x1b[0m")
        grid.display[0]          # "Hello" padded to 80 columns
        grid.line_segments(0)    # [TextSegment("Hello", red)]
    """

    def __init__(
        self,
        columns: int = DEFAULT_COLUMNS,
        lines: int = DEFAULT_LINES,
        scrollback_lines: int = DEFAULT_SCROLLBACK_LINES,
    ) -> None:
        self._columns = columns
        self._lines = lines
        self._scrollback_lines = scrollback_lines
        self._screen = pyte.HistoryScreen(
            columns=columns,
            lines=lines,
            history=scrollback_lines,
            ratio=0.5,
        )
        self._stream = pyte.Stream(self._screen)
        # pyte's own dirty set is cleared by some operations
        self._dirty_lines: set[int] = set()

    @property
    def columns(self) -> int:
        return self._columns

    @property
    def lines(self) -> int:
        return self._lines

    @property
    def size(self) -> tuple[int, int]:
        """``(columns, lines)``."""
        return self._columns, self._lines

    @property
    def cursor(self) -> tuple[int, int]:
        """Cursor position as ``(x, y)``, 0-indexed."""
        return self._screen.cursor.x, self._screen.cursor.y

    @property
    def cursor_visible(self) -> bool:
        return not self._screen.cursor.hidden

    @property
    def display(self) -> list[str]:
        return list(self._screen.display)

    def feed(self, data: bytes | str) -> None:
        """Feed raw pane output, which may contain escape sequences."""
        text = data.decode("utf-8", errors="replace") if isinstance(data, bytes) else data
        self._stream.feed(text)
        self._dirty_lines.update(self._screen.dirty)

    def _row(self, line_number: int) -> Mapping[int, pyte.screens.Char]:
        return self._screen.buffer[line_number]

    def line_segments(self, line_number: int) -> list[TextSegment]:
        """Styled runs of one visible line, with trailing blank cells dropped.

        Returns an empty list for a blank line or a line number outside the
        screen.
        """
        if line_number < 0 or line_number >= self._lines:
            return []
        row = self._row(line_number)
        default = self._screen.default_char
        cells = [row[col] if col in row else default for col in range(self._columns)]
        while cells and cells[-1].data in (" ", "") and _char_style(cells[-1]).is_plain:
            cells.pop()

        segments: list[TextSegment] = []
        run: list[str] = []
        run_style: TextStyle | None = None
        for cell in cells:
            style = _char_style(cell)
            if style != run_style and run:
                segments.append(TextSegment("".join(run), run_style or TextStyle()))
                run = []
            run_style = style
            run.append(cell.data)
        if run:
            segments.append(TextSegment("".join(run), run_style or TextStyle()))
        return segments

    def history(self) -> list[str]:
        """Lines scrolled off the top, oldest first."""
        return [
            "".join(line[col].data if col in line else " " for col in range(self._columns))
            for line in self._screen.history.top
        ]

    def resize(self, columns: int, lines: int) -> None:
        """Resize to a negotiated grid; every line becomes dirty."""
        self._columns = columns
        self._lines = lines
        self._screen.resize(lines=lines, columns=columns)
        self._dirty_lines = set(range(lines))

    def reset(self) -> None:
        """Clear the screen and the scrollback, e.g. when the session changes."""
        self._screen.reset()
        self._screen.history.top.clear()
        self._screen.history.bottom.clear()
        self._dirty_lines = set(range(self._lines))

    def dirty_lines(self) -> set[int]:
        return self._dirty_lines | set(self._screen.dirty)

    def clear_dirty(self) -> None:
        self._dirty_lines.clear()
        self._screen.dirty.clear()
