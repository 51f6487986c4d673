"""ANSI SGR decoding into styled text segments.

:func:`decode` turns text containing ``ESC [ <params> m`` sequences into an
ordered list of :class:`TextSegment`. :class:`AnsiStreamDecoder` does the same
for output that arrives in chunks, carrying the style and any incomplete
escape sequence over to the next chunk.

Decoding never raises. Sequences that are malformed or incomplete at the end
of the input are kept as literal text.

Example:
    >>> [(s.text, s.style.foreground) for s in decode("\\x1b[31mred\\x1b[0mplain")]
    [('red', '#800000'), ('plain', None)]
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from .palette import rgb_to_hex, sgr_color, xterm_color

ESC = "\x1b"

SGR_PATTERN = re.compile(r"\x1b\[([0-9;:]*)m")
# An escape sequence cut off at the end of a chunk
_INCOMPLETE_TAIL = re.compile(r"\x1b(?:\[[0-9;:]*)?\Z")


@dataclass(frozen=True, slots=True)
class TextStyle:
    """Immutable snapshot of the SGR state. Colours are ``#RRGGBB`` or ``None``."""

    foreground: str | None = None
    background: str | None = None
    bold: bool = False
    dim: bool = False
    italic: bool = False
    underline: bool = False
    strikethrough: bool = False

    @property
    def is_plain(self) -> bool:
        return self == PLAIN


PLAIN = TextStyle()


@dataclass(frozen=True, slots=True)
class TextSegment:
    text: str
    style: TextStyle = PLAIN


@dataclass
class StyleState:
    """Mutable SGR accumulator for one decode pass or one stream."""

    foreground: str | None = None
    background: str | None = None
    bold: bool = False
    dim: bool = False
    italic: bool = False
    underline: bool = False
    strikethrough: bool = False

    def reset(self) -> None:
        self.foreground = None
        self.background = None
        self.bold = False
        self.dim = False
        self.italic = False
        self.underline = False
        self.strikethrough = False

    def snapshot(self) -> TextStyle:
        return TextStyle(
            foreground=self.foreground,
            background=self.background,
            bold=self.bold,
            dim=self.dim,
            italic=self.italic,
            underline=self.underline,
            strikethrough=self.strikethrough,
        )

    def _set_color(self, code: int, color: str | None) -> None:
        if color is None:
            return
        if code == 38:
            self.foreground = color
        else:
            self.background = color

    def apply(self, codes: list[int | None]) -> None:
        """Apply parsed SGR parameters left to right.

        ``None`` marks a parameter that did not parse; it is skipped but still
        occupies its slot.
        """
        i = 0
        while i < len(codes):
            code = codes[i]
            i += 1
            if code is None:
                continue
            if code in (38, 48):
                mode = codes[i] if i < len(codes) else None
                if mode == 5:
                    index = codes[i + 1] if i + 1 < len(codes) else None
                    if index is not None:
                        self._set_color(code, xterm_color(index))
                    i += 2
                elif mode == 2:
                    rgb = codes[i + 1 : i + 4]
                    if len(rgb) == 3 and all(value is not None for value in rgb):
                        self._set_color(code, rgb_to_hex(*rgb))  # type: ignore[arg-type]
                    i += 4
                continue
            self._apply_simple(code)

    def _apply_simple(self, code: int) -> None:
        if code == 0:
            self.reset()
        elif code == 1:
            self.bold = True
        elif code == 2:
            self.dim = True
        elif code == 3:
            self.italic = True
        elif code == 4:
            self.underline = True
        elif code == 9:
            self.strikethrough = True
        elif code == 22:
            self.bold = False
            self.dim = False
        elif code == 23:
            self.italic = False
        elif code == 24:
            self.underline = False
        elif code == 29:
            self.strikethrough = False
        elif code == 39:
            self.foreground = None
        elif code == 49:
            self.background = None
        elif 30 <= code <= 37 or 90 <= code <= 97:
            self.foreground = sgr_color(code)
        elif 40 <= code <= 47 or 100 <= code <= 107:
            self.background = sgr_color(code)


def parse_params(raw: str) -> list[int | None]:
    """Split an SGR parameter string; empty parameters mean ``0``."""
    if not raw:
        return [0]
    codes: list[int | None] = []
    for part in raw.split(";"):
        if not part:
            codes.append(0)
            continue
        try:
            codes.append(int(part))
        except ValueError:
            codes.append(None)
    return codes


def _decode_into(text: str, state: StyleState, segments: list[TextSegment]) -> None:
    position = 0
    for match in SGR_PATTERN.finditer(text):
        if match.start() > position:
            segments.append(TextSegment(text[position : match.start()], state.snapshot()))
        state.apply(parse_params(match.group(1)))
        position = match.end()
    if position < len(text):
        segments.append(TextSegment(text[position:], state.snapshot()))


def decode(text: str) -> list[TextSegment]:
    """Decode ``text`` into styled segments.

    One segment is produced per non-empty literal run, styled with the state in
    effect where the run starts. Empty input yields an empty list.
    """
    segments: list[TextSegment] = []
    _decode_into(text, StyleState(), segments)
    return segments


class AnsiStreamDecoder:
    """Decodes output that arrives in chunks.

    Example:
        decoder = AnsiStreamDecoder()
        decoder.feed("\\x1b[3")   # nothing yet, the sequence is incomplete
        decoder.feed("2mok")      # [TextSegment("ok", green)]
    """

    def __init__(self) -> None:
        self.state = StyleState()
        self._pending = ""

    def feed(self, chunk: str) -> list[TextSegment]:
        text = self._pending + chunk
        self._pending = ""
        tail = _INCOMPLETE_TAIL.search(text)
        if tail is not None:
            self._pending = text[tail.start() :]
            text = text[: tail.start()]
        segments: list[TextSegment] = []
        _decode_into(text, self.state, segments)
        return segments

    def flush(self) -> list[TextSegment]:
        """Emit a held-back incomplete sequence as literal text."""
        if not self._pending:
            return []
        pending, self._pending = self._pending, ""
        return [TextSegment(pending, self.state.snapshot())]

    def reset(self) -> None:
        self.state.reset()
        self._pending = ""
