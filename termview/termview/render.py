"""Rendering boundary between decoded segments and what gets drawn.

Segments become Rich ``Text`` here. This module also owns the placeholder
rule: a view never receives an empty segment list, so empty output still
occupies a line.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from rich.style import Style
from rich.text import Text

from .ansi import TextSegment, decode

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .ansi import TextStyle

PLACEHOLDER = " "

# CSI sequences of any kind, and OSC sequences ended by BEL or ST
_CONTROL_SEQUENCE = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)")


def renderable_segments(text: str) -> list[TextSegment]:
    """Decode ``text`` for display; empty output yields one blank segment."""
    segments = decode(text)
    if not segments:
        return [TextSegment(PLACEHOLDER)]
    return segments


def build_style(style: TextStyle) -> Style:
    """Build a Rich Style from a decoded text style."""
    return Style(
        color=style.foreground,
        bgcolor=style.background,
        bold=style.bold or None,
        dim=style.dim or None,
        italic=style.italic or None,
        underline=style.underline or None,
        strike=style.strikethrough or None,
    )


def to_rich_text(source: str | Iterable[TextSegment]) -> Text:
    """Convert ANSI text or decoded segments to a Rich ``Text``.

    Args:
        source: Raw output (decoded with the placeholder rule) or segments.

    Returns:
        Text with one span per segment.
    """
    segments = renderable_segments(source) if isinstance(source, str) else source
    text = Text()
    for segment in segments:
        if segment.style.is_plain:
            text.append(segment.text)
        else:
            text.append(segment.text, style=build_style(segment.style))
    return text


def _sgr_codes(style: TextStyle) -> list[str]:
    codes = ["0"]
    if style.bold:
        codes.append("1")
    if style.dim:
        codes.append("2")
    if style.italic:
        codes.append("3")
    if style.underline:
        codes.append("4")
    if style.strikethrough:
        codes.append("9")
    for selector, color in (("38", style.foreground), ("48", style.background)):
        if color is not None:
            red, green, blue = (int(color[i : i + 2], 16) for i in (1, 3, 5))
            codes.append(f"{selector};2;{red};{green};{blue}")
    return codes


def encode_segments(segments: Iterable[TextSegment]) -> str:
    """Serialize segments back to SGR-coded text.

    Decoding the result yields the same segments. Every segment but a plain
    leading one is preceded by a full reset plus its own attributes, with
    colours written as truecolour.
    """
    parts: list[str] = []
    for segment in segments:
        if not segment.text:
            continue
        if parts or not segment.style.is_plain:
            parts.append(f"\x1b[{';'.join(_sgr_codes(segment.style))}m")
        parts.append(segment.text)
    return "".join(parts)


def strip_ansi(text: str) -> str:
    """Remove CSI and OSC escape sequences, keeping the literal text."""
    return _CONTROL_SEQUENCE.sub("", text)
