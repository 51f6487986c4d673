"""Colour palette shared by the ANSI decoder and the terminal grid.

Foreground and background use the same canonical xterm palette. Colours are
returned as upper-case ``#RRGGBB`` strings.
"""

from __future__ import annotations

BASIC_COLORS: tuple[str, ...] = (
    "#000000",
    "#800000",
    "#008000",
    "#808000",
    "#000080",
    "#800080",
    "#008080",
    "#C0C0C0",
)

BRIGHT_COLORS: tuple[str, ...] = (
    "#808080",
    "#FF0000",
    "#00FF00",
    "#FFFF00",
    "#0000FF",
    "#FF00FF",
    "#00FFFF",
    "#FFFFFF",
)

CUBE_STEPS: tuple[int, ...] = (0, 95, 135, 175, 215, 255)

# Colour names used by pyte, mapped to palette indexes
PYTE_COLOR_INDEXES: dict[str, int] = {
    "black": 0,
    "red": 1,
    "green": 2,
    "brown": 3,
    "yellow": 3,
    "blue": 4,
    "magenta": 5,
    "cyan": 6,
    "white": 7,
    "brightblack": 8,
    "brightred": 9,
    "brightgreen": 10,
    "brightbrown": 11,
    "brightyellow": 11,
    "brightblue": 12,
    "brightmagenta": 13,
    "brightcyan": 14,
    "brightwhite": 15,
}


def _clamp(value: int) -> int:
    return min(max(value, 0), 255)


def rgb_to_hex(red: int, green: int, blue: int) -> str:
    """Format a colour, clamping each component to 0..255."""
    return f"#{_clamp(red):02X}{_clamp(green):02X}{_clamp(blue):02X}"


def xterm_color(index: int) -> str | None:
    """Resolve an index of the 256-colour table.

    0-7 are the basic colours, 8-15 the bright ones, 16-231 the 6x6x6 cube and
    232-255 a grey ramp. Indexes outside 0..255 resolve to ``None``.
    """
    if index < 0 or index > 255:
        return None
    if index < 8:
        return BASIC_COLORS[index]
    if index < 16:
        return BRIGHT_COLORS[index - 8]
    if index <= 231:
        offset = index - 16
        return rgb_to_hex(
            CUBE_STEPS[offset // 36],
            CUBE_STEPS[(offset % 36) // 6],
            CUBE_STEPS[offset % 6],
        )
    grey = 8 + (index - 232) * 10
    return rgb_to_hex(grey, grey, grey)


def sgr_color(code: int) -> str | None:
    """Colour selected by a 30-37, 90-97, 40-47 or 100-107 SGR code."""
    if 30 <= code <= 37:
        return BASIC_COLORS[code - 30]
    if 40 <= code <= 47:
        return BASIC_COLORS[code - 40]
    if 90 <= code <= 97:
        return BRIGHT_COLORS[code - 90]
    if 100 <= code <= 107:
        return BRIGHT_COLORS[code - 100]
    return None


def pyte_color(value: str) -> str | None:
    """Translate a pyte cell colour (name or hex digits) to ``#RRGGBB``.

    ``default`` and unknown values resolve to ``None``.
    """
    if value == "default":
        return None
    index = PYTE_COLOR_INDEXES.get(value)
    if index is not None:
        return xterm_color(index)
    if len(value) == 6:
        try:
            int(value, 16)
        except ValueError:
            return None
        return f"#{value.upper()}"
    return None
