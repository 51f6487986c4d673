"""Hostdeck terminal view library.

Decodes ANSI-styled output and keeps an embedded terminal grid in step with
the layout that hosts it.

Module Overview:
    ansi: SGR decoder producing styled text segments, one-shot and streaming
    grid: pyte-backed terminal grid with scrollback
    negotiation: Host side of the dimension handshake
    palette: Canonical xterm colour palette
    render: Rich rendering boundary and SGR re-encoding
    renderer: Renderer side of the dimension handshake
    session: A remote tmux session bound to a negotiated grid
"""

from termview.ansi import (
    AnsiStreamDecoder,
    StyleState,
    TextSegment,
    TextStyle,
    decode,
)
from termview.grid import TerminalGrid
from termview.negotiation import (
    ConnectionEvent,
    CopyRequest,
    DimensionNegotiator,
    DimensionProposal,
    Grid,
    NegotiationMode,
    NegotiationState,
    RendererBridge,
    Size,
    parse_renderer_message,
)
from termview.palette import rgb_to_hex, xterm_color
from termview.render import encode_segments, renderable_segments, strip_ansi, to_rich_text
from termview.renderer import TerminalRenderer
from termview.session import SessionTerminal

__all__ = [
    "AnsiStreamDecoder",
    "ConnectionEvent",
    "CopyRequest",
    "DimensionNegotiator",
    "DimensionProposal",
    "Grid",
    "NegotiationMode",
    "NegotiationState",
    "RendererBridge",
    "SessionTerminal",
    "Size",
    "StyleState",
    "TerminalGrid",
    "TerminalRenderer",
    "TextSegment",
    "TextStyle",
    "decode",
    "encode_segments",
    "parse_renderer_message",
    "renderable_segments",
    "rgb_to_hex",
    "strip_ansi",
    "to_rich_text",
    "xterm_color",
]
