"""Tests for the ANSI SGR decoder."""

from __future__ import annotations

import pytest

from termview.ansi import (
    PLAIN,
    AnsiStreamDecoder,
    StyleState,
    TextSegment,
    TextStyle,
    decode,
    parse_params,
)


def styles(text: str) -> list[tuple[str, TextStyle]]:
    return [(s.text, s.style) for s in decode(text)]


class TestDecodePlainText:
    """Tests for input without escape sequences."""

    def test_plain_text_is_one_segment(self) -> None:
        assert decode("hello world") == [TextSegment("hello world", PLAIN)]

    def test_empty_input_has_no_segments(self) -> None:
        assert decode("") == []

    def test_only_escapes_has_no_segments(self) -> None:
        assert decode("\x1b[1m\x1b[0m") == []


class TestDecodeColors:
    """Tests for foreground and background colours."""

    def test_red_then_plain(self) -> None:
        """Test a colour run followed by a reset yields two segments."""
        assert styles("\x1b[31mred\x1b[0mplain") == [
            ("red", TextStyle(foreground="#800000")),
            ("plain", PLAIN),
        ]

    def test_bright_colors(self) -> None:
        assert decode("\x1b[97;100mX")[0].style == TextStyle(
            foreground="#FFFFFF", background="#808080"
        )

    def test_background(self) -> None:
        assert decode("\x1b[42mX")[0].style.background == "#008000"

    @pytest.mark.parametrize(
        ("index", "expected"),
        [
            (1, "#800000"),
            (9, "#FF0000"),
            (21, "#0000FF"),
            (196, "#FF0000"),
            (232, "#080808"),
            (255, "#EEEEEE"),
        ],
    )
    def test_256_color_table(self, index: int, expected: str) -> None:
        assert decode(f"\x1b[38;5;{index}mX")[0].style.foreground == expected

    def test_256_color_background(self) -> None:
        assert decode("\x1b[48;5;196mX")[0].style.background == "#FF0000"

    def test_truecolor_is_clamped(self) -> None:
        assert decode("\x1b[38;2;300;128;0mX")[0].style.foreground == "#FF8000"

    def test_truecolor_background(self) -> None:
        assert decode("\x1b[48;2;1;2;3mX")[0].style.background == "#010203"

    def test_extended_color_consumes_its_slots(self) -> None:
        """Test the parameters after 38;2 are not read as codes of their own."""
        style = decode("\x1b[38;2;1;2;3;4mX")[0].style
        assert style.foreground == "#010203"
        assert style.underline is True
        assert style.dim is False

    def test_default_color_codes(self) -> None:
        assert styles("\x1b[31;41mA\x1b[39mB\x1b[49mC") == [
            ("A", TextStyle(foreground="#800000", background="#800000")),
            ("B", TextStyle(background="#800000")),
            ("C", PLAIN),
        ]

    @pytest.mark.parametrize("sequence", ["\x1b[38;5m", "\x1b[38;2;1;2m", "\x1b[48;9m"])
    def test_incomplete_extended_color_is_ignored(self, sequence: str) -> None:
        assert decode(f"{sequence}X")[0].style.foreground is None
        assert decode(f"{sequence}X")[0].style.background is None


class TestDecodeAttributes:
    """Tests for text attributes and resets."""

    def test_attributes(self) -> None:
        style = decode("\x1b[1;2;3;4;9mX")[0].style
        assert style == TextStyle(
            bold=True, dim=True, italic=True, underline=True, strikethrough=True
        )

    def test_22_clears_bold_and_dim(self) -> None:
        assert decode("\x1b[1;2;31m\x1b[22mX")[0].style == TextStyle(foreground="#800000")

    def test_attribute_resets(self) -> None:
        assert decode("\x1b[3;4;9m\x1b[23;24;29mX")[0].style == PLAIN

    def test_empty_parameter_list_resets(self) -> None:
        assert styles("\x1b[1mA\x1b[mB") == [("A", TextStyle(bold=True)), ("B", PLAIN)]

    def test_empty_parameter_is_zero(self) -> None:
        assert decode("\x1b[31m\x1b[;1mX")[0].style == TextStyle(bold=True)

    def test_unknown_codes_are_ignored(self) -> None:
        assert decode("\x1b[5;53;32mX")[0].style == TextStyle(foreground="#008000")

    def test_non_integer_parameters_are_skipped(self) -> None:
        assert decode("\x1b[38:5:196;1mX")[0].style == TextStyle(bold=True)

    def test_style_is_taken_when_run_starts(self) -> None:
        assert styles("a\x1b[1mb\x1b[31mc") == [
            ("a", PLAIN),
            ("b", TextStyle(bold=True)),
            ("c", TextStyle(bold=True, foreground="#800000")),
        ]


class TestDecodeMalformed:
    """Tests for malformed and incomplete sequences."""

    def test_incomplete_sequence_at_end_is_literal(self) -> None:
        assert decode("abc\x1b[31") == [TextSegment("abc\x1b[31")]

    def test_malformed_sequence_is_literal(self) -> None:
        assert decode("\x1b[31;xmA") == [TextSegment("\x1b[31;xmA")]

    def test_other_escape_sequences_are_literal(self) -> None:
        assert decode("\x1b[2Kok") == [TextSegment("\x1b[2Kok")]

    @pytest.mark.parametrize(
        "text", ["\x1b", "\x1b[", "\x1b[[[m", "\x1b[999999999999999999m", "\x1b[38;5;-1m"]
    )
    def test_never_raises(self, text: str) -> None:
        decode(text)


class TestParseParams:
    """Tests for parse_params."""

    def test_parse(self) -> None:
        assert parse_params("1;;31:2") == [1, 0, None]

    def test_empty(self) -> None:
        assert parse_params("") == [0]


class TestStyleState:
    """Tests for StyleState."""

    def test_snapshot_is_independent(self) -> None:
        state = StyleState()
        state.apply([1])
        snapshot = state.snapshot()
        state.apply([0])

        assert snapshot.bold is True
        assert state.snapshot() == PLAIN


class TestAnsiStreamDecoder:
    """Tests for the chunked decoder."""

    def test_sequence_split_across_chunks(self) -> None:
        decoder = AnsiStreamDecoder()

        assert decoder.feed("\x1b[3") == []
        assert decoder.feed("2mok") == [TextSegment("ok", TextStyle(foreground="#008000"))]

    def test_style_carries_over(self) -> None:
        decoder = AnsiStreamDecoder()
        decoder.feed("\x1b[1mA")

        assert decoder.feed("B") == [TextSegment("B", TextStyle(bold=True))]

    def test_lone_escape_is_held_back(self) -> None:
        decoder = AnsiStreamDecoder()

        assert decoder.feed("x\x1b") == [TextSegment("x")]
        assert decoder.feed("[0my") == [TextSegment("y")]

    def test_flush_emits_pending_literal(self) -> None:
        decoder = AnsiStreamDecoder()
        decoder.feed("done\x1b[")

        assert decoder.flush() == [TextSegment("\x1b[")]
        assert decoder.flush() == []

    def test_matches_one_shot_decode(self) -> None:
        text = "\x1b[1;31merror\x1b[0m: \x1b[38;5;208mwarn\x1b[22m done"
        decoder = AnsiStreamDecoder()
        segments: list[TextSegment] = []
        for i in range(0, len(text), 3):
            segments.extend(decoder.feed(text[i : i + 3]))
        segments.extend(decoder.flush())

        merged = "".join(s.text for s in segments)
        assert merged == "".join(s.text for s in decode(text))
        assert {s.style for s in segments} == {s.style for s in decode(text)}

    def test_reset(self) -> None:
        decoder = AnsiStreamDecoder()
        decoder.feed("\x1b[1mA\x1b[3")
        decoder.reset()

        assert decoder.feed("B") == [TextSegment("B")]
