"""
Tests for turning attribute runs into message ranges.

Tests cover:
- Link and mention ranges at exact offsets
- Round trip from encoded runs back to ranges
- UTF-16 offsets for text outside the BMP
- Clamping runs that reach past the text
- Effects, styles, one-time codes and unknown attributes
"""

import pytest

from extraction.builder import ranges_from_runs
from extraction.models import AttributeKind
from extraction.typedstream import decode
from tests.fixtures.typedstream_samples import (
    ATTACHMENT_KEY,
    BOLD_KEY,
    EFFECT_KEY,
    ITALIC_KEY,
    LINK_KEY,
    LINKED_RUNS,
    LINKED_TEXT,
    MENTION_KEY,
    OTP_KEY,
    PART_KEY,
    Url,
    attributed_body,
    linked_body,
)


def ranges_for(text, runs):
    return ranges_from_runs(decode(attributed_body(text, runs)).attributed_string())


def summary(ranges):
    return [(r.start, r.end, r.kind, r.value) for r in ranges]


class TestLinkAndMention:
    """Tests for the link-plus-mention message."""

    def test_exact_ranges(self):
        """Should produce exactly a link at [5, 12) and a mention at [20, 25)."""
        ranges, clamped = ranges_from_runs(decode(linked_body()).attributed_string())

        assert len(LINKED_TEXT) == 30
        assert clamped is False
        assert summary(ranges) == [
            (5, 12, AttributeKind.LINK, "https://example.com"),
            (20, 25, AttributeKind.MENTION, "+15551234567"),
        ]

    def test_covered_text(self):
        """Should cover the linked word and the mentioned name."""
        ranges, _ = ranges_from_runs(decode(linked_body()).attributed_string())
        assert [LINKED_TEXT[r.start:r.end] for r in ranges] == ["example", "Alice"]

    def test_runs_cover_text(self):
        """Should lay runs end to end over the whole text."""
        assert sum(length for length, _ in LINKED_RUNS) == len(LINKED_TEXT)


class TestRoundTrip:
    """Encoding runs and decoding them reproduces offsets and kinds."""

    @pytest.mark.parametrize(
        "text,runs,expected",
        [
            (
                "abcdefghij",
                [(3, {PART_KEY: 0, LINK_KEY: Url("https://a.example")}), (7, {PART_KEY: 0})],
                [(0, 3, AttributeKind.LINK)],
            ),
            (
                "abcdefghij",
                [(2, {PART_KEY: 0}), (3, {PART_KEY: 0, MENTION_KEY: "a@b.c"}),
                 (2, {PART_KEY: 0}), (3, {PART_KEY: 0, MENTION_KEY: "d@e.f"})],
                [(2, 5, AttributeKind.MENTION), (7, 10, AttributeKind.MENTION)],
            ),
            (
                "\ufffc\ufffc and text",
                [(1, {PART_KEY: 0, ATTACHMENT_KEY: "A"}), (1, {PART_KEY: 1, ATTACHMENT_KEY: "B"}),
                 (9, {PART_KEY: 2})],
                [(0, 1, AttributeKind.ATTACHMENT), (1, 2, AttributeKind.ATTACHMENT)],
            ),
            (
                "0123456789",
                [(4, {PART_KEY: 0, LINK_KEY: Url("https://x.example"), BOLD_KEY: 1}),
                 (6, {PART_KEY: 0, EFFECT_KEY: 5})],
                [(0, 4, AttributeKind.LINK), (0, 4, AttributeKind.STYLE),
                 (4, 10, AttributeKind.EFFECT)],
            ),
        ],
    )
    def test_offsets_and_kinds(self, text, runs, expected):
        """Should reproduce every encoded range."""
        ranges, clamped = ranges_for(text, runs)
        assert clamped is False
        assert [(r.start, r.end, r.kind) for r in ranges] == expected

    def test_same_kind_ranges_do_not_overlap(self):
        """Should never produce overlapping ranges of one kind."""
        ranges, _ = ranges_for(
            "abcdefghij",
            [(2, {LINK_KEY: Url("https://1")}), (2, {LINK_KEY: Url("https://2")}),
             (6, {LINK_KEY: Url("https://3")})],
        )
        links = [r for r in ranges if r.kind is AttributeKind.LINK]
        for first, second in zip(links, links[1:]):
            assert first.end <= second.start


class TestOffsets:
    """Tests for UTF-16 offsets and clamping."""

    def test_astral_characters(self):
        """Should count characters outside the BMP as two units."""
        ranges, clamped = ranges_for(
            "\U0001F600 hey", [(3, {PART_KEY: 0}), (3, {PART_KEY: 0, BOLD_KEY: 1})]
        )
        assert clamped is False
        assert summary(ranges) == [(3, 6, AttributeKind.STYLE, "bold")]

    def test_clamped_to_text(self):
        """Should clamp a run that reaches past the text."""
        ranges, clamped = ranges_for(
            "short", [(3, {PART_KEY: 0}), (10, {PART_KEY: 0, LINK_KEY: Url("https://x")})]
        )
        assert clamped is True
        assert summary(ranges) == [(3, 5, AttributeKind.LINK, "https://x")]

    def test_run_entirely_past_text(self):
        """Should drop a run that starts at or after the end of the text."""
        ranges, clamped = ranges_for(
            "ab", [(2, {PART_KEY: 0}), (3, {PART_KEY: 0, LINK_KEY: Url("https://x")})]
        )
        assert clamped is True
        assert ranges == ()

    def test_zero_length_run(self):
        """Should skip empty runs."""
        ranges, clamped = ranges_for(
            "ab", [(0, {LINK_KEY: Url("https://x")}), (2, {PART_KEY: 0})]
        )
        assert clamped is False
        assert ranges == ()


class TestAttributeKinds:
    """Tests for each attribute kind."""

    def test_structural_keys_only(self):
        """Should produce no ranges for message structure keys."""
        ranges, _ = ranges_for(
            "plain",
            [(5, {PART_KEY: 0, "__kIMBaseWritingDirectionAttributeName": -1})],
        )
        assert ranges == ()

    @pytest.mark.parametrize("effect_id,name", [(4, "ripple"), (12, "explode"), (99, "unknown(99)")])
    def test_effect(self, effect_id, name):
        """Should name text effects by id."""
        ranges, _ = ranges_for("boom", [(4, {PART_KEY: 0, EFFECT_KEY: effect_id})])
        assert summary(ranges) == [(0, 4, AttributeKind.EFFECT, name)]

    def test_styles_combined(self):
        """Should combine styles of one run into a single range."""
        ranges, _ = ranges_for("styled", [(6, {PART_KEY: 0, BOLD_KEY: 1, ITALIC_KEY: 1})])
        assert summary(ranges) == [(0, 6, AttributeKind.STYLE, "bold,italic")]

    def test_disabled_style(self):
        """Should ignore a style switched off."""
        ranges, _ = ranges_for("plain", [(5, {PART_KEY: 0, BOLD_KEY: 0})])
        assert ranges == ()

    def test_one_time_code(self):
        """Should mark one-time codes."""
        ranges, _ = ranges_for("Code 123456", [(5, {PART_KEY: 0}), (6, {PART_KEY: 0, OTP_KEY: 1})])
        assert [(r.start, r.end, r.kind) for r in ranges] == [(5, 11, AttributeKind.OTP)]

    def test_attachment_guid(self):
        """Should carry the attachment GUID."""
        ranges, _ = ranges_for("\ufffc", [(1, {PART_KEY: 0, ATTACHMENT_KEY: "AT-1"})])
        assert summary(ranges) == [(0, 1, AttributeKind.ATTACHMENT, "AT-1")]
        assert ranges[0].attachment_id is None

    def test_unknown_keys(self):
        """Should keep unrecognized keys as one unknown range."""
        ranges, _ = ranges_for(
            "future", [(6, {PART_KEY: 0, "__kIMZNewThing": 1, "__kIMANewThing": "x"})]
        )
        assert summary(ranges) == [
            (0, 6, AttributeKind.UNKNOWN, "__kIMANewThing,__kIMZNewThing")
        ]
