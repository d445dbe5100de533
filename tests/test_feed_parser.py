"""Tests for feed payload parsing and video id extraction."""

import json

import pytest
from conftest import gviz_text

from vidwatch.exceptions import MalformedPayloadError
from vidwatch.feed import UNRESOLVED_TITLE, Record, extract_payload, extract_video_id, parse_feed


class TestExtractVideoId:
    """Test the four URL forms and their precedence."""

    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("https://www.youtube.com/watch?v=dQw4w9WgXcQ", "dQw4w9WgXcQ"),
            ("https://www.youtube.com/watch?feature=share&v=dQw4w9WgXcQ", "dQw4w9WgXcQ"),
            ("https://youtu.be/dQw4w9WgXcQ", "dQw4w9WgXcQ"),
            ("https://youtu.be/dQw4w9WgXcQ?t=42", "dQw4w9WgXcQ"),
            ("https://www.youtube.com/embed/dQw4w9WgXcQ", "dQw4w9WgXcQ"),
            ("dQw4w9WgXcQ", "dQw4w9WgXcQ"),
            ("  a-b_c-d_e-f  ", "a-b_c-d_e-f"),
        ],
        ids=["query", "query-later-param", "short", "short-with-time", "embed", "bare", "bare-padded"],
    )
    def test_recognized_forms(self, url: str, expected: str) -> None:
        assert extract_video_id(url) == expected

    @pytest.mark.parametrize(
        "url",
        [
            None,
            "",
            "https://example.com/video",
            "https://www.youtube.com/watch?v=short",
            "dQw4w9WgXcQx",  # 12 characters
            "https://www.youtube.com/watch?v=dQw4w9WgXcQxyz",
        ],
        ids=["none", "empty", "no-id", "too-short", "bare-too-long", "query-too-long"],
    )
    def test_unrecognized(self, url: str | None) -> None:
        assert extract_video_id(url) is None

    def test_query_form_wins_over_embed(self) -> None:
        """The first matching pattern decides, even if a later one also matches."""
        url = "https://www.youtube.com/embed/AAAAAAAAAAA?v=BBBBBBBBBBB"
        assert extract_video_id(url) == "BBBBBBBBBBB"

    def test_short_form_wins_over_embed(self) -> None:
        url = "https://youtu.be/CCCCCCCCCCC/embed/DDDDDDDDDDD"
        assert extract_video_id(url) == "CCCCCCCCCCC"


class TestExtractPayload:
    """Test locating JSON inside the wrapper text."""

    def test_unwraps_gviz_response(self) -> None:
        payload = extract_payload(gviz_text([("A", "x")]))
        assert payload["status"] == "ok"
        assert payload["table"]["rows"][0]["c"][0]["v"] == "A"

    def test_parentheses_inside_titles(self) -> None:
        """The payload ends at the last delimiter, not the first."""
        payload = extract_payload(gviz_text([("Live (part 2)", "x")]))
        assert payload["table"]["rows"][0]["c"][0]["v"] == "Live (part 2)"

    def test_custom_delimiters(self) -> None:
        assert extract_payload('while(1);<<{"a": 1}>>', "<<", ">>") == {"a": 1}

    @pytest.mark.parametrize(
        "text",
        ["", "no delimiters at all", ")(", "setResponse(not json);", "setResponse([1, 2]);"],
        ids=["empty", "missing", "reversed", "invalid-json", "not-an-object"],
    )
    def test_malformed(self, text: str) -> None:
        with pytest.raises(MalformedPayloadError):
            extract_payload(text)


class TestParseFeed:
    """Test turning table rows into records."""

    def test_titles_and_sentinel(self) -> None:
        text = gviz_text(
            [
                ("A", "https://x/watch?v=aaaaaaaaaaa"),
                ("", "https://x/watch?v=bbbbbbbbbbb"),
            ]
        )
        records = parse_feed(text)
        assert records == [Record("aaaaaaaaaaa"), Record("bbbbbbbbbbb")]
        assert [r.title for r in records] == ["A", "New Video"]

    def test_rows_without_id_are_skipped(self) -> None:
        text = gviz_text(
            [
                ("Header", "URL"),
                ("Good", "https://youtu.be/ccccccccccc"),
                ("No link", None),
            ]
        )
        assert [r.id for r in parse_feed(text)] == ["ccccccccccc"]

    def test_missing_and_null_cells(self) -> None:
        payload = {
            "table": {
                "rows": [
                    {"c": [None, {"v": "https://youtu.be/ddddddddddd"}]},
                    {"c": [{"v": "only a title"}]},
                    {"c": None},
                    "garbage",
                ]
            }
        }
        records = parse_feed("x(" + json.dumps(payload) + ")")
        assert records == [Record("ddddddddddd")]
        assert records[0].title == UNRESOLVED_TITLE

    def test_missing_table_yields_nothing(self) -> None:
        assert parse_feed('x({"status": "error"})') == []

    def test_non_string_title_is_stringified(self) -> None:
        payload = '{"table": {"rows": [{"c": [{"v": 2024}, {"v": "eeeeeeeeeee"}]}]}}'
        assert parse_feed("(" + payload + ")")[0].title == "2024"


class TestRecord:
    """Test record identity."""

    def test_identity_ignores_title(self) -> None:
        assert Record("aaaaaaaaaaa", "Old") == Record("aaaaaaaaaaa", "New")
        assert len({Record("aaaaaaaaaaa", "Old"), Record("aaaaaaaaaaa", "New")}) == 1

    def test_has_title(self) -> None:
        assert Record("aaaaaaaaaaa", "Talk").has_title
        assert not Record("aaaaaaaaaaa").has_title
