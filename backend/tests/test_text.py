from __future__ import annotations

import pytest

from sentineliq.core.text import (
    chunked,
    clean_string,
    clean_text,
    collapse_whitespace,
    is_http_url,
    is_well_formed_url,
    truncate,
)


def test_clean_string_strips_tags_and_decodes_entities():
    raw = "<p>Bitcoin&nbsp;ETF   <b>approved</b> &amp; listed</p>\n"
    assert clean_string(raw) == "Bitcoin ETF approved & listed"


def test_clean_string_truncates_to_max_length():
    assert clean_string("a" * 50, max_length=10) == "a" * 10
    assert clean_string(None) == ""
    assert clean_string("") == ""


def test_clean_text_removes_control_characters():
    assert clean_text("Hello\x00 \x07world\x1f") == "Hello world"
    assert clean_text("<div>a</div>\t<div>b</div>") == "a b"


def test_truncate_suffix_only_when_cut():
    assert truncate("short", 10, suffix="...") == "short"
    assert truncate("0123456789AB", 10, suffix="...") == "0123456789..."


def test_collapse_whitespace():
    assert collapse_whitespace("  a \n\n b\t c ") == "a b c"


@pytest.mark.parametrize(
    "url,expected",
    [
        ("https://example.com/a?b=1", True),
        ("http://example.com", True),
        ("ftp://example.com/file", False),
        ("https://example.com/a b", False),
        ('https://example.com/"quoted"', False),
        ("", False),
        (None, False),
    ],
)
def test_is_http_url(url, expected):
    assert is_http_url(url) is expected


def test_is_well_formed_url():
    assert is_well_formed_url("https://example.com/feed.xml")
    assert not is_well_formed_url("example.com/feed.xml")
    assert not is_well_formed_url("")


def test_chunked():
    assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]
    assert list(chunked([], 3)) == []
    with pytest.raises(ValueError):
        list(chunked([1], 0))
