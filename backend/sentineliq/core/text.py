from __future__ import annotations

"""Text and URL helpers shared by WireScanner and Cortex.

Deterministic normalization only: no scoring, no language handling.
"""

import html
import re
from typing import Iterator, Sequence, TypeVar
from urllib.parse import urlparse


T = TypeVar("T")

_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")
# C0/C1 control characters except tab/newline/carriage return.
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")
_HTTP_URL_RE = re.compile(r"^https?://[^ \"']+$", re.IGNORECASE)


def strip_html(text: str) -> str:
    return _TAG_RE.sub(" ", text or "")


def collapse_whitespace(text: str) -> str:
    return _WS_RE.sub(" ", text or "").strip()


def truncate(text: str, max_length: int, *, suffix: str = "") -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length] + suffix


def clean_string(text: str | None, *, max_length: int = 1000) -> str:
    """Feed field cleanup: tags out, entities decoded (`&nbsp;` -> space), one-line, bounded."""
    if not text:
        return ""
    t = html.unescape(strip_html(str(text))).replace("\xa0", " ")
    return truncate(collapse_whitespace(t), max_length)


def clean_text(text: str | None) -> str:
    """Article body cleanup: tags, entities and control characters removed."""
    if not text:
        return ""
    t = html.unescape(strip_html(str(text))).replace("\xa0", " ")
    t = _CONTROL_RE.sub("", t)
    return collapse_whitespace(t)


def is_http_url(url: str | None) -> bool:
    """True for absolute http(s) links without spaces or quotes."""
    if not url:
        return False
    return bool(_HTTP_URL_RE.match(url.strip()))


def is_well_formed_url(url: str | None) -> bool:
    if not url:
        return False
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return False
    return bool(parsed.scheme) and bool(parsed.netloc)


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    if size < 1:
        raise ValueError("chunk size must be >= 1")
    for i in range(0, len(items), size):
        yield list(items[i : i + size])
