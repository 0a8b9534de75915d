from __future__ import annotations

"""Article extraction from rendered HTML.

The browser renders the page; extraction works on the resulting DOM snapshot
with BeautifulSoup so the same rules apply to live pages and stored fixtures.

Order for the body text:
1. first article/content selector with more than 100 chars of text
2. all `<p>` texts longer than 20 chars, joined
3. readability summary of the page
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional, Sequence

from bs4 import BeautifulSoup
from readability import Document

from cortex.config import Selectors


logger = logging.getLogger("cortex.extraction")

UTC = timezone.utc

SUBSTANTIAL_CONTENT_CHARS = 100
MIN_PARAGRAPH_CHARS = 20


@dataclass(frozen=True, slots=True)
class RawExtraction:
    url: str
    title: str
    content: str
    published: str
    author: str
    extracted_at: datetime


def _text(el) -> str:
    return el.get_text(" ", strip=True) if el is not None else ""


def _first_text(soup: BeautifulSoup, selectors: Sequence[str]) -> str:
    for sel in selectors:
        text = _text(soup.select_one(sel))
        if text:
            return text
    return ""


def _first_attr(soup: BeautifulSoup, selectors: Sequence[str], attr: str) -> str:
    for sel in selectors:
        el = soup.select_one(sel)
        if el is not None and el.get(attr):
            return str(el.get(attr)).strip()
    return ""


def _readability_text(html: str) -> str:
    try:
        summary = Document(html).summary()
    except Exception as e:  # noqa: BLE001
        logger.debug("readability failed: %s", e)
        return ""
    return BeautifulSoup(summary, "html.parser").get_text(" ", strip=True)


def extract_content(html: str, url: str, selectors: Selectors) -> RawExtraction:
    soup = BeautifulSoup(html or "", "html.parser")
    for el in soup(["script", "style", "noscript"]):
        el.decompose()

    title = _first_text(soup, selectors.title)

    content = ""
    for sel in tuple(selectors.article) + tuple(selectors.content):
        text = _text(soup.select_one(sel))
        if len(text) > SUBSTANTIAL_CONTENT_CHARS:
            content = text
            break
    if not content:
        paragraphs = [t for t in (_text(p) for p in soup.find_all("p")) if len(t) > MIN_PARAGRAPH_CHARS]
        content = " ".join(paragraphs)
    if len(content) <= SUBSTANTIAL_CONTENT_CHARS:
        content = max(content, _readability_text(html), key=len)

    published = _first_attr(soup, selectors.date, "datetime") or _first_text(soup, selectors.date)
    author = _first_text(soup, selectors.author)

    return RawExtraction(
        url=url,
        title=title.strip(),
        content=content.strip(),
        published=published.strip(),
        author=author.strip(),
        extracted_at=datetime.now(tz=UTC),
    )


def parse_published(value: Optional[str]) -> Optional[datetime]:
    """ISO-8601 first, then the RFC 822 style used by feeds; None if unparseable."""
    if not value:
        return None
    v = value.strip()
    try:
        dt = datetime.fromisoformat(v.replace("Z", "+00:00"))
    except ValueError:
        try:
            dt = parsedate_to_datetime(v)
        except (TypeError, ValueError):
            return None
    if dt.tzinfo is None or dt.utcoffset() is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)
