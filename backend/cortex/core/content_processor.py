from __future__ import annotations

"""Post-scrape cleaning, word-count bounds and content dedup.

Dedup uses a 32-bit signed rolling hash over the first 1000 UTF-16 code units
of the lowercased, whitespace-normalized text; characters outside the BMP
(emoji) count as two surrogate units. Two pages that only differ after that
prefix hash the same; this is accepted.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sentineliq.core import text as textutil
from cortex.config import CortexConfig
from cortex.core.scraping_engine import ScrapedArticle


logger = logging.getLogger("cortex.content")

HASH_PREFIX_UNITS = 1000


@dataclass(frozen=True, slots=True)
class ProcessedArticle:
    url: str
    title: str
    content: str
    published_at: datetime
    author: Optional[str]
    word_count: int
    content_hash: int


def clean_text(text: Optional[str]) -> str:
    return textutil.clean_text(text)


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def content_hash(text: Optional[str]) -> int:
    normalized = textutil.collapse_whitespace((text or "").lower())
    data = normalized.encode("utf-16-le", errors="surrogatepass")[: HASH_PREFIX_UNITS * 2]
    h = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = _to_int32((h << 5) - h + unit)
    return h


class ContentProcessor:
    def __init__(self, config: CortexConfig) -> None:
        self._config = config
        # url -> hash, insertion ordered (oldest first)
        self._hashes: dict[str, int] = {}
        self._processed = 0
        self._rejected: Counter[str] = Counter()

    @property
    def cache_size(self) -> int:
        return len(self._hashes)

    def is_duplicate(self, text: str) -> bool:
        h = content_hash(text)
        for known in self._hashes.values():
            if known == h:
                return True
        return False

    def remember(self, url: str, text: str) -> int:
        h = content_hash(text)
        if url not in self._hashes and len(self._hashes) >= self._config.content_cache_max:
            keep = self._config.content_cache_max // 2
            for stale in list(self._hashes)[: len(self._hashes) - keep]:
                del self._hashes[stale]
        self._hashes[url] = h
        return h

    def _reject(self, url: str, reason: str) -> None:
        self._rejected[reason] += 1
        logger.debug("Content rejected for %s: %s", url, reason)

    def process(self, article: ScrapedArticle) -> Optional[ProcessedArticle]:
        cfg = self._config
        title = clean_text(article.title)
        content = clean_text(article.content)
        if not title:
            self._reject(article.url, "empty_title")
            return None

        words = len(content.split())
        if words < cfg.min_words:
            self._reject(article.url, "too_few_words")
            return None
        if words > cfg.max_words:
            self._reject(article.url, "too_many_words")
            return None

        if self._hashes.get(article.url) is None and self.is_duplicate(content):
            self._reject(article.url, "duplicate_content")
            return None

        h = self.remember(article.url, content)
        self._processed += 1
        return ProcessedArticle(
            url=article.url,
            title=title,
            content=content,
            published_at=article.published_at,
            author=article.author,
            word_count=words,
            content_hash=h,
        )

    def get_stats(self) -> dict[str, Any]:
        return {
            "processed": self._processed,
            "rejected": sum(self._rejected.values()),
            "rejected_by_reason": dict(self._rejected),
            "cache_size": len(self._hashes),
        }

    def reset(self) -> None:
        self._hashes.clear()
        self._processed = 0
        self._rejected.clear()
