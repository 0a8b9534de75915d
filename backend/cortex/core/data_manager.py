from __future__ import annotations

"""Store access for Cortex: links to process in, extracted articles out."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Sequence

from sentineliq.core.db import ConnectionChecker, SessionFactory, session_scope
from sentineliq.core.errors import HarvestError
from sentineliq.core.text import chunked, clean_text, truncate
from sentineliq.repositories.article_repository import ArticleRepository
from sentineliq.repositories.article_url_repository import ArticleUrlRepository
from sentineliq.repositories.base import Filter, Order
from cortex.config import CortexConfig
from cortex.core.content_processor import ProcessedArticle


logger = logging.getLogger("cortex.data")

MIN_STORED_CONTENT_CHARS = 10
PROCESSED_CACHE_KEEP = 250


@dataclass(frozen=True, slots=True)
class PendingArticle:
    url: str
    title: str
    source: Optional[str]
    published_at: Optional[datetime]


@dataclass(frozen=True, slots=True)
class BatchSaveResult:
    saved: int = 0
    skipped: int = 0
    failed: int = 0


class CortexDataManager:
    def __init__(
        self,
        config: CortexConfig,
        *,
        session_factory: Optional[SessionFactory] = None,
        sleep=asyncio.sleep,
    ) -> None:
        self._config = config
        self._session_factory = session_factory
        self._checker = ConnectionChecker(session_factory)
        self._sleep = sleep
        self._processed_cache: dict[str, bool] = {}
        self.stats: dict[str, int] = {"saved": 0, "skipped": 0, "invalid": 0, "failed": 0, "fetched": 0}

    async def test_connection(self) -> bool:
        return self._checker.check()

    def _remember(self, url: str, processed: bool) -> None:
        self._processed_cache[url] = processed
        if len(self._processed_cache) > self._config.processed_cache_max:
            keep = min(PROCESSED_CACHE_KEEP, self._config.processed_cache_max // 2)
            self._processed_cache = dict(list(self._processed_cache.items())[-keep:])

    async def is_article_processed(self, url: str) -> bool:
        if url in self._processed_cache:
            return self._processed_cache[url]
        with session_scope(self._session_factory) as session:
            processed = await ArticleRepository(session).exists_by_url(url)
        self._remember(url, processed)
        return processed

    async def get_articles_to_process(self, limit: int, *, only_unprocessed: bool = True) -> list[PendingArticle]:
        """Discovered links, newest first; already extracted urls are skipped unless asked otherwise."""
        if limit < 1:
            return []
        out: list[PendingArticle] = []
        offset = 0
        page_size = max(limit, self._config.batch_size)
        with session_scope(self._session_factory) as session:
            links = ArticleUrlRepository(session)
            articles = ArticleRepository(session)
            while len(out) < limit:
                rows = await links.find_all(
                    order=Order("created_at", ascending=False),
                    limit=page_size,
                    offset=offset,
                )
                if not rows:
                    break
                offset += len(rows)
                done: set[str] = set()
                if only_unprocessed:
                    stored = await articles.find_all(filters={"url": Filter("in", [r.url for r in rows])})
                    done = {a.url for a in stored}
                for r in rows:
                    if only_unprocessed:
                        self._remember(r.url, r.url in done)
                    if r.url in done:
                        continue
                    out.append(PendingArticle(url=r.url, title=r.title, source=r.source, published_at=r.published_at))
                    if len(out) >= limit:
                        break
                if len(rows) < page_size:
                    break
        self.stats["fetched"] += len(out)
        return out

    def _validate(self, article: ProcessedArticle) -> Optional[str]:
        if not article.url:
            return "missing url"
        if len(article.title or "") < self._config.min_title_length:
            return "title too short"
        if len((article.content or "").strip()) < MIN_STORED_CONTENT_CHARS:
            return "content too short"
        return None

    async def _save(self, article: ProcessedArticle) -> str:
        """One of saved / skipped / invalid. Store errors propagate."""
        reason = self._validate(article)
        if reason is not None:
            logger.debug("Not saving %s: %s", article.url, reason)
            self.stats["invalid"] += 1
            return "invalid"
        if await self.is_article_processed(article.url):
            self.stats["skipped"] += 1
            return "skipped"

        title = clean_text(article.title)
        content = truncate(clean_text(article.content), self._config.max_stored_content_length, suffix="...")
        with session_scope(self._session_factory) as session:
            await ArticleRepository(session).save_processed_article(
                url=article.url,
                title=title,
                content=content,
                published_at=article.published_at,
            )
        self._remember(article.url, True)
        self.stats["saved"] += 1
        return "saved"

    async def save_processed_article(self, article: ProcessedArticle) -> bool:
        try:
            return await self._save(article) == "saved"
        except HarvestError as e:
            self.stats["failed"] += 1
            logger.warning("Save failed for %s: %s", article.url, e)
            return False

    async def save_batch_processed_articles(self, articles: Sequence[ProcessedArticle]) -> BatchSaveResult:
        saved = skipped = failed = 0
        chunks = list(chunked(list(articles), self._config.batch_insert_size))
        for i, chunk in enumerate(chunks):
            settled = await asyncio.gather(*(self._save(a) for a in chunk), return_exceptions=True)
            for article, outcome in zip(chunk, settled):
                if outcome == "saved":
                    saved += 1
                elif isinstance(outcome, HarvestError):
                    failed += 1
                    self.stats["failed"] += 1
                    logger.warning("Save failed for %s: %s", article.url, outcome)
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    skipped += 1
            if i + 1 < len(chunks) and self._config.processing_delay > 0:
                await self._sleep(self._config.processing_delay)
        return BatchSaveResult(saved=saved, skipped=skipped, failed=failed)

    def get_stats(self) -> dict[str, Any]:
        return {**self.stats, "processed_cache_size": len(self._processed_cache)}

    def reset(self) -> None:
        self._processed_cache.clear()
        self.stats = {"saved": 0, "skipped": 0, "invalid": 0, "failed": 0, "fetched": 0}
