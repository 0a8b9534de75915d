from __future__ import annotations

"""Store access for WireScanner: feed list, existence checks, batched inserts.

- Existence lookups go through a bounded in-process cache.
- New links are queued and written in batches with bounded concurrency.
- Each insert uses its own session and SAVEPOINT, so one bad row never
  loses the rest of the batch.
"""

import asyncio
import logging
from typing import Any, Optional

from sentineliq.core.db import ConnectionChecker, SessionFactory, session_scope
from sentineliq.core.errors import DuplicateRecordError, HarvestError
from sentineliq.core.text import chunked
from sentineliq.repositories.article_url_repository import ArticleUrlRepository
from sentineliq.repositories.rss_repository import RssRepository
from wirescanner.config import WireScannerConfig
from wirescanner.core.feed_processor import CandidateArticle
from wirescanner.core.performance import PerformanceMonitor


logger = logging.getLogger("wirescanner.data")


class WireDataManager:
    def __init__(
        self,
        config: WireScannerConfig,
        performance: PerformanceMonitor,
        *,
        session_factory: Optional[SessionFactory] = None,
    ) -> None:
        self._config = config
        self._performance = performance
        self._session_factory = session_factory
        self._checker = ConnectionChecker(session_factory)
        self._exists_cache: dict[str, bool] = {}
        self._pending: list[CandidateArticle] = []
        self._processing = False
        self.stats: dict[str, int] = {"inserted": 0, "duplicates": 0, "insert_errors": 0, "requeued": 0}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def test_connection(self) -> bool:
        return self._checker.check()

    async def get_all_rss_feeds(self) -> list[str]:
        with session_scope(self._session_factory) as session:
            feeds = await RssRepository(session).get_all_feeds(active_only=True)
            return [f.url for f in feeds]

    def _remember(self, url: str, exists: bool) -> None:
        self._exists_cache[url] = exists
        if len(self._exists_cache) > self._config.existence_cache_max:
            keep = self._config.existence_cache_max // 2
            self._exists_cache = dict(list(self._exists_cache.items())[-keep:])

    async def article_exists(self, url: str) -> bool:
        if url in self._exists_cache:
            self._performance.record_cache(True)
            return self._exists_cache[url]
        self._performance.record_cache(False)
        with session_scope(self._session_factory) as session:
            exists = await ArticleUrlRepository(session).exists_by_url(url)
        self._remember(url, exists)
        return exists

    async def insert_article(self, article: CandidateArticle) -> bool:
        """Returns True only when a new row was written."""
        try:
            with session_scope(self._session_factory) as session:
                _, created = await ArticleUrlRepository(session).add_article(
                    url=article.url,
                    title=article.title,
                    description=article.description,
                    published_at=article.published_at,
                    source=article.source,
                )
        except DuplicateRecordError:
            # Lost a race with another writer on the unique url.
            created = False
        self._remember(article.url, True)
        if created:
            self.stats["inserted"] += 1
        else:
            self.stats["duplicates"] += 1
        return created

    async def queue_article(self, article: CandidateArticle) -> None:
        self._pending.append(article)
        if len(self._pending) >= self._config.batch_size:
            await self._process_pending_inserts()

    async def flush_pending_inserts(self) -> int:
        before = self.stats["inserted"]
        await self._process_pending_inserts()
        return self.stats["inserted"] - before

    async def _insert_batch(self, batch: list[CandidateArticle]) -> None:
        for group in chunked(batch, self._config.max_concurrent_articles):
            settled = await asyncio.gather(*(self.insert_article(a) for a in group), return_exceptions=True)
            for article, outcome in zip(group, settled):
                if isinstance(outcome, HarvestError):
                    self.stats["insert_errors"] += 1
                    self._performance.record_error()
                    logger.warning("Insert failed for %s: %s", article.url, outcome)
                elif isinstance(outcome, BaseException):
                    # Not an item-level error: let the drain loop re-queue.
                    raise outcome

    async def _process_pending_inserts(self) -> None:
        if self._processing:
            return
        self._processing = True
        try:
            while self._pending:
                batch = self._pending[: self._config.batch_insert_size]
                self._pending = self._pending[self._config.batch_insert_size :]
                try:
                    await self._insert_batch(batch)
                except Exception as e:  # noqa: BLE001
                    self._pending = batch + self._pending
                    self.stats["requeued"] += len(batch)
                    logger.error("Batch insert failed, %d articles re-queued: %s", len(batch), e)
                    break
                if self._pending:
                    await self._performance.smart_delay(self._config.article_batch_delay)
        finally:
            self._processing = False

    def get_stats(self) -> dict[str, Any]:
        return {
            **self.stats,
            "pending": len(self._pending),
            "exists_cache_size": len(self._exists_cache),
        }

    def reset(self) -> None:
        self._exists_cache.clear()
        self._pending.clear()
        self._processing = False
        self.stats = {"inserted": 0, "duplicates": 0, "insert_errors": 0, "requeued": 0}
