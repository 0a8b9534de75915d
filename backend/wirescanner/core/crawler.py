from __future__ import annotations

"""WireScanner crawl orchestration.

Phases of one crawl:
1. load feeds (store reachable first)
2. fetch + validate feeds, extract candidate articles
3. existence checks and batched inserts into `articlesUrl`
4. metrics and run summary

Failure isolated per feed and per article; a crawl with some invalid feeds is
still a completed crawl.
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from sentineliq.core.db import SessionFactory
from sentineliq.core.errors import CrawlerBusyError
from sentineliq.core.text import chunked
from wirescanner.config import WireScannerConfig
from wirescanner.core.data_manager import WireDataManager
from wirescanner.core.feed_processor import CandidateArticle, FeedProcessor
from wirescanner.core.performance import PerformanceMonitor


UTC = timezone.utc
logger = logging.getLogger("wirescanner.crawl")


def _log(event: dict) -> None:
    # Structured logs only; never log article content.
    logger.info(json.dumps(event, ensure_ascii=False, default=str))


class CrawlPhase(str, Enum):
    IDLE = "idle"
    LOADING_FEEDS = "loading_feeds"
    PROCESSING_FEEDS = "processing_feeds"
    SAVING_ARTICLES = "saving_articles"
    FINALIZING = "finalizing"


@dataclass(slots=True)
class CrawlReport:
    started_at: str
    feeds_total: int = 0
    feeds_valid: int = 0
    feeds_invalid: int = 0
    articles_found: int = 0
    articles_new: int = 0
    articles_skipped: int = 0
    articles_inserted: int = 0
    errors: int = 0
    stopped: bool = False
    feed_errors: dict[str, str] = field(default_factory=dict)
    metrics: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class WireScanner:
    def __init__(
        self,
        config: WireScannerConfig,
        *,
        session_factory: Optional[SessionFactory] = None,
        performance: Optional[PerformanceMonitor] = None,
        feed_processor: Optional[FeedProcessor] = None,
        data_manager: Optional[WireDataManager] = None,
    ) -> None:
        self._config = config
        self.performance = performance or PerformanceMonitor(config)
        self.feeds = feed_processor or FeedProcessor(config, self.performance, session_factory=session_factory)
        self.data = data_manager or WireDataManager(config, self.performance, session_factory=session_factory)
        self._running = False
        self._stop_requested = False
        self._phase = CrawlPhase.IDLE
        self._report: Optional[CrawlReport] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def stop(self) -> None:
        """Ask a running crawl to stop at the next chunk boundary."""
        if self._running:
            self._stop_requested = True
            logger.info("Stop requested for running crawl")

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "phase": self._phase.value,
            "stop_requested": self._stop_requested,
            "report": self._report.to_dict() if self._report else None,
            "feeds": self.feeds.get_stats(),
            "data": self.data.get_stats(),
        }

    async def crawl(self) -> CrawlReport:
        if self._running:
            raise CrawlerBusyError("A WireScanner crawl is already running.")
        self._running = True
        self._stop_requested = False
        self.performance.start()
        report = CrawlReport(started_at=datetime.now(tz=UTC).isoformat())
        self._report = report
        insert_errors_before = self.data.stats["insert_errors"]
        try:
            self._phase = CrawlPhase.LOADING_FEEDS
            await self.data.test_connection()
            urls = await self.data.get_all_rss_feeds()
            report.feeds_total = len(urls)
            _log({"event": "wirescanner_feeds_loaded", "feeds_count": len(urls)})

            if urls:
                self._phase = CrawlPhase.PROCESSING_FEEDS
                candidates = await self._process_feeds(urls, report)

                self._phase = CrawlPhase.SAVING_ARTICLES
                await self._save_articles(candidates, report)

            self._phase = CrawlPhase.FINALIZING
            report.stopped = self._stop_requested
            report.errors += self.data.stats["insert_errors"] - insert_errors_before
            report.metrics = self.performance.final_metrics()
            _log(
                {
                    "event": "wirescanner_run_summary",
                    "started_at": report.started_at,
                    "feeds_count": report.feeds_total,
                    "feeds_valid": report.feeds_valid,
                    "feeds_invalid": report.feeds_invalid,
                    "articles_found": report.articles_found,
                    "articles_new": report.articles_new,
                    "articles_skipped": report.articles_skipped,
                    "articles_inserted": report.articles_inserted,
                    "error_count": report.errors,
                    "stopped": report.stopped,
                    "duration": report.metrics.get("duration"),
                    "memory_peak_mb": report.metrics.get("memory_peak_mb"),
                    "cache_hit_rate": report.metrics.get("cache_hit_rate"),
                }
            )
            return report
        finally:
            self._running = False
            self._phase = CrawlPhase.IDLE

    async def _process_feeds(self, urls: list[str], report: CrawlReport) -> list[CandidateArticle]:
        candidates: list[CandidateArticle] = []
        seen: set[str] = set()
        results = await self.feeds.process_multiple_feeds(urls)
        for result in results:
            if not result.ok:
                report.feeds_invalid += 1
                report.feed_errors[result.url] = result.error or "unknown error"
                _log({"event": "wirescanner_feed_invalid", "url": result.url, "error": result.error})
                continue
            report.feeds_valid += 1
            assert result.feed is not None
            for article in self.feeds.extract_valid_articles(result.feed, result.url):
                # The same link is often syndicated by several feeds.
                if article.url in seen:
                    continue
                seen.add(article.url)
                candidates.append(article)
        report.articles_found = len(candidates)
        self.performance.record_articles(len(candidates))
        return candidates

    async def _save_articles(self, candidates: list[CandidateArticle], report: CrawlReport) -> None:
        inserted_before = self.data.stats["inserted"]
        for chunk in chunked(candidates, self._config.batch_size):
            if self._stop_requested:
                logger.info("Crawl stopped before saving all articles")
                break
            for article in chunk:
                try:
                    if await self.data.article_exists(article.url):
                        report.articles_skipped += 1
                        continue
                    await self.data.queue_article(article)
                    report.articles_new += 1
                except Exception as e:  # noqa: BLE001
                    report.errors += 1
                    self.performance.record_error()
                    logger.warning("Could not save %s: %s", article.url, e)
            await self.performance.smart_delay(self._config.article_batch_delay)
        await self.data.flush_pending_inserts()
        report.articles_inserted = self.data.stats["inserted"] - inserted_before
