from __future__ import annotations

"""Cortex session orchestration.

One session:
1. store reachable, links to process fetched (newest first)
2. browser pool started
3. adaptive chunks: scrape -> content processor -> batched save
4. pacing between chunks from chunk duration and host load
5. pool closed, summary logged

A failed chunk counts its articles as failed; the session goes on with the
next chunk. Only store unavailability or a concurrent session abort a run.
"""

import asyncio
import json
import logging
import math
import time
import uuid
from collections import Counter, deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from sentineliq.core.db import SessionFactory
from sentineliq.core.errors import CrawlerBusyError
from cortex.config import CortexConfig
from cortex.core.content_processor import ContentProcessor, ProcessedArticle
from cortex.core.data_manager import CortexDataManager, PendingArticle
from cortex.core.resources import ResourceProbe
from cortex.core.scraping_engine import ScrapingEngine


UTC = timezone.utc
logger = logging.getLogger("cortex.session")

HISTORY_SIZE = 10
ERROR_LOG_SIZE = 50

LOAD_HIGH_PERCENT = 70.0
LOAD_CRITICAL_PERCENT = 80.0
MEMORY_PAUSE_PERCENT = 85.0
CPU_PAUSE_PERCENT = 90.0
MEMORY_PAUSE_SECONDS = 5.0
CPU_PAUSE_SECONDS = 3.0
SLOW_CHUNK_SECONDS = 30.0
FAST_CHUNK_SECONDS = 10.0


def _log(event: dict) -> None:
    # Structured logs only; never log article content.
    logger.info(json.dumps(event, ensure_ascii=False, default=str))


@dataclass(slots=True)
class SessionReport:
    session_id: str
    started_at: str
    duration_seconds: float = 0.0
    total: int = 0
    processed: int = 0
    scraped: int = 0
    saved: int = 0
    failed: int = 0
    skipped: int = 0
    batches: int = 0
    stopped: bool = False
    errors: list[dict[str, str]] = field(default_factory=list)

    @property
    def average_seconds_per_article(self) -> float:
        return round(self.duration_seconds / self.processed, 3) if self.processed else 0.0

    @property
    def success_rate(self) -> float:
        return round(self.saved / self.processed * 100, 1) if self.processed else 0.0

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["average_seconds_per_article"] = self.average_seconds_per_article
        d["success_rate"] = self.success_rate
        return d


class CortexSession:
    def __init__(
        self,
        config: CortexConfig,
        *,
        session_factory: Optional[SessionFactory] = None,
        engine: Optional[ScrapingEngine] = None,
        processor: Optional[ContentProcessor] = None,
        data_manager: Optional[CortexDataManager] = None,
        probe: Optional[ResourceProbe] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._probe = probe or ResourceProbe()
        self.engine = engine or ScrapingEngine(config, probe=self._probe)
        self.processor = processor or ContentProcessor(config)
        self.data = data_manager or CortexDataManager(config, session_factory=session_factory)
        self._clock = clock
        self._sleep = sleep
        self._running = False
        self._paused = False
        self._stop_requested = False
        self._current: Optional[SessionReport] = None
        self.history: deque[SessionReport] = deque(maxlen=HISTORY_SIZE)
        self.recent_errors: deque[dict[str, str]] = deque(maxlen=ERROR_LOG_SIZE)

    @property
    def is_running(self) -> bool:
        return self._running

    def pause(self) -> None:
        """Stop taking new chunks; the chunk in flight completes."""
        if self._running:
            self._paused = True
            logger.info("Cortex session paused")

    def stop(self) -> None:
        if self._running:
            self._stop_requested = True
            self._paused = True
            logger.info("Stop requested for running Cortex session")

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "paused": self._paused,
            "stop_requested": self._stop_requested,
            "current": self._current.to_dict() if self._current else None,
            "sessions_completed": len(self.history),
            "recent_errors": list(self.recent_errors),
            "engine": self.engine.get_stats(),
            "content": self.processor.get_stats(),
            "data": self.data.get_stats(),
        }

    # ----------------------------------------------------------------- pacing

    def _chunk_size(self) -> int:
        status = self._probe.status()
        size = float(self._config.max_concurrent_articles)
        if status.memory_percent > LOAD_HIGH_PERCENT:
            size *= 0.7
        if status.cpu_percent > LOAD_HIGH_PERCENT:
            size *= 0.8
        return max(1, int(size))

    def _delay_after(self, elapsed: float) -> float:
        delay = self._config.processing_delay
        if elapsed > SLOW_CHUNK_SECONDS:
            delay *= 2
        elif elapsed < FAST_CHUNK_SECONDS:
            delay *= 0.5
        status = self._probe.status()
        if status.memory_percent > LOAD_CRITICAL_PERCENT or status.cpu_percent > LOAD_CRITICAL_PERCENT:
            delay *= 3
        return delay

    async def _check_resources(self) -> None:
        status = self._probe.status()
        if status.memory_percent > MEMORY_PAUSE_PERCENT:
            _log({"event": "cortex_resource_pause", "reason": "memory", "memory_percent": status.memory_percent})
            await self._sleep(MEMORY_PAUSE_SECONDS)
        if status.cpu_percent > CPU_PAUSE_PERCENT:
            _log({"event": "cortex_resource_pause", "reason": "cpu", "cpu_percent": status.cpu_percent})
            await self._sleep(CPU_PAUSE_SECONDS)

    # ------------------------------------------------------------- processing

    def _record_error(self, report: SessionReport, url: str, message: str) -> None:
        entry = {"url": url, "error": message}
        report.errors.append(entry)
        self.recent_errors.append(entry)

    async def _process_one(
        self, item: PendingArticle, tally: Counter[str], errors: list[tuple[str, str]]
    ) -> Optional[ProcessedArticle]:
        scraped = await self.engine.scrape_article(item.url)
        if scraped is None:
            tally["failed"] += 1
            errors.append((item.url, "scrape failed or content invalid"))
            return None
        tally["scraped"] += 1
        processed = self.processor.process(scraped)
        if processed is None:
            tally["skipped"] += 1
        return processed

    async def _process_batch(self, chunk: list[PendingArticle], report: SessionReport) -> None:
        """Scrape, process and save one chunk.

        Counts are merged into the report only after the save; a chunk that
        raises leaves the report untouched.
        """
        limit = max(1, min(self._config.max_concurrent_articles, math.ceil(len(chunk) / 2)))
        sem = asyncio.Semaphore(limit)
        tally: Counter[str] = Counter()
        errors: list[tuple[str, str]] = []

        async def _guarded(item: PendingArticle) -> Optional[ProcessedArticle]:
            async with sem:
                return await self._process_one(item, tally, errors)

        results = await asyncio.gather(*(_guarded(item) for item in chunk))
        ready = [r for r in results if r is not None]
        if ready:
            saved = await self.data.save_batch_processed_articles(ready)
            tally["saved"] += saved.saved
            tally["skipped"] += saved.skipped
            tally["failed"] += saved.failed

        report.processed += len(chunk)
        report.scraped += tally["scraped"]
        report.saved += tally["saved"]
        report.skipped += tally["skipped"]
        report.failed += tally["failed"]
        for url, message in errors:
            self._record_error(report, url, message)

    async def run(self, max_articles: Optional[int] = None, *, only_unprocessed: bool = True) -> SessionReport:
        if self._running:
            raise CrawlerBusyError("A Cortex session is already running.")
        self._running = True
        self._paused = False
        self._stop_requested = False
        started = self._clock()
        report = SessionReport(session_id=uuid.uuid4().hex[:12], started_at=datetime.now(tz=UTC).isoformat())
        self._current = report
        try:
            await self.data.test_connection()
            limit = max_articles or self._config.max_articles_per_session
            pending = await self.data.get_articles_to_process(limit, only_unprocessed=only_unprocessed)
            report.total = len(pending)
            _log({"event": "cortex_session_started", "session_id": report.session_id, "articles_count": len(pending)})

            if pending:
                await self.engine.initialize()
                idx = 0
                while idx < len(pending):
                    if self._paused:
                        report.stopped = True
                        logger.info("Cortex session halted with %d articles left", len(pending) - idx)
                        break
                    size = self._chunk_size()
                    chunk = pending[idx : idx + size]
                    idx += len(chunk)
                    chunk_started = self._clock()
                    try:
                        await self._process_batch(chunk, report)
                    except Exception as e:  # noqa: BLE001
                        report.processed += len(chunk)
                        report.failed += len(chunk)
                        for item in chunk:
                            self._record_error(report, item.url, f"batch failed: {e}")
                        logger.error("Chunk of %d articles failed: %s", len(chunk), e)
                    report.batches += 1
                    if idx < len(pending):
                        delay = self._delay_after(self._clock() - chunk_started)
                        if delay > 0:
                            await self._sleep(delay)
                        await self._check_resources()

            report.duration_seconds = round(self._clock() - started, 3)
            self.history.append(report)
            _log(
                {
                    "event": "cortex_session_summary",
                    "session_id": report.session_id,
                    "started_at": report.started_at,
                    "articles_total": report.total,
                    "processed": report.processed,
                    "scraped": report.scraped,
                    "saved": report.saved,
                    "failed": report.failed,
                    "skipped": report.skipped,
                    "batches": report.batches,
                    "error_count": len(report.errors),
                    "stopped": report.stopped,
                    "duration_seconds": report.duration_seconds,
                    "avg_seconds_per_article": report.average_seconds_per_article,
                    "success_rate": report.success_rate,
                }
            )
            return report
        finally:
            try:
                await self.engine.cleanup()
            except Exception as e:  # noqa: BLE001
                logger.warning("Browser pool cleanup failed: %s", e)
            self._running = False
            self._current = None
