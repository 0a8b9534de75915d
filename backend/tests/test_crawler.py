from __future__ import annotations

import asyncio
import json
import logging

import httpx
import pytest

from sentineliq.core.errors import CrawlerBusyError
from sentineliq.repositories.article_url_repository import ArticleUrlRepository
from sentineliq.repositories.rss_repository import RssRepository
from wirescanner.config import WireScannerConfig
from wirescanner.core.crawler import WireScanner
from wirescanner.core.data_manager import WireDataManager
from wirescanner.core.feed_processor import FeedProcessor
from wirescanner.core.performance import PerformanceMonitor


TITLE = "Regulators publish new guidance for stablecoin issuers and custodians"


def _rss(links: list[str]) -> bytes:
    items = "".join(f"<item><title>{TITLE} #{i}</title><link>{u}</link></item>" for i, u in enumerate(links))
    return (
        '<?xml version="1.0"?><rss version="2.0"><channel><title>Feed</title>'
        f"{items}</channel></rss>"
    ).encode("utf-8")


def build_scanner(session_factory, sleeps, routes: dict[str, bytes | int], **overrides) -> WireScanner:
    cfg = WireScannerConfig(**overrides)
    perf = PerformanceMonitor(cfg, memory_probe=lambda: 10.0, sleep=sleeps)

    def handler(request: httpx.Request) -> httpx.Response:
        body = routes.get(str(request.url), 404)
        if isinstance(body, int):
            return httpx.Response(body)
        return httpx.Response(200, content=body)

    feeds = FeedProcessor(cfg, perf, session_factory=session_factory, transport=httpx.MockTransport(handler))
    data = WireDataManager(cfg, perf, session_factory=session_factory)
    return WireScanner(cfg, session_factory=session_factory, performance=perf, feed_processor=feeds, data_manager=data)


def seed_feeds(session_factory, urls: list[str]) -> None:
    async def _seed():
        with session_factory() as s:
            repo = RssRepository(s)
            for u in urls:
                await repo.add_feed(u)
            s.commit()

    asyncio.run(_seed())


def test_crawl_end_to_end(session_factory, sleeps, caplog):
    seed_feeds(session_factory, ["https://a.example/rss", "https://b.example/rss", "https://dead.example/rss"])

    async def preexisting():
        with session_factory() as s:
            await ArticleUrlRepository(s).add_article(url="https://a.example/known", title="Known")
            s.commit()

    asyncio.run(preexisting())
    routes = {
        "https://a.example/rss": _rss(["https://a.example/1", "https://a.example/known", "https://shared.example/x"]),
        "https://b.example/rss": _rss(["https://b.example/1", "https://shared.example/x"]),
    }
    scanner = build_scanner(session_factory, sleeps, routes)

    caplog.set_level(logging.INFO, logger="wirescanner.crawl")
    report = asyncio.run(scanner.crawl())

    assert report.feeds_total == 3
    assert report.feeds_valid == 2
    assert report.feeds_invalid == 1
    assert "https://dead.example/rss" in report.feed_errors
    # Shared link counted once across feeds.
    assert report.articles_found == 4
    assert report.articles_skipped == 1
    assert report.articles_new == 3
    assert report.articles_inserted == 3
    assert report.errors == 0
    assert report.metrics["processed_feeds"] == 2
    assert scanner.is_running is False

    summaries = [json.loads(r.getMessage()) for r in caplog.records if "wirescanner_run_summary" in r.getMessage()]
    assert summaries and summaries[-1]["articles_inserted"] == 3

    async def stored():
        with session_factory() as s:
            return sorted(r.url for r in await ArticleUrlRepository(s).find_all())

    assert asyncio.run(stored()) == [
        "https://a.example/1",
        "https://a.example/known",
        "https://b.example/1",
        "https://shared.example/x",
    ]

    # Second crawl: everything is known now.
    again = asyncio.run(scanner.crawl())
    assert again.articles_new == 0
    assert again.articles_inserted == 0
    # dead feed is now invalid and no longer loaded
    assert again.feeds_total == 2


def test_crawl_without_feeds_returns_empty_report(session_factory, sleeps):
    scanner = build_scanner(session_factory, sleeps, {})
    report = asyncio.run(scanner.crawl())
    assert report.feeds_total == 0
    assert report.articles_found == 0
    assert report.metrics["duration"].endswith("s")


def test_crawl_refuses_concurrent_run(session_factory, sleeps):
    scanner = build_scanner(session_factory, sleeps, {})
    scanner._running = True
    with pytest.raises(CrawlerBusyError):
        asyncio.run(scanner.crawl())
    scanner._running = False


def test_stop_between_chunks(session_factory, sleeps):
    seed_feeds(session_factory, ["https://a.example/rss"])
    links = [f"https://a.example/{i}" for i in range(4)]
    scanner = build_scanner(session_factory, sleeps, {"https://a.example/rss": _rss(links)}, batch_size=2)

    original = scanner.data.queue_article

    async def queue_then_stop(article):
        await original(article)
        scanner.stop()

    scanner.data.queue_article = queue_then_stop  # type: ignore[method-assign]
    report = asyncio.run(scanner.crawl())
    assert report.stopped is True
    assert report.articles_new == 2
    assert report.articles_inserted == 2


def test_get_status_shape(session_factory, sleeps):
    scanner = build_scanner(session_factory, sleeps, {})
    status = scanner.get_status()
    assert status["running"] is False
    assert status["phase"] == "idle"
    assert status["report"] is None
    assert "pending" in status["data"]
