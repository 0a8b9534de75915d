from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import httpx
import pytest

from sentineliq.core.errors import ArticleValidationError, FeedError
from sentineliq.repositories.rss_repository import RssRepository
from wirescanner.config import WireScannerConfig
from wirescanner.core.feed_processor import FeedProcessor
from wirescanner.core.performance import PerformanceMonitor


UTC = timezone.utc

LONG_TITLE = "Central banks weigh digital currency pilots across several regions"


def rss(items: list[dict], *, title: str = "Example News") -> bytes:
    parts = []
    for it in items:
        parts.append(
            "<item>"
            f"<title>{it['title']}</title>"
            f"<link>{it['link']}</link>"
            f"<description>{it.get('description', '')}</description>"
            + (f"<pubDate>{it['date']}</pubDate>" if it.get("date") else "")
            + "<category>markets</category>"
            "</item>"
        )
    return (
        '<?xml version="1.0" encoding="UTF-8"?><rss version="2.0"><channel>'
        f"<title>{title}</title><link>https://news.example</link><description>All the news</description>"
        "<language>en</language>" + "".join(parts) + "</channel></rss>"
    ).encode("utf-8")


def rfc822(dt: datetime) -> str:
    return format_datetime(dt)


class FeedServer:
    """httpx.MockTransport handler serving canned responses by URL."""

    def __init__(self, routes: dict[str, object]) -> None:
        self.routes = routes
        self.hits: dict[str, int] = {}
        self.headers: list[httpx.Headers] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.hits[url] = self.hits.get(url, 0) + 1
        self.headers.append(request.headers)
        route = self.routes.get(url)
        if route is None:
            return httpx.Response(404)
        if isinstance(route, list):
            route = route.pop(0) if len(route) > 1 else route[0]
        if isinstance(route, Exception):
            raise route
        if isinstance(route, int):
            return httpx.Response(route)
        return httpx.Response(200, content=route, headers={"Content-Type": "application/rss+xml"})


def make_processor(server: FeedServer, *, session_factory=None, sleeps=None, clock=None, **overrides) -> FeedProcessor:
    cfg = WireScannerConfig(**overrides)
    perf = PerformanceMonitor(cfg, memory_probe=lambda: 10.0, sleep=sleeps or _nosleep)
    kwargs = {"clock": clock} if clock else {}
    return FeedProcessor(cfg, perf, session_factory=session_factory, transport=httpx.MockTransport(server), **kwargs)


async def _nosleep(_seconds: float) -> None:
    return None


def test_parse_feed_sends_user_agent_and_caches():
    now = datetime.now(tz=UTC)
    server = FeedServer({"https://news.example/rss": rss([{"title": LONG_TITLE, "link": "https://news.example/a", "date": rfc822(now)}])})
    t = [1000.0]
    proc = make_processor(server, clock=lambda: t[0], feed_cache_ttl=300)

    parsed = asyncio.run(proc.parse_feed("https://news.example/rss"))
    assert parsed.feed.title == "Example News"
    assert server.headers[0]["User-Agent"] == "SentinelIQ-Harvest/1.0 (RSS Crawler)"

    asyncio.run(proc.parse_feed("https://news.example/rss"))
    assert server.hits["https://news.example/rss"] == 1
    assert proc.get_stats()["cache_hits"] == 1

    t[0] += 301
    asyncio.run(proc.parse_feed("https://news.example/rss"))
    assert server.hits["https://news.example/rss"] == 2


def test_cache_evicts_oldest_entry():
    body = rss([{"title": LONG_TITLE, "link": "https://news.example/a"}])
    server = FeedServer({f"https://news{i}.example/rss": body for i in range(3)})
    t = [0.0]

    def clock():
        t[0] += 1
        return t[0]

    proc = make_processor(server, clock=clock, feed_cache_max=2)
    for i in range(3):
        asyncio.run(proc.parse_feed(f"https://news{i}.example/rss"))
    assert proc.get_stats()["cache_size"] == 2
    asyncio.run(proc.parse_feed("https://news0.example/rss"))
    assert server.hits["https://news0.example/rss"] == 2


def test_server_errors_are_retried(sleeps):
    body = rss([{"title": LONG_TITLE, "link": "https://news.example/a"}])
    server = FeedServer({"https://news.example/rss": [503, body]})
    proc = make_processor(server, sleeps=sleeps)
    asyncio.run(proc.parse_feed("https://news.example/rss"))
    assert server.hits["https://news.example/rss"] == 2
    assert sleeps.calls == [1.0]


def test_client_errors_are_not_retried(sleeps):
    server = FeedServer({"https://news.example/rss": 404})
    proc = make_processor(server, sleeps=sleeps)
    with pytest.raises(FeedError, match="HTTP 404"):
        asyncio.run(proc.parse_feed("https://news.example/rss"))
    assert server.hits["https://news.example/rss"] == 1
    assert sleeps.calls == []


def test_transport_errors_become_feed_errors(sleeps):
    server = FeedServer({"https://news.example/rss": [httpx.ConnectError("refused")]})
    proc = make_processor(server, sleeps=sleeps, retry_attempts=2)
    with pytest.raises(FeedError, match="ConnectError"):
        asyncio.run(proc.parse_feed("https://news.example/rss"))
    assert server.hits["https://news.example/rss"] == 2


def test_feed_without_items_is_invalid():
    server = FeedServer({"https://news.example/rss": rss([])})
    proc = make_processor(server)
    parsed = asyncio.run(proc.parse_feed("https://news.example/rss"))
    with pytest.raises(FeedError, match="no articles"):
        proc.validate_and_clean_feed(parsed, "https://news.example/rss")


def test_validate_and_clean_feed_fields():
    server = FeedServer({"https://news.example/rss": rss([{"title": LONG_TITLE, "link": "https://news.example/a"}])})
    proc = make_processor(server)
    parsed = asyncio.run(proc.parse_feed("https://news.example/rss"))
    feed = proc.validate_and_clean_feed(parsed, "https://news.example/rss")
    assert feed.title == "Example News"
    assert feed.description == "All the news"
    assert feed.language == "en"
    assert len(feed.items) == 1


def test_process_feed_marks_validity(session_factory):
    good = rss([{"title": LONG_TITLE, "link": "https://news.example/a"}])
    server = FeedServer({"https://good.example/rss": good, "https://bad.example/rss": 404})

    async def seed():
        with session_factory() as s:
            repo = RssRepository(s)
            await repo.add_feed("https://good.example/rss")
            await repo.add_feed("https://bad.example/rss")
            s.commit()

    asyncio.run(seed())
    proc = make_processor(server, session_factory=session_factory)

    results = asyncio.run(proc.process_multiple_feeds(["https://good.example/rss", "https://bad.example/rss"]))
    assert [r.ok for r in results] == [True, False]
    assert results[1].error == "HTTP 404"

    async def read():
        with session_factory() as s:
            repo = RssRepository(s)
            return await repo.find_by_url("https://good.example/rss"), await repo.find_by_url("https://bad.example/rss")

    good_row, bad_row = asyncio.run(read())
    assert good_row.valid is True
    assert bad_row.valid is False
    assert bad_row.last_error == "HTTP 404"
    assert proc.get_stats()["feeds_failed"] == 1


def test_process_multiple_feeds_paces_between_chunks(sleeps):
    body = rss([{"title": LONG_TITLE, "link": "https://news.example/a"}])
    urls = [f"https://n{i}.example/rss" for i in range(5)]
    server = FeedServer({u: body for u in urls})
    proc = make_processor(server, sleeps=sleeps, max_concurrent_feeds=2)

    async def no_mark(url, *, valid, error=""):
        return None

    proc._mark = no_mark  # type: ignore[method-assign]
    results = asyncio.run(proc.process_multiple_feeds(urls))
    assert [r.url for r in results] == urls
    assert all(r.ok for r in results)
    assert sleeps.calls == [0.1, 0.1]


def test_extract_valid_articles_filters_items():
    now = datetime.now(tz=UTC)
    items = [
        {"title": LONG_TITLE, "link": "https://news.example/fresh", "date": rfc822(now - timedelta(days=1)),
         "description": "&lt;p&gt;Summary&amp;nbsp;text&lt;/p&gt;"},
        {"title": LONG_TITLE + " (old)", "link": "https://news.example/old", "date": rfc822(now - timedelta(days=45))},
        {"title": "Too short", "link": "https://news.example/short"},
        {"title": LONG_TITLE, "link": "ftp://news.example/file"},
        {"title": LONG_TITLE + " undated", "link": "https://news.example/undated"},
    ]
    server = FeedServer({"https://news.example/rss": rss(items)})
    proc = make_processor(server)
    parsed = asyncio.run(proc.parse_feed("https://news.example/rss"))
    feed = proc.validate_and_clean_feed(parsed, "https://news.example/rss")

    articles = proc.extract_valid_articles(feed)
    assert [a.url for a in articles] == ["https://news.example/fresh", "https://news.example/undated"]
    fresh = articles[0]
    assert fresh.source == "https://news.example/rss"
    assert fresh.description == "Summary text"
    assert fresh.categories == ("markets",)
    assert fresh.published_at is not None and fresh.published_at.tzinfo is not None
    assert articles[1].published_at is None

    stats = proc.get_stats()
    assert stats["articles_rejected"] == 2
    assert stats["articles_too_old"] == 1


def test_invalid_article_raises_when_not_skipping():
    proc = make_processor(FeedServer({}), skip_invalid_articles=False)
    with pytest.raises(ArticleValidationError):
        proc.validate_and_clean_article({"title": "short", "link": "https://news.example/a"}, "src")
