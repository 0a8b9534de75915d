from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from sentineliq.core.errors import RepositoryError
from sentineliq.repositories.article_url_repository import ArticleUrlRepository
from sentineliq.repositories.rss_repository import RssRepository
from wirescanner.config import WireScannerConfig
from wirescanner.core.data_manager import WireDataManager
from wirescanner.core.feed_processor import CandidateArticle
from wirescanner.core.performance import PerformanceMonitor


UTC = timezone.utc


def candidate(i: int, source: str = "https://news.example/rss") -> CandidateArticle:
    return CandidateArticle(
        url=f"https://news.example/article-{i}",
        title=f"Article number {i} about markets and regulation updates worldwide",
        description="summary",
        published_at=datetime.now(tz=UTC),
        author=None,
        categories=(),
        source=source,
        extracted_at=datetime.now(tz=UTC),
    )


def make_manager(session_factory, sleeps, **overrides) -> WireDataManager:
    cfg = WireScannerConfig(**overrides)
    perf = PerformanceMonitor(cfg, memory_probe=lambda: 10.0, sleep=sleeps)
    return WireDataManager(cfg, perf, session_factory=session_factory)


def count_links(session_factory) -> int:
    async def _count():
        with session_factory() as s:
            return await ArticleUrlRepository(s).count()

    return asyncio.run(_count())


def test_get_all_rss_feeds_returns_valid_urls(session_factory, sleeps):
    async def seed():
        with session_factory() as s:
            repo = RssRepository(s)
            await repo.add_feed("https://a.example/rss")
            bad = await repo.add_feed("https://b.example/rss")
            await repo.toggle_feed_status(bad.id, False)
            s.commit()

    asyncio.run(seed())
    dm = make_manager(session_factory, sleeps)
    assert asyncio.run(dm.test_connection()) is True
    assert asyncio.run(dm.get_all_rss_feeds()) == ["https://a.example/rss"]


def test_insert_and_existence_cache(session_factory, sleeps):
    dm = make_manager(session_factory, sleeps)

    async def scenario():
        assert await dm.article_exists(candidate(1).url) is False
        assert await dm.insert_article(candidate(1)) is True
        assert await dm.article_exists(candidate(1).url) is True
        assert await dm.insert_article(candidate(1)) is False

    asyncio.run(scenario())
    stats = dm.get_stats()
    assert stats["inserted"] == 1
    assert stats["duplicates"] == 1
    assert dm._performance.counters.cache_hits == 1
    assert dm._performance.counters.cache_misses == 1
    assert count_links(session_factory) == 1


def test_existence_cache_keeps_newest_half(session_factory, sleeps):
    dm = make_manager(session_factory, sleeps, existence_cache_max=4)
    for i in range(5):
        dm._remember(f"u{i}", False)
    assert list(dm._exists_cache) == ["u3", "u4"]


def test_queue_flushes_at_batch_size(session_factory, sleeps):
    dm = make_manager(session_factory, sleeps, batch_size=3, batch_insert_size=2, max_concurrent_articles=2)

    async def scenario():
        await dm.queue_article(candidate(1))
        await dm.queue_article(candidate(2))
        assert dm.pending_count == 2
        await dm.queue_article(candidate(3))
        assert dm.pending_count == 0
        await dm.queue_article(candidate(4))
        return await dm.flush_pending_inserts()

    assert asyncio.run(scenario()) == 1
    assert count_links(session_factory) == 4
    # Two batches (2 + 1) on auto-flush -> one delay between them.
    assert sleeps.calls == [0.1]


def test_item_errors_are_counted_not_requeued(session_factory, sleeps, monkeypatch):
    dm = make_manager(session_factory, sleeps)
    original = dm.insert_article

    async def flaky(article):
        if article.url.endswith("-2"):
            raise RepositoryError("constraint", table="articlesUrl")
        return await original(article)

    monkeypatch.setattr(dm, "insert_article", flaky)

    async def scenario():
        for i in (1, 2, 3):
            await dm.queue_article(candidate(i))
        return await dm.flush_pending_inserts()

    assert asyncio.run(scenario()) == 2
    assert dm.get_stats()["insert_errors"] == 1
    assert dm.pending_count == 0


def test_batch_failure_requeues_in_front(session_factory, sleeps, monkeypatch):
    dm = make_manager(session_factory, sleeps, batch_insert_size=2)
    calls = []

    async def broken(article):
        calls.append(article.url)
        raise ConnectionError("pool exhausted")

    monkeypatch.setattr(dm, "insert_article", broken)

    async def scenario():
        for i in (1, 2, 3):
            await dm.queue_article(candidate(i))
        await dm.flush_pending_inserts()

    asyncio.run(scenario())
    assert dm.pending_count == 3
    assert [a.url for a in dm._pending][:2] == [candidate(1).url, candidate(2).url]
    assert dm.get_stats()["requeued"] == 2
    assert dm._processing is False

    dm.reset()
    assert dm.pending_count == 0
    assert dm.get_stats()["inserted"] == 0
