from __future__ import annotations

"""RSS/Atom feed fetching, validation and article candidate extraction.

Scope:
- Fetch feeds over HTTP (httpx) and parse them with feedparser.
- Validate feed structure; flag feeds valid/invalid in `ListUrlRss`.
- Turn feed items into cleaned `CandidateArticle` values.

Non-goals:
- No article body fetching (Cortex does that).
- No writes other than the feed validity flag.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping, Optional, Sequence

import feedparser
import httpx

from sentineliq.core.db import SessionFactory, session_scope
from sentineliq.core.errors import ArticleValidationError, FeedError
from sentineliq.core.text import chunked, clean_string, is_http_url
from sentineliq.repositories.rss_repository import RssRepository
from wirescanner.config import WireScannerConfig
from wirescanner.core.performance import PerformanceMonitor


UTC = timezone.utc
logger = logging.getLogger("wirescanner.feeds")


@dataclass(frozen=True, slots=True)
class ParsedFeed:
    url: str
    title: str
    description: str
    link: Optional[str]
    language: Optional[str]
    last_build_date: Optional[str]
    items: list[Mapping[str, Any]]


@dataclass(frozen=True, slots=True)
class CandidateArticle:
    """Feed item that passed validation, ready for `articlesUrl`."""

    url: str
    title: str
    description: str
    published_at: Optional[datetime]
    author: Optional[str]
    categories: tuple[str, ...]
    source: str
    extracted_at: datetime


@dataclass(frozen=True, slots=True)
class FeedResult:
    url: str
    feed: Optional[ParsedFeed] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.feed is not None


@dataclass(slots=True)
class FeedStats:
    feeds_processed: int = 0
    feeds_failed: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    articles_extracted: int = 0
    articles_rejected: int = 0
    articles_too_old: int = 0
    last_errors: list[str] = field(default_factory=list)


def _to_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None or dt.utcoffset() is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def entry_time(item: Mapping[str, Any]) -> Optional[datetime]:
    # feedparser exposes *_parsed as time.struct_time (UTC)
    for key in ("published_parsed", "updated_parsed"):
        st = item.get(key)
        if st:
            try:
                return _to_utc(datetime(*st[:6], tzinfo=UTC))
            except (TypeError, ValueError):
                continue
    return None


class FeedProcessor:
    def __init__(
        self,
        config: WireScannerConfig,
        performance: PerformanceMonitor,
        *,
        session_factory: Optional[SessionFactory] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._performance = performance
        self._session_factory = session_factory
        self._transport = transport
        self._clock = clock
        self._cache: dict[str, tuple[float, Any]] = {}
        self.stats = FeedStats()

    # ------------------------------------------------------------------ fetch

    async def _fetch(self, url: str) -> bytes:
        async with httpx.AsyncClient(
            timeout=self._config.request_timeout,
            follow_redirects=True,
            headers={
                "User-Agent": self._config.user_agent,
                "Accept": "application/rss+xml, application/atom+xml, application/xml;q=0.9, */*;q=0.8",
            },
            transport=self._transport,
        ) as client:
            resp = await client.get(url)
        if 400 <= resp.status_code < 500:
            # Client errors are final; only 5xx and transport errors are retried.
            raise FeedError(f"HTTP {resp.status_code}", url=url)
        resp.raise_for_status()
        return resp.content

    def _cache_get(self, url: str) -> Any:
        entry = self._cache.get(url)
        if entry is None:
            return None
        stored_at, parsed = entry
        if self._clock() - stored_at > self._config.feed_cache_ttl:
            del self._cache[url]
            return None
        return parsed

    def _cache_put(self, url: str, parsed: Any) -> None:
        if url not in self._cache and len(self._cache) >= self._config.feed_cache_max:
            oldest = min(self._cache, key=lambda k: self._cache[k][0])
            del self._cache[oldest]
        self._cache[url] = (self._clock(), parsed)

    async def parse_feed(self, url: str) -> Any:
        cached = self._cache_get(url)
        if cached is not None:
            self.stats.cache_hits += 1
            self._performance.record_cache(True)
            return cached
        self.stats.cache_misses += 1
        self._performance.record_cache(False)

        try:
            body = await self._performance.retry_with_backoff(
                lambda: self._fetch(url),
                label=f"fetch {url}",
                retry_on=(httpx.HTTPError,),
            )
        except httpx.HTTPError as e:
            raise FeedError(f"{type(e).__name__}: {e}", url=url) from e

        parsed = feedparser.parse(body)
        if parsed.get("bozo") and not parsed.get("entries") and not parsed.get("feed"):
            exc = parsed.get("bozo_exception")
            raise FeedError(f"Unparseable feed: {exc}", url=url)

        self._cache_put(url, parsed)
        return parsed

    # ------------------------------------------------------------- validation

    def validate_and_clean_feed(self, parsed: Any, url: str) -> ParsedFeed:
        meta: Mapping[str, Any] = parsed.get("feed") or {}
        items = list(parsed.get("entries") or [])
        if self._config.validate_feed_structure:
            if not meta.get("title"):
                logger.warning("Feed without title: %s", url)
            if not items:
                raise FeedError("no articles", url=url)

        max_len = self._config.max_field_length
        return ParsedFeed(
            url=url,
            title=clean_string(meta.get("title"), max_length=max_len),
            description=clean_string(meta.get("subtitle") or meta.get("description"), max_length=max_len),
            link=meta.get("link"),
            language=meta.get("language"),
            last_build_date=meta.get("updated") or meta.get("published"),
            items=items,
        )

    async def _mark(self, url: str, *, valid: bool, error: str = "") -> None:
        # Failing to record validity never fails the feed itself.
        try:
            with session_scope(self._session_factory) as session:
                repo = RssRepository(session)
                if valid:
                    await repo.mark_as_valid(url)
                else:
                    await repo.mark_as_invalid(url, error)
        except Exception as e:  # noqa: BLE001
            logger.error("Could not update validity of %s: %s", url, e)

    async def process_feed(self, url: str) -> ParsedFeed:
        try:
            parsed = await self.parse_feed(url)
            feed = self.validate_and_clean_feed(parsed, url)
        except Exception as e:  # noqa: BLE001
            self.stats.feeds_failed += 1
            self.stats.last_errors = (self.stats.last_errors + [f"{url}: {e}"])[-20:]
            self._performance.record_error()
            await self._mark(url, valid=False, error=str(e))
            if isinstance(e, FeedError):
                raise
            raise FeedError(str(e), url=url) from e

        self.stats.feeds_processed += 1
        self._performance.record_feed()
        await self._mark(url, valid=True)
        return feed

    async def process_multiple_feeds(self, urls: Sequence[str]) -> list[FeedResult]:
        results: list[FeedResult] = []
        chunks = list(chunked(list(urls), self._config.max_concurrent_feeds))
        for i, chunk in enumerate(chunks):
            settled = await asyncio.gather(*(self.process_feed(u) for u in chunk), return_exceptions=True)
            for url, outcome in zip(chunk, settled):
                if isinstance(outcome, BaseException):
                    results.append(FeedResult(url=url, error=str(outcome)))
                else:
                    results.append(FeedResult(url=url, feed=outcome))
            if i < len(chunks) - 1:
                await self._performance.smart_delay(self._config.article_batch_delay)
        return results

    # --------------------------------------------------------------- articles

    def _reject(self, reason: str) -> None:
        self.stats.articles_rejected += 1
        if not self._config.skip_invalid_articles:
            raise ArticleValidationError(reason)
        logger.debug("Feed item skipped: %s", reason)

    def validate_and_clean_article(self, item: Mapping[str, Any], source: str) -> Optional[CandidateArticle]:
        link = str(item.get("link") or "").strip()
        if not is_http_url(link):
            self._reject(f"invalid link {link!r}")
            return None

        max_len = self._config.max_field_length
        title = clean_string(item.get("title"), max_length=max_len)
        if len(title) < self._config.min_title_length:
            self._reject(f"title too short ({len(title)} chars)")
            return None

        categories = tuple(
            clean_string(t.get("term"), max_length=100)
            for t in (item.get("tags") or [])
            if isinstance(t, Mapping) and t.get("term")
        )
        return CandidateArticle(
            url=link,
            title=title,
            description=clean_string(item.get("description") or item.get("summary"), max_length=max_len),
            published_at=entry_time(item),
            author=clean_string(item.get("author"), max_length=200) or None,
            categories=categories,
            source=source,
            extracted_at=datetime.now(tz=UTC),
        )

    def extract_valid_articles(self, feed: ParsedFeed, source: Optional[str] = None) -> list[CandidateArticle]:
        source = source or feed.url
        cutoff = datetime.now(tz=UTC) - timedelta(days=self._config.max_article_age_days)
        out: list[CandidateArticle] = []
        for item in feed.items:
            article = self.validate_and_clean_article(item, source)
            if article is None:
                continue
            if article.published_at is not None and article.published_at < cutoff:
                self.stats.articles_too_old += 1
                continue
            out.append(article)
        self.stats.articles_extracted += len(out)
        return out

    # ------------------------------------------------------------------ stats

    def get_stats(self) -> dict[str, Any]:
        s = self.stats
        return {
            "feeds_processed": s.feeds_processed,
            "feeds_failed": s.feeds_failed,
            "cache_size": len(self._cache),
            "cache_hits": s.cache_hits,
            "cache_misses": s.cache_misses,
            "articles_extracted": s.articles_extracted,
            "articles_rejected": s.articles_rejected,
            "articles_too_old": s.articles_too_old,
        }

    def reset(self) -> None:
        self._cache.clear()
        self.stats = FeedStats()
