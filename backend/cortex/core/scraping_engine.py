from __future__ import annotations

"""Article scraping on top of the browser pool.

One scrape: cache -> browser -> isolated context/page (UA, viewport, blocked
resource types, timeouts) -> navigate -> DOM snapshot -> extract -> validate.
The page is always closed, the browser always released, and an adaptive
delay applied, whatever the outcome.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Sequence

from sentineliq.core.errors import BrowserPoolError, ScrapeError
from sentineliq.core.text import chunked, collapse_whitespace, truncate
from cortex.config import CortexConfig
from cortex.core.browser_pool import BrowserPool
from cortex.core.extraction import RawExtraction, extract_content, parse_published
from cortex.core.resources import ResourceProbe


logger = logging.getLogger("cortex.scraping")

UTC = timezone.utc


@dataclass(frozen=True, slots=True)
class ScrapedArticle:
    url: str
    title: str
    content: str
    published_at: datetime
    author: Optional[str]
    extracted_at: datetime

    @property
    def word_count(self) -> int:
        return len(self.content.split())


@dataclass(slots=True)
class ScrapeStats:
    attempted: int = 0
    scraped: int = 0
    failed: int = 0
    invalid: int = 0
    cache_hits: int = 0
    retries: int = 0
    durations: list[float] = field(default_factory=list)


class ScrapingEngine:
    def __init__(
        self,
        config: CortexConfig,
        pool: Optional[BrowserPool] = None,
        *,
        probe: Optional[ResourceProbe] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self.pool = pool or BrowserPool(config)
        self._probe = probe or ResourceProbe()
        self._clock = clock
        self._sleep = sleep
        self._cache: dict[str, tuple[float, ScrapedArticle]] = {}
        self.stats = ScrapeStats()

    async def initialize(self) -> None:
        await self.pool.initialize()

    # ------------------------------------------------------------------ cache

    def _cache_get(self, url: str) -> Optional[ScrapedArticle]:
        entry = self._cache.get(url)
        if entry is None:
            return None
        stored_at, article = entry
        if self._clock() - stored_at > self._config.article_cache_ttl:
            del self._cache[url]
            return None
        return article

    def _cache_put(self, article: ScrapedArticle) -> None:
        if article.url not in self._cache and len(self._cache) >= self._config.article_cache_max:
            oldest = min(self._cache, key=lambda k: self._cache[k][0])
            del self._cache[oldest]
        self._cache[article.url] = (self._clock(), article)

    # ------------------------------------------------------------- validation

    def validate_content(self, raw: RawExtraction) -> Optional[ScrapedArticle]:
        cfg = self._config
        title = collapse_whitespace(raw.title)
        content = collapse_whitespace(raw.content)
        if len(title) < cfg.min_title_length:
            logger.debug("Rejected %s: title too short", raw.url)
            return None
        if len(content) < cfg.min_content_length:
            logger.debug("Rejected %s: content too short (%d chars)", raw.url, len(content))
            return None
        content = truncate(content, cfg.max_content_length, suffix="...")
        published = parse_published(raw.published)
        if published is None:
            today = datetime.now(tz=UTC)
            published = today.replace(hour=0, minute=0, second=0, microsecond=0)
        return ScrapedArticle(
            url=raw.url,
            title=title,
            content=content,
            published_at=published,
            author=collapse_whitespace(raw.author) or None,
            extracted_at=raw.extracted_at,
        )

    # ------------------------------------------------------------------- page

    async def _optimize_page(self, page: Any) -> None:
        cfg = self._config
        page.set_default_timeout(cfg.page_timeout * 1000)
        page.set_default_navigation_timeout(cfg.navigation_timeout * 1000)
        blocked = set(cfg.block_resources)
        if not blocked:
            return

        async def _route(route: Any) -> None:
            if route.request.resource_type in blocked:
                await route.abort()
            else:
                await route.continue_()

        await page.route("**/*", _route)

    async def _render(self, browser: Any, url: str) -> str:
        cfg = self._config
        context = await browser.new_context(
            user_agent=cfg.user_agent,
            viewport={"width": cfg.viewport_width, "height": cfg.viewport_height},
            ignore_https_errors=True,
        )
        try:
            page = await context.new_page()
            try:
                await self._optimize_page(page)
                response = await page.goto(url, wait_until="domcontentloaded")
                if response is not None and response.status >= 400:
                    raise ScrapeError(f"HTTP {response.status}")
                await page.wait_for_selector("body")
                return await page.content()
            finally:
                try:
                    await page.close()
                except Exception as e:  # noqa: BLE001
                    logger.debug("Page close failed for %s: %s", url, e)
        finally:
            try:
                await context.close()
            except Exception as e:  # noqa: BLE001
                logger.debug("Context close failed for %s: %s", url, e)

    async def _adaptive_delay(self) -> None:
        delay = self._config.navigation_delay
        if self._probe.status().process_memory_mb > self._config.memory_threshold_mb:
            delay *= 2
        if delay > 0:
            await self._sleep(delay)

    async def _scrape_once(self, url: str) -> Optional[ScrapedArticle]:
        browser = await self.pool.acquire()
        try:
            html = await self._render(browser, url)
        finally:
            await self.pool.release(browser)
            await self._adaptive_delay()
        raw = extract_content(html, url, self._config.selectors)
        return self.validate_content(raw)

    async def scrape_article(self, url: str) -> Optional[ScrapedArticle]:
        """Scraped article, or None when the page is unusable or unreachable."""
        cached = self._cache_get(url)
        if cached is not None:
            self.stats.cache_hits += 1
            return cached
        if self.pool.degraded:
            self.stats.failed += 1
            return None

        self.stats.attempted += 1
        started = self._clock()
        cfg = self._config
        for attempt in range(cfg.retry_attempts):
            try:
                article = await self._scrape_once(url)
                break
            except BrowserPoolError as e:
                logger.warning("No browser for %s: %s", url, e)
                self.stats.failed += 1
                return None
            except Exception as e:  # noqa: BLE001
                if attempt + 1 >= cfg.retry_attempts:
                    logger.warning("Scrape failed for %s after %d attempts: %s", url, attempt + 1, e)
                    self.stats.failed += 1
                    return None
                self.stats.retries += 1
                await self._sleep(cfg.retry_delay_base * (cfg.backoff_multiplier ** attempt))

        self.stats.durations.append(self._clock() - started)
        if article is None:
            self.stats.invalid += 1
            return None
        self.stats.scraped += 1
        self._cache_put(article)
        return article

    async def scrape_multiple_articles(self, urls: Sequence[str]) -> list[Optional[ScrapedArticle]]:
        out: list[Optional[ScrapedArticle]] = []
        for chunk in chunked(list(urls), self._config.max_concurrent_articles):
            out.extend(await asyncio.gather(*(self.scrape_article(u) for u in chunk)))
        return out

    def get_stats(self) -> dict[str, Any]:
        s = self.stats
        return {
            "attempted": s.attempted,
            "scraped": s.scraped,
            "failed": s.failed,
            "invalid": s.invalid,
            "retries": s.retries,
            "cache_hits": s.cache_hits,
            "cache_size": len(self._cache),
            "average_seconds": round(sum(s.durations) / len(s.durations), 3) if s.durations else 0.0,
            "pool": self.pool.get_stats(),
        }

    async def cleanup(self) -> None:
        await self.pool.close()
        self._cache.clear()
