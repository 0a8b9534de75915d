from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from sentineliq.core.base import utcnow
from sentineliq.core.errors import RecordValidationError
from sentineliq.core.text import is_well_formed_url
from sentineliq.models.article import Article
from sentineliq.repositories.base import BaseRepository, Filter, Order


logger = logging.getLogger("sentineliq.repositories.article")


class ArticleRepository(BaseRepository[Article]):
    """Articles extracted by Cortex (`articles`)."""

    model = Article

    async def exists_by_url(self, url: str) -> bool:
        if not url:
            return False
        try:
            return await self.exists({"url": url})
        except Exception as e:  # noqa: BLE001
            logger.error("exists_by_url failed for %s: %s", url, e)
            return False

    async def find_by_url(self, url: str) -> Optional[Article]:
        if not url:
            raise RecordValidationError("Article URL is required.")
        return await self.find_one({"url": url})

    async def save_processed_article(
        self,
        *,
        url: str,
        title: str,
        content: str,
        published_at: Optional[datetime] = None,
    ) -> Article:
        """Insert an extracted article, or refresh title/content of a known url."""
        if not url:
            raise RecordValidationError("Article URL is required.")
        if not title:
            raise RecordValidationError("Article title is required.")
        if not content:
            raise RecordValidationError("Article content is required.")

        existing = await self.find_one({"url": url})
        if existing is not None:
            changes: dict[str, Any] = {"title": title, "content": content}
            if published_at is not None:
                changes["published_at"] = published_at
            logger.info("Extracted article already stored, updating: %s", url)
            return await self.update(existing.id, changes)

        if not is_well_formed_url(url):
            raise RecordValidationError(f"Invalid article URL: {url}")

        data: dict[str, Any] = {"url": url, "title": title, "content": content}
        if published_at is not None:
            data["published_at"] = published_at
        return await self.create(data)

    async def get_recent_articles(self, *, limit: int = 50, since: Optional[datetime] = None) -> list[Article]:
        filters = {"created_at": Filter("gte", since)} if since else None
        return await self.find_all(filters=filters, order=Order("created_at", ascending=False), limit=limit)

    async def search_articles(self, term: str, *, limit: int = 20) -> list[Article]:
        if not term or not term.strip():
            raise RecordValidationError("Search term is required.")
        return await self.find_all(
            filters={"title": Filter("ilike", f"%{term.strip()}%")},
            order=Order("created_at", ascending=False),
            limit=limit,
        )

    async def get_stats(self) -> dict[str, Any]:
        total = await self.count()
        recent = await self.count({"created_at": Filter("gte", utcnow() - timedelta(hours=24))})
        return {"total": total, "recent_24h": recent}
