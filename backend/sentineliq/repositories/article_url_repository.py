from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select

from sentineliq.core.base import utcnow
from sentineliq.core.errors import RecordValidationError
from sentineliq.core.text import is_well_formed_url
from sentineliq.models.article_url import ArticleUrl
from sentineliq.repositories.base import BaseRepository, Order


logger = logging.getLogger("sentineliq.repositories.article_url")


class ArticleUrlRepository(BaseRepository[ArticleUrl]):
    """Article links discovered from feeds (`articlesUrl`)."""

    model = ArticleUrl

    async def exists_by_url(self, url: str) -> bool:
        if not url:
            return False
        try:
            return await self.exists({"url": url})
        except Exception as e:  # noqa: BLE001
            logger.error("exists_by_url failed for %s: %s", url, e)
            return False

    async def find_by_url(self, url: str) -> Optional[ArticleUrl]:
        if not url:
            raise RecordValidationError("Article URL is required.")
        return await self.find_one({"url": url})

    async def add_article(
        self,
        *,
        url: str,
        title: str,
        description: Optional[str] = None,
        published_at: Optional[datetime] = None,
        source: Optional[str] = None,
    ) -> tuple[ArticleUrl, bool]:
        """Insert a discovered link.

        Returns (row, created). An already known url returns the stored row
        with created=False.
        """
        if not url:
            raise RecordValidationError("Article URL is required.")
        if not title:
            raise RecordValidationError("Article title is required.")

        existing = await self.find_one({"url": url})
        if existing is not None:
            logger.debug("Article link already stored: %s", url)
            return existing, False

        if not is_well_formed_url(url):
            raise RecordValidationError(f"Invalid article URL: {url}")

        data: dict[str, Any] = {
            "url": url,
            "title": title,
            "description": description or "",
            "published_at": published_at or utcnow(),
        }
        if source:
            data["source"] = source
        row = await self.create(data)
        return row, True

    async def get_by_source(self, source: str, *, limit: int = 100, offset: int = 0) -> list[ArticleUrl]:
        return await self.find_all(
            filters={"source": source},
            order=Order("published_at", ascending=False),
            limit=limit,
            offset=offset,
        )

    async def get_recent(self, *, limit: int = 100) -> list[ArticleUrl]:
        return await self.find_all(order=Order("created_at", ascending=False), limit=limit)

    async def get_stats(self) -> dict[str, Any]:
        total = await self.count()
        with self._guard("get_stats"):
            sources = Counter(
                s or "unknown" for s in self._session.scalars(select(ArticleUrl.source)).all()
            )
        return {"total": total, "sources": dict(sources), "sources_count": len(sources)}
