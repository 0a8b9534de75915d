from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from sentineliq.core.base import utcnow
from sentineliq.core.errors import (
    DuplicateRecordError,
    RecordNotFoundError,
    RecordValidationError,
)
from sentineliq.core.text import is_well_formed_url
from sentineliq.models.rss_feed import RssFeed
from sentineliq.repositories.base import BaseRepository, Order


logger = logging.getLogger("sentineliq.repositories.rss")


class RssRepository(BaseRepository[RssFeed]):
    """Registered RSS feeds (`ListUrlRss`)."""

    model = RssFeed

    async def get_all_feeds(self, *, active_only: bool = True) -> list[RssFeed]:
        filters = {"valid": True} if active_only else None
        feeds = await self.find_all(filters=filters, order=Order("created_at", ascending=False))
        logger.info("%d RSS feeds loaded (active_only=%s)", len(feeds), active_only)
        return feeds

    async def find_by_url(self, url: str) -> Optional[RssFeed]:
        if not url:
            raise RecordValidationError("Feed URL is required.")
        return await self.find_one({"url": url})

    async def exists_by_url(self, url: str) -> bool:
        if not url:
            return False
        try:
            return await self.exists({"url": url})
        except Exception as e:  # noqa: BLE001
            logger.error("exists_by_url failed for %s: %s", url, e)
            return False

    async def add_feed(self, url: str) -> RssFeed:
        url = (url or "").strip()
        if not url:
            raise RecordValidationError("Feed URL is required.")
        if await self.exists_by_url(url):
            raise DuplicateRecordError(f"A feed with this URL already exists: {url}", table=self.table_name)
        if not is_well_formed_url(url):
            raise RecordValidationError(f"Invalid feed URL: {url}")
        feed = await self.create({"url": url, "valid": True})
        logger.info("RSS feed added: %s", url)
        return feed

    async def update_feed(self, id_: int, data: Mapping[str, Any]) -> RssFeed:
        existing = await self.find_by_id(id_)
        if existing is None:
            raise RecordNotFoundError(f"No feed with id={id_}.", table=self.table_name)
        new_url = data.get("url")
        if new_url and new_url != existing.url:
            if await self.exists_by_url(new_url):
                raise DuplicateRecordError(f"A feed with this URL already exists: {new_url}", table=self.table_name)
            if not is_well_formed_url(new_url):
                raise RecordValidationError(f"Invalid feed URL: {new_url}")
        return await self.update(id_, data)

    async def toggle_feed_status(self, id_: int, valid: bool) -> RssFeed:
        feed = await self.update_feed(id_, {"valid": bool(valid)})
        logger.info("RSS feed %s %s", feed.url, "enabled" if valid else "disabled")
        return feed

    async def delete_feed(self, id_: int) -> bool:
        existing = await self.find_by_id(id_)
        if existing is None:
            raise RecordNotFoundError(f"No feed with id={id_}.", table=self.table_name)
        return await self.delete(id_)

    async def mark_as_valid(self, url: str) -> bool:
        feed = await self.find_one({"url": url}) if url else None
        if feed is None:
            return False
        await self.update(feed.id, {"valid": True, "last_error": None, "last_checked_at": utcnow()})
        return True

    async def mark_as_invalid(self, url: str, error: str) -> bool:
        feed = await self.find_one({"url": url}) if url else None
        if feed is None:
            return False
        await self.update(
            feed.id,
            {"valid": False, "last_error": (error or "")[:1000], "last_checked_at": utcnow()},
        )
        logger.warning("RSS feed marked invalid: %s (%s)", url, error)
        return True

    async def get_stats(self) -> dict[str, Any]:
        total = await self.count()
        valid = await self.count({"valid": True})
        return {
            "total": total,
            "valid": valid,
            "invalid": total - valid,
            "percentage_valid": round(valid * 100 / total) if total else 0,
        }
