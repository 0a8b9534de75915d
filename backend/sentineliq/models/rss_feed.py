from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Text, true
from sqlalchemy.orm import Mapped, mapped_column

from sentineliq.core.base import Base, CreatedAtMixin, IntegerPrimaryKeyMixin, UpdatedAtMixin


class RssFeed(IntegerPrimaryKeyMixin, CreatedAtMixin, UpdatedAtMixin, Base):
    """RSS/Atom feed registered for WireScanner.

    A feed that fails to fetch or parse is kept but flagged `valid=False` with
    the last error, so the next crawl skips it until it is marked valid again.
    """

    __tablename__ = "ListUrlRss"

    url: Mapped[str] = mapped_column(Text, nullable=False, unique=True, index=True)
    valid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())

    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_checked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"RssFeed(id={self.id!r}, url={self.url!r}, valid={self.valid!r})"
