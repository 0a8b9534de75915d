from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from sentineliq.core.base import Base, CreatedAtMixin, IntegerPrimaryKeyMixin


class Article(IntegerPrimaryKeyMixin, CreatedAtMixin, Base):
    """Full article extracted by Cortex (cleaned text, no HTML)."""

    __tablename__ = "articles"

    url: Mapped[str] = mapped_column(Text, nullable=False, unique=True, index=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    published_at: Mapped[Optional[datetime]] = mapped_column("publishDate", DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"Article(id={self.id!r}, url={self.url!r})"
