from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from sentineliq.core.base import Base, CreatedAtMixin, IntegerPrimaryKeyMixin


class ArticleUrl(IntegerPrimaryKeyMixin, CreatedAtMixin, Base):
    """Article link discovered by WireScanner, waiting for Cortex extraction."""

    __tablename__ = "articlesUrl"

    url: Mapped[str] = mapped_column(Text, nullable=False, unique=True, index=True)
    title: Mapped[str] = mapped_column("titre", Text, nullable=False, default="")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True, default="")
    published_at: Mapped[Optional[datetime]] = mapped_column("datePublication", DateTime(timezone=True), nullable=True)
    source: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"ArticleUrl(id={self.id!r}, url={self.url!r})"
