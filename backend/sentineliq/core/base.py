"""SQLAlchemy declarative base and shared mixins.

Table and column names follow the hosted schema the crawlers were first
deployed against (`ListUrlRss`, `articlesUrl`, `articles`), so Python
attribute names and column names can differ.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Integer, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


UTC = timezone.utc


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class IntegerPrimaryKeyMixin:
    """Store-generated integer primary key."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)


class CreatedAtMixin:
    """Created-at timestamp (UTC timestamptz).

    Set client-side as well as server-side so rows created in one unit of work
    can be ordered before they are re-read.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )


class UpdatedAtMixin:
    """Updated-at timestamp for mutable tables."""

    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        onupdate=utcnow,
    )
