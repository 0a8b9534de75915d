"""SQLAlchemy models package.

All ORM classes are imported here so `Base.metadata` is complete for Alembic
and for `create_all` in tests, whatever the import order of callers.
"""

from sentineliq.models import (  # noqa: F401
    article,
    article_url,
    rss_feed,
)
