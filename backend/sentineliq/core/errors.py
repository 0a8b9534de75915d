from __future__ import annotations

"""Controlled errors for the harvest pipeline.

Intent:
- Per-item failures (one feed, one article, one insert) are caught, counted and
  logged by the caller; the run continues.
- Run-level failures (store unreachable, crawler already running) propagate to
  the job entry point.
"""


class HarvestError(RuntimeError):
    """Base error for WireScanner, Cortex and the repository layer."""


class ConfigError(HarvestError):
    """Raised when settings (env, YAML, mode names) are invalid."""


class RepositoryError(HarvestError):
    """Raised when a store operation fails."""

    def __init__(self, message: str, *, table: str | None = None) -> None:
        super().__init__(message)
        self.table = table


class DuplicateRecordError(RepositoryError):
    """Raised when an insert collides with an existing unique value."""


class RecordNotFoundError(RepositoryError):
    """Raised when an update targets a row that does not exist."""


class RecordValidationError(HarvestError):
    """Raised when repository input is malformed (missing url, bad url, ...)."""


class FeedError(HarvestError):
    """Raised when a feed cannot be fetched, parsed or validated."""

    def __init__(self, message: str, *, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class ArticleValidationError(HarvestError):
    """Raised when a feed item cannot become a candidate article."""


class BrowserPoolError(HarvestError):
    """Raised when no headless browser can be launched or acquired."""


class ScrapeError(HarvestError):
    """Raised when a page cannot be loaded or extracted."""


class CrawlerBusyError(HarvestError):
    """Raised when a crawl or session is started while one is running."""
