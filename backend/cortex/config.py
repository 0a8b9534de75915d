from __future__ import annotations

"""Cortex tuning, CSS selectors and processing modes.

Durations are seconds. Fields can be overridden from the `cortex:` section of
the YAML config or from `CORTEX_<FIELD>` env vars; a mode is applied on top.
"""

from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from sentineliq.core.errors import ConfigError
from sentineliq.core.settings import load_settings


class Selectors(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    article: tuple[str, ...] = ("article", "main", '[role="main"]', ".article-content", ".post-content")
    title: tuple[str, ...] = ("h1", ".article-title", ".post-title", "title")
    content: tuple[str, ...] = (".article-body", ".post-body", ".content", "article p")
    date: tuple[str, ...] = ("time", ".date", ".published", "[datetime]")
    author: tuple[str, ...] = (".author", ".byline", '[rel="author"]')


class CortexConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    # Concurrency / pool
    max_concurrent_articles: int = Field(default=3, ge=1)
    max_concurrent_browsers: int = Field(default=2, ge=1)
    browser_pool_size: int = Field(default=2, ge=0)
    browser_acquire_timeout: float = Field(default=60.0, gt=0)
    headless: bool = True

    # Page
    page_timeout: float = Field(default=10.0, gt=0)
    navigation_timeout: float = Field(default=10.0, gt=0)
    navigation_delay: float = Field(default=0.5, ge=0)
    user_agent: str = "SentinelIQ-Cortex/1.0 (Article Analyzer)"
    viewport_width: int = Field(default=1280, ge=320)
    viewport_height: int = Field(default=720, ge=240)
    block_resources: tuple[str, ...] = ("font", "image", "media")

    # Retry
    retry_attempts: int = Field(default=3, ge=1)
    retry_delay_base: float = Field(default=2.0, ge=0)
    backoff_multiplier: float = Field(default=1.5, ge=1)

    # Memory / pacing
    memory_threshold_mb: float = Field(default=150.0, gt=0)
    processing_delay: float = Field(default=0.2, ge=0)

    # Caches
    article_cache_ttl: float = Field(default=600.0, ge=0)
    article_cache_max: int = Field(default=200, ge=1)
    processed_cache_max: int = Field(default=500, ge=2)
    content_cache_max: int = Field(default=1000, ge=2)

    # Batching
    batch_size: int = Field(default=20, ge=1)
    batch_insert_size: int = Field(default=10, ge=1)
    max_articles_per_session: int = Field(default=100, ge=1)

    # Content validation
    min_content_length: int = Field(default=100, ge=0)
    max_content_length: int = Field(default=100_000, ge=1)
    min_title_length: int = Field(default=10, ge=0)
    min_words: int = Field(default=10, ge=0)
    max_words: int = Field(default=10_000, ge=1)
    max_stored_content_length: int = Field(default=10_000, ge=1)

    selectors: Selectors = Selectors()


class ProcessingMode(str, Enum):
    FAST = "fast"
    BALANCED = "balanced"
    QUALITY = "quality"


_MODE_OVERRIDES: dict[ProcessingMode, dict[str, object]] = {
    ProcessingMode.FAST: {
        "max_concurrent_articles": 5,
        "max_concurrent_browsers": 3,
        "retry_attempts": 1,
        "page_timeout": 15.0,
        "navigation_timeout": 15.0,
    },
    ProcessingMode.QUALITY: {
        "max_concurrent_articles": 1,
        "max_concurrent_browsers": 1,
        "retry_attempts": 5,
        "page_timeout": 60.0,
        "navigation_timeout": 60.0,
    },
    ProcessingMode.BALANCED: {},
}


def optimize_for_mode(config: CortexConfig, mode: str | ProcessingMode) -> CortexConfig:
    try:
        m = ProcessingMode(mode)
    except ValueError as e:
        allowed = ", ".join(x.value for x in ProcessingMode)
        raise ConfigError(f"Unknown Cortex mode {mode!r} (expected one of: {allowed}).") from e
    overrides = dict(_MODE_OVERRIDES[m])
    if "max_concurrent_browsers" in overrides:
        overrides["browser_pool_size"] = min(config.browser_pool_size, int(overrides["max_concurrent_browsers"]))  # type: ignore[arg-type]
    return config.model_copy(update=overrides)


def load_cortex_config(yaml_path: Optional[Path] = None, *, mode: Optional[str] = None) -> CortexConfig:
    config = load_settings(CortexConfig, section="cortex", env_prefix="CORTEX_", yaml_path=yaml_path)
    return optimize_for_mode(config, mode) if mode else config
