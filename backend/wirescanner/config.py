from __future__ import annotations

"""WireScanner tuning.

Durations are seconds. Every field can be overridden from the `wirescanner:`
section of the YAML config or from `WIRESCANNER_<FIELD>` env vars.
"""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from sentineliq.core.settings import load_settings


class WireScannerConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    # Concurrency
    max_concurrent_feeds: int = Field(default=5, ge=1)
    max_concurrent_articles: int = Field(default=10, ge=1)
    batch_size: int = Field(default=50, ge=1)
    batch_insert_size: int = Field(default=100, ge=1)

    # Network
    request_timeout: float = Field(default=30.0, gt=0)
    user_agent: str = "SentinelIQ-Harvest/1.0 (RSS Crawler)"
    retry_attempts: int = Field(default=3, ge=1)
    retry_delay_base: float = Field(default=1.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)
    max_retry_delay: float = Field(default=30.0, ge=0)

    # Memory / pacing
    memory_threshold_mb: float = Field(default=100.0, gt=0)
    article_batch_delay: float = Field(default=0.1, ge=0)

    # Caches
    feed_cache_ttl: float = Field(default=300.0, ge=0)
    feed_cache_max: int = Field(default=100, ge=1)
    existence_cache_max: int = Field(default=1000, ge=2)

    # Validation
    min_title_length: int = Field(default=50, ge=0)
    max_article_age_days: int = Field(default=30, ge=1)
    max_field_length: int = Field(default=1000, ge=1)
    validate_feed_structure: bool = True
    skip_invalid_articles: bool = True

    # Cortex hand-off
    launch_cortex: bool = True
    cortex_timeout: float = Field(default=900.0, gt=0)
    cortex_retries: int = Field(default=2, ge=0)


def load_wirescanner_config(yaml_path: Optional[Path] = None) -> WireScannerConfig:
    return load_settings(WireScannerConfig, section="wirescanner", env_prefix="WIRESCANNER_", yaml_path=yaml_path)
