from __future__ import annotations

"""Run metrics, memory-aware pacing and retry helper for WireScanner.

Pacing is a simple threshold rule: above the memory threshold every delay is
doubled. There is no feedback model beyond that.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

import psutil

from wirescanner.config import WireScannerConfig


logger = logging.getLogger("wirescanner.performance")

T = TypeVar("T")

_MB = 1024 * 1024


def format_duration(seconds: float) -> str:
    total = int(max(seconds, 0))
    h, rem = divmod(total, 3600)
    m, s = divmod(rem, 60)
    if h:
        return f"{h}h {m}m {s}s"
    if m:
        return f"{m}m {s}s"
    return f"{s}s"


def process_memory_mb() -> float:
    return psutil.Process().memory_info().rss / _MB


@dataclass(slots=True)
class RunCounters:
    processed_feeds: int = 0
    processed_articles: int = 0
    errors: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    memory_samples: list[float] = field(default_factory=list)


class PerformanceMonitor:
    def __init__(
        self,
        config: WireScannerConfig,
        *,
        memory_probe: Callable[[], float] = process_memory_mb,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._memory_probe = memory_probe
        self._sleep = sleep
        self._started_at: Optional[float] = None
        self.counters = RunCounters()

    def start(self) -> None:
        self._started_at = time.monotonic()
        self.counters = RunCounters()
        self.sample_memory()

    def sample_memory(self) -> float:
        mb = self._memory_probe()
        self.counters.memory_samples.append(mb)
        return mb

    def record_feed(self) -> None:
        self.counters.processed_feeds += 1

    def record_articles(self, n: int = 1) -> None:
        self.counters.processed_articles += n

    def record_error(self) -> None:
        self.counters.errors += 1

    def record_cache(self, hit: bool) -> None:
        if hit:
            self.counters.cache_hits += 1
        else:
            self.counters.cache_misses += 1

    def memory_pressure(self) -> bool:
        return self.sample_memory() > self._config.memory_threshold_mb

    async def smart_delay(self, base_seconds: float) -> float:
        delay = base_seconds * 2 if self.memory_pressure() else base_seconds
        if delay > 0:
            await self._sleep(delay)
        return delay

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number `attempt` (0-based)."""
        cfg = self._config
        return min(cfg.retry_delay_base * (cfg.backoff_multiplier ** attempt), cfg.max_retry_delay)

    async def retry_with_backoff(
        self,
        op: Callable[[], Awaitable[T]],
        *,
        label: str = "operation",
        retry_on: tuple[type[BaseException], ...] = (Exception,),
    ) -> T:
        """Run `op`, retrying only exceptions listed in `retry_on`."""
        last: Optional[BaseException] = None
        for attempt in range(self._config.retry_attempts):
            try:
                return await op()
            except retry_on as e:
                last = e
                if attempt + 1 >= self._config.retry_attempts:
                    break
                delay = self.backoff_delay(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                    label,
                    attempt + 1,
                    self._config.retry_attempts,
                    e,
                    delay,
                )
                await self._sleep(delay)
        assert last is not None
        raise last

    def final_metrics(self) -> dict[str, object]:
        self.sample_memory()
        c = self.counters
        duration = time.monotonic() - self._started_at if self._started_at is not None else 0.0
        samples = c.memory_samples or [0.0]
        lookups = c.cache_hits + c.cache_misses
        return {
            "duration_seconds": round(duration, 3),
            "duration": format_duration(duration),
            "processed_feeds": c.processed_feeds,
            "processed_articles": c.processed_articles,
            "errors": c.errors,
            "memory_peak_mb": round(max(samples), 1),
            "memory_final_mb": round(samples[-1], 1),
            "memory_average_mb": round(sum(samples) / len(samples), 1),
            "feeds_per_second": round(c.processed_feeds / duration, 3) if duration > 0 else 0.0,
            "articles_per_second": round(c.processed_articles / duration, 3) if duration > 0 else 0.0,
            "cache_hit_rate": round(c.cache_hits * 100 / lookups, 1) if lookups else 0.0,
        }

    def reset(self) -> None:
        self._started_at = None
        self.counters = RunCounters()
