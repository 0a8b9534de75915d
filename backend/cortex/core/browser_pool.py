from __future__ import annotations

"""Headless browser pool (Playwright Chromium).

Pool rules:
- `initialize()` pre-launches `browser_pool_size` browsers.
- `acquire()` pops a free browser, or launches one while fewer than
  `max_concurrent_browsers` are in use, or polls every 100 ms until one is
  released (bounded by `browser_acquire_timeout`).
- `release()` returns a live browser to the free list and replaces a
  disconnected one.
- In a container a failed start falls back to a single browser, then to a
  degraded pool that launches nothing.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Protocol

from playwright.async_api import async_playwright

from sentineliq.core.errors import BrowserPoolError
from cortex.config import CortexConfig
from cortex.core.platform import PlatformInfo, detect_platform


logger = logging.getLogger("cortex.browsers")

POLL_INTERVAL_SECONDS = 0.1


class BrowserLauncher(Protocol):
    async def launch(self, **options: Any) -> Any: ...

    async def stop(self) -> None: ...


class PlaywrightLauncher:
    """Owns the Playwright driver process and launches Chromium instances."""

    def __init__(self) -> None:
        self._playwright: Any = None

    async def start(self) -> "PlaywrightLauncher":
        self._playwright = await async_playwright().start()
        return self

    async def launch(self, **options: Any) -> Any:
        if self._playwright is None:
            await self.start()
        return await self._playwright.chromium.launch(**options)

    async def stop(self) -> None:
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None


async def start_playwright() -> BrowserLauncher:
    return await PlaywrightLauncher().start()


@dataclass(slots=True)
class PoolStats:
    launched: int = 0
    replaced: int = 0
    launch_failures: int = 0
    acquisitions: int = 0
    waits: int = 0


class BrowserPool:
    def __init__(
        self,
        config: CortexConfig,
        *,
        platform: Optional[PlatformInfo] = None,
        launcher_factory: Callable[[], Awaitable[BrowserLauncher]] = start_playwright,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._platform = platform or detect_platform()
        self._launcher_factory = launcher_factory
        self._clock = clock
        self._sleep = sleep
        self._launcher: Optional[BrowserLauncher] = None
        self._free: list[Any] = []
        self._active: list[Any] = []
        self._launching = 0
        self._initialized = False
        self._degraded = False
        self.stats = PoolStats()

    @property
    def degraded(self) -> bool:
        return self._degraded

    @property
    def free_count(self) -> int:
        return len(self._free)

    @property
    def active_count(self) -> int:
        return len(self._active)

    async def _launch(self) -> Any:
        if self._launcher is None:
            raise BrowserPoolError("Browser pool is not initialized.")
        self._launching += 1
        try:
            browser = await self._launcher.launch(**self._platform.launch_options(headless=self._config.headless))
        except Exception as e:  # noqa: BLE001
            self.stats.launch_failures += 1
            raise BrowserPoolError(f"Browser launch failed: {e}") from e
        finally:
            self._launching -= 1
        self.stats.launched += 1
        return browser

    async def _close_quietly(self, browser: Any) -> None:
        try:
            await browser.close()
        except Exception as e:  # noqa: BLE001
            logger.debug("Browser close failed: %s", e)

    async def _fill(self, size: int) -> None:
        for _ in range(size):
            self._free.append(await self._launch())

    async def initialize(self) -> None:
        if self._initialized:
            return
        size = self._config.browser_pool_size
        try:
            self._launcher = await self._launcher_factory()
            await self._fill(size)
        except Exception as e:  # noqa: BLE001
            for b in self._free:
                await self._close_quietly(b)
            self._free.clear()
            if not self._platform.in_container:
                await self._stop_launcher()
                raise BrowserPoolError(f"Browser pool could not start: {e}") from e
            logger.warning("Browser pool start failed in container (%s); retrying with a single browser", e)
            try:
                if self._launcher is None:
                    self._launcher = await self._launcher_factory()
                await self._fill(1)
            except Exception as e2:  # noqa: BLE001
                logger.error("Browser pool degraded, scraping disabled: %s", e2)
                self._degraded = True
        self._initialized = True
        logger.info(
            "Browser pool ready: %d browsers, degraded=%s, platform=%s",
            len(self._free),
            self._degraded,
            self._platform.system,
        )

    async def acquire(self) -> Any:
        if not self._initialized:
            await self.initialize()
        if self._degraded:
            raise BrowserPoolError("Browser pool is degraded; no browser available.")

        deadline = self._clock() + self._config.browser_acquire_timeout
        waited = False
        while True:
            while self._free:
                browser = self._free.pop()
                if browser.is_connected():
                    self._active.append(browser)
                    self.stats.acquisitions += 1
                    return browser
                await self._close_quietly(browser)
            if len(self._active) + self._launching < self._config.max_concurrent_browsers:
                browser = await self._launch()
                self._active.append(browser)
                self.stats.acquisitions += 1
                return browser
            if self._clock() >= deadline:
                raise BrowserPoolError(
                    f"No browser released within {self._config.browser_acquire_timeout:.0f}s "
                    f"({len(self._active)} in use)."
                )
            if not waited:
                waited = True
                self.stats.waits += 1
            await self._sleep(POLL_INTERVAL_SECONDS)

    async def release(self, browser: Any) -> None:
        if browser not in self._active:
            return
        self._active.remove(browser)
        if browser.is_connected():
            self._free.append(browser)
            return
        logger.warning("Released browser is disconnected; launching a replacement")
        self.stats.replaced += 1
        await self._close_quietly(browser)
        try:
            self._free.append(await self._launch())
        except BrowserPoolError as e:
            logger.error("Replacement launch failed: %s", e)

    @asynccontextmanager
    async def browser(self) -> AsyncIterator[Any]:
        b = await self.acquire()
        try:
            yield b
        finally:
            await self.release(b)

    async def _stop_launcher(self) -> None:
        if self._launcher is not None:
            try:
                await self._launcher.stop()
            except Exception as e:  # noqa: BLE001
                logger.debug("Playwright stop failed: %s", e)
            self._launcher = None

    async def close(self) -> None:
        for b in self._free + self._active:
            await self._close_quietly(b)
        self._free.clear()
        self._active.clear()
        await self._stop_launcher()
        self._initialized = False
        self._degraded = False

    async def __aenter__(self) -> "BrowserPool":
        await self.initialize()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    def get_stats(self) -> dict[str, Any]:
        return {
            "free": len(self._free),
            "active": len(self._active),
            "degraded": self._degraded,
            "launched": self.stats.launched,
            "replaced": self.stats.replaced,
            "launch_failures": self.stats.launch_failures,
            "acquisitions": self.stats.acquisitions,
            "waits": self.stats.waits,
        }
