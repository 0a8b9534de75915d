from __future__ import annotations

"""Hand-off from WireScanner to Cortex.

Cortex runs as a child process (its own event loop, its own browsers) so a
browser crash cannot take the crawler down with it.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Awaitable, Callable, Optional, Sequence

from wirescanner.config import WireScannerConfig
from wirescanner.core.crawler import CrawlReport


logger = logging.getLogger("wirescanner.cortex")

# backend/wirescanner/core/cortex_launcher.py -> backend/
BACKEND_DIR = Path(__file__).resolve().parents[2]
DEFAULT_COMMAND: tuple[str, ...] = (sys.executable, "-m", "cortex.jobs.run_cortex")
# Grandchildren (Playwright driver, Chromium) can keep the pipes open after a kill.
RELAY_DRAIN_SECONDS = 5.0


def _log(event: dict) -> None:
    logger.info(json.dumps(event, ensure_ascii=False))


async def _relay(stream: Optional[asyncio.StreamReader], level: int) -> None:
    if stream is None:
        return
    while True:
        line = await stream.readline()
        if not line:
            return
        logger.log(level, "[cortex] %s", line.decode("utf-8", errors="replace").rstrip())


async def run_cortex_once(command: Sequence[str], *, timeout: float, drain_timeout: float = RELAY_DRAIN_SECONDS) -> bool:
    """Run the Cortex job once; True on exit code 0 within `timeout`."""
    proc = await asyncio.create_subprocess_exec(
        *command,
        cwd=str(BACKEND_DIR),
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    relays = asyncio.gather(_relay(proc.stdout, logging.INFO), _relay(proc.stderr, logging.WARNING))
    try:
        code = await asyncio.wait_for(proc.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Cortex timed out after %.0fs, killing pid %s", timeout, proc.pid)
        proc.kill()
        await proc.wait()
        try:
            await asyncio.wait_for(relays, timeout=drain_timeout)
        except asyncio.TimeoutError:
            logger.warning("Cortex output still open %.0fs after kill, no longer relayed", drain_timeout)
        return False
    await relays
    if code != 0:
        logger.error("Cortex exited with code %s", code)
    return code == 0


async def launch_cortex_with_retry(
    config: WireScannerConfig,
    *,
    command: Sequence[str] = DEFAULT_COMMAND,
    runner: Callable[..., Awaitable[bool]] = run_cortex_once,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> bool:
    attempts = config.cortex_retries + 1
    for attempt in range(1, attempts + 1):
        try:
            if await runner(command, timeout=config.cortex_timeout):
                _log({"event": "cortex_launch_succeeded", "attempt": attempt})
                return True
        except OSError as e:
            logger.error("Cortex could not be started: %s", e)
        if attempt < attempts:
            delay = attempt * 2.0
            logger.info("Retrying Cortex in %.0fs (attempt %d/%d)", delay, attempt + 1, attempts)
            await sleep(delay)
    _log({"event": "cortex_launch_failed", "attempts": attempts})
    return False


async def launch_cortex_after_crawl(
    report: CrawlReport,
    config: WireScannerConfig,
    **kwargs,
) -> bool:
    """Run Cortex when the crawl stored new links; True when nothing was needed."""
    if not config.launch_cortex:
        return True
    _log(
        {
            "event": "cortex_handoff",
            "articles_inserted": report.articles_inserted,
            "feeds_count": report.feeds_total,
            "error_count": report.errors,
        }
    )
    if report.articles_inserted <= 0:
        logger.info("No new articles, Cortex not needed")
        return True
    return await launch_cortex_with_retry(config, **kwargs)
