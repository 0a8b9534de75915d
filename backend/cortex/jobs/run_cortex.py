from __future__ import annotations

"""Cortex job entry point: articlesUrl -> headless browser -> articles.

STRICT:
- Reads `articlesUrl`, writes only `articles`.
- Failure isolated per article; a session with failed pages is still a completed session.
- Scheduling is external; WireScanner also starts this job after a crawl with new links.

Run:
  python cortex/jobs/run_cortex.py [--mode fast|balanced|quality] [--max-articles N]
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

# Ensure `backend/` is on sys.path so `import sentineliq...` works when run from repo root.
BASE_DIR = Path(__file__).resolve().parents[2]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from sentineliq.core.env import load_env_if_present  # noqa: E402
from cortex.config import ProcessingMode, load_cortex_config  # noqa: E402
from cortex.core.session import CortexSession  # noqa: E402


logger = logging.getLogger("cortex")
logger.setLevel(logging.INFO)

if not logging.getLogger().handlers:
    logging.basicConfig(level=logging.INFO, format="%(message)s")


def _log(event: dict) -> None:
    logger.info(json.dumps(event, ensure_ascii=False))


def _positive_int(value: str) -> int:
    n = int(value)
    if n < 1:
        raise argparse.ArgumentTypeError("must be >= 1")
    return n


async def run(*, mode: Optional[str] = None, max_articles: Optional[int] = None) -> int:
    config = load_cortex_config(mode=mode)
    _log({"event": "cortex_run_started", "mode": mode or ProcessingMode.BALANCED.value, "max_articles": max_articles})
    session = CortexSession(config)
    await session.run(max_articles)
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Cortex article extraction session")
    parser.add_argument("--mode", choices=[m.value for m in ProcessingMode], default=None)
    parser.add_argument("--max-articles", type=_positive_int, default=None)
    args = parser.parse_args(argv)

    load_env_if_present()
    try:
        return asyncio.run(run(mode=args.mode, max_articles=args.max_articles))
    except RuntimeError as e:
        # HarvestError and missing DATABASE_URL both land here.
        _log({"event": "cortex_run_failed", "error_type": type(e).__name__, "error": str(e)})
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
