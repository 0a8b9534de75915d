from __future__ import annotations

"""WireScanner job entry point: feeds -> validate -> candidate links -> articlesUrl.

STRICT:
- Writes only `articlesUrl` rows and the `ListUrlRss` validity flag.
- Failure isolated per feed; partial ingestion is success.
- Scheduling is external (cron, systemd timer, CI schedule).

Run:
  python wirescanner/jobs/run_wirescanner.py [--no-cortex]
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

from sentineliq.core.db import get_supabase_url  # noqa: E402
from sentineliq.core.env import load_env_if_present  # noqa: E402
from wirescanner.config import load_wirescanner_config  # noqa: E402
from wirescanner.core.cortex_launcher import launch_cortex_after_crawl  # noqa: E402
from wirescanner.core.crawler import WireScanner  # noqa: E402


logger = logging.getLogger("wirescanner")
logger.setLevel(logging.INFO)

if not logging.getLogger().handlers:
    logging.basicConfig(level=logging.INFO, format="%(message)s")


def _log(event: dict) -> None:
    logger.info(json.dumps(event, ensure_ascii=False))


async def run(*, launch_cortex: bool = True) -> int:
    config = load_wirescanner_config()
    _log({"event": "wirescanner_run_started", "project_url": get_supabase_url()})
    scanner = WireScanner(config)
    report = await scanner.crawl()
    if launch_cortex and not await launch_cortex_after_crawl(report, config):
        # Links are stored; Cortex picks them up on its next run.
        _log({"event": "wirescanner_cortex_handoff_failed"})
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="WireScanner RSS crawl")
    parser.add_argument("--no-cortex", action="store_true", help="Do not start Cortex after the crawl")
    args = parser.parse_args(argv)

    load_env_if_present()
    try:
        return asyncio.run(run(launch_cortex=not args.no_cortex))
    except RuntimeError as e:
        # HarvestError and missing DATABASE_URL both land here.
        _log({"event": "wirescanner_run_failed", "error_type": type(e).__name__, "error": str(e)})
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
