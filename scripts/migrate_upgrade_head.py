"""Upgrade the harvest schema to Alembic head (no downgrade).

Usage:
  python scripts/migrate_upgrade_head.py

Reads DATABASE_URL from:
- existing environment
- or `.env` (repo root) / `backend/.env` via sentineliq.core.env.load_env_if_present()
"""

from __future__ import annotations

import sys
from pathlib import Path

from alembic import command
from alembic.config import Config


ROOT = Path(__file__).resolve().parents[1]
BACKEND_DIR = ROOT / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from sentineliq.core.db import get_database_url  # noqa: E402
from sentineliq.core.env import load_env_if_present  # noqa: E402


def main() -> int:
    load_env_if_present()
    try:
        url = get_database_url()
    except RuntimeError as e:
        print(str(e))
        return 2

    cfg = Config(str(BACKEND_DIR / "alembic.ini"))
    cfg.set_main_option("script_location", str(BACKEND_DIR / "alembic"))
    cfg.set_main_option("sqlalchemy.url", url)

    print("Upgrading harvest schema to head...")
    command.upgrade(cfg, "head")
    print("PASS: ListUrlRss, articlesUrl, articles at head.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
