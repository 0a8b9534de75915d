from __future__ import annotations

import sys
from pathlib import Path
from typing import Generator

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool


ROOT = Path(__file__).resolve().parents[2]

# Ensure `backend/` packages are importable as top-level modules for tests.
BACKEND_DIR = ROOT / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

import sentineliq.models  # noqa: E402,F401
from sentineliq.core.base import Base  # noqa: E402


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """No ambient tuning or `.env` leaks into a test."""
    import os

    for key in list(os.environ):
        if key.startswith(("WIRESCANNER_", "CORTEX_")) or key in ("SENTINELIQ_CONFIG_YAML", "CHROMIUM_PATH"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr("sentineliq.core.env.env_candidates", lambda: [tmp_path / ".env"])


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    """In-memory SQLite with working SAVEPOINTs (pysqlite needs explicit BEGIN)."""
    eng = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )

    @event.listens_for(eng, "connect")
    def _on_connect(dbapi_connection, _record):  # type: ignore[no-untyped-def]
        dbapi_connection.isolation_level = None

    @event.listens_for(eng, "begin")
    def _on_begin(conn):  # type: ignore[no-untyped-def]
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


class FakeProbe:
    """Stands in for psutil-backed ResourceProbe."""

    def __init__(self, memory_percent: float = 10.0, cpu_percent: float = 10.0, process_memory_mb: float = 50.0) -> None:
        self.memory_percent = memory_percent
        self.cpu_percent = cpu_percent
        self.process_memory_mb = process_memory_mb

    def status(self):  # type: ignore[no-untyped-def]
        from cortex.core.resources import SystemStatus

        return SystemStatus(
            memory_percent=self.memory_percent,
            cpu_percent=self.cpu_percent,
            process_memory_mb=self.process_memory_mb,
        )


class Sleeps:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture()
def sleeps() -> Sleeps:
    return Sleeps()


@pytest.fixture()
def probe() -> FakeProbe:
    return FakeProbe()


class FakeResponse:
    def __init__(self, status: int = 200) -> None:
        self.status = status


class FakeRoute:
    def __init__(self, resource_type: str) -> None:
        self.request = type("Req", (), {"resource_type": resource_type})()
        self.outcome: str | None = None

    async def abort(self) -> None:
        self.outcome = "aborted"

    async def continue_(self) -> None:
        self.outcome = "continued"


class FakePage:
    """Subset of playwright.async_api.Page used by the scraping engine."""

    def __init__(self, site: dict[str, object]) -> None:
        self._site = site
        self.timeouts: dict[str, float] = {}
        self.route_handler = None
        self.closed = False
        self._html = ""

    def set_default_timeout(self, ms: float) -> None:
        self.timeouts["default"] = ms

    def set_default_navigation_timeout(self, ms: float) -> None:
        self.timeouts["navigation"] = ms

    async def route(self, pattern: str, handler) -> None:  # type: ignore[no-untyped-def]
        self.route_handler = handler

    async def goto(self, url: str, *, wait_until: str = "load") -> FakeResponse:
        page = self._site.get(url)
        if isinstance(page, list):
            page = page.pop(0) if len(page) > 1 else page[0]
        if isinstance(page, BaseException):
            raise page
        if page is None:
            return FakeResponse(404)
        if isinstance(page, int):
            return FakeResponse(page)
        self._html = str(page)
        return FakeResponse(200)

    async def wait_for_selector(self, selector: str) -> None:
        return None

    async def content(self) -> str:
        return self._html

    async def close(self) -> None:
        self.closed = True


class FakeContext:
    def __init__(self, browser: "FakeBrowser", options: dict) -> None:
        self.browser = browser
        self.options = options
        self.pages: list[FakePage] = []
        self.closed = False

    async def new_page(self) -> FakePage:
        page = FakePage(self.browser.site)
        self.pages.append(page)
        return page

    async def close(self) -> None:
        self.closed = True


class FakeBrowser:
    """Subset of playwright.async_api.Browser."""

    def __init__(self, site: dict[str, object] | None = None) -> None:
        self.site = site if site is not None else {}
        self.connected = True
        self.closed = False
        self.contexts: list[FakeContext] = []

    def is_connected(self) -> bool:
        return self.connected

    async def new_context(self, **options) -> FakeContext:  # type: ignore[no-untyped-def]
        ctx = FakeContext(self, options)
        self.contexts.append(ctx)
        return ctx

    async def close(self) -> None:
        self.closed = True
        self.connected = False


class FakeLauncher:
    def __init__(self, site: dict[str, object] | None = None, *, fail_launches: int = 0) -> None:
        self.site = site if site is not None else {}
        self.fail_launches = fail_launches
        self.browsers: list[FakeBrowser] = []
        self.launch_options: list[dict] = []
        self.stopped = False

    async def launch(self, **options) -> FakeBrowser:  # type: ignore[no-untyped-def]
        self.launch_options.append(options)
        if self.fail_launches > 0:
            self.fail_launches -= 1
            raise RuntimeError("chromium failed to start")
        b = FakeBrowser(self.site)
        self.browsers.append(b)
        return b

    async def stop(self) -> None:
        self.stopped = True
