from __future__ import annotations

"""Host detection for browser launch options (macOS, Debian/Ubuntu, Alpine, containers)."""

import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional


CHROMIUM_PATH_ENV = "CHROMIUM_PATH"

_MACOS_CHROMIUM_PATHS = (
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
    "/Applications/Chromium.app/Contents/MacOS/Chromium",
)
_ALPINE_CHROMIUM_PATHS = ("/usr/bin/chromium-browser", "/usr/bin/chromium")
_LINUX_CHROMIUM_PATHS = (
    "/usr/bin/chromium-browser",
    "/usr/bin/chromium",
    "/usr/bin/google-chrome",
    "/usr/bin/google-chrome-stable",
)

_BASE_ARGS = ("--no-sandbox", "--disable-dev-shm-usage", "--disable-gpu")
_CONTAINER_ARGS = (
    "--disable-setuid-sandbox",
    "--no-first-run",
    "--no-zygote",
    "--disable-accelerated-2d-canvas",
    "--disable-features=TranslateUI",
)


@dataclass(frozen=True, slots=True)
class PlatformInfo:
    system: str  # darwin | linux | other
    distro: Optional[str]  # debian | alpine | None
    in_container: bool
    executable_path: Optional[str]
    recommended_pool_size: int
    launch_args: tuple[str, ...]

    def launch_options(self, *, headless: bool = True) -> dict[str, Any]:
        opts: dict[str, Any] = {"headless": headless, "args": list(self.launch_args)}
        # None means Playwright's bundled Chromium.
        if self.executable_path:
            opts["executable_path"] = self.executable_path
        return opts


def _read_os_release(path: Path = Path("/etc/os-release")) -> str:
    try:
        return path.read_text(encoding="utf-8").lower()
    except OSError:
        return ""


def running_in_container() -> bool:
    if os.environ.get("DOCKER_ENV") or os.environ.get("KUBERNETES_SERVICE_HOST"):
        return True
    return Path("/.dockerenv").exists()


def detect_platform(
    *,
    platform: Optional[str] = None,
    os_release: Optional[str] = None,
    in_container: Optional[bool] = None,
    exists: Callable[[str], bool] = os.path.exists,
) -> PlatformInfo:
    system = platform or sys.platform
    container = running_in_container() if in_container is None else in_container
    override = os.environ.get(CHROMIUM_PATH_ENV) or None

    if system == "darwin":
        candidates = _MACOS_CHROMIUM_PATHS
        distro = None
        pool = 3
    elif system.startswith("linux"):
        release = _read_os_release() if os_release is None else os_release.lower()
        if "alpine" in release:
            distro, candidates = "alpine", _ALPINE_CHROMIUM_PATHS
        else:
            distro = "debian" if ("debian" in release or "ubuntu" in release) else None
            candidates = _LINUX_CHROMIUM_PATHS
        system = "linux"
        pool = 2
    else:
        system, distro, candidates, pool = "other", None, (), 2

    executable = override or next((p for p in candidates if exists(p)), None)
    args = _BASE_ARGS + (_CONTAINER_ARGS if container else ())
    return PlatformInfo(
        system=system,
        distro=distro,
        in_container=container,
        executable_path=executable,
        recommended_pool_size=pool,
        launch_args=args,
    )
