from __future__ import annotations

import pytest

from cortex.core.platform import detect_platform, running_in_container


def test_macos_prefers_installed_chrome():
    info = detect_platform(
        platform="darwin",
        in_container=False,
        exists=lambda p: p.startswith("/Applications/Google Chrome.app"),
    )
    assert info.system == "darwin"
    assert info.recommended_pool_size == 3
    assert info.executable_path.endswith("Google Chrome")
    assert "--no-zygote" not in info.launch_args


def test_alpine_container_args():
    info = detect_platform(
        platform="linux",
        os_release='NAME="Alpine Linux"\nID=alpine\n',
        in_container=True,
        exists=lambda p: p == "/usr/bin/chromium-browser",
    )
    assert info.distro == "alpine"
    assert info.recommended_pool_size == 2
    assert info.executable_path == "/usr/bin/chromium-browser"
    for arg in ("--no-sandbox", "--disable-dev-shm-usage", "--disable-gpu", "--no-zygote"):
        assert arg in info.launch_args

    opts = info.launch_options(headless=True)
    assert opts["headless"] is True
    assert opts["executable_path"] == "/usr/bin/chromium-browser"


def test_debian_without_system_chromium_uses_bundled_browser():
    info = detect_platform(platform="linux", os_release="ID=debian\n", in_container=False, exists=lambda p: False)
    assert info.distro == "debian"
    assert info.executable_path is None
    assert "executable_path" not in info.launch_options()


def test_chromium_path_override(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("CHROMIUM_PATH", "/opt/chromium/chrome")
    info = detect_platform(platform="linux", os_release="", in_container=False, exists=lambda p: True)
    assert info.executable_path == "/opt/chromium/chrome"


def test_container_detection_from_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("KUBERNETES_SERVICE_HOST", "10.0.0.1")
    assert running_in_container() is True
