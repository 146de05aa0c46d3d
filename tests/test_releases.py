from __future__ import annotations

import httpx
import pytest

from binsync.errors import FeedUnavailable, NoActionableRelease
from binsync.releases import ReleaseFetcher, select_asset

WINDOWS_ASSETS = [
    {"name": "checksums.txt", "browser_download_url": "https://dl.test/checksums.txt"},
    {"name": "Tool-portable.exe", "browser_download_url": "https://dl.test/portable.exe"},
    {"name": "Tool-Setup-win-x64.exe", "browser_download_url": "https://dl.test/setup.exe"},
]


def test_select_asset_prefers_platform_installer() -> None:
    assert select_asset(WINDOWS_ASSETS, "windows") == ("Tool-Setup-win-x64.exe", "https://dl.test/setup.exe")


def test_select_asset_falls_back_to_first_installer() -> None:
    assets = [asset for asset in WINDOWS_ASSETS if "Setup" not in asset["name"]]
    assert select_asset(assets, "windows") == ("Tool-portable.exe", "https://dl.test/portable.exe")


def test_select_asset_without_installer() -> None:
    assert select_asset(WINDOWS_ASSETS[:1], "windows") is None
    assert select_asset([], "linux") is None
    assert select_asset(["junk", {"name": 3}], "linux") is None


def test_select_asset_other_platforms() -> None:
    assets = [
        {"name": "tool.exe", "browser_download_url": "https://dl.test/tool.exe"},
        {"name": "tool-macos.dmg", "browser_download_url": "https://dl.test/tool.dmg"},
        {"name": "tool-linux-x86_64.AppImage", "browser_download_url": "https://dl.test/tool.AppImage"},
    ]
    assert select_asset(assets, "macos") == ("tool-macos.dmg", "https://dl.test/tool.dmg")
    assert select_asset(assets, "linux") == ("tool-linux-x86_64.AppImage", "https://dl.test/tool.AppImage")


def _fetcher(handler) -> ReleaseFetcher:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return ReleaseFetcher("acme", "tool", api_base="https://api.test/", client=client, platform="windows")


def test_latest_release() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "tag_name": "v1.4.0",
                "html_url": "https://example.test/releases/v1.4.0",
                "body": "Fixes",
                "assets": WINDOWS_ASSETS,
            },
        )

    release = _fetcher(handler).latest()

    assert release.tag == "v1.4.0"
    assert release.asset_name == "Tool-Setup-win-x64.exe"
    assert release.asset_url == "https://dl.test/setup.exe"
    assert release.notes == "Fixes"
    assert str(seen[0].url) == "https://api.test/repos/acme/tool/releases/latest"
    assert seen[0].headers["User-Agent"] == "binsync-updater"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(404, json={"message": "Not Found"}),
        httpx.Response(200, content=b"<html>"),
        httpx.Response(200, json=["not", "a", "release"]),
        httpx.Response(200, json={"assets": []}),
    ],
)
def test_unusable_feed_raises(response: httpx.Response) -> None:
    with pytest.raises(FeedUnavailable):
        _fetcher(lambda request: response).latest()


def test_network_error_raises_feed_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    with pytest.raises(FeedUnavailable, match="request failed"):
        _fetcher(handler).latest()


def test_release_without_installer_is_not_actionable() -> None:
    payload = {"tag_name": "v2.0.0", "assets": [{"name": "notes.txt", "browser_download_url": "https://dl.test/n"}]}

    with pytest.raises(NoActionableRelease):
        _fetcher(lambda request: httpx.Response(200, json=payload)).latest()
