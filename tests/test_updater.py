from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from binsync.config import UpdateSettings
from binsync.errors import FeedUnavailable, NoActionableRelease, TransferFailed
from binsync.models import ReleaseInfo
from binsync.updater import RetryDecision, SelfUpdater, UpdatePreferences

RELEASE = ReleaseInfo(
    tag="v1.5.0",
    page_url="https://example.test/releases/v1.5.0",
    asset_url="https://dl.test/Setup-win-x64.exe",
    asset_name="Setup-win-x64.exe",
)


class StubFetcher:
    def __init__(self, result: ReleaseInfo | Exception) -> None:
        self.result = result
        self.calls = 0

    def latest(self) -> ReleaseInfo:
        self.calls += 1
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class FlakyDownloader:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    def download(self, url: str, destination: Path, progress=None) -> Path:
        self.calls += 1
        if self.calls <= self.failures:
            raise TransferFailed(url, "connection reset")
        destination.write_bytes(b"installer")
        return destination


def _updater(fetcher, downloader=None, *, version: str = "1.4.2", preferences=None, attempts: int = 3) -> SelfUpdater:
    return SelfUpdater(
        fetcher,
        downloader or FlakyDownloader(0),
        version,
        preferences=preferences,
        max_attempts=attempts,
    )


def test_check_offers_newer_release() -> None:
    assert _updater(StubFetcher(RELEASE)).check() == RELEASE


@pytest.mark.parametrize("current", ["1.5.0", "v1.6", "2.0.0-rc1"])
def test_check_ignores_same_or_older(current: str) -> None:
    assert _updater(StubFetcher(RELEASE), version=current).check() is None


def test_development_build_never_checks() -> None:
    fetcher = StubFetcher(RELEASE)

    assert _updater(fetcher, version="0.0.3").check() is None
    assert fetcher.calls == 0


@pytest.mark.parametrize(
    "error",
    [FeedUnavailable("offline"), NoActionableRelease("no installer")],
)
def test_check_swallows_feed_problems(error: Exception) -> None:
    assert _updater(StubFetcher(error)).check() is None


def test_skipped_release_is_not_offered(tmp_path: Path) -> None:
    preferences = UpdatePreferences(tmp_path / "updater.toml")
    preferences.skip("v1.5.0")

    assert _updater(StubFetcher(RELEASE), preferences=preferences).check() is None

    preferences.clear()
    assert _updater(StubFetcher(RELEASE), preferences=preferences).check() == RELEASE


def test_preferences_tolerate_corrupt_file(tmp_path: Path) -> None:
    path = tmp_path / "updater.toml"
    path.write_text("skipped_version = [")

    assert UpdatePreferences(path).skipped_version() == ""


def test_download_retries_until_success(tmp_path: Path) -> None:
    downloader = FlakyDownloader(failures=2)
    attempts: list[tuple[int, int]] = []

    def on_failure(error: TransferFailed, attempt: int, limit: int) -> RetryDecision:
        attempts.append((attempt, limit))
        return RetryDecision.RETRY

    path = _updater(StubFetcher(RELEASE), downloader).download(RELEASE, tmp_path, on_failure=on_failure)

    assert path == tmp_path / "Setup-win-x64.exe"
    assert attempts == [(1, 3), (2, 3)]
    assert downloader.calls == 3


def test_download_gives_up_after_max_attempts(tmp_path: Path) -> None:
    downloader = FlakyDownloader(failures=5)

    with pytest.raises(TransferFailed):
        _updater(StubFetcher(RELEASE), downloader, attempts=2).download(RELEASE, tmp_path)

    assert downloader.calls == 2


def test_download_skip_remembers_version(tmp_path: Path) -> None:
    preferences = UpdatePreferences(tmp_path / "updater.toml")
    updater = _updater(StubFetcher(RELEASE), FlakyDownloader(1), preferences=preferences)

    result = updater.download(RELEASE, tmp_path, on_failure=lambda *_: RetryDecision.SKIP)

    assert result is None
    assert preferences.skipped_version() == "v1.5.0"


def test_download_abandon_leaves_preferences_alone(tmp_path: Path) -> None:
    preferences = UpdatePreferences(tmp_path / "updater.toml")
    updater = _updater(StubFetcher(RELEASE), FlakyDownloader(1), preferences=preferences)

    assert updater.download(RELEASE, tmp_path, on_failure=lambda *_: RetryDecision.ABANDON) is None
    assert preferences.skipped_version() == ""


def test_from_settings(tmp_path: Path) -> None:
    disabled = UpdateSettings(preferences_path=tmp_path / "prefs.toml", download_dir=tmp_path)
    assert SelfUpdater.from_settings(disabled, "1.0.0") is None

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "tag_name": "v1.1.0",
                "assets": [{"name": "tool-linux.deb", "browser_download_url": "https://dl.test/tool.deb"}],
            },
        )

    enabled = UpdateSettings(
        owner="acme",
        repo="tool",
        max_attempts=4,
        preferences_path=tmp_path / "prefs.toml",
        download_dir=tmp_path,
    )
    client = httpx.Client(transport=httpx.MockTransport(handler))
    updater = SelfUpdater.from_settings(enabled, "1.0.0", client=client, platform="linux")

    assert updater is not None
    assert updater.max_attempts == 4
    release = updater.check()
    assert release is not None and release.asset_name == "tool-linux.deb"


def test_download_keeps_asset_inside_directory(tmp_path: Path) -> None:
    directory = tmp_path / "downloads"
    directory.mkdir()
    escaping = ReleaseInfo(tag="v1.5.0", asset_url="https://dl.test/x.exe", asset_name="../../x.exe")

    path = _updater(StubFetcher(escaping)).download(escaping, directory)

    assert path == directory / "x.exe"
    assert not (tmp_path / "x.exe").exists()

    dotted = ReleaseInfo(tag="v1.5.0", asset_url="https://dl.test/x.exe", asset_name="..")
    with pytest.raises(NoActionableRelease):
        _updater(StubFetcher(dotted)).download(dotted, directory)
