"""Release feed queries for the self-updater."""

from __future__ import annotations

import logging
import sys
from typing import Any, Iterable, Mapping

import httpx

from .errors import FeedUnavailable, NoActionableRelease
from .models import ReleaseInfo

logger = logging.getLogger(__name__)

USER_AGENT = "binsync-updater"

# platform key -> (name tokens identifying the platform, installer suffixes)
PLATFORM_INSTALLERS: dict[str, tuple[tuple[str, ...], tuple[str, ...]]] = {
    "windows": (("win-x64", "win64", "win32", "windows"), (".exe", ".msi")),
    "macos": (("osx", "macos", "darwin", "mac"), (".dmg", ".pkg")),
    "linux": (("linux",), (".appimage", ".deb", ".rpm")),
}


def current_platform() -> str:
    if sys.platform.startswith("win"):
        return "windows"
    if sys.platform == "darwin":
        return "macos"
    return "linux"


def select_asset(assets: Iterable[Mapping[str, Any]], platform: str | None = None) -> tuple[str, str] | None:
    """Pick ``(name, url)`` of the installable asset for ``platform``.

    The first asset that names the platform and has one of its installer
    suffixes wins; failing that, the first asset with any of those
    suffixes; failing that, nothing.
    """

    tokens, suffixes = PLATFORM_INSTALLERS[platform or current_platform()]
    candidates: list[tuple[str, str]] = []
    for asset in assets:
        if not isinstance(asset, Mapping):
            continue
        name = asset.get("name")
        url = asset.get("browser_download_url") or asset.get("download_url")
        if not isinstance(name, str) or not isinstance(url, str) or not url:
            continue
        if name.lower().endswith(suffixes):
            candidates.append((name, url))

    for name, url in candidates:
        lowered = name.lower()
        if any(token in lowered for token in tokens):
            return name, url
    return candidates[0] if candidates else None


class ReleaseFetcher:
    """Reads the latest release of ``owner/repo`` from a GitHub-style API."""

    def __init__(
        self,
        owner: str,
        repo: str,
        *,
        api_base: str = "https://api.github.com",
        client: httpx.Client | None = None,
        platform: str | None = None,
        timeout: float = 15.0,
    ) -> None:
        self.owner = owner
        self.repo = repo
        self.api_base = api_base.rstrip("/")
        self.platform = platform
        self._client = client
        self._timeout = timeout

    @property
    def url(self) -> str:
        return f"{self.api_base}/repos/{self.owner}/{self.repo}/releases/latest"

    def latest(self) -> ReleaseInfo:
        """Return the newest release together with its installable asset.

        Raises:
            FeedUnavailable: If the feed cannot be read or is malformed.
            NoActionableRelease: If the release has no asset for this platform.
        """

        data = self._get_json()
        tag = data.get("tag_name")
        if not isinstance(tag, str) or not tag.strip():
            raise FeedUnavailable(f"Release feed for {self.owner}/{self.repo} has no tag")

        release = ReleaseInfo(
            tag=tag.strip(),
            page_url=str(data.get("html_url") or ""),
            notes=str(data.get("body") or ""),
        )
        assets = data.get("assets")
        selected = select_asset(assets if isinstance(assets, list) else [], self.platform)
        if selected is None:
            raise NoActionableRelease(f"Release {release.tag} has no installable asset for this platform")
        return release.with_asset(*selected)

    def _get_json(self) -> dict[str, Any]:
        headers = {"Accept": "application/vnd.github+json", "User-Agent": USER_AGENT}
        try:
            if self._client is not None:
                response = self._client.get(self.url, headers=headers, timeout=self._timeout)
            else:
                with httpx.Client(timeout=self._timeout, follow_redirects=True) as client:
                    response = client.get(self.url, headers=headers)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            raise FeedUnavailable(f"Release feed returned HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise FeedUnavailable(f"Release feed request failed: {exc}") from exc
        except ValueError as exc:
            raise FeedUnavailable(f"Release feed returned invalid JSON: {exc}") from exc

        if not isinstance(data, dict):
            raise FeedUnavailable("Release feed returned an unexpected payload")
        return data
