"""Self-update flow: release check, skip memory and bounded retries."""

from __future__ import annotations

import logging
import tomllib
from enum import Enum
from pathlib import Path
from typing import Callable

import httpx
from tomli_w import dump as toml_dump

from .config import UpdateSettings
from .downloader import Downloader, FractionCallback
from .errors import FeedUnavailable, NoActionableRelease, TransferFailed
from .models import ReleaseInfo
from .releases import ReleaseFetcher
from .versioning import is_development_build, is_newer

logger = logging.getLogger(__name__)


class RetryDecision(str, Enum):
    """Operator answer after a failed update download."""

    RETRY = "retry"
    SKIP = "skip"
    ABANDON = "abandon"


# (error, attempt number, attempt ceiling) -> decision
FailureHandler = Callable[[TransferFailed, int, int], RetryDecision]


class UpdatePreferences:
    """Remembers the release tag the operator chose to skip."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def skipped_version(self) -> str:
        if not self.path.exists():
            return ""
        try:
            with self.path.open("rb") as handle:
                data = tomllib.load(handle)
        except (OSError, tomllib.TOMLDecodeError) as exc:
            logger.warning("Ignoring unreadable update preferences '%s': %s", self.path, exc)
            return ""
        value = data.get("skipped_version", "")
        return value if isinstance(value, str) else ""

    def skip(self, version: str) -> None:
        self._write({"skipped_version": version})

    def clear(self) -> None:
        self._write({})

    def _write(self, payload: dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("wb") as handle:
                toml_dump(payload, handle)
        except OSError as exc:
            logger.warning("Could not save update preferences to '%s': %s", self.path, exc)


class SelfUpdater:
    """Decides whether the running application should offer an upgrade."""

    def __init__(
        self,
        fetcher: ReleaseFetcher,
        downloader: Downloader,
        current_version: str,
        *,
        preferences: UpdatePreferences | None = None,
        max_attempts: int = 3,
    ) -> None:
        self.fetcher = fetcher
        self.downloader = downloader
        self.current_version = current_version
        self.preferences = preferences
        self.max_attempts = max(1, max_attempts)

    @classmethod
    def from_settings(
        cls,
        updates: UpdateSettings,
        current_version: str,
        *,
        client: httpx.Client | None = None,
        platform: str | None = None,
    ) -> "SelfUpdater | None":
        """Build an updater from ``[updates]``; ``None`` when no feed is configured."""

        if not updates.enabled:
            return None
        fetcher = ReleaseFetcher(
            updates.owner,
            updates.repo,
            api_base=updates.api_base,
            client=client,
            platform=platform,
        )
        return cls(
            fetcher,
            Downloader(client),
            current_version,
            preferences=UpdatePreferences(updates.preferences_path),
            max_attempts=updates.max_attempts,
        )

    def check(self) -> ReleaseInfo | None:
        """Return the release to offer, or ``None`` when there is nothing to do."""

        if is_development_build(self.current_version):
            logger.debug("Development build %s; skipping update check", self.current_version)
            return None

        try:
            release = self.fetcher.latest()
        except FeedUnavailable as exc:
            logger.warning("Update check failed: %s", exc)
            return None
        except NoActionableRelease as exc:
            logger.info("%s", exc)
            return None

        if self.preferences is not None and self.preferences.skipped_version() == release.tag:
            logger.info("Release %s was skipped by the operator", release.tag)
            return None
        if not is_newer(release.tag, self.current_version):
            logger.debug("Release %s is not newer than %s", release.tag, self.current_version)
            return None
        return release

    def download(
        self,
        release: ReleaseInfo,
        directory: Path,
        *,
        progress: FractionCallback | None = None,
        on_failure: FailureHandler | None = None,
    ) -> Path | None:
        """Download the release asset, consulting ``on_failure`` between attempts.

        Returns the downloaded file, or ``None`` when the operator gave up.

        Raises:
            TransferFailed: When the last permitted attempt fails.
            NoActionableRelease: When the asset name does not name a file.
        """

        file_name = Path(release.asset_name).name
        if file_name in ("", ".", ".."):
            raise NoActionableRelease(f"Release {release.tag} has an unusable asset name '{release.asset_name}'")
        destination = directory / file_name
        attempt = 0
        while True:
            attempt += 1
            try:
                return self.downloader.download(release.asset_url, destination, progress)
            except TransferFailed as exc:
                logger.warning("Update download attempt %d/%d failed: %s", attempt, self.max_attempts, exc)
                if attempt >= self.max_attempts:
                    raise
                decision = on_failure(exc, attempt, self.max_attempts) if on_failure else RetryDecision.RETRY

            if decision is RetryDecision.RETRY:
                continue
            if decision is RetryDecision.SKIP and self.preferences is not None:
                self.preferences.skip(release.tag)
            return None
