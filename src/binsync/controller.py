"""Top-level controller wiring scanning, matching and syncing together."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Sequence

import httpx

from .cache import ArtifactCache
from .config import ArtifactSource, Config, store_target_directory
from .errors import SourceUnreachable
from .ledger import StateLedger
from .matcher import InstalledSetMatcher
from .models import InstalledArtifact, ProgressEvent, ReleaseInfo, ScanReport, SyncOutcome, TrackedArtifact
from .orchestrator import ProgressCallback, SyncOrchestrator
from .scanner import RepoScanner
from .updater import SelfUpdater
from .vcs import GitClient, VersionControl

logger = logging.getLogger(__name__)

Dispatcher = Callable[[Callable[[], None]], None]
ListingCallback = Callable[[list[InstalledArtifact]], None]


def run_inline(callback: Callable[[], None]) -> None:
    callback()


def _failed_scan(source: ArtifactSource, exc: Exception) -> ScanReport:
    if isinstance(exc, SourceUnreachable):
        logger.warning("Scan of '%s' failed: %s", source.name, exc)
    else:
        logger.error("Scan of '%s' failed unexpectedly", source.name, exc_info=exc)
    return ScanReport(source.name, source.address, error=f"Error scanning repo: {exc}")


class DirectoryPicker(ABC):
    """Capability the interactive layer provides for choosing the target directory."""

    @abstractmethod
    def pick_directory(self) -> Path | None:
        """Return the chosen directory, or ``None`` if the operator cancelled."""


class SyncController:
    """Owns the ledger, the scan cache and the components that use them.

    Results meant for the interactive layer, such as progress events and
    refreshed listings, go through ``dispatch`` so a UI can marshal them
    onto its own thread. Background work runs on a single worker thread.
    """

    def __init__(
        self,
        config: Config,
        sources: Sequence[ArtifactSource],
        *,
        vcs: VersionControl | None = None,
        ledger: StateLedger | None = None,
        cache: ArtifactCache | None = None,
        dispatch: Dispatcher = run_inline,
        progress: ProgressCallback | None = None,
    ) -> None:
        self.config = config
        self.sources = list(sources)
        settings = config.settings
        self.vcs = vcs or GitClient(settings.git_executable)
        self.ledger = ledger or StateLedger(settings.ledger_path, settings.ledger_fallback_path)
        self.revisions: dict[str, str] = self.ledger.load()
        self.cache = cache or ArtifactCache()
        self.dispatch = dispatch
        self.progress = progress
        self.installed: list[InstalledArtifact] = []

        sparse = settings.sparse_patterns()
        self.scanner = RepoScanner(self.vcs, depth=settings.history_depth, sparse_patterns=sparse)
        self.matcher = InstalledSetMatcher(settings.artifact_suffix)
        self.orchestrator = SyncOrchestrator(
            self.vcs,
            self.ledger,
            self.revisions,
            depth=settings.history_depth,
            sparse_patterns=sparse,
            progress=self._report,
        )
        self._background: ThreadPoolExecutor | None = None

    @property
    def target_directory(self) -> Path | None:
        return self.config.settings.target_directory

    def set_target_directory(self, target: Path, *, persist: bool = True) -> None:
        target = target.expanduser().resolve(strict=False)
        self.config = self.config.with_target_directory(target)
        if persist:
            try:
                store_target_directory(self.config.config_path, target)
            except OSError as exc:
                logger.warning("Could not save target directory: %s", exc)

    def choose_target_directory(self, picker: DirectoryPicker) -> Path | None:
        chosen = picker.pick_directory()
        if chosen is None:
            return None
        self.set_target_directory(chosen)
        self.refresh_installed()
        return self.target_directory

    def source(self, name: str) -> ArtifactSource | None:
        lowered = name.lower()
        return next((source for source in self.sources if source.name.lower() == lowered), None)

    # ------------------------------------------------------------------
    # Scanning

    def scan_source(self, source: ArtifactSource) -> ScanReport:
        """Scan one source; on failure the cached result for it is kept."""

        self._report(ProgressEvent.busy(f"Scanning {source.name}..."))
        try:
            artifacts = self.scanner.scan(source)
        except Exception as exc:  # noqa: BLE001
            self._report(ProgressEvent.idle())
            return _failed_scan(source, exc)

        self.cache.put(source.address, artifacts)
        self._report(ProgressEvent.idle())
        return ScanReport(source.name, source.address, tuple(artifacts))

    def scan_all_sources(self, on_listing: ListingCallback | None = None) -> list[ScanReport]:
        """Scan every source in declared order.

        The installed listing is recomputed after each source completes, so
        matches show up incrementally. With ``scan_workers > 1`` scans run
        on a bounded pool but results are still applied in declared order.
        """

        total = len(self.sources)
        workers = min(self.config.settings.scan_workers, total)
        reports: list[ScanReport] = []

        if workers <= 1:
            for index, source in enumerate(self.sources, start=1):
                self._report(ProgressEvent.step(f"Background scan: {source.name} ({index}/{total})", index, total))
                reports.append(self._scan_and_publish(source, self.scanner.scan, on_listing))
        else:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="binsync-scan") as pool:
                futures = [pool.submit(self.scanner.scan, source) for source in self.sources]
                for index, (source, future) in enumerate(zip(self.sources, futures), start=1):
                    self._report(ProgressEvent.step(f"Background scan: {source.name} ({index}/{total})", index, total))
                    reports.append(self._scan_and_publish(source, lambda _source, f=future: f.result(), on_listing))

        self._report(ProgressEvent.idle())
        return reports

    def refresh_installed(self) -> list[InstalledArtifact]:
        with self.cache.lock:
            listing = self._match_locked()
        return listing

    def tracked(self, source: ArtifactSource) -> tuple[TrackedArtifact, ...]:
        return self.cache.get(source.address) or ()

    # ------------------------------------------------------------------
    # Batch operations

    def install(self, selection: Sequence[TrackedArtifact]) -> list[SyncOutcome]:
        outcomes = self.orchestrator.install(selection, self.target_directory)
        self.refresh_installed()
        return outcomes

    def update_selected(self, selection: Sequence[InstalledArtifact]) -> list[SyncOutcome]:
        outcomes = self.orchestrator.update_selected(selection, self.target_directory)
        self.refresh_installed()
        return outcomes

    def update_all(self) -> list[SyncOutcome]:
        outcomes = self.orchestrator.update_all(self.refresh_installed(), self.target_directory)
        self.refresh_installed()
        return outcomes

    def delete(self, selection: Sequence[InstalledArtifact]) -> list[SyncOutcome]:
        outcomes = self.orchestrator.delete(selection)
        self.refresh_installed()
        return outcomes

    # ------------------------------------------------------------------
    # Self-update

    def check_for_update(self, current_version: str, *, client: httpx.Client | None = None) -> ReleaseInfo | None:
        """Return the release to offer the operator, or ``None`` when there is nothing to do."""

        updater = SelfUpdater.from_settings(self.config.updates, current_version, client=client)
        if updater is None:
            return None
        return updater.check()

    # ------------------------------------------------------------------
    # Background execution

    def start_background_scan(
        self,
        on_listing: ListingCallback | None = None,
        on_done: Callable[[list[ScanReport]], None] | None = None,
    ) -> Future[list[ScanReport]]:
        future = self._executor().submit(self.scan_all_sources, on_listing)
        if on_done is not None:

            def finished(done: Future[list[ScanReport]]) -> None:
                if done.cancelled():
                    return
                error = done.exception()
                if error is not None:
                    logger.error("Background scan failed", exc_info=error)
                    return
                reports = done.result()
                self.dispatch(lambda: on_done(reports))

            future.add_done_callback(finished)
        return future

    def shutdown(self, wait: bool = True) -> None:
        if self._background is not None:
            self._background.shutdown(wait=wait)
            self._background = None

    # ------------------------------------------------------------------
    # Internal helpers

    def _scan_and_publish(
        self,
        source: ArtifactSource,
        scan: Callable[[ArtifactSource], list[TrackedArtifact]],
        on_listing: ListingCallback | None,
    ) -> ScanReport:
        try:
            artifacts = scan(source)
        except Exception as exc:  # noqa: BLE001
            return _failed_scan(source, exc)

        with self.cache.lock:
            self.cache.put(source.address, artifacts)
            listing = self._match_locked()

        if on_listing is not None:
            self.dispatch(lambda: on_listing(listing))
        return ScanReport(source.name, source.address, tuple(artifacts))

    def _match_locked(self) -> list[InstalledArtifact]:
        order = [source.address for source in self.sources]
        listing = self.matcher.match(self.target_directory, self.cache.snapshot(order), self.revisions)
        self.installed = listing
        return listing

    def _executor(self) -> ThreadPoolExecutor:
        if self._background is None:
            self._background = ThreadPoolExecutor(max_workers=1, thread_name_prefix="binsync-worker")
        return self._background

    def _report(self, event: ProgressEvent) -> None:
        if self.progress is None:
            return
        callback = self.progress
        self.dispatch(lambda: callback(event))
