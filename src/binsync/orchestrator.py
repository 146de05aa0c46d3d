"""Batch install, update and delete of artifacts."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Callable, MutableMapping, Sequence

from .errors import ArtifactMissing
from .filesystem import install_file, remove_path
from .ledger import StateLedger, ledger_key
from .models import InstalledArtifact, ProgressEvent, SyncAction, SyncOutcome, TrackedArtifact
from .vcs import VersionControl, disposable_checkout

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]

NO_TARGET_MESSAGE = "Please choose a target directory first."


@dataclass(frozen=True, slots=True)
class _Job:
    file_name: str
    address: str
    relative_path: str
    revision: str
    problem: str | None = None


class SyncOrchestrator:
    """Runs batches of artifact operations against the target directory.

    Items are processed one after another. A failing item becomes a failed
    ``SyncOutcome`` and the batch carries on. Ledger changes are applied to
    ``revisions`` as each copy succeeds and written to disk once per batch.
    """

    def __init__(
        self,
        vcs: VersionControl,
        ledger: StateLedger,
        revisions: MutableMapping[str, str],
        *,
        depth: int = 1,
        sparse_patterns: Sequence[str] = (),
        progress: ProgressCallback | None = None,
    ) -> None:
        self.vcs = vcs
        self.ledger = ledger
        self.revisions = revisions
        self.depth = depth
        self.sparse_patterns = tuple(sparse_patterns)
        self.progress = progress

    def install(self, selection: Sequence[TrackedArtifact], target_directory: Path | None) -> list[SyncOutcome]:
        jobs = [
            _Job(artifact.file_name, artifact.address, artifact.relative_path, artifact.revision)
            for artifact in selection
        ]
        return self._copy_batch(SyncAction.INSTALLED, "Installing", jobs, target_directory)

    def update_selected(
        self,
        selection: Sequence[InstalledArtifact],
        target_directory: Path | None,
    ) -> list[SyncOutcome]:
        jobs = [_job_for_installed(item) for item in selection if not item.is_diagnostic]
        return self._copy_batch(SyncAction.UPDATED, "Updating", jobs, target_directory)

    def update_all(self, installed: Sequence[InstalledArtifact], target_directory: Path | None) -> list[SyncOutcome]:
        return self.update_selected([item for item in installed if item.matched], target_directory)

    def delete(self, selection: Sequence[InstalledArtifact]) -> list[SyncOutcome]:
        items = [item for item in selection if not item.is_diagnostic]
        outcomes: list[SyncOutcome] = []
        changed = False
        total = len(items)

        for index, item in enumerate(items, start=1):
            self._emit(ProgressEvent.step(f"Deleting {item.file_name} ({index}/{total})", index, total))
            if item.path is None:
                outcomes.append(_failure(SyncAction.DELETED, item.file_name, "No local file recorded"))
                continue
            try:
                removed = remove_path(item.path)
            except OSError as exc:
                logger.warning("Delete of '%s' failed: %s", item.path, exc)
                outcomes.append(_failure(SyncAction.DELETED, item.file_name, f"Delete error: {exc}"))
                continue

            if item.matched:
                key = ledger_key(item.address, item.relative_path)
                if self.revisions.pop(key, None) is not None:
                    changed = True

            outcomes.append(
                SyncOutcome(
                    action=SyncAction.DELETED,
                    file_name=item.file_name,
                    ok=True,
                    address=item.address,
                    relative_path=item.relative_path,
                    message=None if removed else "File was already absent",
                )
            )

        if changed:
            self.ledger.save(self.revisions)
        self._emit(ProgressEvent.idle())
        return outcomes

    def fetch_artifact(self, address: str, relative_path: str, target_directory: Path) -> Path:
        """Copy one artifact from a fresh checkout of ``address`` into ``target_directory``.

        Raises:
            SourceUnreachable: If the repository could not be copied.
            ArtifactMissing: If ``relative_path`` does not exist in it.
        """

        with disposable_checkout(
            self.vcs,
            address,
            depth=self.depth,
            sparse_patterns=self.sparse_patterns,
        ) as workdir:
            source = _resolve_inside(workdir, relative_path)
            if source is None or not source.is_file():
                raise ArtifactMissing(address, relative_path)
            destination = install_file(source, target_directory)

        logger.info("Installed '%s' from '%s' into '%s'", relative_path, address, destination)
        return destination

    # ------------------------------------------------------------------
    # Internal helpers

    def _copy_batch(
        self,
        action: SyncAction,
        verb: str,
        jobs: Sequence[_Job],
        target_directory: Path | None,
    ) -> list[SyncOutcome]:
        if target_directory is None or not str(target_directory).strip():
            return [_failure(action, NO_TARGET_MESSAGE, NO_TARGET_MESSAGE)]

        outcomes: list[SyncOutcome] = []
        changed = False
        total = len(jobs)

        for index, job in enumerate(jobs, start=1):
            self._emit(ProgressEvent.step(f"{verb} {job.file_name} ({index}/{total})", index, total))
            if job.problem is not None:
                outcomes.append(_failure(action, job.file_name, job.problem, job))
                continue
            try:
                self.fetch_artifact(job.address, job.relative_path, target_directory)
            except Exception as exc:  # noqa: BLE001
                logger.warning("%s '%s' failed: %s", verb, job.relative_path, exc)
                outcomes.append(_failure(action, job.file_name, f"{action.value.capitalize()} error: {exc}", job))
                continue

            key = ledger_key(job.address, job.relative_path)
            if self.revisions.get(key) != job.revision:
                self.revisions[key] = job.revision
                changed = True
            outcomes.append(
                SyncOutcome(
                    action=action,
                    file_name=job.file_name,
                    ok=True,
                    address=job.address,
                    relative_path=job.relative_path,
                    revision=job.revision,
                )
            )

        if changed:
            self.ledger.save(self.revisions)
        self._emit(ProgressEvent.idle())
        return outcomes

    def _emit(self, event: ProgressEvent) -> None:
        if self.progress is not None:
            self.progress(event)


def _job_for_installed(item: InstalledArtifact) -> _Job:
    if not item.matched:
        return _Job(item.file_name, "", "", "", problem="Not provided by any configured source")
    return _Job(item.file_name, item.address, item.relative_path, item.remote_revision)


def _failure(action: SyncAction, file_name: str, message: str, job: _Job | None = None) -> SyncOutcome:
    return SyncOutcome(
        action=action,
        file_name=file_name,
        ok=False,
        address=job.address if job else "",
        relative_path=job.relative_path if job else "",
        message=message,
    )


def _resolve_inside(root: Path, relative_path: str) -> Path | None:
    parts = PurePosixPath(relative_path.replace("\\", "/")).parts
    if not parts or ".." in parts or parts[0] == "/":
        return None
    return root.joinpath(*parts)
