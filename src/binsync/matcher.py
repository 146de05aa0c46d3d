"""Correlate files in the target directory with scanned artifacts."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping, Sequence

from .ledger import ledger_key
from .filesystem import list_artifact_files
from .models import InstalledArtifact, InstalledStatus, TrackedArtifact

logger = logging.getLogger(__name__)

MISSING_DIRECTORY_MESSAGE = "Please choose a valid target directory."


class InstalledSetMatcher:
    """Builds ``InstalledArtifact`` rows for a target directory.

    Matching compares base file names without regard to case. Sources are
    tried in the order of the cache snapshot and the first one holding a
    file of that name wins, so two sources publishing the same file name
    cannot be told apart; the earlier source is reported.
    """

    def __init__(self, suffix: str = ".jar") -> None:
        self.suffix = suffix

    def match(
        self,
        target_directory: Path | None,
        cache: Mapping[str, Sequence[TrackedArtifact]],
        revisions: Mapping[str, str],
    ) -> list[InstalledArtifact]:
        if target_directory is None or not target_directory.is_dir():
            return [InstalledArtifact.diagnostic(MISSING_DIRECTORY_MESSAGE)]

        try:
            files = list_artifact_files(target_directory, self.suffix)
        except OSError as exc:
            logger.warning("Could not list '%s': %s", target_directory, exc)
            return [InstalledArtifact.diagnostic(f"Cannot read target directory: {exc}")]

        index = _index_by_file_name(cache)
        installed: list[InstalledArtifact] = []
        for path in files:
            entry = InstalledArtifact(file_name=path.name, path=path)
            tracked = index.get(path.name.lower())
            if tracked is not None:
                _annotate(entry, tracked, revisions)
            installed.append(entry)

        return installed


def tracked_status(artifact: TrackedArtifact, revisions: Mapping[str, str]) -> str:
    """Describe a scanned artifact relative to the ledger."""

    saved = revisions.get(ledger_key(artifact.address, artifact.relative_path))
    if not saved:
        return artifact.status.value
    if saved == artifact.revision:
        return InstalledStatus.UP_TO_DATE.value
    return f"{InstalledStatus.OUTDATED.value} ({saved})"


def _index_by_file_name(cache: Mapping[str, Sequence[TrackedArtifact]]) -> dict[str, TrackedArtifact]:
    index: dict[str, TrackedArtifact] = {}
    for artifacts in cache.values():
        for artifact in artifacts:
            index.setdefault(artifact.file_name.lower(), artifact)
    return index


def _annotate(entry: InstalledArtifact, tracked: TrackedArtifact, revisions: Mapping[str, str]) -> None:
    saved = revisions.get(ledger_key(tracked.address, tracked.relative_path), "")
    entry.matched = True
    entry.source_name = tracked.source_name
    entry.address = tracked.address
    entry.relative_path = tracked.relative_path
    entry.remote_revision = tracked.revision
    entry.ledger_revision = saved
    if not saved:
        entry.status = InstalledStatus.MATCHED_UNTRACKED
    elif saved == tracked.revision:
        entry.status = InstalledStatus.UP_TO_DATE
    else:
        entry.status = InstalledStatus.OUTDATED
