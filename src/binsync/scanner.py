"""Discover artifacts inside a source repository."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Sequence

from .config import ArtifactSource
from .filesystem import iter_repository_files
from .models import DiscoveryStatus, TrackedArtifact
from .vcs import VcsCommandError, VersionControl, disposable_checkout, parse_history

logger = logging.getLogger(__name__)


class RepoScanner:
    """Produces the current ``TrackedArtifact`` set for a source.

    Every call works on its own disposable copy of the repository, which
    is removed before ``scan`` returns or raises.
    """

    def __init__(
        self,
        vcs: VersionControl,
        *,
        depth: int = 1,
        sparse_patterns: Sequence[str] = (),
    ) -> None:
        self.vcs = vcs
        self.depth = depth
        self.sparse_patterns = tuple(sparse_patterns)

    def scan(self, source: ArtifactSource) -> list[TrackedArtifact]:
        """Scan ``source``.

        Raises:
            SourceUnreachable: If the repository copy could not be obtained.
        """

        logger.info("Scanning '%s' (%s)", source.name, source.address)
        with disposable_checkout(
            self.vcs,
            source.address,
            depth=self.depth,
            sparse_patterns=self.sparse_patterns,
        ) as workdir:
            pattern = source.compiled()
            matched = [path for path in iter_repository_files(workdir) if pattern.search(path)]
            revisions = self._attribute(workdir, matched)

        artifacts: list[TrackedArtifact] = []
        for path in matched:
            revision, date = revisions.get(path, ("", ""))
            artifacts.append(
                TrackedArtifact(
                    source_name=source.name,
                    address=source.address,
                    relative_path=path,
                    revision=revision,
                    revision_date=date,
                    status=DiscoveryStatus.FOUND if revision else DiscoveryStatus.UNKNOWN,
                )
            )

        logger.info("Found %d artifact(s) in '%s'", len(artifacts), source.name)
        return artifacts

    def _attribute(self, workdir: Path, paths: Iterable[str]) -> dict[str, tuple[str, str]]:
        wanted = set(paths)
        if not wanted:
            return {}

        try:
            history = self.vcs.history(workdir)
        except VcsCommandError as exc:
            logger.warning("Could not read history for attribution: %s", exc)
            return {}

        return attribute_paths(history, wanted)


def attribute_paths(history: str, wanted: set[str]) -> dict[str, tuple[str, str]]:
    """Map each wanted path to the newest ``(revision, date)`` that touched it."""

    attributed: dict[str, tuple[str, str]] = {}
    for record in parse_history(history):
        for path in record.paths:
            if path in wanted and path not in attributed:
                attributed[path] = (record.revision, record.date)
        if len(attributed) == len(wanted):
            break
    return attributed
