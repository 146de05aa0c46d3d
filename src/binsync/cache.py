"""In-memory cache of the latest scan result per source."""

from __future__ import annotations

import threading
from typing import Iterable, Sequence

from .models import TrackedArtifact


class ArtifactCache:
    """Per-source ``TrackedArtifact`` sets guarded by a single lock.

    Readers get copies; nothing outside the lock ever sees the internal
    dictionary.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._entries: dict[str, tuple[TrackedArtifact, ...]] = {}

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def put(self, address: str, artifacts: Iterable[TrackedArtifact]) -> None:
        frozen = tuple(artifacts)
        with self._lock:
            self._entries[address] = frozen

    def get(self, address: str) -> tuple[TrackedArtifact, ...] | None:
        with self._lock:
            return self._entries.get(address)

    def snapshot(self, order: Sequence[str] | None = None) -> dict[str, tuple[TrackedArtifact, ...]]:
        """Return a copy of the cache.

        With ``order`` the copy follows that address order (unknown
        addresses last, in insertion order); otherwise insertion order.
        """

        with self._lock:
            entries = dict(self._entries)

        if order is None:
            return entries

        ordered: dict[str, tuple[TrackedArtifact, ...]] = {}
        for address in order:
            if address in entries:
                ordered[address] = entries[address]
        for address, artifacts in entries.items():
            ordered.setdefault(address, artifacts)
        return ordered

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
