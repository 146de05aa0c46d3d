"""Durable record of the revision last installed per source path."""

from __future__ import annotations

import logging
import os
import tempfile
import tomllib
from pathlib import Path
from typing import Mapping

from tomli_w import dump as toml_dump

from .errors import LedgerUnavailable

logger = logging.getLogger(__name__)

KEY_SEPARATOR = "|"


def ledger_key(address: str, relative_path: str) -> str:
    return f"{address}{KEY_SEPARATOR}{relative_path}"


class StateLedger:
    """Persists the ``"<address>|<path>" -> revision`` mapping.

    Reads never fail: a missing or corrupt file is an empty ledger. Writes
    go to ``path`` and, if that is not possible, to ``fallback_path``; if
    both fail the write is dropped with a warning.
    """

    def __init__(self, path: Path, fallback_path: Path | None = None) -> None:
        self.path = path
        self.fallback_path = fallback_path

    def load(self) -> dict[str, str]:
        candidates = [candidate for candidate in self._candidates() if candidate.exists()]
        if not candidates:
            return {}

        # The fallback only holds data when a primary write failed, so the
        # newest file wins.
        candidates.sort(key=_mtime, reverse=True)
        for candidate in candidates:
            try:
                return self._read(candidate)
            except LedgerUnavailable as exc:
                logger.warning("Ignoring unreadable ledger: %s", exc)
        return {}

    def save(self, revisions: Mapping[str, str]) -> Path | None:
        """Write ``revisions`` and return the file written, or ``None``."""

        payload = {"revisions": {key: str(value) for key, value in sorted(revisions.items())}}
        for candidate in self._candidates():
            try:
                _write_atomic(candidate, payload)
            except OSError as exc:
                logger.warning("Could not write ledger to '%s': %s", candidate, exc)
                continue
            logger.debug("Saved %d ledger entries to '%s'", len(revisions), candidate)
            return candidate

        logger.error("Ledger changes were discarded; no writable location for %d entries", len(revisions))
        return None

    def _candidates(self) -> list[Path]:
        paths = [self.path]
        if self.fallback_path is not None and self.fallback_path != self.path:
            paths.append(self.fallback_path)
        return paths

    @staticmethod
    def _read(path: Path) -> dict[str, str]:
        try:
            with path.open("rb") as handle:
                data = tomllib.load(handle)
        except (OSError, tomllib.TOMLDecodeError) as exc:
            raise LedgerUnavailable(f"'{path}': {exc}") from exc

        section = data.get("revisions")
        if not isinstance(section, dict):
            raise LedgerUnavailable(f"'{path}' has no [revisions] table")
        return {str(key): value for key, value in section.items() if isinstance(value, str)}


def _mtime(path: Path) -> float:
    try:
        return path.stat().st_mtime
    except OSError:
        return 0.0


def _write_atomic(path: Path, payload: dict[str, object]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.binsync-tmp-", dir=path.parent)
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "wb") as handle:
            toml_dump(payload, handle)
        os.replace(temp_path, path)
    except Exception:
        temp_path.unlink(missing_ok=True)
        raise
