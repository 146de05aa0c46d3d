"""Shared models and enums for binsync."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path, PurePosixPath


class DiscoveryStatus(str, Enum):
    """Whether a scanned artifact could be attributed to a revision."""

    FOUND = "found"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class TrackedArtifact:
    """An artifact discovered inside a source repository at scan time."""

    source_name: str
    address: str
    relative_path: str
    revision: str = ""
    revision_date: str = ""
    status: DiscoveryStatus = DiscoveryStatus.UNKNOWN

    @property
    def file_name(self) -> str:
        return PurePosixPath(self.relative_path).name


class InstalledStatus(str, Enum):
    """Reconciliation state of a file in the target directory."""

    UP_TO_DATE = "up-to-date"
    OUTDATED = "outdated"
    MATCHED_UNTRACKED = "matched-untracked"
    UNMANAGED = "unmanaged"
    DIAGNOSTIC = "diagnostic"


@dataclass(slots=True)
class InstalledArtifact:
    """A file present in the local target directory.

    ``selected`` is the only mutable part callers are expected to touch; it
    marks the entry for batch operations.
    """

    file_name: str
    path: Path | None = None
    matched: bool = False
    source_name: str = ""
    address: str = ""
    relative_path: str = ""
    remote_revision: str = ""
    ledger_revision: str = ""
    status: InstalledStatus = InstalledStatus.UNMANAGED
    selected: bool = False

    @classmethod
    def diagnostic(cls, message: str) -> "InstalledArtifact":
        return cls(file_name=message, status=InstalledStatus.DIAGNOSTIC)

    @property
    def is_diagnostic(self) -> bool:
        return self.status is InstalledStatus.DIAGNOSTIC

    def describe(self) -> str:
        if self.status is InstalledStatus.OUTDATED:
            return f"outdated ({self.ledger_revision})"
        return self.status.value


class SyncAction(str, Enum):
    """Operation recorded in a batch outcome."""

    INSTALLED = "installed"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass(frozen=True, slots=True)
class SyncOutcome:
    """Per-item result of a batch operation."""

    action: SyncAction
    file_name: str
    ok: bool
    address: str = ""
    relative_path: str = ""
    revision: str = ""
    message: str | None = None


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """Progress notification emitted to the interactive layer."""

    label: str
    index: int = 0
    total: int = 0
    fraction: float | None = None
    indeterminate: bool = False

    @classmethod
    def step(cls, label: str, index: int, total: int) -> "ProgressEvent":
        fraction = index / total if total > 0 else 0.0
        return cls(label=label, index=index, total=total, fraction=fraction)

    @classmethod
    def busy(cls, label: str) -> "ProgressEvent":
        return cls(label=label, indeterminate=True)

    @classmethod
    def idle(cls) -> "ProgressEvent":
        return cls(label="")


@dataclass(frozen=True, slots=True)
class ScanReport:
    """Outcome of scanning one source; ``error`` is set when it failed."""

    source_name: str
    address: str
    artifacts: tuple[TrackedArtifact, ...] = ()
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True, slots=True)
class ReleaseInfo:
    """A published release of the host application."""

    tag: str
    page_url: str = ""
    asset_url: str = ""
    asset_name: str = ""
    notes: str = field(default="", compare=False)

    def with_asset(self, name: str, url: str) -> "ReleaseInfo":
        return replace(self, asset_name=name, asset_url=url)
