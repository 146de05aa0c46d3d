"""Core package for the binsync project."""

__version__ = "0.1.0"

from .cli import app, run
from .config import ArtifactSource, Config, Settings, UpdateSettings
from .controller import DirectoryPicker, SyncController
from .errors import (
    ArtifactMissing,
    BinsyncError,
    FeedUnavailable,
    LedgerUnavailable,
    NoActionableRelease,
    SourceUnreachable,
    TransferFailed,
)
from .ledger import StateLedger
from .models import (
    DiscoveryStatus,
    InstalledArtifact,
    InstalledStatus,
    ProgressEvent,
    ReleaseInfo,
    ScanReport,
    SyncAction,
    SyncOutcome,
    TrackedArtifact,
)
from .updater import SelfUpdater

__all__ = [
    "__version__",
    "ArtifactSource",
    "Config",
    "Settings",
    "UpdateSettings",
    "DirectoryPicker",
    "SyncController",
    "ArtifactMissing",
    "BinsyncError",
    "FeedUnavailable",
    "LedgerUnavailable",
    "NoActionableRelease",
    "SourceUnreachable",
    "TransferFailed",
    "StateLedger",
    "DiscoveryStatus",
    "InstalledArtifact",
    "InstalledStatus",
    "ProgressEvent",
    "ReleaseInfo",
    "ScanReport",
    "SyncAction",
    "SyncOutcome",
    "TrackedArtifact",
    "SelfUpdater",
    "app",
    "run",
]
