"""Error taxonomy shared by the sync engine and the self-updater."""

from __future__ import annotations


class BinsyncError(RuntimeError):
    """Base class for recoverable binsync failures."""


class SourceUnreachable(BinsyncError):
    """A disposable copy of a source repository could not be obtained."""

    def __init__(self, address: str, reason: str) -> None:
        super().__init__(f"Cannot reach '{address}': {reason}")
        self.address = address
        self.reason = reason


class ArtifactMissing(BinsyncError):
    """The requested path is absent from an otherwise reachable repository."""

    def __init__(self, address: str, relative_path: str) -> None:
        super().__init__(f"'{relative_path}' not found in '{address}'")
        self.address = address
        self.relative_path = relative_path


class LedgerUnavailable(BinsyncError):
    """The revision ledger could not be read or written."""


class FeedUnavailable(BinsyncError):
    """The release feed could not be queried."""


class NoActionableRelease(BinsyncError):
    """The latest release carries no installable asset for this platform."""


class TransferFailed(BinsyncError):
    """A download ended early or the server refused it."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Download of '{url}' failed: {reason}")
        self.url = url
        self.reason = reason
