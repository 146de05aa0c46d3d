from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

import pytest

from binsync.config import DEFAULT_CONFIG_FILENAME
from binsync.errors import SourceUnreachable
from binsync.vcs import HISTORY_DELIMITER, VcsCommandError, VersionControl


@pytest.fixture
def fake_home(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("USERPROFILE", str(home))
    monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
    monkeypatch.delenv("XDG_DATA_HOME", raising=False)
    return home


@dataclass
class FakeCommit:
    revision: str
    date: str
    paths: tuple[str, ...]


@dataclass
class FakeRepository:
    files: dict[str, bytes] = field(default_factory=dict)
    commits: list[FakeCommit] = field(default_factory=list)

    def commit(self, revision: str, date: str, files: dict[str, bytes]) -> None:
        """Record a commit touching ``files``; the newest commit comes first."""

        self.files.update(files)
        self.commits.insert(0, FakeCommit(revision, date, tuple(files)))

    def render_history(self) -> str:
        blocks = []
        for commit in self.commits:
            lines = [f"{commit.revision}{HISTORY_DELIMITER}{commit.date}", *commit.paths]
            blocks.append("\n".join(lines))
        return "\n\n".join(blocks) + "\n"


class FakeVersionControl(VersionControl):
    """In-memory repositories keyed by address."""

    def __init__(self) -> None:
        self.repositories: dict[str, FakeRepository] = {}
        self.checkouts: list[tuple[str, Path]] = []
        self.broken_history = False
        self._origins: dict[Path, str] = {}

    def add_repository(self, address: str) -> FakeRepository:
        repository = FakeRepository()
        self.repositories[address] = repository
        return repository

    def checkout(
        self,
        address: str,
        destination: Path,
        *,
        depth: int,
        sparse_patterns: Sequence[str] = (),
    ) -> None:
        self.checkouts.append((address, destination))
        repository = self.repositories.get(address)
        if repository is None:
            raise SourceUnreachable(address, "repository not found")
        for relative, data in repository.files.items():
            target = destination / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        (destination / ".git").mkdir(exist_ok=True)
        (destination / ".git" / "HEAD").write_text("ref: refs/heads/main\n")
        self._origins[destination] = address

    def history(self, repository: Path) -> str:
        address = self._origins.get(repository)
        if self.broken_history or address is None:
            raise VcsCommandError(["log"], 128, "fatal: not a git repository")
        return self.repositories[address].render_history()


@pytest.fixture
def fake_vcs() -> FakeVersionControl:
    return FakeVersionControl()


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """A project directory holding binsync.toml, a target directory and state paths."""

    root = tmp_path / "project"
    (root / "target").mkdir(parents=True)
    (root / DEFAULT_CONFIG_FILENAME).write_text(
        f"""
[settings]
target_directory = "{(root / 'target').as_posix()}"
ledger_path = "{(root / 'state' / 'ledger.toml').as_posix()}"
ledger_fallback_path = "{(root / 'scratch' / 'ledger.toml').as_posix()}"
sources_path = "{(root / 'sources.toml').as_posix()}"
log_dir = "{(root / 'logs').as_posix()}"
"""
    )
    (root / "sources.toml").write_text(
        """
[[sources]]
name = "alpha"
address = "https://example.test/alpha.git"

[[sources]]
name = "beta"
address = "https://example.test/beta.git"
"""
    )
    return root
