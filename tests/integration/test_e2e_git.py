from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest
from typer.testing import CliRunner

from binsync.cli import app
from binsync.config import ArtifactSource
from binsync.ledger import StateLedger, ledger_key
from binsync.models import DiscoveryStatus
from binsync.orchestrator import SyncOrchestrator
from binsync.scanner import RepoScanner
from binsync.vcs import GitClient

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git executable not available")

runner = CliRunner()


def _git(repository: Path, *args: str) -> str:
    result = subprocess.run(
        [
            "git",
            "-c",
            "user.name=binsync tests",
            "-c",
            "user.email=tests@example.invalid",
            "-c",
            "commit.gpgsign=false",
            *args,
        ],
        cwd=repository,
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


def _make_repository(root: Path) -> Path:
    repository = root / "upstream"
    (repository / "build").mkdir(parents=True)
    _git(repository, "init", "--quiet")
    (repository / "build" / "Alpha.jar").write_bytes(b"alpha-1")
    (repository / "README.md").write_text("not an artifact\n")
    _git(repository, "add", ".")
    _git(repository, "commit", "--quiet", "-m", "first")
    return repository


def test_scan_and_install_from_real_repository(tmp_path: Path) -> None:
    repository = _make_repository(tmp_path)
    head = _git(repository, "rev-parse", "HEAD")
    source = ArtifactSource(name="upstream", address=repository.as_uri())
    client = GitClient()
    sparse = ("*.jar", "**/*.jar")

    (artifact,) = RepoScanner(client, sparse_patterns=sparse).scan(source)

    assert artifact.relative_path == "build/Alpha.jar"
    assert artifact.revision == head
    assert artifact.status is DiscoveryStatus.FOUND
    assert len(artifact.revision_date) == len("2024-01-01")

    target = tmp_path / "target"
    ledger = StateLedger(tmp_path / "ledger.toml")
    revisions: dict[str, str] = {}
    outcomes = SyncOrchestrator(client, ledger, revisions, sparse_patterns=sparse).install([artifact], target)

    assert [outcome.ok for outcome in outcomes] == [True]
    assert (target / "Alpha.jar").read_bytes() == b"alpha-1"
    assert ledger.load() == {ledger_key(source.address, "build/Alpha.jar"): head}


def test_cli_status_against_real_repository(tmp_path: Path, fake_home: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("COLUMNS", "200")
    repository = _make_repository(tmp_path)
    project = tmp_path / "project"
    target = project / "target"
    target.mkdir(parents=True)
    (project / "binsync.toml").write_text(
        f"""
[settings]
target_directory = "{target.as_posix()}"
ledger_path = "{(project / 'ledger.toml').as_posix()}"
sources_path = "{(project / 'sources.toml').as_posix()}"
"""
    )
    (project / "sources.toml").write_text(f'[[sources]]\nname = "upstream"\naddress = "{repository.as_uri()}"\n')

    installed = runner.invoke(app, ["install", "Alpha.jar", "--config", str(project / "binsync.toml")])
    assert installed.exit_code == 0, installed.stdout

    (repository / "build" / "Alpha.jar").write_bytes(b"alpha-2")
    _git(repository, "commit", "--quiet", "-am", "second")

    status = runner.invoke(app, ["status", "--config", str(project / "binsync.toml")])
    assert status.exit_code == 0
    assert "outdated" in status.stdout
