"""Version-control collaborator used to read source repositories.

The engine never talks to git directly; it goes through ``VersionControl``
so scanning and installation can run against an in-memory fake in tests.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import stat
import subprocess
import tempfile
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Sequence

from .errors import BinsyncError, SourceUnreachable

logger = logging.getLogger(__name__)

HISTORY_DELIMITER = "|"
HISTORY_FORMAT = f"%H{HISTORY_DELIMITER}%as"

_HEADER_RE = re.compile(r"^(?P<revision>[0-9a-fA-F]{7,64})" + re.escape(HISTORY_DELIMITER) + r"(?P<date>.*)$")


class VcsCommandError(BinsyncError):
    """A version-control command exited with a non-zero status."""

    def __init__(self, args: Sequence[str], returncode: int, stderr: str) -> None:
        detail = stderr.strip() or f"exit status {returncode}"
        super().__init__(f"git {' '.join(args)} failed: {detail}")
        self.args_list = list(args)
        self.returncode = returncode
        self.stderr = stderr.strip()


@dataclass(frozen=True, slots=True)
class CommitRecord:
    """One commit header and the paths it touched."""

    revision: str
    date: str
    paths: tuple[str, ...]


class VersionControl(ABC):
    """Narrow interface over the external version-control client."""

    @abstractmethod
    def checkout(
        self,
        address: str,
        destination: Path,
        *,
        depth: int,
        sparse_patterns: Sequence[str] = (),
    ) -> None:
        """Populate the empty directory ``destination`` with a shallow copy of ``address``.

        Raises:
            SourceUnreachable: If no copy could be obtained.
        """

    @abstractmethod
    def history(self, repository: Path) -> str:
        """Return the batched history of ``repository``.

        The text holds one ``<revision>|<date>`` header line per commit,
        newest first, each followed by the paths that commit touched.

        Raises:
            VcsCommandError: If the history could not be read.
        """


class GitClient(VersionControl):
    """``VersionControl`` backed by the ``git`` executable."""

    def __init__(self, executable: str = "git") -> None:
        self.executable = executable

    def checkout(
        self,
        address: str,
        destination: Path,
        *,
        depth: int,
        sparse_patterns: Sequence[str] = (),
    ) -> None:
        try:
            self._sparse_fetch(address, destination, depth=depth, sparse_patterns=sparse_patterns)
            return
        except VcsCommandError as exc:
            logger.info("Sparse fetch of '%s' failed (%s); falling back to a shallow clone", address, exc)

        _clear_directory(destination)
        try:
            self._run(["clone", "--depth", str(depth), address, str(destination)], cwd=destination.parent)
        except VcsCommandError as exc:
            raise SourceUnreachable(address, exc.stderr or str(exc)) from exc

    def history(self, repository: Path) -> str:
        result = self._run(
            ["-c", "core.quotepath=off", "log", "--all", "--name-only", f"--pretty=format:{HISTORY_FORMAT}"],
            cwd=repository,
        )
        return result.stdout

    def _sparse_fetch(
        self,
        address: str,
        destination: Path,
        *,
        depth: int,
        sparse_patterns: Sequence[str],
    ) -> None:
        self._run(["init", "--quiet"], cwd=destination)
        if sparse_patterns:
            self._run(["config", "core.sparseCheckout", "true"], cwd=destination)
            sparse_file = destination / ".git" / "info" / "sparse-checkout"
            sparse_file.parent.mkdir(parents=True, exist_ok=True)
            sparse_file.write_text("".join(f"{pattern}\n" for pattern in sparse_patterns))
        self._run(["remote", "add", "origin", address], cwd=destination)
        self._run(["fetch", "--depth", str(depth), "origin"], cwd=destination)
        self._run(["checkout", "--quiet", "FETCH_HEAD"], cwd=destination)

    def _run(self, args: list[str], *, cwd: Path) -> subprocess.CompletedProcess[str]:
        env = dict(os.environ)
        env["GIT_TERMINAL_PROMPT"] = "0"
        logger.debug("Running git %s in '%s'", " ".join(args), cwd)
        try:
            result = subprocess.run(
                [self.executable, *args],
                cwd=cwd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                env=env,
                check=False,
            )
        except FileNotFoundError as exc:
            raise VcsCommandError(args, 127, f"'{self.executable}' executable not found") from exc
        except OSError as exc:
            raise VcsCommandError(args, 126, f"could not run '{self.executable}': {exc}") from exc
        if result.returncode != 0:
            raise VcsCommandError(args, result.returncode, result.stderr)
        return result


def parse_history(text: str) -> list[CommitRecord]:
    """Split batched ``git log --name-only`` output into commit records.

    A line is a header only when it starts with a hexadecimal revision
    followed by the delimiter. Path lines that contain the delimiter are
    kept as paths but reported, since they cannot be told apart from a
    header in general.
    """

    records: list[CommitRecord] = []
    revision: str | None = None
    date = ""
    paths: list[str] = []

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        header = _HEADER_RE.match(line)
        if header is not None:
            if revision is not None:
                records.append(CommitRecord(revision, date, tuple(paths)))
            revision = header.group("revision")
            date = header.group("date").strip()
            paths = []
            continue
        if revision is None:
            logger.debug("Skipping history line before the first commit header: %r", line)
            continue
        if HISTORY_DELIMITER in line:
            logger.warning("History path %r contains the '%s' delimiter; attribution may be wrong", line, HISTORY_DELIMITER)
        paths.append(line.replace("\\", "/"))

    if revision is not None:
        records.append(CommitRecord(revision, date, tuple(paths)))
    return records


@contextmanager
def disposable_checkout(
    vcs: VersionControl,
    address: str,
    *,
    depth: int,
    sparse_patterns: Sequence[str] = (),
) -> Iterator[Path]:
    """Yield a fresh shallow copy of ``address`` that is deleted on exit."""

    workdir = Path(tempfile.mkdtemp(prefix="binsync_repo_"))
    logger.debug("Checking out '%s' into '%s'", address, workdir)
    try:
        vcs.checkout(address, workdir, depth=depth, sparse_patterns=sparse_patterns)
        yield workdir
    finally:
        _remove_tree(workdir)


def _clear_directory(directory: Path) -> None:
    _remove_tree(directory)
    directory.mkdir(parents=True, exist_ok=True)


def _remove_tree(directory: Path) -> None:
    if not directory.exists():
        return
    try:
        shutil.rmtree(directory)
        return
    except OSError:
        pass

    # git marks pack files read-only, which blocks deletion on some platforms.
    for dirpath, _dirnames, filenames in os.walk(directory):
        for name in filenames:
            target = Path(dirpath) / name
            try:
                target.chmod(stat.S_IWRITE | stat.S_IREAD)
            except OSError:
                continue
    shutil.rmtree(directory, ignore_errors=True)
    if directory.exists():
        logger.warning("Could not fully remove temporary checkout '%s'", directory)
