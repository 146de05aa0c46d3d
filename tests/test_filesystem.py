from __future__ import annotations

import io
import os
from pathlib import Path

import pytest

from binsync.filesystem import (
    copy_stream,
    ensure_parent,
    install_file,
    iter_repository_files,
    list_artifact_files,
    remove_path,
)


def test_install_file_replaces_existing(tmp_path: Path) -> None:
    source = tmp_path / "checkout" / "build" / "Tool.jar"
    ensure_parent(source)
    source.write_bytes(b"new")
    target = tmp_path / "target"
    target.mkdir()
    (target / "Tool.jar").write_bytes(b"old")

    destination = install_file(source, target)

    assert destination == target / "Tool.jar"
    assert destination.read_bytes() == b"new"
    assert [path.name for path in target.iterdir()] == ["Tool.jar"]


def test_install_file_creates_target_directory(tmp_path: Path) -> None:
    source = tmp_path / "Tool.jar"
    source.write_bytes(b"x" * 200_000)

    destination = install_file(source, tmp_path / "missing" / "target")

    assert destination.read_bytes() == source.read_bytes()


@pytest.mark.skipif(os.name == "nt", reason="POSIX permission bits")
def test_install_file_keeps_mode(tmp_path: Path) -> None:
    source = tmp_path / "Tool.jar"
    source.write_bytes(b"x")
    source.chmod(0o640)

    destination = install_file(source, tmp_path / "target")

    assert destination.stat().st_mode & 0o777 == 0o640


def test_copy_stream_reports_fractions() -> None:
    handle = io.BytesIO()
    fractions: list[float] = []

    written = copy_stream([b"ab", b"", b"cd"], handle, total=8, start=4, progress=fractions.append)

    assert written == 4
    assert handle.getvalue() == b"abcd"
    assert fractions == [0.75, 1.0]


def test_copy_stream_without_total_stays_silent() -> None:
    fractions: list[float] = []

    copy_stream([b"abc"], io.BytesIO(), progress=fractions.append)

    assert fractions == []


def test_list_artifact_files(tmp_path: Path) -> None:
    (tmp_path / "b.jar").write_bytes(b"")
    (tmp_path / "A.JAR").write_bytes(b"")
    (tmp_path / "c.txt").write_bytes(b"")
    (tmp_path / "dir.jar").mkdir()

    assert [path.name for path in list_artifact_files(tmp_path, ".jar")] == ["A.JAR", "b.jar"]


def test_iter_repository_files_skips_git(tmp_path: Path) -> None:
    (tmp_path / ".git" / "objects").mkdir(parents=True)
    (tmp_path / ".git" / "objects" / "x.jar").write_bytes(b"")
    (tmp_path / "lib" / "sub").mkdir(parents=True)
    (tmp_path / "lib" / "sub" / "b.jar").write_bytes(b"")
    (tmp_path / "a.jar").write_bytes(b"")

    assert iter_repository_files(tmp_path) == ["a.jar", "lib/sub/b.jar"]


def test_remove_path(tmp_path: Path) -> None:
    file_path = tmp_path / "a.jar"
    file_path.write_bytes(b"")
    directory = tmp_path / "folder"
    (directory / "nested").mkdir(parents=True)

    assert remove_path(file_path)
    assert remove_path(directory)
    assert not remove_path(tmp_path / "missing.jar")
    assert list(tmp_path.iterdir()) == []
