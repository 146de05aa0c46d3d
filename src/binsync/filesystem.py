"""Filesystem helpers for binsync."""

from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path
from typing import BinaryIO, Callable, Iterable

CHUNK_SIZE = 81920


def ensure_parent(path: Path) -> None:
    """Ensure the parent directory exists."""

    path.parent.mkdir(parents=True, exist_ok=True)


def copy_stream(
    chunks: Iterable[bytes],
    handle: BinaryIO,
    *,
    total: int | None = None,
    start: int = 0,
    progress: Callable[[float], None] | None = None,
) -> int:
    """Write ``chunks`` to ``handle`` and return the number of bytes written.

    ``progress`` receives the completed fraction after every chunk when
    ``total`` is known and positive.
    """

    written = start
    for chunk in chunks:
        if not chunk:
            continue
        handle.write(chunk)
        written += len(chunk)
        if progress is not None and total:
            progress(min(written / total, 1.0))
    return written - start


def _read_chunks(path: Path) -> Iterable[bytes]:
    with path.open("rb") as handle:
        yield from iter(lambda: handle.read(CHUNK_SIZE), b"")


def install_file(source: Path, target_directory: Path) -> Path:
    """Copy ``source`` into ``target_directory`` under its base name.

    An existing file of the same name is replaced in a single rename so a
    reader never observes a half-written artifact.
    """

    target_directory.mkdir(parents=True, exist_ok=True)
    destination = target_directory / source.name
    if destination.is_dir() and not destination.is_symlink():
        shutil.rmtree(destination)

    fd, temp_name = tempfile.mkstemp(prefix=f".{destination.name}.binsync-tmp-", dir=target_directory)
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "wb") as handle:
            copy_stream(_read_chunks(source), handle)
        shutil.copymode(source, temp_path)
        os.replace(temp_path, destination)
    except Exception:
        temp_path.unlink(missing_ok=True)
        raise

    return destination


def list_artifact_files(directory: Path, suffix: str) -> list[Path]:
    """Return files directly inside ``directory`` ending with ``suffix``.

    The suffix comparison ignores case; the result is sorted by name.
    """

    lowered = suffix.lower()
    files = [
        child for child in directory.iterdir() if child.is_file() and child.name.lower().endswith(lowered)
    ]
    return sorted(files, key=lambda item: item.name.lower())


def iter_repository_files(root: Path) -> list[str]:
    """Return every file below ``root`` as a POSIX relative path, skipping ``.git``."""

    found: list[str] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(name for name in dirnames if name != ".git")
        base = Path(dirpath)
        for name in sorted(filenames):
            found.append((base / name).relative_to(root).as_posix())
    return found


def remove_path(path: Path) -> bool:
    """Delete ``path`` whether it is a file, directory, or symlink.

    Returns ``False`` when there was nothing to remove.
    """

    if not path.exists() and not path.is_symlink():
        return False
    if path.is_symlink() or path.is_file():
        path.unlink()
        return True
    shutil.rmtree(path)
    return True
