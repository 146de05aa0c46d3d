"""Chunked HTTP downloads with progress reporting."""

from __future__ import annotations

import logging
import os
from contextlib import nullcontext
from pathlib import Path
from typing import Callable

import httpx

from .errors import TransferFailed
from .filesystem import CHUNK_SIZE, copy_stream, ensure_parent
from .releases import USER_AGENT

logger = logging.getLogger(__name__)

FractionCallback = Callable[[float], None]


class Downloader:
    """Streams a URL to disk.

    Data lands in ``<destination>.part`` first and is renamed once
    complete. A leftover ``.part`` file is resumed with a ``Range`` request
    when the server supports it. Retrying is left to the caller.
    """

    def __init__(
        self,
        client: httpx.Client | None = None,
        *,
        chunk_size: int = CHUNK_SIZE,
        timeout: float = 60.0,
    ) -> None:
        self._client = client
        self.chunk_size = chunk_size
        self.timeout = timeout

    def download(self, url: str, destination: Path, progress: FractionCallback | None = None) -> Path:
        """Fetch ``url`` into ``destination`` and return ``destination``.

        Raises:
            TransferFailed: On HTTP errors, dropped connections, short
                bodies, or local write failures.
        """

        ensure_parent(destination)
        partial = destination.with_name(f"{destination.name}.part")
        offset = partial.stat().st_size if partial.exists() else 0

        headers = {"User-Agent": USER_AGENT}
        if offset:
            headers["Range"] = f"bytes={offset}-"

        try:
            with self._session() as client:
                with client.stream("GET", url, headers=headers, follow_redirects=True) as response:
                    if response.status_code == 416:
                        partial.unlink(missing_ok=True)
                        raise TransferFailed(url, "server rejected the resume request")
                    response.raise_for_status()

                    resumed = bool(offset) and response.status_code == 206
                    if not resumed:
                        offset = 0
                    length = response.headers.get("Content-Length", "")
                    total = offset + int(length) if length.isdigit() else None
                    if resumed:
                        logger.info("Resuming download of '%s' at byte %d", url, offset)

                    with partial.open("ab" if resumed else "wb") as handle:
                        written = copy_stream(
                            response.iter_bytes(self.chunk_size),
                            handle,
                            total=total,
                            start=offset,
                            progress=progress,
                        )
        except httpx.HTTPStatusError as exc:
            raise TransferFailed(url, f"HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise TransferFailed(url, str(exc) or exc.__class__.__name__) from exc
        except OSError as exc:
            raise TransferFailed(url, f"cannot write '{partial}': {exc}") from exc

        if total is not None and offset + written < total:
            raise TransferFailed(url, f"received {offset + written} of {total} bytes")

        os.replace(partial, destination)
        logger.info("Downloaded '%s' to '%s'", url, destination)
        return destination

    def _session(self):
        if self._client is not None:
            return nullcontext(self._client)
        return httpx.Client(timeout=self.timeout)
