from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from binsync.downloader import Downloader
from binsync.errors import TransferFailed

PAYLOAD = b"0123456789abcdef"


def _downloader(handler, chunk_size: int = 4) -> Downloader:
    return Downloader(httpx.Client(transport=httpx.MockTransport(handler)), chunk_size=chunk_size)


def test_download_reports_progress(tmp_path: Path) -> None:
    fractions: list[float] = []
    destination = tmp_path / "updates" / "Setup.exe"

    result = _downloader(lambda request: httpx.Response(200, content=PAYLOAD)).download(
        "https://dl.test/Setup.exe", destination, fractions.append
    )

    assert result == destination
    assert destination.read_bytes() == PAYLOAD
    assert fractions == sorted(fractions)
    assert fractions[-1] == 1.0
    assert not (tmp_path / "updates" / "Setup.exe.part").exists()


def test_download_resumes_partial_file(tmp_path: Path) -> None:
    destination = tmp_path / "Setup.exe"
    (tmp_path / "Setup.exe.part").write_bytes(PAYLOAD[:6])
    ranges: list[str | None] = []

    def handler(request: httpx.Request) -> httpx.Response:
        ranges.append(request.headers.get("Range"))
        return httpx.Response(206, content=PAYLOAD[6:])

    fractions: list[float] = []
    _downloader(handler).download("https://dl.test/Setup.exe", destination, fractions.append)

    assert ranges == ["bytes=6-"]
    assert destination.read_bytes() == PAYLOAD
    assert fractions[0] > 6 / len(PAYLOAD)
    assert fractions[-1] == 1.0


def test_download_restarts_when_range_is_ignored(tmp_path: Path) -> None:
    destination = tmp_path / "Setup.exe"
    (tmp_path / "Setup.exe.part").write_bytes(b"garbage")

    _downloader(lambda request: httpx.Response(200, content=PAYLOAD)).download("https://dl.test/x", destination)

    assert destination.read_bytes() == PAYLOAD


def test_rejected_resume_discards_partial_file(tmp_path: Path) -> None:
    partial = tmp_path / "Setup.exe.part"
    partial.write_bytes(b"stale")

    with pytest.raises(TransferFailed, match="resume"):
        _downloader(lambda request: httpx.Response(416)).download("https://dl.test/x", tmp_path / "Setup.exe")

    assert not partial.exists()


def test_http_error_raises_transfer_failed(tmp_path: Path) -> None:
    with pytest.raises(TransferFailed, match="HTTP 503"):
        _downloader(lambda request: httpx.Response(503)).download("https://dl.test/x", tmp_path / "Setup.exe")

    assert not (tmp_path / "Setup.exe").exists()


def test_short_body_raises_and_keeps_partial(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"Content-Length": "32"}, stream=httpx.ByteStream(PAYLOAD))

    with pytest.raises(TransferFailed, match="received 16 of 32 bytes"):
        _downloader(handler).download("https://dl.test/x", tmp_path / "Setup.exe")

    assert not (tmp_path / "Setup.exe").exists()
    assert (tmp_path / "Setup.exe.part").read_bytes() == PAYLOAD


def test_connection_error_raises_transfer_failed(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    with pytest.raises(TransferFailed, match="too slow"):
        _downloader(handler).download("https://dl.test/x", tmp_path / "Setup.exe")
