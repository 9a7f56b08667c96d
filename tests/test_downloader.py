"""Tests for the archive downloader."""

from __future__ import annotations

import asyncio
from pathlib import Path

import allure
import httpx
import pytest

from mob_build.http.downloader import DownloadCancelled, Downloader

pytestmark = [
    allure.epic("Execution"),
    allure.feature("Archive Downloads"),
]


def _downloader(handler) -> Downloader:
    return Downloader(transport=httpx.MockTransport(handler))


class TestDownloader:
    def test_download_writes_file(self, tmp_path: Path) -> None:
        destination = tmp_path / "cache" / "a.7z"
        downloader = _downloader(lambda request: httpx.Response(200, content=b"payload"))

        result = asyncio.run(downloader.download("https://example.com/a.7z", destination))

        assert result.is_success
        assert result.status_code == 200
        assert result.bytes_written == 7
        assert destination.read_bytes() == b"payload"
        assert not destination.with_name("a.7z.part").exists()

    def test_existing_file_is_not_downloaded_again(self, tmp_path: Path) -> None:
        destination = tmp_path / "a.7z"
        destination.write_bytes(b"old")

        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        result = asyncio.run(_downloader(handler).download("https://example.com/a.7z", destination))

        assert result.skipped
        assert destination.read_bytes() == b"old"

    def test_http_error_status_is_reported(self, tmp_path: Path) -> None:
        destination = tmp_path / "a.7z"
        downloader = _downloader(lambda request: httpx.Response(503))

        result = asyncio.run(downloader.download("https://example.com/a.7z", destination))

        assert not result.is_success
        assert result.error == "HTTP 503"
        assert not destination.exists()

    def test_timeout_is_reported(self, tmp_path: Path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        result = asyncio.run(
            _downloader(handler).download("https://example.com/a.7z", tmp_path / "a.7z"),
        )

        assert result.error == "timeout"

    def test_cancellation_removes_partial_file(self, tmp_path: Path) -> None:
        destination = tmp_path / "a.7z"
        downloader = _downloader(lambda request: httpx.Response(200, content=b"x" * 1024))

        with pytest.raises(DownloadCancelled):
            asyncio.run(
                downloader.download(
                    "https://example.com/a.7z",
                    destination,
                    cancelled=lambda: True,
                ),
            )

        assert not destination.exists()
        assert not destination.with_name("a.7z.part").exists()
