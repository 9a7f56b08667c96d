"""Async archive downloads with timeout and cooperative cancellation."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_USER_AGENT = "mob-build/1.0"
CHUNK_SIZE = 64 * 1024


class DownloadCancelled(Exception):
    """The cancellation callback fired while a download was in progress."""


@dataclass(slots=True)
class DownloadResult:
    """Result of a download attempt."""

    url: str
    path: Path
    status_code: int
    bytes_written: int
    skipped: bool = False
    error: str | None = None

    @property
    def is_success(self) -> bool:
        return self.error is None


class Downloader:
    """httpx client wrapper writing responses to files via a temporary `.part` file."""

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = httpx.Timeout(timeout_seconds, connect=10.0)
        self._headers = {"User-Agent": user_agent}
        self._transport = transport

    async def download(
        self,
        url: str,
        destination: Path,
        *,
        cancelled: Callable[[], bool] | None = None,
    ) -> DownloadResult:
        """Fetch `url` into `destination` unless the file already exists."""

        if destination.is_file():
            logger.debug("%s already downloaded", destination)
            return DownloadResult(
                url=url,
                path=destination,
                status_code=0,
                bytes_written=0,
                skipped=True,
            )

        destination.parent.mkdir(parents=True, exist_ok=True)
        partial = destination.with_name(f"{destination.name}.part")
        written = 0
        try:
            async with (
                httpx.AsyncClient(
                    timeout=self._timeout,
                    headers=self._headers,
                    follow_redirects=True,
                    transport=self._transport,
                ) as client,
                client.stream("GET", url) as response,
            ):
                if not response.is_success:
                    return DownloadResult(
                        url=url,
                        path=destination,
                        status_code=response.status_code,
                        bytes_written=0,
                        error=f"HTTP {response.status_code}",
                    )
                with partial.open("wb") as handle:
                    async for chunk in response.aiter_bytes(CHUNK_SIZE):
                        if cancelled is not None and cancelled():
                            raise DownloadCancelled(url)
                        handle.write(chunk)
                        written += len(chunk)
                status_code = response.status_code
        except httpx.TimeoutException:
            partial.unlink(missing_ok=True)
            logger.warning("Timeout downloading %s", url)
            return _failure(url, destination, "timeout")
        except httpx.HTTPError as exc:
            partial.unlink(missing_ok=True)
            logger.warning("HTTP error downloading %s: %s", url, exc)
            return _failure(url, destination, str(exc))
        except DownloadCancelled:
            partial.unlink(missing_ok=True)
            raise

        partial.replace(destination)
        logger.info("Downloaded %s (%d bytes)", url, written)
        return DownloadResult(
            url=url,
            path=destination,
            status_code=status_code,
            bytes_written=written,
        )


def _failure(url: str, destination: Path, error: str) -> DownloadResult:
    return DownloadResult(url=url, path=destination, status_code=0, bytes_written=0, error=error)
