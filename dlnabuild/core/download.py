"""
HTTP download with bounded retry and atomic placement.

Source mirrors (SourceForge, osuosl, sqlite.org) are flaky, so a fetch is
retried many times with a fixed delay rather than failing the build. The
payload is streamed into a temp file beside the destination and only
renamed into place once the transfer completed, so the final name never
holds a partial file.
"""

import logging
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union

import requests
from requests.exceptions import RequestException

from dlnabuild import __version__
from dlnabuild.core.exceptions import FetchExhaustedError
from dlnabuild.core.filesystem import discard_path

logger = logging.getLogger(__name__)

DEFAULT_ATTEMPTS = 100
DEFAULT_RETRY_DELAY = 10.0
DEFAULT_TIMEOUT = 60
USER_AGENT = f"dlnabuild/{__version__}"


@dataclass
class DownloadProgress:
    """Progress information for a download."""

    bytes_downloaded: int
    total_bytes: int
    percentage: float
    speed_bps: float  # bytes per second

    def __str__(self) -> str:
        return format_progress(self)


def fetch(
    url: str,
    destination: Union[str, Path],
    attempts: int = DEFAULT_ATTEMPTS,
    retry_delay: float = DEFAULT_RETRY_DELAY,
    timeout: int = DEFAULT_TIMEOUT,
    progress_callback: Optional[Callable[[DownloadProgress], None]] = None,
) -> Path:
    """
    Download url to destination, retrying the whole transfer on failure.

    Args:
        url: URL to download from
        destination: Final path of the downloaded file
        attempts: Total number of transfer attempts
        retry_delay: Seconds to wait between attempts
        timeout: Connect/read timeout per request in seconds
        progress_callback: Optional callback for progress updates

    Returns:
        Path to downloaded file

    Raises:
        FetchExhaustedError: If every attempt failed
        ValueError: If URL is empty or attempts < 1
    """
    if not url:
        raise ValueError("URL cannot be empty")
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)

    last_error = ""
    for attempt in range(1, attempts + 1):
        try:
            _download_once(url, destination, timeout, progress_callback)
            logger.info(f"Downloaded {destination.name}")
            return destination
        except RequestException as e:
            last_error = str(e)
            if attempt == attempts:
                break
            logger.warning(
                f"Download attempt {attempt}/{attempts} for {url} failed: {e}. "
                f"Retrying in {retry_delay:g}s..."
            )
            time.sleep(retry_delay)

    raise FetchExhaustedError(url, attempts, last_error)


def _download_once(
    url: str,
    destination: Path,
    timeout: int,
    progress_callback: Optional[Callable[[DownloadProgress], None]],
) -> None:
    """
    Stream one transfer into a temp file, then rename it onto destination.

    The temp file is removed on any failure, including interrupts.
    """
    logger.info(f"Downloading {url}")

    temp_fd, temp_name = tempfile.mkstemp(
        dir=destination.parent, prefix=f".{destination.name}.", suffix=".part"
    )
    temp_path = Path(temp_name)

    try:
        with open(temp_fd, "wb") as f, requests.get(
            url,
            stream=True,
            timeout=timeout,
            allow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        ) as response:
            response.raise_for_status()

            content_length = response.headers.get("content-length")
            total_size = int(content_length) if content_length else 0

            downloaded = 0
            start_time = time.time()
            last_report = start_time

            for chunk in response.iter_content(chunk_size=65536):
                if not chunk:
                    continue
                f.write(chunk)
                downloaded += len(chunk)

                now = time.time()
                if progress_callback and (
                    now - last_report >= 0.5 or downloaded == total_size
                ):
                    elapsed = now - start_time
                    progress_callback(
                        DownloadProgress(
                            bytes_downloaded=downloaded,
                            total_bytes=total_size or downloaded,
                            percentage=(downloaded / total_size * 100)
                            if total_size
                            else 0.0,
                            speed_bps=downloaded / elapsed if elapsed > 0 else 0.0,
                        )
                    )
                    last_report = now

        os.replace(temp_path, destination)
    except BaseException:
        discard_path(temp_path)
        raise


def format_progress(progress: DownloadProgress) -> str:
    """
    Format progress for display.

    Example:
        >>> format_progress(DownloadProgress(52428800, 104857600, 50.0, 1048576))
        '50.0/100.0 MB (50.0%) at 1.0 MB/s'
    """
    mb_downloaded = progress.bytes_downloaded / 1024 / 1024
    mb_total = progress.total_bytes / 1024 / 1024
    speed_mbps = progress.speed_bps / 1024 / 1024

    if progress.percentage > 0:
        return (
            f"{mb_downloaded:.1f}/{mb_total:.1f} MB "
            f"({progress.percentage:.1f}%) at {speed_mbps:.1f} MB/s"
        )
    return f"{mb_downloaded:.1f} MB at {speed_mbps:.1f} MB/s"
