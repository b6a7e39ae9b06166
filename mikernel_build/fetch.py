"""Network and source-control fetch primitives.

This module handles:
- Downloading files and scripts over HTTP(S)
- Shallow single-branch git clones
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

import httpx

from mikernel_build.errors import FetchError

logger = logging.getLogger(__name__)

# Timeout for small text fetches (seconds)
TEXT_TIMEOUT = 60

# Timeout for downloads (seconds)
DOWNLOAD_TIMEOUT = 300

# Chunk size for downloads (bytes)
DOWNLOAD_CHUNK_SIZE = 64 * 1024  # 64 KB

# Timeout for git clone (seconds)
CLONE_TIMEOUT = 600


class DownloadError(Exception):
    """Raised when an HTTP download fails.

    Not fatal on its own: callers decide whether a missing download
    aborts the run.
    """

    def __init__(self, message: str, code: str = "download_error") -> None:
        """Initialize DownloadError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message)
        self.code = code


@dataclass
class DownloadResult:
    """Result of a file download."""

    path: Path
    size_bytes: int


def create_client() -> httpx.Client:
    """Create an HTTP client that follows redirects (GitHub releases need it)."""
    return httpx.Client(follow_redirects=True)


def download_file(
    client: httpx.Client,
    url: str,
    dest_path: Path,
    timeout: float = DOWNLOAD_TIMEOUT,
    chunk_size: int = DOWNLOAD_CHUNK_SIZE,
) -> DownloadResult:
    """Download a file.

    Args:
        client: HTTPX client instance.
        url: URL to download from.
        dest_path: Destination path for the downloaded file.
        timeout: Download timeout in seconds.
        chunk_size: Size of chunks to download.

    Returns:
        DownloadResult with path and size.

    Raises:
        DownloadError: If download fails. No partial file is left behind.
    """
    logger.info("Downloading %s to %s", url, dest_path)

    try:
        with client.stream("GET", url, timeout=timeout) as response:
            response.raise_for_status()

            total_bytes = 0
            dest_path.parent.mkdir(parents=True, exist_ok=True)

            with dest_path.open("wb") as f:
                for chunk in response.iter_bytes(chunk_size):
                    f.write(chunk)
                    total_bytes += len(chunk)

    except httpx.HTTPStatusError as e:
        dest_path.unlink(missing_ok=True)
        raise DownloadError(
            f"HTTP error downloading {url}: {e.response.status_code} {e.response.reason_phrase}",
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        dest_path.unlink(missing_ok=True)
        raise DownloadError(
            f"Timeout downloading {url}",
            code="timeout",
        ) from e
    except httpx.RequestError as e:
        dest_path.unlink(missing_ok=True)
        raise DownloadError(
            f"Network error downloading {url}: {e}",
            code="network_error",
        ) from e

    logger.info("Downloaded %s (%d bytes)", dest_path.name, total_bytes)
    return DownloadResult(path=dest_path, size_bytes=total_bytes)


def fetch_text(
    client: httpx.Client,
    url: str,
    timeout: float = TEXT_TIMEOUT,
) -> str:
    """Fetch a small text resource such as a setup script.

    Args:
        client: HTTPX client instance.
        url: URL to fetch.
        timeout: Request timeout in seconds.

    Returns:
        Response body as text.

    Raises:
        DownloadError: If fetch fails.
    """
    logger.debug("Fetching %s", url)

    try:
        response = client.get(url, timeout=timeout)
        response.raise_for_status()
        return response.text

    except httpx.HTTPStatusError as e:
        raise DownloadError(
            f"HTTP error fetching {url}: {e.response.status_code}",
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        raise DownloadError(
            f"Timeout fetching {url}",
            code="timeout",
        ) from e
    except httpx.RequestError as e:
        raise DownloadError(
            f"Network error fetching {url}: {e}",
            code="network_error",
        ) from e


def git_clone(
    repo_url: str,
    dest_dir: Path,
    branch: str | None = None,
    depth: int | None = 1,
    timeout: int = CLONE_TIMEOUT,
) -> Path:
    """Clone a repository, single-branch and shallow by default.

    Args:
        repo_url: Repository URL.
        dest_dir: Target directory (must not exist).
        branch: Branch to check out (None = remote default).
        depth: Clone depth (None = full history).
        timeout: Clone timeout in seconds.

    Returns:
        The cloned directory.

    Raises:
        FetchError: If the clone fails.
    """
    cmd = ["git", "clone", repo_url]
    if branch:
        cmd.extend(["-b", branch, "--single-branch"])
    if depth is not None:
        cmd.append(f"--depth={depth}")
    cmd.append(str(dest_dir))

    logger.info("Cloning %s (branch: %s) into %s", repo_url, branch or "default", dest_dir)

    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        shutil.rmtree(dest_dir, ignore_errors=True)
        raise FetchError(
            f"git clone of {repo_url} timed out after {timeout}s",
            code="clone_timeout",
        ) from e
    except OSError as e:
        raise FetchError(
            f"Failed to run git: {e}",
            code="execution_error",
        ) from e

    if result.returncode != 0:
        shutil.rmtree(dest_dir, ignore_errors=True)
        raise FetchError(
            f"git clone of {repo_url} failed: {result.stderr.strip()}",
            code="clone_failed",
        )

    return dest_dir


__all__ = [
    "DOWNLOAD_TIMEOUT",
    "DownloadError",
    "DownloadResult",
    "create_client",
    "download_file",
    "fetch_text",
    "git_clone",
]
