"""Source video download over HTTP."""
import logging
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import httpx

from reelmaker.config import settings
from reelmaker.errors import FetchError
from reelmaker.pipeline.models import SourceAsset
from reelmaker.pipeline.workspace import ScratchWorkspace

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS = {".mp4", ".mov", ".m4v", ".mkv", ".webm", ".avi", ".wmv", ".flv"}


def source_extension(url: str) -> str:
    """File extension to use for the scratch copy of `url`."""
    suffix = Path(urlparse(url).path).suffix.lower()
    return suffix if suffix in VIDEO_EXTENSIONS else ".mp4"


class SourceFetcher:
    """
    Streams a remote video into a run's workspace.

    There is no retry here; a failed download raises FetchError and the
    caller decides whether to try again.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        chunk_size: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout or settings.fetch_timeout_seconds
        self.chunk_size = chunk_size or settings.fetch_chunk_size
        self.transport = transport

    async def fetch(self, url: str, workspace: ScratchWorkspace) -> SourceAsset:
        """
        Download `url` into the workspace.

        Args:
            url: http(s) URL of the source video
            workspace: Workspace of the current run

        Returns:
            SourceAsset pointing at the local copy

        Raises:
            FetchError: On bad URL, non-success status or stream failure
        """
        scheme = urlparse(url).scheme.lower()
        if scheme not in ("http", "https"):
            raise FetchError(f"Unsupported source URL: {url!r}")

        # Tracked before writing so a partial download is cleaned up too
        dest = workspace.new_path("source", source_extension(url))
        logger.info(f"Downloading video from {url}...")

        written = 0
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self.transport,
            ) as client:
                async with client.stream("GET", url) as response:
                    if not response.is_success:
                        raise FetchError(
                            f"Source download failed: HTTP {response.status_code} for {url}"
                        )
                    with open(dest, "wb") as f:
                        async for chunk in response.aiter_bytes(self.chunk_size):
                            f.write(chunk)
                            written += len(chunk)
        except httpx.TimeoutException as e:
            raise FetchError(f"Source download timed out after {self.timeout}s: {url}") from e
        except httpx.HTTPError as e:
            raise FetchError(f"Source download failed: {e}") from e
        except OSError as e:
            raise FetchError(f"Could not write source video to {dest}: {e}") from e

        if written == 0:
            raise FetchError(f"Source download returned no data: {url}")

        logger.info(f"Video downloaded to {dest} ({written / (1024 * 1024):.1f}MB)")
        return SourceAsset(url=url, path=dest)
