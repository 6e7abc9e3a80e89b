"""
Cover Image Downloader
======================

Downloads channel cover images into the output directory. Covers are
fetched one at a time after aggregation; some hosts reject bursts of
image requests.
"""

import asyncio
from pathlib import Path
from typing import Optional, Union

import aiohttp

from ..config.settings import FetchSettings, get_settings
from ..storage.snapshot_writer import atomic_write_bytes
from ..utils.exceptions import CoverDownloadError
from ..utils.logging import get_logger_for_component


class CoverDownloader:
    """Fetches a cover image and stores it atomically."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        settings: Optional[FetchSettings] = None,
    ):
        self.session = session
        self.settings = settings or get_settings().fetch
        self.logger = get_logger_for_component("cover_downloader")

    async def download_and_store(
        self, key: str, source_url: str, dest_path: Union[str, Path]
    ) -> Path:
        """Download ``source_url`` to ``dest_path``.

        Args:
            key: Source key, for error context
            source_url: Cover image URL
            dest_path: Destination file path

        Returns:
            The stored file path

        Raises:
            CoverDownloadError: On any network, status or filesystem failure
        """
        dest = Path(dest_path)
        context = {"source_key": key, "url": source_url, "dest": str(dest)}

        try:
            content = await asyncio.wait_for(
                self._download(source_url), timeout=self.settings.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            raise CoverDownloadError(
                f"Cover download timed out after {int(self.settings.timeout_seconds * 1000)}ms",
                context=context,
            ) from e
        except aiohttp.ClientError as e:
            raise CoverDownloadError(
                f"Cover download failed: {e.__class__.__name__}: {e}", context=context
            ) from e

        try:
            atomic_write_bytes(dest, content)
        except OSError as e:
            raise CoverDownloadError(
                f"Failed to store cover: {e}", context=context
            ) from e

        self.logger.debug(f"Stored cover for {key} at {dest} ({len(content)} bytes)")
        return dest

    async def _download(self, url: str) -> bytes:
        async with self.session.get(url) as response:
            if response.status != 200:
                raise CoverDownloadError(
                    f"Status code {response.status}",
                    context={"url": url, "status": response.status},
                )
            return await response.read()
