"""
Download Manager
Drives one run: submit the torrent to the seedbox, wait until the seedbox has
fetched it, then hand every file to the downloader (or print the links).
"""

import asyncio
import logging
import os
import sys
from typing import IO, Optional

import aiofiles
import aiofiles.os

from .debrid_client import DebridLinkClient
from .exceptions import DebridBlackholeError, DownloadError
from .logging_config import LogContext
from .models import AddTorrentRequest, PagerRequest, TorrentFile, TorrentInfo
from .downloaders import Downloader

logger = logging.getLogger(__name__)

MAGNET_SUFFIX = ".magnet"


class DownloadManager:
    """
    Orchestrates a single torrent from submission to local files.

    With no downloader every file link is printed instead of downloaded.
    """

    def __init__(
        self,
        client: DebridLinkClient,
        downloader: Optional[Downloader],
        destination: str = "",
        temp_destination: str = "",
        poll_interval: float = 30.0,
        remove_after_download: bool = False,
        output: Optional[IO[str]] = None,
    ):
        self.client = client
        self.downloader = downloader
        self.destination = destination
        self.temp_destination = temp_destination or destination
        self.poll_interval = poll_interval
        self.remove_after_download = remove_after_download
        self._output = output

    @property
    def output(self) -> IO[str]:
        return self._output or sys.stdout

    async def run(self, target: str) -> int:
        """
        Process ``target`` end to end.

        Returns:
            0 when every file is in place (or links were printed), 1 when any file failed
        """
        logger.info(f"Starting download for '{target}'")
        torrent = await self.submit(target)

        with LogContext(torrent_id=torrent.id, torrent_name=torrent.name):
            torrent = await self.wait_for_completion(torrent)
            files = torrent.files

            if self.downloader is None:
                self.print_links(files)
                return 0

            if not files:
                logger.info(f"Torrent {torrent.name} has no files")
                await self.downloader.release_resources()
                return 0

            failures = await self.download_files(files)

            if failures:
                logger.warning(f"{failures} of {len(files)} file(s) failed for '{target}'")
            else:
                logger.info(f"Processed '{target}'")
                if self.remove_after_download:
                    await self._remove_torrent(torrent)

        return 1 if failures else 0

    async def submit(self, target: str) -> TorrentInfo:
        """Add a .magnet file by URL, anything else as a torrent file upload."""
        if target.endswith(MAGNET_SUFFIX):
            logger.debug("Target is a magnet")
            async with aiofiles.open(target, "r", encoding="utf-8") as f:
                magnet = (await f.read()).strip()
            request = AddTorrentRequest(url=magnet, async_=True)
        else:
            logger.debug("Target is a torrent file")
            async with aiofiles.open(target, "rb") as f:
                content = await f.read()
            request = AddTorrentRequest(
                file=content,
                file_name=os.path.basename(target),
                async_=True,
            )

        torrent = await self.client.add_torrent(request)
        if torrent is None or not torrent.id:
            raise DebridBlackholeError(f"Seedbox did not return a torrent for '{target}'")
        logger.info(f"Torrent added: {torrent.name or target} (id {torrent.id})")
        return torrent

    async def wait_for_completion(self, torrent: TorrentInfo) -> TorrentInfo:
        """Poll the seedbox until the torrent is fully fetched. Unbounded."""
        while True:
            torrents = await self.client.list_torrents(PagerRequest(ids=[torrent.id]))
            if torrents:
                torrent = torrents[0]
                if torrent.is_complete:
                    logger.info(f"Torrent {torrent.name} is ready on the seedbox")
                    return torrent
                logger.info(f"Torrent {torrent.name} at {torrent.download_percent:g}%")
            else:
                logger.warning(f"Torrent {torrent.id} not listed yet")
            await asyncio.sleep(self.poll_interval)

    def print_links(self, files: list[TorrentFile]) -> None:
        for remote_file in files:
            print(remote_file.download_url, file=self.output)

    async def _existing_size(self, path: str) -> Optional[int]:
        """Size of the file at ``path``, None when it does not exist."""
        try:
            stat = await aiofiles.os.stat(path)
        except FileNotFoundError:
            return None
        return stat.st_size

    async def download_file(self, remote_file: TorrentFile) -> bool:
        """
        Download one file unless an identical-size copy is already in place.

        Returns:
            False when the file was skipped
        """
        temp_path = os.path.join(self.temp_destination, remote_file.name)
        final_path = os.path.join(self.destination, remote_file.name)

        try:
            existing = await self._existing_size(final_path)
        except OSError as e:
            raise DownloadError(
                f"Cannot inspect '{final_path}': {e}",
                url=remote_file.download_url,
                file_name=remote_file.name,
            ) from e

        if existing is not None and existing == remote_file.size:
            logger.debug(f"A file with the same size already exists, skipping '{final_path}'")
            return False

        await self.downloader.download(remote_file.download_url, temp_path, final_path)
        return True

    async def download_files(self, files: list[TorrentFile]) -> int:
        """
        Download files one after the other; failures do not stop the others.

        Returns:
            Number of files that failed
        """
        failures = 0
        try:
            for remote_file in files:
                with LogContext(file_name=remote_file.name, url=remote_file.download_url):
                    try:
                        await self.download_file(remote_file)
                    except (DebridBlackholeError, OSError) as e:
                        failures += 1
                        logger.warning(
                            f"Failed to download '{remote_file.name}' from '{remote_file.download_url}': {e}"
                        )
        finally:
            await self.downloader.release_resources()
        return failures

    async def _remove_torrent(self, torrent: TorrentInfo) -> None:
        try:
            await self.client.remove_torrent(torrent.id)
            logger.info(f"Removed torrent {torrent.name} from the seedbox")
        except DebridBlackholeError as e:
            logger.warning(f"Failed to remove torrent {torrent.id}: {e}")
