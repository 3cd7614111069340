"""
Downloader backends.
Each backend fetches one seedbox file into a temporary path and then places it
at its final path. The backend is chosen once at startup from configuration:
an aria2 JSON-RPC queue, a direct HTTP stream, or no backend at all (links are
printed instead).
"""

import asyncio
import logging
import os
import shutil
import uuid
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Optional
from urllib.parse import urlparse

import aiofiles
import aiofiles.os
import aiohttp

from .config import Settings
from .exceptions import ConfigurationError, DownloadError, TransportError
from .retry import RetryConfig, RetryHandler, TRANSIENT_ERRORS
from .transport import HttpTransport

logger = logging.getLogger(__name__)


class DownloaderKind(Enum):
    """Closed set of downloader backends."""
    ARIA2 = "aria2"
    HTTP = "http"
    PRINT_ONLY = "print"

    @classmethod
    def from_setting(cls, value: Optional[str]) -> "DownloaderKind":
        """Parse the DOWNLOADER setting; empty means print-only."""
        normalized = (value or "").strip().lower()
        if not normalized:
            return cls.PRINT_ONLY
        if normalized == "aria2":
            return cls.ARIA2
        if normalized in ("http", "fetch"):
            return cls.HTTP
        raise ConfigurationError(f"Unknown downloader '{value}'", "expected aria2, http or nothing")


class Downloader(ABC):
    """Fetches a file and leaves it at its final path."""

    @abstractmethod
    async def download(self, source_url: str, temp_path: str, final_path: str) -> None:
        """
        Download ``source_url`` to ``temp_path`` then place it at ``final_path``.

        Raises:
            DownloadError: the file could not be retrieved
        """

    async def release_resources(self) -> None:
        """Release connections and background processes. Idempotent."""


async def place_file(temp_path: str, final_path: str) -> None:
    """Move a finished download from its temporary to its final path."""
    if os.path.abspath(temp_path) == os.path.abspath(final_path):
        return
    directory = os.path.dirname(final_path)
    if directory:
        await aiofiles.os.makedirs(directory, exist_ok=True)
    # shutil.move falls back to copying across filesystems
    await asyncio.to_thread(shutil.move, temp_path, final_path)


async def _remove_partial(path: str) -> None:
    try:
        await aiofiles.os.remove(path)
        logger.debug(f"Removed partial download {path}")
    except FileNotFoundError:
        pass


class HttpDownloader(Downloader):
    """Streams files over HTTP with aiohttp."""

    CHUNK_SIZE = 65536

    def __init__(
        self,
        retry_config: Optional[RetryConfig] = None,
        timeout: float = 3600.0,
        connect_timeout: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self._retry_handler = RetryHandler(retry_config or RetryConfig())
        self._timeout = aiohttp.ClientTimeout(total=timeout, connect=connect_timeout)
        self._session = session

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def _fetch(self, url: str, destination: str) -> int:
        session = await self._get_session()
        async with session.get(url) as response:
            if response.status != 200:
                raise DownloadError(f"HTTP {response.status}: {response.reason}", url=url)

            expected_size = response.content_length
            directory = os.path.dirname(destination)
            if directory:
                await aiofiles.os.makedirs(directory, exist_ok=True)

            downloaded = 0
            async with aiofiles.open(destination, "wb") as f:
                async for chunk in response.content.iter_chunked(self.CHUNK_SIZE):
                    await f.write(chunk)
                    downloaded += len(chunk)

        if expected_size is not None and downloaded != expected_size:
            raise DownloadError(
                f"Size mismatch: expected {expected_size} bytes, got {downloaded}",
                url=url,
            )
        return downloaded

    async def download(self, source_url: str, temp_path: str, final_path: str) -> None:
        logger.info(f"Downloading {source_url} to {temp_path}")
        try:
            size = await self._retry_handler.with_retry(
                operation=lambda: self._fetch(source_url, temp_path),
                operation_id=f"download {os.path.basename(final_path)}",
            )
        except TRANSIENT_ERRORS as e:
            await _remove_partial(temp_path)
            raise DownloadError(f"Transfer failed: {e}", url=source_url) from e
        except DownloadError:
            await _remove_partial(temp_path)
            raise
        except OSError as e:
            await _remove_partial(temp_path)
            raise DownloadError(f"Cannot write '{temp_path}': {e}", url=source_url) from e

        await place_file(temp_path, final_path)
        logger.info(f"Downloaded {size} bytes to {final_path}")

    async def release_resources(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None


class Aria2Downloader(Downloader):
    """
    Queues downloads on an aria2 daemon through its JSON-RPC interface and
    waits for each one to finish. Optionally runs its own ``aria2c`` daemon.

    RPC reference: https://aria2.github.io/manual/en/html/aria2c.html#rpc-interface
    """

    def __init__(
        self,
        transport: HttpTransport,
        rpc_url: str = "http://localhost:6800/jsonrpc",
        secret: str = "",
        poll_interval: float = 2.0,
        spawn: bool = False,
        aria2c_path: str = "aria2c",
        startup_timeout: float = 10.0,
    ):
        self._transport = transport
        self.rpc_url = rpc_url
        self.secret = secret
        self.poll_interval = poll_interval
        self.spawn = spawn
        self.aria2c_path = aria2c_path
        self.startup_timeout = startup_timeout
        self._process: Optional[asyncio.subprocess.Process] = None

    async def _rpc(self, method: str, *params: Any) -> Any:
        """Call an aria2 RPC method and return its result."""
        rpc_params = [f"token:{self.secret}"] if self.secret else []
        rpc_params.extend(params)
        payload = {
            "jsonrpc": "2.0",
            "id": uuid.uuid4().hex,
            "method": method,
            "params": rpc_params,
        }

        try:
            response = await self._transport.request("POST", self.rpc_url, json_body=payload)
        except TransportError as e:
            raise DownloadError(f"aria2 RPC unreachable at {self.rpc_url}: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            raise DownloadError(f"aria2 {method} returned an unreadable response ({response.status})")

        error = data.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else error
            raise DownloadError(f"aria2 {method} failed: {message}")
        if not response.ok:
            raise DownloadError(f"aria2 {method} failed: HTTP {response.status}")

        return data.get("result")

    async def _ensure_started(self) -> None:
        """Start the local aria2c daemon once, when spawning is enabled."""
        if not self.spawn or self._process is not None:
            return

        port = urlparse(self.rpc_url).port or 6800
        command = [
            self.aria2c_path,
            "--enable-rpc",
            f"--rpc-listen-port={port}",
            "--rpc-listen-all=false",
        ]
        if self.secret:
            command.append(f"--rpc-secret={self.secret}")

        try:
            self._process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            raise DownloadError(f"Unable to start {self.aria2c_path}: {e}") from e
        logger.info(f"Started aria2c (pid {self._process.pid}) on port {port}")

        deadline = asyncio.get_running_loop().time() + self.startup_timeout
        while True:
            try:
                version = await self._rpc("aria2.getVersion")
            except DownloadError:
                if asyncio.get_running_loop().time() >= deadline:
                    raise
                await asyncio.sleep(0.2)
                continue
            logger.debug(f"aria2 {version.get('version') if isinstance(version, dict) else version} ready")
            return

    async def _wait_for(self, gid: str, source_url: str) -> None:
        while True:
            status = await self._rpc(
                "aria2.tellStatus",
                gid,
                ["status", "errorMessage", "completedLength", "totalLength"],
            ) or {}
            state = status.get("status")

            if state == "complete":
                return
            if state in ("error", "removed"):
                raise DownloadError(
                    f"aria2 download {gid} {state}: {status.get('errorMessage') or 'no details'}",
                    url=source_url,
                )

            logger.debug(
                f"aria2 download {gid} {state}: "
                f"{status.get('completedLength', 0)}/{status.get('totalLength', 0)} bytes"
            )
            await asyncio.sleep(self.poll_interval)

    async def download(self, source_url: str, temp_path: str, final_path: str) -> None:
        await self._ensure_started()

        directory = os.path.dirname(temp_path) or "."
        await aiofiles.os.makedirs(directory, exist_ok=True)

        gid = await self._rpc(
            "aria2.addUri",
            [source_url],
            {
                "dir": directory,
                "out": os.path.basename(temp_path),
                "allow-overwrite": "true",
                "auto-file-renaming": "false",
            },
        )
        logger.info(f"Queued aria2 download {gid}: {source_url} -> {temp_path}")

        await self._wait_for(gid, source_url)

        try:
            await self._rpc("aria2.removeDownloadResult", gid)
        except DownloadError as e:
            logger.debug(f"Could not purge aria2 result {gid}: {e}")

        await place_file(temp_path, final_path)
        logger.info(f"Downloaded {final_path}")

    async def release_resources(self) -> None:
        process, self._process = self._process, None
        if process is None or process.returncode is not None:
            return
        process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=10)
        except asyncio.TimeoutError:
            logger.warning(f"aria2c (pid {process.pid}) did not stop, killing it")
            process.kill()
            await process.wait()
        logger.info("Stopped aria2c")


def create_downloader(
    kind: DownloaderKind,
    settings: Settings,
    transport: HttpTransport,
) -> Optional[Downloader]:
    """Build the selected backend; None for print-only."""
    if kind is DownloaderKind.ARIA2:
        logger.debug("Selected aria2 downloader")
        return Aria2Downloader(
            transport,
            rpc_url=settings.aria2_rpc_url,
            secret=settings.aria2_secret,
            poll_interval=settings.aria2_poll_interval,
            spawn=settings.aria2_spawn,
        )
    if kind is DownloaderKind.HTTP:
        logger.debug("Selected HTTP downloader")
        return HttpDownloader(RetryConfig(max_attempts=settings.http_retry_attempts))
    logger.debug("Selected no downloader, outputting links")
    return None
