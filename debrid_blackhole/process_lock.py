"""
Cross-process lock guarding the interactive device authorization.

Backed by an exclusive ``flock`` on a marker file: the kernel grants it to a
single open file at a time and drops it when the holder exits, so a crashed
process never leaves the lock held. Waiters poll with a non-blocking attempt
so the event loop is never blocked.
"""

import asyncio
import fcntl
import logging
import os
from typing import IO, Optional

logger = logging.getLogger(__name__)


class ProcessLock:
    """Advisory exclusive lock shared by every process using the same path."""

    def __init__(self, path: str, poll_interval: float = 1.0):
        self.path = path
        self.poll_interval = poll_interval
        self._handle: Optional[IO[str]] = None

    def is_held(self) -> bool:
        """True when this instance currently holds the lock."""
        return self._handle is not None

    def _try_lock(self, handle: IO[str]) -> bool:
        try:
            fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return False
        return True

    async def acquire(self) -> None:
        """Wait until the lock is free, then hold it. No timeout."""
        if self._handle is not None:
            return

        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        handle = open(self.path, "a+", encoding="utf-8")
        acquired = False
        try:
            waiting = False
            while not self._try_lock(handle):
                if not waiting:
                    logger.info(f"Authorization in progress in another process, waiting for {self.path}")
                    waiting = True
                await asyncio.sleep(self.poll_interval)
            acquired = True
        finally:
            if not acquired:
                handle.close()

        handle.seek(0)
        handle.truncate()
        handle.write(str(os.getpid()))
        handle.flush()
        self._handle = handle
        logger.debug(f"Lock acquired: {self.path}")

    def release(self) -> None:
        """Release the lock; a no-op when not held."""
        if self._handle is None:
            return
        try:
            self._handle.seek(0)
            self._handle.truncate()
            fcntl.flock(self._handle, fcntl.LOCK_UN)
        finally:
            self._handle.close()
            self._handle = None
        logger.debug(f"Lock released: {self.path}")

    async def __aenter__(self) -> "ProcessLock":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False
