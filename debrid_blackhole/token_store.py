"""
Credential persistence.
Stores the OAuth credential as a small private JSON file between invocations.
"""

import json
import logging
import os
from typing import Optional

import aiofiles
import aiofiles.os

from .models import Credential

logger = logging.getLogger(__name__)


class TokenStore:
    """Load and save the cached credential at a fixed path."""

    def __init__(self, path: str):
        self.path = path

    async def load(self) -> Optional[Credential]:
        """Read the stored credential; None when absent or unreadable."""
        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                content = await f.read()
            if not content.strip():
                return None
            return Credential.from_dict(json.loads(content))
        except FileNotFoundError:
            return None
        except ValueError as e:
            # UnicodeDecodeError and JSONDecodeError are both ValueErrors
            logger.warning(f"Ignoring unreadable credential record {self.path}: {e}")
            return None

    async def save(self, credential: Credential) -> None:
        """Atomically replace the stored credential."""
        directory = os.path.dirname(self.path)
        if directory:
            await aiofiles.os.makedirs(directory, exist_ok=True)

        tmp_path = f"{self.path}.tmp"
        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(credential.to_dict()))
        os.chmod(tmp_path, 0o600)
        await aiofiles.os.replace(tmp_path, self.path)
        logger.debug(f"Credential saved to {self.path}")

    async def delete(self) -> None:
        """Remove the stored credential if present."""
        try:
            await aiofiles.os.remove(self.path)
            logger.debug(f"Credential removed from {self.path}")
        except FileNotFoundError:
            pass
