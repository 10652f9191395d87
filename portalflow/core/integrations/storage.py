"""
Local file storage for extracted-data payloads and imaging documents.

Paths are relative keys under STORAGE_ROOT, namespaced by bucket.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

from ..exceptions import ExternalCallError

logger = logging.getLogger(__name__)


class FileStorage:
    """
    Bucket/key file store rooted at STORAGE_ROOT (default ./storage).

    Example:
        storage = FileStorage("/tmp/portalflow")
        await storage.write("imaging", "BOL/123_1700000000000.pdf", b"%PDF...")
    """

    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or os.getenv("STORAGE_ROOT", "./storage")).resolve()

    def _path(self, bucket: str, key: str) -> Path:
        path = (self.root / bucket / key.lstrip("/")).resolve()
        if self.root not in path.parents:
            raise ExternalCallError(f"Storage key escapes storage root: {key}")
        return path

    def _write_sync(self, bucket: str, key: str, data: bytes) -> str:
        path = self._path(bucket, key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return key

    def _read_sync(self, bucket: str, key: str) -> bytes:
        return self._path(bucket, key).read_bytes()

    async def write(self, bucket: str, key: str, data: bytes) -> str:
        """Store data under bucket/key. Returns the key."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, lambda: self._write_sync(bucket, key, data))
        except OSError as e:
            raise ExternalCallError(f"Storage write failed for {bucket}/{key}: {e}") from e

    async def read(self, bucket: str, key: str) -> bytes:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, lambda: self._read_sync(bucket, key))
        except OSError as e:
            raise ExternalCallError(f"Storage read failed for {bucket}/{key}: {e}") from e

    async def read_text(self, bucket: str, key: str) -> str:
        return (await self.read(bucket, key)).decode("utf-8")
