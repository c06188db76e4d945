"""
Local Document Storage

Raw uploads are written under a single root directory:
    <upload_dir>/<file_path>

file_path is always built server-side (orchestrator.build_file_path), but
every path is still resolved and checked against the root so a crafted
value can never escape it.

Blocking file I/O runs in the default thread executor.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

from cvscreen.core.errors import PersistenceError

logger = logging.getLogger(__name__)


class LocalDocumentStorage:

    def __init__(self, root: str | os.PathLike) -> None:
        self._root = Path(root).resolve()

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, file_path: str) -> Path:
        target = (self._root / file_path).resolve()
        if target == self._root or self._root not in target.parents:
            raise PersistenceError(f"Refusing path outside storage root: {file_path!r}")
        return target

    async def save(self, file_path: str, data: bytes) -> Path:
        target = self.resolve(file_path)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._write_sync, target, data)
        except OSError as exc:
            logger.error("Storage write failed | path=%s error=%s", target, exc)
            raise PersistenceError(f"Failed to store '{file_path}': {exc}") from exc

        logger.info("Stored document | path=%s size=%d", target, len(data))
        return target

    async def load(self, file_path: str) -> bytes:
        target = self.resolve(file_path)
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, target.read_bytes)
        except OSError as exc:
            logger.error("Storage read failed | path=%s error=%s", target, exc)
            raise PersistenceError(f"Failed to read '{file_path}': {exc}") from exc

    @staticmethod
    def _write_sync(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        # Exclusive create; file paths carry a random suffix and never repeat
        with open(target, "xb") as fh:
            fh.write(data)
