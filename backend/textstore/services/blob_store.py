"""Content-addressed blob storage on the local filesystem.

Keys are `<content_hash><suffix>`; the store knows nothing about ids or
uniqueness. Blobs are published atomically: bytes go to a hidden temp file in
the same directory and are then hard-linked to the final key, which fails if
the key already exists. A reader therefore only ever sees complete blobs, and
concurrent writers of the same key publish exactly once.
"""
import asyncio
import errno
import logging
import os
import time
import uuid
from pathlib import Path
from typing import AsyncIterator

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)

_TEMP_PREFIX = "."
_TEMP_SUFFIX = ".tmp"

# errnos meaning "this filesystem can't hard link", not "the write failed"
_NO_LINK_ERRNOS = {errno.EPERM, errno.EXDEV, errno.EOPNOTSUPP, errno.ENOTSUP, errno.EMLINK}


class BlobStore:
    """Reads and writes immutable blobs under a single root directory."""

    def __init__(self, root: Path | str, suffix: str = ".txt", chunk_size: int = 64 * 1024):
        self.root = Path(root)
        self.suffix = suffix
        self.chunk_size = chunk_size

    def key_for(self, content_hash: str) -> str:
        return f"{content_hash}{self.suffix}"

    def _path(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith(_TEMP_PREFIX):
            raise ValueError(f"Invalid blob key: {key!r}")
        return self.root / key

    def _temp_path(self, key: str) -> Path:
        return self.root / f"{_TEMP_PREFIX}{key}.{uuid.uuid4().hex}{_TEMP_SUFFIX}"

    async def put(self, key: str, data: bytes) -> bool:
        """Store `data` under `key`. Returns True if this call published the blob.

        Writing a key that already exists is a no-op: content addressing means
        the bytes are identical.
        """
        final_path = self._path(key)
        await aiofiles.os.makedirs(self.root, exist_ok=True)
        temp_path = self._temp_path(key)
        try:
            await self._write_temp(temp_path, data)
            published = await self._publish(temp_path, final_path)
        finally:
            # Runs on cancellation too, so no partial file outlives the request.
            try:
                await aiofiles.os.remove(temp_path)
            except FileNotFoundError:
                pass
        if published:
            logger.info("Stored blob %s (%d bytes)", key, len(data))
        else:
            logger.debug("Blob %s already present, skipping write", key)
        return published

    async def _write_temp(self, temp_path: Path, data: bytes) -> None:
        async with aiofiles.open(temp_path, "wb") as f:
            await f.write(data)
            await f.flush()
            await asyncio.to_thread(os.fsync, f.fileno())

    async def _publish(self, temp_path: Path, final_path: Path) -> bool:
        try:
            await aiofiles.os.link(temp_path, final_path)
        except FileExistsError:
            # Refresh mtime so the orphan sweep leaves it alone while this upload commits.
            await asyncio.to_thread(os.utime, final_path)
            return False
        except OSError as e:
            if e.errno not in _NO_LINK_ERRNOS:
                raise
            if await aiofiles.os.path.exists(final_path):
                return False
            # No hard links here: fall back to an atomic rename.
            await aiofiles.os.replace(temp_path, final_path)
        return True

    async def exists(self, key: str) -> bool:
        return await aiofiles.os.path.isfile(self._path(key))

    async def get(self, key: str) -> AsyncIterator[bytes] | None:
        """Return an async chunk iterator over the blob, or None if it was never written."""
        path = self._path(key)
        if not await aiofiles.os.path.isfile(path):
            logger.warning("Blob not found at %s", path)
            return None
        return self._iter_chunks(path)

    async def _iter_chunks(self, path: Path) -> AsyncIterator[bytes]:
        async with aiofiles.open(path, "rb") as f:
            while True:
                chunk = await f.read(self.chunk_size)
                if not chunk:
                    break
                yield chunk

    async def delete(self, key: str) -> bool:
        try:
            await aiofiles.os.remove(self._path(key))
        except FileNotFoundError:
            return False
        return True

    async def quarantine(self, key: str, min_age_seconds: float) -> Path | None:
        """Move an old blob out of its key so no reader or writer can see it.

        Returns the quarantined path, or None if the blob is gone or was
        touched within `min_age_seconds` (mtime is re-read here, not taken
        from an earlier listing).
        """
        final_path = self._path(key)
        try:
            mtime = (await aiofiles.os.stat(final_path)).st_mtime
        except FileNotFoundError:
            return None
        if mtime >= time.time() - min_age_seconds:
            return None
        held = self._temp_path(key)
        try:
            await aiofiles.os.rename(final_path, held)
        except FileNotFoundError:
            return None
        return held

    async def restore(self, held: Path, key: str) -> None:
        """Put a quarantined blob back under its key, then drop the held copy."""
        if await self._publish(held, self._path(key)):
            logger.info("Restored blob %s", key)
        try:
            await aiofiles.os.remove(held)
        except FileNotFoundError:
            # Moved into place by the rename fallback.
            pass

    async def discard(self, held: Path) -> None:
        await aiofiles.os.remove(held)

    async def list_keys(self) -> list[tuple[str, float]]:
        """Published keys with their modification time."""
        return [
            (name, mtime)
            for name, _, mtime in await asyncio.to_thread(_scan_dir, self.root)
            if name.endswith(self.suffix) and not name.startswith(_TEMP_PREFIX)
        ]

    async def remove_stale_temp_files(self, min_age_seconds: float) -> int:
        """Delete temp files left by writers that died mid-upload."""
        cutoff = time.time() - min_age_seconds
        removed = 0
        for name, path, mtime in await asyncio.to_thread(_scan_dir, self.root):
            if not (name.startswith(_TEMP_PREFIX) and name.endswith(_TEMP_SUFFIX)):
                continue
            if mtime >= cutoff:
                continue
            try:
                await aiofiles.os.remove(path)
            except FileNotFoundError:
                continue
            removed += 1
        if removed:
            logger.info("Removed %d stale temp file(s) from %s", removed, self.root)
        return removed


def _scan_dir(root: Path) -> list[tuple[str, str, float]]:
    """(name, path, mtime) for every regular file directly under `root`."""
    if not root.is_dir():
        return []
    found = []
    with os.scandir(root) as entries:
        for entry in entries:
            try:
                if entry.is_file():
                    found.append((entry.name, entry.path, entry.stat().st_mtime))
            except FileNotFoundError:
                continue
    return found
