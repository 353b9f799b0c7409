"""Identity resolver: turns uploaded bytes into a canonical content identity.

Upload:   bytes -> sha256 -> index lookup -> hit: existing id
                                          -> miss: publish blob, then commit record
Retrieve: id -> index record -> blob stream by content hash

A record is only committed after its blob is published, so the index never
points at missing bytes. The reverse (a blob with no record) can happen when
the commit fails; sweep_orphan_blobs() reclaims those.
"""
import base64
import hashlib
import logging
import time
import uuid
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import AsyncIterator

from textstore.errors import BlobMissing, DuplicateHash, EmptyInput, NotFound, StorageFailure, UnsupportedType
from textstore.models import FileRecord
from textstore.services.blob_store import BlobStore
from textstore.services.metadata_index import MetadataIndex

logger = logging.getLogger(__name__)

CONTENT_TYPE = "text/plain"


def compute_content_hash(data: bytes) -> str:
    """SHA-256 digest encoded as unpadded base64url (43 chars of [A-Za-z0-9_-])."""
    digest = hashlib.sha256(data).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def normalize_display_name(display_name: str | None, accepted_suffix: str = ".txt") -> str:
    """Validate the uploader's filename and strip any directory part."""
    name = PurePath((display_name or "").replace("\\", "/")).name.strip()
    if not name.lower().endswith(accepted_suffix.lower()):
        raise UnsupportedType(f"Only {accepted_suffix} files are supported")
    return name


@dataclass(frozen=True)
class SubmitResult:
    id: uuid.UUID
    content_hash: str
    created: bool


@dataclass
class ResolvedFile:
    id: uuid.UUID
    display_name: str
    size_bytes: int
    stream: AsyncIterator[bytes]
    content_type: str = CONTENT_TYPE


@dataclass
class SweepReport:
    blobs_scanned: int = 0
    orphans_removed: list[str] = field(default_factory=list)
    temp_files_removed: int = 0


class IdentityResolver:
    def __init__(self, index: MetadataIndex, blobs: BlobStore, accepted_suffix: str = ".txt"):
        self.index = index
        self.blobs = blobs
        self.accepted_suffix = accepted_suffix

    async def submit(self, data: bytes, display_name: str | None) -> SubmitResult:
        """Store `data` once per distinct content and return its stable id."""
        if not data:
            raise EmptyInput("File is empty or not provided")
        name = normalize_display_name(display_name, self.accepted_suffix)

        content_hash = compute_content_hash(data)
        logger.info("Calculated hash for file %s: %s", name, content_hash)

        existing = await self.index.find_by_hash(content_hash)
        if existing is not None:
            logger.info("Found existing file with the same hash: %s", existing.id)
            return SubmitResult(id=existing.id, content_hash=content_hash, created=False)

        key = self.blobs.key_for(content_hash)
        try:
            await self.blobs.put(key, data)
        except OSError as e:
            logger.error(f"Blob write failed for hash {content_hash}: {e}")
            raise StorageFailure("Failed to store file content") from e

        record = FileRecord(
            id=uuid.uuid4(),
            content_hash=content_hash,
            display_name=name,
            size_bytes=len(data),
        )
        try:
            record = await self.index.insert(record)
        except DuplicateHash:
            winner = await self.index.find_by_hash(content_hash)
            if winner is None:
                # Integrity error that wasn't about this hash.
                raise StorageFailure("Failed to commit file metadata")
            logger.info("Concurrent upload won for hash %s, returning %s", content_hash, winner.id)
            return SubmitResult(id=winner.id, content_hash=content_hash, created=False)

        await self._ensure_blob(key, data)
        logger.info("File successfully stored with ID: %s", record.id)
        return SubmitResult(id=record.id, content_hash=content_hash, created=True)

    async def _ensure_blob(self, key: str, data: bytes) -> None:
        """Republish the blob if an orphan sweep took it before our record committed."""
        try:
            if await self.blobs.exists(key):
                return
            logger.warning("Blob %s vanished before its record committed, republishing", key)
            await self.blobs.put(key, data)
        except OSError as e:
            logger.error(f"Blob republish failed for {key}: {e}")
            raise StorageFailure("Failed to store file content") from e

    async def describe(self, file_id: uuid.UUID) -> FileRecord:
        record = await self.index.find_by_id(file_id)
        if record is None:
            logger.warning("File not found in database: %s", file_id)
            raise NotFound(f"File not found: {file_id}")
        return record

    async def resolve(self, file_id: uuid.UUID) -> ResolvedFile:
        """Return the display name and a byte stream for a previously issued id."""
        record = await self.describe(file_id)
        try:
            stream = await self.blobs.get(self.blobs.key_for(record.content_hash))
        except OSError as e:
            logger.error(f"Blob read failed for {file_id}: {e}")
            raise StorageFailure("Failed to read file content") from e
        if stream is None:
            logger.error(
                "Integrity anomaly: record %s references missing blob %s",
                file_id, record.content_hash,
            )
            raise BlobMissing(file_id, record.content_hash)
        return ResolvedFile(
            id=record.id,
            display_name=record.display_name,
            size_bytes=record.size_bytes,
            stream=stream,
        )

    async def sweep_orphan_blobs(self, min_age_seconds: float) -> SweepReport:
        """Delete blobs no record points at, plus abandoned temp files.

        Only files older than `min_age_seconds` are touched: a fresh blob may
        belong to an upload whose record is about to be committed. A candidate
        is moved aside before the index is checked a second time, so an upload
        of the same content that commits meanwhile either finds the blob gone
        and republishes it (see submit) or gets it restored here.
        """
        report = SweepReport()
        cutoff = time.time() - min_age_seconds
        for key, mtime in await self.blobs.list_keys():
            report.blobs_scanned += 1
            if mtime >= cutoff:
                continue
            content_hash = key[: -len(self.blobs.suffix)]
            if await self.index.has_hash(content_hash):
                continue
            held = await self.blobs.quarantine(key, min_age_seconds)
            if held is None:
                continue
            if await self.index.has_hash(content_hash):
                logger.info("Blob %s was claimed during the sweep, restoring", key)
                await self.blobs.restore(held, key)
                continue
            await self.blobs.discard(held)
            report.orphans_removed.append(key)
        report.temp_files_removed = await self.blobs.remove_stale_temp_files(min_age_seconds)
        logger.info(
            "Orphan sweep: scanned %d blob(s), removed %d orphan(s), %d temp file(s)",
            report.blobs_scanned, len(report.orphans_removed), report.temp_files_removed,
        )
        return report
