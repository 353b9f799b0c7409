"""Metadata index: id -> FileRecord and content_hash -> FileRecord.

The unique index on files.content_hash is the single source of truth for
"does this content already exist". Each operation opens its own short-lived
session so concurrent requests never share one.
"""
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from textstore.errors import DuplicateHash, StorageFailure
from textstore.models import Base, FileRecord

logger = logging.getLogger(__name__)


class MetadataIndex:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncGenerator[AsyncSession, None]:
        """Session with rollback; database errors surface as StorageFailure."""
        session = self._session_factory()
        try:
            yield session
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Metadata index {operation} failed: {e}")
            raise StorageFailure(f"Metadata index {operation} failed") from e
        finally:
            await session.close()

    async def create_schema(self, engine: AsyncEngine) -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def find_by_hash(self, content_hash: str) -> FileRecord | None:
        async with self._session("lookup") as db:
            result = await db.execute(
                select(FileRecord).where(FileRecord.content_hash == content_hash)
            )
            return result.scalar_one_or_none()

    async def find_by_id(self, file_id: uuid.UUID) -> FileRecord | None:
        async with self._session("lookup") as db:
            return await db.get(FileRecord, file_id)

    async def has_hash(self, content_hash: str) -> bool:
        async with self._session("lookup") as db:
            result = await db.execute(
                select(FileRecord.id).where(FileRecord.content_hash == content_hash)
            )
            return result.first() is not None

    async def insert(self, record: FileRecord) -> FileRecord:
        """Commit a new record.

        Raises DuplicateHash when another writer already committed the same
        content_hash, StorageFailure for any other database error.
        """
        async with self._session("commit") as db:
            db.add(record)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                logger.info("Insert lost race for hash %s", record.content_hash)
                raise DuplicateHash(record.content_hash)
            await db.refresh(record)
        logger.info("Indexed file %s with hash %s", record.id, record.content_hash)
        return record

    async def ping(self) -> bool:
        try:
            async with self._session("ping") as db:
                await db.execute(text("SELECT 1"))
            return True
        except StorageFailure:
            return False
