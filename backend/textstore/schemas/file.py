"""File request/response schemas."""
import uuid
from datetime import datetime
from typing import Optional
from textstore.schemas.base import CamelModel, CamelORMModel


class UploadResponse(CamelModel):
    id: uuid.UUID


class FileInfoResponse(CamelORMModel):
    id: uuid.UUID
    display_name: str
    size_bytes: int
    created_at: Optional[datetime] = None


class SweepResponse(CamelModel):
    blobs_scanned: int
    orphans_removed: list[str]
    temp_files_removed: int


class HealthResponse(CamelModel):
    status: str
    database: str
