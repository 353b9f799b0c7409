"""Files API routes."""
from urllib.parse import quote
from uuid import UUID
from fastapi import APIRouter, Depends, Request, Response, UploadFile, File as FastAPIFile
from fastapi.responses import StreamingResponse

from textstore.errors import NotFound
from textstore.schemas.file import FileInfoResponse, SweepResponse, UploadResponse
from textstore.services.identity_resolver import IdentityResolver

router = APIRouter(prefix="/api/files", tags=["files"])


def get_resolver(request: Request) -> IdentityResolver:
    """FastAPI dependency returning the resolver built by create_app()."""
    return request.app.state.resolver


def _content_disposition(filename: str) -> str:
    quoted = quote(filename)
    if quoted != filename:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{filename}"'


def _parse_file_id(file_id: str) -> UUID:
    # A malformed id can never have been issued, so it is simply unknown.
    try:
        return UUID(file_id)
    except ValueError:
        raise NotFound(f"File not found: {file_id}")


@router.post("", response_model=UploadResponse, status_code=201)
async def upload_file(
    response: Response,
    file: UploadFile | None = FastAPIFile(None),
    resolver: IdentityResolver = Depends(get_resolver),
):
    """Upload a .txt file. Identical content always maps to the same id."""
    contents = await file.read() if file is not None else b""
    result = await resolver.submit(contents, file.filename if file is not None else None)
    if not result.created:
        response.status_code = 200
    return UploadResponse(id=result.id)


@router.post("/maintenance/sweep", response_model=SweepResponse)
async def sweep_orphans(
    request: Request,
    resolver: IdentityResolver = Depends(get_resolver),
):
    """Delete blobs that no file record references."""
    report = await resolver.sweep_orphan_blobs(request.app.state.settings.ORPHAN_MIN_AGE_SECONDS)
    return SweepResponse(
        blobs_scanned=report.blobs_scanned,
        orphans_removed=report.orphans_removed,
        temp_files_removed=report.temp_files_removed,
    )


@router.get("/{file_id}/info", response_model=FileInfoResponse)
async def get_file_info(
    file_id: str,
    resolver: IdentityResolver = Depends(get_resolver),
):
    """Get file metadata by ID."""
    return await resolver.describe(_parse_file_id(file_id))


@router.get("/{file_id}")
async def download_file(
    file_id: str,
    resolver: IdentityResolver = Depends(get_resolver),
):
    """Download a file by ID."""
    resolved = await resolver.resolve(_parse_file_id(file_id))
    return StreamingResponse(
        resolved.stream,
        media_type=resolved.content_type,
        headers={
            "Content-Disposition": _content_disposition(resolved.display_name),
            "Content-Length": str(resolved.size_bytes),
        },
    )
