"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from textstore.config import Settings
from textstore.database import create_engine, create_session_factory
from textstore.error_handlers import register_error_handlers
from textstore.routes.files import router as files_router
from textstore.schemas.file import HealthResponse
from textstore.services.blob_store import BlobStore
from textstore.services.identity_resolver import IdentityResolver
from textstore.services.metadata_index import MetadataIndex

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup, optionally sweep orphan blobs."""
    await app.state.index.create_schema(app.state.engine)

    settings: Settings = app.state.settings
    logger.info("Text file store ready, blobs at %s", app.state.blobs.root.resolve())
    if settings.ORPHAN_SWEEP_ON_STARTUP:
        await app.state.resolver.sweep_orphan_blobs(settings.ORPHAN_MIN_AGE_SECONDS)

    yield

    await app.state.engine.dispose()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the app and the single engine, index, blob store and resolver it owns."""
    settings = settings or Settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    engine = create_engine(settings.DATABASE_URL)
    index = MetadataIndex(create_session_factory(engine))
    blobs = BlobStore(
        Path(settings.FILE_STORAGE_PATH),
        suffix=settings.ACCEPTED_SUFFIX,
        chunk_size=settings.FILE_CHUNK_SIZE,
    )

    app = FastAPI(
        title="Text File Store API",
        version="1.0.0",
        description="Content-addressed text file storage with deduplication.",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.index = index
    app.state.blobs = blobs
    app.state.resolver = IdentityResolver(index, blobs, accepted_suffix=settings.ACCEPTED_SUFFIX)

    # CORS
    origins = [o.strip() for o in settings.CORS_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    @app.get("/api/health", response_model=HealthResponse)
    async def health_check():
        """Verify API and database connectivity."""
        if await index.ping():
            return HealthResponse(status="ok", database="connected")
        return HealthResponse(status="error", database="unreachable")

    app.include_router(files_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.API_PORT)
