"""Root conftest: per-test SQLite database and blob directory.

Every test gets its own app built by create_app(), so nothing is shared
between tests. httpx's ASGITransport doesn't run the lifespan, so the
schema is created here.
"""
import os
from pathlib import Path

# textstore.main builds a module-level app on import; keep it off Postgres.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///test.db")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select

from textstore.config import Settings
from textstore.main import create_app
from textstore.models import FileRecord


@pytest.fixture
def settings(tmp_path):
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'textstore.db'}",
        FILE_STORAGE_PATH=str(tmp_path / "blobs"),
        ORPHAN_MIN_AGE_SECONDS=60,
    )


@pytest.fixture
async def app(settings):
    app = create_app(settings)
    await app.state.index.create_schema(app.state.engine)
    yield app
    await app.state.engine.dispose()


@pytest.fixture
def resolver(app):
    return app.state.resolver


@pytest.fixture
def blob_dir(settings):
    return Path(settings.FILE_STORAGE_PATH)


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest.fixture
def count_records(app):
    """Return an async callable counting rows in the files table."""
    async def _count() -> int:
        async with app.state.index._session_factory() as db:
            result = await db.execute(select(func.count()).select_from(FileRecord))
            return result.scalar_one()
    return _count
