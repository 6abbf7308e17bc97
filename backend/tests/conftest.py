"""
Patient Image Backend - Test Configuration (conftest.py)
==========================================================

What:  Shared pytest fixtures for the test suite.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy (all function-scoped):
    ├── temp_storage:       temporary upload directory
    ├── blob_store:         BlobStore writing into temp_storage
    ├── sample_image_bytes: a small real PNG (sample_jpeg_bytes: JPEG)
    ├── memory_store:       in-memory record store (no database)
    ├── db_engine:          SQLite engine with the schema created
    ├── session_factory:    sessions bound to db_engine
    └── test_client:        HTTPX AsyncClient against the app, wired to the
                            SQLite database and the temp blob store
"""

import os
import tempfile
import uuid
from io import BytesIO
from typing import Dict, List, Optional

# Override settings for testing BEFORE any app imports
_test_dir = tempfile.mkdtemp(prefix="patient_images_test_")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_test_dir}/health.db"
os.environ["STORAGE_ROOT"] = os.path.join(_test_dir, "uploads")
os.environ["LOG_LEVEL"] = "WARNING"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from PIL import Image  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.database import Base  # noqa: E402
from app.exceptions import DuplicateRecordError, RecordLookupError, RecordPersistError  # noqa: E402
from app.models.image_record import ImageRecord  # noqa: E402
from app.services.blob_store import BlobStore  # noqa: E402


class InMemoryRecordStore:
    """
    Dict-backed stand-in for ImageRecordStore.

    `persisted` holds what the last successful create/save wrote, so tests
    can tell in-memory mutations apart from persisted state.
    """

    def __init__(self) -> None:
        self.records: Dict[str, ImageRecord] = {}
        self.persisted: Dict[str, List[str]] = {}
        self.fail_on_find = False
        self.fail_on_save = False
        self.saves = 0

    def seed(self, patient_id: str, image_paths: List[str]) -> ImageRecord:
        record = ImageRecord(id=uuid.uuid4(), patient_id=patient_id, image_paths=list(image_paths))
        self.records[patient_id] = record
        self.persisted[patient_id] = list(image_paths)
        return record

    async def find_by_patient_id(self, patient_id: str) -> Optional[ImageRecord]:
        if self.fail_on_find:
            raise RecordLookupError(context={"patient_id": patient_id})
        return self.records.get(patient_id)

    async def create(self, patient_id: str, image_paths: List[str]) -> ImageRecord:
        if self.fail_on_save:
            raise RecordPersistError(context={"patient_id": patient_id})
        if patient_id in self.records:
            raise DuplicateRecordError(patient_id)
        self.saves += 1
        return self.seed(patient_id, image_paths)

    async def save(self, record: ImageRecord) -> None:
        if self.fail_on_save:
            raise RecordPersistError(context={"patient_id": record.patient_id})
        self.saves += 1
        self.persisted[record.patient_id] = list(record.image_paths)


@pytest.fixture
def temp_storage(tmp_path):
    """A fresh upload directory for each test."""
    storage_dir = tmp_path / "uploads"
    storage_dir.mkdir()
    return str(storage_dir)


@pytest.fixture
def blob_store(temp_storage):
    return BlobStore(storage_root=temp_storage, url_prefix="uploads")


def _encode_image(image_format: str) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", (4, 4), color=(200, 30, 30)).save(buffer, format=image_format)
    return buffer.getvalue()


@pytest.fixture
def sample_image_bytes():
    """A real 4x4 PNG, small enough for upload and serving tests."""
    return _encode_image("PNG")


@pytest.fixture
def sample_jpeg_bytes():
    return _encode_image("JPEG")


@pytest.fixture
def memory_store():
    return InMemoryRecordStore()


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """SQLite database in the test's temp dir with all tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/records.db")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def test_client(session_factory, blob_store):
    """
    HTTPX AsyncClient talking to the app through ASGITransport.

    get_db_session and get_blob_store are overridden so requests hit the
    per-test SQLite database and upload directory.
    """
    from app.database import get_db_session
    from app.dependencies import get_blob_store
    from app.main import app

    async def _session_override():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = _session_override
    app.dependency_overrides[get_blob_store] = lambda: blob_store

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
