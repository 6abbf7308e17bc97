"""
Patient Image Backend - FastAPI Dependencies
==============================================

What:  Providers for the blob store, the per-request record store and the
       image record service.
Why:   Routes receive their collaborators through Depends(), so tests can
       swap any of them with app.dependency_overrides instead of patching
       module globals.
"""

from functools import lru_cache

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.services.blob_store import BlobStore
from app.services.image_record_service import ImageRecordService
from app.services.record_store import ImageRecordStore


@lru_cache
def get_blob_store() -> BlobStore:
    """One BlobStore per process; it holds no per-request state."""
    return BlobStore()


def get_image_record_service(
    blob_store: BlobStore = Depends(get_blob_store),
) -> ImageRecordService:
    return ImageRecordService(blob_store)


def get_record_store(db: AsyncSession = Depends(get_db_session)) -> ImageRecordStore:
    """Record store bound to this request's session."""
    return ImageRecordStore(db)
