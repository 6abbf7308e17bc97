"""
Patient Image Backend - Health Check Route
============================================

What:  Health check endpoint for monitoring and load balancer probes.
How:   Checks the record store (SELECT 1) and that the upload directory
       exists and is writable.

Status levels:
    - healthy:   database reachable and storage writable
    - unhealthy: either dependency unavailable (still HTTP 200; the body says why)
"""

import logging
import os
import time

from fastapi import APIRouter, Depends
from sqlalchemy import text

from app import __version__
from app.database import engine
from app.dependencies import get_blob_store
from app.schemas.image_record import HealthResponse
from app.services.blob_store import BlobStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(blob_store: BlobStore = Depends(get_blob_store)) -> HealthResponse:
    db_status = "connected"
    storage_status = "writable"
    overall = "healthy"

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    root = blob_store.storage_root
    if not (root.is_dir() and os.access(root, os.W_OK)):
        storage_status = "unavailable"
        overall = "unhealthy"
        logger.warning("Health check: storage directory not writable: %s", root)

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        storage=storage_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
