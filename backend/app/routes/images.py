"""
Patient Image Backend - Image Route Handlers
==============================================

What:  HTTP surface of the image record operations, plus serving of the
       uploaded files the listed URLs point to.
How:   Routes are thin: they extract inputs, call ImageRecordService, and turn
       its "no images" value into a 404 via NotFoundError.

Route Inventory:
    POST   /image                       upload an image for a patient
    GET    /image?patientId=            list the patient's image URLs
    DELETE /image/{patientId}           delete all of the patient's images
    DELETE /image?patientId=&imagePath= delete one image
    GET    /<uploads_url_prefix>/{path} serve an uploaded file
"""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import FileResponse

from app.config import settings
from app.dependencies import get_blob_store, get_image_record_service, get_record_store
from app.exceptions import NotFoundError, ValidationError
from app.schemas.image_record import (
    ErrorResponse,
    ImageUrlsResponse,
    MessageResponse,
    PatientMessageResponse,
)
from app.services.blob_store import BlobStore
from app.services.image_record_service import ImageRecordService
from app.services.record_store import ImageRecordStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Images"])


def _require_patient_id(patient_id: str) -> str:
    """Rejects blank ids; the id is otherwise used exactly as sent."""
    if not patient_id.strip():
        raise ValidationError(message="patientId is required", field="patientId")
    return patient_id


@router.post(
    "/image",
    response_model=MessageResponse,
    responses={
        400: {"description": "Invalid upload or missing patientId", "model": ErrorResponse},
        500: {"description": "Failed to save image", "model": ErrorResponse},
    },
    summary="Upload an image for a patient",
)
async def upload_image(
    patient_id: str = Form(..., alias="patientId", description="Patient identifier"),
    image: UploadFile = File(..., description="Image file (PNG, JPG or JPEG)"),
    blob_store: BlobStore = Depends(get_blob_store),
    service: ImageRecordService = Depends(get_image_record_service),
    store: ImageRecordStore = Depends(get_record_store),
) -> MessageResponse:
    """
    Store the uploaded file, then append its path to the patient's record.

    If the record write fails, the service removes the stored file before the
    500 response is returned.
    """
    patient_id = _require_patient_id(patient_id)
    try:
        content = await image.read()
        logger.info(
            "Received image for patient %s: filename=%s, size=%d bytes",
            patient_id,
            image.filename or "unknown",
            len(content),
        )
        file_path = await blob_store.validate_and_store(
            filename=image.filename or "",
            content=content,
            content_length=image.size,
        )
    finally:
        await image.close()

    await service.append(store, patient_id, file_path)
    return MessageResponse(message="Image saved successfully")


@router.get(
    "/image",
    response_model=ImageUrlsResponse,
    responses={404: {"description": "No images for that user", "model": ErrorResponse}},
    summary="List a patient's image URLs",
)
async def list_images(
    request: Request,
    patient_id: str = Query(..., alias="patientId", description="Patient identifier"),
    service: ImageRecordService = Depends(get_image_record_service),
    store: ImageRecordStore = Depends(get_record_store),
) -> ImageUrlsResponse:
    """URLs are built from this request's scheme and host."""
    patient_id = _require_patient_id(patient_id)
    result = await service.list_as_urls(
        store,
        patient_id,
        scheme=request.url.scheme,
        host=request.url.netloc,
    )
    if result is None:
        raise NotFoundError(
            resource="images",
            message="No images for that user found",
            context={"patient_id": patient_id},
        )
    return ImageUrlsResponse(patient_id=result.patient_id, image_urls=result.image_urls)


@router.delete(
    "/image/{patient_id}",
    response_model=PatientMessageResponse,
    responses={404: {"description": "No images found for the user", "model": ErrorResponse}},
    summary="Delete all images of a patient",
)
async def delete_all_images(
    patient_id: str,
    background_tasks: BackgroundTasks,
    service: ImageRecordService = Depends(get_image_record_service),
    store: ImageRecordStore = Depends(get_record_store),
) -> PatientMessageResponse:
    """The files are removed after the response is sent."""
    patient_id = _require_patient_id(patient_id)
    deleted = await service.delete_all(store, patient_id, background_tasks)
    if not deleted:
        raise NotFoundError(
            resource="images",
            message="No images found for the user",
            context={"patient_id": patient_id},
        )
    return PatientMessageResponse(message="All images deleted for user", patient_id=patient_id)


@router.delete(
    "/image",
    response_model=MessageResponse,
    responses={404: {"description": "Image path was not found for that user", "model": ErrorResponse}},
    summary="Delete one image of a patient",
)
async def delete_image(
    background_tasks: BackgroundTasks,
    patient_id: str = Query(..., alias="patientId", description="Patient identifier"),
    image_path: str = Query(..., alias="imagePath", description="Stored path of the image"),
    service: ImageRecordService = Depends(get_image_record_service),
    store: ImageRecordStore = Depends(get_record_store),
) -> MessageResponse:
    patient_id = _require_patient_id(patient_id)
    deleted = await service.delete_one(store, patient_id, image_path, background_tasks)
    if not deleted:
        raise NotFoundError(
            resource="image",
            message="Image path was not found for that user",
            context={"patient_id": patient_id, "image_path": image_path},
        )
    return MessageResponse(message="Image deleted successfully")


@router.get(
    f"/{settings.uploads_url_prefix}/{{file_path:path}}",
    summary="Serve an uploaded image file",
    responses={
        200: {"description": "Image file"},
        400: {"description": "Invalid file path", "model": ErrorResponse},
        404: {"description": "File not found", "model": ErrorResponse},
    },
)
async def serve_file(
    file_path: str,
    blob_store: BlobStore = Depends(get_blob_store),
) -> FileResponse:
    """
    Serve a stored file. The path is resolved inside the storage directory;
    anything escaping it is rejected with 400.
    """
    full_path = blob_store.resolve(file_path)
    if not full_path.is_file():
        raise NotFoundError(resource="file", resource_id=file_path)

    return FileResponse(
        path=str(full_path),
        headers={"Cache-Control": "public, max-age=86400"},
    )
