"""
Patient Image Backend - Pydantic Request/Response Schemas
===========================================================

What:  Pydantic models defining the API contract of the image endpoints.
Why:   Automatic serialization and OpenAPI doc generation.
How:   Field aliases keep the wire format camelCase (`patientId`, `imageUrls`)
       while Python code uses snake_case.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    # Serialized by alias; accepts both spellings on input
    model_config = ConfigDict(populate_by_name=True)


class MessageResponse(BaseModel):
    """Plain confirmation returned by append and delete-one."""
    message: str = Field(description="Human-readable result message")


class PatientMessageResponse(_CamelModel):
    """Confirmation that names the patient, returned by delete-all."""
    message: str = Field(description="Human-readable result message")
    patient_id: str = Field(alias="patientId", description="Patient identifier")


class ImageUrlsResponse(_CamelModel):
    """
    What:  The patient's images as absolute URLs, in upload order.
    Who:   Returned by GET /image?patientId=...

    URLs point at the file-serving route; they are built from the request's
    scheme and host plus the stored path, without checking the files exist.
    """
    patient_id: str = Field(alias="patientId", description="Patient identifier")
    image_urls: List[str] = Field(alias="imageUrls", description="Absolute image URLs")


class ErrorResponse(BaseModel):
    """
    Standardized error response format for all API errors.

    Example:
        {
            "error": "not_found",
            "message": "No images for that user found",
            "request_id": "1a2b3c4d"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    """Health check response showing service and dependency status."""
    status: str = Field(description="Overall service status: healthy, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Record store connectivity: connected, disconnected")
    storage: str = Field(description="Upload directory: writable, unavailable")
    uptime_seconds: float = Field(description="Seconds since service started")
