"""
Patient Image Backend - Custom Exception Hierarchy
====================================================

What:  Application-specific exceptions for the error scenarios of the service.
Why:   Targeted error handling with the right HTTP status codes and messages
       that never leak internal details to the client.
How:   Each exception carries a message and an optional context dict.
       Global exception handlers (registered in main.py) turn them into
       structured JSON error responses.

Exception Hierarchy:
    PatientImageError (base)
    ├── ValidationError            → 400 Bad Request
    ├── NotFoundError              → 404 Not Found
    ├── FileStorageError           → 500 Internal Server Error
    └── DatabaseError              → 500 Internal Server Error
        ├── RecordLookupError      → reading a record failed
        └── RecordPersistError     → inserting/updating a record failed
            └── DuplicateRecordError  (insert lost a race on patient_id)

Not-found and best-effort file cleanup are NOT modeled as raised faults inside
the service layer: the service returns a value for "no images", and
BlobStore.delete() logs and returns False. Routes convert the not-found value
into NotFoundError so the HTTP response stays consistent.
"""

from typing import Any, Dict, Optional


class PatientImageError(Exception):
    """
    Base exception for all application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(PatientImageError):
    """
    Raised when client input fails validation.

    When:  Unsupported file type, empty or oversized upload, missing patientId,
           a file path outside the storage area.
    HTTP:  400 Bad Request
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class NotFoundError(PatientImageError):
    """
    Raised by routes when a requested resource does not exist.

    HTTP:  404 Not Found
    The message can be given explicitly; otherwise it is built from the
    resource name and id.
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        if message is None:
            message = f"The requested {resource} was not found"
            if resource_id:
                message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class FileStorageError(PatientImageError):
    """
    Raised when writing an uploaded file to the storage volume fails.

    When:  Disk full, permission denied, directory not writable, I/O error.
    HTTP:  500 Internal Server Error
    """

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseError(PatientImageError):
    """
    Raised when record store operations fail unexpectedly.

    HTTP:  500 Internal Server Error

    Security Note:
        The message returned to the client is always generic. SQL, constraint
        names and driver errors are logged server-side only.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RecordLookupError(DatabaseError):
    """Reading an image record failed. Nothing was written."""

    def __init__(
        self,
        message: str = "Could not load the image record. Please try again.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RecordPersistError(DatabaseError):
    """
    Inserting or updating an image record failed.

    The append workflow catches this type (and only this type) to remove the
    file that was uploaded for the failed write.
    """

    def __init__(
        self,
        message: str = "Failed to save image",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DuplicateRecordError(RecordPersistError):
    """
    A concurrent request created the record for this patient first.

    Raised by the record store when the unique constraint on patient_id
    rejects an insert. The service recovers by re-reading and appending.
    """

    def __init__(self, patient_id: str, context: Optional[Dict[str, Any]] = None):
        ctx = context or {}
        ctx["patient_id"] = patient_id
        super().__init__(
            message=f"An image record for patient '{patient_id}' already exists",
            context=ctx,
        )
        self.patient_id = patient_id
