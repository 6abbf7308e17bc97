"""
Patient Image Backend - Blob Store (uploaded image files on local disk)
=========================================================================

What:  Validates and writes uploaded images, deletes them by stored path,
       and resolves stored paths back to files for serving.
Why:   Centralizes every file system operation, including the path checks
       that keep callers inside the storage directory.
Who:   Used by the image routes (upload, serve) and by ImageRecordService
       (cleanup after a failed record write, deletions).

Stored path convention:
    The path saved in an ImageRecord is the public path of the file:

        <uploads_url_prefix>/YYYY/MM/DD/<uuid>.<ext>     e.g. uploads/2024/01/15/ab12.png

    and maps to  <storage_root>/YYYY/MM/DD/<uuid>.<ext>  on disk.
    The listing endpoint turns it into  <scheme>://<host>/<stored path>,
    which is served by GET /<uploads_url_prefix>/{path}.

Deletion is best-effort:
    delete() never raises. A missing file, a path outside the storage area or
    an OS error is logged and reported as False. There is no retry and no
    reference counting: a path listed twice is deleted once and the second
    attempt logs "already gone".
"""

import logging
import os
import uuid
from datetime import datetime, timezone
from io import BytesIO
from pathlib import Path, PurePosixPath
from typing import Iterable, Optional, Tuple

import aiofiles
from PIL import Image, UnidentifiedImageError

from app.config import settings
from app.exceptions import FileStorageError, ValidationError

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".png", ".jpg", ".jpeg"}
ALLOWED_IMAGE_FORMATS = {"PNG", "JPEG"}


class BlobStore:
    """
    Local-disk store for uploaded image files.

    Directory Structure:
        uploads/
        └── 2024/
            └── 01/
                └── 15/
                    ├── a1b2c3d4-5678.jpg
                    └── e5f6g7h8-9012.png
    """

    def __init__(
        self,
        storage_root: Optional[str] = None,
        url_prefix: Optional[str] = None,
        max_file_size: Optional[int] = None,
    ):
        """
        Args:
            storage_root: Override the storage directory (used in tests).
            url_prefix: Override the public path prefix of stored files.
            max_file_size: Override the upload size limit in bytes.
        """
        self.storage_root = Path(storage_root or settings.storage_root).resolve()
        self.url_prefix = (url_prefix or settings.uploads_url_prefix).strip("/")
        self.max_file_size = max_file_size or settings.max_file_size
        self.storage_root.mkdir(parents=True, exist_ok=True)
        logger.info(
            "BlobStore initialized with storage_root=%s url_prefix=%s",
            self.storage_root,
            self.url_prefix,
        )

    # ── Validation ────────────────────────────────────────────────────────

    def validate_extension(self, filename: str) -> str:
        """
        Returns the normalized extension (lowercase with dot).

        Raises:
            ValidationError if the extension is not an allowed image type.
        """
        ext = Path(filename).suffix.lower()
        if ext not in ALLOWED_EXTENSIONS:
            raise ValidationError(
                message=(
                    f"File type '{ext}' is not supported. "
                    f"Allowed types: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
                ),
                field="image",
                context={"extension": ext, "allowed": sorted(ALLOWED_EXTENSIONS)},
            )
        return ext

    def validate_size(self, content_length: Optional[int], actual_size: int) -> None:
        """
        Rejects empty uploads and uploads over the size limit.

        Content-Length is checked first when the client sent one; the actual
        byte count is checked regardless because headers can be wrong.
        """
        max_mb = self.max_file_size / (1024 * 1024)

        if actual_size == 0:
            raise ValidationError(
                message="The uploaded file is empty.",
                field="image",
            )

        if content_length and content_length > self.max_file_size:
            raise ValidationError(
                message=f"File size exceeds maximum of {max_mb:.0f}MB. Please upload a smaller image.",
                field="image",
                context={"max_size_mb": max_mb, "reported_size": content_length},
            )

        if actual_size > self.max_file_size:
            raise ValidationError(
                message=f"File size ({actual_size / (1024 * 1024):.1f}MB) exceeds maximum of {max_mb:.0f}MB.",
                field="image",
                context={"max_size_mb": max_mb, "actual_size": actual_size},
            )

    def validate_content(self, content: bytes) -> str:
        """
        Checks the bytes themselves are a PNG or JPEG image, so a renamed
        file with an image extension is refused.

        Only the header is parsed; pixel data is not decoded.

        Returns:
            The detected format ("PNG" or "JPEG").
        """
        try:
            with Image.open(BytesIO(content)) as img:
                image_format = img.format
        except UnidentifiedImageError:
            image_format = None

        if image_format not in ALLOWED_IMAGE_FORMATS:
            raise ValidationError(
                message="The uploaded file is not a valid PNG or JPEG image.",
                field="image",
                context={"detected_format": image_format},
            )
        return image_format

    # ── Path mapping ──────────────────────────────────────────────────────

    def _generate_storage_path(self, extension: str) -> Tuple[Path, str]:
        """
        Returns (absolute_path, stored_path) for a new file.

        UUID filenames carry no user input, so they cannot traverse paths or
        collide under concurrent uploads.
        """
        date_dir = datetime.now(timezone.utc).strftime("%Y/%m/%d")
        relative = f"{date_dir}/{uuid.uuid4()}{extension}"
        return self.storage_root / relative, f"{self.url_prefix}/{relative}"

    def resolve(self, stored_path: str) -> Path:
        """
        Map a stored path (or the tail of a served URL) to a file on disk.

        Accepts "uploads/2024/01/15/x.png", "/uploads/2024/01/15/x.png" and
        the prefix-less "2024/01/15/x.png".

        Raises:
            ValidationError if the path escapes the storage directory.
        """
        parts = PurePosixPath(stored_path.lstrip("/")).parts
        if parts and parts[0] == self.url_prefix:
            parts = parts[1:]
        if not parts:
            raise ValidationError(message="Invalid file path", field="imagePath")

        candidate = self.storage_root.joinpath(*parts).resolve()
        if not candidate.is_relative_to(self.storage_root):
            raise ValidationError(
                message="Invalid file path",
                field="imagePath",
                context={"path": stored_path},
            )
        return candidate

    # ── Write ─────────────────────────────────────────────────────────────

    async def store_file(self, content: bytes, extension: str) -> str:
        """
        Write validated content to disk and return its stored path.

        Raises:
            FileStorageError if directory creation or the write fails.
        """
        absolute_path, stored_path = self._generate_storage_path(extension)

        try:
            absolute_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(absolute_path, "wb") as f:
                await f.write(content)
        except OSError as e:
            logger.error("Failed to store file at %s: %s", absolute_path, str(e))
            raise FileStorageError(
                message="Failed to save uploaded image. Please try again.",
                context={"path": str(absolute_path), "os_error": str(e)},
            )

        logger.info("File stored: %s (%d bytes)", stored_path, len(content))
        return stored_path

    async def validate_and_store(
        self,
        filename: str,
        content: bytes,
        content_length: Optional[int] = None,
    ) -> str:
        """
        Upload pipeline: extension check, size check, content check, write.

        Returns:
            The stored path to record for the patient.
        """
        ext = self.validate_extension(filename)
        self.validate_size(content_length, len(content))
        self.validate_content(content)
        return await self.store_file(content, ext)

    # ── Delete (best-effort) ──────────────────────────────────────────────

    async def delete(self, stored_path: str) -> bool:
        """
        Remove a stored file. Never raises.

        Returns:
            True if a file was removed, False if it was already gone, the path
            was invalid, or the OS refused. Failures are logged only.
        """
        try:
            path = self.resolve(stored_path)
        except ValidationError:
            logger.warning("Skipping delete of path outside storage: %s", stored_path)
            return False

        try:
            os.remove(path)
        except FileNotFoundError:
            logger.info("Delete: file already gone (might have not existed): %s", stored_path)
            return False
        except OSError as e:
            logger.warning("Failed to delete file %s: %s", stored_path, str(e))
            return False

        logger.info("Deleted file: %s", stored_path)
        return True

    async def delete_many(self, stored_paths: Iterable[str]) -> int:
        """Independent best-effort delete of each path; returns how many were removed."""
        removed = 0
        for stored_path in stored_paths:
            if await self.delete(stored_path):
                removed += 1
        return removed
