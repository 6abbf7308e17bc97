"""
Patient Image Backend - Image Record Service (business logic)
===============================================================

What:  The four image-record operations: append, list as URLs, delete all,
       delete one.
Why:   Keeps the record lifecycle rules in one place, independent of HTTP.
How:   Mediates between an ImageRecordStore (passed in per call, bound to the
       request's session) and the BlobStore (injected at construction).

Outcomes:
    - "No images" is a value, not an exception: list_as_urls returns None,
      delete_all / delete_one return False. A record whose path list is empty
      answers exactly like a record that was never created.
    - RecordLookupError / RecordPersistError propagate to the global handler
      (HTTP 500). Only a persistence failure during append triggers removal of
      the file that was uploaded for it.
    - File deletions are best-effort: BlobStore.delete never raises, failures
      are logged, nothing is retried, and the record update never waits on or
      depends on their outcome.

Concurrency:
    No in-process locks. Each request works on its own session. Two first
    uploads for the same patient are serialized by the unique constraint on
    patient_id: the loser gets DuplicateRecordError and appends to the winner.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

from fastapi import BackgroundTasks

from app.exceptions import DuplicateRecordError, RecordPersistError
from app.models.image_record import ImageRecord
from app.services.blob_store import BlobStore

logger = logging.getLogger(__name__)


class RecordStore(Protocol):
    """What the service needs from a record store."""

    async def find_by_patient_id(self, patient_id: str) -> Optional[ImageRecord]: ...

    async def create(self, patient_id: str, image_paths: List[str]) -> ImageRecord: ...

    async def save(self, record: ImageRecord) -> None: ...


@dataclass(frozen=True)
class ImageUrls:
    """A patient's images as absolute URLs, in storage order."""
    patient_id: str
    image_urls: List[str]


def build_image_url(scheme: str, host: str, stored_path: str) -> str:
    """
    scheme://host/ + stored path.

    The stored path is used verbatim apart from one leading "/", which would
    otherwise produce "//" after the host.
    """
    return f"{scheme}://{host}/{stored_path.removeprefix('/')}"


class ImageRecordService:
    """
    Business logic layer for patient image records.

    Responsibilities:
        - append():       add an uploaded file's path, creating the record if needed
        - list_as_urls(): the patient's images as URLs
        - delete_all():   empty the patient's list and remove the files
        - delete_one():   remove one path and its file
    """

    def __init__(self, blob_store: BlobStore) -> None:
        self.blob_store = blob_store

    async def append(self, store: RecordStore, patient_id: str, file_path: str) -> None:
        """
        Record `file_path` for the patient.

        Workflow:
            1. Look up the patient's record
            2. Found: append the path. Not found: create [file_path]
            3. Persist

        Error Recovery:
            Step 1 fails → RecordLookupError (500), file kept
            Step 2/3 fails → RecordPersistError (500), uploaded file removed

        Args:
            store: Record store bound to the current request
            patient_id: Patient identifier (non-empty)
            file_path: Stored path of a file already written by the upload step
        """
        record = await store.find_by_patient_id(patient_id)

        try:
            if record is None:
                try:
                    record = await store.create(patient_id, [file_path])
                    return
                except DuplicateRecordError:
                    # Lost the creation race: append to the record that won
                    record = await store.find_by_patient_id(patient_id)
                    if record is None:
                        raise RecordPersistError(context={"patient_id": patient_id})

            record.image_paths = [*record.image_paths, file_path]
            await store.save(record)
            logger.info(
                "Image appended for patient %s (%d total)", patient_id, len(record.image_paths)
            )
        except RecordPersistError:
            logger.error("Error saving image to db for patient %s; removing upload", patient_id)
            await self.blob_store.delete(file_path)
            raise

    async def list_as_urls(
        self,
        store: RecordStore,
        patient_id: str,
        scheme: str,
        host: str,
    ) -> Optional[ImageUrls]:
        """
        The patient's images as absolute URLs.

        Returns:
            ImageUrls in storage order, or None when the patient has no record
            or an empty list. Files are not checked for existence.
        """
        record = await store.find_by_patient_id(patient_id)
        if record is None or not record.image_paths:
            return None

        return ImageUrls(
            patient_id=patient_id,
            image_urls=[build_image_url(scheme, host, path) for path in record.image_paths],
        )

    async def delete_all(
        self,
        store: RecordStore,
        patient_id: str,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> bool:
        """
        Empty the patient's image list and remove every file.

        The record itself is kept. File deletions are scheduled on
        `background_tasks` (run after the response is sent) when given,
        otherwise run inline; either way their failures are only logged.

        Returns:
            False when the patient has no record or no images, else True.
        """
        record = await store.find_by_patient_id(patient_id)
        if record is None or not record.image_paths:
            return False

        removed_paths = list(record.image_paths)
        record.image_paths = []
        await store.save(record)
        logger.info("Cleared %d images for patient %s", len(removed_paths), patient_id)

        await self._discard_files(removed_paths, background_tasks)
        return True

    async def delete_one(
        self,
        store: RecordStore,
        patient_id: str,
        path: str,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> bool:
        """
        Remove one occurrence of `path` from the patient's list, then its file.

        Membership is exact string equality. Other entries keep their order.

        Returns:
            False when the patient has no record or `path` is not in the list.
        """
        record = await store.find_by_patient_id(patient_id)
        if record is None or path not in record.image_paths:
            return False

        remaining = list(record.image_paths)
        remaining.remove(path)
        record.image_paths = remaining
        await store.save(record)
        logger.info("Removed image %s for patient %s", path, patient_id)

        await self._discard_files([path], background_tasks)
        return True

    async def _discard_files(
        self,
        paths: Sequence[str],
        background_tasks: Optional[BackgroundTasks],
    ) -> None:
        if background_tasks is None:
            await self.blob_store.delete_many(paths)
            return
        for path in paths:
            background_tasks.add_task(self.blob_store.delete, path)
