"""
Patient Image Backend - Record Store (image records in the database)
======================================================================

What:  Thin async data access layer over the `image_records` table.
Why:   Gives the service an explicit, injectable store handle and tags every
       failure as either a lookup failure or a persistence failure, so the
       service can tell "could not read" apart from "could not save".
How:   Wraps one AsyncSession (one per request). Writes are flushed so
       database errors surface inside the service call; the commit happens in
       get_db_session once the request succeeds.
"""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import DuplicateRecordError, RecordLookupError, RecordPersistError
from app.models.image_record import ImageRecord

logger = logging.getLogger(__name__)


class ImageRecordStore:
    """
    Record store for ImageRecord rows, keyed by patient_id.

    Any object with the same three coroutines can stand in for this class;
    the unit tests use an in-memory dict-backed fake.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def find_by_patient_id(self, patient_id: str) -> Optional[ImageRecord]:
        """
        Return the patient's record, or None if there is none.

        Raises:
            RecordLookupError if the query fails.
        """
        try:
            result = await self._session.execute(
                select(ImageRecord).where(ImageRecord.patient_id == patient_id)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Lookup of image record for patient %s failed: %s", patient_id, str(e))
            raise RecordLookupError(
                context={"patient_id": patient_id, "error_type": type(e).__name__},
            ) from e

    async def create(self, patient_id: str, image_paths: List[str]) -> ImageRecord:
        """
        Insert a new record for the patient.

        Raises:
            DuplicateRecordError if another request created the record first
                (unique constraint on patient_id). The session is rolled back
                so the caller can re-read the winning record.
            RecordPersistError for any other database failure.
        """
        record = ImageRecord(patient_id=patient_id, image_paths=list(image_paths))
        self._session.add(record)
        try:
            await self._session.flush()
        except IntegrityError as e:
            await self._session.rollback()
            logger.info("Image record for patient %s was created concurrently", patient_id)
            raise DuplicateRecordError(patient_id) from e
        except SQLAlchemyError as e:
            logger.error("Insert of image record for patient %s failed: %s", patient_id, str(e))
            raise RecordPersistError(
                context={"patient_id": patient_id, "error_type": type(e).__name__},
            ) from e

        logger.info("Image record created for patient %s (id=%s)", patient_id, record.id)
        return record

    async def save(self, record: ImageRecord) -> None:
        """
        Persist changes made to a loaded record.

        Raises:
            RecordPersistError if the update fails.
        """
        try:
            await self._session.flush()
        except SQLAlchemyError as e:
            logger.error(
                "Update of image record for patient %s failed: %s", record.patient_id, str(e)
            )
            raise RecordPersistError(
                context={"patient_id": record.patient_id, "error_type": type(e).__name__},
            ) from e
