"""
Patient Image Backend - ImageRecord SQLAlchemy Model
======================================================

What:  ORM model for the `image_records` table: one row per patient, holding
       the ordered list of stored image paths.
Why:   Maps Python objects to rows for type-safe record store operations.
Who:   Used by ImageRecordStore for lookups/writes and by Alembic for the schema.

Table Design Rationale:
    - UUID primary key, generated on creation and never changed
    - patient_id UNIQUE: the natural key for every lookup. The constraint makes
      "at most one record per patient" hold even when two first uploads race.
    - image_path: JSON array of path strings. Insertion order is preserved and
      duplicates are allowed; the list is replaced (not mutated in place) on
      every change so SQLAlchemy always sees the update.
    - The row is never deleted: delete-all only empties the list.
"""

import uuid
from datetime import datetime, timezone
from typing import List

from sqlalchemy import JSON, DateTime, String, Uuid, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ImageRecord(Base):
    """
    Image paths uploaded for one patient.

    Lifecycle:
        absent   → populated  on the first upload for a patient
        populated → populated on further uploads or single deletes
        populated → emptied   on delete-all or when the last path is removed
    """

    __tablename__ = "image_records"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        comment="Record identifier, assigned at creation",
    )

    patient_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
        comment="Patient identifier; one record per patient",
    )

    # JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
    image_paths: Mapped[List[str]] = mapped_column(
        "image_path",
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        default=list,
        comment="Ordered stored paths of the patient's images",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    def __repr__(self) -> str:
        return (
            f"<ImageRecord(id={self.id}, patient_id='{self.patient_id}', "
            f"images={len(self.image_paths or [])})>"
        )
