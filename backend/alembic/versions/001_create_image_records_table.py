"""Create image_records table

Revision ID: 001
Revises: None
Create Date: 2024-01-15 00:00:00.000000+00:00

What:  Creates the `image_records` table: one row per patient with the ordered
       list of stored image paths.
How:   UUID primary key, unique index on patient_id (one record per patient,
       also under concurrent first uploads), JSONB path list.

Rollback: downgrade() drops the table entirely (destructive: all records lost;
the image files on disk are left untouched).
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the image_records table and its patient_id index."""
    op.create_table(
        "image_records",
        sa.Column(
            "id",
            sa.Uuid(),
            nullable=False,
            comment="Record identifier, assigned at creation",
        ),
        sa.Column(
            "patient_id",
            sa.String(255),
            nullable=False,
            comment="Patient identifier; one record per patient",
        ),
        sa.Column(
            "image_path",
            sa.JSON().with_variant(postgresql.JSONB(), "postgresql"),
            nullable=False,
            comment="Ordered stored paths of the patient's images",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )

    # Unique: lookups are always by patient, and a second insert for the same
    # patient must fail so the losing request appends instead
    op.create_index(
        "ix_image_records_patient_id",
        "image_records",
        ["patient_id"],
        unique=True,
    )


def downgrade() -> None:
    op.drop_index("ix_image_records_patient_id", table_name="image_records")
    op.drop_table("image_records")
