"""InsuranceIntake ORM model — one row per saved intake version.

Intakes are append-only: saving a case again inserts version N+1 and
never updates an earlier row.  The full validated document lives in the
``payload`` JSONB column.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Index, Integer, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from intake_db.models.base import Base


class InsuranceIntake(Base):
    __tablename__ = "insurance_intakes"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    # Caller-side case identifier; versions are numbered per case
    case_id: Mapped[str] = mapped_column(Text, nullable=False)
    # insurer/form_catalog_number/form_version_date
    schema_id: Mapped[str] = mapped_column(Text, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False)
    source: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint("case_id", "version", name="uq_intake_case_version"),
        Index("ix_intake_case_created", "case_id", "created_at"),
        Index("ix_intake_schema_id", "schema_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<InsuranceIntake(id={self.id!s}, case={self.case_id!r}, "
            f"version={self.version}, schema={self.schema_id!r})>"
        )
