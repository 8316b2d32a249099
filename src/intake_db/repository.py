"""Async repository for InsuranceIntake.

All public methods accept an ``AsyncSession`` so the caller controls
transaction boundaries.  Writes ``flush`` but never ``commit``.
"""

from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from intake_db.models.intake import InsuranceIntake


class IntakeRepository:
    """Async read/write operations on the ``insurance_intakes`` table."""

    async def next_version(self, db: AsyncSession, case_id: str) -> int:
        """``max(version) + 1`` for the case (1 for a new case)."""
        stmt = select(func.max(InsuranceIntake.version)).where(
            InsuranceIntake.case_id == case_id
        )
        result = await db.execute(stmt)
        current = result.scalar_one_or_none()
        return (current or 0) + 1

    async def create_intake(
        self,
        db: AsyncSession,
        *,
        case_id: str,
        schema_id: str,
        version: int,
        payload: dict[str, Any],
        source: str | None = None,
        created_by: str | None = None,
    ) -> InsuranceIntake:
        """Insert a new intake version and return it.

        The caller must ``await db.commit()`` to persist.  A concurrent save
        of the same version violates ``uq_intake_case_version``.
        """
        intake = InsuranceIntake(
            case_id=case_id,
            schema_id=schema_id,
            version=version,
            payload=payload,
            source=source,
            created_by=created_by,
        )
        db.add(intake)
        await db.flush()
        return intake

    async def get_latest(self, db: AsyncSession, case_id: str) -> InsuranceIntake | None:
        stmt = (
            select(InsuranceIntake)
            .where(InsuranceIntake.case_id == case_id)
            .order_by(InsuranceIntake.version.desc())
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_versions(self, db: AsyncSession, case_id: str) -> list[InsuranceIntake]:
        """All versions of a case, oldest first."""
        stmt = (
            select(InsuranceIntake)
            .where(InsuranceIntake.case_id == case_id)
            .order_by(InsuranceIntake.version.asc())
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())
