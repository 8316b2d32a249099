"""IntakeService — validate an intake document and store it as a new version.

Saving never overwrites: each successful save inserts version
``max(version) + 1`` for the case.  Validation failures are returned, not
raised, so the caller can decide whether to block or keep a draft.
"""

from __future__ import annotations

import logging
from typing import Any, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from intake_db.repository import IntakeRepository
from intake_rulesets.intake.validation import (
    FieldError,
    IntakeValidationFailure,
    IntakeValidator,
)

logger = logging.getLogger(__name__)

DEFAULT_SOURCE = "api"


class SavedIntake(BaseModel):
    ok: Literal[True] = True
    intake_id: str
    schema_id: str
    version: int


class IntakeSaveFailure(BaseModel):
    ok: Literal[False] = False
    error: str
    schema_id: Optional[str] = None
    details: List[FieldError] = Field(default_factory=list)


SaveIntakeResult = Union[SavedIntake, IntakeSaveFailure]


class IntakeService:
    """Validation + versioned persistence of intake documents.

    Args:
        validator: schema validator
        repository: intake table access (defaults to :class:`IntakeRepository`)
    """

    def __init__(
        self,
        validator: IntakeValidator,
        repository: IntakeRepository | None = None,
    ) -> None:
        self._validator = validator
        self._repo = repository or IntakeRepository()

    @property
    def validator(self) -> IntakeValidator:
        return self._validator

    async def save_intake(
        self,
        db: AsyncSession,
        case_id: str,
        document: Mapping[str, Any],
        *,
        source: str | None = None,
        created_by: str | None = None,
    ) -> SaveIntakeResult:
        """Validate *document* and insert it as the case's next version.

        The caller must ``await db.commit()`` to persist.
        """
        validation = self._validator.validate(document)
        if isinstance(validation, IntakeValidationFailure):
            logger.info(
                "Intake for case %s rejected: %s (%d errors)",
                case_id, validation.message, len(validation.errors),
            )
            return IntakeSaveFailure(
                error=validation.message,
                schema_id=validation.schema_id,
                details=validation.errors,
            )

        version = await self._repo.next_version(db, case_id)
        intake = await self._repo.create_intake(
            db,
            case_id=case_id,
            schema_id=validation.schema_id,
            version=version,
            payload=validation.normalized,
            source=source or DEFAULT_SOURCE,
            created_by=created_by,
        )
        logger.info(
            "Saved intake %s for case %s (version %d, schema %s)",
            intake.id, case_id, version, validation.schema_id,
        )
        return SavedIntake(
            intake_id=str(intake.id),
            schema_id=validation.schema_id,
            version=version,
        )
