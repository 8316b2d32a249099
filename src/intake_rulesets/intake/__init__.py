"""Intake document validation and versioned persistence."""

from intake_rulesets.intake.registry import SchemaCache, SchemaRegistry
from intake_rulesets.intake.schema_id import derive_schema_id
from intake_rulesets.intake.service import (
    IntakeSaveFailure,
    IntakeService,
    SavedIntake,
)
from intake_rulesets.intake.validation import (
    FieldError,
    IntakeValidationFailure,
    IntakeValidationSuccess,
    IntakeValidator,
)

__all__ = [
    "FieldError",
    "IntakeSaveFailure",
    "IntakeService",
    "IntakeValidationFailure",
    "IntakeValidationSuccess",
    "IntakeValidator",
    "SavedIntake",
    "SchemaCache",
    "SchemaRegistry",
    "derive_schema_id",
]
