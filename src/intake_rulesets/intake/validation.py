"""IntakeValidator — validates intake documents against their registered schema.

The schema is selected only from the document's own ``meta`` triple.  A
failed validation lists every field-level error, not just the first, so
an operator (or an automated fixer) gets complete feedback in one pass.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, Field

from intake_rulesets.errors import SchemaRegistryError
from intake_rulesets.intake.registry import SchemaRegistry
from intake_rulesets.intake.schema_id import derive_schema_id

logger = logging.getLogger(__name__)

MSG_MISSING_META = "Missing meta.insurer / meta.form_catalog_number / meta.form_version_date"
MSG_VALIDATION_FAILED = "Schema validation failed"


class FieldError(BaseModel):
    """One schema violation."""

    path: str
    message: str
    validator: str


class IntakeValidationSuccess(BaseModel):
    ok: Literal[True] = True
    schema_id: str
    normalized: dict[str, Any]


class IntakeValidationFailure(BaseModel):
    ok: Literal[False] = False
    schema_id: Optional[str] = None
    errors: List[FieldError] = Field(default_factory=list)
    message: str


IntakeValidationResult = Union[IntakeValidationSuccess, IntakeValidationFailure]


class IntakeValidator:
    """Validates documents through a :class:`SchemaRegistry`."""

    def __init__(self, registry: SchemaRegistry) -> None:
        self._registry = registry

    @property
    def registry(self) -> SchemaRegistry:
        return self._registry

    def validate(self, document: Mapping[str, Any]) -> IntakeValidationResult:
        schema_id = derive_schema_id(document)
        if schema_id is None:
            return IntakeValidationFailure(message=MSG_MISSING_META)

        try:
            validator = self._registry.validator(schema_id)
        except KeyError:
            return IntakeValidationFailure(
                schema_id=schema_id,
                message=f"Schema not found in registry for schemaId={schema_id}",
            )
        except SchemaRegistryError as exc:
            logger.error("Schema %s could not be loaded: %s", schema_id, exc)
            return IntakeValidationFailure(
                schema_id=schema_id,
                message=f"Failed to load schema for schemaId={schema_id}: {exc}",
            )

        errors = sorted(validator.iter_errors(document), key=lambda e: e.json_path)
        if errors:
            logger.info("Intake failed %s with %d errors", schema_id, len(errors))
            return IntakeValidationFailure(
                schema_id=schema_id,
                errors=[
                    FieldError(path=e.json_path, message=e.message, validator=str(e.validator))
                    for e in errors
                ],
                message=MSG_VALIDATION_FAILED,
            )

        return IntakeValidationSuccess(schema_id=schema_id, normalized=copy.deepcopy(dict(document)))
