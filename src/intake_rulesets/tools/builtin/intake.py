"""``insurance.saveIntake`` — validate the form document and store a new version.

The document is the questionnaire's form JSON (rebuilt from the payload)
plus the ruleset's form ``meta``.  ``case_id`` defaults to the
conversation id.
"""

from __future__ import annotations

import logging
from typing import Any

from intake_rulesets.intake.service import SavedIntake
from intake_rulesets.tools.builtin import BuiltinDeps
from intake_rulesets.tools.builtin.questionnaire import state_from_payload
from intake_rulesets.tools.result import VALIDATION_FAILED, ToolContext, ToolResult

logger = logging.getLogger(__name__)

INTAKE_STORAGE_UNAVAILABLE = "INTAKE_STORAGE_UNAVAILABLE"
SOURCE = "conversation"


def make_save_intake(deps: BuiltinDeps):
    engine = deps.engine
    service = deps.intake_service
    session_factory = deps.session_factory

    async def save_intake(payload: dict[str, Any], context: ToolContext) -> ToolResult:
        if service is None or session_factory is None:
            return ToolResult.fail("Intake storage is not configured", INTAKE_STORAGE_UNAVAILABLE)

        state = state_from_payload(engine, payload)
        document = engine.build_intake_document(state, payload.get("intake_meta"))
        case_id = str(payload.get("case_id") or context.conversation_id)

        async with session_factory() as db:
            result = await service.save_intake(
                db,
                case_id,
                document,
                source=SOURCE,
                created_by=payload.get("created_by"),
            )
            if isinstance(result, SavedIntake):
                await db.commit()

        if not isinstance(result, SavedIntake):
            return ToolResult.fail(
                result.error,
                VALIDATION_FAILED,
                data={
                    "schema_id": result.schema_id,
                    "details": [d.model_dump() for d in result.details],
                },
            )

        logger.info(
            "Conversation %s saved intake %s (v%d)",
            context.conversation_id, result.intake_id, result.version,
        )
        return ToolResult.ok(
            data=result.model_dump(),
            save_results={
                "intake_id": result.intake_id,
                "intake_schema_id": result.schema_id,
                "intake_version": result.version,
            },
        )

    return save_intake
