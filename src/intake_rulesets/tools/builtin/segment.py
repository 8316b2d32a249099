"""``insurance.resolveSegment`` — fill obvious defaults from the business segment."""

from __future__ import annotations

import logging
from typing import Any

from intake_rulesets.evaluator import is_present
from intake_rulesets.segments import infer_segment_defaults
from intake_rulesets.tools.builtin import BuiltinDeps
from intake_rulesets.tools.result import ToolContext, ToolResult

logger = logging.getLogger(__name__)


def make_resolve_segment(deps: BuiltinDeps):
    async def resolve_segment(payload: dict[str, Any], context: ToolContext) -> ToolResult:
        inferred = infer_segment_defaults(payload) or {}
        # Never overwrite what the customer already told us
        fills = {k: v for k, v in inferred.items() if not is_present(payload.get(k))}
        if fills:
            logger.info(
                "Conversation %s: segment filled %s", context.conversation_id, sorted(fills)
            )
        return ToolResult.ok(
            data={"matched": bool(inferred), "filled": sorted(fills)},
            save_results=fills,
        )

    return resolve_segment
