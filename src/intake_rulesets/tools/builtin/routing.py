"""Routing tools: ``insurance.router.next`` and ``insurance.markProcessComplete``.

Both read the completed-process list from the payload
(``completed_processes``, a list or a comma-separated string) and evaluate
conditions against the questionnaire snapshot rebuilt from the payload, so
derived and computed variables are visible to ``ask_if``.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from intake_rulesets.tools.builtin import BuiltinDeps
from intake_rulesets.tools.builtin.questionnaire import state_from_payload
from intake_rulesets.tools.result import ToolContext, ToolResult

logger = logging.getLogger(__name__)

COMPLETED_KEY = "completed_processes"

NO_PROCESS_KEY = "NO_PROCESS_KEY"
UNKNOWN_PROCESS = "UNKNOWN_PROCESS"
PROCESS_INCOMPLETE = "PROCESS_INCOMPLETE"


def completed_from_payload(payload: Mapping[str, Any]) -> list[str]:
    raw = payload.get(COMPLETED_KEY)
    if raw is None:
        return []
    if isinstance(raw, str):
        items = raw.split(",")
    elif isinstance(raw, (list, tuple)):
        items = raw
    else:
        return []
    return [s for s in (str(i).strip() for i in items) if s]


def _process_key_from_payload(payload: Mapping[str, Any]) -> str | None:
    for key in ("process_key", "router_process_key"):
        value = str(payload.get(key) or "").strip()
        if value:
            return value
    slug = str(payload.get("current_flow_slug") or "").strip()
    if slug.startswith("flow_"):
        return slug[len("flow_"):]
    return None


def make_router_next(deps: BuiltinDeps):
    engine = deps.engine
    router = deps.router

    async def router_next(payload: dict[str, Any], context: ToolContext) -> ToolResult:
        state = state_from_payload(engine, payload)
        completed = completed_from_payload(payload)
        decision = router.next(completed, state.vars)
        logger.info(
            "Conversation %s routed to %s (%s)",
            context.conversation_id, decision.target_flow_slug, decision.reason,
        )
        return ToolResult.ok(
            data={**decision.as_tool_data(), "reason": decision.reason},
            save_results={
                "router_next_slug": decision.target_flow_slug,
                "router_process_key": decision.target_process_key,
                "flow_complete": decision.flow_complete,
            },
        )

    return router_next


def make_mark_complete(deps: BuiltinDeps):
    engine = deps.engine
    router = deps.router

    async def mark_process_complete(payload: dict[str, Any], context: ToolContext) -> ToolResult:
        process_key = _process_key_from_payload(payload)
        if not process_key:
            return ToolResult.fail("Missing process_key", NO_PROCESS_KEY)
        if router.process(process_key) is None:
            return ToolResult.fail(f"Unknown process: {process_key}", UNKNOWN_PROCESS)

        state = state_from_payload(engine, payload)
        # A default is not an answer
        answered = {k: v for k, v in state.vars.items() if k not in state.defaulted_keys}
        missing = router.missing_required(process_key, answered)
        if missing:
            logger.info(
                "Conversation %s: %s not complete, missing %s",
                context.conversation_id, process_key, missing,
            )
            return ToolResult.fail(
                f"Process {process_key} has unanswered required questions",
                PROCESS_INCOMPLETE,
                data={"process_key": process_key, "missing": missing},
            )

        completed = router.mark_complete(completed_from_payload(payload), process_key)
        decision = router.next(completed, state.vars)
        logger.info(
            "Conversation %s completed %s; next %s",
            context.conversation_id, process_key, decision.target_flow_slug,
        )
        return ToolResult.ok(
            data={
                "process_key": process_key,
                "completed_processes": list(completed),
                **decision.as_tool_data(),
            },
            save_results={
                COMPLETED_KEY: list(completed),
                "router_next_slug": decision.target_flow_slug,
                "router_process_key": decision.target_process_key,
                "flow_complete": decision.flow_complete,
            },
        )

    return mark_process_complete
