"""Questionnaire tools: ``insurance.questionnaire.init`` / ``.answer``.

The questionnaire state is rebuilt from the payload on every call: the
flat variables seed ``vars`` and ``questionnaire_form_json`` carries the
nested form document.  Keys starting with ``questionnaire_`` are tool
bookkeeping and never become variables.

When the payload carries ``router_process_key`` the search for the next
question is limited to that process's stage.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from intake_rulesets.models import NextQuestion, QuestionnaireState
from intake_rulesets.questionnaire import QuestionnaireEngine
from intake_rulesets.tools.builtin import BuiltinDeps
from intake_rulesets.tools.result import VALIDATION_FAILED, ToolContext, ToolResult

logger = logging.getLogger(__name__)

QUESTIONNAIRE_PREFIX = "questionnaire_"
FORM_JSON_KEY = "questionnaire_form_json"
CURRENT_Q_KEY = "questionnaire_current_q_id"
CURRENT_STAGE_KEY = "questionnaire_current_stage"
COMPLETE_KEY = "questionnaire_complete"
QUESTION_ID_KEY = "questionnaire_question_id"
ANSWER_KEY = "questionnaire_answer"

NO_CURRENT_QUESTION = "NO_CURRENT_QUESTION"
UNKNOWN_QUESTION = "UNKNOWN_QUESTION"


# ----------------------------------------------------------------------
# Payload <-> state
# ----------------------------------------------------------------------

def state_from_payload(engine: QuestionnaireEngine, payload: Mapping[str, Any]) -> QuestionnaireState:
    """Rebuild the questionnaire snapshot from a tool payload."""
    seed = {k: v for k, v in payload.items() if not str(k).startswith(QUESTIONNAIRE_PREFIX)}
    form_json = payload.get(FORM_JSON_KEY)
    return engine.build_initial_state(
        seed, form_json=form_json if isinstance(form_json, dict) else None
    )


def changed_vars(payload: Mapping[str, Any], state: QuestionnaireState) -> dict[str, Any]:
    """Variables whose value differs from the payload (defaults excluded)."""
    return {
        k: v
        for k, v in state.vars.items()
        if k not in state.defaulted_keys and (k not in payload or payload[k] != v)
    }


def cursor_fields(next_question: NextQuestion | None) -> dict[str, Any]:
    return {
        CURRENT_Q_KEY: next_question.q_id if next_question else None,
        CURRENT_STAGE_KEY: next_question.stage_key if next_question else None,
        COMPLETE_KEY: next_question is None,
    }


def _scope(payload: Mapping[str, Any]) -> list[str] | None:
    key = str(payload.get("router_process_key") or "").strip()
    return [key] if key else None


def _stage_intro(engine: QuestionnaireEngine, stage_key: str, state: QuestionnaireState) -> str | None:
    stage = engine.questionnaire.stage(stage_key)
    if stage is None or not stage.intro_he:
        return None
    return engine.prompts.render_text(stage.intro_he, state.vars)


def _progress(state: QuestionnaireState) -> dict[str, Any]:
    return {k: p.model_dump() for k, p in state.stage_progress.items()}


# ----------------------------------------------------------------------
# Tools
# ----------------------------------------------------------------------

def make_questionnaire_init(deps: BuiltinDeps):
    engine = deps.engine

    async def questionnaire_init(payload: dict[str, Any], context: ToolContext) -> ToolResult:
        state = state_from_payload(engine, payload)
        nq = engine.get_next_question(state, _scope(payload))
        if nq is not None:
            prompt = engine.prompts.render_question(
                nq, intro=_stage_intro(engine, nq.stage_key, state)
            )
        else:
            prompt = engine.prompts.render_handoff(
                engine.evaluate_handoff_triggers(state),
                engine.compute_pending_attachments(state),
            )
        logger.debug(
            "Conversation %s questionnaire init: next=%s",
            context.conversation_id, nq.q_id if nq else None,
        )
        return ToolResult.ok(
            data={
                "question": nq.model_dump() if nq else None,
                "prompt": prompt,
                "done": nq is None,
                "progress": _progress(state),
                "enabled_modules": sorted(state.enabled_modules),
            },
            save_results={
                **changed_vars(payload, state),
                FORM_JSON_KEY: state.form_json,
                **cursor_fields(nq),
            },
        )

    return questionnaire_init


def make_questionnaire_answer(deps: BuiltinDeps):
    engine = deps.engine
    prompts = engine.prompts

    async def questionnaire_answer(payload: dict[str, Any], context: ToolContext) -> ToolResult:
        q_id = str(payload.get(QUESTION_ID_KEY) or payload.get(CURRENT_Q_KEY) or "").strip()
        if not q_id:
            return ToolResult.fail("No current question to answer", NO_CURRENT_QUESTION)
        question = engine.question(q_id)
        if question is None:
            return ToolResult.fail(f"Unknown question: {q_id}", UNKNOWN_QUESTION)

        raw_text = str(payload.get(ANSWER_KEY) or "")
        state = state_from_payload(engine, payload)
        outcome = engine.parse_and_apply_answer(state, question, raw_text)

        if not outcome.ok:
            # Re-prompt the same question; nothing is stored
            reprompt = prompts.render_question(
                engine.describe_question(question, state), error=outcome.message
            )
            return ToolResult.ok(
                data={
                    "accepted": False,
                    "q_id": q_id,
                    "reason": outcome.reason,
                    "message": outcome.message,
                    "prompt": reprompt,
                },
                save_results={CURRENT_Q_KEY: q_id},
            )

        new_state = outcome.state
        violation = engine.validate_production_rules(new_state)
        if violation:
            logger.info(
                "Conversation %s: answer to %s violates a production rule",
                context.conversation_id, q_id,
            )
            return ToolResult.fail(
                violation,
                VALIDATION_FAILED,
                data={
                    "accepted": False,
                    "q_id": q_id,
                    "prompt": prompts.render_question(
                        engine.describe_question(question, state), error=violation
                    ),
                },
            )

        nq = engine.get_next_question(new_state, _scope(payload))
        stage_changed = nq is None or nq.stage_key != question.stage_key
        summary = engine.build_stage_summary(new_state, question.stage_key) if stage_changed else None
        signals = engine.evaluate_handoff_triggers(new_state)

        if nq is not None:
            intro = _stage_intro(engine, nq.stage_key, new_state) if stage_changed else None
            prompt = prompts.render_question(nq, summary=summary or None, intro=intro)
            pending = []
        else:
            pending = engine.compute_pending_attachments(new_state)
            prompt = prompts.render_handoff(signals, pending)

        save_results = {
            **changed_vars(payload, new_state),
            FORM_JSON_KEY: new_state.form_json,
            **cursor_fields(nq),
        }
        if signals:
            save_results["handoff_required"] = True
            save_results["handoff_reasons"] = [s.trigger_key for s in signals]

        logger.debug(
            "Conversation %s answered %s; next=%s",
            context.conversation_id, q_id, nq.q_id if nq else None,
        )
        return ToolResult.ok(
            data={
                "accepted": True,
                "q_id": q_id,
                "value": outcome.value,
                "derived_updates": outcome.derived_updates,
                "question": nq.model_dump() if nq else None,
                "prompt": prompt,
                "summary": summary or None,
                "done": nq is None,
                "handoff": [s.model_dump() for s in signals],
                "pending_attachments": [a.model_dump() for a in pending],
                "progress": _progress(new_state),
            },
            save_results=save_results,
        )

    return questionnaire_answer
