"""QuestionnaireEngine — state machine over an assembled questionnaire.

The engine interprets a :class:`~intake_rulesets.models.Questionnaire`:
it decides which question comes next, commits parsed answers into both the
flat ``vars`` snapshot (what conditions read) and the nested ``form_json``
document (what gets validated and persisted), and keeps derived variables
in sync.

State handling:

  - Every operation takes a :class:`QuestionnaireState` and returns a new
    one; the input is never mutated.  A failed parse therefore leaves the
    caller's state exactly as it was.
  - After each commit the engine runs the derived rules once, in
    declaration order, then recomputes the computed variables
    (``property_sum``, ``bi_sum``, ``policy_end_date``), the enabled
    coverage modules and per-stage progress.  Derived rules are pure
    functions of the snapshot, so applying the same answer twice yields the
    same state as applying it once.
  - Defaulted variables (engine-contract defaults) are tracked separately:
    a default gives conditions a value to read, but the question owning
    that field is still asked.
"""

from __future__ import annotations

import copy
import json
import logging
import math
import re
from typing import Any, Iterable, Mapping, Optional

from intake_rulesets.answers import AnswerParser, ParseFailure
from intake_rulesets.constants import (
    BI_DAILY_COMP_FIELD,
    BI_DAILY_DAYS,
    BI_GROSS_PROFIT_FIELD,
    POLICY_END_DATE_FIELD,
    PROPERTY_SUM_FIELDS,
    STAGE_SUMMARY_MAX_ITEMS,
    START_DATE_FIELDS,
    UNGATED_STAGE_KEYS,
)
from intake_rulesets.dates import derive_policy_end_date
from intake_rulesets.evaluator import ConditionEvaluator, is_present
from intake_rulesets.jsonpath import get_by_path, set_by_path
from intake_rulesets.models import (
    AnswerOutcome,
    HandoffSignal,
    NextQuestion,
    PendingAttachment,
    Question,
    Questionnaire,
    QuestionnaireState,
    Stage,
    StageProgress,
)
from intake_rulesets.prompt import PromptManager

logger = logging.getLogger(__name__)

# Marker value for derived rules that store their own guard result
CONDITION_VALUE = "$condition"


def _as_number(value: Any) -> float:
    """Coerce an answer to a number for computed sums (0 when not numeric)."""
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else 0.0
    try:
        n = float(str(value or "").replace("₪", "").replace(",", "").strip() or 0)
    except ValueError:
        return 0.0
    return n if math.isfinite(n) else 0.0


def _clean_number(n: float) -> int | float:
    return int(n) if float(n).is_integer() else n


def format_value_he(value: Any) -> str:
    """Render an answer for a Hebrew summary line."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "כן" if value else "לא"
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return str(value)
        return f"{_clean_number(value):,}"
    if isinstance(value, (list, tuple)):
        return ", ".join(s for s in (format_value_he(v) for v in value) if s)
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def short_label_he(question: Question) -> str:
    raw = str(question.question_he or question.prompt_he or question.field_key_en).strip()
    label = re.sub(r"\s+", " ", raw)
    label = re.sub(r"[?？]\s*$", "", label)
    return label[:80]


class QuestionnaireEngine:
    """Drives one questionnaire; holds no per-conversation state.

    Args:
        questionnaire: the assembled questionnaire document
        evaluator: condition evaluator (shares its parse cache)
        parser: answer parser (timezone, boolean policy)
        prompts: renderer for question texts
    """

    def __init__(
        self,
        questionnaire: Questionnaire,
        *,
        evaluator: ConditionEvaluator | None = None,
        parser: AnswerParser | None = None,
        prompts: PromptManager | None = None,
    ) -> None:
        self._q = questionnaire
        self._evaluator = evaluator or ConditionEvaluator()
        self._parser = parser or AnswerParser()
        self._prompts = prompts or PromptManager()

        self._questions: dict[str, Question] = {q.q_id: q for q in questionnaire.questions}
        self._by_field: dict[str, Question] = {}
        for q in questionnaire.questions:
            self._by_field.setdefault(q.field_key_en, q)
        self._stages: list[Stage] = sorted(questionnaire.stages, key=lambda s: s.stage_key)
        self._module_keys = {m.module_key for m in questionnaire.modules_catalog}

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    @property
    def questionnaire(self) -> Questionnaire:
        return self._q

    @property
    def parser(self) -> AnswerParser:
        return self._parser

    @property
    def prompts(self) -> PromptManager:
        return self._prompts

    def question(self, q_id: str) -> Question | None:
        return self._questions.get(q_id)

    def _holds(self, expression: str | None, state: QuestionnaireState, label: str) -> bool:
        return self._evaluator.evaluate(expression, state.vars, label=label)

    # ------------------------------------------------------------------
    # State construction
    # ------------------------------------------------------------------

    def build_initial_state(
        self,
        seed_vars: Mapping[str, Any] | None = None,
        defaults: Mapping[str, Any] | None = None,
        form_json: Mapping[str, Any] | None = None,
    ) -> QuestionnaireState:
        """Establish the starting snapshot.

        Previously persisted ``seed_vars`` win; contract defaults (and any
        caller-supplied ``defaults`` on top of them) only fill keys that are
        still missing, and are tracked in ``defaulted_keys``.
        """
        state = QuestionnaireState(
            vars=dict(seed_vars or {}),
            form_json=copy.deepcopy(dict(form_json or {})),
        )
        merged = {**self._q.engine_contract.defaults, **(defaults or {})}
        for key, value in merged.items():
            if key not in state.vars:
                state.vars[key] = value
                state.defaulted_keys.add(key)

        # Seeded answers count as answered and land in the form document
        for key, value in state.vars.items():
            if key in state.defaulted_keys or not is_present(value):
                continue
            q = self._by_field.get(key)
            if q is None:
                continue
            state.answered_question_ids.add(q.q_id)
            if get_by_path(state.form_json, q.json_path) is None:
                set_by_path(state.form_json, q.json_path, value)

        self._apply_derived(state)
        self._refresh(state)
        return state

    # ------------------------------------------------------------------
    # Answer commit
    # ------------------------------------------------------------------

    def parse_and_apply_answer(
        self,
        state: QuestionnaireState,
        question: Question | str,
        raw_text: str,
    ) -> AnswerOutcome:
        """Parse *raw_text* for *question* and commit it on success.

        The committed value always comes from the question's declared
        ``data_type``, so a key never changes type silently.  On failure the
        returned outcome carries the unchanged input *state*.

        Raises:
            KeyError: if *question* is an unknown q_id.
        """
        if isinstance(question, str):
            q = self._questions.get(question)
            if q is None:
                raise KeyError(f"Unknown question: {question}")
            question = q

        result = self._parser.parse(
            raw_text,
            question.data_type,
            question.options,
            constraints=question.constraints,
            field_key=question.field_key_en,
        )
        if isinstance(result, ParseFailure):
            logger.debug(
                "Answer for %s rejected (%s): %r", question.q_id, result.reason, raw_text
            )
            return AnswerOutcome(
                ok=False,
                q_id=question.q_id,
                reason=result.reason,
                message=result.message,
                state=state,
            )

        new_state = state.model_copy(deep=True)
        self._commit(new_state, question, result.value)
        updates = self._apply_derived(new_state)
        self._refresh(new_state)
        return AnswerOutcome(
            ok=True,
            q_id=question.q_id,
            value=result.value,
            derived_updates=updates,
            state=new_state,
        )

    def merge_external(
        self, state: QuestionnaireState, values: Mapping[str, Any]
    ) -> QuestionnaireState:
        """Merge values produced outside the question loop (tool results).

        Keys that belong to a question are written at its ``json_path`` and
        mark it answered; other keys only land in ``vars``.  ``None`` values
        are ignored.
        """
        new_state = state.model_copy(deep=True)
        for key, value in values.items():
            if value is None:
                continue
            q = self._by_field.get(key)
            if q is not None:
                self._commit(new_state, q, value)
            else:
                new_state.vars[key] = value
                new_state.defaulted_keys.discard(key)
        self._apply_derived(new_state)
        self._refresh(new_state)
        return new_state

    def _commit(self, state: QuestionnaireState, question: Question, value: Any) -> None:
        state.vars[question.field_key_en] = value
        state.defaulted_keys.discard(question.field_key_en)
        set_by_path(state.form_json, question.json_path, value)
        state.answered_question_ids.add(question.q_id)

    # ------------------------------------------------------------------
    # Derived and computed variables
    # ------------------------------------------------------------------

    def apply_derived_rules(self, state: QuestionnaireState) -> tuple[QuestionnaireState, dict[str, Any]]:
        """Run the derived rules once over *state*; return ``(new_state, updates)``."""
        new_state = state.model_copy(deep=True)
        updates = self._apply_derived(new_state)
        self._refresh(new_state)
        return new_state, updates

    def _apply_derived(self, state: QuestionnaireState) -> dict[str, Any]:
        # Single ordered pass: later rules see earlier rules' assignments
        updates: dict[str, Any] = {}
        for i, rule in enumerate(self._q.engine_contract.derived_rules):
            holds = self._holds(rule.set_when, state, f"derived_rules[{i}]")
            if rule.value == CONDITION_VALUE:
                value = holds
            elif holds:
                value = rule.value
            else:
                continue

            state.vars[rule.target_field] = value
            state.defaulted_keys.discard(rule.target_field)
            updates[rule.target_field] = value

            target = self._questions.get(rule.maps_to_q_id or "") or self._by_field.get(
                rule.target_field
            )
            if target is not None:
                set_by_path(state.form_json, target.json_path, value)
        return updates

    def _refresh(self, state: QuestionnaireState) -> None:
        self._compute_vars(state)
        self._compute_modules(state)
        self._compute_progress(state)

    def _compute_vars(self, state: QuestionnaireState) -> None:
        v = state.vars
        property_sum = 0.0
        for alternates in PROPERTY_SUM_FIELDS:
            for key in alternates:
                n = _as_number(v.get(key))
                if n:
                    property_sum += n
                    break
        v["property_sum"] = _clean_number(property_sum)

        gross = _as_number(v.get(BI_GROSS_PROFIT_FIELD))
        daily = _as_number(v.get(BI_DAILY_COMP_FIELD))
        v["bi_sum"] = _clean_number(gross or daily * BI_DAILY_DAYS)

        end_q = self._by_field.get(POLICY_END_DATE_FIELD)
        end_answered = end_q is not None and end_q.q_id in state.answered_question_ids
        if not end_answered:
            for field in START_DATE_FIELDS:
                end = derive_policy_end_date(v.get(field)) if is_present(v.get(field)) else None
                if end is not None:
                    v[POLICY_END_DATE_FIELD] = end
                    if end_q is not None:
                        set_by_path(state.form_json, end_q.json_path, end)
                    break

    def _compute_modules(self, state: QuestionnaireState) -> None:
        state.enabled_modules = {
            m.module_key
            for m in self._q.modules_catalog
            if self._holds(m.enable_if, state, f"module {m.module_key}")
        }

    def _compute_progress(self, state: QuestionnaireState) -> None:
        progress: dict[str, StageProgress] = {}
        for stage in self._stages:
            answered = total = 0
            for q in self._stage_questions(stage):
                if not q.is_customer_facing or q.is_attachment:
                    continue
                total += 1
                if self._is_answered(state, q):
                    answered += 1
            progress[stage.stage_key] = StageProgress(answered=answered, total=total)
        state.stage_progress = progress

    # ------------------------------------------------------------------
    # Next question
    # ------------------------------------------------------------------

    def _stage_questions(self, stage: Stage) -> Iterable[Question]:
        for qid in stage.question_ids:
            q = self._questions.get(qid)
            if q is not None:
                yield q

    def _is_answered(self, state: QuestionnaireState, q: Question) -> bool:
        if q.field_key_en in state.defaulted_keys:
            return False
        return is_present(state.vars.get(q.field_key_en))

    def _module_blocks(self, state: QuestionnaireState, q: Question, stage_key: str) -> bool:
        if stage_key in UNGATED_STAGE_KEYS or not q.module_key:
            return False
        # Only modules declared in the catalog gate anything
        if q.module_key not in self._module_keys:
            return False
        return q.module_key not in state.enabled_modules

    def get_next_question(
        self,
        state: QuestionnaireState,
        stage_keys: Optional[Iterable[str]] = None,
    ) -> NextQuestion | None:
        """Return the next question to ask, or ``None`` when nothing is pending.

        Stages are visited in key order; with *stage_keys* the search is
        restricted to those stages (the router's current process).
        """
        allowed = set(stage_keys) if stage_keys is not None else None
        for stage in self._stages:
            if allowed is not None and stage.stage_key not in allowed:
                continue
            if not self._holds(stage.ask_if, state, f"stage {stage.stage_key} ask_if"):
                continue

            for q in self._stage_questions(stage):
                if not q.is_customer_facing:
                    continue
                stage_key = q.stage_key or stage.stage_key
                if self._module_blocks(state, q, stage_key):
                    continue
                # Uploads are collected through the attachments checklist
                if q.is_attachment:
                    continue
                if self._is_answered(state, q):
                    continue
                if not self._holds(q.ask_if, state, f"question {q.q_id} ask_if"):
                    continue
                if not self._holds(q.required_if, state, f"question {q.q_id} required_if"):
                    continue

                return self.describe_question(q, state)
        return None

    def describe_question(self, question: Question, state: QuestionnaireState) -> NextQuestion:
        """Public view of *question* with its prompt rendered against *state*."""
        stage = self._q.stage(question.stage_key)
        return NextQuestion(
            q_id=question.q_id,
            stage_key=question.stage_key,
            stage_title_he=stage.title_he if stage is not None else "",
            prompt_he=self._prompts.render_text(
                question.prompt_he or question.question_he or question.field_key_en,
                state.vars,
            ),
            field_key_en=question.field_key_en,
            data_type=question.data_type,
            input_type=question.input_type,
            options=question.options,
            constraints=question.constraints,
            json_path=question.json_path,
        )

    # ------------------------------------------------------------------
    # Summaries, attachments, handoff, validation
    # ------------------------------------------------------------------

    def build_stage_summary(
        self,
        state: QuestionnaireState,
        stage_key: str,
        max_items: int = STAGE_SUMMARY_MAX_ITEMS,
    ) -> str:
        """One-line Hebrew recap of a stage: ``label: value; ...; ועוד N פרטים``."""
        stage = self._q.stage(stage_key)
        if stage is None:
            return ""

        pairs: list[str] = []
        answered = 0
        for q in self._stage_questions(stage):
            if not q.is_customer_facing or (q.input_type or "").lower() == "file":
                continue
            value = get_by_path(state.form_json, q.json_path)
            if not is_present(value):
                continue
            answered += 1
            if len(pairs) < max_items:
                pairs.append(f"{short_label_he(q)}: {format_value_he(value)}")

        if not pairs:
            return ""
        more = answered - len(pairs)
        if more > 0:
            return f"{'; '.join(pairs)}; ועוד {more} פרטים"
        return "; ".join(pairs)

    def compute_pending_attachments(self, state: QuestionnaireState) -> list[PendingAttachment]:
        """Checklist items whose ``when`` holds and that have no upload yet."""
        pending: list[PendingAttachment] = []
        for item in self._q.attachments_checklist:
            if not self._holds(item.when, state, f"attachment {item.field_key_en}"):
                continue
            if is_present(get_by_path(state.form_json, item.json_path)):
                continue
            pending.append(
                PendingAttachment(
                    q_id=item.q_id,
                    field_key_en=item.field_key_en,
                    title_he=item.title_he,
                    json_path=item.json_path,
                    notes=item.notes,
                )
            )
        return pending

    def evaluate_handoff_triggers(self, state: QuestionnaireState) -> list[HandoffSignal]:
        """Triggers whose condition holds on the current snapshot."""
        return [
            HandoffSignal(trigger_key=t.trigger_key, reason_he=t.reason_he, action=t.action)
            for t in self._q.handoff_triggers
            if t.when and self._holds(t.when, state, f"handoff {t.trigger_key}")
        ]

    def validate_production_rules(self, state: QuestionnaireState) -> str | None:
        """Return the first violated rule's ``error_he``, or ``None``."""
        for rule in self._q.production_validations:
            if not self._holds(rule.when, state, f"validation {rule.name}"):
                continue
            value = state.vars.get(rule.field_key_en)
            if value is None or value == "" or isinstance(value, bool):
                continue
            if isinstance(value, (int, float)):
                n = float(value)
            else:
                try:
                    n = float(str(value).replace("₪", "").replace(",", "").strip())
                except ValueError:
                    continue
            if not math.isfinite(n):
                continue
            r = rule.rule
            if r.min is not None and n < r.min:
                return rule.error_he
            if r.max is not None and n > r.max:
                return rule.error_he
            if r.multipleOf:
                ratio = n / r.multipleOf
                if abs(ratio - round(ratio)) > 1e-9:
                    return rule.error_he
        return None

    def build_intake_document(
        self, state: QuestionnaireState, meta: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        """The form document to validate and persist, with its ``meta`` block."""
        document = copy.deepcopy(state.form_json)
        merged_meta = {**(document.get("meta") or {}), **(self._q.meta.get("form") or {})}
        merged_meta.update(meta or {})
        if merged_meta:
            document["meta"] = merged_meta
        return document
