"""State and step models returned by the questionnaire engine and router.

  - QuestionnaireState: accumulated vars + form document + progress
  - StageProgress: answered / total customer questions per stage
  - NextQuestion: public view of the question to ask next
  - AnswerOutcome: result of committing (or failing to commit) an answer
  - RouteDecision: which process / flow runs next
  - HandoffSignal / PendingAttachment: auxiliary engine outputs

``QuestionnaireState`` is treated as a value: engine operations return a
new state and never mutate the one passed in.
"""

from __future__ import annotations

from typing import Any, List, Literal, Optional, Set

from pydantic import BaseModel, Field


class StageProgress(BaseModel):
    answered: int = 0
    total: int = 0

    @property
    def complete(self) -> bool:
        return self.answered >= self.total


class QuestionnaireState(BaseModel):
    """Accumulated answers for one conversation.

    ``vars`` is flat (keyed by ``field_key_en`` plus derived/computed keys)
    and is what conditions read.  ``form_json`` is the nested document built
    from ``json_path`` writes.  ``defaulted_keys`` are vars that hold an
    engine default rather than a real answer — those questions are still
    asked.
    """

    vars: dict[str, Any] = Field(default_factory=dict)
    form_json: dict[str, Any] = Field(default_factory=dict)
    answered_question_ids: Set[str] = Field(default_factory=set)
    defaulted_keys: Set[str] = Field(default_factory=set)
    enabled_modules: Set[str] = Field(default_factory=set)
    stage_progress: dict[str, StageProgress] = Field(default_factory=dict)


class NextQuestion(BaseModel):
    """The next question to present, with its prompt rendered."""

    q_id: str
    stage_key: str
    stage_title_he: str = ""
    prompt_he: str
    field_key_en: str
    data_type: str
    input_type: Optional[str] = None
    options: List[str] = Field(default_factory=list)
    constraints: Optional[str] = None
    json_path: str


class AnswerOutcome(BaseModel):
    """Result of ``parse_and_apply_answer``.

    On failure ``state`` is the unchanged input state and ``reason`` /
    ``message`` tell the caller how to re-prompt.
    """

    ok: bool
    q_id: str
    value: Any = None
    reason: Optional[str] = None
    message: Optional[str] = None
    derived_updates: dict[str, Any] = Field(default_factory=dict)
    state: QuestionnaireState


class RouteDecision(BaseModel):
    """Routing decision produced by :class:`~intake_rulesets.router.FlowRouter`."""

    target_process_key: Optional[str] = None
    target_flow_slug: str
    flow_complete: bool = False
    reason: Literal["welcome", "ask_if", "fallback", "complete"] = "ask_if"

    def as_tool_data(self) -> dict[str, Any]:
        """Shape consumed by flow orchestration (``router_next_slug`` etc.)."""
        data: dict[str, Any] = {
            "router_next_slug": self.target_flow_slug,
            "flow_complete": self.flow_complete,
        }
        if self.target_process_key is not None:
            data["router_process_key"] = self.target_process_key
            data["targetFlowSlug"] = self.target_flow_slug
        return data


class HandoffSignal(BaseModel):
    trigger_key: str
    reason_he: str = ""
    action: str


class PendingAttachment(BaseModel):
    q_id: str = ""
    field_key_en: str
    title_he: str = ""
    json_path: str
    notes: Optional[str] = None
