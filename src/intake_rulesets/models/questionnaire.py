"""Questionnaire document models.

These models mirror the process files under ``v1/processes/`` and the
``runtime.engine_contract`` block of the manifest:

  - Question: a single prompt with declared data_type and target json_path
  - Stage: an ordered group of questions (one per manifest process)
  - ModuleDef: a coverage module toggled by ``enable_if``
  - DerivedRule: (set_when, value) assignment applied after every answer
  - EngineContract: global defaults + derived rules
  - ProductionValidation / HandoffTrigger / AttachmentItem: auxiliary checks
  - Questionnaire: the assembled document the state engine interprets

Unknown keys are preserved (``extra="allow"``) — content authors attach
presentation hints the engine does not interpret.
"""

from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from intake_rulesets.constants import DATA_TYPES
from intake_rulesets.errors import UnknownDataTypeError

DataType = Literal["boolean", "number", "string", "date", "enum", "array"]


class Question(BaseModel):
    """A single questionnaire prompt."""

    model_config = ConfigDict(extra="allow")

    q_id: str
    stage_key: str = ""
    audience: str = "customer"
    prompt_he: str = ""
    question_he: Optional[str] = None
    field_key_en: str
    data_type: DataType
    input_type: Optional[str] = None
    options_he: Optional[str | List[str]] = None
    required_mode: Optional[str] = None
    required_if: Optional[str] = None
    ask_if: Optional[str] = None
    constraints: Optional[str] = None
    json_path: str = ""
    module_key: Optional[str] = None
    collection_mode: Optional[str] = None

    @model_validator(mode="after")
    def _default_json_path(self):
        # Questions without an explicit json_path land at the top level
        if not self.json_path:
            self.json_path = self.field_key_en
        return self

    @property
    def options(self) -> list[str]:
        """Recognised option tokens, split from the comma-separated ``options_he``."""
        if not self.options_he:
            return []
        if isinstance(self.options_he, list):
            return [str(o).strip() for o in self.options_he if str(o).strip()]
        return [o.strip() for o in self.options_he.split(",") if o.strip()]

    @property
    def is_customer_facing(self) -> bool:
        return self.audience == "customer"

    @property
    def is_attachment(self) -> bool:
        """File uploads are collected via the attachments checklist, never asked inline."""
        if (self.input_type or "").lower() == "file":
            return True
        return "attachment" in (self.collection_mode or "")

    @property
    def requirement(self) -> str:
        """Normalised requirement: ``required``, ``conditional`` or ``optional``."""
        mode = (self.required_mode or "").strip().lower()
        if mode in ("required", "y", "yes"):
            return "required"
        if mode == "conditional":
            return "conditional"
        return "optional"


def load_question(raw: dict[str, Any]) -> Question:
    """Build a Question, reporting an unsupported data_type as a config error.

    Raises:
        UnknownDataTypeError: if ``data_type`` is not in :data:`DATA_TYPES`.
        pydantic.ValidationError: for any other structural problem.
    """
    data_type = raw.get("data_type")
    if data_type not in DATA_TYPES:
        raise UnknownDataTypeError(str(raw.get("q_id", "?")), data_type)
    return Question.model_validate(raw)


class Stage(BaseModel):
    """An ordered group of questions gated by ``ask_if``."""

    model_config = ConfigDict(extra="allow")

    stage_key: str
    title_he: str = ""
    ask_if: Optional[str] = None
    intro_he: Optional[str] = None
    question_ids: List[str] = Field(default_factory=list)


class ModuleDef(BaseModel):
    """Coverage module enabled when ``enable_if`` holds."""

    module_key: str
    title_he: str = ""
    enable_if: Optional[str] = None
    audience: str = "customer"


class DerivedRule(BaseModel):
    """Assigns ``value`` to ``target_field`` whenever ``set_when`` holds.

    ``value`` may be the string ``"$condition"`` to store the boolean result
    of the guard itself (the rule then fires on every pass).
    """

    target_field: str
    set_when: str
    value: Any = True
    maps_to_q_id: Optional[str] = None


class EngineContract(BaseModel):
    """Global defaults and derived rules from ``runtime.engine_contract``."""

    model_config = ConfigDict(extra="allow")

    condition_dsl: str = "simple"
    defaults: dict[str, Any] = Field(default_factory=dict)
    derived_rules: List[DerivedRule] = Field(default_factory=list)


class NumericRule(BaseModel):
    min: Optional[float] = None
    max: Optional[float] = None
    multipleOf: Optional[float] = None


class ProductionValidation(BaseModel):
    """Business bounds on a numeric field, checked before submission."""

    name: str
    field_key_en: str
    when: Optional[str] = None
    rule: NumericRule
    error_he: str


class HandoffTrigger(BaseModel):
    """Condition under which the case is routed to a human underwriter."""

    trigger_key: str
    when: str
    reason_he: str = ""
    action: str = "route_to_underwriter"


class AttachmentItem(BaseModel):
    """A document the customer must upload when ``when`` holds."""

    q_id: str = ""
    field_key_en: str
    title_he: str = ""
    when: Optional[str] = None
    json_path: str
    notes: Optional[str] = None


class Questionnaire(BaseModel):
    """The assembled questionnaire interpreted by the state engine."""

    meta: dict[str, Any] = Field(default_factory=dict)
    engine_contract: EngineContract = Field(default_factory=EngineContract)
    modules_catalog: List[ModuleDef] = Field(default_factory=list)
    stages: List[Stage] = Field(default_factory=list)
    questions: List[Question] = Field(default_factory=list)
    production_validations: List[ProductionValidation] = Field(default_factory=list)
    handoff_triggers: List[HandoffTrigger] = Field(default_factory=list)
    attachments_checklist: List[AttachmentItem] = Field(default_factory=list)

    def question(self, q_id: str) -> Question | None:
        """Look up a question by id."""
        for q in self.questions:
            if q.q_id == q_id:
                return q
        return None

    def stage(self, stage_key: str) -> Stage | None:
        for s in self.stages:
            if s.stage_key == stage_key:
                return s
        return None


__all__ = [
    "AttachmentItem",
    "DataType",
    "DerivedRule",
    "EngineContract",
    "HandoffTrigger",
    "ModuleDef",
    "NumericRule",
    "ProductionValidation",
    "Question",
    "Questionnaire",
    "Stage",
    "load_question",
]
