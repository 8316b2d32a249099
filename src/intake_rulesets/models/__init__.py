"""Pydantic models for ruleset documents, engine state and step results."""

from intake_rulesets.models.manifest import (
    Manifest,
    ProcessDef,
    RouterSettings,
    RuntimeBlock,
    ToolInvocation,
)
from intake_rulesets.models.questionnaire import (
    AttachmentItem,
    DataType,
    DerivedRule,
    EngineContract,
    HandoffTrigger,
    ModuleDef,
    NumericRule,
    ProductionValidation,
    Question,
    Questionnaire,
    Stage,
    load_question,
)
from intake_rulesets.models.state import (
    AnswerOutcome,
    HandoffSignal,
    NextQuestion,
    PendingAttachment,
    QuestionnaireState,
    RouteDecision,
    StageProgress,
)

__all__ = [
    # Manifest
    "Manifest",
    "ProcessDef",
    "RouterSettings",
    "RuntimeBlock",
    "ToolInvocation",
    # Questionnaire
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
    # State
    "AnswerOutcome",
    "HandoffSignal",
    "NextQuestion",
    "PendingAttachment",
    "QuestionnaireState",
    "RouteDecision",
    "StageProgress",
]
