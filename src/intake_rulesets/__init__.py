"""intake_rulesets — Rule-based SDK for conversational SMB insurance intake.

Public API:
    ConditionEvaluator  — parses and evaluates ``ask_if`` / ``required_if`` conditions
    AnswerParser        — normalises free-text replies (Hebrew / English)
    QuestionnaireEngine — state machine over the assembled questionnaire
    FlowRouter          — picks the next process from completed keys and vars
    RulesetStore        — loads the manifest and process files from ``v1/``
    IntakePipeline      — one conversational turn: answer → route → tools
    PromptManager       — Jinja2 renderer for customer-facing prompts

Tools:
    ToolRegistry        — built-in loaders and dynamic tools by name
    ToolExecutor        — runs a tool under a timeout, always returns a ToolResult
    ToolResult          — success/error envelope with ``save_results``

Intake documents:
    IntakeValidator     — validates a form document against its registered schema
    SchemaRegistry      — schema id → compiled JSON Schema validator
    IntakeService       — validate + store as a new version
"""

from intake_rulesets.answers import AnswerParser, BooleanPolicy, ParseFailure, ParseSuccess
from intake_rulesets.config import EngineSettings, configure_logging, load_settings
from intake_rulesets.errors import (
    ConditionSyntaxError,
    IntakeConfigError,
    SchemaRegistryError,
    ToolRegistrationError,
    UnknownDataTypeError,
)
from intake_rulesets.evaluator import ConditionEvaluator
from intake_rulesets.intake import (
    IntakeService,
    IntakeValidationFailure,
    IntakeValidationSuccess,
    IntakeValidator,
    SchemaCache,
    SchemaRegistry,
    derive_schema_id,
)
from intake_rulesets.models import (
    AnswerOutcome,
    NextQuestion,
    QuestionnaireState,
    RouteDecision,
)
from intake_rulesets.pipeline import IntakePipeline, TurnResult
from intake_rulesets.prompt import PromptManager
from intake_rulesets.questionnaire import QuestionnaireEngine
from intake_rulesets.router import FlowRouter
from intake_rulesets.ruleset import RulesetStore
from intake_rulesets.tools import ToolContext, ToolExecutor, ToolRegistry, ToolResult

__all__ = [
    # Core
    "AnswerParser",
    "BooleanPolicy",
    "ConditionEvaluator",
    "FlowRouter",
    "IntakePipeline",
    "PromptManager",
    "QuestionnaireEngine",
    "RulesetStore",
    "TurnResult",
    # Settings
    "EngineSettings",
    "configure_logging",
    "load_settings",
    # Results / state
    "AnswerOutcome",
    "NextQuestion",
    "ParseFailure",
    "ParseSuccess",
    "QuestionnaireState",
    "RouteDecision",
    # Tools
    "ToolContext",
    "ToolExecutor",
    "ToolRegistry",
    "ToolResult",
    # Intake
    "IntakeService",
    "IntakeValidationFailure",
    "IntakeValidationSuccess",
    "IntakeValidator",
    "SchemaCache",
    "SchemaRegistry",
    "derive_schema_id",
    # Errors
    "ConditionSyntaxError",
    "IntakeConfigError",
    "SchemaRegistryError",
    "ToolRegistrationError",
    "UnknownDataTypeError",
]
