"""Built-in insurance tools.

Each tool module exposes a ``make_*`` factory that closes over the shared
:class:`BuiltinDeps` and returns the async tool callable.  Factories are
registered as lazy loaders, so a tool's dependencies (HTTP client, DB
session factory) are only touched when the tool is first called.

Tool payloads are the conversation's flat variable snapshot; every tool
reports what should be stored back through ``save_results``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

import httpx

from intake_rulesets.config import EngineSettings
from intake_rulesets.intake.service import IntakeService
from intake_rulesets.questionnaire import QuestionnaireEngine
from intake_rulesets.router import FlowRouter
from intake_rulesets.tools.registry import ToolRegistry

TOOL_ROUTER_NEXT = "insurance.router.next"
TOOL_MARK_COMPLETE = "insurance.markProcessComplete"
TOOL_QUESTIONNAIRE_INIT = "insurance.questionnaire.init"
TOOL_QUESTIONNAIRE_ANSWER = "insurance.questionnaire.answer"
TOOL_RESOLVE_SEGMENT = "insurance.resolveSegment"
TOOL_COMPANY_LOOKUP = "insurance.companyLookup"
TOOL_SAVE_INTAKE = "insurance.saveIntake"


@dataclass
class BuiltinDeps:
    """Everything the built-in tools need, built once per process.

    ``session_factory`` is an ``async_sessionmaker`` (or any zero-argument
    callable returning an async session context manager);
    ``http_transport`` replaces the network transport of the company
    registry client, mainly for tests; ``clock`` pins "now" for the
    registry's annual report recency check.
    """

    engine: QuestionnaireEngine
    router: FlowRouter
    settings: EngineSettings
    intake_service: Optional[IntakeService] = None
    session_factory: Optional[Callable[[], Any]] = None
    http_transport: Optional[httpx.AsyncBaseTransport] = None
    clock: Optional[Callable[[], datetime]] = None


def register_builtin_tools(registry: ToolRegistry, deps: BuiltinDeps) -> None:
    """Register every built-in tool on *registry* as a lazy loader."""
    from intake_rulesets.tools.builtin import company, intake, questionnaire, routing, segment

    registry.register_builtin(TOOL_ROUTER_NEXT, lambda: routing.make_router_next(deps))
    registry.register_builtin(TOOL_MARK_COMPLETE, lambda: routing.make_mark_complete(deps))
    registry.register_builtin(
        TOOL_QUESTIONNAIRE_INIT, lambda: questionnaire.make_questionnaire_init(deps)
    )
    registry.register_builtin(
        TOOL_QUESTIONNAIRE_ANSWER, lambda: questionnaire.make_questionnaire_answer(deps)
    )
    registry.register_builtin(TOOL_RESOLVE_SEGMENT, lambda: segment.make_resolve_segment(deps))
    registry.register_builtin(TOOL_COMPANY_LOOKUP, lambda: company.make_company_lookup(deps))
    registry.register_builtin(TOOL_SAVE_INTAKE, lambda: intake.make_save_intake(deps))


__all__ = [
    "BuiltinDeps",
    "TOOL_COMPANY_LOOKUP",
    "TOOL_MARK_COMPLETE",
    "TOOL_QUESTIONNAIRE_ANSWER",
    "TOOL_QUESTIONNAIRE_INIT",
    "TOOL_RESOLVE_SEGMENT",
    "TOOL_ROUTER_NEXT",
    "TOOL_SAVE_INTAKE",
    "register_builtin_tools",
]
