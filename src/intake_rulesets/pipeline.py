"""IntakePipeline — one conversational turn from raw answer to next prompt.

Wires the components together in the order a turn needs them:

  1. **Answer** — parse and commit the customer's reply with the
     :class:`QuestionnaireEngine`.  A rejected reply re-prompts the same
     question and nothing else happens.
  2. **Route** — ask the :class:`FlowRouter` for the target process.  A
     process with nothing left to ask in its stage is marked complete and
     routing repeats, so one turn may advance over several processes.
  3. **Tools** — tools attached to a process run when it becomes the
     target (``on: enter``) or when it completes (``on: complete``).
     Successful ``save_results`` are merged into the state before the next
     routing decision.

Tool runs are serialised per conversation with an :class:`asyncio.Lock`;
different conversations proceed concurrently.  The pipeline keeps no
conversation data between turns: callers persist ``state`` and
``completed_processes`` from the returned :class:`TurnResult`.

Usage::

    pipeline = IntakePipeline.from_store(store, settings)

    turn = await pipeline.start("conv-1", seed_vars={"business_name": "..."})
    # turn.prompt → first question text

    turn = await pipeline.submit_answer(
        "conv-1", turn.state, turn.completed_processes,
        turn.next_question.q_id, "כן",
    )
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from typing import Any, Iterable, List, Literal, Mapping, Optional

from pydantic import BaseModel, Field

from intake_db.config import database_configured
from intake_db.engine import IntakeDatabase
from intake_rulesets.answers import AnswerParser, BooleanPolicy
from intake_rulesets.config import EngineSettings, load_settings
from intake_rulesets.evaluator import ConditionEvaluator
from intake_rulesets.intake.registry import SchemaRegistry
from intake_rulesets.intake.service import IntakeService
from intake_rulesets.intake.validation import IntakeValidator
from intake_rulesets.models import (
    AnswerOutcome,
    NextQuestion,
    QuestionnaireState,
    RouteDecision,
    ToolInvocation,
)
from intake_rulesets.prompt import PromptManager
from intake_rulesets.questionnaire import QuestionnaireEngine
from intake_rulesets.router import FlowRouter
from intake_rulesets.ruleset import RulesetStore
from intake_rulesets.tools.builtin import BuiltinDeps, register_builtin_tools
from intake_rulesets.tools.builtin.questionnaire import FORM_JSON_KEY, QUESTIONNAIRE_PREFIX
from intake_rulesets.tools.executor import ToolExecutor
from intake_rulesets.tools.program import load_dynamic_tools
from intake_rulesets.tools.registry import ToolRegistry
from intake_rulesets.tools.result import ToolContext, ToolResult
from intake_rulesets.tools.sandbox import SubprocessSandbox

logger = logging.getLogger(__name__)

VARS_REF = "$vars."

# Routing bookkeeping owned by the pipeline, never merged into vars
ROUTING_KEYS = frozenset(
    {"completed_processes", "router_next_slug", "router_process_key", "flow_complete"}
)


class ToolRun(BaseModel):
    """One tool invocation made during a turn."""

    tool: str
    process_key: str
    phase: Literal["enter", "complete"]
    result: ToolResult


class TurnResult(BaseModel):
    """Everything the conversation layer needs after a turn."""

    state: QuestionnaireState
    completed_processes: List[str] = Field(default_factory=list)
    route: RouteDecision
    outcome: Optional[AnswerOutcome] = None
    next_question: Optional[NextQuestion] = None
    prompt: str = ""
    tool_runs: List[ToolRun] = Field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return self.outcome is None or self.outcome.ok


def resolve_payload(template: Mapping[str, Any], variables: Mapping[str, Any]) -> dict[str, Any]:
    """Replace ``$vars.<key>`` string values with the variable's value."""
    resolved: dict[str, Any] = {}
    for key, value in template.items():
        if isinstance(value, str) and value.startswith(VARS_REF):
            resolved[key] = variables.get(value[len(VARS_REF):])
        else:
            resolved[key] = value
    return resolved


class IntakePipeline:
    """Orchestrates answer parsing, routing and process tools.

    Args:
        engine: questionnaire engine
        router: flow router over the same ruleset
        executor: tool executor (its registry should hold the built-ins)
        settings: engine settings (timezone for tool contexts)
        database: intake storage owned by this pipeline, closed by :meth:`aclose`
    """

    def __init__(
        self,
        engine: QuestionnaireEngine,
        router: FlowRouter,
        executor: ToolExecutor,
        settings: EngineSettings | None = None,
        database: IntakeDatabase | None = None,
    ) -> None:
        self._engine = engine
        self._router = router
        self._executor = executor
        self._settings = settings or load_settings()
        self._database = database
        # An entry lives only while some turn of that conversation holds or awaits it
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    @classmethod
    def from_store(
        cls,
        store: RulesetStore,
        settings: EngineSettings | None = None,
        *,
        intake_service: IntakeService | None = None,
        session_factory: Any = None,
        http_transport: Any = None,
    ) -> "IntakePipeline":
        """Build the full component graph from a loaded :class:`RulesetStore`.

        Dynamic tools found under ``<ruleset_dir>/tools`` are registered
        on top of the built-ins.  When neither ``intake_service`` nor
        ``session_factory`` is given and the environment names a database,
        ``saveIntake`` validates against ``<ruleset_dir>/forms`` and stores
        through an :class:`IntakeDatabase` that connects on first save.
        """
        settings = settings or load_settings()
        manifest, questionnaire = store.require()

        database = None
        if intake_service is None and session_factory is None and database_configured():
            database = IntakeDatabase.from_env()
            intake_service = IntakeService(IntakeValidator(SchemaRegistry(store.base_dir / "forms")))
            session_factory = lambda: database.session_factory()  # noqa: E731

        evaluator = ConditionEvaluator()
        parser = AnswerParser(
            timezone=settings.timezone,
            boolean_policy=BooleanPolicy(
                numeric_fallback=settings.numeric_boolean_fallback,
                max_numeric_value=settings.numeric_boolean_max,
            ),
            start_date_max_days=settings.start_date_max_days,
        )
        engine = QuestionnaireEngine(
            questionnaire, evaluator=evaluator, parser=parser, prompts=PromptManager()
        )
        router = FlowRouter(manifest, evaluator=evaluator, questionnaire=questionnaire)

        registry = ToolRegistry(
            evaluator=evaluator,
            sandbox=SubprocessSandbox(timeout_seconds=settings.tool_timeout_seconds),
        )
        register_builtin_tools(
            registry,
            BuiltinDeps(
                engine=engine,
                router=router,
                settings=settings,
                intake_service=intake_service,
                session_factory=session_factory,
                http_transport=http_transport,
            ),
        )
        for definition in load_dynamic_tools(store.base_dir / "tools"):
            registry.register_dynamic(definition)

        executor = ToolExecutor(registry, timeout_seconds=settings.tool_timeout_seconds)
        return cls(engine, router, executor, settings, database)

    @property
    def engine(self) -> QuestionnaireEngine:
        return self._engine

    @property
    def database(self) -> IntakeDatabase | None:
        return self._database

    async def aclose(self) -> None:
        if self._database is not None:
            await self._database.dispose()

    @property
    def router(self) -> FlowRouter:
        return self._router

    @property
    def executor(self) -> ToolExecutor:
        return self._executor

    def _lock_for(self, conversation_id: str) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        return lock

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start(
        self,
        conversation_id: str,
        seed_vars: Mapping[str, Any] | None = None,
    ) -> TurnResult:
        """Build the initial state, route, and produce the first prompt."""
        async with self._lock_for(conversation_id):
            state = self._engine.build_initial_state(seed_vars)
            return await self._advance(conversation_id, state, [], outcome=None)

    async def submit_answer(
        self,
        conversation_id: str,
        state: QuestionnaireState,
        completed_processes: Iterable[str],
        question_id: str,
        raw_text: str,
    ) -> TurnResult:
        """Apply one answer and advance the conversation.

        Raises:
            KeyError: if *question_id* is unknown.
        """
        completed = list(dict.fromkeys(completed_processes or ()))
        async with self._lock_for(conversation_id):
            outcome = self._engine.parse_and_apply_answer(state, question_id, raw_text)
            if not outcome.ok:
                question = self._engine.question(question_id)
                described = self._engine.describe_question(question, state)
                return TurnResult(
                    state=state,
                    completed_processes=completed,
                    route=self._router.next(completed, state.vars),
                    outcome=outcome,
                    next_question=described,
                    prompt=self._engine.prompts.render_question(described, error=outcome.message),
                )

            violation = self._engine.validate_production_rules(outcome.state)
            if violation:
                question = self._engine.question(question_id)
                described = self._engine.describe_question(question, state)
                rejected = outcome.model_copy(
                    update={"ok": False, "reason": "production_rule", "message": violation, "state": state}
                )
                return TurnResult(
                    state=state,
                    completed_processes=completed,
                    route=self._router.next(completed, state.vars),
                    outcome=rejected,
                    next_question=described,
                    prompt=self._engine.prompts.render_question(described, error=violation),
                )

            answered = self._engine.question(question_id)
            return await self._advance(
                conversation_id,
                outcome.state,
                completed,
                outcome=outcome,
                previous_stage=answered.stage_key if answered else None,
            )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _advance(
        self,
        conversation_id: str,
        state: QuestionnaireState,
        completed: list[str],
        *,
        outcome: AnswerOutcome | None,
        previous_stage: str | None = None,
    ) -> TurnResult:
        runs: list[ToolRun] = []
        entered: set[str] = set()
        route = self._router.next(completed, state.vars)
        nq: NextQuestion | None = None

        # Each iteration either stops on a question or completes a process
        for _ in range(len(self._router.order) + 2):
            key = route.target_process_key
            if route.flow_complete or key is None:
                break
            if key not in entered:
                entered.add(key)
                state = await self._run_tools(conversation_id, state, key, "enter", runs)
            nq = self._engine.get_next_question(state, [key])
            if nq is not None:
                break
            state = await self._run_tools(conversation_id, state, key, "complete", runs)
            completed = list(self._router.mark_complete(completed, key))
            logger.info("Conversation %s completed process %s", conversation_id, key)
            route = self._router.next(completed, state.vars)
        else:
            logger.warning("Conversation %s: routing did not settle", conversation_id)

        return TurnResult(
            state=state,
            completed_processes=completed,
            route=route,
            outcome=outcome,
            next_question=nq,
            prompt=self._prompt(state, nq, previous_stage),
            tool_runs=runs,
        )

    def _prompt(
        self,
        state: QuestionnaireState,
        nq: NextQuestion | None,
        previous_stage: str | None,
    ) -> str:
        engine = self._engine
        if nq is None:
            return engine.prompts.render_handoff(
                engine.evaluate_handoff_triggers(state),
                engine.compute_pending_attachments(state),
            )
        stage_changed = previous_stage is None or nq.stage_key != previous_stage
        summary = (
            engine.build_stage_summary(state, previous_stage)
            if previous_stage and stage_changed
            else None
        )
        intro = None
        if stage_changed:
            stage = engine.questionnaire.stage(nq.stage_key)
            if stage is not None and stage.intro_he:
                intro = engine.prompts.render_text(stage.intro_he, state.vars)
        return engine.prompts.render_question(nq, summary=summary or None, intro=intro)

    def _tool_payload(self, state: QuestionnaireState, invocation: ToolInvocation) -> dict[str, Any]:
        snapshot = {k: v for k, v in state.vars.items() if k not in state.defaulted_keys}
        return {
            **snapshot,
            FORM_JSON_KEY: state.form_json,
            **resolve_payload(invocation.payload, state.vars),
        }

    async def _run_tools(
        self,
        conversation_id: str,
        state: QuestionnaireState,
        process_key: str,
        phase: str,
        runs: list[ToolRun],
    ) -> QuestionnaireState:
        process = self._router.process(process_key)
        if process is None:
            return state
        context = ToolContext(conversation_id=conversation_id, timezone=self._settings.timezone)
        for invocation in process.tools:
            if invocation.on != phase:
                continue
            result = await self._executor.execute(
                invocation.tool, self._tool_payload(state, invocation), context
            )
            runs.append(
                ToolRun(tool=invocation.tool, process_key=process_key, phase=phase, result=result)
            )
            if not result.success:
                logger.warning(
                    "Conversation %s: tool %s failed (%s): %s",
                    conversation_id, invocation.tool, result.error_code, result.error,
                )
                continue
            updates = {
                k: v
                for k, v in result.save_results.items()
                if k not in ROUTING_KEYS and not k.startswith(QUESTIONNAIRE_PREFIX)
            }
            if updates:
                state = self._engine.merge_external(state, updates)
        return state
