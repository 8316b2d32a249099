"""Dynamic tool definitions.

Operators can add tools at runtime without deploying code.  A dynamic tool
is either:

  - a **program**: an ordered list of declarative steps interpreted
    in-process with the condition evaluator (preferred; no code runs), or
  - a **source** body: Python text executed by
    :class:`~intake_rulesets.tools.sandbox.SubprocessSandbox` in a
    separate interpreter.

Program document (``v1/tools/*.yaml``)::

    name: insurance.flagHighValue
    description_he: סימון תיק בעל ערך גבוה
    program:
      - when: "property_sum > 5000000"
        set:
          high_value_case: true
          high_value_segment: $payload.segment_name_he
      - when: "business_registration_id = null"
        fail: {error: "Missing business_registration_id", code: MISSING_ID}

Steps run in order.  A step applies when its ``when`` holds against the
payload (empty ``when`` always holds).  ``set`` accumulates into
``save_results``, ``data`` into the result data, ``fail`` ends the run with
a failed result and ``stop`` ends it successfully.  String values starting
with ``$payload.`` / ``$context.`` are resolved by path; missing
references resolve to ``None``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from intake_rulesets.errors import ToolRegistrationError
from intake_rulesets.evaluator import ConditionEvaluator
from intake_rulesets.jsonpath import get_by_path
from intake_rulesets.ruleset import load_document
from intake_rulesets.tools.result import ToolContext, ToolResult

logger = logging.getLogger(__name__)

_PAYLOAD_REF = "$payload."
_CONTEXT_REF = "$context."


class StepFailure(BaseModel):
    error: str
    code: Optional[str] = None


class ProgramStep(BaseModel):
    model_config = ConfigDict(extra="forbid")

    when: Optional[str] = None
    set: dict[str, Any] = Field(default_factory=dict)
    data: dict[str, Any] = Field(default_factory=dict)
    fail: Optional[StepFailure] = None
    stop: bool = False


def resolve_refs(value: Any, payload: Mapping[str, Any], context: Mapping[str, Any]) -> Any:
    """Replace ``$payload.x`` / ``$context.x`` strings, recursing into containers."""
    if isinstance(value, str):
        if value.startswith(_PAYLOAD_REF):
            return get_by_path(payload, value[len(_PAYLOAD_REF):])
        if value.startswith(_CONTEXT_REF):
            return get_by_path(context, value[len(_CONTEXT_REF):])
        return value
    if isinstance(value, list):
        return [resolve_refs(v, payload, context) for v in value]
    if isinstance(value, dict):
        return {k: resolve_refs(v, payload, context) for k, v in value.items()}
    return value


class DynamicToolProgram(BaseModel):
    """Interpreted step list; see module docstring."""

    steps: List[ProgramStep] = Field(default_factory=list)

    def run(
        self,
        payload: Mapping[str, Any],
        context: ToolContext,
        evaluator: ConditionEvaluator,
        *,
        label: str = "dynamic tool",
    ) -> ToolResult:
        ctx = context.model_dump()
        save_results: dict[str, Any] = {}
        data: dict[str, Any] = {}

        for i, step in enumerate(self.steps):
            if not evaluator.evaluate(step.when, payload, label=f"{label} step {i}"):
                continue
            if step.fail is not None:
                return ToolResult.fail(step.fail.error, step.fail.code)
            save_results.update(resolve_refs(step.set, payload, ctx))
            data.update(resolve_refs(step.data, payload, ctx))
            if step.stop:
                break

        return ToolResult.ok(data=data or None, save_results=save_results)


class DynamicToolDef(BaseModel):
    """A runtime-registered tool: exactly one of ``program`` or ``source``."""

    name: str
    description_he: str = ""
    program: Optional[DynamicToolProgram] = None
    source: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _wrap_steps(cls, data: Any) -> Any:
        # Documents may give the step list directly under ``program``
        if isinstance(data, dict) and isinstance(data.get("program"), list):
            data = {**data, "program": {"steps": data["program"]}}
        return data

    @model_validator(mode="after")
    def _exactly_one_body(self):
        if (self.program is None) == (self.source is None):
            raise ValueError(f"dynamic tool {self.name!r} needs exactly one of program/source")
        return self


def load_dynamic_tools(tools_dir: Path | str) -> list[DynamicToolDef]:
    """Load every ``*.yaml`` / ``*.yml`` / ``*.json`` tool document in *tools_dir*.

    Raises:
        ToolRegistrationError: if a document is not a valid tool definition.
    """
    tools_dir = Path(tools_dir)
    if not tools_dir.is_dir():
        return []

    defs: list[DynamicToolDef] = []
    for path in sorted(tools_dir.iterdir()):
        if path.suffix.lower() not in (".yaml", ".yml", ".json"):
            continue
        try:
            defs.append(DynamicToolDef.model_validate(load_document(path) or {}))
        except ValueError as exc:
            raise ToolRegistrationError(f"Invalid dynamic tool {path.name}: {exc}") from exc
    logger.info("Loaded %d dynamic tools from %s", len(defs), tools_dir)
    return defs
