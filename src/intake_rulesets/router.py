"""FlowRouter — decides which process (flow) runs next.

The router is a pure function of two inputs: the ordered set of completed
process keys and the current variable snapshot ("flags").  It keeps no
state between calls; tracking what is completed belongs to the caller.

Algorithm:

  1. Nothing completed yet → the designated welcome process.
  2. Otherwise walk the manifest's ``process_order`` (only keys ``01_`` ..
     ``23_`` are routable) and return the first process that is not
     completed and whose ``ask_if`` holds.  A variable missing from the
     flags is falsy, so such a process is skipped rather than failing.
  3. Nothing applicable → the fallback process (history and disclosures)
     if it has not been completed yet, else the terminal slug ``done``.

The manifest's declared ordering is the sole tie-break; runtime state never
reorders it.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable, Mapping

from intake_rulesets.constants import FLOW_SLUG_PREFIX, ROUTABLE_PROCESS_PATTERN
from intake_rulesets.evaluator import ConditionEvaluator, is_present
from intake_rulesets.models import Manifest, ProcessDef, Questionnaire, RouteDecision

logger = logging.getLogger(__name__)

_ROUTABLE_RE = re.compile(ROUTABLE_PROCESS_PATTERN)


def flow_slug(process_key: str) -> str:
    """Flow slug for a process: ``flow_{process_key}``."""
    return f"{FLOW_SLUG_PREFIX}{process_key}"


def is_routable(process_key: str) -> bool:
    return bool(_ROUTABLE_RE.match(str(process_key or "")))


class FlowRouter:
    """Stateless router over a manifest.

    Args:
        manifest: the loaded manifest (process order + ``ask_if`` table)
        evaluator: condition evaluator (shares its parse cache)
        questionnaire: assembled questionnaire; required only by
            :meth:`is_process_complete`
    """

    def __init__(
        self,
        manifest: Manifest,
        *,
        evaluator: ConditionEvaluator | None = None,
        questionnaire: Questionnaire | None = None,
    ) -> None:
        self._manifest = manifest
        self._evaluator = evaluator or ConditionEvaluator()
        self._questionnaire = questionnaire
        self._processes: dict[str, ProcessDef] = {
            p.process_key: p for p in manifest.processes
        }
        self._order: tuple[str, ...] = tuple(
            k for k in manifest.process_order if is_routable(k)
        )

    @property
    def order(self) -> tuple[str, ...]:
        """Routable process keys in priority order."""
        return self._order

    def process(self, process_key: str) -> ProcessDef | None:
        return self._processes.get(process_key)

    def _applies(self, process: ProcessDef, flags: Mapping[str, Any]) -> bool:
        return self._evaluator.evaluate(
            process.ask_if, flags, label=f"process {process.process_key} ask_if"
        )

    def _welcome_key(self) -> str | None:
        key = self._manifest.router.welcome_process
        if key and key in self._processes:
            return key
        return self._order[0] if self._order else None

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def next(
        self,
        completed_processes: Iterable[str],
        flags: Mapping[str, Any],
    ) -> RouteDecision:
        """Return the routing decision for the given progress and flags."""
        completed = list(dict.fromkeys(completed_processes or ()))
        done = set(completed)

        if not done:
            welcome = self._welcome_key()
            if welcome is not None:
                logger.debug("Routing to welcome process %s", welcome)
                return RouteDecision(
                    target_process_key=welcome,
                    target_flow_slug=flow_slug(welcome),
                    reason="welcome",
                )

        for key in self._order:
            if key in done:
                continue
            process = self._processes.get(key)
            if process is None:
                continue
            if self._applies(process, flags):
                logger.info("Routing to %s", flow_slug(key))
                return RouteDecision(
                    target_process_key=key,
                    target_flow_slug=flow_slug(key),
                    reason="ask_if",
                )

        fallback = self._manifest.router.fallback_process
        if fallback and fallback in self._processes and fallback not in done:
            logger.info("No applicable process; routing to fallback %s", fallback)
            return RouteDecision(
                target_process_key=fallback,
                target_flow_slug=flow_slug(fallback),
                reason="fallback",
            )

        logger.info("All processes complete")
        return RouteDecision(
            target_flow_slug=self._manifest.router.terminal_slug,
            flow_complete=True,
            reason="complete",
        )

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def is_process_complete(self, process_key: str, flags: Mapping[str, Any]) -> bool:
        """Completion guardrail for marking a process done.

        See :meth:`missing_required`; complete means nothing is missing.
        """
        return not self.missing_required(process_key, flags)

    def missing_required(self, process_key: str, flags: Mapping[str, Any]) -> list[str]:
        """q_ids that still block completion of *process_key*.

        A process is complete when it does not apply (``ask_if`` false), is
        not customer-facing, or every customer question in it that is
        required right now has a present value.  A ``required`` question is
        required when its ``ask_if`` holds; a ``conditional`` one when both
        ``ask_if`` and ``required_if`` hold; optional questions never block.

        Raises:
            KeyError: if *process_key* is not in the manifest.
            RuntimeError: if the router was built without a questionnaire.
        """
        process = self._processes.get(process_key)
        if process is None:
            raise KeyError(f"Unknown process: {process_key}")
        if process.audience != "customer":
            return []
        if not self._applies(process, flags):
            return []
        if self._questionnaire is None:
            raise RuntimeError("FlowRouter needs a questionnaire to check completion")

        stage = self._questionnaire.stage(process_key)
        if stage is None:
            return []

        missing: list[str] = []
        for qid in stage.question_ids:
            q = self._questionnaire.question(qid)
            if q is None or not q.is_customer_facing or q.is_attachment:
                continue
            requirement = q.requirement
            if requirement == "optional":
                continue
            if not self._evaluator.evaluate(q.ask_if, flags, label=f"question {qid} ask_if"):
                continue
            if requirement == "conditional" and not self._evaluator.evaluate(
                q.required_if, flags, label=f"question {qid} required_if"
            ):
                continue
            if not is_present(flags.get(q.field_key_en)):
                missing.append(qid)
        if missing:
            logger.debug("Process %s incomplete: missing %s", process_key, missing)
        return missing

    @staticmethod
    def mark_complete(completed: Iterable[str], process_key: str) -> tuple[str, ...]:
        """Return *completed* with *process_key* appended (order kept, no duplicates)."""
        keys = list(dict.fromkeys(completed or ()))
        if process_key not in keys:
            keys.append(process_key)
        return tuple(keys)
