"""RulesetStore — loads the manifest and process files from ``v1/``.

This is the single source of truth for questionnaire data at runtime.  The
store is loaded once at startup and assembles the manifest's processes into
one :class:`~intake_rulesets.models.Questionnaire` (one stage per process,
in ``process_order``).

Usage::

    store = RulesetStore()          # defaults to v1/ relative to repo root
    store.load()                    # parse manifest + process files

    questionnaire = store.questionnaire
    errors = store.validate_conditions()

Both YAML and JSON documents are accepted; the parser is chosen by file
suffix.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterator, Optional

import yaml

from intake_rulesets.errors import ConditionSyntaxError, IntakeConfigError
from intake_rulesets.evaluator import ConditionEvaluator
from intake_rulesets.models import (
    AttachmentItem,
    HandoffTrigger,
    Manifest,
    ProductionValidation,
    Questionnaire,
    Stage,
    load_question,
)

logger = logging.getLogger(__name__)

MANIFEST_CANDIDATES = ("manifest.yaml", "manifest.yml", "manifest.json")


# ---------------------------------------------------------------------------
# Utility helpers
# ---------------------------------------------------------------------------

def find_repo_root(start: Optional[Path] = None) -> Path:
    """Walk upwards from *start* to find the repo root (dir with pyproject.toml or .git).

    Falls back to cwd if no marker is found.
    """
    p = (start or Path(__file__).resolve()).parent
    for parent in [p, *p.parents]:
        if (parent / "pyproject.toml").exists() or (parent / ".git").exists():
            return parent
    return Path.cwd()


def load_document(path: Path | str) -> Any:
    """Load a YAML or JSON file and return the parsed contents."""
    if isinstance(path, str):
        path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Missing ruleset file: {path}")
    with path.open("r", encoding="utf-8") as f:
        if path.suffix.lower() == ".json":
            return json.load(f)
        return yaml.safe_load(f)


# ---------------------------------------------------------------------------
# RulesetStore
# ---------------------------------------------------------------------------

class RulesetStore:
    """Loads the manifest + process files and provides typed lookup.

    Attributes populated after :meth:`load`:

        manifest       — Manifest
        questionnaire  — Questionnaire assembled from the process files
        missing_files  — process files named by the manifest but not found
    """

    def __init__(self, ruleset_dir: str | Path | None = None) -> None:
        if ruleset_dir is None:
            ruleset_dir = find_repo_root() / "v1"
        self._base = Path(ruleset_dir)

        self.manifest: Manifest | None = None
        self.questionnaire: Questionnaire | None = None
        self.missing_files: list[str] = []

    @property
    def base_dir(self) -> Path:
        return self._base

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Parse the manifest and every process file it references.

        Raises:
            FileNotFoundError: if no manifest exists under the ruleset dir.
            UnknownDataTypeError: if a question declares an unsupported type.
            pydantic.ValidationError: for structurally invalid documents.
        """
        manifest_path = self._find_manifest()
        self.manifest = Manifest.model_validate(load_document(manifest_path) or {})
        self.questionnaire = self._assemble(self.manifest)
        logger.info(
            "RulesetStore loaded: %d processes, %d stages, %d questions",
            len(self.manifest.processes),
            len(self.questionnaire.stages),
            len(self.questionnaire.questions),
        )

    def _find_manifest(self) -> Path:
        for name in MANIFEST_CANDIDATES:
            p = self._base / name
            if p.exists():
                return p
        raise FileNotFoundError(f"No manifest found under {self._base}")

    def _assemble(self, manifest: Manifest) -> Questionnaire:
        """Build one stage per process in ``process_order``.

        Each question's ``stage_key`` is overwritten with its process key so
        the engine finds it in that stage regardless of what the file says.
        """
        questionnaire = Questionnaire(
            meta=manifest.meta,
            engine_contract=manifest.contract,
            modules_catalog=list(manifest.modules_catalog),
        )
        self.missing_files = []
        seen_qids: set[str] = set()

        for process_key in manifest.process_order:
            process = manifest.process(process_key)
            if process is None:
                logger.warning(
                    "Process %s is in process_order but not defined", process_key
                )
                continue

            content: dict[str, Any] = {}
            if process.file:
                path = self._base / process.file
                if not path.exists():
                    logger.warning("Process file not found: %s", path)
                    self.missing_files.append(process.file)
                    continue
                content = load_document(path) or {}

            header = content.get("process") or {}
            stage = Stage(
                stage_key=process_key,
                title_he=process.title_he or header.get("title_he", ""),
                ask_if=process.ask_if or header.get("ask_if"),
                intro_he=process.description_he or header.get("description_he"),
            )

            for raw in content.get("questions") or []:
                raw = {**raw, "stage_key": process_key}
                question = load_question(raw)
                if question.q_id in seen_qids:
                    raise IntakeConfigError(
                        f"Duplicate q_id {question.q_id!r} in process {process_key}"
                    )
                seen_qids.add(question.q_id)
                questionnaire.questions.append(question)
                stage.question_ids.append(question.q_id)

            questionnaire.handoff_triggers.extend(
                HandoffTrigger.model_validate(t)
                for t in content.get("handoff_triggers") or []
            )
            questionnaire.attachments_checklist.extend(
                AttachmentItem.model_validate(a)
                for a in content.get("attachments_checklist") or []
            )
            validations = content.get("production_validations") or content.get("validators") or []
            questionnaire.production_validations.extend(
                ProductionValidation.model_validate(v) for v in validations
            )
            questionnaire.stages.append(stage)

        return questionnaire

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def require(self) -> tuple[Manifest, Questionnaire]:
        """Return ``(manifest, questionnaire)``, raising if not loaded."""
        if self.manifest is None or self.questionnaire is None:
            raise RuntimeError("RulesetStore.load() has not been called")
        return self.manifest, self.questionnaire

    def iter_conditions(self) -> Iterator[tuple[str, str]]:
        """Yield ``(expression, label)`` for every condition in the ruleset."""
        manifest, questionnaire = self.require()
        for p in manifest.processes:
            if p.ask_if:
                yield p.ask_if, f"process {p.process_key} ask_if"
        for m in questionnaire.modules_catalog:
            if m.enable_if:
                yield m.enable_if, f"module {m.module_key} enable_if"
        for i, rule in enumerate(questionnaire.engine_contract.derived_rules):
            yield rule.set_when, f"derived_rules[{i}] ({rule.target_field})"
        for s in questionnaire.stages:
            process = manifest.process(s.stage_key)
            # A stage inherits its process's ask_if; report that one only once
            if s.ask_if and (process is None or s.ask_if != process.ask_if):
                yield s.ask_if, f"stage {s.stage_key} ask_if"
        for q in questionnaire.questions:
            if q.ask_if:
                yield q.ask_if, f"question {q.q_id} ask_if"
            if q.required_if:
                yield q.required_if, f"question {q.q_id} required_if"
        for t in questionnaire.handoff_triggers:
            yield t.when, f"handoff {t.trigger_key}"
        for a in questionnaire.attachments_checklist:
            if a.when:
                yield a.when, f"attachment {a.field_key_en}"
        for v in questionnaire.production_validations:
            if v.when:
                yield v.when, f"validation {v.name}"

    def validate_conditions(
        self, evaluator: ConditionEvaluator | None = None
    ) -> list[ConditionSyntaxError]:
        """Parse every condition in the ruleset; return the labelled failures.

        A clean ruleset returns an empty list.  Used at load time (and by
        ``intake-rulesets check``) so malformed conditions surface before any
        conversation runs.
        """
        evaluator = evaluator or ConditionEvaluator()
        return evaluator.validate_all(self.iter_conditions())
