"""PromptManager — Jinja2-based renderer for customer-facing prompts.

Loads templates from the ``template/`` directory and renders
``NextQuestion`` objects (plus an optional re-prompt message and stage
summary) into the text the conversation layer sends to the customer.

Question texts themselves may reference answered variables, e.g.
``"מה כתובת העסק של {{ business_name }}?"``; :meth:`render_text` fills them
from the current ``vars`` snapshot.  Missing variables render as empty.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Mapping

import jinja2

from intake_rulesets.models import HandoffSignal, NextQuestion, PendingAttachment

logger = logging.getLogger(__name__)

_QUESTION_TEMPLATE = "question.jinja2"
_HANDOFF_TEMPLATE = "handoff.jinja2"


class PromptManager:
    """Jinja2-based prompt renderer.

    Args:
        template_dir: optional override for the template directory.
            Defaults to ``template/`` sibling of this module.
    """

    def __init__(self, template_dir: Path | None = None) -> None:
        if template_dir is None:
            template_dir = Path(__file__).parent / "template"
        self._env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(template_dir)),
            keep_trailing_newline=False,
            # Block tags on their own line don't leave blank lines behind
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self._env.filters["tojson"] = lambda v: json.dumps(v, ensure_ascii=False)

    def render(self, template_name: str, **context) -> str:
        """Render a named template with arbitrary context."""
        template = self._env.get_template(template_name)
        return template.render(**context)

    def render_text(self, text: str, variables: Mapping[str, Any]) -> str:
        """Fill ``{{ var }}`` placeholders in a question text.

        Variables are available both at top level and under ``vars``.  A
        text that is not a valid template is returned unchanged.
        """
        if not text or ("{{" not in text and "{%" not in text):
            return text
        try:
            template = self._env.from_string(text)
        except jinja2.TemplateSyntaxError as exc:
            logger.warning("Question text is not a valid template (%s): %r", exc, text)
            return text
        return template.render({**variables, "vars": variables})

    def render_question(
        self,
        question: NextQuestion,
        *,
        error: str | None = None,
        summary: str | None = None,
        intro: str | None = None,
    ) -> str:
        """Render the full customer-facing prompt for *question*.

        Args:
            error: re-prompt message from a failed parse, shown first
            summary: recap of the previous stage's answers
            intro: stage introduction, shown on the first question of a stage
        """
        return self.render(
            _QUESTION_TEMPLATE,
            question=question,
            error=error,
            summary=summary,
            intro=intro,
        ).rstrip()

    def render_handoff(
        self,
        signals: Iterable[HandoffSignal],
        attachments: Iterable[PendingAttachment] = (),
    ) -> str:
        """Render the closing message listing handoff reasons and missing uploads."""
        return self.render(
            _HANDOFF_TEMPLATE,
            signals=list(signals),
            attachments=list(attachments),
        ).rstrip()
