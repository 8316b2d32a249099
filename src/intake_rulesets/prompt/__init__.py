"""Prompt rendering for the conversation layer.

Provides ``PromptManager``, a Jinja2-based template engine that renders
``NextQuestion`` objects into customer-facing prompt strings.
"""

from intake_rulesets.prompt.manager import PromptManager

__all__ = ["PromptManager"]
