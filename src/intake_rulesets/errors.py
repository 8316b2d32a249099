"""Exception types raised by the intake SDK.

Only *configuration* defects are raised as exceptions: malformed condition
expressions, questions declaring an unknown ``data_type``, a broken schema
registry, invalid dynamic tool definitions.  These are meant to surface at
load/validation time (see ``intake-rulesets check``) rather than in the
middle of a conversation.

User-input problems (unparseable answers, rejected dates), tool failures
and schema validation failures are returned as values instead — see
``answers.ParseFailure``, ``tools.ToolResult`` and
``intake.IntakeValidationFailure``.

All configuration errors subclass ``ValueError`` so callers that only know
the SDK "raises ValueError on bad input" keep working.
"""

from __future__ import annotations


class IntakeConfigError(ValueError):
    """Base class for ruleset / registry configuration defects."""


class ConditionSyntaxError(IntakeConfigError):
    """A condition expression could not be parsed.

    Attributes:
        expression: the offending expression text
        label: owner of the expression (process key, question id, rule name)
        position: character offset where parsing failed, if known
    """

    def __init__(
        self,
        message: str,
        *,
        expression: str,
        label: str | None = None,
        position: int | None = None,
    ) -> None:
        self.expression = expression
        self.label = label
        self.position = position
        self.reason = message
        owner = f" [{label}]" if label else ""
        where = f" at position {position}" if position is not None else ""
        super().__init__(f"Invalid condition{owner}{where}: {message} in {expression!r}")

    def with_label(self, label: str) -> "ConditionSyntaxError":
        """Return a copy of this error attributed to *label*."""
        return ConditionSyntaxError(
            self.reason,
            expression=self.expression,
            label=label,
            position=self.position,
        )


class UnknownDataTypeError(IntakeConfigError):
    """A question declares a ``data_type`` outside the supported set."""

    def __init__(self, q_id: str, data_type: object) -> None:
        self.q_id = q_id
        self.data_type = data_type
        super().__init__(f"Question {q_id} has unsupported data_type {data_type!r}")


class SchemaRegistryError(IntakeConfigError):
    """The intake schema registry file is missing or malformed."""


class ToolRegistrationError(ValueError):
    """A tool could not be registered (blank name, invalid program)."""
