"""Tool result and context models.

Every tool (built-in or dynamic) returns a :class:`ToolResult`.  Exactly
one of two shapes is valid: ``success=True`` with no ``error``, or
``success=False`` with an ``error`` message.  ``save_results`` is a flat
mapping the caller merges into the conversation's stored variables; the
executor itself never persists anything.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from intake_rulesets.constants import DEFAULT_TIMEZONE

# --- Error codes ---
TOOL_NOT_FOUND = "TOOL_NOT_FOUND"
TOOL_TIMEOUT = "TOOL_TIMEOUT"
TOOL_EXECUTION_FAILED = "TOOL_EXECUTION_FAILED"
INVALID_TOOL_RESULT = "INVALID_TOOL_RESULT"
VALIDATION_FAILED = "VALIDATION_FAILED"


class ToolContext(BaseModel):
    """What a tool may know about its caller."""

    model_config = ConfigDict(frozen=True)

    conversation_id: str
    timezone: str = DEFAULT_TIMEZONE


class ToolResult(BaseModel):
    """Outcome of one tool invocation."""

    success: bool
    data: Any = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    status: Optional[int] = None
    save_results: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_shape(self):
        if self.success and self.error is not None:
            raise ValueError("a successful ToolResult cannot carry an error")
        if not self.success and not self.error:
            raise ValueError("a failed ToolResult must carry an error message")
        return self

    @classmethod
    def ok(
        cls,
        data: Any = None,
        save_results: dict[str, Any] | None = None,
    ) -> "ToolResult":
        return cls(success=True, data=data, save_results=save_results or {})

    @classmethod
    def fail(
        cls,
        error: str,
        error_code: str | None = None,
        *,
        status: int | None = None,
        data: Any = None,
    ) -> "ToolResult":
        return cls(success=False, error=error, error_code=error_code, status=status, data=data)
