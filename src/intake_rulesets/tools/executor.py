"""ToolExecutor — runs a named tool under a timeout and normalises its result.

``execute`` never raises for tool-side problems; every outcome is a
:class:`ToolResult`:

  - unknown name        → ``Tool not found: {name}`` (``TOOL_NOT_FOUND``)
  - exceeded timeout    → ``TOOL_TIMEOUT``; the call is cancelled and any
                          late completion is discarded
  - raised exception    → ``Tool execution failed: {msg}``
                          (``TOOL_EXECUTION_FAILED``)
  - malformed return    → ``INVALID_TOOL_RESULT``

Tools may return a :class:`ToolResult` or a plain dict in either naming
style (``saveResults`` / ``save_results``, ``errorCode`` / ``error_code``).
The executor does not serialise calls; callers run at most one tool per
conversation at a time.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping

from pydantic import ValidationError

from intake_rulesets.constants import DYNAMIC_TOOL_TIMEOUT_SECONDS
from intake_rulesets.tools.registry import ToolRegistry
from intake_rulesets.tools.result import (
    INVALID_TOOL_RESULT,
    TOOL_EXECUTION_FAILED,
    TOOL_NOT_FOUND,
    TOOL_TIMEOUT,
    ToolContext,
    ToolResult,
)

logger = logging.getLogger(__name__)

_CAMEL_KEYS = {"saveResults": "save_results", "errorCode": "error_code"}


def coerce_result(raw: Any) -> ToolResult:
    """Convert a tool's return value into a :class:`ToolResult`.

    Raises:
        ValueError: if *raw* is not ToolResult-shaped.
    """
    if isinstance(raw, ToolResult):
        return raw
    if not isinstance(raw, Mapping):
        raise ValueError(f"expected a result object, got {type(raw).__name__}")
    data = {_CAMEL_KEYS.get(k, k): v for k, v in raw.items()}
    if data.get("save_results") is None:
        data.pop("save_results", None)
    return ToolResult.model_validate(data)


class ToolExecutor:
    """Executes tools from a registry.

    Args:
        registry: where tool names are resolved
        timeout_seconds: wall-clock limit applied to every call
    """

    def __init__(
        self,
        registry: ToolRegistry,
        timeout_seconds: float = DYNAMIC_TOOL_TIMEOUT_SECONDS,
    ) -> None:
        self._registry = registry
        self._timeout = timeout_seconds

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    async def execute(
        self,
        name: str,
        payload: Mapping[str, Any] | None,
        context: ToolContext,
    ) -> ToolResult:
        tool = self._registry.resolve(name)
        if tool is None:
            logger.warning("Tool not found: %s", name)
            return ToolResult.fail(f"Tool not found: {name}", TOOL_NOT_FOUND)

        try:
            raw = await asyncio.wait_for(
                tool(dict(payload or {}), context), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Tool %s timed out after %ss (conversation %s)",
                name, self._timeout, context.conversation_id,
            )
            return ToolResult.fail(
                f"Tool execution timed out after {self._timeout:g}s", TOOL_TIMEOUT
            )
        except Exception as exc:
            logger.exception("Tool %s failed (conversation %s)", name, context.conversation_id)
            return ToolResult.fail(f"Tool execution failed: {exc}", TOOL_EXECUTION_FAILED)

        try:
            result = coerce_result(raw)
        except (ValueError, ValidationError) as exc:
            logger.warning("Tool %s returned an invalid result: %s", name, exc)
            return ToolResult.fail(f"Invalid tool result: {exc}", INVALID_TOOL_RESULT)

        logger.debug("Tool %s finished: success=%s", name, result.success)
        return result
