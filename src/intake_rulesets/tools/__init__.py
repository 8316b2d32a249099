"""Tool execution: results, registry, executor, dynamic tools and built-ins."""

from intake_rulesets.tools.executor import ToolExecutor, coerce_result
from intake_rulesets.tools.program import DynamicToolDef, DynamicToolProgram, load_dynamic_tools
from intake_rulesets.tools.registry import ToolFn, ToolLoader, ToolRegistry
from intake_rulesets.tools.result import (
    INVALID_TOOL_RESULT,
    TOOL_EXECUTION_FAILED,
    TOOL_NOT_FOUND,
    TOOL_TIMEOUT,
    VALIDATION_FAILED,
    ToolContext,
    ToolResult,
)
from intake_rulesets.tools.sandbox import SandboxError, SubprocessSandbox

__all__ = [
    "DynamicToolDef",
    "DynamicToolProgram",
    "INVALID_TOOL_RESULT",
    "SandboxError",
    "SubprocessSandbox",
    "TOOL_EXECUTION_FAILED",
    "TOOL_NOT_FOUND",
    "TOOL_TIMEOUT",
    "ToolContext",
    "ToolExecutor",
    "ToolFn",
    "ToolLoader",
    "ToolRegistry",
    "ToolResult",
    "VALIDATION_FAILED",
    "coerce_result",
    "load_dynamic_tools",
]
