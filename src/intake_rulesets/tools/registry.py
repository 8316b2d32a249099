"""ToolRegistry — name → callable lookup for built-in and dynamic tools.

Built-in tools are registered as *loaders*: zero-argument factories that
build the tool callable on first use and are then cached.  Dynamic tools
are registered at runtime from :class:`DynamicToolDef` documents and take
precedence over a built-in with the same name.

A tool callable has the signature::

    async def tool(payload: dict, context: ToolContext) -> ToolResult | dict
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Awaitable, Callable, Union

from intake_rulesets.errors import ToolRegistrationError
from intake_rulesets.evaluator import ConditionEvaluator
from intake_rulesets.tools.program import DynamicToolDef
from intake_rulesets.tools.result import ToolContext, ToolResult
from intake_rulesets.tools.sandbox import SubprocessSandbox

logger = logging.getLogger(__name__)

ToolFn = Callable[[dict[str, Any], ToolContext], Awaitable[Union[ToolResult, dict]]]
ToolLoader = Callable[[], ToolFn]


class ToolRegistry:
    """Holds built-in loaders, the built-in cache and dynamic tools.

    Args:
        evaluator: evaluator used by program-style dynamic tools
        sandbox: runner for source-style dynamic tools
    """

    def __init__(
        self,
        *,
        evaluator: ConditionEvaluator | None = None,
        sandbox: SubprocessSandbox | None = None,
    ) -> None:
        self._evaluator = evaluator or ConditionEvaluator()
        self._sandbox = sandbox or SubprocessSandbox()
        self._loaders: dict[str, ToolLoader] = {}
        self._builtin: dict[str, ToolFn] = {}
        self._dynamic: dict[str, ToolFn] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_builtin(self, name: str, loader: ToolLoader) -> None:
        """Register a lazily built built-in tool.

        Raises:
            ToolRegistrationError: if *name* is already a built-in.
        """
        if name in self._loaders:
            raise ToolRegistrationError(f"Built-in tool already registered: {name}")
        self._loaders[name] = loader

    def register_dynamic(self, definition: DynamicToolDef) -> None:
        """Register (or replace) a dynamic tool."""
        if definition.program is not None:
            program = definition.program
            evaluator = self._evaluator
            label = f"tool {definition.name}"

            async def run_program(payload: dict[str, Any], context: ToolContext) -> ToolResult:
                return program.run(payload, context, evaluator, label=label)

            fn: ToolFn = run_program
        else:
            source = definition.source or ""
            sandbox = self._sandbox

            async def run_source(payload: dict[str, Any], context: ToolContext) -> Any:
                return await sandbox.run(source, payload, context.model_dump())

            fn = run_source

        if definition.name in self._dynamic:
            logger.info("Replacing dynamic tool %s", definition.name)
        elif definition.name in self._loaders:
            logger.info("Dynamic tool %s shadows the built-in", definition.name)
        self._dynamic[definition.name] = fn

    def unregister_dynamic(self, name: str) -> bool:
        return self._dynamic.pop(name, None) is not None

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def resolve(self, name: str) -> ToolFn | None:
        """Return the callable for *name*, building a built-in on first use."""
        if name in self._dynamic:
            return self._dynamic[name]
        cached = self._builtin.get(name)
        if cached is not None:
            return cached
        loader = self._loaders.get(name)
        if loader is None:
            return None
        with self._lock:
            if name not in self._builtin:
                self._builtin[name] = loader()
                logger.debug("Loaded built-in tool %s", name)
            return self._builtin[name]

    def list_tools(self) -> list[dict[str, str]]:
        """All known tool names with their kind, sorted by name."""
        names = {n: "builtin" for n in self._loaders}
        names.update({n: "dynamic" for n in self._dynamic})
        return [{"name": n, "kind": names[n]} for n in sorted(names)]

    def __contains__(self, name: object) -> bool:
        return name in self._dynamic or name in self._loaders
