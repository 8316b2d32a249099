"""SubprocessSandbox — runs dynamic tool source in a separate interpreter.

The tool body is Python source with exactly two names in scope, ``payload``
and ``context`` (both plain JSON values), and must ``return`` a
ToolResult-shaped dict::

    if not payload.get("business_name"):
        return {"success": False, "error": "missing business name"}
    return {"success": True, "saveResults": {"display_name": payload["business_name"].strip()}}

Isolation boundary:

  - a fresh ``python -I`` process (isolated mode: no site-packages from the
    user, no ``PYTHON*`` variables, no script directory on ``sys.path``)
  - an empty environment, so no credentials leak from the parent
  - a throwaway working directory
  - JSON in over stdin, JSON out over stdout; nothing else is shared
  - a hard wall-clock timeout after which the process is killed

The child's result is only read after it exits, so a run that is
abandoned (timeout or outer cancellation) never produces a result.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
import tempfile
from typing import Any, Mapping

from intake_rulesets.constants import DYNAMIC_TOOL_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

# Executed in the child via ``python -I -c``.  Reads {"source", "payload",
# "context"} from stdin and writes {"ok": true, "result": ...} or
# {"ok": false, "error": "..."} to stdout.
_RUNNER = r"""
import json, sys, textwrap

def _main():
    request = json.load(sys.stdin)
    body = textwrap.indent(request["source"], "    ") or "    pass"
    code = "def __tool__(payload, context):\n" + body + "\n"
    scope = {}
    try:
        exec(compile(code, "<dynamic-tool>", "exec"), scope)
        result = scope["__tool__"](request["payload"], request["context"])
    except Exception as exc:
        json.dump({"ok": False, "error": f"{type(exc).__name__}: {exc}"}, sys.stdout)
        return
    json.dump({"ok": True, "result": result}, sys.stdout, default=str)

_main()
"""


class SandboxError(RuntimeError):
    """The dynamic tool raised, crashed or produced unreadable output."""


def get_last_lines(text: str, n: int = 5) -> list[str]:
    lines = text.strip().split("\n")
    return lines[-n:] if len(lines) > n else lines


class SubprocessSandbox:
    """Executes dynamic tool bodies out of process.

    Args:
        timeout_seconds: hard wall-clock limit per run
        python_executable: interpreter to launch (default: ``sys.executable``)
    """

    def __init__(
        self,
        timeout_seconds: float = DYNAMIC_TOOL_TIMEOUT_SECONDS,
        python_executable: str | None = None,
    ) -> None:
        self._timeout = timeout_seconds
        self._python = python_executable or sys.executable

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    async def run(
        self,
        source: str,
        payload: Mapping[str, Any],
        context: Mapping[str, Any],
    ) -> Any:
        """Run *source* and return whatever the body returned.

        Raises:
            asyncio.TimeoutError: the body exceeded the timeout (the child
                has been killed).
            SandboxError: the body raised or the child exited abnormally.
        """
        request = json.dumps(
            {"source": source, "payload": dict(payload), "context": dict(context)},
            default=str,
        ).encode("utf-8")

        with tempfile.TemporaryDirectory(prefix="intake-tool-") as workdir:
            proc = await asyncio.create_subprocess_exec(
                self._python,
                "-I",
                "-c",
                _RUNNER,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={},
                cwd=workdir,
            )
            try:
                stdout, stderr = await asyncio.wait_for(
                    proc.communicate(request), timeout=self._timeout
                )
            finally:
                # Covers both our own timeout and cancellation from outside
                if proc.returncode is None:
                    proc.kill()
                    await proc.wait()
                    logger.warning(
                        "Dynamic tool process %s killed before completion", proc.pid
                    )

        return self._read_response(proc.returncode, stdout, stderr)

    @staticmethod
    def _read_response(returncode: int | None, stdout: bytes, stderr: bytes) -> Any:
        out = stdout.decode("utf-8", errors="replace").strip()
        if not out:
            detail = " | ".join(get_last_lines(stderr.decode("utf-8", errors="replace")))
            raise SandboxError(
                f"tool process exited with code {returncode}" + (f": {detail}" if detail else "")
            )
        try:
            response = json.loads(out)
        except json.JSONDecodeError as exc:
            raise SandboxError(f"unreadable tool output: {exc}") from exc
        if not response.get("ok"):
            raise SandboxError(str(response.get("error") or "unknown error"))
        return response.get("result")
