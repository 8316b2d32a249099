"""Minimal json_path helpers for writing answers into the form document.

Supports dot notation (``a.b.c``) and bracket indices
(``locations[0].address.city``).  Intermediate containers are created on
write: a dict, or a list when the next segment is an index.
"""

from __future__ import annotations

import re
from typing import Any

_SEGMENT_RE = re.compile(r"([^\[.\]]+)|\[(\d+)\]")


def parse_path(path: str) -> list[str | int]:
    """Split *path* into key / index segments."""
    segments: list[str | int] = []
    for m in _SEGMENT_RE.finditer(path or ""):
        if m.group(1) is not None:
            segments.append(m.group(1))
        else:
            segments.append(int(m.group(2)))
    return segments


def get_by_path(obj: Any, path: str) -> Any:
    """Read the value at *path*, or ``None`` if any segment is missing."""
    cur = obj
    for seg in parse_path(path):
        if cur is None:
            return None
        if isinstance(seg, int):
            if not isinstance(cur, list) or seg >= len(cur):
                return None
            cur = cur[seg]
        else:
            if not isinstance(cur, dict):
                return None
            cur = cur.get(seg)
    return cur


def set_by_path(obj: dict[str, Any], path: str, value: Any) -> None:
    """Write *value* at *path*, creating intermediate containers."""
    segments = parse_path(path)
    if not segments:
        raise ValueError(f"Empty json_path: {path!r}")

    cur: Any = obj
    for seg, nxt in zip(segments, segments[1:]):
        child = _get_child(cur, seg)
        if child is None:
            child = [] if isinstance(nxt, int) else {}
            _set_child(cur, seg, child)
        cur = child
    _set_child(cur, segments[-1], value)


def _get_child(container: Any, seg: str | int) -> Any:
    if isinstance(seg, int):
        return container[seg] if seg < len(container) else None
    return container.get(seg)


def _set_child(container: Any, seg: str | int, value: Any) -> None:
    if isinstance(seg, int):
        # Pad with None so index assignment works on short lists
        while len(container) <= seg:
            container.append(None)
    container[seg] = value
