"""Schema identifier derivation from an intake document's ``meta`` block."""

from __future__ import annotations

from typing import Any, Mapping

SCHEMA_ID_FIELDS = ("insurer", "form_catalog_number", "form_version_date")


def derive_schema_id(document: Mapping[str, Any] | None) -> str | None:
    """``insurer/form_catalog_number/form_version_date``, or ``None`` if any part is missing."""
    meta = (document or {}).get("meta") if isinstance(document, Mapping) else None
    if not isinstance(meta, Mapping):
        return None
    parts = [str(meta.get(k) or "").strip() for k in SCHEMA_ID_FIELDS]
    if not all(parts):
        return None
    return "/".join(parts)
