"""Segment inference — obvious questionnaire defaults from business text.

Conservative heuristics that fill values a customer would otherwise be
asked about redundantly.  They only fire on unambiguous wording and never
touch underwriting figures:

  - legal practices (עו"ד / עורך דין) → office premises and professional
    liability cover
  - online-only businesses → no physical premises
"""

from __future__ import annotations

import re
from typing import Any, Mapping

LEGAL_SERVICES_HE = "שירותים משפטיים"

_LAWYER_RE = re.compile(r"עו[\"״׳']?ד|עורך\s*דין|משרד\s*עו[\"״׳']?ד", re.IGNORECASE)
_ONLINE_RE = re.compile(r"ללא\s*מקום\s*פיזי|אונליין|online|דיגיטל|digital", re.IGNORECASE)


def _text(value: Any) -> str:
    return str(value if value is not None else "").strip()


def segment_text(user_data: Mapping[str, Any]) -> str:
    """Join the segment / activity fields into one matchable string."""
    parts = [
        _text(user_data.get("segment_name_he") or user_data.get("segment_description")),
        _text(user_data.get("segment_group_name_he") or user_data.get("segment_group_id")),
        _text(user_data.get("business_used_for")),
        _text(
            user_data.get("business_activity_and_products")
            or user_data.get("business_occupation")
        ),
    ]
    return " | ".join(p for p in parts if p)


def infer_segment_defaults(user_data: Mapping[str, Any]) -> dict[str, Any] | None:
    """Infer questionnaire values from segment text; ``None`` if nothing applies."""
    text = segment_text(user_data)
    if not text:
        return None

    if _LAWYER_RE.search(text):
        used_for = _text(user_data.get("business_used_for"))
        activity = _text(
            user_data.get("business_activity_and_products")
            or user_data.get("business_occupation")
        )
        return {
            "has_physical_premises": True,
            "business_site_type": ["משרד"],
            "business_used_for": used_for or LEGAL_SERVICES_HE,
            "business_activity_and_products": activity or LEGAL_SERVICES_HE,
            "professional_liability_selected": True,
        }

    if _ONLINE_RE.search(text):
        return {"has_physical_premises": False}

    return None
