"""``insurance.companyLookup`` — Israeli company registry (ח"פ) lookup.

Queries the Companies Registrar dataset on data.gov.il (a CKAN
``datastore_search`` endpoint).  Record fields are Hebrew column names;
the tool maps the ones the questionnaire uses onto ``business_*`` keys.

The registry never overrides the customer.  A mapped key is filled only
when the conversation has no value for it yet; otherwise the registry's
value is kept aside as ``business_registry_suggested_<name>``.  Keys in
the ``business_registry_`` namespace belong to the registry and are
always refreshed.

Besides the mapped fields the tool scores the registry name against the
declared business name and raises red flags for underwriting:

  - ``company_not_active`` / ``company_status_not_active`` — status is not
    active (resp. not exactly "פעילה")
  - ``company_is_violator`` — the registrar lists the company as a violator
  - ``annual_report_not_recent`` / ``annual_report_year_missing`` — the last
    filed annual report is older than two years, or unknown (public
    companies report to the stock exchange and are exempt)
  - ``name_mismatch`` — name match confidence below 0.7

A failed lookup is not fatal for the conversation: the tool succeeds with
``found: false`` and a ``reason`` so the flow can fall back to asking.
"""

from __future__ import annotations

import json
import logging
import re
import unicodedata
from typing import Any, Literal, Mapping, Optional

import httpx
from pydantic import BaseModel, Field

from intake_rulesets.dates import today_in_timezone
from intake_rulesets.evaluator import is_present
from intake_rulesets.tools.builtin import BuiltinDeps
from intake_rulesets.tools.result import ToolContext, ToolResult

logger = logging.getLogger(__name__)

MIN_COMPANY_NUMBER_DIGITS = 7

REGISTRY_PREFIX = "business_registry_"
SUGGESTED_PREFIX = "business_registry_suggested_"

# Registry column → saved variable
RECORD_FIELDS: dict[str, str] = {
    "שם חברה": "business_name",
    "שם באנגלית": "business_name_en",
    "סטטוס חברה": "business_registry_status",
    "תאריך התאגדות": "business_incorporation_date",
    "סוג תאגיד": "business_legal_entity_type",
    "שם עיר": "business_city",
    "שם רחוב": "business_street",
    "מספר בית": "business_house_number",
    "מיקוד": "business_zip",
    "ת.ד.": "business_po_box",
}

NAME_COLUMN = "שם חברה"
STATUS_COLUMN = "סטטוס חברה"
ENTITY_TYPE_COLUMN = "סוג תאגיד"
VIOLATOR_COLUMN = "מפרה"
VIOLATOR_CODE_COLUMN = "קוד חברה מפרה"
ANNUAL_REPORT_COLUMN = "שנה אחרונה של דוח שנתי (שהוגש)"

ACTIVE_STATUS = "פעילה"
PUBLIC_COMPANY_TYPE = "חברה ציבורית"
PUBLIC_COMPANY_PREFIX = "52"
NAME_MATCH_THRESHOLD = 0.7
ANNUAL_REPORT_MAX_AGE_YEARS = 2

_NAME_QUOTES = re.compile(r"[“”\"׳״'’`´~]")
_BIDI_MARKS = re.compile(r"[\u200e\u200f]")
_NAME_PUNCT = re.compile(r"[()\[\]{}.,;:!?\\/|]+")
_LEGAL_SUFFIX = re.compile(r"\s+(בעמ|במ|ltd|limited|inc|llc|corp|corporation|co)\s*$", re.IGNORECASE)
_TOKEN_JUNK = re.compile(r"[^\u0590-\u05ffa-z0-9]")
_NAME_STOPWORDS = frozenset({"ה", "ו", "של", "the", "and", "of", "co", "company"})

LookupReason = Literal["invalid_company_number", "not_found", "http_error", "parse_error"]


class CompanyLookupResult(BaseModel):
    found: bool
    company_number: str
    reason: Optional[LookupReason] = None
    fields: dict[str, Any] = Field(default_factory=dict)
    record: dict[str, Any] = Field(default_factory=dict)


def normalize_company_number(raw: Any) -> str:
    return re.sub(r"\D", "", str(raw or ""))


def map_record(record: dict[str, Any]) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for column, key in RECORD_FIELDS.items():
        value = record.get(column)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(int(value)) if float(value).is_integer() else str(value)
        if isinstance(value, str) and value.strip():
            fields[key] = value.strip()
    return fields


# ---------------------------------------------------------------------------
# Name matching
# ---------------------------------------------------------------------------


def normalize_company_name(raw: Any) -> str:
    """Fold case, quotes, punctuation and a trailing legal designator (בע"מ, Ltd)."""
    text = unicodedata.normalize("NFKC", str(raw or "")).lower()
    text = _BIDI_MARKS.sub("", _NAME_QUOTES.sub("", text))
    text = " ".join(_NAME_PUNCT.sub(" ", text).split())
    return " ".join(_LEGAL_SUFFIX.sub("", text).split())


def _name_tokens(normalized: str) -> set[str]:
    words = (_TOKEN_JUNK.sub("", w) for w in normalized.split())
    return {w for w in words if len(w) >= 2 and w not in _NAME_STOPWORDS}


def name_match_confidence(declared: Any, registered: Any) -> float:
    """0..1 similarity between the customer's business name and the registry's.

    Equal after normalisation → 1.0; one contains the other (4+ chars) →
    0.9; otherwise the Jaccard similarity of their word tokens.
    """
    a = normalize_company_name(declared)
    b = normalize_company_name(registered)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    if (len(a) >= 4 and a in b) or (len(b) >= 4 and b in a):
        return 0.9
    ta, tb = _name_tokens(a), _name_tokens(b)
    if not ta or not tb:
        return 0.0
    return len(ta & tb) / len(ta | tb)


# ---------------------------------------------------------------------------
# Red flags
# ---------------------------------------------------------------------------


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(float(str(value).strip()))
    except (ValueError, OverflowError):
        return None


def parse_violator(label: Any, code: Any) -> Optional[bool]:
    """The "מפרה" / "לא מפרה" label wins; otherwise a positive violator code."""
    text = str(label or "").strip()
    if "מפרה" in text:
        return "לא" not in text
    number = _as_int(code)
    return None if number is None else number > 0


def last_annual_report_year(record: Mapping[str, Any]) -> Optional[int]:
    year = _as_int(record.get(ANNUAL_REPORT_COLUMN))
    return year if year is not None and 1900 < year < 2200 else None


def assess_record(
    record: Mapping[str, Any],
    *,
    company_number: str,
    declared_name: Any,
    entity_type: Any,
    current_year: int,
) -> dict[str, Any]:
    """Registry signals for underwriting, as ``business_registry_*`` variables."""
    signals: dict[str, Any] = {}
    reasons: list[str] = []

    registered_name = str(record.get(NAME_COLUMN) or "").strip()
    confidence: Optional[float] = None
    if is_present(declared_name) and registered_name:
        confidence = name_match_confidence(declared_name, registered_name)
        signals["business_registry_name_match_confidence"] = round(confidence, 2)
        signals["business_registry_name_match_ok"] = confidence >= NAME_MATCH_THRESHOLD

    status = str(record.get(STATUS_COLUMN) or "").strip()
    is_active = "פעיל" in status and "לא פעיל" not in status
    signals["business_registry_is_active"] = is_active
    if not is_active:
        reasons.append("company_not_active")

    violator = parse_violator(record.get(VIOLATOR_COLUMN), record.get(VIOLATOR_CODE_COLUMN))
    if violator is not None:
        signals["business_registry_is_violator"] = violator
    if violator:
        reasons.append("company_is_violator")

    report_year = last_annual_report_year(record)
    if report_year is not None:
        signals["business_registry_last_annual_report_year"] = report_year
    recent = report_year is not None and report_year >= current_year - ANNUAL_REPORT_MAX_AGE_YEARS

    entity = str(entity_type or record.get(ENTITY_TYPE_COLUMN) or "").strip()
    if entity == PUBLIC_COMPANY_TYPE or company_number.startswith(PUBLIC_COMPANY_PREFIX):
        signals["business_registry_reports_recent_not_applicable"] = True
        signals["business_registry_reports_recent_ok"] = recent if report_year is not None else True
    else:
        signals["business_registry_reports_recent_ok"] = recent
        if report_year is None:
            reasons.append("annual_report_year_missing")
        elif not recent:
            reasons.append("annual_report_not_recent")

    if confidence is not None and confidence < NAME_MATCH_THRESHOLD:
        reasons.append("name_mismatch")
    if status and status != ACTIVE_STATUS:
        reasons.append("company_status_not_active")

    signals["business_registry_red_flags"] = bool(reasons)
    signals["business_registry_red_flag_reasons"] = reasons
    return signals


def split_registry_fields(
    fields: Mapping[str, Any], known: Mapping[str, Any]
) -> tuple[dict[str, Any], dict[str, Any]]:
    """``(fills, suggestions)``: registry values for empty keys, and the rest set aside."""
    fills: dict[str, Any] = {}
    suggestions: dict[str, Any] = {}
    for key, value in fields.items():
        if key.startswith(REGISTRY_PREFIX) or not is_present(known.get(key)):
            fills[key] = value
        elif known.get(key) != value:
            suggestions[SUGGESTED_PREFIX + key.removeprefix("business_")] = value
    return fills, suggestions


class CompanyRegistryClient:
    """Async client for the data.gov.il companies dataset.

    Use as an async context manager; the underlying ``httpx.AsyncClient``
    is closed on exit.
    """

    def __init__(
        self,
        url: str,
        resource_id: str,
        *,
        timeout: float = 8.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._resource_id = resource_id
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "CompanyRegistryClient":
        self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def lookup(self, company_number_raw: Any) -> CompanyLookupResult:
        number = normalize_company_number(company_number_raw)
        if len(number) < MIN_COMPANY_NUMBER_DIGITS:
            return CompanyLookupResult(
                found=False, company_number=number, reason="invalid_company_number"
            )
        if self._client is None:
            raise RuntimeError("CompanyRegistryClient must be used as an async context manager")

        params = {
            "resource_id": self._resource_id,
            "filters": json.dumps({"מספר חברה": int(number)}, ensure_ascii=False),
            "limit": 1,
        }
        try:
            resp = await self._client.get(self._url, params=params)
        except httpx.HTTPError as exc:
            logger.warning("Company registry request failed: %s", exc)
            return CompanyLookupResult(found=False, company_number=number, reason="http_error")

        try:
            body = resp.json()
        except ValueError:
            return CompanyLookupResult(found=False, company_number=number, reason="parse_error")

        if resp.status_code >= 400 or not isinstance(body, dict) or not body.get("success"):
            logger.warning("Company registry returned HTTP %d", resp.status_code)
            return CompanyLookupResult(found=False, company_number=number, reason="http_error")

        records = (body.get("result") or {}).get("records") or []
        if not records or not isinstance(records[0], dict):
            return CompanyLookupResult(found=False, company_number=number, reason="not_found")

        record = records[0]
        return CompanyLookupResult(
            found=True,
            company_number=number,
            fields=map_record(record),
            record=record,
        )


def make_company_lookup(deps: BuiltinDeps):
    settings = deps.settings
    transport = deps.http_transport

    async def company_lookup(payload: dict[str, Any], context: ToolContext) -> ToolResult:
        raw = payload.get("company_number") or payload.get("business_registration_id")
        async with CompanyRegistryClient(
            settings.company_registry_url,
            settings.company_registry_resource_id,
            transport=transport,
        ) as client:
            result = await client.lookup(raw)

        if not result.found:
            logger.info(
                "Conversation %s: company lookup for %r failed (%s)",
                context.conversation_id, result.company_number, result.reason,
            )
            return ToolResult.ok(
                data={"found": False, "reason": result.reason, "company_number": result.company_number},
                save_results={"business_registry_lookup": result.reason},
            )

        fills, suggestions = split_registry_fields(result.fields, payload)
        now = deps.clock() if deps.clock is not None else None
        signals = assess_record(
            result.record,
            company_number=result.company_number,
            declared_name=payload.get("business_name"),
            entity_type=payload.get("business_legal_entity_type"),
            current_year=today_in_timezone(context.timezone, now).year,
        )
        logger.info(
            "Conversation %s: company %s found, filled %s, red flags %s",
            context.conversation_id, result.company_number, sorted(fills),
            signals["business_registry_red_flag_reasons"],
        )
        return ToolResult.ok(
            data={
                "found": True,
                "company_number": result.company_number,
                **result.fields,
                "filled": sorted(fills),
                "red_flag_reasons": signals["business_registry_red_flag_reasons"],
            },
            save_results={
                **fills,
                **suggestions,
                **signals,
                "business_registration_id": result.company_number,
                "business_registry_lookup": "found",
            },
        )

    return company_lookup
