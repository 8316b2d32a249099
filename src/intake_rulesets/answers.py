"""AnswerParser — converts free-text answers into typed values.

The conversation layer hands us whatever the customer (or an LLM acting on
their behalf) typed.  Given the question's declared ``data_type`` and
recognised options, :meth:`AnswerParser.parse` returns either a
:class:`ParseSuccess` carrying the typed value or a :class:`ParseFailure`
with a reason code and a Hebrew re-prompt.  Nothing here raises on user
input and nothing here mutates state.

Per data type:

  - **boolean**: yes/no tokens in Hebrew and English, including formal
    register ("חיובי"/"שלילי", "positive"/"negative"), case- and
    diacritic-insensitive, tolerant of quotes and trailing detail
    ("כן. יש לנו מחסן").  Falls back to a leading number when the
    :class:`BooleanPolicy` allows it: "3" / "12 עובדים" → True, "0" → False.
  - **number**: currency symbols stripped; thousands/decimal separators in
    either convention ("1,250,000", "1.250.000", "1 250 000", "12,5");
    ``k``/``אלף`` and ``m``/``מיליון`` suffixes; bounds from the question's
    ``constraints`` string (``min=``, ``max=``, ``step=``, ``>=N``, ``<=N``).
  - **enum**: exact, case-folded, then unique substring match.
  - **array**: comma / newline separated list of enum values.
  - **date**: :func:`intake_rulesets.dates.resolve_date`, windowed for
    policy-start fields or ``min_days=`` / ``max_days=`` constraints.
  - **string**: trimmed passthrough.
"""

from __future__ import annotations

import logging
import math
import re
import unicodedata
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Literal, Sequence, Union

from pydantic import BaseModel

from intake_rulesets.constants import (
    AFFIRMATIVE_TOKENS,
    BOOLEAN_NUMERIC_FALLBACK,
    DATA_TYPES,
    DEFAULT_TIMEZONE,
    NEGATIVE_TOKENS,
    START_DATE_FIELDS,
    START_DATE_MAX_DAYS,
)
from intake_rulesets.dates import resolve_date, today_in_timezone
from intake_rulesets.errors import UnknownDataTypeError

logger = logging.getLogger(__name__)

# --- Reason codes ---
EMPTY_ANSWER = "empty_answer"
UNRECOGNIZED = "unrecognized"
NOT_A_NUMBER = "not_a_number"
OUT_OF_RANGE = "out_of_range"
UNKNOWN_OPTION = "unknown_option"
INVALID_DATE = "invalid_date"

# --- Re-prompt messages ---
MSG_EMPTY = "לא הצלחתי להבין — אפשר לענות שוב בקצרה?"
MSG_BOOLEAN = 'אפשר לענות "כן" או "לא"?'
MSG_NUMBER = "אפשר לכתוב מספר?"
MSG_DATE = "אפשר לכתוב תאריך (למשל 01/03/2026)?"


# =====================================================================
# Result types
# =====================================================================


class ParseSuccess(BaseModel):
    ok: Literal[True] = True
    value: Any


class ParseFailure(BaseModel):
    ok: Literal[False] = False
    reason: str
    message: str


ParseResult = Union[ParseSuccess, ParseFailure]


@dataclass(frozen=True)
class BooleanPolicy:
    """How far the boolean parser may go beyond explicit yes/no tokens.

    Attributes:
        numeric_fallback: accept a leading number ("3", "12 employees")
        max_numeric_value: numbers above this are not treated as a yes
            (``None`` = unbounded)
    """

    numeric_fallback: bool = BOOLEAN_NUMERIC_FALLBACK
    max_numeric_value: float | None = None


# =====================================================================
# Text helpers
# =====================================================================

_QUOTE_CHARS = "\"'“”׳״`"
_LEADING_NOISE_RE = re.compile(rf"^[\s{_QUOTE_CHARS}]+")
_TOKEN_BOUNDARY = r"(?=$|[\s,.:;!?()\[\]{}\-–—" + _QUOTE_CHARS + "])"


def fold(text: str) -> str:
    """Case-fold and strip combining marks (Latin accents, Hebrew niqqud)."""
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return unicodedata.normalize("NFC", stripped).casefold()


def _alternation(tokens: Sequence[str]) -> str:
    # Longest first so "yes" wins over "y"
    return "|".join(re.escape(t) for t in sorted(tokens, key=len, reverse=True))


_BOOLEAN_HEAD_RE = re.compile(
    rf"^({_alternation(AFFIRMATIVE_TOKENS + NEGATIVE_TOKENS)}){_TOKEN_BOUNDARY}"
)
_LEADING_NUMBER_RE = re.compile(r"^\+?(\d+(?:[.,]\d+)?)")


def parse_boolean(raw: str, policy: BooleanPolicy | None = None) -> bool | None:
    """Parse a yes/no answer; ``None`` if unrecognised."""
    policy = policy or BooleanPolicy()
    head = _LEADING_NOISE_RE.sub("", fold(raw or "")).strip()
    if not head:
        return None

    m = _BOOLEAN_HEAD_RE.match(head)
    if m:
        return m.group(1) in AFFIRMATIVE_TOKENS

    if not policy.numeric_fallback:
        return None
    m = _LEADING_NUMBER_RE.match(head)
    if not m:
        return None
    number = float(m.group(1).replace(",", "."))
    if policy.max_numeric_value is not None and number > policy.max_numeric_value:
        return None
    return number != 0


# --- Numbers ---

_CURRENCY_RE = re.compile(r"₪|ש\"ח|ש״ח|\bnis\b|\bils\b|\$|€", re.IGNORECASE)
_NUMBER_RUN_RE = re.compile(
    r"-?\d{1,3}(?:[  '’]\d{3})+(?:[.,]\d+)?(?!\d)"
    r"|-?\d[\d,.]*\d"
    r"|-?\d"
)
_THOUSANDS_COMMA_RE = re.compile(r"^-?\d{1,3}(?:,\d{3})+$")
_THOUSANDS_DOT_RE = re.compile(r"^-?\d{1,3}(?:\.\d{3}){2,}$")
_MULTIPLIERS: tuple[tuple[re.Pattern[str], int], ...] = (
    (re.compile(r"^(?:k\b|אלף|אלפים)", re.IGNORECASE), 1_000),
    (re.compile(r"^(?:m\b|mil\b|מיליון|מליון)", re.IGNORECASE), 1_000_000),
)


def _normalise_separators(run: str) -> str:
    s = re.sub(r"[  '’]", "", run)
    has_comma, has_dot = "," in s, "." in s
    if has_comma and has_dot:
        # Whichever comes last is the decimal separator
        if s.rfind(",") > s.rfind("."):
            return s.replace(".", "").replace(",", ".")
        return s.replace(",", "")
    if has_comma:
        if _THOUSANDS_COMMA_RE.match(s) or s.count(",") > 1:
            return s.replace(",", "")
        return s.replace(",", ".")
    if has_dot and (_THOUSANDS_DOT_RE.match(s) or s.count(".") > 1):
        return s.replace(".", "")
    return s


def parse_number(raw: str) -> int | float | None:
    """Extract the first number from *raw*; ``None`` if there is none."""
    s = _CURRENCY_RE.sub(" ", raw or "").strip()
    m = _NUMBER_RUN_RE.search(s)
    if not m:
        return None
    try:
        value = float(_normalise_separators(m.group(0)))
    except ValueError:
        return None
    if not math.isfinite(value):
        return None

    rest = s[m.end():].strip()
    for pattern, factor in _MULTIPLIERS:
        if pattern.match(rest):
            value *= factor
            break

    return int(value) if value.is_integer() else value


@dataclass(frozen=True)
class Constraints:
    """Parsed ``constraints`` string of a question."""

    min: float | None = None
    max: float | None = None
    step: float | None = None
    gte: float | None = None
    lte: float | None = None
    min_days: int | None = None
    max_days: int | None = None


_CONSTRAINT_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("min_days", re.compile(r"^min_days\s*(?:=|>=)\s*(-?\d+)$", re.IGNORECASE)),
    ("max_days", re.compile(r"^max_days\s*(?:=|<=)\s*(\d+)$", re.IGNORECASE)),
    ("min", re.compile(r"^min\s*=\s*(\d+(?:\.\d+)?)$", re.IGNORECASE)),
    ("max", re.compile(r"^max\s*=\s*(\d+(?:\.\d+)?)$", re.IGNORECASE)),
    ("step", re.compile(r"^step\s*=\s*(\d+(?:\.\d+)?)$", re.IGNORECASE)),
    ("gte", re.compile(r"^>=\s*(\d+(?:\.\d+)?)$")),
    ("lte", re.compile(r"^<=\s*(\d+(?:\.\d+)?)$")),
)


def parse_constraints(constraints: str | None) -> Constraints:
    """Parse ``"min=500000; max=10000000; step=500000"`` style strings.

    Unknown parts are ignored.
    """
    values: dict[str, float | int] = {}
    for part in (p.strip() for p in (constraints or "").split(";")):
        if not part:
            continue
        for name, pattern in _CONSTRAINT_PATTERNS:
            m = pattern.match(part)
            if m:
                raw = m.group(1)
                values[name] = int(raw) if name.endswith("_days") else float(raw)
                break
    return Constraints(**values)


def _fmt(n: float) -> str:
    return f"{int(n):,}" if float(n).is_integer() else f"{n:,}"


def check_number(n: float, c: Constraints) -> str | None:
    """Return a Hebrew error message if *n* violates *c*, else ``None``."""
    if c.min is not None and n < c.min:
        return f"הסכום חייב להיות לפחות {_fmt(c.min)}"
    if c.gte is not None and n < c.gte:
        return f"הערך חייב להיות לפחות {_fmt(c.gte)}"
    if c.max is not None and n > c.max:
        return f"הסכום חייב להיות עד {_fmt(c.max)}"
    if c.lte is not None and n > c.lte:
        return f"הערך חייב להיות עד {_fmt(c.lte)}"
    if c.step:
        base = c.min if c.min is not None else (c.gte if c.gte is not None else 0)
        ratio = (n - base) / c.step
        if abs(ratio - round(ratio)) > 1e-9:
            return f"הערך חייב להיות במדרגות של {_fmt(c.step)}"
    return None


# --- Options ---

_ENUM_PREFIX_RE = re.compile(r"^(?:כן|yes)\s*[,:.\-–]\s*", re.IGNORECASE)


def parse_enum(raw: str, options: Sequence[str]) -> str | None:
    """Resolve *raw* to one of *options*; ``None`` if absent or ambiguous."""
    s = _ENUM_PREFIX_RE.sub("", (raw or "").strip()).strip()
    if not s:
        return None
    if s in options:
        return s

    folded = fold(s)
    for option in options:
        if fold(option) == folded:
            return option

    matches = [o for o in options if folded in fold(o) or fold(o) in folded]
    if len(matches) == 1:
        return matches[0]
    return None


def parse_multi_select(raw: str, options: Sequence[str]) -> list[str] | None:
    """Resolve a comma / newline separated list; ``None`` if any part fails."""
    parts = [p.strip() for p in re.split(r"[,\n]", raw or "") if p.strip()]
    if not parts:
        return None
    resolved: list[str] = []
    for part in parts:
        value = parse_enum(part, options)
        if value is None:
            return None
        if value not in resolved:
            resolved.append(value)
    return resolved


def _format_dmy(d: date) -> str:
    return d.strftime("%d/%m/%Y")


# =====================================================================
# Parser
# =====================================================================


class AnswerParser:
    """Stateless answer parser bound to a timezone and boolean policy.

    Args:
        timezone: IANA zone anchoring "today" for date answers
        boolean_policy: numeric-fallback policy for boolean answers
        start_date_max_days: window length for policy start dates
        clock: returns the current instant; injected by tests
    """

    def __init__(
        self,
        *,
        timezone: str = DEFAULT_TIMEZONE,
        boolean_policy: BooleanPolicy | None = None,
        start_date_max_days: int = START_DATE_MAX_DAYS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._timezone = timezone
        self._boolean_policy = boolean_policy or BooleanPolicy()
        self._start_date_max_days = start_date_max_days
        self._clock = clock

    @property
    def timezone(self) -> str:
        return self._timezone

    def today(self) -> date:
        now = self._clock() if self._clock is not None else None
        return today_in_timezone(self._timezone, now)

    def parse(
        self,
        raw_text: str | None,
        data_type: str,
        options: Sequence[str] = (),
        *,
        constraints: str | None = None,
        field_key: str | None = None,
    ) -> ParseResult:
        """Parse *raw_text* as *data_type*.

        Raises:
            UnknownDataTypeError: if *data_type* is not a supported type
                (a ruleset defect, not a user error).
        """
        if data_type not in DATA_TYPES:
            raise UnknownDataTypeError(field_key or "?", data_type)

        raw = str(raw_text or "").strip()
        if not raw:
            return ParseFailure(reason=EMPTY_ANSWER, message=MSG_EMPTY)

        if data_type == "boolean":
            b = parse_boolean(raw, self._boolean_policy)
            if b is None:
                return ParseFailure(reason=UNRECOGNIZED, message=MSG_BOOLEAN)
            return ParseSuccess(value=b)

        if data_type == "number":
            n = parse_number(raw)
            if n is None:
                return ParseFailure(reason=NOT_A_NUMBER, message=MSG_NUMBER)
            error = check_number(n, parse_constraints(constraints))
            if error:
                return ParseFailure(reason=OUT_OF_RANGE, message=error)
            return ParseSuccess(value=n)

        if data_type == "enum":
            v = parse_enum(raw, options)
            if v is None:
                message = (
                    f"אפשר לבחור אחת מהאפשרויות: {', '.join(options)}"
                    if options
                    else "אפשר לבחור אחת מהאפשרויות?"
                )
                return ParseFailure(reason=UNKNOWN_OPTION, message=message)
            return ParseSuccess(value=v)

        if data_type == "array":
            values = parse_multi_select(raw, options)
            if values is None:
                message = (
                    f"אפשר לבחור אחת או יותר מהאפשרויות: {', '.join(options)}"
                    if options
                    else "אפשר לבחור אחת או יותר מהאפשרויות?"
                )
                return ParseFailure(reason=UNKNOWN_OPTION, message=message)
            return ParseSuccess(value=values)

        if data_type == "date":
            return self._parse_date(raw, constraints, field_key)

        return ParseSuccess(value=raw)

    def _parse_date(
        self, raw: str, constraints: str | None, field_key: str | None
    ) -> ParseResult:
        today = self.today()
        c = parse_constraints(constraints)
        min_date: date | None = None
        max_date: date | None = None
        if c.min_days is not None or c.max_days is not None:
            min_date = today + timedelta(days=c.min_days or 0)
            if c.max_days is not None:
                max_date = today + timedelta(days=c.max_days)
        elif field_key in START_DATE_FIELDS:
            min_date = today
            max_date = today + timedelta(days=self._start_date_max_days)

        resolved = resolve_date(raw, today, min_date=min_date, max_date=max_date)
        if resolved is not None:
            return ParseSuccess(value=resolved)

        if min_date is not None and max_date is not None:
            message = (
                f"אפשר לבחור תאריך בין {_format_dmy(min_date)} "
                f"ל-{_format_dmy(max_date)}?"
            )
        else:
            message = MSG_DATE
        logger.debug("Date answer rejected for %s: %r", field_key, raw)
        return ParseFailure(reason=INVALID_DATE, message=message)
