"""Date resolution for free-text answers.

Customers answer date questions in whatever form comes naturally:
"מחר", "תחילת החודש הבא", "12/2", "2026-03-01", "12 במרץ".  This module
normalises such text to ``YYYY-MM-DD`` anchored to "today" in a caller
supplied timezone (default ``Asia/Jerusalem``).

Resolution order:

  1. Hebrew relative phrases — start / middle of next month (1st / 15th),
     start of next week (next Sunday, the Israeli week start)
  2. ISO ``YYYY-MM-DD``
  3. today / tomorrow / day-after-tomorrow (English and Hebrew)
  4. ``DD/MM[/YY[YY]]`` day-first, also with ``.`` or ``-`` separators;
     two-digit years are 20YY; a year-less date already in the past rolls
     forward to next year
  5. ``DD <Hebrew month name> [YYYY]``

Anything that does not resolve — or falls outside the optional window —
yields ``None``; nothing here raises on user input.

The policy start date business rule (today .. today+45 days inclusive) is
:func:`resolve_start_date`.  :func:`derive_policy_end_date` computes the
matching annual end date.
"""

from __future__ import annotations

import calendar
import logging
import re
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from intake_rulesets.constants import DEFAULT_TIMEZONE, START_DATE_MAX_DAYS

logger = logging.getLogger(__name__)

_QUOTES = "\"'“”׳״"
_STRIP_RE = re.compile(rf"^[\s{_QUOTES}]+|[\s{_QUOTES}.!?]+$")

_NEXT_MONTH_START_RE = re.compile(r"^(?:ב)?תחילת\s+החודש\s+(?:הבא|הקרוב)$")
_NEXT_MONTH_MIDDLE_RE = re.compile(r"^(?:ב)?אמצע\s+החודש\s+(?:הבא|הקרוב)$")
_NEXT_WEEK_START_RE = re.compile(r"^(?:ב)?תחילת\s+(?:השבוע|שבוע)\s+(?:הבא|הקרוב)$")
_ISO_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_DAY_MONTH_RE = re.compile(
    r"^(\d{1,2})\s*[/.\-]\s*(\d{1,2})(?:\s*[/.\-]\s*(\d{2,4}))?\s*$"
)

HEBREW_MONTHS: dict[str, int] = {
    "ינואר": 1,
    "פברואר": 2,
    "מרץ": 3,
    "מרס": 3,
    "אפריל": 4,
    "מאי": 5,
    "יוני": 6,
    "יולי": 7,
    "אוגוסט": 8,
    "ספטמבר": 9,
    "אוקטובר": 10,
    "נובמבר": 11,
    "דצמבר": 12,
}
_HEBREW_MONTH_RE = re.compile(
    r"^(\d{1,2})\s*(?:ב|ל)?\s*(" + "|".join(HEBREW_MONTHS) + r")(?:\s*(\d{2,4}))?\s*$"
)

_TODAY_WORDS = {"today", "היום"}
_TOMORROW_WORDS = {"tomorrow", "מחר", "ממחר"}
_DAY_AFTER_WORDS = {"day after tomorrow", "מחרתיים"}

# Python weekday() index of the locale's week start (Sunday).
_WEEK_START_WEEKDAY = 6


# ---------------------------------------------------------------------------
# Calendar helpers
# ---------------------------------------------------------------------------

def today_in_timezone(timezone: str = DEFAULT_TIMEZONE, now: datetime | None = None) -> date:
    """Return the calendar date of *now* (default: the current instant) in *timezone*.

    A naive *now* is interpreted as wall-clock time in *timezone*.
    """
    tz = ZoneInfo(timezone)
    if now is None:
        return datetime.now(tz).date()
    if now.tzinfo is None:
        return now.date()
    return now.astimezone(tz).date()


def to_iso_ymd(year: int, month: int, day: int) -> str | None:
    """Format a calendar date, or ``None`` if it is impossible or out of range."""
    if year < 1900 or year > 2100:
        return None
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def parse_iso_ymd(value: str) -> date | None:
    """Parse a strict ``YYYY-MM-DD`` string."""
    m = _ISO_RE.match(str(value or "").strip())
    if not m:
        return None
    iso = to_iso_ymd(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    return date.fromisoformat(iso) if iso else None


def _first_of_next_month(today: date) -> date:
    if today.month == 12:
        return date(today.year + 1, 1, 1)
    return date(today.year, today.month + 1, 1)


def _add_months(d: date, months: int) -> date:
    """First day of the month *months* after *d*'s month."""
    index = d.year * 12 + (d.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def _end_of_month(d: date) -> date:
    return date(d.year, d.month, calendar.monthrange(d.year, d.month)[1])


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

def resolve_date(
    text: str | None,
    today: date,
    *,
    min_date: date | None = None,
    max_date: date | None = None,
) -> str | None:
    """Resolve free text to ``YYYY-MM-DD`` relative to *today*.

    Args:
        text: the raw answer
        today: anchor date (already converted to the caller's timezone)
        min_date: earliest accepted date (inclusive), or no lower bound
        max_date: latest accepted date (inclusive), or no upper bound

    Returns:
        The ISO date string, or ``None`` if the text does not resolve or
        the date falls outside the window.
    """
    raw = str(text or "").strip()
    if not raw:
        return None

    resolved = _resolve(raw, today)
    if resolved is None:
        logger.debug("Date text did not resolve: %r", raw)
        return None
    if min_date is not None and resolved < min_date:
        logger.debug("Date %s before window start %s", resolved, min_date)
        return None
    if max_date is not None and resolved > max_date:
        logger.debug("Date %s after window end %s", resolved, max_date)
        return None
    return resolved.isoformat()


def _resolve(raw: str, today: date) -> date | None:
    s = _STRIP_RE.sub("", raw).strip()

    # 1. Hebrew relative phrases
    if _NEXT_MONTH_START_RE.match(s):
        return _first_of_next_month(today)
    if _NEXT_MONTH_MIDDLE_RE.match(s):
        return _first_of_next_month(today).replace(day=15)
    if _NEXT_WEEK_START_RE.match(s):
        days = (_WEEK_START_WEEKDAY - today.weekday()) % 7 or 7
        return today + timedelta(days=days)

    # 2. ISO
    if _ISO_RE.match(s):
        return parse_iso_ymd(s)

    # 3. Relative day words
    token = s.lower()
    if token in _TODAY_WORDS:
        return today
    if token in _TOMORROW_WORDS:
        return today + timedelta(days=1)
    if token in _DAY_AFTER_WORDS:
        return today + timedelta(days=2)

    # 4. Day-first numeric
    m = _DAY_MONTH_RE.match(s)
    if m:
        return _from_parts(today, int(m.group(1)), int(m.group(2)), m.group(3))

    # 5. Day + Hebrew month name
    m = _HEBREW_MONTH_RE.match(s)
    if m:
        return _from_parts(today, int(m.group(1)), HEBREW_MONTHS[m.group(2)], m.group(3))

    return None


def _from_parts(today: date, day: int, month: int, year_raw: str | None) -> date | None:
    if year_raw:
        year = int(year_raw)
        if len(year_raw) == 2:
            year += 2000
    else:
        year = today.year

    iso = to_iso_ymd(year, month, day)
    if iso is None:
        return None
    resolved = date.fromisoformat(iso)

    # Year omitted and already past: the customer means next year
    if not year_raw and resolved < today:
        iso = to_iso_ymd(year + 1, month, day)
        if iso is None:
            return None
        resolved = date.fromisoformat(iso)
    return resolved


def resolve_start_date(
    text: str | None,
    timezone: str = DEFAULT_TIMEZONE,
    *,
    now: datetime | None = None,
    max_days: int = START_DATE_MAX_DAYS,
) -> str | None:
    """Resolve a policy start date; accepted window is today .. today+max_days.

    Both window ends are inclusive.  Returns ``None`` for anything else so
    the caller can re-ask.
    """
    today = today_in_timezone(timezone, now)
    return resolve_date(
        text,
        today,
        min_date=today,
        max_date=today + timedelta(days=max_days),
    )


def derive_policy_end_date(start_ymd: str | None) -> str | None:
    """Annual policy end date for a given start date.

    The policy ends at the end of the month closest to the anniversary:
    a start on day 1..15 ends at the end of the month *before* the
    anniversary month (start + 11 months), a start on day 16..31 ends at
    the end of the anniversary month (start + 12 months).
    """
    start = parse_iso_ymd(start_ymd or "")
    if start is None:
        return None
    months = 12 if start.day >= 16 else 11
    end = _end_of_month(_add_months(start, months))
    if end.year > 2100:
        return None
    return end.isoformat()
