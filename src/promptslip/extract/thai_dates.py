from __future__ import annotations

import datetime as dt
import re

from dateutil import parser as dtparser
from dateutil import tz

BANGKOK_TZ_NAME = "Asia/Bangkok"
BUDDHIST_ERA_OFFSET = 543

# d/m/25yy as printed on Thai bank slips
BUDDHIST_SLASH_DATE_RE = re.compile(r"\d{1,2}/\d{1,2}/25\d{2}")
_BUDDHIST_YEAR_RE = re.compile(r"(?<!\d)(25\d{2})(?!\d)")


def bangkok_tz() -> dt.tzinfo:
    zone = tz.gettz(BANGKOK_TZ_NAME)
    # tz database missing entirely: Bangkok has no DST, a fixed offset is exact
    return zone or dt.timezone(dt.timedelta(hours=7), BANGKOK_TZ_NAME)


def has_buddhist_year(text: str | None) -> bool:
    return bool(text) and bool(_BUDDHIST_YEAR_RE.search(text))


def normalize_buddhist_year(text: str) -> str:
    """Rewrites the first 25xx year to Gregorian: "15/03/2568" -> "15/03/2025"."""
    if not text:
        return text

    def _to_gregorian(m: re.Match) -> str:
        return str(int(m.group(1)) - BUDDHIST_ERA_OFFSET)

    return _BUDDHIST_YEAR_RE.sub(_to_gregorian, text, count=1)


def thai_locale_now(now: dt.datetime | None = None) -> str:
    """
    Current Bangkok time in the th-TH short format, e.g. "15/3/2568 14:05:09".
    The year stays Buddhist era, same as the locale renders it.
    """
    cur = (now or dt.datetime.now(dt.UTC)).astimezone(bangkok_tz())
    return (
        f"{cur.day}/{cur.month}/{cur.year + BUDDHIST_ERA_OFFSET} "
        f"{cur.hour}:{cur.minute:02d}:{cur.second:02d}"
    )


def parse_slip_datetime(text: str | None) -> dt.datetime | None:
    """
    Parses a slip date/time string into an aware datetime (Bangkok time when the
    string carries no zone). Buddhist-era years are normalized first.
    Returns None for empty or unparseable input.
    """
    if not text or not text.strip():
        return None
    s = normalize_buddhist_year(text.strip())
    try:
        parsed = dt.datetime.fromisoformat(s)
    except ValueError:
        try:
            # slips print day first ("15/03/2025")
            parsed = dtparser.parse(s, dayfirst=True)
        except (ValueError, OverflowError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=bangkok_tz())
    return parsed
