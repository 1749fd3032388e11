from __future__ import annotations

import datetime as dt


def utc_now_naive() -> dt.datetime:
    """Current UTC time as a naive datetime (matches the SQLite schema)."""
    return dt.datetime.now(dt.UTC).replace(tzinfo=None)


def to_utc_naive(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(dt.UTC).replace(tzinfo=None)
