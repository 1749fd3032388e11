from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Any

# leading numeric literal, the rest of the token is ignored ("100.00THB" -> 100.00)
_LEADING_NUMBER_RE = re.compile(r"^\s*([+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?)")
_DIGITS_RE = re.compile(r"^\d+$")

ZERO = Decimal("0")

# no transfer reaches 10**16 THB; anything larger is a misread payload
MAX_AMOUNT_EXPONENT = 15


def is_usable_amount(value: Decimal | None) -> bool:
    """Finite and within MAX_AMOUNT_EXPONENT, safe for Decimal arithmetic."""
    if value is None or not value.is_finite():
        return False
    return value.is_zero() or value.adjusted() <= MAX_AMOUNT_EXPONENT


def parse_decimal(value: Any) -> Decimal | None:
    """
    Lenient decimal parse: numbers pass through, strings are read up to the
    first character that cannot continue a numeric literal.
    Returns None when no number is found or the number is NaN, infinite or
    implausibly large.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        out = value
    elif isinstance(value, (int, float)):
        try:
            out = Decimal(str(value))
        except InvalidOperation:
            return None
    else:
        m = _LEADING_NUMBER_RE.match(str(value))
        if not m:
            return None
        try:
            out = Decimal(m.group(1))
        except InvalidOperation:
            return None
    return out if is_usable_amount(out) else None


def parse_minor_units(raw: str) -> Decimal | None:
    """All-digit amounts carry two implied decimals: "10000" -> 100.00."""
    if not raw or not _DIGITS_RE.match(raw):
        return None
    out = Decimal(int(raw)) / Decimal(100)
    return out if is_usable_amount(out) else None


def is_all_digits(s: str | None) -> bool:
    return bool(s) and bool(_DIGITS_RE.match(s))


def format_amount(value: Decimal | None) -> str:
    if value is None:
        return ""
    return f"{value.quantize(Decimal('0.01'))}"
