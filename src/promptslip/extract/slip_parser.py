from __future__ import annotations

import dataclasses
import json
import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, List, NamedTuple, Optional
from urllib.parse import parse_qs, urlsplit

from promptslip.extract.emvco import (
    TAG_ADDITIONAL_DATA,
    TAG_AMOUNT,
    TAG_COUNTRY,
    is_merchant_account_tag,
    looks_like_emvco,
    never_template,
    parse_emvco,
)
from promptslip.extract.thai_dates import (
    BUDDHIST_SLASH_DATE_RE,
    has_buddhist_year,
    normalize_buddhist_year,
    thai_locale_now,
)
from promptslip.utils.amounts import ZERO, is_all_digits, parse_decimal, parse_minor_units

log = logging.getLogger(__name__)

# tag 62 (additional data) sub-fields
REFERENCE_SUB_TAGS = ("01", "05", "07")
TRANSACTION_ID_SUB_TAGS = ("08", "09")
DATETIME_SUB_KEY = f"{TAG_ADDITIONAL_DATA}.07"

_AMOUNT_PATTERNS = [
    re.compile(r"amount[:\s]*(\d+(?:\.\d{2})?)", re.IGNORECASE),
    re.compile(r"จำนวน[:\s]*(\d+(?:\.\d{2})?)", re.IGNORECASE),
    re.compile(r"amt[:\s]*(\d+(?:\.\d{2})?)", re.IGNORECASE),
    re.compile(r"(\d+\.\d{2})"),
]
_DATE_PATTERNS = [
    re.compile(r"date[:\s]*(\S+\s+\S+)", re.IGNORECASE),
    re.compile(r"วันที่[:\s]*(\S+)", re.IGNORECASE),
    re.compile(r"(\d{1,2}/\d{1,2}/25\d{2})"),
    re.compile(r"(\d{4}-\d{2}-\d{2})"),
]
_TIME_RE = re.compile(r"(\d{1,2}:\d{2}(?::\d{2})?)")
_ACCOUNT_PATTERNS = [
    re.compile(r"account[:\s]*(.+)", re.IGNORECASE),
    re.compile(r"receiver[:\s]*(.+)", re.IGNORECASE),
    re.compile(r"ผู้รับ[:\s]*(.+)", re.IGNORECASE),
    re.compile(r"to[:\s]*(.+)", re.IGNORECASE),
]
_TRANSACTION_PATTERNS = [
    re.compile(r"ref[:\s]*(\S+)", re.IGNORECASE),
    re.compile(r"transaction[:\s]*(\S+)", re.IGNORECASE),
    re.compile(r"txn[:\s]*(\S+)", re.IGNORECASE),
    re.compile(r"id[:\s]*(\S+)", re.IGNORECASE),
]


@dataclass(frozen=True)
class SlipData:
    """
    Normalized slip content. ``amount == 0`` means extraction failed and must
    not be treated as a zero-value transfer.
    """

    amount: Decimal = ZERO
    date_time: str = ""
    account_name: str = ""
    transaction_id: Optional[str] = None
    reference: Optional[str] = None

    @property
    def has_amount(self) -> bool:
        return self.amount != ZERO

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount": float(self.amount),
            "dateTime": self.date_time,
            "accountName": self.account_name,
            "transactionId": self.transaction_id or "",
            "reference": self.reference or "",
        }


@dataclass(frozen=True)
class SlipFields:
    """Partial result of one strategy; None = not found by that strategy."""

    amount: Optional[Decimal] = None
    date_time: Optional[str] = None
    account_name: Optional[str] = None
    transaction_id: Optional[str] = None
    reference: Optional[str] = None

    @property
    def has_amount(self) -> bool:
        return self.amount is not None and self.amount != ZERO

    def fill_from(self, other: "SlipFields") -> "SlipFields":
        """Takes values from ``other`` only where this one has nothing yet."""
        updates = {
            f.name: getattr(other, f.name)
            for f in dataclasses.fields(self)
            if not getattr(self, f.name) and getattr(other, f.name)
        }
        return dataclasses.replace(self, **updates) if updates else self

    def override_with(self, other: "SlipFields") -> "SlipFields":
        """Values present in ``other`` replace existing ones."""
        updates = {f.name: getattr(other, f.name) for f in dataclasses.fields(self) if getattr(other, f.name)}
        return dataclasses.replace(self, **updates) if updates else self

    def to_slip_data(self) -> SlipData:
        return SlipData(
            amount=self.amount if self.amount is not None else ZERO,
            date_time=(self.date_time or "").strip(),
            account_name=self.account_name or "",
            transaction_id=self.transaction_id or None,
            reference=self.reference or None,
        )


StrategyFn = Callable[[str, SlipFields], Optional[SlipFields]]


class Strategy(NamedTuple):
    name: str
    applies: Callable[[str, SlipFields], bool]
    run: StrategyFn
    overrides: bool = False


def _first_non_empty(values) -> Optional[str]:
    for v in values:
        if v:
            return v
    return None


def extract_emvco(payload: str, current: SlipFields = SlipFields()) -> Optional[SlipFields]:
    tags = parse_emvco(payload)
    if not tags:
        return None

    amount: Optional[Decimal] = None
    raw_amount = tags.get(TAG_AMOUNT)
    if raw_amount:
        amount = parse_minor_units(raw_amount) if is_all_digits(raw_amount) else parse_decimal(raw_amount)
        log.debug("EMVCo amount %s (raw %r)", amount, raw_amount)

    # tag 62 is not a merchant template, its sub-fields need a second parse
    additional: Dict[str, str] = {}
    if tags.get(TAG_ADDITIONAL_DATA):
        additional = parse_emvco(tags[TAG_ADDITIONAL_DATA], never_template)
    reference = _first_non_empty(additional.get(t) for t in REFERENCE_SUB_TAGS)
    transaction_id = _first_non_empty(additional.get(t) for t in TRANSACTION_ID_SUB_TAGS)

    account_name = None
    for key, value in tags.items():
        parent, _, sub = key.partition(".")
        if not sub or not is_merchant_account_tag(parent):
            continue
        if value and len(value) > 2 and not is_all_digits(value):
            account_name = value
            break

    date_time = additional.get("07") or tags.get(TAG_COUNTRY) or ""
    if date_time and BUDDHIST_SLASH_DATE_RE.search(date_time):
        date_time = normalize_buddhist_year(date_time)
    if not date_time:
        date_time = thai_locale_now()

    return SlipFields(
        amount=amount,
        date_time=date_time,
        account_name=account_name,
        transaction_id=transaction_id,
        reference=reference,
    )


def extract_json(payload: str, current: SlipFields = SlipFields()) -> Optional[SlipFields]:
    try:
        obj = json.loads(payload)
    except ValueError:
        return None
    if not isinstance(obj, dict):
        return None

    date_time = current.date_time
    if obj.get("date"):
        date_time = str(obj["date"])
    if obj.get("time"):
        date_time = f"{date_time or ''} {obj['time']}"
    return SlipFields(
        amount=parse_decimal(obj["amount"]) if obj.get("amount") else None,
        date_time=date_time,
        account_name=str(obj["account"]) if obj.get("account") else None,
        transaction_id=str(obj["transactionId"]) if obj.get("transactionId") else None,
        reference=str(obj["ref"]) if obj.get("ref") else None,
    )


def _first_match(patterns: List[re.Pattern], line: str) -> Optional[str]:
    for pattern in patterns:
        m = pattern.search(line)
        if m:
            return m.group(1) if m.lastindex else m.group(0)
    return None


def extract_text_lines(payload: str, current: SlipFields = SlipFields()) -> Optional[SlipFields]:
    """Line-by-line regex scan; the first matching line wins per field."""
    lines = [ln.strip() for ln in payload.splitlines() if ln.strip()]
    if not lines:
        return None

    amount: Optional[Decimal] = None
    date_time = current.date_time or ""
    account_name: Optional[str] = None
    transaction_id: Optional[str] = None

    for line in lines:
        if amount is None:
            hit = _first_match(_AMOUNT_PATTERNS, line)
            if hit:
                amount = parse_decimal(hit)

        if not date_time:
            hit = _first_match(_DATE_PATTERNS, line)
            if hit:
                date_time = normalize_buddhist_year(hit) if has_buddhist_year(hit) else hit

        if ":" not in date_time:
            m = _TIME_RE.search(line)
            if m:
                date_time = f"{date_time} {m.group(1)}"

        if account_name is None:
            hit = _first_match(_ACCOUNT_PATTERNS, line)
            if hit:
                account_name = hit.strip()

        if transaction_id is None:
            transaction_id = _first_match(_TRANSACTION_PATTERNS, line)

    return SlipFields(
        amount=amount,
        date_time=date_time.strip() or None,
        account_name=account_name,
        transaction_id=transaction_id,
    )


def extract_url(payload: str, current: SlipFields = SlipFields()) -> Optional[SlipFields]:
    parts = urlsplit(payload.strip())
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"not an absolute URL: {payload[:80]!r}")
    params = {k: v[0] for k, v in parse_qs(parts.query, keep_blank_values=False).items() if v}

    date_time = params.get("date") or current.date_time
    if params.get("time"):
        date_time = f"{date_time or ''} {params['time']}"
    return SlipFields(
        amount=parse_decimal(params["amount"]) if params.get("amount") else None,
        date_time=date_time if (params.get("date") or params.get("time")) else None,
        account_name=params.get("account"),
        reference=params.get("ref"),
    )


def _amount_missing(_payload: str, current: SlipFields) -> bool:
    return not current.has_amount


def _url_like(payload: str, _current: SlipFields) -> bool:
    return payload.startswith("http") or "promptpay" in payload


STRATEGIES: List[Strategy] = [
    Strategy("emvco", lambda payload, _cur: looks_like_emvco(payload), extract_emvco),
    Strategy("json", _amount_missing, extract_json),
    Strategy("text", _amount_missing, extract_text_lines),
    # applied whenever the payload looks like a link, even after EMVCo succeeded
    Strategy("url", _url_like, extract_url, overrides=True),
]


def extract_slip_data(payload: str, strategies: List[Strategy] | None = None) -> SlipData:
    """
    Runs the extraction strategies in order and merges their partial results.
    Never raises: a strategy that fails is logged and skipped, total failure
    yields ``SlipData`` with amount 0.
    """
    current = SlipFields()
    if not payload:
        log.warning("Slip payload is empty")
        return current.to_slip_data()

    log.debug("Parsing slip payload: %s", payload[:100])
    for strategy in strategies if strategies is not None else STRATEGIES:
        if not strategy.applies(payload, current):
            continue
        try:
            found = strategy.run(payload, current)
        except Exception as exc:
            log.warning("Slip strategy %s failed: %s", strategy.name, exc)
            continue
        if found is None:
            continue
        current = current.override_with(found) if strategy.overrides else current.fill_from(found)
        log.debug("Slip strategy %s -> %s", strategy.name, found)

    slip = current.to_slip_data()
    if not slip.has_amount:
        log.warning("Failed to extract amount from slip payload: %s", payload[:200])
    return slip
