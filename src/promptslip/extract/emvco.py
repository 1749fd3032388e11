from __future__ import annotations

import logging
import re
from decimal import Decimal
from typing import Callable, Dict, Optional, Union

log = logging.getLogger(__name__)

# EMVCo payloads open with tag "00" + 2-digit length -> four leading digits
_EMVCO_HEAD_RE = re.compile(r"^\d{4}")
_LENGTH_RE = re.compile(r"^\d{2}$")

TAG_PAYLOAD_FORMAT = "00"
TAG_POI_METHOD = "01"
TAG_PROMPTPAY_MERCHANT = "29"
TAG_CURRENCY = "53"
TAG_AMOUNT = "54"
TAG_COUNTRY = "58"
TAG_ADDITIONAL_DATA = "62"
TAG_CRC = "63"

MERCHANT_ACCOUNT_TAG_RANGE = (26, 51)

PROMPTPAY_AID = "A000000677010111"
THB_CURRENCY_CODE = "764"

TemplatePredicate = Callable[[str], bool]
NestedTagMap = Dict[str, Union[str, "NestedTagMap"]]


def looks_like_emvco(payload: str | None) -> bool:
    return bool(payload) and bool(_EMVCO_HEAD_RE.match(payload))


def is_merchant_account_tag(tag: str) -> bool:
    """Tags 26..51 hold merchant account information templates."""
    try:
        n = int(tag)
    except ValueError:
        return False
    lo, hi = MERCHANT_ACCOUNT_TAG_RANGE
    return lo <= n <= hi


def never_template(_tag: str) -> bool:
    return False


def _scan(payload: str):
    """Yields (tag, value) pairs; stops quietly at the first malformed field."""
    i = 0
    n = len(payload)
    while i < n:
        if i + 4 > n:
            log.debug("EMVCo: incomplete field header at index %s", i)
            return
        tag = payload[i:i + 2]
        length_str = payload[i + 2:i + 4]
        i += 4
        if not _LENGTH_RE.match(length_str):
            log.debug("EMVCo: invalid length %r for tag %s", length_str, tag)
            return
        length = int(length_str)
        if i + length > n:
            log.debug("EMVCo: tag %s declares %s chars, only %s left", tag, length, n - i)
            return
        yield tag, payload[i:i + length]
        i += length


def parse_emvco(payload: str, is_template: TemplatePredicate | None = is_merchant_account_tag) -> Dict[str, str]:
    """
    Decodes an EMVCo merchant-presented QR string into ``tag -> value``.

    Template tags (``is_template``; merchant account info 26..51 by default)
    are parsed one level further and their sub-tags stored as ``"29.01"``.
    Malformed trailing data truncates the result, it never raises.
    Non-EMVCo input (no four leading digits) returns an empty mapping.
    """
    result: Dict[str, str] = {}
    if not looks_like_emvco(payload):
        return result

    for tag, value in _scan(payload):
        result[tag] = value
        if is_template is not None and is_template(tag) and len(value) >= 4:
            for sub_tag, sub_value in parse_emvco(value, never_template).items():
                result[f"{tag}.{sub_tag}"] = sub_value
    return result


def parse_emvco_nested(payload: str, is_template: TemplatePredicate | None = is_merchant_account_tag) -> NestedTagMap:
    """Same traversal as ``parse_emvco`` but templates become nested mappings."""
    result: NestedTagMap = {}
    if not looks_like_emvco(payload):
        return result
    for tag, value in _scan(payload):
        if is_template is not None and is_template(tag) and len(value) >= 4:
            nested = parse_emvco_nested(value, never_template)
            result[tag] = nested if nested else value
        else:
            result[tag] = value
    return result


def crc16_ccitt(data: str) -> str:
    """CRC-16/CCITT-FALSE (init 0xFFFF, poly 0x1021) as 4 upper-case hex digits."""
    crc = 0xFFFF
    for byte in data.encode("utf-8"):
        crc ^= byte << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) ^ 0x1021) & 0xFFFF
            else:
                crc = (crc << 1) & 0xFFFF
    return f"{crc:04X}"


def verify_crc(payload: str) -> bool:
    """True when the payload ends with a tag 63 CRC that matches its content."""
    if not payload or len(payload) < 8 or payload[-8:-4] != TAG_CRC + "04":
        return False
    return crc16_ccitt(payload[:-4]) == payload[-4:].upper()


def _field(tag: str, value: str) -> str:
    if len(value) > 99:
        raise ValueError(f"EMVCo field {tag} too long ({len(value)} chars)")
    return f"{tag}{len(value):02d}{value}"


def _promptpay_target(target: str) -> tuple[str, str]:
    digits = re.sub(r"\D", "", target or "")
    if not digits:
        raise ValueError("PromptPay target must contain digits")
    if len(digits) >= 15:
        return "03", digits  # e-wallet id
    if len(digits) >= 13:
        return "02", digits  # national / tax id
    # mobile number: leading 0 -> country code 66, left padded to 13
    phone = re.sub(r"^0", "66", digits)
    return "01", phone.rjust(13, "0")[-13:]


def build_promptpay_payload(target: str, amount: Optional[Decimal] = None) -> str:
    """
    Builds the PromptPay QR payload the payer scans.

    Without an amount the code is static (POI 11), with one it is dynamic
    (POI 12) and carries tag 54 formatted with two decimals.
    """
    sub_tag, account = _promptpay_target(target)
    merchant = _field("00", PROMPTPAY_AID) + _field(sub_tag, account)
    parts = [
        _field(TAG_PAYLOAD_FORMAT, "01"),
        _field(TAG_POI_METHOD, "12" if amount else "11"),
        _field(TAG_PROMPTPAY_MERCHANT, merchant),
        _field(TAG_COUNTRY, "TH"),
        _field(TAG_CURRENCY, THB_CURRENCY_CODE),
    ]
    if amount:
        parts.append(_field(TAG_AMOUNT, f"{Decimal(amount).quantize(Decimal('0.01'))}"))
    data = "".join(parts) + TAG_CRC + "04"
    return data + crc16_ccitt(data)
