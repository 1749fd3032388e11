from __future__ import annotations

import enum
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from promptslip.extract.slip_parser import SlipData
from promptslip.utils.amounts import ZERO, is_usable_amount
from promptslip.verify.errors import AmountMismatchError, NoQrFoundError, ParseFailedError

DEFAULT_TOLERANCE = Decimal("0.01")
VERIFICATION_METHOD = "QR_CODE"
EXCERPT_LIMIT = 200


class Outcome(str, enum.Enum):
    VERIFIED = "VERIFIED"
    AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
    NO_QR_FOUND = "NO_QR_FOUND"
    PARSE_FAILED = "PARSE_FAILED"


def excerpt(payload: Optional[str], limit: int = EXCERPT_LIMIT) -> Optional[str]:
    if payload is None:
        return None
    return payload if len(payload) <= limit else payload[:limit] + "..."


@dataclass(frozen=True)
class VerificationResult:
    outcome: Outcome
    expected: Decimal
    slip: Optional[SlipData] = None
    transaction_ref: Optional[str] = None
    payload_excerpt: Optional[str] = None

    @property
    def verified(self) -> bool:
        return self.outcome is Outcome.VERIFIED

    @property
    def found(self) -> Optional[Decimal]:
        return self.slip.amount if self.slip is not None else None

    def raise_for_outcome(self) -> None:
        """Raises the error matching a non-VERIFIED outcome."""
        if self.outcome is Outcome.NO_QR_FOUND:
            raise NoQrFoundError("No QR code found in slip image")
        if self.outcome is Outcome.PARSE_FAILED:
            raise ParseFailedError("Unable to extract valid amount from QR code", self.payload_excerpt)
        if self.outcome is Outcome.AMOUNT_MISMATCH:
            raise AmountMismatchError(self.expected, self.found if self.found is not None else ZERO)

    def to_response(self) -> Dict[str, Any]:
        """JSON-ready body in the shape the top-up API returns."""
        slip = self.slip.to_dict() if self.slip is not None else None
        if self.outcome is Outcome.VERIFIED:
            return {
                "message": "Slip verified successfully via QR code, top-up status updated to SUCCESS",
                "slipData": slip,
                "method": VERIFICATION_METHOD,
                "transactionRef": self.transaction_ref,
            }
        if self.outcome is Outcome.AMOUNT_MISMATCH:
            return {
                "message": "Amount mismatch",
                "expected": float(self.expected),
                "found": float(self.found) if self.found is not None else None,
                "slipData": slip,
                "method": VERIFICATION_METHOD,
                "suggestion": "Ensure the QR code amount matches the expected top-up amount",
            }
        if self.outcome is Outcome.PARSE_FAILED:
            return {
                "message": "Unable to extract valid amount from QR code",
                "slipData": slip,
                "qrData": self.payload_excerpt,
                "method": VERIFICATION_METHOD,
                "suggestion": "Ensure the QR code contains a valid amount (e.g., EMVCo tag 54)",
            }
        return {
            "message": "No QR code found in slip image",
            "method": VERIFICATION_METHOD,
            "suggestion": "Please ensure the slip image contains a clear, readable QR code",
        }


def as_decimal(value) -> Decimal:
    # floats go through str() so 100.01 stays 100.01
    return Decimal(str(value)) if isinstance(value, float) else Decimal(value)


def no_qr_found(expected: Decimal) -> VerificationResult:
    return VerificationResult(outcome=Outcome.NO_QR_FOUND, expected=as_decimal(expected))


def reconcile(
    slip: SlipData,
    expected: Decimal,
    *,
    tolerance: Decimal = DEFAULT_TOLERANCE,
    payload: Optional[str] = None,
) -> VerificationResult:
    """
    Compares the slip amount with the top-up's expected amount.

    Pure function: an amount that is <= 0 or not a usable number is
    PARSE_FAILED, a difference within ``tolerance`` (inclusive) is VERIFIED,
    anything else AMOUNT_MISMATCH.
    """
    expected = as_decimal(expected)
    if not is_usable_amount(slip.amount) or slip.amount <= ZERO:
        return VerificationResult(
            outcome=Outcome.PARSE_FAILED,
            expected=expected,
            slip=slip,
            payload_excerpt=excerpt(payload),
        )
    if abs(slip.amount - expected) <= tolerance:
        return VerificationResult(
            outcome=Outcome.VERIFIED,
            expected=expected,
            slip=slip,
            transaction_ref=slip.transaction_id or slip.reference or None,
        )
    return VerificationResult(
        outcome=Outcome.AMOUNT_MISMATCH,
        expected=expected,
        slip=slip,
        payload_excerpt=excerpt(payload),
    )
