from __future__ import annotations

from decimal import Decimal
from typing import Optional


class SlipVerificationError(Exception):
    """Base class of slip verification failures."""


class ImageLoadError(SlipVerificationError):
    """Slip image bytes cannot be read or decoded. Fatal for the attempt."""


class NoQrFoundError(SlipVerificationError):
    """No resize variant produced a decodable QR payload."""


class ParseFailedError(SlipVerificationError):
    """A payload was decoded but no strategy found a usable amount."""

    def __init__(self, message: str, payload_excerpt: Optional[str] = None):
        super().__init__(message)
        self.payload_excerpt = payload_excerpt


class AmountMismatchError(SlipVerificationError):
    def __init__(self, expected: Decimal, found: Decimal):
        super().__init__(f"Amount mismatch: expected {expected}, found {found}")
        self.expected = expected
        self.found = found


class TopupNotFoundError(SlipVerificationError):
    pass


class TopupStateError(SlipVerificationError):
    """The top-up is no longer PENDING and cannot be settled again."""
