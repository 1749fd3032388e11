from __future__ import annotations

import logging
import threading
import time
from typing import Iterable, Optional

import numpy as np
from PIL import Image

from promptslip.extract.emvco import looks_like_emvco
from promptslip.qr.base import QrDecoder
from promptslip.utils.verification_context import verification_scope

try:
    import zxingcpp
except Exception:  # pragma: no cover
    zxingcpp = None  # type: ignore

log = logging.getLogger(__name__)


class ZxingQrDecoder:
    """
    QR decoding via zxing-cpp. Each buffer is tried as-is and inverted, since
    slip photos and dark-mode screenshots come in both polarities.
    """

    def is_available(self) -> bool:
        return zxingcpp is not None

    def _read(self, pixels: np.ndarray) -> Optional[str]:
        for result in zxingcpp.read_barcodes(pixels, formats=zxingcpp.BarcodeFormat.QRCode):
            text = getattr(result, "text", None)
            if text:
                return text
        return None

    def decode(self, pixels: np.ndarray, width: int, height: int) -> Optional[str]:
        if zxingcpp is None:
            return None
        arr = np.ascontiguousarray(pixels, dtype=np.uint8).reshape((int(height), int(width)))
        text = self._read(arr)
        if text is None:
            text = self._read(np.ascontiguousarray(255 - arr))
        return text


def read_qr_from_variants(
    variants: Iterable[Image.Image],
    decoder: QrDecoder,
    *,
    timeout_seconds: float | None = None,
    cancel_event: threading.Event | None = None,
) -> Optional[str]:
    """
    Feeds pre-processed variants to ``decoder`` in order and returns the first
    non-empty payload. Remaining variants are never produced once one decodes.

    The deadline and the cancel event are checked between variants; hitting
    either ends the scan with None.
    """
    deadline = time.monotonic() + timeout_seconds if timeout_seconds else None
    for idx, variant in enumerate(variants):
        if cancel_event is not None and cancel_event.is_set():
            log.info("QR scan cancelled before variant %s", idx)
            return None
        if deadline is not None and time.monotonic() > deadline:
            log.warning("QR scan timed out after %s variants (limit %ss)", idx, timeout_seconds)
            return None

        width, height = variant.size
        with verification_scope(variant=f"{width}x{height}"):
            try:
                payload = decoder.decode(np.asarray(variant.convert("L"), dtype=np.uint8), width, height)
            except Exception as exc:
                log.warning("QR decode failed at %sx%s: %s", width, height, exc)
                continue
            if not payload:
                log.debug("No QR symbol at %sx%s", width, height)
                continue
            if looks_like_emvco(payload):
                log.info("QR decoded at %sx%s (EMVCo): %s", width, height, payload[:100])
            else:
                log.info("QR decoded at %sx%s (non-EMVCo, handing to fallbacks): %s", width, height, payload[:100])
            return payload

    log.warning("No QR code found in any image variant")
    return None
