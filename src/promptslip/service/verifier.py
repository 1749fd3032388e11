from __future__ import annotations

import datetime as dt
import logging
import threading
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from promptslip.db.models import TopupRequest, TopupStatus
from promptslip.db.repository import TopupRepository
from promptslip.extract.slip_parser import SlipData, extract_slip_data
from promptslip.extract.thai_dates import parse_slip_datetime
from promptslip.qr.base import QrDecoder
from promptslip.qr.preprocess import load_image_bytes, prepare
from promptslip.qr.zxing_decoder import ZxingQrDecoder, read_qr_from_variants
from promptslip.utils.config import DEFAULTS, deep_get, qr_sizes, verify_tolerance
from promptslip.utils.logging_setup import log_event
from promptslip.utils.verification_context import new_correlation_id, verification_scope
from promptslip.verify.errors import TopupNotFoundError, TopupStateError
from promptslip.verify.reconcile import VerificationResult, no_qr_found, reconcile

ImageSource = bytes | str | Path


class SlipVerifier:
    """
    Runs one slip through decode -> extract -> reconcile and settles the
    top-up when the amount matches. The QR decoder and the repository are
    injected; nothing here holds state between calls.
    """

    def __init__(
        self,
        cfg: Dict[str, Any],
        repository: TopupRepository,
        decoder: QrDecoder | None = None,
        logger: logging.Logger | None = None,
    ):
        self.cfg = cfg
        self.repository = repository
        self.decoder = decoder if decoder is not None else ZxingQrDecoder()
        self.log = logger or logging.getLogger(__name__)
        if not self.decoder.is_available():
            self.log.warning("QR decoder unavailable; every slip will report NO_QR_FOUND")

        self.sizes = qr_sizes(cfg)
        self.contrast_factors = [float(f) for f in deep_get(cfg, ["qr", "contrast_factors"], DEFAULTS["qr"]["contrast_factors"])]
        self.timeout_seconds = deep_get(cfg, ["qr", "timeout_seconds"], DEFAULTS["qr"]["timeout_seconds"])
        self.tolerance = verify_tolerance(cfg)
        self.payment_method_marker = str(
            deep_get(cfg, ["verify", "payment_method_marker"], DEFAULTS["verify"]["payment_method_marker"])
        )
        slips_dir = deep_get(cfg, ["app", "slips_dir"])
        self.slips_dir = Path(slips_dir) if slips_dir else None

    def read_payload(self, image: ImageSource, *, cancel_event: threading.Event | None = None) -> Optional[str]:
        """Decoded QR text of the slip, or None. Unreadable images raise ImageLoadError."""
        variants = prepare(load_image_bytes(image), sizes=self.sizes, contrast_factors=self.contrast_factors)
        return read_qr_from_variants(
            variants,
            self.decoder,
            timeout_seconds=float(self.timeout_seconds) if self.timeout_seconds else None,
            cancel_event=cancel_event,
        )

    def decode_slip(self, image: ImageSource) -> Tuple[Optional[str], Optional[SlipData]]:
        """Decode + extract without touching any top-up."""
        payload = self.read_payload(image)
        if payload is None:
            return None, None
        return payload, extract_slip_data(payload)

    def _slip_path(self, topup: TopupRequest) -> Path:
        if not topup.slip_image:
            raise TopupStateError(f"No slip image associated with top-up {topup.id}")
        # only the file name is trusted; the directory comes from config
        name = Path(str(topup.slip_image).replace("\\", "/")).name
        base = self.slips_dir or Path(".")
        return base / name

    def _load_pending(self, topup_id: int) -> TopupRequest:
        topup = self.repository.get(topup_id)
        if topup is None:
            raise TopupNotFoundError(f"Top-up request {topup_id} not found")
        if topup.status != TopupStatus.PENDING.value:
            raise TopupStateError(f"Top-up {topup_id} is {topup.status}, expected PENDING")
        return topup

    def verify(
        self,
        topup_id: int,
        image: ImageSource | None = None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> VerificationResult:
        """
        Verifies a slip for a PENDING top-up. ``image`` defaults to the slip
        stored on the top-up. Raises TopupNotFoundError / TopupStateError
        before any image work and ImageLoadError for unreadable images; every
        other failure is reported through the result's outcome.
        """
        with verification_scope(correlation_id=new_correlation_id(), topup_id=topup_id, phase="load"):
            topup = self._load_pending(topup_id)
            expected = Decimal(topup.amount)
            source = image if image is not None else self._slip_path(topup)

            with verification_scope(phase="decode"):
                payload = self.read_payload(source, cancel_event=cancel_event)

            if payload is None:
                result = no_qr_found(expected)
            else:
                with verification_scope(phase="extract"):
                    slip = extract_slip_data(payload)
                with verification_scope(phase="reconcile"):
                    result = reconcile(slip, expected, tolerance=self.tolerance, payload=payload)

            if result.verified:
                if cancel_event is not None and cancel_event.is_set():
                    self.log.info("Verification of top-up %s cancelled before settlement", topup_id)
                    return result
                with verification_scope(phase="settle"):
                    self._settle(topup, result)

            log_event(
                self.log,
                "slip.verified" if result.verified else "slip.rejected",
                f"Slip verification finished: {result.outcome.value}",
                topup_id=topup_id,
                outcome=result.outcome.value,
                expected=str(expected),
                found=str(result.found) if result.found is not None else None,
                transaction_ref=result.transaction_ref,
            )
            return result

    def _settle(self, topup: TopupRequest, result: VerificationResult) -> None:
        confirmed_at = None
        if result.slip is not None:
            confirmed_at = parse_slip_datetime(result.slip.date_time)
        if confirmed_at is None:
            confirmed_at = dt.datetime.now(dt.UTC)
        self.repository.mark_verified(
            topup.id,
            confirmed_at=confirmed_at,
            transaction_ref=result.transaction_ref,
            payment_method=self.payment_method_marker,
        )
        self.log.info("Top-up %s marked SUCCESS (ref=%s)", topup.id, result.transaction_ref)
