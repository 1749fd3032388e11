from __future__ import annotations

import logging
import secrets
import string
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

from promptslip.db.models import TopupRequest, TopupStatus
from promptslip.db.repository import TopupRepository
from promptslip.extract.emvco import build_promptpay_payload
from promptslip.qr.preprocess import load_image_bytes, open_image
from promptslip.qr.render import qr_image
from promptslip.utils.logging_setup import log_event
from promptslip.verify.errors import ImageLoadError, TopupNotFoundError, TopupStateError

log = logging.getLogger(__name__)

_REF_ALPHABET = string.ascii_lowercase + string.digits

MAX_SLIP_BYTES = 5 * 1024 * 1024
# Pillow format -> stored file extension
SLIP_FORMATS = {"PNG": ".png", "JPEG": ".jpg", "GIF": ".gif"}


def _unique_suffix() -> str:
    """<epoch ms>-<7 random base36 chars>"""
    return f"{int(time.time() * 1000)}-" + "".join(secrets.choice(_REF_ALPHABET) for _ in range(7))


def new_transaction_ref() -> str:
    """Provisional reference of a new top-up: TXN-<epoch ms>-<7 random chars>."""
    return f"TXN-{_unique_suffix()}"


@dataclass(frozen=True)
class CreatedTopup:
    topup: TopupRequest
    promptpay_payload: str
    qr_image_path: Optional[Path] = None


def render_promptpay_qr(payload: str, path: Path) -> Path:
    """Writes the payload as a PNG QR code the payer scans with a banking app."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    qr_image(payload).save(path, format="PNG")
    return path


def create_topup(
    repository: TopupRepository,
    *,
    user_id: int,
    amount: Decimal | str | int,
    payment_method: str,
    seller_promptpay_id: str,
    qr_dir: Path | None = None,
) -> CreatedTopup:
    """
    Records a PENDING top-up and returns the PromptPay payload the user pays
    with. With ``qr_dir`` the payload is also rendered to
    ``qr_dir/qrcode-<epoch ms>.png``.
    """
    try:
        value = Decimal(str(amount))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid top-up amount: {amount!r}") from exc
    if not value.is_finite() or value <= 0:
        raise ValueError(f"Top-up amount must be positive, got {amount!r}")
    if not payment_method:
        raise ValueError("payment_method is required")

    topup = repository.create(
        user_id=user_id,
        amount=value,
        payment_method=payment_method,
        transaction_ref=new_transaction_ref(),
    )
    payload = build_promptpay_payload(seller_promptpay_id, value)
    qr_path = None
    if qr_dir is not None:
        qr_path = render_promptpay_qr(payload, Path(qr_dir) / f"qrcode-{int(time.time() * 1000)}.png")
    log_event(
        log,
        "topup.created",
        "Top-up request created",
        topup_id=topup.id,
        user_id=user_id,
        amount=str(value),
        transaction_ref=topup.transaction_ref,
        qr_image=str(qr_path) if qr_path else None,
    )
    return CreatedTopup(topup=topup, promptpay_payload=payload, qr_image_path=qr_path)


def attach_slip(
    repository: TopupRepository,
    topup_id: int,
    image: bytes | str | Path,
    slips_dir: Path,
) -> TopupRequest:
    """
    Stores an uploaded slip image under ``slips_dir`` and records its file
    name on a PENDING top-up. Only PNG, JPEG and GIF up to 5 MB are accepted.
    """
    topup = repository.get(topup_id)
    if topup is None:
        raise TopupNotFoundError(f"Top-up request {topup_id} not found")
    if topup.status != TopupStatus.PENDING.value:
        raise TopupStateError(f"Top-up {topup_id} is {topup.status}, expected PENDING")

    data = load_image_bytes(image)
    if len(data) > MAX_SLIP_BYTES:
        raise ImageLoadError(f"Slip image is {len(data)} bytes, limit is {MAX_SLIP_BYTES}")
    fmt = open_image(data).format
    if fmt not in SLIP_FORMATS:
        raise ImageLoadError(f"Slip image must be PNG, JPEG or GIF, got {fmt}")

    slips_dir = Path(slips_dir)
    slips_dir.mkdir(parents=True, exist_ok=True)
    name = f"{_unique_suffix()}{SLIP_FORMATS[fmt]}"
    (slips_dir / name).write_bytes(data)

    updated = repository.attach_slip(topup_id, name)
    log_event(log, "slip.attached", "Slip image stored", topup_id=topup_id, slip_image=name, size=len(data))
    return updated
