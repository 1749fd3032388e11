from __future__ import annotations

import datetime as dt
import re
from decimal import Decimal
from io import BytesIO

import numpy as np
import pytest
from PIL import Image

from promptslip.db.models import TopupStatus
from promptslip.extract.emvco import build_promptpay_payload, parse_emvco, verify_crc
from promptslip.qr.zxing_decoder import ZxingQrDecoder
from promptslip.service import topups
from promptslip.service.topups import attach_slip, create_topup, new_transaction_ref, render_promptpay_qr
from promptslip.verify.errors import ImageLoadError, TopupNotFoundError, TopupStateError


def test_transaction_ref_format() -> None:
    ref = new_transaction_ref()
    assert re.fullmatch(r"TXN-\d{13}-[a-z0-9]{7}", ref)
    assert new_transaction_ref() != ref


def test_create_topup_persists_pending_request(repository) -> None:
    created = create_topup(
        repository,
        user_id=3,
        amount="150.5",
        payment_method="PROMPTPAY",
        seller_promptpay_id="0973139076",
    )

    stored = repository.get(created.topup.id)
    assert stored.status == TopupStatus.PENDING.value
    assert stored.amount == Decimal("150.50")
    assert stored.user_id == 3
    assert stored.transaction_ref.startswith("TXN-")
    assert stored.confirmed_at is None

    assert verify_crc(created.promptpay_payload)
    tags = parse_emvco(created.promptpay_payload)
    assert tags["54"] == "150.50"
    assert tags["29.01"] == "0066973139076"


@pytest.mark.parametrize("amount", ["0", "-10", "abc", "NaN"])
def test_create_topup_rejects_bad_amounts(repository, amount: str) -> None:
    with pytest.raises(ValueError):
        create_topup(repository, user_id=1, amount=amount, payment_method="PROMPTPAY", seller_promptpay_id="0812345678")


def test_create_topup_requires_payment_method(repository) -> None:
    with pytest.raises(ValueError):
        create_topup(repository, user_id=1, amount="10", payment_method="", seller_promptpay_id="0812345678")


def test_mark_verified_stores_naive_utc(repository) -> None:
    topup = repository.create(user_id=1, amount=Decimal("10"), payment_method="PROMPTPAY", transaction_ref="TXN-x")
    bangkok = dt.timezone(dt.timedelta(hours=7))

    updated = repository.mark_verified(
        topup.id,
        confirmed_at=dt.datetime(2025, 3, 15, 10, 30, tzinfo=bangkok),
        transaction_ref=None,
        payment_method="QR_SLIP_VERIFICATION",
    )

    assert updated.status == TopupStatus.SUCCESS.value
    stored = repository.get(topup.id)
    assert stored.confirmed_at == dt.datetime(2025, 3, 15, 3, 30)
    assert stored.transaction_ref == "TXN-x"
    assert repository.mark_verified(
        999, confirmed_at=dt.datetime(2025, 1, 1), transaction_ref=None, payment_method="x"
    ) is None


def test_attach_slip(repository) -> None:
    topup = repository.create(user_id=1, amount=Decimal("10"), payment_method="PROMPTPAY", transaction_ref="TXN-y")
    repository.attach_slip(topup.id, "slip-9.png")
    assert repository.get(topup.id).slip_image == "slip-9.png"
    assert repository.attach_slip(999, "x.png") is None


def test_rendered_qr_decodes_back_to_payload(tmp_path) -> None:
    pytest.importorskip("zxingcpp")
    payload = build_promptpay_payload("0812345678", Decimal("42"))

    path = render_promptpay_qr(payload, tmp_path / "qrcode" / "pay.png")

    with Image.open(path) as img:
        grey = img.convert("L")
    pixels = np.asarray(grey, dtype=np.uint8)
    assert ZxingQrDecoder().decode(pixels, grey.width, grey.height) == payload


def test_create_topup_writes_qr_image(repository, tmp_path) -> None:
    pytest.importorskip("zxingcpp")
    created = create_topup(
        repository,
        user_id=3,
        amount="10",
        payment_method="PROMPTPAY",
        seller_promptpay_id="0973139076",
        qr_dir=tmp_path / "qrcode",
    )
    assert created.qr_image_path is not None
    assert created.qr_image_path.parent == tmp_path / "qrcode"
    assert created.qr_image_path.name.startswith("qrcode-")
    assert created.qr_image_path.exists()


def test_attach_slip_stores_image_and_records_name(repository, slip_png, tmp_path) -> None:
    topup = repository.create(user_id=1, amount=Decimal("10"), payment_method="PROMPTPAY", transaction_ref="TXN-z")
    slips = tmp_path / "slips"

    updated = attach_slip(repository, topup.id, slip_png, slips)

    assert re.fullmatch(r"\d{13}-[a-z0-9]{7}\.png", updated.slip_image)
    assert (slips / updated.slip_image).read_bytes() == slip_png
    assert repository.get(topup.id).slip_image == updated.slip_image


def test_attach_slip_rejects_unknown_or_settled_topup(repository, slip_png, tmp_path) -> None:
    with pytest.raises(TopupNotFoundError):
        attach_slip(repository, 999, slip_png, tmp_path)

    topup = repository.create(user_id=1, amount=Decimal("10"), payment_method="PROMPTPAY", transaction_ref="TXN-s")
    repository.mark_verified(
        topup.id, confirmed_at=dt.datetime(2025, 1, 1), transaction_ref=None, payment_method="QR_SLIP_VERIFICATION"
    )
    with pytest.raises(TopupStateError):
        attach_slip(repository, topup.id, slip_png, tmp_path)


def test_attach_slip_rejects_bad_images(repository, monkeypatch, slip_png, tmp_path) -> None:
    topup = repository.create(user_id=1, amount=Decimal("10"), payment_method="PROMPTPAY", transaction_ref="TXN-b")
    bmp = BytesIO()
    Image.new("RGB", (10, 10)).save(bmp, format="BMP")

    with pytest.raises(ImageLoadError):
        attach_slip(repository, topup.id, b"not an image", tmp_path)
    with pytest.raises(ImageLoadError):
        attach_slip(repository, topup.id, bmp.getvalue(), tmp_path)
    monkeypatch.setattr(topups, "MAX_SLIP_BYTES", 10)
    with pytest.raises(ImageLoadError):
        attach_slip(repository, topup.id, slip_png, tmp_path)
    assert repository.get(topup.id).slip_image is None
