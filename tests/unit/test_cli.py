from __future__ import annotations

import json
from pathlib import Path

from promptslip.__main__ import EXIT_ERROR, EXIT_OK, EXIT_REJECTED, main
from promptslip.extract.emvco import verify_crc
from promptslip.utils.config import save_yaml


def _config(tmp_path: Path) -> str:
    path = tmp_path / "config.yaml"
    save_yaml(path, {"app": {"data_dir": str(tmp_path / "data"), "slips_dir": str(tmp_path / "slips")}})
    return str(path)


def test_create_topup_prints_payload(tmp_path: Path, capsys, monkeypatch) -> None:
    monkeypatch.delenv("SELLER_PROMPTPAY_ID", raising=False)
    code = main(["--config", _config(tmp_path), "create-topup", "--user-id", "4", "--amount", "99.5"])

    assert code == EXIT_OK
    body = json.loads(capsys.readouterr().out)
    assert body["topup"]["status"] == "PENDING"
    assert body["topup"]["amount"] == "99.50"
    assert verify_crc(body["qrPayload"])
    assert (tmp_path / "data" / "promptslip.sqlite").exists()


def test_verify_unknown_topup_is_an_error(tmp_path: Path, capsys, slip_png: bytes) -> None:
    image = tmp_path / "slip.png"
    image.write_bytes(slip_png)

    code = main(["--config", _config(tmp_path), "verify", "--topup-id", "12345", str(image)])

    assert code == EXIT_ERROR
    assert "not found" in json.loads(capsys.readouterr().out)["message"]


def test_invalid_amount_is_reported(tmp_path: Path, capsys) -> None:
    code = main(["--config", _config(tmp_path), "create-topup", "--user-id", "4", "--amount", "-1"])
    assert code == EXIT_ERROR
    assert "positive" in json.loads(capsys.readouterr().out)["message"]


def test_create_topup_writes_qr_code_image(tmp_path: Path, capsys) -> None:
    code = main(["--config", _config(tmp_path), "create-topup", "--user-id", "4", "--amount", "20"])

    assert code == EXIT_OK
    qr_path = Path(json.loads(capsys.readouterr().out)["qrCode"])
    assert qr_path.parent == tmp_path / "data" / "qrcode"
    assert qr_path.exists()


def test_attach_slip_then_verify_stored_slip(tmp_path: Path, capsys, slip_png: bytes) -> None:
    config = _config(tmp_path)
    image = tmp_path / "upload.png"
    image.write_bytes(slip_png)
    main(["--config", config, "create-topup", "--user-id", "4", "--amount", "20"])
    topup_id = json.loads(capsys.readouterr().out)["topup"]["id"]

    assert main(["--config", config, "attach-slip", "--topup-id", str(topup_id), str(image)]) == EXIT_OK
    stored = json.loads(capsys.readouterr().out)["topup"]["slip_image"]
    assert (tmp_path / "slips" / stored).exists()

    # blank slip: the stored image is found and scanned, no QR in it
    assert main(["--config", config, "verify", "--topup-id", str(topup_id)]) == EXIT_REJECTED
    assert json.loads(capsys.readouterr().out)["message"] == "No QR code found in slip image"


def test_attach_slip_rejects_non_image(tmp_path: Path, capsys) -> None:
    config = _config(tmp_path)
    bogus = tmp_path / "slip.png"
    bogus.write_bytes(b"not an image")
    main(["--config", config, "create-topup", "--user-id", "4", "--amount", "20"])
    topup_id = json.loads(capsys.readouterr().out)["topup"]["id"]

    assert main(["--config", config, "attach-slip", "--topup-id", str(topup_id), str(bogus)]) == EXIT_ERROR
    assert json.loads(capsys.readouterr().out)["message"] == "Invalid slip image"
