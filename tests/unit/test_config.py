from __future__ import annotations

from decimal import Decimal
from pathlib import Path

from promptslip.utils.config import DEFAULTS, load_config, qr_sizes, save_yaml, verify_tolerance
from promptslip.utils.paths import resolve_app_paths


def test_defaults_without_file(monkeypatch) -> None:
    monkeypatch.delenv("SELLER_PROMPTPAY_ID", raising=False)
    cfg = load_config(None)
    assert qr_sizes(cfg) == [None, (800, 600), (1200, 900), (600, 600)]
    assert verify_tolerance(cfg) == Decimal("0.01")
    assert cfg["promptpay"]["seller_id"] == "0973139076"


def test_yaml_overrides_are_merged(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("SELLER_PROMPTPAY_ID", raising=False)
    path = tmp_path / "config.yaml"
    save_yaml(path, {"qr": {"sizes": [[400, 400]]}, "verify": {"tolerance": 0.5}})

    cfg = load_config(path)

    assert qr_sizes(cfg) == [(400, 400)]
    assert cfg["qr"]["contrast_factors"] == [1.5, 1.7]
    assert verify_tolerance(cfg) == Decimal("0.5")


def test_seller_id_env_override_does_not_leak_into_defaults(monkeypatch) -> None:
    monkeypatch.setenv("SELLER_PROMPTPAY_ID", " 0812345678 ")
    assert load_config(None)["promptpay"]["seller_id"] == "0812345678"
    assert DEFAULTS["promptpay"]["seller_id"] == "0973139076"


def test_app_paths_default_under_data_dir(tmp_path: Path) -> None:
    paths = resolve_app_paths(str(tmp_path / "data"), None, None)
    assert paths.db_path == tmp_path / "data" / "promptslip.sqlite"
    assert paths.log_dir == tmp_path / "data" / "LOG"
    assert paths.slips_dir == tmp_path / "data" / "slips"
    assert paths.qr_dir == tmp_path / "data" / "qrcode"
    assert paths.log_dir.is_dir()
    assert paths.qr_dir.is_dir()
