from __future__ import annotations

import copy
import os
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict

import yaml


DEFAULT_CONFIG_NAME = "config.yaml"

DEFAULT_SELLER_PROMPTPAY_ID = "0973139076"

DEFAULTS: Dict[str, Any] = {
    "app": {"data_dir": None, "db_path": None, "log_dir": None, "slips_dir": None, "qr_dir": None},
    "qr": {
        # (width, height); None = keep original size
        "sizes": [None, [800, 600], [1200, 900], [600, 600]],
        "contrast_factors": [1.5, 1.7],
        "timeout_seconds": 5.0,
    },
    "verify": {
        "tolerance": "0.01",
        "payment_method_marker": "QR_SLIP_VERIFICATION",
    },
    "promptpay": {"seller_id": DEFAULT_SELLER_PROMPTPAY_ID},
}


def load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    return data or {}


def save_yaml(path: Path, data: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data, sort_keys=False, allow_unicode=True), encoding="utf-8")


def deep_get(d: Dict[str, Any], keys: list[str], default: Any = None) -> Any:
    cur: Any = d
    for k in keys:
        if not isinstance(cur, dict) or k not in cur:
            return default
        cur = cur[k]
    return cur


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge(out[k], v)
        else:
            out[k] = v
    return out


def load_config(path: Path | None = None) -> Dict[str, Any]:
    """
    Loads config.yaml on top of DEFAULTS.

    SELLER_PROMPTPAY_ID from the environment wins over the file so that the
    receiving account can be switched per deployment without editing YAML.
    """
    cfg = _merge(copy.deepcopy(DEFAULTS), load_yaml(path) if path else {})
    seller = os.environ.get("SELLER_PROMPTPAY_ID")
    if seller:
        cfg["promptpay"]["seller_id"] = seller.strip()
    return cfg


def qr_sizes(cfg: Dict[str, Any]) -> list[tuple[int, int] | None]:
    out: list[tuple[int, int] | None] = []
    for raw in deep_get(cfg, ["qr", "sizes"], DEFAULTS["qr"]["sizes"]) or []:
        if raw is None:
            out.append(None)
        else:
            w, h = raw
            out.append((int(w), int(h)))
    return out


def verify_tolerance(cfg: Dict[str, Any]) -> Decimal:
    return Decimal(str(deep_get(cfg, ["verify", "tolerance"], DEFAULTS["verify"]["tolerance"])))
