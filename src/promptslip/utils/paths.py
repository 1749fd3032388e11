from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path

APP_NAME = "promptslip"


def default_data_dir() -> Path:
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / APP_NAME
    base = os.environ.get("XDG_DATA_HOME") or os.environ.get("LOCALAPPDATA") or str(Path.home() / ".local" / "share")
    return Path(base) / APP_NAME


@dataclass(frozen=True)
class AppPaths:
    data_dir: Path
    db_path: Path
    log_dir: Path
    slips_dir: Path
    qr_dir: Path


def ensure_dirs(*paths: Path) -> None:
    for p in paths:
        p.mkdir(parents=True, exist_ok=True)


def resolve_app_paths(
    data_dir: str | None,
    db_path: str | None,
    log_dir: str | None,
    slips_dir: str | None = None,
    qr_dir: str | None = None,
) -> AppPaths:
    dd = Path(data_dir) if data_dir else default_data_dir()
    db = Path(db_path) if db_path else dd / "promptslip.sqlite"
    ld = Path(log_dir) if log_dir else dd / "LOG"
    sd = Path(slips_dir) if slips_dir else dd / "slips"
    qd = Path(qr_dir) if qr_dir else dd / "qrcode"
    ensure_dirs(dd, ld, db.parent, sd, qd)
    return AppPaths(data_dir=dd, db_path=db, log_dir=ld, slips_dir=sd, qr_dir=qd)
