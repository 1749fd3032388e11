"""Command line entry point: `python -m promptslip`."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from promptslip.db.repository import SqlTopupRepository
from promptslip.db.session import init_db, make_engine, make_session_factory
from promptslip.service.topups import attach_slip, create_topup
from promptslip.service.verifier import SlipVerifier
from promptslip.utils.amounts import format_amount
from promptslip.utils.config import DEFAULT_CONFIG_NAME, load_config
from promptslip.utils.logging_setup import setup_logging
from promptslip.utils.paths import resolve_app_paths
from promptslip.verify.errors import ImageLoadError, SlipVerificationError
from promptslip.verify.reconcile import Outcome

EXIT_OK = 0
EXIT_REJECTED = 1
EXIT_ERROR = 2


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="promptslip", description="PromptPay slip QR verification")
    ap.add_argument("--config", default=str(Path.cwd() / DEFAULT_CONFIG_NAME))
    sub = ap.add_subparsers(dest="command", required=True)

    ap_decode = sub.add_parser("decode", help="decode a slip QR and print the extracted data")
    ap_decode.add_argument("image")

    ap_attach = sub.add_parser("attach-slip", help="store a slip image for a pending top-up")
    ap_attach.add_argument("--topup-id", type=int, required=True)
    ap_attach.add_argument("image")

    ap_verify = sub.add_parser("verify", help="verify a slip against a pending top-up")
    ap_verify.add_argument("--topup-id", type=int, required=True)
    ap_verify.add_argument("image", nargs="?", help="defaults to the slip stored with attach-slip")

    ap_create = sub.add_parser("create-topup", help="create a pending top-up and write its PromptPay QR code")
    ap_create.add_argument("--user-id", type=int, required=True)
    ap_create.add_argument("--amount", required=True)
    ap_create.add_argument("--payment-method", default="PROMPTPAY")
    return ap


def _print(obj) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2, default=str))


def _topup_dict(topup) -> dict:
    return {
        "id": topup.id,
        "user_id": topup.user_id,
        "amount": format_amount(topup.amount),
        "status": topup.status,
        "transaction_ref": topup.transaction_ref,
        "slip_image": topup.slip_image,
    }


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    cfg = load_config(Path(args.config))
    app_cfg = cfg.get("app", {})
    paths = resolve_app_paths(
        app_cfg.get("data_dir"),
        app_cfg.get("db_path"),
        app_cfg.get("log_dir"),
        app_cfg.get("slips_dir"),
        app_cfg.get("qr_dir"),
    )
    cfg["app"]["slips_dir"] = str(paths.slips_dir)
    log = setup_logging(paths.log_dir)

    engine = make_engine(str(paths.db_path))
    init_db(engine)
    repository = SqlTopupRepository(make_session_factory(engine))

    try:
        if args.command == "create-topup":
            created = create_topup(
                repository,
                user_id=args.user_id,
                amount=args.amount,
                payment_method=args.payment_method,
                seller_promptpay_id=cfg["promptpay"]["seller_id"],
                qr_dir=paths.qr_dir,
            )
            _print(
                {
                    "message": "Top-up request created successfully",
                    "topup": _topup_dict(created.topup),
                    "qrPayload": created.promptpay_payload,
                    "qrCode": str(created.qr_image_path),
                }
            )
            return EXIT_OK

        if args.command == "attach-slip":
            topup = attach_slip(repository, args.topup_id, args.image, paths.slips_dir)
            _print({"message": "Slip uploaded successfully", "topup": _topup_dict(topup)})
            return EXIT_OK

        verifier = SlipVerifier(cfg, repository, logger=log)
        if args.command == "decode":
            payload, slip = verifier.decode_slip(args.image)
            if payload is None:
                _print({"message": "No QR code found"})
                return EXIT_REJECTED
            _print({"qrData": payload, "slipData": slip.to_dict() if slip else None})
            return EXIT_OK

        result = verifier.verify(args.topup_id, args.image)
        _print(result.to_response())
        return EXIT_OK if result.outcome is Outcome.VERIFIED else EXIT_REJECTED
    except ImageLoadError as exc:
        log.error("Slip image unreadable: %s", exc)
        message = "Invalid slip image" if args.command == "attach-slip" else "Failed to read QR code from slip image"
        _print({"message": message, "details": str(exc)})
        return EXIT_ERROR
    except (SlipVerificationError, ValueError) as exc:
        log.error("%s", exc)
        _print({"message": str(exc)})
        return EXIT_ERROR
    finally:
        engine.dispose()


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
