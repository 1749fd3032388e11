from __future__ import annotations

import json
import logging
import os
import socket
import threading
import traceback
from collections import deque
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Dict

from promptslip.utils.verification_context import get_context_fields

_TRUTHY = {"1", "true", "TRUE", "True", "yes", "YES"}
_FALSY = {"0", "false", "False", "FALSE", "no", "NO"}


class LineCappedFileHandler(logging.Handler):
    """
    Append-only log file that keeps roughly the last ``max_lines`` lines.

    Trimming happens in chunks so the file is not rewritten on every emit.
    """

    def __init__(self, filename: Path, *, max_lines: int = 5000, encoding: str = "utf-8"):
        super().__init__()
        self._filename = Path(filename)
        self._encoding = encoding
        self.max_lines = int(max_lines)
        self._trim_chunk = max(10, self.max_lines // 100)
        self._mtx = threading.RLock()
        self._stream = None
        self._line_count = 0
        self._open_and_count()

    def _open_and_count(self) -> None:
        self._filename.parent.mkdir(parents=True, exist_ok=True)
        if self._filename.exists():
            with open(self._filename, "r", encoding=self._encoding, errors="ignore") as rf:
                self._line_count = sum(1 for _ in rf)
        else:
            self._line_count = 0
        self._stream = open(self._filename, "a", encoding=self._encoding, errors="backslashreplace")

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            if not msg.endswith("\n"):
                msg += "\n"
            with self._mtx:
                if self._stream is None:
                    self._open_and_count()
                self._stream.write(msg)
                self._stream.flush()
                self._line_count += msg.count("\n")
                if self._line_count >= self.max_lines + self._trim_chunk:
                    self._trim_to_last_max_lines()
        except Exception:
            self.handleError(record)

    def _trim_to_last_max_lines(self) -> None:
        if self._stream is not None:
            self._stream.close()
            self._stream = None
        with open(self._filename, "r", encoding=self._encoding, errors="ignore") as rf:
            tail = deque(rf, maxlen=self.max_lines)
        with open(self._filename, "w", encoding=self._encoding, errors="backslashreplace") as wf:
            wf.writelines(tail)
        self._line_count = len(tail)
        self._stream = open(self._filename, "a", encoding=self._encoding, errors="backslashreplace")

    def close(self) -> None:
        with self._mtx:
            if self._stream is not None:
                self._stream.close()
            self._stream = None
        super().close()


class VerificationContextFilter(logging.Filter):
    """Attaches host and current verification context to every record."""

    def __init__(self) -> None:
        super().__init__()
        self._hostname = socket.gethostname()

    def filter(self, record: logging.LogRecord) -> bool:
        record.hostname = self._hostname
        ctx = get_context_fields()
        record.context = ctx
        record.correlation_id = ctx.get("correlation_id") or "-"
        return True


class JsonLineFormatter(logging.Formatter):
    """One JSON object per line, for machine reading of verification traces."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "funcName": record.funcName,
            "line": record.lineno,
            "process": record.process,
            "threadName": record.threadName,
            "hostname": getattr(record, "hostname", None),
            "event_name": getattr(record, "event_name", None),
            "context": getattr(record, "context", None) or get_context_fields(),
        }
        extra_obj = getattr(record, "extra_payload", None)
        if extra_obj:
            payload["extra"] = extra_obj
        if record.exc_info:
            payload["exception"] = "".join(traceback.format_exception(*record.exc_info))
        return json.dumps(payload, ensure_ascii=False, default=str)


_ROOT_CONFIGURED = False
_ROOT_CONFIG_LOCK = threading.Lock()


def _compute_max_lines() -> int:
    env_max = os.environ.get("PROMPTSLIP_LOG_MAX_LINES")
    if env_max:
        try:
            val = int(env_max)
            if val > 0:
                return val
        except ValueError:
            pass
    return 5000


def _detail_enabled() -> bool:
    return str(os.environ.get("PROMPTSLIP_LOG_DETAIL", "1")).strip() not in _FALSY


def setup_logging(log_dir: Path, name: str = "promptslip") -> logging.Logger:
    """
    Configures the root logger once per process:
      <log_dir>/promptslip.log        human readable, line capped
      <log_dir>/promptslip.jsonl      structured, line capped
    Console output is enabled with PROMPTSLIP_LOG_CONSOLE=1.
    """
    global _ROOT_CONFIGURED

    log_dir.mkdir(parents=True, exist_ok=True)
    max_lines = _compute_max_lines()

    with _ROOT_CONFIG_LOCK:
        if not _ROOT_CONFIGURED:
            root = logging.getLogger()
            root.setLevel(logging.DEBUG)

            fmt = logging.Formatter(
                "%(asctime)s.%(msecs)03d %(levelname)s pid=%(process)d "
                "corr=%(correlation_id)s [%(name)s:%(funcName)s:%(lineno)d] %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
            ctx_filter = VerificationContextFilter()

            fh = LineCappedFileHandler(log_dir / "promptslip.log", max_lines=max_lines)
            fh.setFormatter(fmt)
            fh.addFilter(ctx_filter)
            root.addHandler(fh)

            fh_json = LineCappedFileHandler(log_dir / "promptslip.jsonl", max_lines=max_lines * 2)
            fh_json.setFormatter(JsonLineFormatter())
            fh_json.addFilter(ctx_filter)
            root.addHandler(fh_json)

            if os.environ.get("PROMPTSLIP_LOG_CONSOLE", "").strip() in _TRUTHY:
                ch = logging.StreamHandler()
                ch.setLevel(logging.INFO)
                ch.setFormatter(fmt)
                ch.addFilter(ctx_filter)
                root.addHandler(ch)

            setattr(root, "_promptslip_log_detail", _detail_enabled())
            _ROOT_CONFIGURED = True

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.propagate = True
    logger.info(
        "Logging initialised: log_dir=%s pid=%s max_lines=%s",
        log_dir,
        os.getpid(),
        max_lines,
        extra={"event_name": "logging.start", "extra_payload": {"max_lines": max_lines}},
    )
    return logger


def log_event(logger: logging.Logger, event_name: str, message: str, **extra: Any) -> None:
    """
    Structured INFO record: ``event_name`` and ``extra_payload`` go to the JSON
    log, the text log gets a readable ``key=value`` suffix.
    With detail disabled, values whose repr exceeds 400 chars are dropped.
    """
    extra_payload: Dict[str, Any] = dict(extra)
    if not bool(getattr(logging.getLogger(), "_promptslip_log_detail", True)):
        extra_payload = {k: v for k, v in extra_payload.items() if len(repr(v)) <= 400}

    suffix = ""
    if extra_payload:
        suffix = " | " + " ".join(f"{k}={extra_payload[k]!r}" for k in sorted(extra_payload))
    logger.info(
        f"{message}{suffix}",
        extra={"event_name": event_name, "extra_payload": extra_payload},
    )
