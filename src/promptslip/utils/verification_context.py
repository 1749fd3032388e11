from __future__ import annotations

import contextvars
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator

# Per-thread / per-task context of the verification currently running.
_VARS: Dict[str, contextvars.ContextVar] = {
    "correlation_id": contextvars.ContextVar("correlation_id", default=None),
    "topup_id": contextvars.ContextVar("topup_id", default=None),
    "phase": contextvars.ContextVar("phase", default=None),
    "variant": contextvars.ContextVar("variant", default=None),
}


def new_correlation_id() -> str:
    return str(uuid.uuid4())


def get_context_fields() -> Dict[str, Any]:
    """Snapshot of all verification contextvars."""
    return {name: var.get() for name, var in _VARS.items()}


@contextmanager
def verification_scope(**fields: Any) -> Iterator[None]:
    """
    Temporarily sets the given context fields; previous values are restored
    when the block exits. Unknown field names raise KeyError.
    """
    tokens: list[tuple[contextvars.ContextVar, contextvars.Token]] = []
    try:
        for name, value in fields.items():
            var = _VARS[name]
            tokens.append((var, var.set(value)))
        yield
    finally:
        for var, tok in reversed(tokens):
            var.reset(tok)
