from __future__ import annotations

from io import BytesIO
from pathlib import Path

import pytest
from PIL import Image

from promptslip.db.repository import SqlTopupRepository
from promptslip.db.session import init_db, make_engine, make_session_factory


@pytest.fixture()
def repository(tmp_path: Path):
    engine = make_engine(str(tmp_path / "topups.sqlite"))
    init_db(engine)
    yield SqlTopupRepository(make_session_factory(engine))
    engine.dispose()


@pytest.fixture()
def slip_png() -> bytes:
    img = Image.new("RGB", (320, 240), "white")
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


class FakeDecoder:
    """Returns queued payloads in order, then None."""

    def __init__(self, *payloads, available: bool = True):
        self.payloads = list(payloads)
        self.available = available
        self.calls: list[tuple[int, int]] = []

    def is_available(self) -> bool:
        return self.available

    def decode(self, pixels, width, height):
        assert pixels.shape == (height, width)
        self.calls.append((width, height))
        return self.payloads.pop(0) if self.payloads else None


@pytest.fixture()
def make_decoder():
    return FakeDecoder
