from __future__ import annotations

import datetime as dt
import enum
from decimal import Decimal

from sqlalchemy import DateTime, Integer, Numeric, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from promptslip.utils.time import utc_now_naive


class Base(DeclarativeBase):
    pass


class TopupStatus(str, enum.Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class TopupRequest(Base):
    __tablename__ = "topups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    status: Mapped[str] = mapped_column(String(16), index=True, default=TopupStatus.PENDING.value)
    payment_method: Mapped[str] = mapped_column(String(64))
    slip_image: Mapped[str | None] = mapped_column(String(512), nullable=True)
    transaction_ref: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    # stored as naive UTC (SQLite keeps no zone)
    confirmed_at: Mapped[dt.datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utc_now_naive)

    def __repr__(self) -> str:
        return f"TopupRequest(id={self.id!r}, user_id={self.user_id!r}, amount={self.amount!r}, status={self.status!r})"
