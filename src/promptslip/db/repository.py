from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Optional, Protocol

from sqlalchemy.orm import Session, sessionmaker

from promptslip.db.models import TopupRequest, TopupStatus
from promptslip.utils.time import to_utc_naive


class TopupRepository(Protocol):
    """Persistence port of the verification pipeline."""

    def get(self, topup_id: int) -> Optional[TopupRequest]:
        ...

    def create(
        self,
        *,
        user_id: int,
        amount: Decimal,
        payment_method: str,
        transaction_ref: str,
        slip_image: Optional[str] = None,
    ) -> TopupRequest:
        ...

    def attach_slip(self, topup_id: int, slip_image: str) -> Optional[TopupRequest]:
        ...

    def mark_verified(
        self,
        topup_id: int,
        *,
        confirmed_at: dt.datetime,
        transaction_ref: Optional[str],
        payment_method: str,
    ) -> Optional[TopupRequest]:
        ...


class SqlTopupRepository:
    """SQLAlchemy implementation; one short session per call."""

    def __init__(self, session_factory: sessionmaker):
        self._sf = session_factory

    def get(self, topup_id: int) -> Optional[TopupRequest]:
        with self._sf() as session:
            return session.get(TopupRequest, int(topup_id))

    def create(
        self,
        *,
        user_id: int,
        amount: Decimal,
        payment_method: str,
        transaction_ref: str,
        slip_image: Optional[str] = None,
    ) -> TopupRequest:
        with self._sf() as session, session.begin():
            topup = TopupRequest(
                user_id=int(user_id),
                amount=Decimal(amount),
                status=TopupStatus.PENDING.value,
                payment_method=payment_method,
                transaction_ref=transaction_ref,
                slip_image=slip_image,
            )
            session.add(topup)
        return topup

    def _update(self, session: Session, topup_id: int) -> Optional[TopupRequest]:
        return session.get(TopupRequest, int(topup_id), with_for_update=True)

    def attach_slip(self, topup_id: int, slip_image: str) -> Optional[TopupRequest]:
        with self._sf() as session, session.begin():
            topup = self._update(session, topup_id)
            if topup is None:
                return None
            topup.slip_image = slip_image
        return topup

    def mark_verified(
        self,
        topup_id: int,
        *,
        confirmed_at: dt.datetime,
        transaction_ref: Optional[str],
        payment_method: str,
    ) -> Optional[TopupRequest]:
        with self._sf() as session, session.begin():
            topup = self._update(session, topup_id)
            if topup is None:
                return None
            topup.status = TopupStatus.SUCCESS.value
            topup.confirmed_at = to_utc_naive(confirmed_at)
            if transaction_ref:
                topup.transaction_ref = transaction_ref
            topup.payment_method = payment_method
        return topup
