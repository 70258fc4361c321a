from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from hms.core.config import settings
from hms.models.billing import BillNumberSeries


def _period_key(dt: datetime) -> str:
    return dt.strftime("%Y")


def _locked_series(db: Session, prefix: str, period_key: str) -> Optional[BillNumberSeries]:
    return (db.query(BillNumberSeries).filter(
        BillNumberSeries.prefix == prefix,
        BillNumberSeries.period_key == period_key,
    ).with_for_update().one_or_none())


def next_number(
    db: Session,
    *,
    prefix: str,
    padding: int = 5,
    now: Optional[datetime] = None,
) -> str:
    """
    Reserve the next number for <prefix><year><seq> inside the caller's transaction.

    The counter row is read with SELECT ... FOR UPDATE, so two concurrent
    creators serialize on it; a new year starts a new row at 1.
    """
    now = now or datetime.utcnow()
    pk = _period_key(now)

    row = _locked_series(db, prefix, pk)
    if not row:
        row = BillNumberSeries(prefix=prefix,
                               period_key=pk,
                               last_value=0,
                               padding=padding)
        db.add(row)
        db.flush()

    n = int(row.last_value or 0) + 1
    row.last_value = n
    db.flush()

    return f"{prefix}{pk}{str(n).zfill(int(row.padding or padding))}"


def next_bill_number(db: Session, now: Optional[datetime] = None) -> str:
    return next_number(db, prefix=settings.BILL_NUMBER_PREFIX, padding=5, now=now)
