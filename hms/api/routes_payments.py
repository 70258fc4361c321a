# FILE: hms/api/routes_payments.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from hms.api.deps import current_user, get_db
from hms.api.response import ok, paged
from hms.api.tx import commit, dump
from hms.core import permissions as P
from hms.core.rbac import require_any
from hms.models.user import User
from hms.schemas.billing import PaymentCreate, PaymentOut, PaymentVoidIn, RefundCreate, RefundOut
from hms.services import payments as pay_svc
from hms.services.bills import get_bill_or_404

router = APIRouter(tags=["Billing - Payments"])


def _payment_detail(p) -> dict:
    out = dump(PaymentOut, p)
    out["refunds"] = [dump(RefundOut, r) for r in p.refunds]
    return out


@router.post("/bills/{bill_id}/payments", status_code=201)
def record_payment(
    bill_id: int,
    payload: PaymentCreate,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.RECORD_PAYMENTS])
    payment, bill, change_due = pay_svc.record_payment(db, bill_id=bill_id, inp=payload, user=user)
    commit(db)
    db.refresh(payment)
    db.refresh(bill)
    return ok(
        {
            "payment": dump(PaymentOut, payment),
            "bill": pay_svc.balance_out(bill),
            "change_due": change_due,
        },
        message="Payment recorded",
        status_code=201,
    )


@router.get("/bills/{bill_id}/payments")
def list_bill_payments(
    bill_id: int,
    status: Optional[str] = Query(None),
    method: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.VIEW_PAYMENTS])
    get_bill_or_404(db, bill_id)
    rows, total = pay_svc.list_payments(db, bill_id=bill_id, status=status, method=method,
                                        limit=limit, offset=offset)
    return ok([dump(PaymentOut, p) for p in rows], meta={"total": total})


@router.get("/bills/{bill_id}/payments/statistics")
def bill_payment_statistics(
    bill_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.VIEW_PAYMENTS])
    return ok(pay_svc.bill_payment_statistics(db, bill_id))


@router.get("/payments")
def list_payments(
    status: Optional[str] = Query(None),
    method: Optional[str] = Query(None),
    min_amount: Optional[Decimal] = Query(None, ge=0),
    max_amount: Optional[Decimal] = Query(None, ge=0),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.VIEW_PAYMENTS])
    rows, total = pay_svc.list_payments(
        db,
        status=status,
        method=method,
        min_amount=min_amount,
        max_amount=max_amount,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    return paged([dump(PaymentOut, p) for p in rows], total=total, limit=limit, offset=offset)


@router.get("/payments/{payment_id}")
def get_payment(
    payment_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.VIEW_PAYMENTS])
    return ok(_payment_detail(pay_svc.get_payment_or_404(db, payment_id)))


@router.get("/payments/{payment_id}/statistics")
def payment_statistics(
    payment_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.VIEW_PAYMENTS])
    return ok(pay_svc.payment_statistics(db, payment_id))


@router.post("/payments/{payment_id}/void")
def void_payment(
    payment_id: int,
    payload: PaymentVoidIn,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.VOID_PAYMENTS])
    payment, bill = pay_svc.void_payment(db, payment_id=payment_id, reason=payload.reason, user=user)
    commit(db)
    db.refresh(payment)
    db.refresh(bill)
    return ok({"payment": dump(PaymentOut, payment), "bill": pay_svc.balance_out(bill)},
              message="Payment voided")


@router.post("/payments/{payment_id}/refund", status_code=201)
def refund_payment(
    payment_id: int,
    payload: RefundCreate,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.PROCESS_REFUNDS])
    refund, payment, bill = pay_svc.refund_payment(db, payment_id=payment_id, inp=payload, user=user)
    commit(db)
    db.refresh(refund)
    db.refresh(payment)
    db.refresh(bill)
    return ok(
        {
            "refund": dump(RefundOut, refund),
            "payment": dump(PaymentOut, payment),
            "bill": pay_svc.balance_out(bill),
            "remaining_refundable": pay_svc.refundable_remaining(db, payment),
        },
        message="Refund processed",
        status_code=201,
    )
