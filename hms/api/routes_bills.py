# FILE: hms/api/routes_bills.py
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from hms.api.deps import current_user, get_db
from hms.api.response import ok, paged
from hms.api.tx import commit, dump
from hms.core import permissions as P
from hms.core.rbac import require_any
from hms.models.billing import Bill
from hms.models.user import User
from hms.schemas.billing import BillCreate, BillOut, BillUpdate, BillVoidIn, PaymentOut
from hms.schemas.insurance import ClaimOut
from hms.services import bills as bill_svc

router = APIRouter(prefix="/bills", tags=["Billing - Bills"])


def _bill_detail(bill: Bill) -> Dict[str, Any]:
    out = dump(BillOut, bill)
    out["payments"] = [dump(PaymentOut, p) for p in bill.payments]
    out["claims"] = [dump(ClaimOut, c) for c in bill.claims]
    return out


@router.get("")
def list_bills(
    patient_id: Optional[int] = Query(None),
    payment_status: Optional[str] = Query(None),
    include_voided: bool = Query(True),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.VIEW_BILLING])
    rows, total = bill_svc.list_bills(
        db,
        patient_id=patient_id,
        payment_status=payment_status,
        include_voided=include_voided,
        limit=limit,
        offset=offset,
    )
    return paged([dump(BillOut, b) for b in rows], total=total, limit=limit, offset=offset)


@router.post("", status_code=201)
def create_bill(
    payload: BillCreate,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.MANAGE_BILLING])
    bill = bill_svc.create_bill(db, payload, user)
    commit(db)
    db.refresh(bill)
    return ok(dump(BillOut, bill), message="Bill created", status_code=201)


@router.get("/{bill_id}")
def get_bill(
    bill_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.VIEW_BILLING])
    bill = bill_svc.get_bill_or_404(db, bill_id)
    return ok(_bill_detail(bill))


@router.put("/{bill_id}")
@router.patch("/{bill_id}")
def update_bill(
    bill_id: int,
    payload: BillUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.MANAGE_BILLING])
    bill = bill_svc.update_bill(db, bill_id, payload.model_dump(exclude_unset=True), user)
    commit(db)
    db.refresh(bill)
    return ok(dump(BillOut, bill), message="Bill updated")


@router.post("/{bill_id}/void")
def void_bill(
    bill_id: int,
    payload: BillVoidIn,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.VOID_BILLING])
    bill = bill_svc.void_bill(db, bill_id, payload.reason, user)
    commit(db)
    db.refresh(bill)
    return ok(dump(BillOut, bill), message="Bill voided")


@router.delete("/{bill_id}")
def delete_bill(
    bill_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.MANAGE_BILLING])
    bill_svc.delete_bill(db, bill_id, user)
    commit(db)
    return ok(None, message="Bill deleted")
