# FILE: hms/services/bills.py
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session, selectinload

from hms.core.config import settings
from hms.models.billing import Bill, BillItem, BillStatus, Payment, PaymentStatus
from hms.models.insurance import PatientInsurance
from hms.models.patient import Patient
from hms.models.user import User
from hms.schemas.billing import BillCreate, BillItemIn
from hms.services.audit_logger import log_audit, snapshot
from hms.services.billing_math import (
    D0,
    _d,
    _q2,
    default_tax,
    items_sub_total,
    line_total,
    recalculate_bill,
)
from hms.services.billing_numbers import next_bill_number
from hms.services.coverage import calculate_coverage
from hms.services.workflow import BILL_TRANSITIONS, ensure_transition

logger = logging.getLogger(__name__)

AUDIT_FIELDS = (
    "bill_number",
    "sub_total",
    "discount",
    "tax",
    "total_amount",
    "amount_paid",
    "amount_due",
    "payment_status",
    "status",
)


def get_bill_or_404(db: Session, bill_id: int, *, lock: bool = False) -> Bill:
    q = db.query(Bill).filter(Bill.id == int(bill_id))
    if lock:
        q = q.with_for_update().populate_existing()
    bill = q.one_or_none()
    if not bill:
        raise HTTPException(status_code=404, detail="Bill not found")
    return bill


def ensure_bill_open(bill: Bill, message: str = "Bill is voided") -> None:
    if bill.voided_at is not None or bill.status == BillStatus.VOIDED:
        raise HTTPException(status_code=409, detail=message)


def _build_items(items: List[BillItemIn]) -> List[BillItem]:
    out: List[BillItem] = []
    for it in items:
        out.append(
            BillItem(
                description=it.description.strip(),
                quantity=int(it.quantity),
                unit_price=_q2(it.unit_price),
                discount_percentage=_d(it.discount_percentage),
                total_price=line_total(it.quantity, it.unit_price, it.discount_percentage),
            ))
    return out


def _check_discount(bill: Bill) -> None:
    if _d(bill.discount) > _d(bill.sub_total):
        raise HTTPException(status_code=422, detail="Discount cannot exceed sub_total")


def _load_policy_for_bill(db: Session, bill: Bill, policy_id: int) -> PatientInsurance:
    policy = db.get(PatientInsurance, int(policy_id))
    if not policy:
        raise HTTPException(status_code=404, detail="Patient insurance not found")
    if int(policy.patient_id) != int(bill.patient_id):
        raise HTTPException(status_code=422, detail="Insurance policy belongs to another patient")
    return policy


def refresh_insurance_estimate(db: Session, bill: Bill) -> None:
    """Store the insurer / patient split of the bill total for the bill's primary policy."""
    if not bill.primary_insurance_id:
        bill.insurance_coverage = None
        bill.patient_responsibility = None
        return

    policy = _load_policy_for_bill(db, bill, bill.primary_insurance_id)
    total = _d(bill.total_amount)
    if total <= D0:
        bill.insurance_coverage = D0
        bill.patient_responsibility = _q2(total)
        return

    cov = calculate_coverage(total, policy)
    bill.insurance_coverage = cov.insurance_coverage
    bill.patient_responsibility = cov.patient_responsibility


def create_bill(db: Session, data: BillCreate, user: User) -> Bill:
    patient = db.get(Patient, int(data.patient_id))
    if not patient:
        raise HTTPException(status_code=404, detail="Patient not found")

    if data.doctor_id is not None and not db.get(User, int(data.doctor_id)):
        raise HTTPException(status_code=404, detail="Doctor not found")

    bill = Bill(
        bill_number=next_bill_number(db),
        patient_id=patient.id,
        doctor_id=data.doctor_id,
        created_by=getattr(user, "id", None),
        bill_date=data.bill_date or date.today(),
        due_date=data.due_date,
        notes=data.notes,
        billing_address=data.billing_address,
        primary_insurance_id=data.primary_insurance_id,
        amount_paid=D0,
        status=BillStatus.ACTIVE,
    )

    if data.items:
        bill.items = _build_items(data.items)
        bill.sub_total = items_sub_total(bill.items)
    else:
        bill.sub_total = _q2(data.sub_total)

    bill.discount = _q2(data.discount)
    _check_discount(bill)

    if data.tax is not None:
        bill.tax = _q2(data.tax)
    else:
        bill.tax = default_tax(bill.sub_total, bill.discount, settings.BILLING_DEFAULT_TAX)

    recalculate_bill(bill)
    refresh_insurance_estimate(db, bill)

    db.add(bill)
    db.flush()

    log_audit(
        db,
        user_id=getattr(user, "id", None),
        action="CREATE",
        table_name="bills",
        record_id=bill.id,
        new_values=snapshot(bill, AUDIT_FIELDS),
    )
    logger.info("Bill %s created for patient_id=%s total=%s",
                bill.bill_number, bill.patient_id, bill.total_amount)
    return bill


def update_bill(db: Session, bill_id: int, data: Dict[str, Any], user: User) -> Bill:
    bill = get_bill_or_404(db, bill_id, lock=True)
    ensure_bill_open(bill, "Voided bills cannot be modified")
    old = snapshot(bill, AUDIT_FIELDS)

    if "doctor_id" in data:
        if data["doctor_id"] is not None and not db.get(User, int(data["doctor_id"])):
            raise HTTPException(status_code=404, detail="Doctor not found")
        bill.doctor_id = data["doctor_id"]

    for f in ("due_date", "notes", "billing_address"):
        if f in data:
            setattr(bill, f, data[f])

    if data.get("items") is not None:
        bill.items = _build_items([BillItemIn(**i) if isinstance(i, dict) else i for i in data["items"]])
        bill.sub_total = items_sub_total(bill.items)
    elif data.get("sub_total") is not None:
        bill.sub_total = _q2(data["sub_total"])

    if data.get("discount") is not None:
        bill.discount = _q2(data["discount"])
    if data.get("tax") is not None:
        bill.tax = _q2(data["tax"])

    _check_discount(bill)

    if "primary_insurance_id" in data:
        bill.primary_insurance_id = data["primary_insurance_id"]

    recalculate_bill(bill)
    refresh_insurance_estimate(db, bill)
    db.flush()

    log_audit(
        db,
        user_id=getattr(user, "id", None),
        action="UPDATE",
        table_name="bills",
        record_id=bill.id,
        old_values=old,
        new_values=snapshot(bill, AUDIT_FIELDS),
    )
    return bill


def void_bill(db: Session, bill_id: int, reason: str, user: User) -> Bill:
    bill = get_bill_or_404(db, bill_id, lock=True)
    if bill.voided_at is not None:
        raise HTTPException(status_code=409, detail="Bill is already voided")
    ensure_transition(BILL_TRANSITIONS, bill.status, BillStatus.VOIDED, what="Bill")

    old = snapshot(bill, AUDIT_FIELDS)
    bill.status = BillStatus.VOIDED
    bill.voided_at = datetime.utcnow()
    bill.voided_by = getattr(user, "id", None)
    bill.void_reason = reason
    recalculate_bill(bill)
    db.flush()

    log_audit(
        db,
        user_id=getattr(user, "id", None),
        action="VOID",
        table_name="bills",
        record_id=bill.id,
        old_values=old,
        new_values=snapshot(bill, AUDIT_FIELDS),
        reason=reason,
    )
    logger.info("Bill %s voided by user_id=%s", bill.bill_number, getattr(user, "id", None))
    return bill


def delete_bill(db: Session, bill_id: int, user: User) -> None:
    bill = get_bill_or_404(db, bill_id, lock=True)

    has_completed = (db.query(Payment.id).filter(
        Payment.bill_id == bill.id,
        Payment.status == PaymentStatus.COMPLETED,
    ).first())
    if has_completed:
        raise HTTPException(status_code=409,
                            detail="Cannot delete bill with completed payments")

    # voided payments stay as history, so the bill they point to stays too
    if db.query(Payment.id).filter(Payment.bill_id == bill.id).first():
        raise HTTPException(status_code=409,
                            detail="Bill has payment history; void it instead")

    if bill.claims:
        raise HTTPException(status_code=409,
                            detail="Cannot delete bill with insurance claims")

    old = snapshot(bill, AUDIT_FIELDS)
    db.delete(bill)
    db.flush()

    log_audit(
        db,
        user_id=getattr(user, "id", None),
        action="DELETE",
        table_name="bills",
        record_id=bill_id,
        old_values=old,
    )


def list_bills(
    db: Session,
    *,
    patient_id: Optional[int] = None,
    payment_status: Optional[str] = None,
    include_voided: bool = True,
    limit: int = 50,
    offset: int = 0,
):
    q = db.query(Bill).options(selectinload(Bill.items))
    if patient_id:
        q = q.filter(Bill.patient_id == int(patient_id))
    if payment_status:
        q = q.filter(Bill.payment_status == payment_status)
    if not include_voided:
        q = q.filter(Bill.voided_at.is_(None))
    total = q.count()
    rows = q.order_by(Bill.id.desc()).offset(offset).limit(limit).all()
    return rows, total
