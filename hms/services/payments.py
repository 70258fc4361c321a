# FILE: hms/services/payments.py
from __future__ import annotations

import logging
import secrets
import string
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from fastapi import HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

from hms.models.billing import (
    Bill,
    BillRefund,
    Payment,
    PaymentMethod,
    PaymentStatus,
)
from hms.models.insurance import InsuranceClaim, PatientInsurance
from hms.models.user import User
from hms.schemas.billing import PaymentCreate, RefundCreate
from hms.services.audit_logger import log_audit, snapshot
from hms.services.billing_math import D0, _d, _q2, recalculate_bill
from hms.services.bills import AUDIT_FIELDS as BILL_AUDIT_FIELDS
from hms.services.bills import ensure_bill_open, get_bill_or_404
from hms.services.workflow import PAYMENT_TRANSITIONS, ensure_transition

logger = logging.getLogger(__name__)

PAYMENT_AUDIT_FIELDS = ("transaction_id", "amount", "payment_method", "status", "bill_id")

_TXN_ALPHABET = string.ascii_uppercase + string.digits


def generate_transaction_id(now: Optional[datetime] = None) -> str:
    now = now or datetime.utcnow()
    suffix = "".join(secrets.choice(_TXN_ALPHABET) for _ in range(6))
    return f"TXN-{now:%Y%m%d}-{suffix}"


def _unique_transaction_id(db: Session) -> str:
    for _ in range(10):
        txn = generate_transaction_id()
        if not db.query(Payment.id).filter(Payment.transaction_id == txn).first():
            return txn
    raise HTTPException(status_code=500, detail="Could not allocate a transaction id")


def get_payment_or_404(db: Session, payment_id: int, *, lock: bool = False) -> Payment:
    q = db.query(Payment).filter(Payment.id == int(payment_id))
    if lock:
        q = q.with_for_update().populate_existing()
    p = q.one_or_none()
    if not p:
        raise HTTPException(status_code=404, detail="Payment not found")
    return p


def refunded_total(db: Session, payment_id: int) -> Decimal:
    s = (db.query(func.coalesce(func.sum(BillRefund.refund_amount), 0)).filter(
        BillRefund.payment_id == int(payment_id)).scalar())
    return _q2(s)


def refundable_remaining(db: Session, payment: Payment) -> Decimal:
    return _q2(_d(payment.amount) - refunded_total(db, payment.id))


def balance_out(bill: Bill) -> Dict[str, Any]:
    return {
        "bill_id": bill.id,
        "total_amount": bill.total_amount,
        "amount_paid": bill.amount_paid,
        "amount_due": bill.amount_due,
        "payment_status": bill.payment_status,
    }


def post_payment(
    db: Session,
    bill: Bill,
    *,
    amount: Decimal,
    method: PaymentMethod,
    user: Optional[User],
    payment_date: Optional[datetime] = None,
    transaction_id: Optional[str] = None,
    insurance_claim_id: Optional[int] = None,
    notes: Optional[str] = None,
    **extra: Any,
) -> Payment:
    """
    Append a completed payment to an already locked, open bill and
    recompute its balance. Used by cash desk payments and by claim settlement.
    """
    amount = _q2(amount)
    payment = Payment(
        bill_id=bill.id,
        transaction_id=transaction_id or _unique_transaction_id(db),
        payment_method=method,
        amount=amount,
        payment_date=payment_date or datetime.utcnow(),
        status=PaymentStatus.COMPLETED,
        insurance_claim_id=insurance_claim_id,
        notes=notes,
        received_by=getattr(user, "id", None),
        **extra,
    )
    db.add(payment)

    bill.amount_paid = _q2(_d(bill.amount_paid) + amount)
    recalculate_bill(bill)
    db.flush()
    return payment


def record_payment(
    db: Session,
    *,
    bill_id: int,
    inp: PaymentCreate,
    user: User,
) -> Tuple[Payment, Bill, Decimal]:
    bill = get_bill_or_404(db, bill_id, lock=True)
    ensure_bill_open(bill, "Cannot process payment for a voided bill")

    amount = _q2(inp.amount)

    change_due = D0
    if inp.amount_tendered is not None:
        tendered = _q2(inp.amount_tendered)
        if tendered < amount:
            raise HTTPException(status_code=422,
                                detail="amount_tendered cannot be less than amount")
        change_due = _q2(tendered - amount)

    if inp.transaction_id:
        dup = db.query(Payment.id).filter(Payment.transaction_id == inp.transaction_id).first()
        if dup:
            raise HTTPException(status_code=409, detail="Duplicate transaction_id")

    old = snapshot(bill, BILL_AUDIT_FIELDS)
    payment = post_payment(
        db,
        bill,
        amount=amount,
        method=inp.payment_method,
        user=user,
        payment_date=inp.payment_date,
        transaction_id=inp.transaction_id,
        notes=inp.notes,
        reference_number=inp.reference_number,
        card_last_four=inp.card_last_four,
        card_type=inp.card_type,
        bank_name=inp.bank_name,
        check_number=inp.check_number,
        amount_tendered=_q2(inp.amount_tendered) if inp.amount_tendered is not None else None,
        change_due=change_due,
    )

    log_audit(
        db,
        user_id=getattr(user, "id", None),
        action="CREATE",
        table_name="payments",
        record_id=payment.id,
        old_values={"bill": old},
        new_values={
            "payment": snapshot(payment, PAYMENT_AUDIT_FIELDS),
            "bill": snapshot(bill, BILL_AUDIT_FIELDS),
        },
    )
    logger.info("Payment %s of %s recorded on bill %s", payment.transaction_id, amount, bill.bill_number)
    return payment, bill, change_due


def release_policy_usage(db: Session, payment: Payment, amount: Decimal) -> Optional[PatientInsurance]:
    """
    Give back annual coverage when a claim settlement payment is voided or refunded.
    Payments not posted from an insurance claim leave every policy untouched.
    """
    if payment.insurance_claim_id is None or amount <= D0:
        return None
    claim = db.get(InsuranceClaim, payment.insurance_claim_id)
    if claim is None:
        return None

    policy = (db.query(PatientInsurance).filter(
        PatientInsurance.id == claim.patient_insurance_id).with_for_update().populate_existing().one())
    policy.annual_used_amount = max(D0, _q2(_d(policy.annual_used_amount) - amount))
    logger.info("Released %s of annual coverage on policy %s (claim %s)",
                amount, policy.policy_number, claim.claim_number)
    return policy


def void_payment(db: Session, *, payment_id: int, reason: str, user: User) -> Tuple[Payment, Bill]:
    payment = get_payment_or_404(db, payment_id, lock=True)
    if payment.status == PaymentStatus.VOIDED:
        raise HTTPException(status_code=409, detail="Payment is already voided")
    ensure_transition(PAYMENT_TRANSITIONS, payment.status, PaymentStatus.VOIDED, what="Payment")

    bill = get_bill_or_404(db, payment.bill_id, lock=True)
    old_bill = snapshot(bill, BILL_AUDIT_FIELDS)

    # reverse only what this payment still contributes after its refunds
    net = _q2(_d(payment.amount) - refunded_total(db, payment.id))

    payment.status = PaymentStatus.VOIDED
    payment.voided_at = datetime.utcnow()
    payment.voided_by = getattr(user, "id", None)
    payment.void_reason = reason

    bill.amount_paid = _q2(_d(bill.amount_paid) - net)
    recalculate_bill(bill)
    release_policy_usage(db, payment, net)
    db.flush()

    log_audit(
        db,
        user_id=getattr(user, "id", None),
        action="VOID",
        table_name="payments",
        record_id=payment.id,
        old_values={"bill": old_bill},
        new_values={
            "payment": snapshot(payment, PAYMENT_AUDIT_FIELDS),
            "bill": snapshot(bill, BILL_AUDIT_FIELDS),
        },
        reason=reason,
    )
    logger.info("Payment %s voided, reversed %s on bill %s", payment.transaction_id, net, bill.bill_number)
    return payment, bill


def refund_payment(
    db: Session,
    *,
    payment_id: int,
    inp: RefundCreate,
    user: User,
) -> Tuple[BillRefund, Payment, Bill]:
    payment = get_payment_or_404(db, payment_id, lock=True)
    if payment.status != PaymentStatus.COMPLETED:
        raise HTTPException(status_code=409, detail="Can only refund completed payments")

    amount = _q2(inp.refund_amount)
    remaining = refundable_remaining(db, payment)
    if amount > remaining:
        raise HTTPException(
            status_code=409,
            detail=f"Refund amount exceeds remaining refundable amount ({remaining})",
        )

    bill = get_bill_or_404(db, payment.bill_id, lock=True)
    old_bill = snapshot(bill, BILL_AUDIT_FIELDS)
    now = datetime.utcnow()
    uid = getattr(user, "id", None)

    refund = BillRefund(
        bill_id=bill.id,
        payment_id=payment.id,
        refund_amount=amount,
        refund_reason=inp.refund_reason.strip(),
        refund_method=inp.refund_method or payment.payment_method.value,
        status="processed",
        requested_by=uid,
        approved_by=uid,
        processed_by=uid,
        processed_at=now,
    )
    db.add(refund)

    if _q2(remaining - amount) == D0:
        ensure_transition(PAYMENT_TRANSITIONS, payment.status, PaymentStatus.REFUNDED, what="Payment")
        payment.status = PaymentStatus.REFUNDED

    bill.amount_paid = _q2(_d(bill.amount_paid) - amount)
    recalculate_bill(bill)
    release_policy_usage(db, payment, amount)
    db.flush()

    log_audit(
        db,
        user_id=uid,
        action="REFUND",
        table_name="payments",
        record_id=payment.id,
        old_values={"bill": old_bill},
        new_values={
            "refund_id": refund.id,
            "refund_amount": str(amount),
            "bill": snapshot(bill, BILL_AUDIT_FIELDS),
        },
        reason=refund.refund_reason,
    )
    logger.info("Refund %s on payment %s (bill %s)", amount, payment.transaction_id, bill.bill_number)
    return refund, payment, bill


def payment_statistics(db: Session, payment_id: int) -> Dict[str, Any]:
    payment = get_payment_or_404(db, payment_id)
    refunded = refunded_total(db, payment.id)
    count = db.query(func.count(BillRefund.id)).filter(BillRefund.payment_id == payment.id).scalar()
    return {
        "payment_id": payment.id,
        "transaction_id": payment.transaction_id,
        "status": payment.status,
        "amount": _q2(payment.amount),
        "total_refunded": refunded,
        "remaining_refundable": (_q2(_d(payment.amount) - refunded)
                                 if payment.status == PaymentStatus.COMPLETED else D0),
        "refund_count": int(count or 0),
    }


def bill_payment_statistics(db: Session, bill_id: int) -> Dict[str, Any]:
    bill = get_bill_or_404(db, bill_id)

    by_method: Dict[str, Decimal] = {}
    completed = voided = refunded_status = 0
    collected = D0
    for p in bill.payments:
        if p.status == PaymentStatus.VOIDED:
            voided += 1
            continue
        if p.status == PaymentStatus.REFUNDED:
            refunded_status += 1
        else:
            completed += 1
        key = p.payment_method.value
        by_method[key] = _q2(by_method.get(key, D0) + _d(p.amount))
        collected += _d(p.amount)

    refunds = (db.query(func.coalesce(func.sum(BillRefund.refund_amount), 0)).filter(
        BillRefund.bill_id == bill.id).scalar())

    return {
        "bill": balance_out(bill),
        "payment_count": len(bill.payments),
        "completed_count": completed,
        "voided_count": voided,
        "refunded_count": refunded_status,
        "total_collected": _q2(collected),
        "total_refunded": _q2(refunds),
        "net_collected": _q2(collected - _d(refunds)),
        "by_method": by_method,
    }


def list_payments(
    db: Session,
    *,
    bill_id: Optional[int] = None,
    status: Optional[str] = None,
    method: Optional[str] = None,
    min_amount: Optional[Decimal] = None,
    max_amount: Optional[Decimal] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    limit: int = 50,
    offset: int = 0,
):
    q = db.query(Payment)
    if bill_id:
        q = q.filter(Payment.bill_id == int(bill_id))
    if status:
        q = q.filter(Payment.status == status)
    if method:
        q = q.filter(Payment.payment_method == method)
    if min_amount is not None:
        q = q.filter(Payment.amount >= min_amount)
    if max_amount is not None:
        q = q.filter(Payment.amount <= max_amount)
    if date_from:
        q = q.filter(Payment.payment_date >= date_from)
    if date_to:
        q = q.filter(Payment.payment_date <= date_to)
    total = q.count()
    rows = q.order_by(Payment.payment_date.desc(), Payment.id.desc()).offset(offset).limit(limit).all()
    return rows, total
