# FILE: hms/services/billing_math.py
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable

from hms.models.billing import Bill, BillPaymentStatus

D0 = Decimal("0.00")
Q2 = Decimal("0.01")


def _d(x) -> Decimal:
    if x is None or x == "":
        return Decimal("0")
    if isinstance(x, Decimal):
        return x
    return Decimal(str(x))


def _q2(x) -> Decimal:
    return _d(x).quantize(Q2, rounding=ROUND_HALF_UP)


def line_total(quantity: Any, unit_price: Any, discount_percentage: Any = 0) -> Decimal:
    gross = _d(quantity) * _d(unit_price)
    disc = gross * _d(discount_percentage) / Decimal("100")
    return _q2(gross - disc)


def items_sub_total(items: Iterable[Any]) -> Decimal:
    total = D0
    for it in items:
        total += _d(it.total_price)
    return _q2(total)


def derive_payment_status(total: Decimal, due: Decimal, *, voided: bool = False) -> BillPaymentStatus:
    """
    paid    -> nothing left to pay
    partial -> something was paid but a balance remains
    pending -> nothing paid yet
    """
    if voided:
        return BillPaymentStatus.CANCELLED
    if due <= D0:
        return BillPaymentStatus.PAID
    if due < total:
        return BillPaymentStatus.PARTIAL
    return BillPaymentStatus.PENDING


def recalculate_bill(bill: Bill) -> Bill:
    """Recompute total / due / payment_status together from the stored components."""
    sub_total = _q2(bill.sub_total)
    discount = _q2(bill.discount)
    tax = _q2(bill.tax)
    paid = _q2(bill.amount_paid)

    total = _q2(sub_total + tax - discount)
    due = _q2(total - paid)

    bill.sub_total = sub_total
    bill.discount = discount
    bill.tax = tax
    bill.amount_paid = paid
    bill.total_amount = total
    bill.amount_due = due
    bill.payment_status = derive_payment_status(
        total, due, voided=bill.voided_at is not None)
    return bill


def default_tax(sub_total: Any, discount: Any, rate_percent: Any) -> Decimal:
    base = _d(sub_total) - _d(discount)
    if base <= 0:
        return D0
    return _q2(base * _d(rate_percent) / Decimal("100"))
