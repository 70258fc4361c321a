# FILE: hms/services/reports.py
from __future__ import annotations

from collections import OrderedDict
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session, joinedload

from hms.models.billing import Bill, BillRefund, Payment, PaymentStatus
from hms.models.insurance import InsuranceClaim
from hms.services.billing_math import D0, _d, _q2


def _day_bounds(date_from: Optional[date], date_to: Optional[date]):
    start = datetime.combine(date_from, time.min) if date_from else None
    end = datetime.combine(date_to, time.max) if date_to else None
    return start, end


def outstanding_bills(db: Session, *, as_of: Optional[date] = None, patient_id: Optional[int] = None) -> Dict[str, Any]:
    as_of = as_of or date.today()
    q = (db.query(Bill).options(joinedload(Bill.patient)).filter(
        Bill.voided_at.is_(None),
        Bill.amount_due > 0,
    ))
    if patient_id:
        q = q.filter(Bill.patient_id == int(patient_id))

    rows: List[Dict[str, Any]] = []
    total_due = D0
    for b in q.order_by(Bill.bill_date.asc(), Bill.id.asc()).all():
        overdue = (as_of - b.due_date).days if b.due_date and b.due_date < as_of else 0
        rows.append({
            "bill_id": b.id,
            "bill_number": b.bill_number,
            "patient_id": b.patient_id,
            "patient_name": b.patient.full_name if b.patient else "",
            "bill_date": b.bill_date,
            "due_date": b.due_date,
            "total_amount": _q2(b.total_amount),
            "amount_paid": _q2(b.amount_paid),
            "amount_due": _q2(b.amount_due),
            "payment_status": b.payment_status.value,
            "days_overdue": overdue,
        })
        total_due += _d(b.amount_due)

    return {"as_of": as_of, "count": len(rows), "total_due": _q2(total_due), "rows": rows}


def revenue_by_day(db: Session, *, date_from: Optional[date] = None, date_to: Optional[date] = None) -> Dict[str, Any]:
    """Collections per day: non-voided payments minus refunds processed that day."""
    start, end = _day_bounds(date_from, date_to)

    pq = db.query(Payment).filter(Payment.status != PaymentStatus.VOIDED)
    rq = db.query(BillRefund)
    if start:
        pq = pq.filter(Payment.payment_date >= start)
        rq = rq.filter(BillRefund.processed_at >= start)
    if end:
        pq = pq.filter(Payment.payment_date <= end)
        rq = rq.filter(BillRefund.processed_at <= end)

    days: Dict[date, Dict[str, Decimal]] = {}

    def bucket(d: date) -> Dict[str, Decimal]:
        return days.setdefault(d, {"collected": D0, "refunded": D0})

    for p in pq.all():
        bucket(p.payment_date.date())["collected"] += _d(p.amount)
    for r in rq.all():
        when = r.processed_at or r.created_at
        bucket(when.date())["refunded"] += _d(r.refund_amount)

    rows = []
    collected = refunded = D0
    for d in sorted(days):
        v = days[d]
        rows.append({
            "date": d,
            "collected": _q2(v["collected"]),
            "refunded": _q2(v["refunded"]),
            "net": _q2(v["collected"] - v["refunded"]),
        })
        collected += v["collected"]
        refunded += v["refunded"]

    return {
        "date_from": date_from,
        "date_to": date_to,
        "total_collected": _q2(collected),
        "total_refunded": _q2(refunded),
        "net_revenue": _q2(collected - refunded),
        "rows": rows,
    }


def payment_method_breakdown(db: Session, *, date_from: Optional[date] = None,
                             date_to: Optional[date] = None) -> Dict[str, Any]:
    start, end = _day_bounds(date_from, date_to)
    q = db.query(Payment).filter(Payment.status != PaymentStatus.VOIDED)
    if start:
        q = q.filter(Payment.payment_date >= start)
    if end:
        q = q.filter(Payment.payment_date <= end)

    agg: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
    grand = D0
    for p in q.order_by(Payment.payment_method.asc()).all():
        key = p.payment_method.value
        row = agg.setdefault(key, {"payment_method": key, "count": 0, "amount": D0})
        row["count"] += 1
        row["amount"] += _d(p.amount)
        grand += _d(p.amount)

    rows = []
    for row in agg.values():
        share = (row["amount"] / grand * 100) if grand > 0 else D0
        rows.append({**row, "amount": _q2(row["amount"]), "share_percent": _q2(share)})
    return {"total": _q2(grand), "rows": rows}


def insurance_claims_summary(db: Session, *, date_from: Optional[date] = None,
                             date_to: Optional[date] = None) -> Dict[str, Any]:
    start, end = _day_bounds(date_from, date_to)
    q = db.query(InsuranceClaim)
    if start:
        q = q.filter(InsuranceClaim.created_at >= start)
    if end:
        q = q.filter(InsuranceClaim.created_at <= end)

    by_status: Dict[str, Dict[str, Any]] = {}
    claimed = approved = D0
    for c in q.all():
        key = c.status.value
        row = by_status.setdefault(key, {"status": key, "count": 0, "claimed": D0, "approved": D0})
        row["count"] += 1
        row["claimed"] += _d(c.claim_amount)
        row["approved"] += _d(c.approved_amount)
        claimed += _d(c.claim_amount)
        approved += _d(c.approved_amount)

    rows = [{**r, "claimed": _q2(r["claimed"]), "approved": _q2(r["approved"])}
            for r in sorted(by_status.values(), key=lambda r: r["status"])]
    return {
        "total_claims": sum(r["count"] for r in rows),
        "total_claimed": _q2(claimed),
        "total_approved": _q2(approved),
        "approval_ratio": _q2(approved / claimed * 100) if claimed > 0 else D0,
        "rows": rows,
    }
