# FILE: hms/services/patient_insurance.py
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

from hms.models.billing import Bill
from hms.models.insurance import (
    ClaimStatus,
    InsuranceClaim,
    InsuranceProvider,
    PatientInsurance,
)
from hms.models.patient import Patient
from hms.models.user import User
from hms.schemas.insurance import PatientInsuranceCreate
from hms.services.audit_logger import log_audit, snapshot
from hms.services.billing_math import D0, _d, _q2

logger = logging.getLogger(__name__)

POLICY_AUDIT_FIELDS = (
    "policy_number",
    "insurance_provider_id",
    "co_pay_amount",
    "co_pay_percentage",
    "deductible_amount",
    "deductible_met",
    "annual_max_coverage",
    "annual_used_amount",
    "is_primary",
    "priority_order",
    "is_active",
)

_MONEY_FIELDS = {
    "co_pay_amount",
    "co_pay_percentage",
    "deductible_amount",
    "deductible_met",
    "annual_max_coverage",
    "annual_used_amount",
}


def get_policy_or_404(db: Session, policy_id: int, *, lock: bool = False) -> PatientInsurance:
    q = db.query(PatientInsurance).filter(PatientInsurance.id == int(policy_id))
    if lock:
        q = q.with_for_update().populate_existing()
    p = q.one_or_none()
    if not p:
        raise HTTPException(status_code=404, detail="Patient insurance not found")
    return p


def _unset_other_primaries(db: Session, patient_id: int, keep_id: Optional[int]) -> None:
    q = db.query(PatientInsurance).filter(
        PatientInsurance.patient_id == int(patient_id),
        PatientInsurance.is_primary.is_(True),
    )
    if keep_id is not None:
        q = q.filter(PatientInsurance.id != int(keep_id))
    q.update({PatientInsurance.is_primary: False}, synchronize_session="fetch")


def _clamp_deductible(policy: PatientInsurance) -> None:
    # deductible_met never reported above the deductible itself
    if _d(policy.deductible_met) > _d(policy.deductible_amount):
        policy.deductible_met = _q2(policy.deductible_amount)


def list_policies(
    db: Session,
    patient_id: int,
    *,
    active: Optional[bool] = None,
    primary: Optional[bool] = None,
):
    if not db.get(Patient, int(patient_id)):
        raise HTTPException(status_code=404, detail="Patient not found")
    q = db.query(PatientInsurance).filter(PatientInsurance.patient_id == int(patient_id))
    if active is not None:
        q = q.filter(PatientInsurance.is_active.is_(active))
    if primary is not None:
        q = q.filter(PatientInsurance.is_primary.is_(primary))
    return q.order_by(PatientInsurance.priority_order.asc(), PatientInsurance.id.asc()).all()


def create_policy(db: Session, *, patient_id: int, inp: PatientInsuranceCreate, user: User) -> PatientInsurance:
    patient = db.get(Patient, int(patient_id))
    if not patient:
        raise HTTPException(status_code=404, detail="Patient not found")

    provider = db.get(InsuranceProvider, int(inp.insurance_provider_id))
    if not provider:
        raise HTTPException(status_code=404, detail="Insurance provider not found")

    dup = (db.query(PatientInsurance.id).filter(
        PatientInsurance.patient_id == patient.id,
        PatientInsurance.insurance_provider_id == provider.id,
        PatientInsurance.policy_number == inp.policy_number,
    ).first())
    if dup:
        raise HTTPException(status_code=409,
                            detail="This insurance policy already exists for this patient")

    if inp.is_primary:
        _unset_other_primaries(db, patient.id, keep_id=None)

    priority = inp.priority_order
    if priority is None:
        mx = (db.query(func.max(PatientInsurance.priority_order)).filter(
            PatientInsurance.patient_id == patient.id).scalar())
        priority = int(mx or 0) + 1

    payload = inp.model_dump(exclude={"priority_order"})
    for k in _MONEY_FIELDS:
        if payload.get(k) is not None:
            payload[k] = _q2(payload[k])
    payload["relationship_to_patient"] = inp.relationship_to_patient.value

    policy = PatientInsurance(patient_id=patient.id, priority_order=priority, **payload)
    _clamp_deductible(policy)
    db.add(policy)
    db.flush()

    log_audit(db,
              user_id=getattr(user, "id", None),
              action="CREATE",
              table_name="patient_insurances",
              record_id=policy.id,
              new_values=snapshot(policy, POLICY_AUDIT_FIELDS))
    return policy


def update_policy(db: Session, *, policy_id: int, data: Dict[str, Any], user: User) -> PatientInsurance:
    policy = get_policy_or_404(db, policy_id, lock=True)
    old = snapshot(policy, POLICY_AUDIT_FIELDS)

    start = data.get("coverage_start_date", policy.coverage_start_date)
    end = data.get("coverage_end_date", policy.coverage_end_date)
    if end is not None and start is not None and end <= start:
        raise HTTPException(status_code=422,
                            detail="coverage_end_date must be after coverage_start_date")

    if "policy_number" in data and data["policy_number"] != policy.policy_number:
        dup = (db.query(PatientInsurance.id).filter(
            PatientInsurance.patient_id == policy.patient_id,
            PatientInsurance.insurance_provider_id == policy.insurance_provider_id,
            PatientInsurance.policy_number == data["policy_number"],
            PatientInsurance.id != policy.id,
        ).first())
        if dup:
            raise HTTPException(status_code=409,
                                detail="This insurance policy already exists for this patient")

    if data.get("is_primary") and not policy.is_primary:
        _unset_other_primaries(db, policy.patient_id, keep_id=policy.id)

    for k, v in data.items():
        if k in _MONEY_FIELDS and v is not None:
            v = _q2(v)
        if k == "relationship_to_patient" and v is not None:
            v = getattr(v, "value", v)
        setattr(policy, k, v)

    _clamp_deductible(policy)
    db.flush()

    log_audit(db,
              user_id=getattr(user, "id", None),
              action="UPDATE",
              table_name="patient_insurances",
              record_id=policy.id,
              old_values=old,
              new_values=snapshot(policy, POLICY_AUDIT_FIELDS))
    return policy


def delete_policy(db: Session, *, policy_id: int, user: User) -> None:
    policy = get_policy_or_404(db, policy_id, lock=True)

    if db.query(InsuranceClaim.id).filter(InsuranceClaim.patient_insurance_id == policy.id).first():
        raise HTTPException(status_code=409,
                            detail="Cannot delete insurance with existing claims")
    if db.query(Bill.id).filter(Bill.primary_insurance_id == policy.id).first():
        raise HTTPException(status_code=409,
                            detail="Cannot delete insurance referenced by bills")

    old = snapshot(policy, POLICY_AUDIT_FIELDS)
    db.delete(policy)
    db.flush()
    log_audit(db,
              user_id=getattr(user, "id", None),
              action="DELETE",
              table_name="patient_insurances",
              record_id=policy_id,
              old_values=old)


def set_primary(db: Session, *, policy_id: int, user: User) -> PatientInsurance:
    """Make this policy primary with priority 1 and push the patient's other policies down by one."""
    policy = get_policy_or_404(db, policy_id, lock=True)

    others = (db.query(PatientInsurance).filter(
        PatientInsurance.patient_id == policy.patient_id,
        PatientInsurance.id != policy.id,
    ).with_for_update().order_by(PatientInsurance.priority_order.asc()).all())

    for o in others:
        o.is_primary = False
        o.priority_order = int(o.priority_order or 1) + 1

    policy.is_primary = True
    policy.priority_order = 1
    db.flush()

    log_audit(db,
              user_id=getattr(user, "id", None),
              action="SET_PRIMARY",
              table_name="patient_insurances",
              record_id=policy.id,
              new_values={"patient_id": policy.patient_id})
    return policy


def _apply_operation(current: Any, amount: Any, operation: str) -> Decimal:
    cur = _d(current)
    amt = _d(amount)
    if operation == "add":
        return _q2(cur + amt)
    if operation == "subtract":
        return _q2(max(D0, cur - amt))
    return _q2(amt)


def update_deductible(db: Session, *, policy_id: int, amount: Any, operation: str, user: User) -> Dict[str, Any]:
    policy = get_policy_or_404(db, policy_id, lock=True)
    old = policy.deductible_met
    policy.deductible_met = _apply_operation(policy.deductible_met, amount, operation)
    _clamp_deductible(policy)
    db.flush()

    log_audit(db,
              user_id=getattr(user, "id", None),
              action="UPDATE",
              table_name="patient_insurances",
              record_id=policy.id,
              old_values={"deductible_met": str(old)},
              new_values={"deductible_met": str(policy.deductible_met), "operation": operation})
    return {
        "policy": policy,
        "deductible_met": _q2(policy.deductible_met),
        "deductible_remaining": _q2(max(D0, _d(policy.deductible_amount) - _d(policy.deductible_met))),
    }


def update_annual_used(db: Session, *, policy_id: int, amount: Any, operation: str, user: User) -> Dict[str, Any]:
    policy = get_policy_or_404(db, policy_id, lock=True)
    old = policy.annual_used_amount
    policy.annual_used_amount = _apply_operation(policy.annual_used_amount, amount, operation)
    db.flush()

    log_audit(db,
              user_id=getattr(user, "id", None),
              action="UPDATE",
              table_name="patient_insurances",
              record_id=policy.id,
              old_values={"annual_used_amount": str(old)},
              new_values={"annual_used_amount": str(policy.annual_used_amount), "operation": operation})

    remaining = None
    if policy.annual_max_coverage is not None:
        remaining = _q2(max(D0, _d(policy.annual_max_coverage) - _d(policy.annual_used_amount)))
    return {
        "policy": policy,
        "annual_used_amount": _q2(policy.annual_used_amount),
        "annual_remaining": remaining,
    }


def policy_claim_statistics(db: Session, policy_id: int) -> Dict[str, Any]:
    rows = (db.query(InsuranceClaim.status, func.count(InsuranceClaim.id),
                     func.coalesce(func.sum(InsuranceClaim.claim_amount), 0),
                     func.coalesce(func.sum(InsuranceClaim.approved_amount), 0)).filter(
                         InsuranceClaim.patient_insurance_id == int(policy_id)).group_by(
                             InsuranceClaim.status).all())
    by_status = {}
    total = 0
    claimed = D0
    approved = D0
    for status, n, c_amt, a_amt in rows:
        key = status.value if isinstance(status, ClaimStatus) else str(status)
        by_status[key] = int(n)
        total += int(n)
        claimed += _d(c_amt)
        approved += _d(a_amt)
    return {
        "total_claims": total,
        "by_status": by_status,
        "total_claimed": _q2(claimed),
        "total_approved": _q2(approved),
    }
