# FILE: hms/services/insurance_providers.py
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, Optional

from fastapi import HTTPException
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from hms.models.insurance import InsuranceClaim, InsuranceProvider, PatientInsurance
from hms.models.user import User
from hms.schemas.insurance import InsuranceProviderCreate
from hms.services.audit_logger import log_audit, snapshot
from hms.services.billing_math import D0, _d, _q2

logger = logging.getLogger(__name__)

PROVIDER_AUDIT_FIELDS = ("name", "code", "is_active", "max_coverage_amount")


def _normalize(payload: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(payload)
    if out.get("code"):
        out["code"] = out["code"].strip().upper()
    if out.get("name"):
        out["name"] = out["name"].strip()
    if out.get("coverage_types") is not None:
        out["coverage_types"] = [getattr(c, "value", c) for c in out["coverage_types"]]
    if out.get("email") is not None:
        out["email"] = str(out["email"])
    if out.get("max_coverage_amount") is not None:
        out["max_coverage_amount"] = _q2(out["max_coverage_amount"])
    return out


def _ensure_unique(db: Session, *, name: Optional[str], code: Optional[str], exclude_id: Optional[int] = None) -> None:
    conds = []
    if name:
        conds.append(InsuranceProvider.name == name)
    if code:
        conds.append(InsuranceProvider.code == code)
    if not conds:
        return
    q = db.query(InsuranceProvider).filter(or_(*conds))
    if exclude_id is not None:
        q = q.filter(InsuranceProvider.id != int(exclude_id))
    hit = q.first()
    if hit:
        field = "name" if name and hit.name == name else "code"
        raise HTTPException(status_code=409,
                            detail=f"Insurance provider {field} already exists")


def get_provider_or_404(db: Session, provider_id: int) -> InsuranceProvider:
    p = db.get(InsuranceProvider, int(provider_id))
    if not p:
        raise HTTPException(status_code=404, detail="Insurance provider not found")
    return p


def list_providers(
    db: Session,
    *,
    q: Optional[str] = None,
    active: Optional[bool] = None,
    limit: int = 50,
    offset: int = 0,
):
    query = db.query(InsuranceProvider)
    if q:
        like = f"%{q.strip()}%"
        query = query.filter(or_(InsuranceProvider.name.ilike(like), InsuranceProvider.code.ilike(like)))
    if active is not None:
        query = query.filter(InsuranceProvider.is_active.is_(active))
    total = query.count()
    rows = query.order_by(InsuranceProvider.name.asc()).offset(offset).limit(limit).all()
    return rows, total


def active_providers(db: Session):
    return (db.query(InsuranceProvider).filter(InsuranceProvider.is_active.is_(True)).order_by(
        InsuranceProvider.name.asc()).all())


def create_provider(db: Session, *, inp: InsuranceProviderCreate, user: User) -> InsuranceProvider:
    data = _normalize(inp.model_dump(mode="python"))
    if inp.address is not None:
        data["address"] = inp.address.model_dump(exclude_none=True)
    _ensure_unique(db, name=data["name"], code=data["code"])

    p = InsuranceProvider(**data)
    db.add(p)
    db.flush()

    log_audit(db,
              user_id=getattr(user, "id", None),
              action="CREATE",
              table_name="insurance_providers",
              record_id=p.id,
              new_values=snapshot(p, PROVIDER_AUDIT_FIELDS))
    logger.info("Insurance provider %s (%s) created", p.name, p.code)
    return p


def update_provider(db: Session, *, provider_id: int, data: Dict[str, Any], user: User) -> InsuranceProvider:
    p = get_provider_or_404(db, provider_id)
    old = snapshot(p, PROVIDER_AUDIT_FIELDS)

    data = _normalize(data)
    if isinstance(data.get("address"), dict):
        data["address"] = {k: v for k, v in data["address"].items() if v is not None}
    _ensure_unique(db, name=data.get("name"), code=data.get("code"), exclude_id=p.id)

    for k, v in data.items():
        if k in {"name", "code", "is_active"} and v is None:
            continue
        setattr(p, k, v)
    db.flush()

    log_audit(db,
              user_id=getattr(user, "id", None),
              action="UPDATE",
              table_name="insurance_providers",
              record_id=p.id,
              old_values=old,
              new_values=snapshot(p, PROVIDER_AUDIT_FIELDS))
    return p


def toggle_status(db: Session, *, provider_id: int, user: User) -> InsuranceProvider:
    p = get_provider_or_404(db, provider_id)
    p.is_active = not bool(p.is_active)
    db.flush()
    log_audit(db,
              user_id=getattr(user, "id", None),
              action="UPDATE",
              table_name="insurance_providers",
              record_id=p.id,
              new_values={"is_active": p.is_active})
    return p


def delete_provider(db: Session, *, provider_id: int, user: User) -> None:
    p = get_provider_or_404(db, provider_id)
    active = (db.query(func.count(PatientInsurance.id)).filter(
        PatientInsurance.insurance_provider_id == p.id,
        PatientInsurance.is_active.is_(True),
    ).scalar())
    if active:
        raise HTTPException(status_code=409,
                            detail="Cannot delete provider with active patient policies")
    if db.query(PatientInsurance.id).filter(PatientInsurance.insurance_provider_id == p.id).first():
        raise HTTPException(status_code=409,
                            detail="Provider has policy history; deactivate it instead")

    old = snapshot(p, PROVIDER_AUDIT_FIELDS)
    db.delete(p)
    db.flush()
    log_audit(db,
              user_id=getattr(user, "id", None),
              action="DELETE",
              table_name="insurance_providers",
              record_id=provider_id,
              old_values=old)


def provider_statistics(db: Session, provider_id: int) -> Dict[str, Any]:
    p = get_provider_or_404(db, provider_id)

    total_policies = (db.query(func.count(PatientInsurance.id)).filter(
        PatientInsurance.insurance_provider_id == p.id).scalar())
    active_policies = (db.query(func.count(PatientInsurance.id)).filter(
        PatientInsurance.insurance_provider_id == p.id,
        PatientInsurance.is_active.is_(True),
    ).scalar())
    expired_policies = (db.query(func.count(PatientInsurance.id)).filter(
        PatientInsurance.insurance_provider_id == p.id,
        PatientInsurance.coverage_end_date.isnot(None),
        PatientInsurance.coverage_end_date < date.today(),
    ).scalar())
    primary_policies = (db.query(func.count(PatientInsurance.id)).filter(
        PatientInsurance.insurance_provider_id == p.id,
        PatientInsurance.is_primary.is_(True),
    ).scalar())

    claim_q = (db.query(InsuranceClaim).join(
        PatientInsurance, PatientInsurance.id == InsuranceClaim.patient_insurance_id).filter(
            PatientInsurance.insurance_provider_id == p.id))

    by_status: Dict[str, int] = {}
    claimed = D0
    approved = D0
    for c in claim_q.all():
        by_status[c.status.value] = by_status.get(c.status.value, 0) + 1
        claimed += _d(c.claim_amount)
        approved += _d(c.approved_amount)

    return {
        "provider_id": p.id,
        "name": p.name,
        "total_policies": int(total_policies or 0),
        "active_policies": int(active_policies or 0),
        "expired_policies": int(expired_policies or 0),
        "primary_policies": int(primary_policies or 0),
        "total_claims": sum(by_status.values()),
        "claims_by_status": by_status,
        "total_claimed": _q2(claimed),
        "total_approved": _q2(approved),
        "approval_rate": _q2(approved / claimed * 100) if claimed > 0 else D0,
    }
