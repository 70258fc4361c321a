# FILE: hms/api/routes_patient_insurance.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from hms.api.deps import current_user, get_db
from hms.api.response import ok
from hms.api.tx import commit, dump
from hms.core import permissions as P
from hms.core.rbac import require_any
from hms.models.user import User
from hms.schemas.insurance import (
    AmountAdjustIn,
    CoverageRequest,
    PatientInsuranceCreate,
    PatientInsuranceOut,
    PatientInsuranceUpdate,
)
from hms.services import patient_insurance as pi_svc
from hms.services.coverage import calculate_coverage, validate_policy

router = APIRouter(tags=["Insurance - Patient Policies"])


@router.get("/patients/{patient_id}/insurance")
def list_patient_insurance(
    patient_id: int,
    active: Optional[bool] = Query(None),
    primary: Optional[bool] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.VIEW_PATIENT_INSURANCE])
    rows = pi_svc.list_policies(db, patient_id, active=active, primary=primary)
    return ok([dump(PatientInsuranceOut, p) for p in rows])


@router.post("/patients/{patient_id}/insurance", status_code=201)
def create_patient_insurance(
    patient_id: int,
    payload: PatientInsuranceCreate,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.MANAGE_PATIENT_INSURANCE])
    policy = pi_svc.create_policy(db, patient_id=patient_id, inp=payload, user=user)
    commit(db)
    db.refresh(policy)
    return ok(dump(PatientInsuranceOut, policy), message="Patient insurance added", status_code=201)


@router.get("/patient-insurance/{policy_id}")
def get_patient_insurance(
    policy_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.VIEW_PATIENT_INSURANCE])
    policy = pi_svc.get_policy_or_404(db, policy_id)
    out = dump(PatientInsuranceOut, policy)
    out["provider_name"] = policy.provider.name if policy.provider else None
    out["claim_statistics"] = pi_svc.policy_claim_statistics(db, policy.id)
    return ok(out)


@router.put("/patient-insurance/{policy_id}")
def update_patient_insurance(
    policy_id: int,
    payload: PatientInsuranceUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.MANAGE_PATIENT_INSURANCE])
    policy = pi_svc.update_policy(db, policy_id=policy_id, data=payload.model_dump(exclude_unset=True), user=user)
    commit(db)
    db.refresh(policy)
    return ok(dump(PatientInsuranceOut, policy), message="Patient insurance updated")


@router.delete("/patient-insurance/{policy_id}")
def delete_patient_insurance(
    policy_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.MANAGE_PATIENT_INSURANCE])
    pi_svc.delete_policy(db, policy_id=policy_id, user=user)
    commit(db)
    return ok(None, message="Patient insurance deleted")


@router.post("/patient-insurance/{policy_id}/set-primary")
def set_primary(
    policy_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.MANAGE_PATIENT_INSURANCE])
    policy = pi_svc.set_primary(db, policy_id=policy_id, user=user)
    commit(db)
    db.refresh(policy)
    return ok(dump(PatientInsuranceOut, policy), message="Primary insurance updated")


@router.post("/patient-insurance/{policy_id}/update-deductible")
def update_deductible(
    policy_id: int,
    payload: AmountAdjustIn,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.MANAGE_PATIENT_INSURANCE])
    res = pi_svc.update_deductible(db, policy_id=policy_id, amount=payload.amount,
                                   operation=payload.operation, user=user)
    commit(db)
    return ok({
        "deductible_met": res["deductible_met"],
        "deductible_remaining": res["deductible_remaining"],
    }, message="Deductible updated")


@router.post("/patient-insurance/{policy_id}/update-annual-used")
def update_annual_used(
    policy_id: int,
    payload: AmountAdjustIn,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.MANAGE_PATIENT_INSURANCE])
    res = pi_svc.update_annual_used(db, policy_id=policy_id, amount=payload.amount,
                                    operation=payload.operation, user=user)
    commit(db)
    return ok({
        "annual_used_amount": res["annual_used_amount"],
        "annual_remaining": res["annual_remaining"],
    }, message="Annual usage updated")


@router.post("/patient-insurance/{policy_id}/calculate-coverage")
def calculate(
    policy_id: int,
    payload: CoverageRequest,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.VIEW_PATIENT_INSURANCE])
    policy = pi_svc.get_policy_or_404(db, policy_id)
    return ok(calculate_coverage(payload.amount, policy).as_dict())


@router.get("/patient-insurance/{policy_id}/validate")
def validate(
    policy_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.VIEW_PATIENT_INSURANCE])
    policy = pi_svc.get_policy_or_404(db, policy_id)
    return ok(validate_policy(policy).as_dict())
