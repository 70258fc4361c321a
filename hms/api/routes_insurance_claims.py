# FILE: hms/api/routes_insurance_claims.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile
from sqlalchemy.orm import Session

from hms.api.deps import current_user, get_db
from hms.api.response import ok, paged
from hms.api.tx import commit, dump
from hms.core import permissions as P
from hms.core.rbac import require_any
from hms.models.insurance import ClaimStatus
from hms.models.user import User
from hms.schemas.insurance import ClaimCreate, ClaimOut, ClaimUpdate
from hms.services import claims as claim_svc
from hms.services.bills import get_bill_or_404
from hms.services.workflow import CLAIM_RESOLVED

router = APIRouter(tags=["Billing - Insurance Claims"])


@router.get("/insurance-claims")
def list_claims(
    status: Optional[ClaimStatus] = Query(None),
    bill_id: Optional[int] = Query(None),
    patient_insurance_id: Optional[int] = Query(None),
    pending_only: bool = Query(False),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.VIEW_CLAIMS])
    rows, total = claim_svc.list_claims(
        db,
        status=status.value if status else None,
        bill_id=bill_id,
        patient_insurance_id=patient_insurance_id,
        pending_only=pending_only,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    return paged([dump(ClaimOut, c) for c in rows], total=total, limit=limit, offset=offset)


@router.get("/bills/{bill_id}/insurance-claims")
def list_bill_claims(
    bill_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.VIEW_CLAIMS])
    get_bill_or_404(db, bill_id)
    rows, total = claim_svc.list_claims(db, bill_id=bill_id, limit=500)
    return ok([dump(ClaimOut, c) for c in rows], meta={"total": total})


@router.post("/bills/{bill_id}/insurance-claims", status_code=201)
def create_claim(
    bill_id: int,
    payload: ClaimCreate,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.CREATE_CLAIMS])
    claim = claim_svc.create_claim(db, bill_id=bill_id, inp=payload, user=user)
    commit(db)
    db.refresh(claim)
    return ok(dump(ClaimOut, claim), message="Insurance claim created", status_code=201)


@router.get("/insurance-claims/{claim_id}")
def get_claim(
    claim_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.VIEW_CLAIMS])
    return ok(dump(ClaimOut, claim_svc.get_claim_or_404(db, claim_id)))


@router.put("/insurance-claims/{claim_id}")
def update_claim(
    claim_id: int,
    payload: ClaimUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    # recording the insurer's decision is a separate privilege from editing
    if payload.status in CLAIM_RESOLVED:
        require_any(user, [P.PROCESS_CLAIMS])
    else:
        require_any(user, [P.EDIT_CLAIMS])

    claim, response = claim_svc.update_claim(db,
                                             claim_id=claim_id,
                                             data=payload.model_dump(exclude_unset=True),
                                             user=user)
    commit(db)
    db.refresh(claim)
    return ok(
        {"claim": dump(ClaimOut, claim), "posted_amount": response["posted_amount"],
         "payment_id": response["payment_id"]},
        message="Insurance claim updated",
    )


@router.post("/insurance-claims/{claim_id}/submit")
def submit_claim(
    claim_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.SUBMIT_CLAIMS])
    claim, coverage, validation = claim_svc.submit_claim(db, claim_id=claim_id, user=user)
    commit(db)
    db.refresh(claim)
    return ok(
        {
            "claim": dump(ClaimOut, claim),
            "coverage": coverage.as_dict(),
            "validation": validation.as_dict(),
        },
        message="Insurance claim submitted",
    )


@router.get("/insurance-claims/{claim_id}/status")
def claim_status(
    claim_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.VIEW_CLAIMS])
    info = claim_svc.claim_status(db, claim_id)
    info["claim"] = dump(ClaimOut, info["claim"])
    return ok(info)


@router.post("/insurance-claims/{claim_id}/close")
def close_claim(
    claim_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.PROCESS_CLAIMS])
    claim = claim_svc.close_claim(db, claim_id=claim_id, user=user)
    commit(db)
    db.refresh(claim)
    return ok(dump(ClaimOut, claim), message="Insurance claim closed")


@router.post("/insurance-claims/{claim_id}/documents", status_code=201)
def upload_documents(
    claim_id: int,
    documents: List[UploadFile] = File(...),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.EDIT_CLAIMS])
    claim = claim_svc.add_documents(db, claim_id=claim_id, files=documents, user=user)
    commit(db)
    db.refresh(claim)
    return ok(dump(ClaimOut, claim), message="Documents uploaded", status_code=201)


@router.get("/insurance-claims/{claim_id}/documents/{index}")
def download_document(
    claim_id: int,
    index: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.VIEW_CLAIMS])
    return ok(claim_svc.read_document(db, claim_id=claim_id, index=index))


@router.delete("/insurance-claims/{claim_id}")
def delete_claim(
    claim_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.DELETE_CLAIMS])
    claim_svc.delete_claim(db, claim_id=claim_id, user=user)
    commit(db)
    return ok(None, message="Insurance claim deleted")
