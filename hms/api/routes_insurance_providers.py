# FILE: hms/api/routes_insurance_providers.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from hms.api.deps import get_db
from hms.api.deps_permissions import require_permission
from hms.api.response import ok
from hms.api.tx import commit, dump
from hms.core import permissions as P
from hms.models.user import User
from hms.schemas.insurance import InsuranceProviderCreate, InsuranceProviderOut, InsuranceProviderUpdate
from hms.services import insurance_providers as prov_svc

router = APIRouter(prefix="/insurance-providers", tags=["Insurance - Providers"])


@router.get("")
def list_providers(
    q: Optional[str] = Query(None),
    active: Optional[bool] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(P.VIEW_PROVIDERS)),
):
    rows, total = prov_svc.list_providers(db, q=q, active=active, limit=limit, offset=offset)
    return ok([dump(InsuranceProviderOut, p) for p in rows], meta={"total": total})


@router.get("/active")
def active_providers(
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(P.VIEW_PROVIDERS)),
):
    return ok([dump(InsuranceProviderOut, p) for p in prov_svc.active_providers(db)])


@router.post("", status_code=201)
def create_provider(
    payload: InsuranceProviderCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(P.CREATE_PROVIDERS)),
):
    p = prov_svc.create_provider(db, inp=payload, user=user)
    commit(db)
    db.refresh(p)
    return ok(dump(InsuranceProviderOut, p), message="Insurance provider created", status_code=201)


@router.get("/{provider_id}")
def get_provider(
    provider_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(P.VIEW_PROVIDERS)),
):
    return ok(dump(InsuranceProviderOut, prov_svc.get_provider_or_404(db, provider_id)))


@router.put("/{provider_id}")
def update_provider(
    provider_id: int,
    payload: InsuranceProviderUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(P.EDIT_PROVIDERS)),
):
    p = prov_svc.update_provider(db, provider_id=provider_id, data=payload.model_dump(exclude_unset=True), user=user)
    commit(db)
    db.refresh(p)
    return ok(dump(InsuranceProviderOut, p), message="Insurance provider updated")


@router.post("/{provider_id}/toggle-status")
def toggle_status(
    provider_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(P.EDIT_PROVIDERS)),
):
    p = prov_svc.toggle_status(db, provider_id=provider_id, user=user)
    commit(db)
    db.refresh(p)
    state = "activated" if p.is_active else "deactivated"
    return ok(dump(InsuranceProviderOut, p), message=f"Insurance provider {state}")


@router.get("/{provider_id}/statistics")
def provider_statistics(
    provider_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(P.VIEW_PROVIDERS)),
):
    return ok(prov_svc.provider_statistics(db, provider_id))


@router.delete("/{provider_id}")
def delete_provider(
    provider_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(P.DELETE_PROVIDERS)),
):
    prov_svc.delete_provider(db, provider_id=provider_id, user=user)
    commit(db)
    return ok(None, message="Insurance provider deleted")
