# FILE: hms/api/routes_reports.py
from __future__ import annotations

from datetime import date
from io import BytesIO
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from hms.api.deps import get_db
from hms.api.deps_permissions import require_permission
from hms.api.response import ok
from hms.core import permissions as P
from hms.models.user import User
from hms.services import reports as rpt
from hms.services.excel_export import build_outstanding_excel, build_revenue_excel

router = APIRouter(prefix="/reports", tags=["Billing - Reports"])

XLSX_MEDIA = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _xlsx(build, filename: str, *args) -> StreamingResponse:
    bio = BytesIO()
    build(bio, *args)
    bio.seek(0)
    return StreamingResponse(
        bio,
        media_type=XLSX_MEDIA,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/outstanding")
def outstanding(
    as_of: Optional[date] = Query(None),
    patient_id: Optional[int] = Query(None),
    format: str = Query("json", pattern="^(json|xlsx)$"),
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(P.VIEW_BILLING_REPORTS)),
):
    report = rpt.outstanding_bills(db, as_of=as_of, patient_id=patient_id)
    if format == "xlsx":
        return _xlsx(build_outstanding_excel, f"outstanding_{report['as_of']}.xlsx", report)
    return ok(report)


@router.get("/revenue")
def revenue(
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    format: str = Query("json", pattern="^(json|xlsx)$"),
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(P.VIEW_BILLING_REPORTS)),
):
    report = rpt.revenue_by_day(db, date_from=date_from, date_to=date_to)
    if format == "xlsx":
        methods = rpt.payment_method_breakdown(db, date_from=date_from, date_to=date_to)
        name = f"revenue_{date_from or 'all'}_{date_to or 'all'}.xlsx"
        return _xlsx(build_revenue_excel, name, report, methods)
    return ok(report)


@router.get("/payment-methods")
def payment_methods(
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(P.VIEW_BILLING_REPORTS)),
):
    return ok(rpt.payment_method_breakdown(db, date_from=date_from, date_to=date_to))


@router.get("/insurance-claims")
def insurance_claims(
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(P.VIEW_BILLING_REPORTS)),
):
    return ok(rpt.insurance_claims_summary(db, date_from=date_from, date_to=date_to))
