# FILE: hms/api/routes_pharmacy.py
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
from hms.schemas.pharmacy import (
    MedicineCreate,
    MedicineOut,
    PurchaseCreate,
    PurchaseOut,
    SaleCancelIn,
    SaleCreate,
    SaleOut,
    StockAdjustIn,
    StockMovementOut,
    SupplierCreate,
    SupplierOut,
)
from hms.services import pharmacy_stock as stock_svc

router = APIRouter(prefix="/pharmacy", tags=["Pharmacy"])


# ---------------- Medicines ----------------

@router.get("/medicines")
def list_medicines(
    q: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.VIEW_PHARMACY])
    rows, total = stock_svc.list_medicines(db, q=q, status=status, limit=limit, offset=offset)
    return ok([dump(MedicineOut, m) for m in rows], meta={"total": total})


@router.get("/medicines/low-stock")
def low_stock(
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.VIEW_PHARMACY])
    return ok([dump(MedicineOut, m) for m in stock_svc.low_stock(db)])


@router.get("/medicines/expiring")
def expiring(
    days: Optional[int] = Query(None, ge=0, le=3650),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.VIEW_PHARMACY])
    return ok([dump(MedicineOut, m) for m in stock_svc.expiring_soon(db, days=days)])


@router.post("/medicines", status_code=201)
def create_medicine(
    payload: MedicineCreate,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.MANAGE_MEDICINES])
    m = stock_svc.create_medicine(db, inp=payload, user=user)
    commit(db)
    db.refresh(m)
    return ok(dump(MedicineOut, m), message="Medicine created", status_code=201)


@router.get("/medicines/{medicine_id}")
def get_medicine(
    medicine_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.VIEW_PHARMACY])
    m = stock_svc.get_medicine_or_404(db, medicine_id)
    out = dump(MedicineOut, m)
    out["recent_movements"] = [dump(StockMovementOut, mv) for mv in m.movements.limit(20).all()]
    return ok(out)


@router.post("/medicines/{medicine_id}/adjust-stock")
def adjust_stock(
    medicine_id: int,
    payload: StockAdjustIn,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.ADJUST_STOCK])
    m = stock_svc.adjust_stock(db, medicine_id=medicine_id, new_quantity=payload.new_quantity,
                               reason=payload.reason, user=user)
    commit(db)
    db.refresh(m)
    return ok(dump(MedicineOut, m), message="Stock adjusted")


@router.get("/stock-movements")
def list_movements(
    medicine_id: Optional[int] = Query(None),
    reference_type: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.VIEW_PHARMACY])
    rows, total = stock_svc.list_movements(db, medicine_id=medicine_id, reference_type=reference_type,
                                           limit=limit, offset=offset)
    return ok([dump(StockMovementOut, mv) for mv in rows], meta={"total": total})


@router.get("/alerts")
def stock_alerts(
    days: Optional[int] = Query(None, ge=0, le=3650),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.VIEW_PHARMACY])
    alerts = stock_svc.stock_alerts(db, days=days)
    return ok({k: [dump(MedicineOut, m) for m in v] for k, v in alerts.items()})


# ---------------- Sales ----------------

@router.get("/sales")
def list_sales(
    status: Optional[str] = Query(None),
    patient_id: Optional[int] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.VIEW_PHARMACY])
    rows, total = stock_svc.list_sales(db, status=status, patient_id=patient_id, limit=limit, offset=offset)
    return ok([dump(SaleOut, s) for s in rows], meta={"total": total})


@router.post("/sales", status_code=201)
def create_sale(
    payload: SaleCreate,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.CREATE_SALES])
    sale = stock_svc.create_sale(db, inp=payload, user=user)
    commit(db)
    db.refresh(sale)
    return ok(dump(SaleOut, sale), message="Sale completed", status_code=201)


@router.get("/sales/{sale_id}")
def get_sale(
    sale_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.VIEW_PHARMACY])
    return ok(dump(SaleOut, stock_svc.get_sale_or_404(db, sale_id)))


@router.post("/sales/{sale_id}/void")
def void_sale(
    sale_id: int,
    payload: Optional[SaleCancelIn] = None,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.CANCEL_SALES])
    reason = payload.reason if payload else None
    sale = stock_svc.cancel_sale(db, sale_id=sale_id, reason=reason, user=user)
    commit(db)
    db.refresh(sale)
    return ok(dump(SaleOut, sale), message="Sale cancelled, stock restored")


# ---------------- Suppliers / purchases ----------------

@router.get("/suppliers")
def list_suppliers(
    active: Optional[bool] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.VIEW_PHARMACY])
    return ok([dump(SupplierOut, s) for s in stock_svc.list_suppliers(db, active=active)])


@router.post("/suppliers", status_code=201)
def create_supplier(
    payload: SupplierCreate,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.MANAGE_PURCHASES])
    s = stock_svc.create_supplier(db, inp=payload, user=user)
    commit(db)
    db.refresh(s)
    return ok(dump(SupplierOut, s), message="Supplier created", status_code=201)


@router.get("/purchases")
def list_purchases(
    status: Optional[str] = Query(None),
    supplier_id: Optional[int] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.VIEW_PHARMACY])
    rows, total = stock_svc.list_purchases(db, status=status, supplier_id=supplier_id, limit=limit, offset=offset)
    return ok([dump(PurchaseOut, p) for p in rows], meta={"total": total})


@router.post("/purchases", status_code=201)
def create_purchase(
    payload: PurchaseCreate,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.MANAGE_PURCHASES])
    p = stock_svc.create_purchase(db, inp=payload, user=user)
    commit(db)
    db.refresh(p)
    return ok(dump(PurchaseOut, p), message="Purchase created", status_code=201)


@router.get("/purchases/{purchase_id}")
def get_purchase(
    purchase_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.VIEW_PHARMACY])
    return ok(dump(PurchaseOut, stock_svc.get_purchase_or_404(db, purchase_id)))


@router.post("/purchases/{purchase_id}/order")
def order_purchase(
    purchase_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.MANAGE_PURCHASES])
    p = stock_svc.mark_ordered(db, purchase_id=purchase_id, user=user)
    commit(db)
    db.refresh(p)
    return ok(dump(PurchaseOut, p), message="Purchase ordered")


@router.post("/purchases/{purchase_id}/receive")
def receive_purchase(
    purchase_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.MANAGE_PURCHASES])
    p = stock_svc.receive_purchase(db, purchase_id=purchase_id, user=user)
    commit(db)
    db.refresh(p)
    return ok(dump(PurchaseOut, p), message="Purchase received")


@router.post("/purchases/{purchase_id}/cancel")
def cancel_purchase(
    purchase_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    require_any(user, [P.MANAGE_PURCHASES])
    p = stock_svc.cancel_purchase(db, purchase_id=purchase_id, user=user)
    commit(db)
    db.refresh(p)
    return ok(dump(PurchaseOut, p), message="Purchase cancelled")
