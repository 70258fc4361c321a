# FILE: hms/services/pharmacy_stock.py
"""
Pharmacy stock ledger.

Every change to Medicine.stock_quantity goes through _move(), which locks the
medicine row, refuses to go below zero and appends a StockMovement row with
previous/new stock. Sales, purchases and manual adjustments build on it.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from fastapi import HTTPException
from sqlalchemy import or_
from sqlalchemy.orm import Session

from hms.core.config import settings
from hms.models.pharmacy import (
    Medicine,
    MedicineStatus,
    MovementReference,
    MovementType,
    Purchase,
    PurchaseItem,
    PurchaseStatus,
    Sale,
    SaleItem,
    SaleStatus,
    StockMovement,
    Supplier,
)
from hms.models.patient import Patient
from hms.models.user import User
from hms.schemas.pharmacy import MedicineCreate, PurchaseCreate, SaleCreate, SupplierCreate
from hms.services.audit_logger import log_audit
from hms.services.billing_math import D0, _d, _q2, line_total
from hms.services.billing_numbers import next_number
from hms.services.workflow import PURCHASE_TRANSITIONS, SALE_TRANSITIONS, ensure_transition

logger = logging.getLogger(__name__)


# ---------- stock core ----------

def _lock_medicine(db: Session, medicine_id: int) -> Medicine:
    m = (db.query(Medicine).filter(Medicine.id == int(medicine_id)).with_for_update().populate_existing().one_or_none())
    if not m:
        raise HTTPException(status_code=404, detail=f"Medicine {medicine_id} not found")
    return m


def _move(
    db: Session,
    medicine: Medicine,
    *,
    delta: int,
    reference_type: MovementReference,
    reference_id: Optional[int],
    user: Optional[User],
    notes: Optional[str] = None,
) -> StockMovement:
    """Apply a signed quantity to an already locked medicine and record the movement."""
    previous = int(medicine.stock_quantity or 0)
    new = previous + int(delta)
    if new < 0:
        raise HTTPException(
            status_code=409,
            detail=f"Insufficient stock for {medicine.name}: available {previous}, requested {-int(delta)}",
        )

    medicine.stock_quantity = new
    mv = StockMovement(
        medicine_id=medicine.id,
        type=MovementType.IN if delta >= 0 else MovementType.OUT,
        quantity=abs(int(delta)),
        previous_stock=previous,
        new_stock=new,
        reference_type=reference_type,
        reference_id=reference_id,
        notes=notes,
        user_id=getattr(user, "id", None),
    )
    db.add(mv)
    return mv


def adjust_stock(db: Session, *, medicine_id: int, new_quantity: int, reason: str, user: User) -> Medicine:
    """Set stock to a counted quantity; a zero difference writes nothing."""
    m = _lock_medicine(db, medicine_id)
    delta = int(new_quantity) - int(m.stock_quantity or 0)
    if delta == 0:
        return m
    _move(db, m, delta=delta, reference_type=MovementReference.ADJUSTMENT,
          reference_id=None, user=user, notes=reason)
    db.flush()
    log_audit(db,
              user_id=getattr(user, "id", None),
              action="ADJUST",
              table_name="medicines",
              record_id=m.id,
              old_values={"stock_quantity": int(new_quantity) - delta},
              new_values={"stock_quantity": m.stock_quantity},
              reason=reason)
    return m


# ---------- medicines ----------

def get_medicine_or_404(db: Session, medicine_id: int) -> Medicine:
    m = db.get(Medicine, int(medicine_id))
    if not m:
        raise HTTPException(status_code=404, detail="Medicine not found")
    return m


def create_medicine(db: Session, *, inp: MedicineCreate, user: User) -> Medicine:
    code = inp.medicine_code.strip().upper()
    if db.query(Medicine.id).filter(Medicine.medicine_code == code).first():
        raise HTTPException(status_code=409, detail="Medicine code already exists")

    data = inp.model_dump(exclude={"stock_quantity"})
    data["medicine_code"] = code
    data["cost_price"] = _q2(inp.cost_price)
    data["sale_price"] = _q2(inp.sale_price)
    m = Medicine(stock_quantity=0, status=MedicineStatus.ACTIVE, **data)
    db.add(m)
    db.flush()

    # opening stock goes through the ledger like any other receipt
    if inp.stock_quantity:
        _move(db, m, delta=int(inp.stock_quantity), reference_type=MovementReference.ADJUSTMENT,
              reference_id=None, user=user, notes="Opening stock")
        db.flush()

    log_audit(db,
              user_id=getattr(user, "id", None),
              action="CREATE",
              table_name="medicines",
              record_id=m.id,
              new_values={"medicine_code": m.medicine_code, "stock_quantity": m.stock_quantity})
    return m


def list_medicines(db: Session, *, q: Optional[str] = None, status: Optional[str] = None,
                   limit: int = 50, offset: int = 0):
    query = db.query(Medicine)
    if q:
        like = f"%{q.strip()}%"
        query = query.filter(or_(Medicine.name.ilike(like), Medicine.medicine_code.ilike(like)))
    if status:
        query = query.filter(Medicine.status == status)
    total = query.count()
    rows = query.order_by(Medicine.name.asc()).offset(offset).limit(limit).all()
    return rows, total


def low_stock(db: Session) -> List[Medicine]:
    return (db.query(Medicine).filter(
        Medicine.status == MedicineStatus.ACTIVE,
        Medicine.stock_quantity <= Medicine.reorder_level,
    ).order_by(Medicine.stock_quantity.asc(), Medicine.name.asc()).all())


def expiring_soon(db: Session, *, days: Optional[int] = None, today: Optional[date] = None) -> List[Medicine]:
    today = today or date.today()
    horizon = today + timedelta(days=int(days if days is not None else settings.EXPIRY_ALERT_DAYS))
    return (db.query(Medicine).filter(
        Medicine.expiry_date.isnot(None),
        Medicine.expiry_date <= horizon,
        Medicine.stock_quantity > 0,
    ).order_by(Medicine.expiry_date.asc()).all())


def stock_alerts(db: Session, *, days: Optional[int] = None) -> Dict[str, Any]:
    today = date.today()
    soon = expiring_soon(db, days=days, today=today)
    return {
        "low_stock": low_stock(db),
        "expiring_soon": [m for m in soon if m.expiry_date >= today],
        "expired": [m for m in soon if m.expiry_date < today],
    }


def list_movements(db: Session, *, medicine_id: Optional[int] = None,
                   reference_type: Optional[str] = None, limit: int = 100, offset: int = 0):
    q = db.query(StockMovement)
    if medicine_id:
        q = q.filter(StockMovement.medicine_id == int(medicine_id))
    if reference_type:
        q = q.filter(StockMovement.reference_type == reference_type)
    total = q.count()
    rows = q.order_by(StockMovement.id.desc()).offset(offset).limit(limit).all()
    return rows, total


# ---------- sales ----------

def _merged_quantities(items: Iterable[Any]) -> Dict[int, int]:
    need: Dict[int, int] = {}
    for it in items:
        need[int(it.medicine_id)] = need.get(int(it.medicine_id), 0) + int(it.quantity)
    return need


def get_sale_or_404(db: Session, sale_id: int, *, lock: bool = False) -> Sale:
    q = db.query(Sale).filter(Sale.id == int(sale_id))
    if lock:
        q = q.with_for_update().populate_existing()
    s = q.one_or_none()
    if not s:
        raise HTTPException(status_code=404, detail="Sale not found")
    return s


def create_sale(db: Session, *, inp: SaleCreate, user: User) -> Sale:
    """
    Sell medicines as one unit of work.

    Rows are locked in id order and availability is checked for the whole
    basket before anything is deducted, so a short item fails the sale
    without partial movements.
    """
    if inp.patient_id is not None and not db.get(Patient, int(inp.patient_id)):
        raise HTTPException(status_code=404, detail="Patient not found")

    need = _merged_quantities(inp.items)
    locked: Dict[int, Medicine] = {}
    for mid in sorted(need):
        locked[mid] = _lock_medicine(db, mid)

    short = []
    for mid, qty in need.items():
        m = locked[mid]
        if m.status != MedicineStatus.ACTIVE:
            raise HTTPException(status_code=409, detail=f"{m.name} is not available for sale")
        if int(m.stock_quantity or 0) < qty:
            short.append(f"{m.name} (available {m.stock_quantity}, requested {qty})")
    if short:
        raise HTTPException(status_code=409, detail="Insufficient stock: " + ", ".join(short))

    sale = Sale(
        sale_number=next_number(db, prefix="PHS", padding=5),
        patient_id=inp.patient_id,
        payment_method=inp.payment_method,
        notes=inp.notes,
        status=SaleStatus.COMPLETED,
        sold_by=getattr(user, "id", None),
    )
    sub_total = D0
    for it in inp.items:
        m = locked[int(it.medicine_id)]
        price = _q2(it.unit_price if it.unit_price is not None else m.sale_price)
        total = line_total(it.quantity, price, it.discount_percentage)
        sale.items.append(SaleItem(
            medicine_id=m.id,
            quantity=int(it.quantity),
            unit_price=price,
            discount_percentage=_d(it.discount_percentage),
            total_price=total,
        ))
        sub_total += total

    discount = _q2(inp.discount_amount)
    if discount > sub_total:
        raise HTTPException(status_code=422, detail="Discount cannot exceed sub_total")

    sale.sub_total = _q2(sub_total)
    sale.discount_amount = discount
    sale.tax_amount = _q2(inp.tax_amount)
    sale.grand_total = _q2(sub_total - discount + _d(inp.tax_amount))
    db.add(sale)
    db.flush()

    for it in sale.items:
        _move(db, locked[it.medicine_id], delta=-int(it.quantity), reference_type=MovementReference.SALE,
              reference_id=sale.id, user=user, notes=sale.sale_number)
    db.flush()

    log_audit(db,
              user_id=getattr(user, "id", None),
              action="CREATE",
              table_name="pharmacy_sales",
              record_id=sale.id,
              new_values={"sale_number": sale.sale_number, "grand_total": str(sale.grand_total)})
    logger.info("Pharmacy sale %s: %s items, total %s", sale.sale_number, len(sale.items), sale.grand_total)
    return sale


def cancel_sale(db: Session, *, sale_id: int, reason: Optional[str], user: User) -> Sale:
    sale = get_sale_or_404(db, sale_id, lock=True)
    ensure_transition(SALE_TRANSITIONS, sale.status, SaleStatus.CANCELLED, what="Sale")

    for mid in sorted({it.medicine_id for it in sale.items}):
        m = _lock_medicine(db, mid)
        qty = sum(int(it.quantity) for it in sale.items if it.medicine_id == mid)
        _move(db, m, delta=qty, reference_type=MovementReference.RETURN,
              reference_id=sale.id, user=user, notes=reason or f"Cancel {sale.sale_number}")

    sale.status = SaleStatus.CANCELLED
    sale.cancelled_at = datetime.utcnow()
    sale.cancelled_by = getattr(user, "id", None)
    db.flush()

    log_audit(db,
              user_id=getattr(user, "id", None),
              action="CANCEL",
              table_name="pharmacy_sales",
              record_id=sale.id,
              reason=reason)
    return sale


def list_sales(db: Session, *, status: Optional[str] = None, patient_id: Optional[int] = None,
               limit: int = 50, offset: int = 0):
    q = db.query(Sale)
    if status:
        q = q.filter(Sale.status == status)
    if patient_id:
        q = q.filter(Sale.patient_id == int(patient_id))
    total = q.count()
    rows = q.order_by(Sale.id.desc()).offset(offset).limit(limit).all()
    return rows, total


# ---------- suppliers / purchases ----------

def create_supplier(db: Session, *, inp: SupplierCreate, user: User) -> Supplier:
    name = inp.name.strip()
    if db.query(Supplier.id).filter(Supplier.name == name).first():
        raise HTTPException(status_code=409, detail="Supplier already exists")
    s = Supplier(**{**inp.model_dump(), "name": name})
    db.add(s)
    db.flush()
    log_audit(db,
              user_id=getattr(user, "id", None),
              action="CREATE",
              table_name="suppliers",
              record_id=s.id,
              new_values={"name": s.name})
    return s


def list_suppliers(db: Session, *, active: Optional[bool] = None) -> List[Supplier]:
    q = db.query(Supplier)
    if active is not None:
        q = q.filter(Supplier.is_active.is_(active))
    return q.order_by(Supplier.name.asc()).all()


def get_purchase_or_404(db: Session, purchase_id: int, *, lock: bool = False) -> Purchase:
    q = db.query(Purchase).filter(Purchase.id == int(purchase_id))
    if lock:
        q = q.with_for_update().populate_existing()
    p = q.one_or_none()
    if not p:
        raise HTTPException(status_code=404, detail="Purchase not found")
    return p


def create_purchase(db: Session, *, inp: PurchaseCreate, user: User) -> Purchase:
    supplier = db.get(Supplier, int(inp.supplier_id))
    if not supplier:
        raise HTTPException(status_code=404, detail="Supplier not found")

    p = Purchase(
        purchase_number=next_number(db, prefix="PUR", padding=5),
        supplier_id=supplier.id,
        purchase_date=inp.purchase_date or date.today(),
        status=PurchaseStatus.PENDING,
        notes=inp.notes,
        created_by=getattr(user, "id", None),
    )

    subtotal = D0
    for it in inp.items:
        get_medicine_or_404(db, it.medicine_id)
        total = _q2(_d(it.cost_price) * int(it.quantity))
        p.items.append(PurchaseItem(
            medicine_id=int(it.medicine_id),
            quantity=int(it.quantity),
            cost_price=_q2(it.cost_price),
            batch_number=it.batch_number,
            expiry_date=it.expiry_date,
            total=total,
        ))
        subtotal += total

    p.subtotal = _q2(subtotal)
    p.tax = _q2(inp.tax)
    p.discount = _q2(inp.discount)
    p.total = _q2(subtotal + _d(inp.tax) - _d(inp.discount))
    if p.total < D0:
        raise HTTPException(status_code=422, detail="Discount cannot exceed purchase total")

    db.add(p)
    db.flush()
    log_audit(db,
              user_id=getattr(user, "id", None),
              action="CREATE",
              table_name="pharmacy_purchases",
              record_id=p.id,
              new_values={"purchase_number": p.purchase_number, "total": str(p.total)})
    return p


def mark_ordered(db: Session, *, purchase_id: int, user: User) -> Purchase:
    p = get_purchase_or_404(db, purchase_id, lock=True)
    ensure_transition(PURCHASE_TRANSITIONS, p.status, PurchaseStatus.ORDERED, what="Purchase")
    p.status = PurchaseStatus.ORDERED
    db.flush()
    log_audit(db,
              user_id=getattr(user, "id", None),
              action="UPDATE",
              table_name="pharmacy_purchases",
              record_id=p.id,
              new_values={"status": p.status.value})
    return p


def receive_purchase(db: Session, *, purchase_id: int, user: User) -> Purchase:
    """Bring purchased quantities into stock and refresh each medicine's cost, batch and expiry."""
    p = get_purchase_or_404(db, purchase_id, lock=True)
    ensure_transition(PURCHASE_TRANSITIONS, p.status, PurchaseStatus.RECEIVED, what="Purchase")

    for it in sorted(p.items, key=lambda x: x.medicine_id):
        m = _lock_medicine(db, it.medicine_id)
        _move(db, m, delta=int(it.quantity), reference_type=MovementReference.PURCHASE,
              reference_id=p.id, user=user, notes=p.purchase_number)
        m.cost_price = _q2(it.cost_price)
        if it.batch_number:
            m.batch_number = it.batch_number
        if it.expiry_date:
            m.expiry_date = it.expiry_date

    p.status = PurchaseStatus.RECEIVED
    p.received_at = datetime.utcnow()
    p.received_by = getattr(user, "id", None)
    db.flush()

    log_audit(db,
              user_id=getattr(user, "id", None),
              action="RECEIVE",
              table_name="pharmacy_purchases",
              record_id=p.id,
              new_values={"status": p.status.value})
    logger.info("Purchase %s received (%s lines)", p.purchase_number, len(p.items))
    return p


def cancel_purchase(db: Session, *, purchase_id: int, user: User) -> Purchase:
    """
    Cancel a purchase. Received stock is taken back out, but never below
    zero: whatever has already been sold stays sold.
    """
    p = get_purchase_or_404(db, purchase_id, lock=True)
    was_received = p.status == PurchaseStatus.RECEIVED
    ensure_transition(PURCHASE_TRANSITIONS, p.status, PurchaseStatus.CANCELLED, what="Purchase")

    if was_received:
        for it in sorted(p.items, key=lambda x: x.medicine_id):
            m = _lock_medicine(db, it.medicine_id)
            take = min(int(it.quantity), int(m.stock_quantity or 0))
            if take > 0:
                _move(db, m, delta=-take, reference_type=MovementReference.PURCHASE_CANCELLATION,
                      reference_id=p.id, user=user, notes=p.purchase_number)
            if take < int(it.quantity):
                logger.warning("Purchase %s cancel: %s short by %s units",
                               p.purchase_number, m.medicine_code, int(it.quantity) - take)

    p.status = PurchaseStatus.CANCELLED
    p.cancelled_at = datetime.utcnow()
    p.cancelled_by = getattr(user, "id", None)
    db.flush()

    log_audit(db,
              user_id=getattr(user, "id", None),
              action="CANCEL",
              table_name="pharmacy_purchases",
              record_id=p.id,
              new_values={"status": p.status.value, "stock_reversed": was_received})
    return p


def list_purchases(db: Session, *, status: Optional[str] = None, supplier_id: Optional[int] = None,
                   limit: int = 50, offset: int = 0):
    q = db.query(Purchase)
    if status:
        q = q.filter(Purchase.status == status)
    if supplier_id:
        q = q.filter(Purchase.supplier_id == int(supplier_id))
    total = q.count()
    rows = q.order_by(Purchase.id.desc()).offset(offset).limit(limit).all()
    return rows, total
