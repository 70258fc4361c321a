# FILE: hms/schemas/pharmacy.py
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from hms.models.pharmacy import (
    MedicineStatus,
    MovementReference,
    MovementType,
    PurchaseStatus,
    SaleStatus,
)

Money = Decimal


# ---------- Medicines ----------

class MedicineCreate(BaseModel):
    medicine_code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    manufacturer: Optional[str] = Field(None, max_length=255)
    category: Optional[str] = Field(None, max_length=120)
    form: Optional[str] = Field(None, max_length=50)
    strength: Optional[str] = Field(None, max_length=50)
    cost_price: Money = Field(Decimal("0"), ge=0)
    sale_price: Money = Field(Decimal("0"), ge=0)
    stock_quantity: int = Field(0, ge=0)
    reorder_level: int = Field(10, ge=0)
    batch_number: Optional[str] = Field(None, max_length=100)
    expiry_date: Optional[date] = None


class MedicineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    medicine_code: str
    name: str
    description: Optional[str] = None
    manufacturer: Optional[str] = None
    category: Optional[str] = None
    form: Optional[str] = None
    strength: Optional[str] = None
    cost_price: Money
    sale_price: Money
    stock_quantity: int
    reorder_level: int
    batch_number: Optional[str] = None
    expiry_date: Optional[date] = None
    status: MedicineStatus
    version: int


class StockAdjustIn(BaseModel):
    new_quantity: int = Field(..., ge=0)
    reason: str = Field(..., min_length=1, max_length=500)


class StockMovementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    medicine_id: int
    type: MovementType
    quantity: int
    previous_stock: int
    new_stock: int
    reference_type: MovementReference
    reference_id: Optional[int] = None
    notes: Optional[str] = None
    user_id: Optional[int] = None
    created_at: datetime


# ---------- Sales ----------

class SaleItemIn(BaseModel):
    medicine_id: int
    quantity: int = Field(..., ge=1)
    unit_price: Optional[Money] = Field(None, ge=0)  # defaults to medicine sale_price
    discount_percentage: Money = Field(Decimal("0"), ge=0, le=100)


class SaleCreate(BaseModel):
    patient_id: Optional[int] = None
    payment_method: Optional[str] = Field(None, max_length=30)
    discount_amount: Money = Field(Decimal("0"), ge=0)
    tax_amount: Money = Field(Decimal("0"), ge=0)
    notes: Optional[str] = None
    items: List[SaleItemIn]

    @field_validator("items")
    @classmethod
    def _items(cls, v):
        if not v:
            raise ValueError("at least one item is required")
        return v


class SaleCancelIn(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class SaleItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    medicine_id: int
    quantity: int
    unit_price: Money
    discount_percentage: Money
    total_price: Money


class SaleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    sale_number: str
    patient_id: Optional[int] = None
    sub_total: Money
    discount_amount: Money
    tax_amount: Money
    grand_total: Money
    payment_method: Optional[str] = None
    status: SaleStatus
    notes: Optional[str] = None
    sold_by: Optional[int] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    items: List[SaleItemOut] = Field(default_factory=list)


# ---------- Suppliers / purchases ----------

class SupplierCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    contact_person: Optional[str] = Field(None, max_length=120)
    phone: Optional[str] = Field(None, max_length=50)
    email: Optional[str] = Field(None, max_length=191)
    address: Optional[str] = Field(None, max_length=500)


class SupplierOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    contact_person: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    is_active: bool


class PurchaseItemIn(BaseModel):
    medicine_id: int
    quantity: int = Field(..., ge=1)
    cost_price: Money = Field(..., ge=0)
    batch_number: Optional[str] = Field(None, max_length=100)
    expiry_date: Optional[date] = None


class PurchaseCreate(BaseModel):
    supplier_id: int
    purchase_date: Optional[date] = None
    tax: Money = Field(Decimal("0"), ge=0)
    discount: Money = Field(Decimal("0"), ge=0)
    notes: Optional[str] = None
    items: List[PurchaseItemIn]

    @field_validator("items")
    @classmethod
    def _items(cls, v):
        if not v:
            raise ValueError("at least one item is required")
        return v


class PurchaseItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    medicine_id: int
    quantity: int
    cost_price: Money
    batch_number: Optional[str] = None
    expiry_date: Optional[date] = None
    total: Money


class PurchaseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    purchase_number: str
    supplier_id: int
    purchase_date: date
    subtotal: Money
    tax: Money
    discount: Money
    total: Money
    status: PurchaseStatus
    notes: Optional[str] = None
    created_by: Optional[int] = None
    received_at: Optional[datetime] = None
    received_by: Optional[int] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[int] = None
    created_at: datetime
    items: List[PurchaseItemOut] = Field(default_factory=list)
