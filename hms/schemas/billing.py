# FILE: hms/schemas/billing.py
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from hms.core.config import settings
from hms.models.billing import (
    BillPaymentStatus,
    BillStatus,
    PaymentMethod,
    PaymentStatus,
)

Money = Decimal


# ---------- Bills ----------

class BillItemIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=255)
    quantity: int = Field(1, ge=1)
    unit_price: Money = Field(..., ge=0)
    discount_percentage: Money = Field(Decimal("0"), ge=0, le=100)


class BillCreate(BaseModel):
    patient_id: int
    doctor_id: Optional[int] = None
    bill_date: Optional[date] = None
    due_date: Optional[date] = None

    # either line items or an explicit sub_total
    items: List[BillItemIn] = Field(default_factory=list)
    sub_total: Optional[Money] = Field(None, ge=0)

    discount: Money = Field(Decimal("0"), ge=0)
    tax: Optional[Money] = Field(None, ge=0)  # default rate applied when omitted

    notes: Optional[str] = None
    billing_address: Optional[Dict[str, Any]] = None
    primary_insurance_id: Optional[int] = None

    @model_validator(mode="after")
    def _check(self):
        if not self.items and self.sub_total is None:
            raise ValueError("Provide items or sub_total")
        if self.due_date and self.bill_date and self.due_date < self.bill_date:
            raise ValueError("due_date must be on or after bill_date")
        return self


class BillUpdate(BaseModel):
    doctor_id: Optional[int] = None
    due_date: Optional[date] = None
    items: Optional[List[BillItemIn]] = None
    sub_total: Optional[Money] = Field(None, ge=0)
    discount: Optional[Money] = Field(None, ge=0)
    tax: Optional[Money] = Field(None, ge=0)
    notes: Optional[str] = None
    billing_address: Optional[Dict[str, Any]] = None
    primary_insurance_id: Optional[int] = None


class BillVoidIn(BaseModel):
    reason: str = Field(..., max_length=1000)

    @field_validator("reason")
    @classmethod
    def _reason(cls, v: str) -> str:
        v = (v or "").strip()
        if len(v) < settings.VOID_REASON_MIN_LENGTH:
            raise ValueError(
                f"reason must be at least {settings.VOID_REASON_MIN_LENGTH} characters")
        return v


class BillItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    description: str
    quantity: int
    unit_price: Money
    discount_percentage: Money
    total_price: Money


class BillOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    bill_number: str
    patient_id: int
    doctor_id: Optional[int] = None
    created_by: Optional[int] = None
    bill_date: date
    due_date: Optional[date] = None

    sub_total: Money
    discount: Money
    tax: Money
    total_amount: Money
    amount_paid: Money
    amount_due: Money
    payment_status: BillPaymentStatus
    status: BillStatus

    primary_insurance_id: Optional[int] = None
    insurance_coverage: Optional[Money] = None
    patient_responsibility: Optional[Money] = None

    notes: Optional[str] = None
    billing_address: Optional[Dict[str, Any]] = None

    voided_at: Optional[datetime] = None
    voided_by: Optional[int] = None
    void_reason: Optional[str] = None

    version: int
    created_at: datetime
    updated_at: datetime

    items: List[BillItemOut] = Field(default_factory=list)


# ---------- Payments ----------

class PaymentCreate(BaseModel):
    payment_method: PaymentMethod
    amount: Money = Field(..., gt=0)
    payment_date: Optional[datetime] = None
    transaction_id: Optional[str] = Field(None, max_length=40)
    reference_number: Optional[str] = Field(None, max_length=100)
    card_last_four: Optional[str] = Field(None, pattern=r"^\d{4}$")
    card_type: Optional[str] = Field(None, max_length=30)
    bank_name: Optional[str] = Field(None, max_length=120)
    check_number: Optional[str] = Field(None, max_length=50)
    amount_tendered: Optional[Money] = Field(None, ge=0)
    notes: Optional[str] = None


class PaymentVoidIn(BaseModel):
    reason: str = Field(..., max_length=1000)

    @field_validator("reason")
    @classmethod
    def _reason(cls, v: str) -> str:
        v = (v or "").strip()
        if len(v) < settings.VOID_REASON_MIN_LENGTH:
            raise ValueError(
                f"reason must be at least {settings.VOID_REASON_MIN_LENGTH} characters")
        return v


class RefundCreate(BaseModel):
    refund_amount: Money = Field(..., gt=0)
    refund_reason: str = Field(..., min_length=1, max_length=1000)
    refund_method: Optional[str] = Field(None, max_length=30)


class RefundOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    bill_id: int
    payment_id: int
    refund_amount: Money
    refund_reason: str
    refund_method: Optional[str] = None
    status: str
    requested_by: Optional[int] = None
    approved_by: Optional[int] = None
    processed_by: Optional[int] = None
    processed_at: Optional[datetime] = None
    created_at: datetime


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    bill_id: int
    transaction_id: str
    payment_method: PaymentMethod
    amount: Money
    payment_date: datetime
    status: PaymentStatus
    reference_number: Optional[str] = None
    card_last_four: Optional[str] = None
    card_type: Optional[str] = None
    bank_name: Optional[str] = None
    check_number: Optional[str] = None
    amount_tendered: Optional[Money] = None
    change_due: Optional[Money] = None
    notes: Optional[str] = None
    insurance_claim_id: Optional[int] = None
    received_by: Optional[int] = None
    voided_at: Optional[datetime] = None
    voided_by: Optional[int] = None
    void_reason: Optional[str] = None
    created_at: datetime
