# FILE: hms/schemas/insurance.py
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from hms.models.insurance import ClaimStatus, CoverageType, PolicyRelationship

Money = Decimal


# ---------- Providers ----------

class ProviderAddress(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    country: Optional[str] = None


class InsuranceProviderCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=199)
    code: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = None
    phone: Optional[str] = Field(None, max_length=50)
    email: Optional[EmailStr] = None
    website: Optional[str] = Field(None, max_length=255)
    address: Optional[ProviderAddress] = None
    coverage_types: List[CoverageType] = Field(default_factory=list)
    max_coverage_amount: Optional[Money] = Field(None, ge=0)
    api_endpoint: Optional[str] = Field(None, max_length=255)
    api_key: Optional[str] = Field(None, max_length=255)
    is_active: bool = True


class InsuranceProviderUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=199)
    code: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = None
    phone: Optional[str] = Field(None, max_length=50)
    email: Optional[EmailStr] = None
    website: Optional[str] = Field(None, max_length=255)
    address: Optional[ProviderAddress] = None
    coverage_types: Optional[List[CoverageType]] = None
    max_coverage_amount: Optional[Money] = Field(None, ge=0)
    api_endpoint: Optional[str] = Field(None, max_length=255)
    api_key: Optional[str] = Field(None, max_length=255)
    is_active: Optional[bool] = None


class InsuranceProviderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    code: str
    description: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None
    address: Optional[Dict[str, Any]] = None
    coverage_types: Optional[List[str]] = None
    max_coverage_amount: Optional[Money] = None
    api_endpoint: Optional[str] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


# ---------- Patient insurance (policies) ----------

class PatientInsuranceCreate(BaseModel):
    insurance_provider_id: int
    policy_number: str = Field(..., min_length=1, max_length=100)
    group_number: Optional[str] = Field(None, max_length=100)
    policy_holder_name: Optional[str] = Field(None, max_length=255)
    relationship_to_patient: PolicyRelationship = PolicyRelationship.SELF
    coverage_start_date: date
    coverage_end_date: Optional[date] = None
    co_pay_amount: Money = Field(Decimal("0"), ge=0)
    co_pay_percentage: Money = Field(Decimal("0"), ge=0, le=100)
    deductible_amount: Money = Field(Decimal("0"), ge=0)
    deductible_met: Money = Field(Decimal("0"), ge=0)
    annual_max_coverage: Optional[Money] = Field(None, ge=0)
    annual_used_amount: Money = Field(Decimal("0"), ge=0)
    is_primary: bool = False
    priority_order: Optional[int] = Field(None, ge=1)
    is_active: bool = True
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _dates(self):
        if self.coverage_end_date and self.coverage_end_date <= self.coverage_start_date:
            raise ValueError("coverage_end_date must be after coverage_start_date")
        return self


class PatientInsuranceUpdate(BaseModel):
    policy_number: Optional[str] = Field(None, min_length=1, max_length=100)
    group_number: Optional[str] = Field(None, max_length=100)
    policy_holder_name: Optional[str] = Field(None, max_length=255)
    relationship_to_patient: Optional[PolicyRelationship] = None
    coverage_start_date: Optional[date] = None
    coverage_end_date: Optional[date] = None
    co_pay_amount: Optional[Money] = Field(None, ge=0)
    co_pay_percentage: Optional[Money] = Field(None, ge=0, le=100)
    deductible_amount: Optional[Money] = Field(None, ge=0)
    deductible_met: Optional[Money] = Field(None, ge=0)
    annual_max_coverage: Optional[Money] = Field(None, ge=0)
    annual_used_amount: Optional[Money] = Field(None, ge=0)
    is_primary: Optional[bool] = None
    priority_order: Optional[int] = Field(None, ge=1)
    is_active: Optional[bool] = None
    notes: Optional[str] = None

    # fields may be omitted, but these columns cannot be cleared
    @field_validator(
        "policy_number",
        "relationship_to_patient",
        "coverage_start_date",
        "co_pay_amount",
        "co_pay_percentage",
        "deductible_amount",
        "deductible_met",
        "annual_used_amount",
        "is_primary",
        "priority_order",
        "is_active",
    )
    @classmethod
    def _not_null(cls, v):
        if v is None:
            raise ValueError("may not be null")
        return v


class AmountAdjustIn(BaseModel):
    amount: Money = Field(..., ge=0)
    operation: Literal["add", "subtract", "set"]


class CoverageRequest(BaseModel):
    amount: Money = Field(..., ge=Decimal("0.01"))


class PatientInsuranceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    insurance_provider_id: int
    policy_number: str
    group_number: Optional[str] = None
    policy_holder_name: Optional[str] = None
    relationship_to_patient: str
    coverage_start_date: date
    coverage_end_date: Optional[date] = None
    co_pay_amount: Money
    co_pay_percentage: Money
    deductible_amount: Money
    deductible_met: Money
    annual_max_coverage: Optional[Money] = None
    annual_used_amount: Money
    is_primary: bool
    priority_order: int
    is_active: bool
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


# ---------- Claims ----------

class ClaimCreate(BaseModel):
    patient_insurance_id: int
    claim_amount: Money = Field(..., gt=0)
    claim_number: Optional[str] = Field(None, max_length=40)
    notes: Optional[str] = None


class ClaimUpdate(BaseModel):
    claim_amount: Optional[Money] = Field(None, gt=0)
    status: Optional[ClaimStatus] = None
    approved_amount: Optional[Money] = Field(None, ge=0)
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _decision_fields(self):
        if self.status in (ClaimStatus.APPROVED, ClaimStatus.PARTIAL_APPROVED) and self.approved_amount is None:
            raise ValueError("approved_amount is required when approving a claim")
        if self.status == ClaimStatus.REJECTED and not (self.rejection_reason or "").strip():
            raise ValueError("rejection_reason is required when rejecting a claim")
        return self


class ClaimDocumentOut(BaseModel):
    name: str
    path: str
    size: Optional[int] = None
    mime_type: Optional[str] = None
    uploaded_at: Optional[str] = None


class ClaimOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    claim_number: str
    bill_id: int
    patient_insurance_id: int
    claim_amount: Money
    approved_amount: Optional[Money] = None
    status: ClaimStatus
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None
    documents: Optional[List[ClaimDocumentOut]] = None
    submission_date: Optional[datetime] = None
    approval_date: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    created_by: Optional[int] = None
    submitted_by: Optional[int] = None
    processed_by: Optional[int] = None
    created_at: datetime
    updated_at: datetime
