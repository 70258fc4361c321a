# FILE: hms/models/insurance.py
from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    Boolean,
    Date,
    DateTime,
    Text,
    JSON,
    Enum,
    ForeignKey,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from hms.db.base import Base
from hms.db.types import MYSQL_ARGS, Money, enum_values


class CoverageType(str, enum.Enum):
    INPATIENT = "inpatient"
    OUTPATIENT = "outpatient"
    PHARMACY = "pharmacy"
    LAB = "lab"
    EMERGENCY = "emergency"
    DENTAL = "dental"
    VISION = "vision"


class PolicyRelationship(str, enum.Enum):
    SELF = "self"
    SPOUSE = "spouse"
    CHILD = "child"
    PARENT = "parent"
    OTHER = "other"


class ClaimStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING = "pending"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    PARTIAL_APPROVED = "partial_approved"
    REJECTED = "rejected"
    CLOSED = "closed"


class InsuranceProvider(Base):
    __tablename__ = "insurance_providers"
    __table_args__ = MYSQL_ARGS

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(199), nullable=False, unique=True)
    code = Column(String(50), nullable=False, unique=True)
    description = Column(Text, nullable=True)

    phone = Column(String(50), nullable=True)
    email = Column(String(191), nullable=True)
    website = Column(String(255), nullable=True)
    address = Column(JSON, nullable=True)  # {street, city, state, zip, country}

    coverage_types = Column(JSON, nullable=True)  # list of CoverageType values
    max_coverage_amount = Column(Money, nullable=True)

    api_endpoint = Column(String(255), nullable=True)
    api_key = Column(String(255), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime,
                        default=datetime.utcnow,
                        onupdate=datetime.utcnow,
                        nullable=False)

    policies = relationship("PatientInsurance", back_populates="provider")


class PatientInsurance(Base):
    """
    Insurance policy record: deductible / co-pay / annual-cap terms
    for one patient-provider relationship.
    """
    __tablename__ = "patient_insurances"
    __table_args__ = (
        UniqueConstraint("patient_id",
                         "insurance_provider_id",
                         "policy_number",
                         name="uq_patient_insurance_policy"),
        Index("ix_patient_insurances_patient_priority", "patient_id", "priority_order"),
        MYSQL_ARGS,
    )

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    insurance_provider_id = Column(Integer,
                                   ForeignKey("insurance_providers.id"),
                                   nullable=False,
                                   index=True)

    policy_number = Column(String(100), nullable=False)
    group_number = Column(String(100), nullable=True)
    policy_holder_name = Column(String(255), nullable=True)
    relationship_to_patient = Column(String(20), nullable=False, default=PolicyRelationship.SELF.value)

    coverage_start_date = Column(Date, nullable=False)
    coverage_end_date = Column(Date, nullable=True)

    co_pay_amount = Column(Money, nullable=False, default=0)
    co_pay_percentage = Column(Numeric(5, 2), nullable=False, default=0)
    deductible_amount = Column(Money, nullable=False, default=0)
    deductible_met = Column(Money, nullable=False, default=0)
    annual_max_coverage = Column(Money, nullable=True)  # NULL = no cap
    annual_used_amount = Column(Money, nullable=False, default=0)

    is_primary = Column(Boolean, default=False, nullable=False)
    priority_order = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, default=True, nullable=False)

    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime,
                        default=datetime.utcnow,
                        onupdate=datetime.utcnow,
                        nullable=False)

    patient = relationship("Patient", back_populates="insurances")
    provider = relationship("InsuranceProvider", back_populates="policies")
    claims = relationship("InsuranceClaim", back_populates="policy")
    bills = relationship("Bill", back_populates="primary_insurance")


class InsuranceClaim(Base):
    __tablename__ = "insurance_claims"
    __table_args__ = (
        Index("ix_insurance_claims_bill_status", "bill_id", "status"),
        MYSQL_ARGS,
    )

    id = Column(Integer, primary_key=True, index=True)
    claim_number = Column(String(40), unique=True, nullable=False)

    bill_id = Column(Integer, ForeignKey("bills.id"), nullable=False)
    patient_insurance_id = Column(Integer,
                                  ForeignKey("patient_insurances.id"),
                                  nullable=False,
                                  index=True)

    claim_amount = Column(Money, nullable=False)
    approved_amount = Column(Money, nullable=True)

    status = Column(
        Enum(ClaimStatus, name="insurance_claim_status", values_callable=enum_values),
        nullable=False,
        default=ClaimStatus.DRAFT,
    )
    rejection_reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    # [{name, path, size, mime_type, uploaded_at}]
    documents = Column(JSON, nullable=True)

    submission_date = Column(DateTime, nullable=True)
    approval_date = Column(DateTime, nullable=True)
    closed_at = Column(DateTime, nullable=True)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    submitted_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    processed_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime,
                        default=datetime.utcnow,
                        onupdate=datetime.utcnow,
                        nullable=False)

    bill = relationship("Bill", back_populates="claims")
    policy = relationship("PatientInsurance", back_populates="claims")
