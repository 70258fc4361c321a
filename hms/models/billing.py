# FILE: hms/models/billing.py
from __future__ import annotations

import enum
from datetime import datetime, date

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    Date,
    DateTime,
    Text,
    JSON,
    Enum,
    Index,
    ForeignKey,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from hms.db.base import Base
from hms.db.types import MYSQL_ARGS, Money, enum_values


class BillStatus(str, enum.Enum):
    ACTIVE = "active"
    VOIDED = "voided"


class BillPaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    CANCELLED = "cancelled"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    CARD = "card"
    INSURANCE = "insurance"
    BANK_TRANSFER = "bank_transfer"
    CHEQUE = "cheque"
    UPI = "upi"
    WALLET = "wallet"


class PaymentStatus(str, enum.Enum):
    COMPLETED = "completed"
    VOIDED = "voided"
    REFUNDED = "refunded"


class Bill(Base):
    """
    Billing aggregate for one encounter.

    total_amount = sub_total + tax - discount
    amount_due   = total_amount - amount_paid
    Both are recomputed together by services.billing_math on every change.
    """
    __tablename__ = "bills"
    __table_args__ = (
        Index("ix_bills_patient_status", "patient_id", "payment_status"),
        MYSQL_ARGS,
    )

    id = Column(Integer, primary_key=True, index=True)
    bill_number = Column(String(32), unique=True, nullable=False)

    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    bill_date = Column(Date, nullable=False, default=date.today)
    due_date = Column(Date, nullable=True)

    sub_total = Column(Money, nullable=False, default=0)
    discount = Column(Money, nullable=False, default=0)
    tax = Column(Money, nullable=False, default=0)
    total_amount = Column(Money, nullable=False, default=0)
    amount_paid = Column(Money, nullable=False, default=0)
    amount_due = Column(Money, nullable=False, default=0)

    payment_status = Column(
        Enum(BillPaymentStatus, name="bill_payment_status", values_callable=enum_values),
        nullable=False,
        default=BillPaymentStatus.PENDING,
    )
    status = Column(
        Enum(BillStatus, name="bill_status", values_callable=enum_values),
        nullable=False,
        default=BillStatus.ACTIVE,
    )

    # insurance estimate from the primary policy at billing time
    primary_insurance_id = Column(Integer,
                                  ForeignKey("patient_insurances.id"),
                                  nullable=True)
    insurance_coverage = Column(Money, nullable=True)
    patient_responsibility = Column(Money, nullable=True)

    notes = Column(Text, nullable=True)
    billing_address = Column(JSON, nullable=True)

    voided_at = Column(DateTime, nullable=True)
    voided_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    void_reason = Column(String(1000), nullable=True)

    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime,
                        default=datetime.utcnow,
                        onupdate=datetime.utcnow,
                        nullable=False)

    __mapper_args__ = {"version_id_col": version}

    patient = relationship("Patient", back_populates="bills")
    primary_insurance = relationship("PatientInsurance", back_populates="bills")
    items = relationship("BillItem",
                         back_populates="bill",
                         cascade="all, delete-orphan",
                         order_by="BillItem.id")
    payments = relationship("Payment",
                            back_populates="bill",
                            order_by="Payment.id")
    claims = relationship("InsuranceClaim",
                          back_populates="bill",
                          order_by="InsuranceClaim.id")


class BillItem(Base):
    __tablename__ = "bill_items"
    __table_args__ = MYSQL_ARGS

    id = Column(Integer, primary_key=True, index=True)
    bill_id = Column(Integer,
                     ForeignKey("bills.id", ondelete="CASCADE"),
                     nullable=False,
                     index=True)

    description = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Money, nullable=False, default=0)
    discount_percentage = Column(Numeric(5, 2), nullable=False, default=0)
    total_price = Column(Money, nullable=False, default=0)

    bill = relationship("Bill", back_populates="items")


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        Index("ix_payments_bill_status", "bill_id", "status"),
        MYSQL_ARGS,
    )

    id = Column(Integer, primary_key=True, index=True)
    bill_id = Column(Integer, ForeignKey("bills.id"), nullable=False)

    transaction_id = Column(String(40), unique=True, nullable=False)
    payment_method = Column(
        Enum(PaymentMethod, name="payment_method", values_callable=enum_values),
        nullable=False,
    )
    amount = Column(Money, nullable=False)
    payment_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    status = Column(
        Enum(PaymentStatus, name="payment_status", values_callable=enum_values),
        nullable=False,
        default=PaymentStatus.COMPLETED,
    )

    reference_number = Column(String(100), nullable=True)
    card_last_four = Column(String(4), nullable=True)
    card_type = Column(String(30), nullable=True)
    bank_name = Column(String(120), nullable=True)
    check_number = Column(String(50), nullable=True)
    amount_tendered = Column(Money, nullable=True)
    change_due = Column(Money, nullable=True)
    notes = Column(Text, nullable=True)

    # set when the payment was posted by claim-response processing
    insurance_claim_id = Column(Integer,
                                ForeignKey("insurance_claims.id"),
                                nullable=True)

    received_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    voided_at = Column(DateTime, nullable=True)
    voided_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    void_reason = Column(String(1000), nullable=True)

    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime,
                        default=datetime.utcnow,
                        onupdate=datetime.utcnow,
                        nullable=False)

    __mapper_args__ = {"version_id_col": version}

    bill = relationship("Bill", back_populates="payments")
    refunds = relationship("BillRefund",
                           back_populates="payment",
                           order_by="BillRefund.id")


class BillRefund(Base):
    """Refund rows are never updated after insert."""
    __tablename__ = "bill_refunds"
    __table_args__ = MYSQL_ARGS

    id = Column(Integer, primary_key=True, index=True)
    bill_id = Column(Integer, ForeignKey("bills.id"), nullable=False, index=True)
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=False, index=True)

    refund_amount = Column(Money, nullable=False)
    refund_reason = Column(String(1000), nullable=False)
    refund_method = Column(String(30), nullable=True)
    status = Column(String(20), nullable=False, default="processed")

    requested_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    processed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    processed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    payment = relationship("Payment", back_populates="refunds")


class BillNumberSeries(Base):
    """
    One counter row per (prefix, year). Reserved with SELECT ... FOR UPDATE
    inside the transaction that creates the document.
    """
    __tablename__ = "bill_number_series"
    __table_args__ = (
        UniqueConstraint("prefix", "period_key", name="uq_bill_number_series_prefix_period"),
        MYSQL_ARGS,
    )

    id = Column(Integer, primary_key=True)
    prefix = Column(String(16), nullable=False)
    period_key = Column(String(8), nullable=False)  # YYYY
    last_value = Column(Integer, nullable=False, default=0)
    padding = Column(Integer, nullable=False, default=5)

    updated_at = Column(DateTime,
                        default=datetime.utcnow,
                        onupdate=datetime.utcnow,
                        nullable=False)
