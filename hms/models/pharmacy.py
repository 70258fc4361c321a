# FILE: hms/models/pharmacy.py
from __future__ import annotations

import enum
from datetime import datetime, date

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    Boolean,
    Date,
    DateTime,
    Text,
    Enum,
    ForeignKey,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import relationship

from hms.db.base import Base
from hms.db.types import MYSQL_ARGS, Money, enum_values


class MedicineStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"


class MovementType(str, enum.Enum):
    IN = "in"
    OUT = "out"


class MovementReference(str, enum.Enum):
    SALE = "sale"
    RETURN = "return"
    ADJUSTMENT = "adjustment"
    PURCHASE = "purchase"
    PURCHASE_CANCELLATION = "purchase_cancellation"


class SaleStatus(str, enum.Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PurchaseStatus(str, enum.Enum):
    PENDING = "pending"
    ORDERED = "ordered"
    RECEIVED = "received"
    CANCELLED = "cancelled"


class Medicine(Base):
    __tablename__ = "medicines"
    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_medicines_stock_non_negative"),
        MYSQL_ARGS,
    )

    id = Column(Integer, primary_key=True, index=True)
    medicine_code = Column(String(50), unique=True, nullable=False)
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)
    manufacturer = Column(String(255), nullable=True)
    category = Column(String(120), nullable=True)
    form = Column(String(50), nullable=True)  # tablet / syrup / injection
    strength = Column(String(50), nullable=True)

    cost_price = Column(Money, nullable=False, default=0)
    sale_price = Column(Money, nullable=False, default=0)

    stock_quantity = Column(Integer, nullable=False, default=0)
    reorder_level = Column(Integer, nullable=False, default=10)

    batch_number = Column(String(100), nullable=True)
    expiry_date = Column(Date, nullable=True)

    status = Column(
        Enum(MedicineStatus, name="medicine_status", values_callable=enum_values),
        nullable=False,
        default=MedicineStatus.ACTIVE,
    )

    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime,
                        default=datetime.utcnow,
                        onupdate=datetime.utcnow,
                        nullable=False)

    __mapper_args__ = {"version_id_col": version}

    movements = relationship("StockMovement",
                             back_populates="medicine",
                             order_by="StockMovement.id.desc()",
                             lazy="dynamic")


class StockMovement(Base):
    """Append-only audit of every stock_quantity change."""
    __tablename__ = "stock_movements"
    __table_args__ = (
        Index("ix_stock_movements_ref", "reference_type", "reference_id"),
        MYSQL_ARGS,
    )

    id = Column(Integer, primary_key=True, index=True)
    medicine_id = Column(Integer, ForeignKey("medicines.id"), nullable=False, index=True)

    type = Column(
        Enum(MovementType, name="stock_movement_type", values_callable=enum_values),
        nullable=False,
    )
    quantity = Column(Integer, nullable=False)
    previous_stock = Column(Integer, nullable=False)
    new_stock = Column(Integer, nullable=False)

    reference_type = Column(
        Enum(MovementReference, name="stock_movement_reference", values_callable=enum_values),
        nullable=False,
    )
    reference_id = Column(Integer, nullable=True)
    notes = Column(String(500), nullable=True)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    medicine = relationship("Medicine", back_populates="movements")


class Supplier(Base):
    __tablename__ = "suppliers"
    __table_args__ = MYSQL_ARGS

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, unique=True)
    contact_person = Column(String(120), nullable=True)
    phone = Column(String(50), nullable=True)
    email = Column(String(191), nullable=True)
    address = Column(String(500), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    purchases = relationship("Purchase", back_populates="supplier")


class Sale(Base):
    __tablename__ = "pharmacy_sales"
    __table_args__ = MYSQL_ARGS

    id = Column(Integer, primary_key=True, index=True)
    sale_number = Column(String(32), unique=True, nullable=False)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=True)

    sub_total = Column(Money, nullable=False, default=0)
    discount_amount = Column(Money, nullable=False, default=0)
    tax_amount = Column(Money, nullable=False, default=0)
    grand_total = Column(Money, nullable=False, default=0)

    payment_method = Column(String(30), nullable=True)
    status = Column(
        Enum(SaleStatus, name="pharmacy_sale_status", values_callable=enum_values),
        nullable=False,
        default=SaleStatus.COMPLETED,
    )
    notes = Column(Text, nullable=True)

    sold_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancelled_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    items = relationship("SaleItem",
                         back_populates="sale",
                         cascade="all, delete-orphan",
                         order_by="SaleItem.id")


class SaleItem(Base):
    __tablename__ = "pharmacy_sale_items"
    __table_args__ = MYSQL_ARGS

    id = Column(Integer, primary_key=True, index=True)
    sale_id = Column(Integer,
                     ForeignKey("pharmacy_sales.id", ondelete="CASCADE"),
                     nullable=False,
                     index=True)
    medicine_id = Column(Integer, ForeignKey("medicines.id"), nullable=False)

    quantity = Column(Integer, nullable=False)
    unit_price = Column(Money, nullable=False)
    discount_percentage = Column(Numeric(5, 2), nullable=False, default=0)
    total_price = Column(Money, nullable=False)

    sale = relationship("Sale", back_populates="items")
    medicine = relationship("Medicine")


class Purchase(Base):
    __tablename__ = "pharmacy_purchases"
    __table_args__ = MYSQL_ARGS

    id = Column(Integer, primary_key=True, index=True)
    purchase_number = Column(String(32), unique=True, nullable=False)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=False, index=True)
    purchase_date = Column(Date, nullable=False, default=date.today)

    subtotal = Column(Money, nullable=False, default=0)
    tax = Column(Money, nullable=False, default=0)
    discount = Column(Money, nullable=False, default=0)
    total = Column(Money, nullable=False, default=0)

    status = Column(
        Enum(PurchaseStatus, name="pharmacy_purchase_status", values_callable=enum_values),
        nullable=False,
        default=PurchaseStatus.PENDING,
    )
    notes = Column(Text, nullable=True)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    received_at = Column(DateTime, nullable=True)
    received_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancelled_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    supplier = relationship("Supplier", back_populates="purchases")
    items = relationship("PurchaseItem",
                         back_populates="purchase",
                         cascade="all, delete-orphan",
                         order_by="PurchaseItem.id")


class PurchaseItem(Base):
    __tablename__ = "pharmacy_purchase_items"
    __table_args__ = MYSQL_ARGS

    id = Column(Integer, primary_key=True, index=True)
    purchase_id = Column(Integer,
                         ForeignKey("pharmacy_purchases.id", ondelete="CASCADE"),
                         nullable=False,
                         index=True)
    medicine_id = Column(Integer, ForeignKey("medicines.id"), nullable=False)

    quantity = Column(Integer, nullable=False)
    cost_price = Column(Money, nullable=False)
    batch_number = Column(String(100), nullable=True)
    expiry_date = Column(Date, nullable=True)
    total = Column(Money, nullable=False)

    purchase = relationship("Purchase", back_populates="items")
    medicine = relationship("Medicine")
