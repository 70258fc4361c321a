from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    Date,
    DateTime,
    func,
)
from sqlalchemy.orm import relationship

from hms.db.base import Base
from hms.db.types import MYSQL_ARGS


class Patient(Base):
    __tablename__ = "patients"
    __table_args__ = MYSQL_ARGS

    id = Column(Integer, primary_key=True, index=True)
    uhid = Column(String(32), index=True, nullable=False)

    first_name = Column(String(120), nullable=False)
    last_name = Column(String(120), nullable=True)
    gender = Column(String(16), nullable=True)
    dob = Column(Date, nullable=True)
    phone = Column(String(20), nullable=True)
    email = Column(String(191), nullable=True)

    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, server_default=func.now())

    bills = relationship("Bill", back_populates="patient")
    insurances = relationship("PatientInsurance",
                              back_populates="patient",
                              order_by="PatientInsurance.priority_order")

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)
