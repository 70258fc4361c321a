from sqlalchemy import Column, Integer, String
from sqlalchemy.orm import relationship
from hms.db.base import Base
from hms.db.types import MYSQL_ARGS


class Permission(Base):
    __tablename__ = "permissions"
    __table_args__ = MYSQL_ARGS

    id = Column(Integer, primary_key=True)
    code = Column(String(120), unique=True, nullable=False)   # e.g. "record-payments"
    label = Column(String(255), nullable=False)
    module = Column(String(120), nullable=False)              # e.g. "payments"

    roles = relationship("Role", secondary="role_permissions", back_populates="permissions")
