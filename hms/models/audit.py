from datetime import datetime

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    JSON,
)

from hms.db.base import Base
from hms.db.types import MYSQL_ARGS


class AuditLog(Base):
    """
    Every CREATE / UPDATE / DELETE / VOID / REFUND on billing and stock writes here,
    inside the same transaction as the change itself.
    """
    __tablename__ = "audit_logs"
    __table_args__ = MYSQL_ARGS

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(Integer, nullable=True)  # system jobs may be null
    action = Column(String(20), nullable=False)

    table_name = Column(String(255), nullable=False)
    record_id = Column(String(100), nullable=False)

    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    reason = Column(String(1000), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
