from sqlalchemy import Column, Integer, String, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from hms.db.base import Base
from hms.db.types import MYSQL_ARGS


class User(Base):
    __tablename__ = "users"
    __table_args__ = MYSQL_ARGS

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False)
    email = Column(String(191), unique=True, nullable=False)

    is_active = Column(Boolean, default=True)
    is_admin = Column(Boolean, default=False)
    is_doctor = Column(Boolean, default=False, nullable=False)

    roles = relationship("Role",
                         secondary="user_roles",
                         back_populates="users")


class UserRole(Base):
    __tablename__ = "user_roles"
    __table_args__ = MYSQL_ARGS

    user_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    role_id = Column(Integer, ForeignKey("roles.id"), primary_key=True)
