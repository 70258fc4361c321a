# hms/db/base.py
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """All billing, insurance and pharmacy tables inherit from this."""
    pass


# Import all models so metadata is complete for create_all()
from hms.models import (  # noqa: F401,E402
    user,
    role,
    permission,
    patient,
    audit,
    billing,
    insurance,
    pharmacy,
)
