# hms/db/types.py
from sqlalchemy import Numeric

MYSQL_ARGS = {
    "mysql_engine": "InnoDB",
    "mysql_charset": "utf8mb4",
    "mysql_collate": "utf8mb4_unicode_ci",
}

Money = Numeric(12, 2)


def enum_values(e):
    """Persist str enums by value ("partial_approved"), not by member name."""
    return [m.value for m in e]
