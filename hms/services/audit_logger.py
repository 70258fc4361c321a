import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from sqlalchemy.orm import Session

from hms.models.audit import AuditLog

logger = logging.getLogger(__name__)


def _jsonable(v: Any) -> Any:
    if isinstance(v, Decimal):
        return str(v)
    if isinstance(v, (datetime, date)):
        return v.isoformat()
    if isinstance(v, Enum):
        return v.value
    return v


def snapshot(obj: Any, fields: Iterable[str]) -> Dict[str, Any]:
    """Pick a JSON-safe dict of column values for old/new audit payloads."""
    return {f: _jsonable(getattr(obj, f, None)) for f in fields}


def log_audit(
    db: Session,
    *,
    user_id: Optional[int],
    action: str,  # CREATE | UPDATE | DELETE | VOID | REFUND | ...
    table_name: str,
    record_id: Any,
    old_values: Optional[Dict[str, Any]] = None,
    new_values: Optional[Dict[str, Any]] = None,
    reason: Optional[str] = None,
) -> AuditLog:
    """
    Add one audit event to the caller's transaction. Commit/rollback stays with the caller,
    so the audit row lives or dies together with the change it describes.
    """
    log = AuditLog(
        user_id=user_id,
        action=action,
        table_name=table_name,
        record_id=str(record_id),
        old_values=old_values,
        new_values=new_values,
        reason=reason,
    )
    db.add(log)
    logger.info("audit %s %s#%s by user_id=%s", action, table_name, record_id, user_id)
    return log
