# FILE: hms/core/rbac.py
"""
Role based permission checks.

A user is granted a code through any of their roles. `is_admin` users pass
every check; with ADMIN_ALL_ACCESS enabled, so do holders of the billing
administrator role, whatever permissions that role currently lists.
"""
from __future__ import annotations

import logging
from typing import Any, FrozenSet, Iterable, Optional, Set

from fastapi import HTTPException, status

from hms.core import permissions as P
from hms.core.config import settings

logger = logging.getLogger(__name__)

DENIED_MSG = "You do not have permission to perform this action."

_KNOWN: FrozenSet[str] = frozenset(P.all_codes())


def _role_names(user: Any) -> Set[str]:
    return {r.name for r in (getattr(user, "roles", None) or []) if getattr(r, "name", None)}


def is_admin_user(user: Any) -> bool:
    if user is None:
        return False
    if getattr(user, "is_admin", False):
        return True
    return settings.ADMIN_ALL_ACCESS and P.ADMIN_ROLE in _role_names(user)


def iter_user_perm_codes(user: Any) -> Set[str]:
    """Codes granted through user.roles[*].permissions."""
    granted: Set[str] = set()
    for role in getattr(user, "roles", None) or []:
        for perm in role.permissions or []:
            if perm.code:
                granted.add(perm.code.strip())
    return granted


def require_any(user: Any, required: Iterable[str], *, message: Optional[str] = None) -> None:
    """Raise 403 unless the user holds at least one of the required codes."""
    wanted = {c for c in required if c}
    unknown = wanted - _KNOWN
    if unknown:
        logger.error("Permission check uses unknown codes: %s", sorted(unknown))

    if is_admin_user(user):
        return
    if wanted & iter_user_perm_codes(user):
        return

    logger.warning(
        "Permission denied: user_id=%s required=%s",
        getattr(user, "id", None),
        sorted(wanted),
    )
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=message or DENIED_MSG)
