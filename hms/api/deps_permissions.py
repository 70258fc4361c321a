# FILE: hms/api/deps_permissions.py
from fastapi import Depends

from hms.api.deps import current_user
from hms.core.rbac import require_any
from hms.models.user import User as UserModel


def require_permission(*codes: str):
    """
    Dependency factory:
    use as Depends(require_permission("view-billing"))
    Passing several codes accepts any one of them.
    """

    def _dep(user: UserModel = Depends(current_user)) -> UserModel:
        require_any(user, codes, message=f"You do not have permission: {' / '.join(codes)}")
        return user

    return _dep
