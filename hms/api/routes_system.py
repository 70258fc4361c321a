from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from hms.api.deps import current_user, get_db
from hms.api.response import err, ok
from hms.core.rbac import is_admin_user, iter_user_perm_codes
from hms.models.user import User

router = APIRouter(prefix="/system", tags=["System"])


@router.get("/health")
def health(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        return err("Database unavailable", status_code=503)
    return ok({"status": "ok", "database": "ok"})


@router.get("/me")
def me(user: User = Depends(current_user)):
    """Caller identity with the permission codes the API will check."""
    return ok({
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "is_admin": is_admin_user(user),
        "permissions": sorted(iter_user_perm_codes(user)),
    })
