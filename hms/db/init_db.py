# hms/db/init_db.py
from __future__ import annotations

import argparse
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from hms.core.permissions import ADMIN_ROLE, MODULES
from hms.db.base import Base
from hms.db.session import engine
from hms.models.permission import Permission
from hms.models.role import Role

logger = logging.getLogger(__name__)


def seed_permissions(db: Session) -> int:
    """
    Seed ONLY missing permission codes; safe to run multiple times.
    Returns how many codes were inserted.
    """
    added = 0
    seen = set()
    for module, codes in MODULES:
        for code in codes:
            if code in seen:
                continue
            seen.add(code)
            exists = db.query(Permission).filter(Permission.code == code).first()
            if not exists:
                label = code.replace("-", " ").title()
                db.add(Permission(code=code, label=label, module=module))
                added += 1
    db.flush()
    return added


def seed_admin_role(db: Session) -> Role:
    """Role holding every billing / pharmacy permission."""
    role = db.query(Role).filter(Role.name == ADMIN_ROLE).first()
    if not role:
        role = Role(name=ADMIN_ROLE, description="All billing, insurance and pharmacy permissions")
        db.add(role)
    have = {p.code for p in role.permissions}
    for p in db.query(Permission).all():
        if p.code not in have:
            role.permissions.append(p)
    db.flush()
    return role


def run(fresh: bool = False) -> None:
    if fresh:
        logger.warning("Dropping ALL tables (dev only)")
        Base.metadata.drop_all(bind=engine)

    logger.info("Creating all missing tables")
    Base.metadata.create_all(bind=engine)

    try:
        with Session(engine) as db:
            added = seed_permissions(db)
            seed_admin_role(db)
            db.commit()
            logger.info("Permissions seeded (%s new codes), role %r refreshed", added, ADMIN_ROLE)
    except SQLAlchemyError:
        logger.exception("Seeding failed")
        raise


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    parser = argparse.ArgumentParser(
        description="Initialize DB (create tables, seed permissions).")
    parser.add_argument(
        "--fresh",
        action="store_true",
        help="Drop & recreate all tables (DEV ONLY).",
    )
    args = parser.parse_args()
    run(fresh=args.fresh)
