# FILE: hms/api/tx.py
"""Commit helpers shared by the routers; services only flush."""
from __future__ import annotations

import logging
from typing import Any, Type

from fastapi import HTTPException
from pydantic import BaseModel
from sqlalchemy.exc import DataError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from hms.api.exception_handlers import CONCURRENT_UPDATE_MSG

logger = logging.getLogger(__name__)


def dump(model: Type[BaseModel], obj: Any) -> dict:
    # python-mode dump keeps Decimal so the JSON response carries numbers
    return model.model_validate(obj).model_dump()


def commit(db: Session) -> None:
    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        raise HTTPException(status_code=409, detail=CONCURRENT_UPDATE_MSG)
    except IntegrityError as e:
        db.rollback()
        logger.warning("Integrity error on commit: %s", getattr(e, "orig", e))
        raise HTTPException(status_code=409, detail="Conflicting record already exists")
    except DataError as e:
        db.rollback()
        msg = str(getattr(e, "orig", e))
        raise HTTPException(status_code=400, detail=f"DB validation error: {msg}")
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Database error on commit")
        raise HTTPException(status_code=500, detail="Database error")
