# hms/utils/jwt.py
from datetime import datetime, timedelta
from typing import Optional

from jose import jwt

from hms.core.config import settings


def _create_token(*, subject: str, expires_delta: timedelta) -> str:
    now = datetime.utcnow()
    payload = {
        "sub": subject,  # user email
        "iat": now,
        "exp": now + expires_delta,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def create_access_token(subject: str, expires_minutes: Optional[int] = None) -> str:
    minutes = expires_minutes if expires_minutes is not None else settings.ACCESS_TOKEN_EXPIRE_MINUTES
    return _create_token(subject=subject, expires_delta=timedelta(minutes=minutes))
