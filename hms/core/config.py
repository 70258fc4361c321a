# hms/core/config.py
import os
from typing import List, Optional
from pydantic import BaseModel
from dotenv import load_dotenv
from urllib.parse import quote_plus
from pathlib import Path

load_dotenv()


def _split_csv(value: str) -> List[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


class Settings(BaseModel):
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "HMS Billing & Pharmacy")
    API_V1_STR: str = os.getenv("API_V1_STR", "/api")

    # CORS (env takes priority)
    BACKEND_CORS_ORIGINS: List[str] = _split_csv(
        os.getenv(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ))

    # ---------- Database ----------
    MYSQL_HOST: str = os.getenv("MYSQL_HOST", "localhost")
    MYSQL_PORT: int = int(os.getenv("MYSQL_PORT", "3306"))
    MYSQL_USER: str = os.getenv("MYSQL_USER", "hms_user")
    MYSQL_PASSWORD: str = os.getenv("MYSQL_PASSWORD", "")
    MYSQL_DB: str = os.getenv("MYSQL_DB", "hms_billing")
    DB_DRIVER: str = os.getenv("DB_DRIVER", "pymysql")

    # DATABASE_URL wins when set (sqlite:///./hms.db for local runs)
    DATABASE_URL: Optional[str] = os.getenv("DATABASE_URL") or None

    SQLALCHEMY_DATABASE_URI: str = DATABASE_URL or (
        f"mysql+{DB_DRIVER}://{quote_plus(MYSQL_USER)}:{quote_plus(MYSQL_PASSWORD)}"
        f"@{MYSQL_HOST}:{MYSQL_PORT}/{MYSQL_DB}?charset=utf8mb4")

    SQL_ECHO: bool = _flag("SQL_ECHO")

    # ---------- Security ----------
    JWT_SECRET: str = os.getenv("JWT_SECRET", "change-this")
    JWT_ALG: str = os.getenv("JWT_ALG", "HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(
        os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "2440"))

    # ---------- Admin ----------
    ADMIN_ALL_ACCESS: bool = _flag("ADMIN_ALL_ACCESS")

    # ---------- File storage ----------
    STORAGE_DIR: str = os.getenv("STORAGE_DIR", "./storage")
    CLAIM_DOCUMENT_MAX_BYTES: int = int(
        os.getenv("CLAIM_DOCUMENT_MAX_BYTES", str(10 * 1024 * 1024)))
    CLAIM_DOCUMENT_TYPES: List[str] = _split_csv(
        os.getenv("CLAIM_DOCUMENT_TYPES", "pdf,jpg,jpeg,png"))

    # ---------- Billing ----------
    BILLING_DEFAULT_TAX: float = float(
        os.getenv("BILLING_DEFAULT_TAX", "0") or 0.0)
    BILL_NUMBER_PREFIX: str = os.getenv("BILL_NUMBER_PREFIX", "BILL")
    VOID_REASON_MIN_LENGTH: int = int(os.getenv("VOID_REASON_MIN_LENGTH", "10"))

    # ---------- Pharmacy ----------
    EXPIRY_ALERT_DAYS: int = int(os.getenv("EXPIRY_ALERT_DAYS", "90"))

    # ---------- Logging ----------
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()

Path(settings.STORAGE_DIR).resolve().mkdir(parents=True, exist_ok=True)
