# FILE: hms/api/exception_handlers.py
from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError
from starlette.exceptions import HTTPException as StarletteHTTPException

from hms.api.response import err

logger = logging.getLogger(__name__)

CONCURRENT_UPDATE_MSG = "Record was modified concurrently, retry"


def _field_errors(exc: RequestValidationError) -> Dict[str, List[str]]:
    out: Dict[str, List[str]] = {}
    for e in exc.errors():
        loc = [str(p) for p in e.get("loc", ()) if p not in ("body", "query", "path")]
        key = ".".join(loc) or "__root__"
        out.setdefault(key, []).append(e.get("msg", "Invalid value"))
    return out


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        # exc.detail can be str/dict/list
        if isinstance(exc.detail, str):
            return err(exc.detail, status_code=exc.status_code)
        return err("Request failed", status_code=exc.status_code, errors=exc.detail)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return err("Validation error", status_code=422, errors=_field_errors(exc))

    @app.exception_handler(StaleDataError)
    async def stale_data_handler(request: Request, exc: StaleDataError) -> JSONResponse:
        logger.warning("Concurrent update on %s %s: %s", request.method, request.url.path, exc)
        return err(CONCURRENT_UPDATE_MSG, status_code=409)

    @app.exception_handler(IntegrityError)
    async def integrity_handler(request: Request, exc: IntegrityError) -> JSONResponse:
        logger.warning("Integrity error on %s %s: %s", request.method, request.url.path, getattr(exc, "orig", exc))
        return err("Conflicting record already exists", status_code=409)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return err("Internal server error", status_code=500)
