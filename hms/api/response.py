# FILE: hms/api/response.py
"""
JSON envelope shared by every endpoint.

Success:  {"success": true, "data": ..., "message"?: str, "meta"?: {...}}
Failure:  {"success": false, "message": str, "errors": {...} | null}
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def _respond(payload: Dict[str, Any], status_code: int) -> JSONResponse:
    # Decimal / date / Enum values from services are made JSON-safe here
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))


def ok(
    data: Any = None,
    *,
    message: Optional[str] = None,
    meta: Optional[Dict[str, Any]] = None,
    status_code: int = 200,
) -> JSONResponse:
    body: Dict[str, Any] = {"success": True, "data": data}
    if message is not None:
        body["message"] = message
    if meta is not None:
        body["meta"] = meta
    return _respond(body, status_code)


def paged(items: List[Any], *, total: int, limit: int, offset: int) -> JSONResponse:
    """List response carrying the paging window in meta."""
    return ok(items, meta={"total": total, "limit": limit, "offset": offset})


def err(message: str, *, status_code: int = 400, errors: Any = None) -> JSONResponse:
    return _respond({"success": False, "message": message, "errors": errors}, status_code)
