from __future__ import annotations

import logging
import re
import shutil
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional
from uuid import uuid4

from fastapi import UploadFile, HTTPException

from hms.core.config import settings

logger = logging.getLogger(__name__)

_safe_module = re.compile(r"^[a-zA-Z0-9_\-/]+$")


def storage_root() -> Path:
    return Path(settings.STORAGE_DIR).resolve()


def _resolve(relative_path: str) -> Path:
    root = storage_root()
    p = (root / relative_path).resolve()
    if root != p and root not in p.parents:
        raise HTTPException(status_code=400, detail="Invalid file path")
    return p


def save_upload(
    file: UploadFile,
    module: str,
    *,
    allowed_ext: Optional[Iterable[str]] = None,
    max_bytes: Optional[int] = None,
) -> dict:
    """
    Saves file inside the private store: {STORAGE_DIR}/{module}/<uuid>.<ext>
    Example module: insurance_claims/12
    """
    if not file or not file.filename:
        raise HTTPException(status_code=422, detail="Invalid file")

    module = (module or "").strip().strip("/").lower()
    if not _safe_module.match(module) or ".." in module:
        raise HTTPException(status_code=400, detail="Invalid module path")

    ext = Path(file.filename).suffix.lower()
    if allowed_ext is not None:
        allowed = {("." + e.lower().lstrip(".")) for e in allowed_ext}
        if ext not in allowed:
            raise HTTPException(
                status_code=422,
                detail=f"{file.filename}: file type not allowed ({', '.join(sorted(a.lstrip('.') for a in allowed))})",
            )

    fname = f"{uuid4().hex}{ext}"  # keep extension
    rel_dir = Path(module)
    disk_dir = storage_root() / rel_dir
    disk_dir.mkdir(parents=True, exist_ok=True)

    disk_path = disk_dir / fname

    try:
        with disk_path.open("wb") as out:
            shutil.copyfileobj(file.file, out)
    finally:
        file.file.close()

    size = disk_path.stat().st_size
    if max_bytes is not None and size > max_bytes:
        disk_path.unlink(missing_ok=True)
        raise HTTPException(
            status_code=422,
            detail=f"{file.filename}: file exceeds {max_bytes // (1024 * 1024)} MB",
        )

    return {
        "name": file.filename,
        "path": f"{rel_dir.as_posix()}/{fname}",
        "size": size,
        "mime_type": file.content_type,
        "uploaded_at": datetime.utcnow().isoformat(),
    }


def read_stored(relative_path: str) -> bytes:
    p = _resolve(relative_path)
    if not p.is_file():
        raise HTTPException(status_code=404, detail="Document file not found")
    return p.read_bytes()


def delete_stored(relative_path: str) -> None:
    p = _resolve(relative_path)
    try:
        p.unlink(missing_ok=True)
    except OSError:
        logger.exception("Failed to delete stored file: %s", relative_path)


def delete_dir_if_empty(relative_dir: str) -> None:
    p = _resolve(relative_dir)
    if p.is_dir() and not any(p.iterdir()):
        p.rmdir()
