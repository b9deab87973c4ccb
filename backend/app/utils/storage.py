"""
Local-disk storage for uploaded files (resumes, message media, verification documents).

Files are streamed to UPLOAD_DIR in 1MB chunks and referenced by a path relative to it.
"""
from dataclasses import dataclass
from pathlib import Path
import logging
from uuid import uuid4

from fastapi import HTTPException, UploadFile

from .. import config
from .error_handlers import get_error_message
from .validation import sanitize_filename

logger = logging.getLogger(__name__)

CHUNK_BYTES = 1024 * 1024

RESUME_EXTENSIONS = {".pdf", ".docx"}
RESUME_CONTENT_TYPES = {
    "application/pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/msword",
    "application/octet-stream",
}
DOCUMENT_EXTENSIONS = {".pdf", ".png", ".jpg", ".jpeg"}
MEDIA_EXTENSIONS = {
    ".png": "IMAGE",
    ".jpg": "IMAGE",
    ".jpeg": "IMAGE",
    ".gif": "IMAGE",
    ".webp": "IMAGE",
    ".mp4": "VIDEO",
    ".mov": "VIDEO",
    ".webm": "VIDEO",
    ".pdf": "PDF",
}


@dataclass
class StoredFile:
    rel_path: str
    original_filename: str
    content_type: str | None
    size_bytes: int


def max_upload_bytes() -> int:
    return config.MAX_UPLOAD_MB * 1024 * 1024


def resolve_path(rel_path: str) -> Path:
    base = Path(config.UPLOAD_DIR).resolve()
    target = (base / rel_path).resolve()
    if base not in target.parents:
        raise HTTPException(status_code=400, detail="Invalid file path")
    return target


def delete_stored(rel_path: str | None) -> None:
    if not rel_path:
        return
    try:
        path = resolve_path(rel_path)
        if path.exists():
            path.unlink()
    except (OSError, HTTPException) as e:
        logger.warning("Failed to delete stored file %s: %s", rel_path, e)


async def save_upload(
    file: UploadFile,
    *,
    folder: list[str],
    allowed_extensions,
    allowed_content_types=None,
) -> StoredFile:
    """Stream `file` under UPLOAD_DIR/<folder...>/; rejects bad types and files over the size cap."""
    if not file or not file.filename:
        raise HTTPException(status_code=400, detail="Missing file")

    original_filename = sanitize_filename(Path(file.filename).name)
    ext = Path(original_filename).suffix.lower()
    if ext not in allowed_extensions:
        raise HTTPException(status_code=400, detail=get_error_message("invalid_file_type"))

    if allowed_content_types and file.content_type and file.content_type not in allowed_content_types:
        raise HTTPException(status_code=400, detail="Invalid file type")

    stored_filename = f"{uuid4().hex}{ext}"
    rel_dir = Path(*[str(p) for p in folder])
    base_dir = Path(config.UPLOAD_DIR) / rel_dir
    base_dir.mkdir(parents=True, exist_ok=True)
    dest = base_dir / stored_filename

    limit = max_upload_bytes()
    size = 0
    try:
        with open(dest, "wb") as out:
            while True:
                chunk = await file.read(CHUNK_BYTES)
                if not chunk:
                    break
                size += len(chunk)
                if size > limit:
                    raise HTTPException(status_code=413, detail=get_error_message("file_too_large"))
                out.write(chunk)
    except HTTPException:
        dest.unlink(missing_ok=True)
        raise
    except OSError as e:
        dest.unlink(missing_ok=True)
        logger.error("Failed to store upload %s: %s", original_filename, e)
        raise HTTPException(status_code=500, detail=get_error_message("upload_failed"))
    finally:
        await file.close()

    return StoredFile(
        rel_path=(rel_dir / stored_filename).as_posix(),
        original_filename=original_filename,
        content_type=file.content_type,
        size_bytes=size,
    )


def media_type_for(filename: str) -> str | None:
    return MEDIA_EXTENSIONS.get(Path(filename or "").suffix.lower())
