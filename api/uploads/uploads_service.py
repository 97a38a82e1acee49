# api/uploads/uploads_service.py

import time
import uuid
import logging
from pathlib import Path
from fastapi import UploadFile
from config.database import UPLOAD_DIR
from config.settings import settings

logger = logging.getLogger(__name__)

# Ensure upload directory exists
UPLOAD_DIR.mkdir(parents=True, exist_ok=True)

CHUNK_SIZE = 1024 * 1024


class UploadRejected(Exception):
    status_code = 400


class UnsupportedFileType(UploadRejected):
    pass


class FileTooLarge(UploadRejected):
    status_code = 413


def file_extension(filename: str) -> str:
    return Path(filename or "").suffix.lstrip(".").lower()


def save_report_image(file: UploadFile, reporter_id: str) -> str:
    """
    Store a report photo as <reporter_id>/<epoch-ms>-<suffix>.<ext> under the upload
    directory and return its public URL.
    """
    ext = file_extension(file.filename)
    if ext not in settings.allowed_file_types_list:
        raise UnsupportedFileType(f"File type '{ext or 'unknown'}' is not allowed")

    folder = UPLOAD_DIR / reporter_id
    folder.mkdir(parents=True, exist_ok=True)
    unique_name = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}.{ext}"
    dest = folder / unique_name

    # 1️⃣ Write file to disk, enforcing the size limit while streaming
    written = 0
    with dest.open("wb") as buffer:
        while True:
            chunk = file.file.read(CHUNK_SIZE)
            if not chunk:
                break
            written += len(chunk)
            if written > settings.MAX_FILE_SIZE:
                break
            buffer.write(chunk)

    if written > settings.MAX_FILE_SIZE:
        dest.unlink(missing_ok=True)
        raise FileTooLarge(f"File exceeds {settings.MAX_FILE_SIZE} bytes")
    if written == 0:
        dest.unlink(missing_ok=True)
        raise UploadRejected("Uploaded file is empty")

    logger.info("Stored report image %s (%d bytes)", dest, written)
    return f"{settings.UPLOAD_URL_PREFIX.rstrip('/')}/{reporter_id}/{unique_name}"


def delete_report_image(file_url: str) -> bool:
    """Remove a stored image by its public URL; False when nothing was deleted."""
    prefix = settings.UPLOAD_URL_PREFIX.rstrip("/") + "/"
    if not file_url or not file_url.startswith(prefix):
        return False
    path = (UPLOAD_DIR / file_url[len(prefix):]).resolve()
    if UPLOAD_DIR.resolve() not in path.parents:
        return False
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True
