"""Local-disk storage for uploaded files."""

import logging
import re
import unicodedata
import uuid
from collections.abc import Collection
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

from fastapi import HTTPException, UploadFile, status

from cabinet.config import settings

logger = logging.getLogger(__name__)

DOCUMENTS_DIR = "documents"
MESSAGES_DIR = "messages"
CONTACT_DIR = "contact"

ALLOWED_MIME_TYPES = {
    "application/pdf",
    "image/jpeg",
    "image/png",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}

# Public contact form: documents and pictures only.
CONTACT_MIME_TYPES = {
    "application/pdf",
    "image/jpeg",
    "image/jpg",
    "image/png",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}


@dataclass
class StoredFile:
    original_name: str
    stored_name: str
    path: str
    mime_type: str
    size: int

    def to_dict(self) -> dict:
        return asdict(self)


def upload_root() -> Path:
    return Path(settings.upload_dir)


def ensure_upload_dirs() -> None:
    for subdir in (DOCUMENTS_DIR, MESSAGES_DIR, CONTACT_DIR):
        (upload_root() / subdir).mkdir(parents=True, exist_ok=True)


def sanitize_filename(filename: Optional[str]) -> str:
    name = Path(filename or "").name
    name = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode("ascii")
    name = re.sub(r"[^A-Za-z0-9._-]+", "_", name).strip("._")
    return name[:150] or "fichier"


async def save_upload(
    upload: UploadFile,
    subdir: str,
    allowed_types: Optional[Collection[str]] = ALLOWED_MIME_TYPES,
    max_size_mb: Optional[int] = None,
) -> StoredFile:
    """Validate and write an upload under ``<upload_dir>/<subdir>``.

    Raises 400 for a type outside ``allowed_types`` (``None`` accepts any)
    and 413 for a file over ``max_size_mb`` (default ``max_upload_size_mb``).
    """
    mime_type = upload.content_type or "application/octet-stream"
    if allowed_types is not None and mime_type not in allowed_types:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Type de fichier non autorisé : {mime_type}",
        )

    max_size_mb = max_size_mb or settings.max_upload_size_mb
    content = await upload.read()
    if len(content) > max_size_mb * 1024 * 1024:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Fichier trop volumineux (max {max_size_mb} Mo)",
        )

    original_name = Path(upload.filename or "fichier").name
    stored_name = f"{uuid.uuid4().hex[:12]}_{sanitize_filename(original_name)}"
    directory = upload_root() / subdir
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / stored_name
    path.write_bytes(content)

    return StoredFile(
        original_name=original_name,
        stored_name=stored_name,
        path=str(path),
        mime_type=mime_type,
        size=len(content),
    )


def remove_file(path: Optional[str]) -> bool:
    """Delete a stored file. Failures are logged, never raised."""
    if not path:
        return False
    try:
        Path(path).unlink(missing_ok=True)
    except OSError:
        logger.exception("Could not remove stored file %s", path)
        return False
    return True


def remove_files(paths: list[str]) -> None:
    for path in paths:
        remove_file(path)
